"""Slot availability rules."""

from datetime import date

from clinic_backend.schemas.appointments import SlotAvailability


def evaluate_slot(
    booked: int,
    capacity: int,
    appointment_date: date,
    today: date,
) -> SlotAvailability:
    """
    Decide whether one more appointment fits a date/time/department slot.

    Args:
        booked: Non-cancelled appointments already in the slot
        capacity: Maximum appointments per slot
        appointment_date: Requested date
        today: Current local date

    Returns:
        Availability answer with a human readable reason when unavailable
    """
    if appointment_date < today:
        return SlotAvailability(
            available=False,
            reason="Cannot book an appointment for a past date",
            booked=booked,
            capacity=capacity,
        )

    if booked >= capacity:
        return SlotAvailability(
            available=False,
            reason="This time slot is fully booked. Please choose another time.",
            booked=booked,
            capacity=capacity,
        )

    return SlotAvailability(available=True, booked=booked, capacity=capacity)

"""Doctor lookup and assignment eligibility."""

from collections.abc import Iterable

import structlog

from clinic_backend.core.exceptions import ValidationException
from clinic_backend.schemas.users import Doctor, MedicalSpecialty, Role
from clinic_backend.services.appointment_store import AppointmentStore

logger = structlog.get_logger(__name__)


def resolve_eligible_doctors(department: str, roster: Iterable[Doctor]) -> list[Doctor]:
    """
    Filter a doctor roster down to those who can see a department's patients.

    A doctor qualifies when their specialty matches the department, when they
    are a general practitioner, or when they have no specialty on record.

    Args:
        department: Department code of the appointment
        roster: Candidate doctors

    Returns:
        Matching doctors in roster order; empty when nobody qualifies
    """
    return [
        doctor
        for doctor in roster
        if doctor.specialty is None
        or doctor.specialty == department
        or doctor.specialty == MedicalSpecialty.GENERAL_PRACTICE
    ]


class DoctorService:
    """Service for doctor roster queries."""

    def __init__(self, store: AppointmentStore):
        """Initialize service with the appointment store."""
        self.store = store

    async def list_eligible(self, department: str) -> list[Doctor]:
        """Active doctors able to take an appointment in ``department``."""
        roster = await self.store.list_doctors()
        eligible = resolve_eligible_doctors(department, roster)
        logger.debug(
            "eligible_doctors_resolved",
            department=department,
            roster_size=len(roster),
            eligible=len(eligible),
        )
        return eligible

    async def get_active_doctor(self, doctor_id: int) -> Doctor:
        """
        Resolve a doctor id for assignment.

        Raises:
            ValidationException: If the id is not an active doctor
        """
        user = await self.store.get_user(doctor_id)
        if user is None:
            raise ValidationException(f"Doctor not found with ID: {doctor_id}")
        if user.role != Role.DOCTOR:
            raise ValidationException(f"User with ID {doctor_id} is not a doctor")
        if not user.is_active:
            raise ValidationException(f"Doctor with ID {doctor_id} is not active")
        return Doctor(
            id=user.id,
            full_name=user.full_name,
            specialty=user.specialty,
            email=user.email,
        )

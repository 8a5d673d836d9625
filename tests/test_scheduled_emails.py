"""Tests for reminders, confirmation retries and detail-change emails."""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import update

from clinic_backend.core.exceptions import ForbiddenException
from clinic_backend.models import appointments
from clinic_backend.schemas.appointments import AppointmentStatus, AppointmentUpdate

TOMORROW = date.today() + timedelta(days=1)


@pytest.mark.asyncio
async def test_reminders_cover_upcoming_statuses(workflow, make_appointment, notifier) -> None:
    confirmed = await make_appointment(AppointmentStatus.CONFIRMED, appointment_date=TOMORROW)
    awaiting_payment = await make_appointment(
        AppointmentStatus.PAYMENT_REQUESTED, appointment_date=TOMORROW, email="pay@example.com"
    )
    legacy = await make_appointment(
        "NEEDS_PAYMENT", appointment_date=TOMORROW, email="old@example.com"
    )
    await make_appointment(
        AppointmentStatus.PENDING, appointment_date=TOMORROW, email="p@example.com"
    )
    await make_appointment(
        AppointmentStatus.CANCELLED, appointment_date=TOMORROW, email="c@example.com"
    )
    await make_appointment(AppointmentStatus.CONFIRMED, email="later@example.com")
    await make_appointment(AppointmentStatus.CONFIRMED, appointment_date=TOMORROW, email=None)

    result = await workflow.send_reminders()

    assert sorted(result.sent_ids) == sorted([confirmed.id, awaiting_payment.id, legacy.id])
    assert result.failed_ids == []
    assert {email.to for email in notifier.sent} == {
        "patient@example.com",
        "pay@example.com",
        "old@example.com",
    }
    assert all(email.subject == "Appointment reminder - Test Clinic" for email in notifier.sent)
    assert (await workflow.store.get(confirmed.id)).reminder_sent is True


@pytest.mark.asyncio
async def test_reminders_are_sent_once(workflow, make_appointment, notifier) -> None:
    await make_appointment(AppointmentStatus.PAID, appointment_date=TOMORROW)

    first = await workflow.send_reminders()
    second = await workflow.send_reminders()

    assert len(first.sent_ids) == 1
    assert second.sent_ids == []
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_failed_reminder_is_retried(workflow, make_appointment, notifier) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, appointment_date=TOMORROW)
    notifier.fail_all = True

    failed = await workflow.send_reminders()

    assert failed.failed_ids == [appointment.id]
    assert "SMTP server refused" in failed.warnings[0]
    assert (await workflow.store.get(appointment.id)).reminder_sent is False

    notifier.fail_all = False
    retried = await workflow.send_reminders()
    assert retried.sent_ids == [appointment.id]


@pytest.mark.asyncio
async def test_reminders_for_explicit_date(workflow, make_appointment) -> None:
    day = date.today() + timedelta(days=5)
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, appointment_date=day)

    assert (await workflow.send_reminders(for_date=TOMORROW)).sent_ids == []
    assert (await workflow.send_reminders(for_date=day)).sent_ids == [appointment.id]


@pytest.mark.asyncio
async def test_reminders_require_staff(workflow, doctor5, staff) -> None:
    with pytest.raises(ForbiddenException):
        await workflow.send_reminders(doctor5)

    result = await workflow.send_reminders(staff)
    assert result.sent_ids == []


@pytest.mark.asyncio
async def test_resend_confirmations(workflow, make_appointment, session_factory, notifier) -> None:
    unsent = await make_appointment(AppointmentStatus.PENDING)
    already_sent = await make_appointment(AppointmentStatus.PENDING, email="done@example.com")
    await make_appointment(AppointmentStatus.CANCELLED, email="gone@example.com")
    await make_appointment(AppointmentStatus.PENDING, email=None)
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(appointments)
                .where(appointments.c.id == already_sent.id)
                .values(email_sent=True)
            )

    result = await workflow.resend_confirmations()

    assert result.sent_ids == [unsent.id]
    assert [email.to for email in notifier.sent] == ["patient@example.com"]
    assert notifier.sent[0].subject == "Appointment request received - Test Clinic"
    assert (await workflow.store.get(unsent.id)).email_sent is True
    assert (await workflow.resend_confirmations()).sent_ids == []


@pytest.mark.asyncio
async def test_resend_keeps_failed_confirmation_pending(
    workflow, make_appointment, notifier
) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)
    notifier.failing_recipients.add("patient@example.com")

    result = await workflow.resend_confirmations()

    assert result.failed_ids == [appointment.id]
    assert (await workflow.store.get(appointment.id)).email_sent is False


@pytest.mark.asyncio
async def test_reschedule_emails_new_details(
    workflow, make_appointment, staff, notifier, clinic_users
) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=5)

    result = await workflow.update_details(
        appointment.id, AppointmentUpdate(appointment_time=time(15, 30)), staff
    )

    assert result.appointment.appointment_time == time(15, 30)
    assert result.warnings == []
    [email] = notifier.to("patient@example.com")
    assert email.subject == "Appointment updated - Test Clinic"
    assert "Time: 15:30" in email.body


@pytest.mark.asyncio
async def test_notes_edit_sends_no_email(
    workflow, make_appointment, staff, notifier, clinic_users
) -> None:
    appointment = await make_appointment(AppointmentStatus.CONFIRMED, doctor_id=5)

    result = await workflow.update_details(
        appointment.id, AppointmentUpdate(notes="Fasting required"), staff
    )

    assert result.appointment.notes == "Fasting required"
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_reschedule_email_failure_is_a_warning(
    workflow, make_appointment, staff, notifier
) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)
    notifier.fail_all = True
    new_day = date.today() + timedelta(days=12)

    result = await workflow.update_details(
        appointment.id, AppointmentUpdate(appointment_date=new_day), staff
    )

    assert len(result.warnings) == 1
    assert (await workflow.store.get(appointment.id)).appointment_date == new_day

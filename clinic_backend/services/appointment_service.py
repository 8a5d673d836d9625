"""Appointment lifecycle workflow.

Every status change follows the same pipeline: fetch the current row, ask
``validate_transition`` whether the move is legal, persist it with a
compare-and-swap write, then fan out the side effects the validator returned.
The ``apply_*`` methods stop after the write; ``run_side_effects`` does the
rest. Single-item callers use the public wrappers that chain both, the bulk
coordinator calls the two phases separately.
"""

import math
from dataclasses import dataclass
from datetime import date, time, timedelta
from decimal import Decimal

import structlog

from clinic_backend.core.exceptions import (
    AppException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    ValidationException,
)
from clinic_backend.schemas.appointments import (
    AllowedTransitions,
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStats,
    AppointmentStatus,
    AppointmentUpdate,
    NotificationRunResult,
    SlotAvailability,
    WorkflowResult,
)
from clinic_backend.schemas.users import (
    Actor,
    DepartmentInfo,
    Doctor,
    MedicalSpecialty,
    ProvisioningResult,
    Role,
)
from clinic_backend.services.account_service import AccountProvisioner
from clinic_backend.services.appointment_store import AppointmentStore, utcnow
from clinic_backend.services.doctor_service import DoctorService
from clinic_backend.services.notification_service import NotificationDispatcher
from clinic_backend.services.status_transitions import (
    SideEffect,
    allowed_targets,
    validate_transition,
)

logger = structlog.get_logger(__name__)

SLOT_FIELDS = ("appointment_date", "appointment_time", "department")


@dataclass
class TransitionOutcome:
    """A committed single-item change and the side effects it still owes."""

    appointment: Appointment
    side_effects: tuple[SideEffect, ...] = ()
    noop: bool = False
    doctor: Doctor | None = None
    reason: str | None = None
    account: ProvisioningResult | None = None


def require_reason(reason: str | None, label: str) -> str:
    """
    Return a stripped free-text reason.

    Raises:
        ValidationException: If the reason is missing or blank
    """
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationException(f"{label} is required")
    return cleaned


def validate_payment_amount(amount: float | Decimal | None) -> Decimal:
    """
    Convert a requested payment amount to a Decimal.

    Raises:
        ValidationException: If the amount is missing, not finite or not positive
    """
    if amount is None:
        raise ValidationException("Payment amount is required")
    try:
        value = float(amount)
    except (TypeError, ValueError) as e:
        raise ValidationException("Payment amount must be a number") from e
    if not math.isfinite(value):
        raise ValidationException("Payment amount must be a finite number")
    if value <= 0:
        raise ValidationException("Payment amount must be greater than 0")
    return Decimal(str(amount))


def require_staff(actor: Actor, action: str) -> None:
    """
    Raises:
        ForbiddenException: If the actor is not staff or admin
    """
    if not actor.is_staff:
        raise ForbiddenException(f"Only staff or admin can {action}")


class AppointmentWorkflowService:
    """Service for appointment bookings and lifecycle transitions."""

    def __init__(
        self,
        store: AppointmentStore,
        dispatcher: NotificationDispatcher,
        provisioner: AccountProvisioner,
        doctors: DoctorService,
    ):
        """Initialize service with its collaborators."""
        self.store = store
        self.dispatcher = dispatcher
        self.provisioner = provisioner
        self.doctors = doctors

    async def _transition(
        self,
        appointment: Appointment,
        target: AppointmentStatus,
        actor: Actor,
        fields: dict | None = None,
        **extra,
    ) -> TransitionOutcome:
        decision = validate_transition(
            appointment.status, target, actor, assigned_doctor_id=appointment.doctor_id
        )
        if decision.noop:
            logger.debug(
                "appointment_transition_noop",
                appointment_id=appointment.id,
                status=appointment.status.value,
            )
            return TransitionOutcome(appointment=appointment, noop=True)

        updated = await self.store.apply_transition(
            appointment.id, appointment.status, target, fields
        )
        return TransitionOutcome(
            appointment=updated,
            side_effects=decision.side_effects,
            **extra,
        )

    # ------------------------------------------------------------------
    # Phase 1: validate and persist
    # ------------------------------------------------------------------

    async def apply_assign_doctor(
        self, appointment_id: int, doctor_id: int, actor: Actor
    ) -> TransitionOutcome:
        """Assign a doctor to a pending appointment and await their approval."""
        appointment = await self.store.get(appointment_id)

        if (
            appointment.status == AppointmentStatus.AWAITING_DOCTOR_APPROVAL
            and appointment.doctor_id != doctor_id
        ):
            raise InvalidTransitionException(
                appointment.status.value,
                AppointmentStatus.AWAITING_DOCTOR_APPROVAL.value,
                detail=f"already awaiting approval from doctor {appointment.doctor_id}",
            )

        # Role and state first, then the doctor lookup.
        validate_transition(
            appointment.status,
            AppointmentStatus.AWAITING_DOCTOR_APPROVAL,
            actor,
            assigned_doctor_id=appointment.doctor_id,
        )
        doctor = await self.doctors.get_active_doctor(doctor_id)

        return await self._transition(
            appointment,
            AppointmentStatus.AWAITING_DOCTOR_APPROVAL,
            actor,
            {
                "doctor_id": doctor.id,
                "doctor_notified_at": utcnow(),
                "doctor_response": None,
                "doctor_responded_at": None,
            },
            doctor=doctor,
        )

    async def apply_doctor_respond(
        self,
        appointment_id: int,
        accept: bool,
        note: str | None,
        actor: Actor,
    ) -> TransitionOutcome:
        """
        Record the assigned doctor's accept or decline.

        Accepting confirms the appointment. Declining sends it back to
        PENDING without a doctor so staff can reassign it.

        Raises:
            ValidationException: If declining without a reason
            InvalidTransitionException: If the actor is not the assigned doctor
                or the appointment is not awaiting approval
        """
        reason = None if accept else require_reason(note, "Decline reason")
        appointment = await self.store.get(appointment_id)
        now = utcnow()

        if accept:
            response = (note or "").strip() or "Accepted by doctor"
            return await self._transition(
                appointment,
                AppointmentStatus.CONFIRMED,
                actor,
                {
                    "doctor_response": f"ACCEPTED: {response}",
                    "doctor_responded_at": now,
                },
            )

        outcome = await self._transition(
            appointment,
            AppointmentStatus.PENDING,
            actor,
            {
                "doctor_id": None,
                "doctor_notified_at": None,
                "doctor_response": f"DECLINED: {reason}",
                "doctor_responded_at": now,
            },
            reason=reason,
        )
        if not outcome.noop:
            logger.info(
                "appointment_declined_by_doctor",
                appointment_id=appointment_id,
                doctor_id=actor.user_id,
                reason=reason,
            )
        return outcome

    async def apply_request_payment(
        self, appointment_id: int, amount: float | Decimal | None, actor: Actor
    ) -> TransitionOutcome:
        """Ask the patient to pay for a confirmed appointment."""
        value = validate_payment_amount(amount)
        appointment = await self.store.get(appointment_id)
        return await self._transition(
            appointment,
            AppointmentStatus.PAYMENT_REQUESTED,
            actor,
            {
                "payment_requested": True,
                "payment_amount": value,
                "payment_requested_at": utcnow(),
            },
        )

    async def apply_mark_paid(self, appointment_id: int, actor: Actor) -> TransitionOutcome:
        """Record that the requested payment was received."""
        appointment = await self.store.get(appointment_id)
        return await self._transition(
            appointment,
            AppointmentStatus.PAID,
            actor,
            {"payment_completed": True, "payment_completed_at": utcnow()},
        )

    async def apply_complete(self, appointment_id: int, actor: Actor) -> TransitionOutcome:
        """Mark a paid appointment as completed."""
        appointment = await self.store.get(appointment_id)
        return await self._transition(appointment, AppointmentStatus.COMPLETED, actor)

    async def apply_mark_no_show(self, appointment_id: int, actor: Actor) -> TransitionOutcome:
        """Mark that the patient did not attend."""
        appointment = await self.store.get(appointment_id)
        return await self._transition(appointment, AppointmentStatus.NO_SHOW, actor)

    async def apply_cancel(
        self, appointment_id: int, reason: str | None, actor: Actor
    ) -> TransitionOutcome:
        """Cancel a non-terminal appointment, releasing its doctor."""
        reason = require_reason(reason, "Cancellation reason")
        appointment = await self.store.get(appointment_id)
        return await self._transition(
            appointment,
            AppointmentStatus.CANCELLED,
            actor,
            {
                "cancellation_reason": reason,
                "cancelled_at": utcnow(),
                "doctor_id": None,
            },
            reason=reason,
        )

    async def apply_create_account(self, appointment_id: int, actor: Actor) -> TransitionOutcome:
        """Provision the patient account of an appointment on demand."""
        require_staff(actor, "create patient accounts")
        appointment = await self.store.get(appointment_id)
        account = await self.provisioner.ensure_patient_account(appointment)
        effects = (SideEffect.NOTIFY_ACCOUNT_CREATED,) if account.created else ()
        return TransitionOutcome(
            appointment=appointment,
            side_effects=effects,
            noop=not account.created,
            account=account,
        )

    async def apply_hard_delete(self, appointment_id: int, actor: Actor) -> TransitionOutcome:
        """Permanently remove an appointment regardless of its status."""
        require_staff(actor, "delete appointments")
        appointment = await self.store.get(appointment_id)
        await self.store.delete(appointment_id)
        logger.info(
            "appointment_hard_deleted",
            appointment_id=appointment_id,
            status=appointment.status.value,
            actor_id=actor.user_id,
        )
        return TransitionOutcome(appointment=appointment)

    # ------------------------------------------------------------------
    # Phase 2: post-commit side effects
    # ------------------------------------------------------------------

    async def run_side_effects(self, outcome: TransitionOutcome) -> WorkflowResult:
        """
        Run the side effects of a committed change.

        Nothing here can undo the commit: provisioning and email failures are
        returned as warnings.

        Args:
            outcome: Result of one of the ``apply_*`` methods

        Returns:
            Workflow result with warnings for every failed side effect
        """
        appointment = outcome.appointment
        effects = list(outcome.side_effects)
        account = outcome.account
        warnings: list[str] = []

        if SideEffect.PROVISION_ACCOUNT in effects:
            try:
                account = await self.provisioner.ensure_patient_account(appointment)
            except AppException as e:
                logger.warning(
                    "account_provisioning_failed",
                    appointment_id=appointment.id,
                    error=e.message,
                )
                warnings.append(f"{SideEffect.PROVISION_ACCOUNT.value}: {e.message}")
            else:
                if account.created:
                    effects.append(SideEffect.NOTIFY_ACCOUNT_CREATED)

        failures = await self.dispatcher.dispatch(
            appointment,
            effects,
            doctor=outcome.doctor,
            reason=outcome.reason,
            account=account,
        )
        warnings.extend(failure.message for failure in failures)

        return WorkflowResult(
            appointment=appointment,
            noop=outcome.noop,
            warnings=warnings,
            account=account,
        )

    # ------------------------------------------------------------------
    # Single-item operations
    # ------------------------------------------------------------------

    async def assign_doctor(self, appointment_id: int, doctor_id: int, actor: Actor) -> WorkflowResult:
        """Assign a doctor and notify them."""
        return await self.run_side_effects(
            await self.apply_assign_doctor(appointment_id, doctor_id, actor)
        )

    async def doctor_respond(
        self, appointment_id: int, accept: bool, note: str | None, actor: Actor
    ) -> WorkflowResult:
        """Accept or decline an assignment."""
        return await self.run_side_effects(
            await self.apply_doctor_respond(appointment_id, accept, note, actor)
        )

    async def request_payment(
        self, appointment_id: int, amount: float | Decimal | None, actor: Actor
    ) -> WorkflowResult:
        """Request payment and email the patient."""
        return await self.run_side_effects(
            await self.apply_request_payment(appointment_id, amount, actor)
        )

    async def mark_paid(self, appointment_id: int, actor: Actor) -> WorkflowResult:
        """Mark paid and email a receipt."""
        return await self.run_side_effects(await self.apply_mark_paid(appointment_id, actor))

    async def complete(self, appointment_id: int, actor: Actor) -> WorkflowResult:
        """Complete and provision the patient account."""
        return await self.run_side_effects(await self.apply_complete(appointment_id, actor))

    async def mark_no_show(self, appointment_id: int, actor: Actor) -> WorkflowResult:
        """Mark the appointment as a no-show."""
        return await self.run_side_effects(await self.apply_mark_no_show(appointment_id, actor))

    async def cancel(self, appointment_id: int, reason: str | None, actor: Actor) -> WorkflowResult:
        """Cancel and email the patient."""
        return await self.run_side_effects(await self.apply_cancel(appointment_id, reason, actor))

    async def create_account(self, appointment_id: int, actor: Actor) -> WorkflowResult:
        """Ensure a patient account exists and send the welcome email if new."""
        return await self.run_side_effects(await self.apply_create_account(appointment_id, actor))

    async def hard_delete(self, appointment_id: int, actor: Actor) -> None:
        """Permanently delete an appointment."""
        await self.apply_hard_delete(appointment_id, actor)

    # ------------------------------------------------------------------
    # Booking and detail edits
    # ------------------------------------------------------------------

    async def check_availability(
        self,
        appointment_date: date,
        appointment_time: time,
        department: MedicalSpecialty | str,
        exclude_id: int | None = None,
    ) -> SlotAvailability:
        """Answer whether a slot can take one more appointment."""
        code = department.value if isinstance(department, MedicalSpecialty) else department
        return await self.store.check_availability(
            appointment_date, appointment_time, code, exclude_id
        )

    async def create_booking(self, data: AppointmentCreate) -> WorkflowResult:
        """
        Create a PENDING appointment from a public booking request.

        Raises:
            ValidationException: If the date is in the past
            ConflictException: If the slot is full
        """
        if data.appointment_date < date.today():
            raise ValidationException("Cannot book an appointment for a past date")

        fields = data.model_dump()
        fields["department"] = data.department.value
        appointment = await self.store.create(fields)

        failures = await self.dispatcher.dispatch(
            appointment, [SideEffect.NOTIFY_BOOKING_RECEIVED]
        )
        if appointment.email and not failures:
            await self.store.mark_email_sent(appointment.id)
            appointment = appointment.model_copy(update={"email_sent": True})

        logger.info(
            "appointment_booked",
            appointment_id=appointment.id,
            department=appointment.department,
            appointment_date=appointment.appointment_date.isoformat(),
        )
        return WorkflowResult(
            appointment=appointment,
            warnings=[failure.message for failure in failures],
        )

    async def update_details(
        self, appointment_id: int, data: AppointmentUpdate, actor: Actor
    ) -> WorkflowResult:
        """
        Edit non-status fields of an appointment.

        Staff may edit everything; the assigned doctor may edit notes only.
        Moving the appointment to another slot re-runs the availability check
        and emails the patient the new details.

        Raises:
            ForbiddenException: If the actor may not edit these fields
            ValidationException: If rescheduling into the past or out of a
                terminal state
            ConflictException: If the new slot is full or the row changed
        """
        fields = data.model_dump(exclude_unset=True)
        appointment = await self.store.get(appointment_id)

        if not actor.is_staff:
            if actor.role != Role.DOCTOR or appointment.doctor_id != actor.user_id:
                raise ForbiddenException("Not allowed to edit this appointment")
            if set(fields) - {"notes"}:
                raise ForbiddenException("Doctors can only edit appointment notes")

        if not fields:
            return WorkflowResult(appointment=appointment, noop=True)

        if "department" in fields and fields["department"] is not None:
            fields["department"] = MedicalSpecialty(fields["department"]).value

        check_slot = any(
            name in fields and fields[name] != getattr(appointment, name) for name in SLOT_FIELDS
        )
        if check_slot:
            if appointment.status.is_terminal:
                raise ValidationException(
                    f"Cannot reschedule a {appointment.status.value} appointment"
                )
            new_date = fields.get("appointment_date", appointment.appointment_date)
            if new_date < date.today():
                raise ValidationException("Cannot book an appointment for a past date")

        updated = await self.store.update_details(
            appointment_id, appointment.version, fields, check_slot=check_slot
        )
        logger.info(
            "appointment_details_updated",
            appointment_id=appointment_id,
            fields=sorted(fields),
            rescheduled=check_slot,
        )
        if not check_slot:
            return WorkflowResult(appointment=updated)

        failures = await self.dispatcher.dispatch(updated, [SideEffect.NOTIFY_DETAILS_UPDATED])
        return WorkflowResult(
            appointment=updated,
            warnings=[failure.message for failure in failures],
        )

    # ------------------------------------------------------------------
    # Scheduled emails
    # ------------------------------------------------------------------

    async def send_reminders(
        self, actor: Actor | None = None, for_date: date | None = None
    ) -> NotificationRunResult:
        """
        Email a reminder for every appointment on ``for_date`` (default tomorrow).

        Appointments are flagged ``reminder_sent`` only when their email went
        out, so a failed one is retried by the next run. ``actor`` is None for
        the scheduled job.
        """
        if actor is not None:
            require_staff(actor, "send reminders")
        day = for_date or date.today() + timedelta(days=1)
        due = await self.store.list_reminders_due(day)
        logger.info("reminder_run_started", appointment_date=day.isoformat(), due=len(due))

        result = NotificationRunResult()
        for appointment in due:
            failures = await self.dispatcher.dispatch(
                appointment, [SideEffect.NOTIFY_APPOINTMENT_REMINDER]
            )
            if failures:
                result.failed_ids.append(appointment.id)
                result.warnings.extend(failure.message for failure in failures)
                continue
            await self.store.mark_reminder_sent(appointment.id)
            result.sent_ids.append(appointment.id)

        logger.info(
            "reminder_run_finished",
            appointment_date=day.isoformat(),
            sent=len(result.sent_ids),
            failed=len(result.failed_ids),
        )
        return result

    async def resend_confirmations(self, actor: Actor | None = None) -> NotificationRunResult:
        """Retry booking confirmations that did not go out when the booking was made."""
        if actor is not None:
            require_staff(actor, "resend confirmations")
        pending = await self.store.list_unsent_confirmations()

        result = NotificationRunResult()
        for appointment in pending:
            failures = await self.dispatcher.dispatch(
                appointment, [SideEffect.NOTIFY_BOOKING_RECEIVED]
            )
            if failures:
                result.failed_ids.append(appointment.id)
                result.warnings.extend(failure.message for failure in failures)
                continue
            await self.store.mark_email_sent(appointment.id)
            result.sent_ids.append(appointment.id)

        if pending:
            logger.info(
                "confirmation_resend_finished",
                sent=len(result.sent_ids),
                failed=len(result.failed_ids),
            )
        return result

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _patient_email(self, actor: Actor) -> str:
        if actor.role != Role.PATIENT:
            raise ForbiddenException("Only patients have personal appointments")
        user = await self.store.get_user(actor.user_id)
        if user is None:
            raise NotFoundException(f"User not found with ID: {actor.user_id}")
        return user.email

    async def my_appointments(self, actor: Actor) -> list[Appointment]:
        """Appointments booked under the calling patient's email."""
        return await self.store.list_for_patient(await self._patient_email(actor))

    async def my_medical_history(self, actor: Actor) -> list[Appointment]:
        """Completed visits of the calling patient, newest first."""
        return await self.store.list_for_patient(
            await self._patient_email(actor), [AppointmentStatus.COMPLETED]
        )

    async def get(self, appointment_id: int, actor: Actor) -> Appointment:
        """Get an appointment visible to the actor."""
        appointment = await self.store.get(appointment_id)
        if actor.is_staff:
            return appointment
        if actor.role == Role.DOCTOR and appointment.doctor_id == actor.user_id:
            return appointment
        raise ForbiddenException("Not allowed to view this appointment")

    async def list_appointments(
        self, filters: AppointmentFilters, actor: Actor
    ) -> AppointmentListResponse:
        """List appointments for the dashboard."""
        require_staff(actor, "list appointments")
        total, items = await self.store.list_appointments(filters)
        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def search(self, term: str, actor: Actor) -> list[Appointment]:
        """Search appointments by patient contact details."""
        require_staff(actor, "search appointments")
        if not term.strip():
            return []
        return await self.store.search(term)

    async def stats(self, actor: Actor) -> AppointmentStats:
        """Dashboard counters."""
        require_staff(actor, "view appointment statistics")
        return await self.store.stats(date.today())

    async def my_patients(self, actor: Actor) -> list[Appointment]:
        """Appointments assigned to the calling doctor."""
        if actor.role != Role.DOCTOR:
            raise ForbiddenException("Only doctors have assigned patients")
        return await self.store.list_for_doctor(actor.user_id)

    async def pending_my_approval(self, actor: Actor) -> list[Appointment]:
        """Appointments waiting for the calling doctor's answer."""
        if actor.role != Role.DOCTOR:
            raise ForbiddenException("Only doctors approve appointments")
        return await self.store.list_for_doctor(
            actor.user_id, [AppointmentStatus.AWAITING_DOCTOR_APPROVAL]
        )

    async def allowed_transitions(self, appointment_id: int, actor: Actor) -> AllowedTransitions:
        """Statuses the actor may move the appointment to."""
        appointment = await self.store.get(appointment_id)
        return AllowedTransitions(
            appointment_id=appointment.id,
            status=appointment.status,
            allowed=allowed_targets(appointment.status, actor, appointment.doctor_id),
        )

    async def eligible_doctors(self, appointment_id: int, actor: Actor) -> list[Doctor]:
        """Doctors able to take the appointment's department."""
        require_staff(actor, "assign doctors")
        appointment = await self.store.get(appointment_id)
        return await self.doctors.list_eligible(appointment.department)

    async def eligible_doctors_for_department(
        self, department: MedicalSpecialty, actor: Actor
    ) -> list[Doctor]:
        """Doctors able to take appointments in a department."""
        require_staff(actor, "assign doctors")
        return await self.doctors.list_eligible(department.value)

    async def list_doctors(self, actor: Actor) -> list[Doctor]:
        """Active doctor roster."""
        require_staff(actor, "list doctors")
        return await self.store.list_doctors()

    @staticmethod
    def departments() -> list[DepartmentInfo]:
        """Departments patients can book."""
        return [
            DepartmentInfo(code=specialty.value, name=specialty.display_name)
            for specialty in MedicalSpecialty
        ]

"""Appointment endpoints."""

from datetime import date, time

from fastapi import APIRouter, Query, status

from clinic_backend.dependencies import BulkCoordinator, CurrentActor, WorkflowService
from clinic_backend.schemas.appointments import (
    AllowedTransitions,
    Appointment,
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStats,
    AppointmentStatus,
    AppointmentUpdate,
    AssignDoctorRequest,
    BulkOperationRequest,
    BulkOperationResult,
    CancelRequest,
    DoctorAcceptRequest,
    DoctorDeclineRequest,
    NotificationRunResult,
    PaymentRequest,
    SlotAvailability,
    WorkflowResult,
)
from clinic_backend.schemas.users import DepartmentInfo, Doctor, MedicalSpecialty

router = APIRouter()


# ----------------------------------------------------------------------
# Public booking
# ----------------------------------------------------------------------


@router.post(
    "/public",
    response_model=WorkflowResult,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment",
)
async def create_public_appointment(
    data: AppointmentCreate,
    service: WorkflowService,
) -> WorkflowResult:
    """
    Create a PENDING appointment from the public booking form.

    Args:
        data: Patient details and requested slot
        service: Workflow service

    Returns:
        Created appointment, with a warning if the confirmation email failed
    """
    return await service.create_booking(data)


@router.get(
    "/public/availability",
    response_model=SlotAvailability,
    summary="Check slot availability",
)
async def check_availability(
    service: WorkflowService,
    appointment_date: date = Query(..., alias="date"),
    appointment_time: time = Query(..., alias="time"),
    department: MedicalSpecialty = Query(...),
) -> SlotAvailability:
    """Answer whether a date/time/department slot can take another booking."""
    return await service.check_availability(appointment_date, appointment_time, department)


@router.get(
    "/public/departments",
    response_model=list[DepartmentInfo],
    summary="List bookable departments",
)
async def list_departments(service: WorkflowService) -> list[DepartmentInfo]:
    """List department codes with their display names."""
    return service.departments()


# ----------------------------------------------------------------------
# Dashboard reads
# ----------------------------------------------------------------------


@router.get(
    "",
    response_model=AppointmentListResponse,
    summary="List appointments",
)
async def list_appointments(
    current_actor: CurrentActor,
    service: WorkflowService,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    department: MedicalSpecialty | None = Query(None),
    doctor_id: int | None = Query(None),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        current_actor: Authenticated staff member
        service: Workflow service
        status_filter: Filter by status (legacy NEEDS_PAYMENT accepted)
        department: Filter by department
        doctor_id: Filter by assigned doctor
        from_date: Earliest appointment date
        to_date: Latest appointment date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        department=department,
        doctor_id=doctor_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return await service.list_appointments(filters, current_actor)


@router.get("/search", response_model=list[Appointment], summary="Search appointments")
async def search_appointments(
    current_actor: CurrentActor,
    service: WorkflowService,
    q: str = Query(..., min_length=1, max_length=100),
) -> list[Appointment]:
    """Search by patient name, email or phone."""
    return await service.search(q, current_actor)


@router.get("/stats", response_model=AppointmentStats, summary="Appointment statistics")
async def appointment_stats(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> AppointmentStats:
    """Totals by status and for today."""
    return await service.stats(current_actor)


@router.get("/my-patients", response_model=list[Appointment], summary="Doctor's appointments")
async def my_patients(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Appointment]:
    """Appointments assigned to the calling doctor."""
    return await service.my_patients(current_actor)


@router.get(
    "/pending-my-approval",
    response_model=list[Appointment],
    summary="Appointments awaiting the doctor's answer",
)
async def pending_my_approval(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Appointment]:
    """Appointments the calling doctor still has to accept or decline."""
    return await service.pending_my_approval(current_actor)


@router.get(
    "/my-appointments", response_model=list[Appointment], summary="Patient's appointments"
)
async def my_appointments(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Appointment]:
    """Appointments booked under the calling patient's email."""
    return await service.my_appointments(current_actor)


@router.get(
    "/my-medical-history", response_model=list[Appointment], summary="Patient's completed visits"
)
async def my_medical_history(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Appointment]:
    """Completed appointments of the calling patient, newest first."""
    return await service.my_medical_history(current_actor)


# ----------------------------------------------------------------------
# Scheduled emails
# ----------------------------------------------------------------------


@router.post(
    "/reminders/send",
    response_model=NotificationRunResult,
    summary="Send appointment reminders",
)
async def send_reminders(
    current_actor: CurrentActor,
    service: WorkflowService,
    for_date: date | None = Query(None, alias="date"),
) -> NotificationRunResult:
    """Email reminders for appointments on ``date`` (default tomorrow)."""
    return await service.send_reminders(current_actor, for_date)


@router.post(
    "/confirmations/resend",
    response_model=NotificationRunResult,
    summary="Retry unsent booking confirmations",
)
async def resend_confirmations(
    current_actor: CurrentActor,
    service: WorkflowService,
) -> NotificationRunResult:
    """Send booking confirmations that failed when the booking was made."""
    return await service.resend_confirmations(current_actor)


# ----------------------------------------------------------------------
# Bulk
# ----------------------------------------------------------------------


@router.post(
    "/bulk",
    response_model=BulkOperationResult,
    summary="Apply an operation to many appointments",
)
async def bulk_operation(
    data: BulkOperationRequest,
    current_actor: CurrentActor,
    coordinator: BulkCoordinator,
) -> BulkOperationResult:
    """
    Apply one operation to a set of appointments.

    Each appointment succeeds or fails on its own; the response lists both
    groups plus any emails that could not be sent.
    """
    return await coordinator.bulk_apply(data, current_actor)


# ----------------------------------------------------------------------
# Single appointment
# ----------------------------------------------------------------------


@router.get("/{appointment_id}", response_model=Appointment, summary="Get appointment by ID")
async def get_appointment(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> Appointment:
    """
    Get a specific appointment by ID.

    Raises:
        NotFoundException: If appointment not found
        ForbiddenException: If the caller may not view it
    """
    return await service.get(appointment_id, current_actor)


@router.put(
    "/{appointment_id}", response_model=WorkflowResult, summary="Update appointment details"
)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """
    Edit patient details, slot or notes. Status changes use the workflow endpoints.

    Moving the appointment to another slot emails the patient; a failed email
    is reported in ``warnings``.
    """
    return await service.update_details(appointment_id, data, current_actor)


@router.delete(
    "/{appointment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Permanently delete appointment",
)
async def delete_appointment(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> None:
    """Hard delete, regardless of status. Staff and admin only."""
    await service.hard_delete(appointment_id, current_actor)


@router.get(
    "/{appointment_id}/transitions",
    response_model=AllowedTransitions,
    summary="Statuses the caller may move the appointment to",
)
async def get_allowed_transitions(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> AllowedTransitions:
    """List the transitions available to the caller."""
    return await service.allowed_transitions(appointment_id, current_actor)


@router.get(
    "/{appointment_id}/eligible-doctors",
    response_model=list[Doctor],
    summary="Doctors eligible for the appointment",
)
async def eligible_doctors(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> list[Doctor]:
    """Active doctors matching the appointment's department."""
    return await service.eligible_doctors(appointment_id, current_actor)


@router.put(
    "/{appointment_id}/assign-doctor",
    response_model=WorkflowResult,
    summary="Assign a doctor",
)
async def assign_doctor(
    appointment_id: int,
    data: AssignDoctorRequest,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Assign a doctor to a pending appointment and ask for their approval."""
    return await service.assign_doctor(appointment_id, data.doctor_id, current_actor)


@router.put(
    "/{appointment_id}/doctor-accept",
    response_model=WorkflowResult,
    summary="Doctor accepts the appointment",
)
async def doctor_accept(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
    data: DoctorAcceptRequest | None = None,
) -> WorkflowResult:
    """Confirm the appointment as its assigned doctor."""
    note = data.response if data else None
    return await service.doctor_respond(appointment_id, True, note, current_actor)


@router.put(
    "/{appointment_id}/doctor-decline",
    response_model=WorkflowResult,
    summary="Doctor declines the appointment",
)
async def doctor_decline(
    appointment_id: int,
    data: DoctorDeclineRequest,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Decline the assignment; the appointment returns to PENDING."""
    return await service.doctor_respond(appointment_id, False, data.reason, current_actor)


@router.put(
    "/{appointment_id}/request-payment",
    response_model=WorkflowResult,
    summary="Request payment",
)
async def request_payment(
    appointment_id: int,
    data: PaymentRequest,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Ask the patient to pay for a confirmed appointment."""
    return await service.request_payment(appointment_id, data.amount, current_actor)


@router.put("/{appointment_id}/mark-paid", response_model=WorkflowResult, summary="Mark as paid")
async def mark_paid(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Record the payment."""
    return await service.mark_paid(appointment_id, current_actor)


@router.put("/{appointment_id}/complete", response_model=WorkflowResult, summary="Complete")
async def complete_appointment(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Complete a paid appointment and provision the patient account."""
    return await service.complete(appointment_id, current_actor)


@router.put("/{appointment_id}/no-show", response_model=WorkflowResult, summary="Mark no-show")
async def mark_no_show(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Record that the patient did not attend."""
    return await service.mark_no_show(appointment_id, current_actor)


@router.put("/{appointment_id}/cancel", response_model=WorkflowResult, summary="Cancel")
async def cancel_appointment(
    appointment_id: int,
    data: CancelRequest,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Cancel with a reason and notify the patient."""
    return await service.cancel(appointment_id, data.reason, current_actor)


@router.post(
    "/{appointment_id}/create-account",
    response_model=WorkflowResult,
    summary="Create the patient's account",
)
async def create_patient_account(
    appointment_id: int,
    current_actor: CurrentActor,
    service: WorkflowService,
) -> WorkflowResult:
    """Ensure a patient account exists for the appointment's email."""
    return await service.create_account(appointment_id, current_actor)

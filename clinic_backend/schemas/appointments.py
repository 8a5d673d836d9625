"""Appointment schemas for request/response validation."""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_serializer, field_validator

from clinic_backend.schemas.users import MedicalSpecialty, ProvisioningResult

# Status name used by older rows and clients for PAYMENT_REQUESTED
LEGACY_PAYMENT_STATUS = "NEEDS_PAYMENT"


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "PENDING"
    AWAITING_DOCTOR_APPROVAL = "AWAITING_DOCTOR_APPROVAL"
    CONFIRMED = "CONFIRMED"
    PAYMENT_REQUESTED = "PAYMENT_REQUESTED"
    PAID = "PAID"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"

    @classmethod
    def _missing_(cls, value: object) -> "AppointmentStatus | None":
        if isinstance(value, str):
            normalized = value.strip().upper()
            if normalized == LEGACY_PAYMENT_STATUS:
                return cls.PAYMENT_REQUESTED
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        """Terminal states have no outgoing transitions."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
    }
)

# Statuses in which doctor_id may be set
DOCTOR_ASSIGNED_STATUSES = frozenset(
    {
        AppointmentStatus.AWAITING_DOCTOR_APPROVAL,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.PAYMENT_REQUESTED,
        AppointmentStatus.PAID,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    }
)

# Statuses that get a reminder the day before the visit
REMINDER_STATUSES = (
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.PAYMENT_REQUESTED,
    AppointmentStatus.PAID,
)


def _validate_phone(v: str) -> str:
    cleaned = v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
    if not cleaned.isdigit():
        raise ValueError("Phone number must contain only digits and separators")
    if len(cleaned) < 7:
        raise ValueError("Phone number must have at least 7 digits")
    return v


class AppointmentBase(BaseModel):
    """Base appointment schema with patient-supplied fields."""

    full_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=7, max_length=20)
    email: str | None = Field(None, max_length=100)
    department: MedicalSpecialty
    appointment_date: date
    appointment_time: time
    reason: str | None = Field(None, max_length=1000)

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Validate phone number format."""
        return _validate_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        """Blank emails are treated as absent."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class AppointmentCreate(AppointmentBase):
    """Schema for a public booking request."""


class AppointmentUpdate(BaseModel):
    """Schema for staff edits of non-workflow fields."""

    full_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, min_length=7, max_length=20)
    email: str | None = Field(None, max_length=100)
    department: MedicalSpecialty | None = None
    appointment_date: date | None = None
    appointment_time: time | None = None
    reason: str | None = Field(None, max_length=1000)
    notes: str | None = Field(None, max_length=500)

    @field_validator(
        "full_name", "phone", "department", "appointment_date", "appointment_time"
    )
    @classmethod
    def reject_clearing(cls, v: object) -> object:
        """Required appointment fields may be changed but not cleared."""
        if v is None:
            raise ValueError("Field cannot be null")
        return v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        return _validate_phone(v) if v is not None else v


class Appointment(AppointmentBase):
    """Appointment as stored."""

    id: int
    department: str
    status: AppointmentStatus
    doctor_id: int | None = None
    notes: str | None = None
    doctor_response: str | None = None
    doctor_notified_at: datetime | None = None
    doctor_responded_at: datetime | None = None
    payment_requested: bool = False
    payment_completed: bool = False
    payment_amount: Decimal | None = None
    payment_requested_at: datetime | None = None
    payment_completed_at: datetime | None = None
    email_sent: bool = False
    reminder_sent: bool = False
    cancellation_reason: str | None = None
    cancelled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    version: int = 1

    model_config = {"from_attributes": True}

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        """Stored rows are not re-validated."""
        return v

    @field_serializer("payment_amount", when_used="json")
    def serialize_decimal(self, value: Decimal | None) -> float | None:
        """Serialize Decimal to float for JSON."""
        return float(value) if value is not None else None


class AssignDoctorRequest(BaseModel):
    """Staff assigns a doctor to a pending appointment."""

    doctor_id: int


class DoctorAcceptRequest(BaseModel):
    """Doctor accepts an assignment."""

    response: str | None = Field(None, max_length=500)


class DoctorDeclineRequest(BaseModel):
    """Doctor declines an assignment."""

    reason: str = Field("", max_length=500)


class PaymentRequest(BaseModel):
    """Staff requests payment for a confirmed appointment."""

    amount: float


class CancelRequest(BaseModel):
    """Cancellation with a mandatory reason."""

    reason: str = Field("", max_length=500)


class WorkflowResult(BaseModel):
    """Result of a single workflow operation."""

    appointment: Appointment
    noop: bool = False
    warnings: list[str] = Field(default_factory=list)
    account: ProvisioningResult | None = None


class SlotAvailability(BaseModel):
    """Slot availability answer."""

    available: bool
    reason: str | None = None
    booked: int = 0
    capacity: int = 0


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    department: MedicalSpecialty | None = None
    doctor_id: int | None = None
    from_date: date | None = None
    to_date: date | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[Appointment]


class AppointmentStats(BaseModel):
    """Dashboard counters."""

    total: int
    today: int
    by_status: dict[str, int]


class NotificationRunResult(BaseModel):
    """Outcome of a batch email run such as the daily reminders."""

    sent_ids: list[int] = Field(default_factory=list)
    failed_ids: list[int] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class AllowedTransitions(BaseModel):
    """Statuses the caller may move an appointment to."""

    appointment_id: int
    status: AppointmentStatus
    allowed: list[AppointmentStatus]


class BulkOperation(str, Enum):
    """Operations supported by the bulk endpoint."""

    CANCEL = "cancel"
    MARK_PAID = "mark_paid"
    REQUEST_PAYMENT = "request_payment"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"
    CREATE_ACCOUNTS = "create_accounts"
    HARD_DELETE = "hard_delete"


class BulkOperationRequest(BaseModel):
    """Bulk operation request."""

    ids: list[int] = Field(..., min_length=1, max_length=500)
    operation: BulkOperation
    reason: str | None = Field(None, max_length=500)
    amount: float | None = None


class BulkItemError(BaseModel):
    """Failure of one bulk item."""

    id: int
    error: str
    message: str


class BulkOperationResult(BaseModel):
    """Aggregate outcome of one bulk invocation."""

    operation: BulkOperation
    requested: int
    succeeded_ids: list[int] = Field(default_factory=list)
    failed_ids: list[int] = Field(default_factory=list)
    errors: list[BulkItemError] = Field(default_factory=list)
    notification_failures: list[BulkItemError] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def succeeded(self) -> int:
        """Number of items whose operation committed."""
        return len(self.succeeded_ids)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed(self) -> int:
        """Number of items that were left unchanged."""
        return len(self.failed_ids)

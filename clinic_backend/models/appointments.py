"""Appointments table model using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    Time,
    false,
    func,
    text,
)

from clinic_backend.models.users import metadata

appointments = Table(
    "appointments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Patient-supplied booking fields
    Column("full_name", String(100), nullable=False),
    Column("phone", String(20), nullable=False),
    Column("email", String(100), nullable=True, index=True),
    Column("department", String(50), nullable=False),
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", Time, nullable=False),
    Column("reason", Text, nullable=True),
    # Status management
    Column("status", String(40), nullable=False, server_default=text("'PENDING'")),
    Column(
        "doctor_id",
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    ),
    Column("notes", Text, nullable=True),
    Column("doctor_response", Text, nullable=True),
    Column("doctor_notified_at", DateTime(timezone=True), nullable=True),
    Column("doctor_responded_at", DateTime(timezone=True), nullable=True),
    # Payment
    Column("payment_requested", Boolean, nullable=False, server_default=false()),
    Column("payment_completed", Boolean, nullable=False, server_default=false()),
    Column("payment_amount", Numeric(14, 2), nullable=True),
    Column("payment_requested_at", DateTime(timezone=True), nullable=True),
    Column("payment_completed_at", DateTime(timezone=True), nullable=True),
    # Notification bookkeeping
    Column("email_sent", Boolean, nullable=False, server_default=false()),
    Column("reminder_sent", Boolean, nullable=False, server_default=false()),
    # Cancellation
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_at", DateTime(timezone=True), nullable=True),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    # Bumped on every write; used by compare-and-swap updates
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Constraints
    CheckConstraint(
        "status IN ('PENDING', 'AWAITING_DOCTOR_APPROVAL', 'CONFIRMED', 'PAYMENT_REQUESTED', "
        "'NEEDS_PAYMENT', 'PAID', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "doctor_id IS NULL OR status IN ('AWAITING_DOCTOR_APPROVAL', 'CONFIRMED', "
        "'PAYMENT_REQUESTED', 'NEEDS_PAYMENT', 'PAID', 'COMPLETED', 'NO_SHOW')",
        name="appointments_doctor_status_check",
    ),
    CheckConstraint(
        "payment_amount IS NULL OR payment_requested",
        name="appointments_payment_amount_check",
    ),
    Index("ix_appointments_slot", "appointment_date", "appointment_time", "department"),
)

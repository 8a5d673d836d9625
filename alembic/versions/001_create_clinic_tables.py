"""Create users and appointments tables

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create users and appointments tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(100), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'PATIENT'")),
        sa.Column("specialty", sa.String(50), nullable=True),
        sa.Column("hashed_password", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "role IN ('ADMIN', 'STAFF', 'DOCTOR', 'PATIENT')",
            name="users_role_check",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_specialty", "users", ["specialty"], unique=False)

    op.create_table(
        "appointments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("full_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("email", sa.String(100), nullable=True),
        sa.Column("department", sa.String(50), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.Time(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("status", sa.String(40), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column(
            "doctor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("doctor_response", sa.Text(), nullable=True),
        sa.Column("doctor_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("doctor_responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("payment_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("email_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.CheckConstraint(
            "status IN ('PENDING', 'AWAITING_DOCTOR_APPROVAL', 'CONFIRMED', 'PAYMENT_REQUESTED', "
            "'NEEDS_PAYMENT', 'PAID', 'COMPLETED', 'CANCELLED', 'NO_SHOW')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "doctor_id IS NULL OR status IN ('AWAITING_DOCTOR_APPROVAL', 'CONFIRMED', "
            "'PAYMENT_REQUESTED', 'NEEDS_PAYMENT', 'PAID', 'COMPLETED', 'NO_SHOW')",
            name="appointments_doctor_status_check",
        ),
        sa.CheckConstraint(
            "payment_amount IS NULL OR payment_requested",
            name="appointments_payment_amount_check",
        ),
    )

    # Create indexes
    op.create_index("ix_appointments_email", "appointments", ["email"], unique=False)
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"], unique=False)
    op.create_index(
        "ix_appointments_slot",
        "appointments",
        ["appointment_date", "appointment_time", "department"],
        unique=False,
    )


def downgrade() -> None:
    """Drop appointments and users tables."""
    op.drop_index("ix_appointments_slot", table_name="appointments")
    op.drop_index("ix_appointments_doctor_id", table_name="appointments")
    op.drop_index("ix_appointments_email", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_users_specialty", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

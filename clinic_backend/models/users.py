"""User model definition using SQLAlchemy Core."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    text,
    true,
)

# Metadata shared by all tables
metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    # Natural key for patient matching, always stored lower-cased
    Column("email", String(100), nullable=False, unique=True, index=True),
    Column("full_name", Text, nullable=False),
    Column("phone", String(20)),
    Column("role", String(20), nullable=False, server_default=text("'PATIENT'")),
    # Medical specialty code, doctors only
    Column("specialty", String(50), nullable=True, index=True),
    Column("hashed_password", Text, nullable=True),
    # Account state
    Column("is_active", Boolean, nullable=False, server_default=true()),
    # Audit
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "role IN ('ADMIN', 'STAFF', 'DOCTOR', 'PATIENT')",
        name="users_role_check",
    ),
)

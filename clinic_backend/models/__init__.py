"""Database models."""

from clinic_backend.models.appointments import appointments
from clinic_backend.models.users import metadata, users

__all__ = [
    "appointments",
    "metadata",
    "users",
]

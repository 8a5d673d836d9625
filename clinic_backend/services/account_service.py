"""Patient account provisioning."""

import structlog

from clinic_backend.core.exceptions import ConflictException
from clinic_backend.core.security import get_password_hash
from clinic_backend.schemas.appointments import Appointment
from clinic_backend.schemas.users import ProvisioningResult, Role
from clinic_backend.services.appointment_store import AppointmentStore, normalize_email

logger = structlog.get_logger(__name__)


class AccountProvisioner:
    """Creates patient accounts for appointments on demand."""

    def __init__(self, store: AppointmentStore, default_password: str):
        """Initialize provisioner with the store and initial password."""
        self.store = store
        self.default_password = default_password

    async def ensure_patient_account(self, appointment: Appointment) -> ProvisioningResult:
        """
        Make sure a user account exists for the appointment's email.

        Idempotent: repeated or concurrent calls for the same email create at
        most one account. The email uniqueness constraint decides races; the
        lookup only saves a failed insert in the common case.

        Args:
            appointment: Appointment whose contact details seed the account

        Returns:
            Provisioning outcome; ``created`` is False when the account already
            existed or the appointment has no email
        """
        if not appointment.email:
            return ProvisioningResult(
                created=False,
                message="Appointment has no email; no account created",
            )

        email = normalize_email(appointment.email)
        existing = await self.store.find_user_by_email(email)
        if existing is not None:
            return ProvisioningResult(
                created=False,
                user_id=existing.id,
                email=email,
                message="Account with this email already exists",
            )

        try:
            user = await self.store.create_user(
                {
                    "email": email,
                    "full_name": appointment.full_name,
                    "phone": appointment.phone,
                    "role": Role.PATIENT,
                    "hashed_password": get_password_hash(self.default_password),
                    "is_active": True,
                }
            )
        except ConflictException:
            winner = await self.store.find_user_by_email(email)
            logger.info(
                "patient_account_created_concurrently",
                appointment_id=appointment.id,
                email=email,
            )
            return ProvisioningResult(
                created=False,
                user_id=winner.id if winner else None,
                email=email,
                message="Account with this email already exists",
            )

        logger.info(
            "patient_account_created",
            appointment_id=appointment.id,
            user_id=user.id,
        )
        return ProvisioningResult(
            created=True,
            user_id=user.id,
            email=email,
            message="Patient account created",
        )

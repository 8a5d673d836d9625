"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_backend.config import Settings, get_settings
from clinic_backend.core.security import decode_access_token
from clinic_backend.database import AsyncSessionLocal
from clinic_backend.schemas.users import Actor
from clinic_backend.services.account_service import AccountProvisioner
from clinic_backend.services.appointment_service import AppointmentWorkflowService
from clinic_backend.services.appointment_store import AppointmentStore
from clinic_backend.services.bulk_service import BulkOperationCoordinator
from clinic_backend.services.doctor_service import DoctorService
from clinic_backend.services.notification_service import (
    NotificationDispatcher,
    Notifier,
    build_notifier,
)

# Security
security = HTTPBearer()

_notifier: Notifier | None = None


def get_app_settings() -> Settings:
    """Settings dependency, overridable in tests."""
    return get_settings()


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory used by the appointment store."""
    return AsyncSessionLocal


def get_notifier(
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> Notifier:
    """Process-wide email transport."""
    global _notifier
    if _notifier is None:
        _notifier = build_notifier(settings)
    return _notifier


def get_store(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AppointmentStore:
    """Appointment store bound to the session factory."""
    return AppointmentStore(session_factory, slot_capacity=settings.slot_capacity)


def get_workflow_service(
    store: Annotated[AppointmentStore, Depends(get_store)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> AppointmentWorkflowService:
    """Wire the workflow service and its collaborators."""
    return AppointmentWorkflowService(
        store=store,
        dispatcher=NotificationDispatcher.from_settings(notifier, settings),
        provisioner=AccountProvisioner(store, settings.default_patient_password),
        doctors=DoctorService(store),
    )


def get_bulk_coordinator(
    workflow: Annotated[AppointmentWorkflowService, Depends(get_workflow_service)],
    settings: Annotated[Settings, Depends(get_app_settings)],
) -> BulkOperationCoordinator:
    """Bulk coordinator with the configured fan-out limit."""
    return BulkOperationCoordinator(workflow, max_concurrency=settings.bulk_max_concurrency)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> int:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    token = credentials.credentials
    payload = decode_access_token(token)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str = payload.get("sub")
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return int(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_actor(
    user_id: Annotated[int, Depends(get_current_user_id)],
    store: Annotated[AppointmentStore, Depends(get_store)],
) -> Actor:
    """
    Load the calling user and reduce it to an actor.

    Raises:
        HTTPException: If user not found or inactive
    """
    user = await store.get_user(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    return Actor(user_id=user.id, role=user.role)


# Type aliases for dependency injection
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
WorkflowService = Annotated[AppointmentWorkflowService, Depends(get_workflow_service)]
BulkCoordinator = Annotated[BulkOperationCoordinator, Depends(get_bulk_coordinator)]

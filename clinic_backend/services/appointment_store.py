"""Appointment store backed by SQLAlchemy Core.

Each call opens its own session so concurrent callers (bulk operations in
particular) never share one. Status writes are compare-and-swap updates
guarded by the status the caller last read.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, time
from typing import Any

import structlog
from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clinic_backend.core.exceptions import (
    ConflictException,
    ExternalServiceException,
    NotFoundException,
)
from clinic_backend.models.appointments import appointments
from clinic_backend.models.users import users
from clinic_backend.schemas.appointments import (
    DOCTOR_ASSIGNED_STATUSES,
    LEGACY_PAYMENT_STATUS,
    REMINDER_STATUSES,
    Appointment,
    AppointmentFilters,
    AppointmentStats,
    AppointmentStatus,
    SlotAvailability,
)
from clinic_backend.schemas.users import Doctor, Role, User
from clinic_backend.services.availability_service import evaluate_slot

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    """Current UTC time."""
    return datetime.now(UTC)


def normalize_email(email: str) -> str:
    """Emails are matched case-insensitively."""
    return email.strip().lower()


def _status_values(status: AppointmentStatus) -> list[str]:
    if status == AppointmentStatus.PAYMENT_REQUESTED:
        return [status.value, LEGACY_PAYMENT_STATUS]
    return [status.value]


class AppointmentStore:
    """Persistence for appointments and the user directory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        slot_capacity: int = 3,
    ):
        """Initialize store with a session factory and per-slot capacity."""
        self.session_factory = session_factory
        self.slot_capacity = slot_capacity

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except IntegrityError as e:
            logger.info("appointment_store_constraint_violation", error=str(e.orig))
            raise ConflictException("Change conflicts with existing data") from e
        except (SQLAlchemyError, OSError) as e:
            logger.error("appointment_store_unavailable", error=str(e))
            raise ExternalServiceException("Appointment store unavailable") from e

    @staticmethod
    async def _fetch(session: AsyncSession, appointment_id: int) -> Appointment | None:
        result = await session.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.mappings().first()
        return Appointment.model_validate(dict(row)) if row else None

    @staticmethod
    async def _count_slot(
        session: AsyncSession,
        appointment_date: date,
        appointment_time: time,
        department: str,
        exclude_id: int | None = None,
    ) -> int:
        conditions = [
            appointments.c.appointment_date == appointment_date,
            appointments.c.appointment_time == appointment_time,
            appointments.c.department == department,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
        ]
        if exclude_id is not None:
            conditions.append(appointments.c.id != exclude_id)

        stmt = select(func.count()).select_from(appointments).where(and_(*conditions))
        result = await session.execute(stmt)
        return result.scalar() or 0

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    async def get(self, appointment_id: int) -> Appointment:
        """
        Get appointment by ID.

        Raises:
            NotFoundException: If appointment not found
        """
        async with self._transaction() as session:
            appointment = await self._fetch(session, appointment_id)

        if appointment is None:
            raise NotFoundException(f"Appointment not found with ID: {appointment_id}")
        return appointment

    async def check_availability(
        self,
        appointment_date: date,
        appointment_time: time,
        department: str,
        exclude_id: int | None = None,
    ) -> SlotAvailability:
        """Answer whether a slot can take one more appointment."""
        async with self._transaction() as session:
            booked = await self._count_slot(
                session, appointment_date, appointment_time, department, exclude_id
            )
        return evaluate_slot(booked, self.slot_capacity, appointment_date, date.today())

    async def create(self, fields: dict[str, Any]) -> Appointment:
        """
        Insert a new PENDING appointment if its slot still has room.

        The row is written first and the slot is re-counted inside the same
        transaction, so a full slot rolls the insert back.

        Raises:
            ConflictException: If the slot is unavailable
        """
        now = utcnow()
        values = {
            **fields,
            "status": AppointmentStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
            "version": 1,
        }

        async with self._transaction() as session:
            result = await session.execute(insert(appointments).values(**values))
            appointment_id = result.inserted_primary_key[0]
            booked = await self._count_slot(
                session,
                values["appointment_date"],
                values["appointment_time"],
                values["department"],
                exclude_id=appointment_id,
            )
            availability = evaluate_slot(
                booked, self.slot_capacity, values["appointment_date"], date.today()
            )
            if not availability.available:
                raise ConflictException(f"Time slot is not available: {availability.reason}")
            appointment = await self._fetch(session, appointment_id)

        logger.info("appointment_created", appointment_id=appointment_id)
        return appointment  # type: ignore[return-value]

    async def update_details(
        self,
        appointment_id: int,
        expected_version: int,
        fields: dict[str, Any],
        check_slot: bool = False,
    ) -> Appointment:
        """
        Update non-status fields guarded by the row version.

        Raises:
            NotFoundException: If appointment not found
            ConflictException: If the row changed since it was read or the
                new slot is unavailable
        """
        values = {**fields, "updated_at": utcnow(), "version": appointments.c.version + 1}

        async with self._transaction() as session:
            result = await session.execute(
                update(appointments)
                .where(
                    appointments.c.id == appointment_id,
                    appointments.c.version == expected_version,
                )
                .values(**values)
            )
            updated = result.rowcount
            appointment = await self._fetch(session, appointment_id)
            if appointment is None:
                raise NotFoundException(f"Appointment not found with ID: {appointment_id}")
            if updated == 0:
                raise ConflictException(
                    f"Appointment {appointment_id} was modified concurrently; reload and retry"
                )
            if check_slot:
                booked = await self._count_slot(
                    session,
                    appointment.appointment_date,
                    appointment.appointment_time,
                    appointment.department,
                    exclude_id=appointment_id,
                )
                availability = evaluate_slot(
                    booked, self.slot_capacity, appointment.appointment_date, date.today()
                )
                if not availability.available:
                    raise ConflictException(f"Time slot is not available: {availability.reason}")

        return appointment

    async def apply_transition(
        self,
        appointment_id: int,
        expected_status: AppointmentStatus,
        new_status: AppointmentStatus,
        fields: dict[str, Any] | None = None,
    ) -> Appointment:
        """
        Atomically move an appointment to ``new_status``.

        The write only happens if the stored status still equals
        ``expected_status``.

        Raises:
            NotFoundException: If appointment not found
            ConflictException: If the stored status changed since it was read
        """
        values = {
            **(fields or {}),
            "status": new_status.value,
            "updated_at": utcnow(),
            "version": appointments.c.version + 1,
        }
        if new_status not in DOCTOR_ASSIGNED_STATUSES:
            values["doctor_id"] = None

        async with self._transaction() as session:
            result = await session.execute(
                update(appointments)
                .where(
                    appointments.c.id == appointment_id,
                    appointments.c.status.in_(_status_values(expected_status)),
                )
                .values(**values)
            )
            updated = result.rowcount
            appointment = await self._fetch(session, appointment_id)

        if appointment is None:
            raise NotFoundException(f"Appointment not found with ID: {appointment_id}")

        if updated == 0:
            logger.info(
                "appointment_transition_conflict",
                appointment_id=appointment_id,
                expected_status=expected_status.value,
                actual_status=appointment.status.value,
            )
            raise ConflictException(
                f"Appointment {appointment_id} changed concurrently: expected status "
                f"{expected_status.value}, found {appointment.status.value}"
            )

        logger.info(
            "appointment_transitioned",
            appointment_id=appointment_id,
            from_status=expected_status.value,
            to_status=new_status.value,
        )
        return appointment

    async def mark_email_sent(self, appointment_id: int) -> None:
        """Record that the booking confirmation went out."""
        async with self._transaction() as session:
            await session.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(email_sent=True)
            )

    async def list_unsent_confirmations(self, limit: int = 200) -> list[Appointment]:
        """Bookings whose confirmation email has not gone out yet."""
        stmt = (
            select(appointments)
            .where(
                appointments.c.email_sent.is_(False),
                appointments.c.email.is_not(None),
                appointments.c.email != "",
                appointments.c.status != AppointmentStatus.CANCELLED.value,
            )
            .order_by(appointments.c.created_at, appointments.c.id)
            .limit(limit)
        )

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Appointment.model_validate(dict(row)) for row in rows]

    async def list_reminders_due(self, appointment_date: date) -> list[Appointment]:
        """Appointments on ``appointment_date`` that still need a reminder."""
        statuses = [value for status in REMINDER_STATUSES for value in _status_values(status)]
        stmt = (
            select(appointments)
            .where(
                appointments.c.appointment_date == appointment_date,
                appointments.c.reminder_sent.is_(False),
                appointments.c.email.is_not(None),
                appointments.c.email != "",
                appointments.c.status.in_(statuses),
            )
            .order_by(appointments.c.appointment_time, appointments.c.id)
        )

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Appointment.model_validate(dict(row)) for row in rows]

    async def mark_reminder_sent(self, appointment_id: int) -> None:
        """Record that the day-before reminder went out."""
        async with self._transaction() as session:
            await session.execute(
                update(appointments)
                .where(appointments.c.id == appointment_id)
                .values(reminder_sent=True)
            )

    async def list_for_patient(
        self,
        email: str,
        statuses: list[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        """Appointments booked under ``email``, matched case-insensitively."""
        stmt = select(appointments).where(
            func.lower(appointments.c.email) == normalize_email(email)
        )
        if statuses:
            values = [value for status in statuses for value in _status_values(status)]
            stmt = stmt.where(appointments.c.status.in_(values))
        stmt = stmt.order_by(
            appointments.c.appointment_date.desc(),
            appointments.c.appointment_time.desc(),
            appointments.c.id.desc(),
        )

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Appointment.model_validate(dict(row)) for row in rows]

    async def delete(self, appointment_id: int) -> None:
        """
        Permanently delete an appointment.

        Raises:
            NotFoundException: If appointment not found
        """
        async with self._transaction() as session:
            result = await session.execute(
                delete(appointments).where(appointments.c.id == appointment_id)
            )
            deleted = result.rowcount

        if deleted == 0:
            raise NotFoundException(f"Appointment not found with ID: {appointment_id}")
        logger.info("appointment_deleted", appointment_id=appointment_id)

    async def list_appointments(self, filters: AppointmentFilters) -> tuple[int, list[Appointment]]:
        """List appointments with filtering and pagination."""
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status.in_(_status_values(filters.status)))

        if filters.department:
            conditions.append(appointments.c.department == filters.department.value)

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_date >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_date <= filters.to_date)

        where = and_(*conditions) if conditions else None
        count_stmt = select(func.count()).select_from(appointments)
        stmt = select(appointments)
        if where is not None:
            count_stmt = count_stmt.where(where)
            stmt = stmt.where(where)

        offset = (filters.page - 1) * filters.page_size
        stmt = (
            stmt.order_by(
                appointments.c.appointment_date.desc(),
                appointments.c.appointment_time.desc(),
                appointments.c.id.desc(),
            )
            .limit(filters.page_size)
            .offset(offset)
        )

        async with self._transaction() as session:
            total = (await session.execute(count_stmt)).scalar() or 0
            rows = (await session.execute(stmt)).mappings().all()

        return total, [Appointment.model_validate(dict(row)) for row in rows]

    async def search(self, term: str, limit: int = 100) -> list[Appointment]:
        """Search appointments by patient name, email or phone."""
        pattern = f"%{term.strip()}%"
        stmt = (
            select(appointments)
            .where(
                or_(
                    appointments.c.full_name.ilike(pattern),
                    appointments.c.email.ilike(pattern),
                    appointments.c.phone.like(pattern),
                )
            )
            .order_by(appointments.c.appointment_date.desc(), appointments.c.id.desc())
            .limit(limit)
        )

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Appointment.model_validate(dict(row)) for row in rows]

    async def list_for_doctor(
        self,
        doctor_id: int,
        statuses: list[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        """Appointments assigned to a doctor, optionally limited to some statuses."""
        stmt = select(appointments).where(appointments.c.doctor_id == doctor_id)
        if statuses:
            values = [value for status in statuses for value in _status_values(status)]
            stmt = stmt.where(appointments.c.status.in_(values))
        stmt = stmt.order_by(appointments.c.appointment_date, appointments.c.appointment_time)

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Appointment.model_validate(dict(row)) for row in rows]

    async def stats(self, today: date) -> AppointmentStats:
        """Totals for the dashboard."""
        async with self._transaction() as session:
            total = (
                await session.execute(select(func.count()).select_from(appointments))
            ).scalar() or 0
            today_count = (
                await session.execute(
                    select(func.count())
                    .select_from(appointments)
                    .where(appointments.c.appointment_date == today)
                )
            ).scalar() or 0
            rows = (
                await session.execute(
                    select(appointments.c.status, func.count()).group_by(appointments.c.status)
                )
            ).all()

        by_status = {status.value: 0 for status in AppointmentStatus}
        for status, count in rows:
            by_status[AppointmentStatus(status).value] += count

        return AppointmentStats(total=total, today=today_count, by_status=by_status)

    # ------------------------------------------------------------------
    # User directory
    # ------------------------------------------------------------------

    async def get_user(self, user_id: int) -> User | None:
        """Get user by ID."""
        async with self._transaction() as session:
            result = await session.execute(select(users).where(users.c.id == user_id))
            row = result.mappings().first()
        return User.model_validate(dict(row)) if row else None

    async def find_user_by_email(self, email: str) -> User | None:
        """Get user by email, ignoring case."""
        async with self._transaction() as session:
            result = await session.execute(
                select(users).where(users.c.email == normalize_email(email))
            )
            row = result.mappings().first()
        return User.model_validate(dict(row)) if row else None

    async def create_user(self, fields: dict[str, Any]) -> User:
        """
        Create a user.

        Raises:
            ConflictException: If a user with the same email already exists
        """
        now = utcnow()
        values = {
            **fields,
            "email": normalize_email(fields["email"]),
            "created_at": now,
            "updated_at": now,
        }
        if isinstance(values.get("role"), Role):
            values["role"] = values["role"].value

        try:
            async with self._transaction() as session:
                result = await session.execute(insert(users).values(**values))
                user_id = result.inserted_primary_key[0]
                row = (
                    await session.execute(select(users).where(users.c.id == user_id))
                ).mappings().first()
        except ConflictException as e:
            raise ConflictException(f"User with email {values['email']} already exists") from e

        return User.model_validate(dict(row))

    async def list_doctors(self, active_only: bool = True) -> list[Doctor]:
        """Doctor roster."""
        stmt = select(users).where(users.c.role == Role.DOCTOR.value)
        if active_only:
            stmt = stmt.where(users.c.is_active == True)  # noqa: E712
        stmt = stmt.order_by(users.c.id)

        async with self._transaction() as session:
            rows = (await session.execute(stmt)).mappings().all()
        return [Doctor.model_validate(dict(row)) for row in rows]

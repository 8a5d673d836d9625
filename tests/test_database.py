"""Tests for the engine factory and store error mapping."""

from datetime import date, time, timedelta

import pytest
from sqlalchemy import text
from sqlalchemy.pool import NullPool

from clinic_backend.core.exceptions import ConflictException
from clinic_backend.database import create_engine_for
from clinic_backend.models import metadata
from clinic_backend.schemas.appointments import AppointmentStatus


@pytest.mark.asyncio
async def test_engine_overrides_replace_defaults(tmp_path) -> None:
    engine = create_engine_for(
        f"sqlite+aiosqlite:///{tmp_path / 'echo.db'}", poolclass=NullPool, echo=False
    )
    try:
        assert engine.echo is False
        async with engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
            foreign_keys = (await conn.execute(text("PRAGMA foreign_keys"))).scalar()
        assert foreign_keys == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_unknown_doctor_reference_is_a_conflict(store) -> None:
    with pytest.raises(ConflictException, match="conflicts with existing data"):
        await store.create(
            {
                "full_name": "Jane Patient",
                "phone": "0901234567",
                "email": "patient@example.com",
                "department": "CARDIOLOGY",
                "appointment_date": date.today() + timedelta(days=2),
                "appointment_time": time(9, 0),
                "doctor_id": 999,
            }
        )


@pytest.mark.asyncio
async def test_clearing_required_column_is_a_conflict(store, make_appointment) -> None:
    appointment = await make_appointment(AppointmentStatus.PENDING)

    with pytest.raises(ConflictException, match="conflicts with existing data"):
        await store.update_details(appointment.id, appointment.version, {"full_name": None})

    unchanged = await store.get(appointment.id)
    assert unchanged.full_name == "Jane Patient"
    assert unchanged.version == appointment.version


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("current", "target", "keeps_doctor"),
    [
        (AppointmentStatus.AWAITING_DOCTOR_APPROVAL, AppointmentStatus.PENDING, False),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, False),
        (AppointmentStatus.PAID, AppointmentStatus.COMPLETED, True),
    ],
)
async def test_transition_clears_doctor_outside_assigned_statuses(
    store, make_appointment, clinic_users, current, target, keeps_doctor
) -> None:
    appointment = await make_appointment(current, doctor_id=5)

    updated = await store.apply_transition(appointment.id, current, target)

    assert updated.status == target
    assert updated.doctor_id == (5 if keeps_doctor else None)

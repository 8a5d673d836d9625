"""Appointment status state machine.

Every entry point that changes an appointment's status consults
``validate_transition``; nothing else encodes which moves are legal. The
module performs no I/O and keeps no state.
"""

from dataclasses import dataclass
from enum import Enum

from clinic_backend.core.exceptions import InvalidTransitionException
from clinic_backend.schemas.appointments import TERMINAL_STATUSES, AppointmentStatus
from clinic_backend.schemas.users import Actor, Role


class SideEffect(str, Enum):
    """Post-commit actions requested by a transition."""

    NOTIFY_BOOKING_RECEIVED = "notify_booking_received"
    NOTIFY_DOCTOR_ASSIGNED = "notify_doctor_assigned"
    NOTIFY_APPOINTMENT_CONFIRMED = "notify_appointment_confirmed"
    NOTIFY_PAYMENT_REQUESTED = "notify_payment_requested"
    NOTIFY_PAYMENT_CONFIRMED = "notify_payment_confirmed"
    NOTIFY_CANCELLATION = "notify_cancellation"
    NOTIFY_ACCOUNT_CREATED = "notify_account_created"
    NOTIFY_APPOINTMENT_REMINDER = "notify_appointment_reminder"
    NOTIFY_DETAILS_UPDATED = "notify_details_updated"
    PROVISION_ACCOUNT = "provision_account"


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table."""

    source: AppointmentStatus
    target: AppointmentStatus
    roles: frozenset[Role]
    assigned_doctor_only: bool = False
    side_effects: tuple[SideEffect, ...] = ()


@dataclass(frozen=True)
class TransitionDecision:
    """Outcome of an allowed transition check."""

    current: AppointmentStatus
    target: AppointmentStatus
    noop: bool = False
    side_effects: tuple[SideEffect, ...] = ()


_DESK = frozenset({Role.STAFF, Role.ADMIN})
_DESK_AND_DOCTOR = frozenset({Role.STAFF, Role.ADMIN, Role.DOCTOR})
_DOCTOR = frozenset({Role.DOCTOR})

S = AppointmentStatus

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(
        S.PENDING,
        S.AWAITING_DOCTOR_APPROVAL,
        _DESK,
        side_effects=(SideEffect.NOTIFY_DOCTOR_ASSIGNED,),
    ),
    TransitionRule(
        S.AWAITING_DOCTOR_APPROVAL,
        S.CONFIRMED,
        _DOCTOR,
        assigned_doctor_only=True,
        side_effects=(SideEffect.NOTIFY_APPOINTMENT_CONFIRMED,),
    ),
    TransitionRule(
        S.AWAITING_DOCTOR_APPROVAL,
        S.PENDING,
        _DOCTOR,
        assigned_doctor_only=True,
    ),
    TransitionRule(
        S.CONFIRMED,
        S.PAYMENT_REQUESTED,
        _DESK,
        side_effects=(SideEffect.NOTIFY_PAYMENT_REQUESTED,),
    ),
    TransitionRule(
        S.PAYMENT_REQUESTED,
        S.PAID,
        _DESK,
        side_effects=(SideEffect.NOTIFY_PAYMENT_CONFIRMED,),
    ),
    TransitionRule(
        S.PAID,
        S.COMPLETED,
        _DESK_AND_DOCTOR,
        side_effects=(SideEffect.PROVISION_ACCOUNT,),
    ),
    TransitionRule(S.CONFIRMED, S.NO_SHOW, _DESK_AND_DOCTOR),
    TransitionRule(S.PAID, S.NO_SHOW, _DESK_AND_DOCTOR),
) + tuple(
    TransitionRule(
        source,
        S.CANCELLED,
        _DESK,
        side_effects=(SideEffect.NOTIFY_CANCELLATION,),
    )
    for source in AppointmentStatus
    if source not in TERMINAL_STATUSES
)

_RULES_BY_EDGE: dict[tuple[AppointmentStatus, AppointmentStatus], TransitionRule] = {
    (rule.source, rule.target): rule for rule in TRANSITION_RULES
}


def _rules_reaching(target: AppointmentStatus, role: Role) -> list[TransitionRule]:
    return [rule for rule in TRANSITION_RULES if rule.target == target and role in rule.roles]


def validate_transition(
    current: AppointmentStatus,
    target: AppointmentStatus,
    actor: Actor,
    assigned_doctor_id: int | None = None,
) -> TransitionDecision:
    """
    Check whether ``actor`` may move an appointment from ``current`` to ``target``.

    Args:
        current: Status the appointment has now
        target: Requested status
        actor: Authenticated caller
        assigned_doctor_id: Doctor currently assigned to the appointment

    Returns:
        Decision carrying the side effects to run after the write commits.
        Re-applying the current non-terminal status is a no-op decision.

    Raises:
        InvalidTransitionException: If the move is not in the table, the actor's
            role may not perform it, or the appointment is terminal
    """
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionException(
            current.value,
            target.value,
            detail="appointment is in a terminal state",
        )

    if current == target:
        # Re-applying a status needs the same permission as reaching it.
        reaching = _rules_reaching(target, actor.role)
        if not reaching:
            raise InvalidTransitionException(current.value, target.value, role=actor.role.value)
        if all(rule.assigned_doctor_only and actor.user_id != assigned_doctor_id for rule in reaching):
            raise InvalidTransitionException(
                current.value,
                target.value,
                role=actor.role.value,
                detail="only the assigned doctor may respond",
            )
        return TransitionDecision(current=current, target=target, noop=True)

    rule = _RULES_BY_EDGE.get((current, target))
    if rule is None:
        raise InvalidTransitionException(current.value, target.value)

    if actor.role not in rule.roles:
        raise InvalidTransitionException(current.value, target.value, role=actor.role.value)

    if rule.assigned_doctor_only and actor.user_id != assigned_doctor_id:
        raise InvalidTransitionException(
            current.value,
            target.value,
            role=actor.role.value,
            detail="only the assigned doctor may respond",
        )

    return TransitionDecision(
        current=current,
        target=target,
        side_effects=rule.side_effects,
    )


def allowed_targets(
    current: AppointmentStatus,
    actor: Actor,
    assigned_doctor_id: int | None = None,
) -> list[AppointmentStatus]:
    """List the statuses ``actor`` may move an appointment to from ``current``."""
    if current in TERMINAL_STATUSES:
        return []
    return [
        rule.target
        for rule in TRANSITION_RULES
        if rule.source == current
        and actor.role in rule.roles
        and (not rule.assigned_doctor_only or actor.user_id == assigned_doctor_id)
    ]

"""Booking lifecycle.

    requested -> confirmed | cancelled_by_driver | cancelled_by_passenger
    confirmed -> completed | cancelled_by_driver | cancelled_by_passenger

completed and both cancelled states are terminal. Transitions are pure: they
return a new ``BookingState`` and never check who is asking; the coordinator
enforces ``required_role``.
"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from tripo.core.errors import InvalidTransition


class BookingStatus(str, Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED_BY_DRIVER = "cancelled_by_driver"
    CANCELLED_BY_PASSENGER = "cancelled_by_passenger"


TRANSITIONS: dict[BookingStatus, frozenset] = {
    BookingStatus.REQUESTED: frozenset({
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED_BY_DRIVER,
        BookingStatus.CANCELLED_BY_PASSENGER,
    }),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED_BY_DRIVER,
        BookingStatus.CANCELLED_BY_PASSENGER,
    }),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED_BY_DRIVER: frozenset(),
    BookingStatus.CANCELLED_BY_PASSENGER: frozenset(),
}

ACTIVE = frozenset({BookingStatus.REQUESTED, BookingStatus.CONFIRMED})
TERMINAL = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED_BY_DRIVER,
    BookingStatus.CANCELLED_BY_PASSENGER,
})
CANCELLED = frozenset({BookingStatus.CANCELLED_BY_DRIVER, BookingStatus.CANCELLED_BY_PASSENGER})

ROLE_DRIVER = "driver"
ROLE_PASSENGER = "passenger"


@dataclass(frozen=True)
class BookingState:
    status: BookingStatus
    requested_at: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None


def _status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise InvalidTransition(str(value), str(value), f"Unknown booking status: {value}")


def is_active(status) -> bool:
    return _status(status) in ACTIVE


def is_terminal(status) -> bool:
    return _status(status) in TERMINAL


def can_transition(current, target) -> bool:
    return _status(target) in TRANSITIONS[_status(current)]


def required_role(target) -> str:
    if _status(target) == BookingStatus.CANCELLED_BY_PASSENGER:
        return ROLE_PASSENGER
    return ROLE_DRIVER


def initial_state(instant_booking: bool, now: datetime) -> BookingState:
    if instant_booking:
        return BookingState(status=BookingStatus.CONFIRMED, requested_at=now, confirmed_at=now)
    return BookingState(status=BookingStatus.REQUESTED, requested_at=now)


def apply_transition(
    state: BookingState,
    target,
    now: datetime,
    reason: Optional[str] = None,
) -> BookingState:
    current = _status(state.status)
    target = _status(target)
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)

    if target == BookingStatus.CONFIRMED:
        return replace(state, status=target, confirmed_at=now)
    if target == BookingStatus.COMPLETED:
        return replace(state, status=target, completed_at=now)
    return replace(state, status=target, cancelled_at=now, cancellation_reason=reason)

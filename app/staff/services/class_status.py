"""
Class lifecycle rules.

`derive_status` is the single place where a class's status is compared with
the clock; every read path goes through it so that a class is never reported
as scheduled once its window has passed.
"""
from datetime import datetime
from typing import Dict, FrozenSet

from app.staff.models.classes import ClassStatus

# Forward-only lifecycle
ALLOWED_TRANSITIONS: Dict[ClassStatus, FrozenSet[ClassStatus]] = {
    ClassStatus.scheduled: frozenset({ClassStatus.ongoing, ClassStatus.cancelled}),
    ClassStatus.ongoing: frozenset({ClassStatus.completed, ClassStatus.cancelled}),
    ClassStatus.completed: frozenset(),
    ClassStatus.cancelled: frozenset(),
}

CLOSED_STATUSES = frozenset({ClassStatus.completed, ClassStatus.cancelled})

_ORDER = {
    ClassStatus.scheduled: 0,
    ClassStatus.ongoing: 1,
    ClassStatus.completed: 2,
}


def derive_status(
    stored_status: str, start_at: datetime, end_at: datetime, now: datetime
) -> ClassStatus:
    """Effective status: the stored one, advanced by the clock.

    Cancelled is terminal. Otherwise the later of the stored status and the
    status implied by `now` wins, so an early manual start stays ongoing.
    """
    stored = ClassStatus(stored_status)
    if stored == ClassStatus.cancelled:
        return stored

    if now >= end_at:
        implied = ClassStatus.completed
    elif now >= start_at:
        implied = ClassStatus.ongoing
    else:
        implied = ClassStatus.scheduled

    return stored if _ORDER[stored] >= _ORDER[implied] else implied


def effective_status(gym_class, now: datetime) -> ClassStatus:
    return derive_status(gym_class.status, gym_class.start_at, gym_class.end_at, now)


def can_transition(current: ClassStatus, target: ClassStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]

"""
Call lifecycle rules.

    initiated -> answered | rejected | missed | failed | ended
    answered  -> ended

Every other status is terminal.
"""
from .constants import (
    STATUS_ANSWERED,
    STATUS_ENDED,
    STATUS_FAILED,
    STATUS_INITIATED,
    STATUS_MISSED,
    STATUS_REJECTED,
    TERMINAL_STATUSES,
)
from .utils import normalize_datetime

TRANSITIONS = {
    STATUS_INITIATED: frozenset({STATUS_ANSWERED, STATUS_REJECTED, STATUS_MISSED, STATUS_FAILED, STATUS_ENDED}),
    STATUS_ANSWERED: frozenset({STATUS_ENDED}),
}

# Ordering used to decide whether a reported state has already been reached.
_PROGRESS = {
    STATUS_INITIATED: 0,
    STATUS_ANSWERED: 1,
    STATUS_REJECTED: 2,
    STATUS_ENDED: 2,
    STATUS_MISSED: 2,
    STATUS_FAILED: 2,
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def sources_for(target: str) -> frozenset:
    return frozenset(src for src, targets in TRANSITIONS.items() if target in targets)


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def has_reached(current: str, target: str) -> bool:
    """True if a call in ``current`` is already at or past ``target``."""
    if current == target:
        return True
    return _PROGRESS.get(current, 0) > _PROGRESS.get(target, 0)


def compute_duration(answered_at, ended_at) -> int:
    answered_at = normalize_datetime(answered_at)
    ended_at = normalize_datetime(ended_at)
    if answered_at is None or ended_at is None:
        return 0
    return max(0, int((ended_at - answered_at).total_seconds()))

from datetime import datetime, timedelta, timezone

import pytest

from qrcall.constants import CALL_STATUSES, TERMINAL_STATUSES
from qrcall.lifecycle import can_transition, compute_duration, has_reached, is_terminal, sources_for


@pytest.mark.parametrize("target", ["answered", "rejected", "missed", "failed", "ended"])
def test_initiated_can_move_to(target):
    assert can_transition("initiated", target)


def test_answered_only_ends():
    allowed = {status for status in CALL_STATUSES if can_transition("answered", status)}
    assert allowed == {"ended"}


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_states_are_never_left(status):
    assert is_terminal(status)
    assert not any(can_transition(status, target) for target in CALL_STATUSES)


def test_sources_for_ended():
    assert sources_for("ended") == {"initiated", "answered"}
    assert sources_for("answered") == {"initiated"}


def test_has_reached():
    assert has_reached("ended", "ended")
    assert has_reached("ended", "answered")
    assert has_reached("answered", "initiated")
    assert not has_reached("initiated", "answered")
    assert not has_reached("rejected", "ended")


def test_compute_duration():
    answered = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert compute_duration(answered, answered + timedelta(seconds=95)) == 95
    assert compute_duration(answered, answered - timedelta(seconds=5)) == 0
    assert compute_duration(None, answered) == 0
    assert compute_duration(answered, None) == 0


def test_compute_duration_accepts_naive_datetimes():
    answered = datetime(2024, 1, 1, 12, 0, 0)
    assert compute_duration(answered, answered + timedelta(minutes=2)) == 120

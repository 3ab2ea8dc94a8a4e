from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from assessment_engine.components.sessions.deadline import (
    deadline_for,
    elapsed_seconds,
    is_expired,
    remaining_seconds,
)

START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _session(duration=1800, started_at=START):
    return SimpleNamespace(duration_seconds=duration, started_at=started_at)


def test_remaining_seconds_counts_down_from_start():
    session = _session()
    assert remaining_seconds(session, START) == 1800
    assert remaining_seconds(session, START + timedelta(seconds=600)) == 1200


def test_remaining_seconds_never_negative():
    session = _session(duration=60)
    assert remaining_seconds(session, START + timedelta(hours=3)) == 0


def test_is_expired_at_exact_deadline():
    session = _session(duration=60)
    assert is_expired(session, START + timedelta(seconds=59)) is False
    assert is_expired(session, START + timedelta(seconds=60)) is True


def test_naive_start_is_treated_as_utc():
    session = _session(duration=120, started_at=START.replace(tzinfo=None))
    assert remaining_seconds(session, START + timedelta(seconds=20)) == 100
    assert deadline_for(session) == START + timedelta(seconds=120)


def test_unstarted_session_has_full_duration_and_no_deadline():
    session = _session(started_at=None)
    assert remaining_seconds(session) == 1800
    assert deadline_for(session) is None
    assert is_expired(session) is False
    assert elapsed_seconds(session) == 0

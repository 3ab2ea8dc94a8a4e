"""Server-authoritative session timing. Remaining time is always derived, never stored."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from ...models.assessment_session import AssessmentSession
from ...shared.utils import ensure_utc, utcnow


def deadline_for(session: AssessmentSession) -> Optional[datetime]:
    started = ensure_utc(session.started_at)
    if started is None:
        return None
    return started + timedelta(seconds=int(session.duration_seconds or 0))


def remaining_seconds(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    total = int(session.duration_seconds or 0)
    started = ensure_utc(session.started_at)
    if started is None:
        return total
    elapsed = int(((ensure_utc(now) or utcnow()) - started).total_seconds())
    return max(0, total - max(0, elapsed))


def is_expired(session: AssessmentSession, now: Optional[datetime] = None) -> bool:
    deadline = deadline_for(session)
    if deadline is None:
        return False
    return (ensure_utc(now) or utcnow()) >= deadline


def elapsed_seconds(session: AssessmentSession, now: Optional[datetime] = None) -> int:
    started = ensure_utc(session.started_at)
    if started is None:
        return 0
    return max(0, int(((ensure_utc(now) or utcnow()) - started).total_seconds()))

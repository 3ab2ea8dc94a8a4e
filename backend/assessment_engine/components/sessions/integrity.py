"""Integrity counters for proctored sessions.

Clients report events; the counters and the termination decision live here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from ...models.assessment_session import AssessmentSession, ViolationType
from ...shared.utils import utcnow

MAX_DETAIL_CHARS = 200

_COUNTER_FOR = {
    ViolationType.TAB_SWITCH.value: "tab_switch_count",
    ViolationType.COPY_ATTEMPT.value: "clipboard_count",
    ViolationType.PASTE_ATTEMPT.value: "clipboard_count",
    ViolationType.BLOCKED_SHORTCUT.value: "shortcut_count",
    ViolationType.CONTEXT_MENU.value: "context_menu_count",
}


def record_violation(
    session: AssessmentSession,
    violation_type: str,
    detail: Optional[str] = None,
    now: Optional[datetime] = None,
) -> int:
    """Append to the log and bump the total and per-type counter. Returns the new total."""
    vtype = ViolationType(violation_type).value
    entry: Dict[str, Any] = {
        "type": vtype,
        "timestamp": (now or utcnow()).isoformat(),
        "detail": (detail or "")[:MAX_DETAIL_CHARS] or None,
    }
    log = list(session.violation_log or [])
    log.append(entry)
    session.violation_log = log

    counter = _COUNTER_FOR[vtype]
    setattr(session, counter, int(getattr(session, counter) or 0) + 1)
    session.violation_count = int(session.violation_count or 0) + 1
    return session.violation_count


def should_terminate(session: AssessmentSession, threshold: int) -> bool:
    return int(session.violation_count or 0) >= int(threshold)


def remaining_before_termination(session: AssessmentSession, threshold: int) -> int:
    return max(0, int(threshold) - int(session.violation_count or 0))


def integrity_summary(session: AssessmentSession) -> Dict[str, int]:
    return {
        "violation_count": int(session.violation_count or 0),
        "tab_switch_count": int(session.tab_switch_count or 0),
        "clipboard_count": int(session.clipboard_count or 0),
        "shortcut_count": int(session.shortcut_count or 0),
        "context_menu_count": int(session.context_menu_count or 0),
    }

from fastapi import APIRouter

from ...models.assessment_session import ViolationType
from ...platform.config import settings

router = APIRouter()


@router.get("/policy")
def get_proctoring_policy():
    """Client-side proctoring contract: what to block and report, and when the server terminates."""
    return {
        "violation_threshold": settings.INTEGRITY_VIOLATION_THRESHOLD,
        "blocked_shortcuts": settings.blocked_shortcuts,
        "reportable_violations": [v.value for v in ViolationType],
    }

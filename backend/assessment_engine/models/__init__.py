from .assessment_session import (
    AssessmentSession,
    Difficulty,
    QuestionType,
    SessionCategory,
    SessionKind,
    SessionQuestion,
    SessionStatus,
    TERMINAL_STATUSES,
    ViolationType,
)
from .entitlement import EntitlementLedgerEntry, EntitlementRecord

__all__ = [
    "AssessmentSession",
    "SessionQuestion",
    "SessionKind",
    "SessionCategory",
    "SessionStatus",
    "TERMINAL_STATUSES",
    "Difficulty",
    "QuestionType",
    "ViolationType",
    "EntitlementRecord",
    "EntitlementLedgerEntry",
]

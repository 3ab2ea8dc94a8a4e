from .session import AnswerSubmit, CreditGrant, SessionComplete, SessionCreate, ViolationReport

__all__ = [
    "SessionCreate",
    "AnswerSubmit",
    "ViolationReport",
    "SessionComplete",
    "CreditGrant",
]

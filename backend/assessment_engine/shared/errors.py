"""Domain errors raised by the assessment engine.

Only entitlement and lifecycle errors reach callers. ``ScoringDegraded`` and
``SandboxFault`` are raised inside the scoring pipeline and always absorbed
into the stored result with an explicit marker.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class EngineError(Exception):
    status_code = 500
    code = "engine_error"

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.context: Dict[str, Any] = context

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.context:
            payload.update(self.context)
        return payload


class EntitlementExhausted(EngineError):
    status_code = 402
    code = "entitlement_exhausted"


class PaymentNotVerified(EngineError):
    status_code = 400
    code = "payment_not_verified"


class SessionNotFound(EngineError):
    status_code = 404
    code = "session_not_found"


class QuestionNotFound(EngineError):
    status_code = 404
    code = "question_not_found"


class SessionLifecycleError(EngineError):
    """Operation attempted outside the valid lifecycle window; caller should re-fetch."""

    status_code = 409
    code = "session_lifecycle_error"

    def __init__(self, message: str = "", *, status: Optional[str] = None, **context: Any):
        if status is not None:
            context["status"] = status
        super().__init__(message, **context)


class SessionNotActive(SessionLifecycleError):
    code = "session_not_active"


class SessionExpired(SessionNotActive):
    code = "session_expired"


class SessionTerminated(SessionNotActive):
    code = "session_terminated"


class SessionIncomplete(SessionLifecycleError):
    code = "session_incomplete"


class ActiveSessionExists(SessionLifecycleError):
    code = "active_session_exists"


class ScoringInProgress(SessionLifecycleError):
    """An answer is still being scored; retry after ``retry_after_seconds``."""

    code = "scoring_in_progress"


class ProvisioningShortfall(EngineError):
    status_code = 503
    code = "provisioning_shortfall"


class CompletionFailed(EngineError):
    status_code = 503
    code = "completion_failed"


class ScoringDegraded(EngineError):
    code = "scoring_degraded"


class SandboxFault(EngineError):
    code = "sandbox_fault"

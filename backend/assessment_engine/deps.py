"""
Shared FastAPI dependencies.

Identity is owned by the upstream gateway, which forwards the authenticated
user id in ``X-User-Id``. Credit grants come from the payment relay and carry
``X-Internal-Token``.
"""

import secrets
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from .components.entitlements.service import EntitlementGate
from .components.sessions.service import SessionOrchestrator
from .domains.integrations.adapters import build_session_orchestrator
from .platform.config import settings

MAX_USER_ID_LENGTH = 128


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing user identity")
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(status_code=400, detail="Invalid user identity")
    return user_id


def require_internal_token(x_internal_token: str | None = Header(default=None)) -> None:
    if not x_internal_token or not secrets.compare_digest(x_internal_token, settings.INTERNAL_API_TOKEN):
        raise HTTPException(status_code=403, detail="Invalid internal token")


@lru_cache(maxsize=1)
def get_orchestrator() -> SessionOrchestrator:
    return build_session_orchestrator()


def get_entitlement_gate(orchestrator: SessionOrchestrator = Depends(get_orchestrator)) -> EntitlementGate:
    return orchestrator.entitlements


__all__ = [
    "get_current_user_id",
    "require_internal_token",
    "get_orchestrator",
    "get_entitlement_gate",
]

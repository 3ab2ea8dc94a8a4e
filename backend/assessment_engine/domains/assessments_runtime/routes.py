"""Router assembly for the assessment runtime domain."""

from fastapi import APIRouter

from .entitlement_routes import router as entitlement_router
from .proctoring_routes import router as proctoring_router
from .session_routes import router as session_router

router = APIRouter()
router.include_router(session_router, prefix="/sessions", tags=["Sessions"])
router.include_router(entitlement_router, prefix="/entitlements", tags=["Entitlements"])
router.include_router(proctoring_router, prefix="/proctoring", tags=["Proctoring"])

__all__ = ["router"]

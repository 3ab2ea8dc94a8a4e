import logging as _logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse
from .platform.config import settings
from .platform.logging import setup_logging
from .platform.middleware import RequestLoggingMiddleware, RateLimitMiddleware
from .shared.errors import EngineError

# Set up logging
logger = setup_logging()

_is_production = (settings.DEPLOYMENT_ENV or "").strip().lower() == "production"

# ---------------------------------------------------------------------------
# Production safety: fail-fast on the default internal token
# ---------------------------------------------------------------------------
_INSECURE_DEFAULTS = {"dev-internal-token-change-in-production", "changeme", "secret", ""}
if _is_production and settings.INTERNAL_API_TOKEN in _INSECURE_DEFAULTS:
    raise RuntimeError(
        "CRITICAL: INTERNAL_API_TOKEN is set to an insecure default. "
        "Set a strong INTERNAL_API_TOKEN before running in production."
    )

if (
    _is_production
    and (settings.CODE_EXECUTION_BACKEND or "").strip().lower() != "e2b"
    and (settings.CODE_EXECUTION_ISOLATION or "").strip().lower() != "bwrap"
):
    raise RuntimeError(
        "CRITICAL: candidate code would run without namespace isolation. "
        "Use CODE_EXECUTION_ISOLATION=bwrap or CODE_EXECUTION_BACKEND=e2b in production."
    )

_docs_url = None if _is_production else "/api/docs"
_openapi_url = None if _is_production else "/api/openapi.json"


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    logger.info(
        "Assessment engine API started | env=%s | code_backend=%s | isolation=%s | ai_scoring=%s",
        settings.DEPLOYMENT_ENV,
        settings.CODE_EXECUTION_BACKEND,
        settings.CODE_EXECUTION_ISOLATION,
        settings.AI_SCORING_ENABLED and bool(settings.ANTHROPIC_API_KEY),
    )
    yield


app = FastAPI(
    title="Assessment Engine API",
    description="Proctored skills tests and mock interviews with automated scoring.",
    version="1.0.0",
    docs_url=_docs_url,
    openapi_url=_openapi_url,
    lifespan=_lifespan,
)

_val_logger = _logging.getLogger("assessment_engine.validation")
_err_logger = _logging.getLogger("assessment_engine.errors")


def _is_configured_secret(value: str | None) -> bool:
    cleaned = (value or "").strip().lower()
    return cleaned not in {"", "skip", "changeme"}


def _sanitize_errors(errors: list) -> list:
    """Ensure validation error details are JSON-serializable."""

    def _json_safe(value):
        if isinstance(value, (str, int, float, bool)) or value is None:
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        if isinstance(value, dict):
            return {str(k): _json_safe(v) for k, v in value.items()}
        if isinstance(value, (list, tuple, set)):
            return [_json_safe(v) for v in value]
        return str(value)

    return [_json_safe(err) for err in errors]


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log validation errors with detail so we can diagnose 422s."""
    _val_logger.warning(
        "Validation error on %s %s: %s",
        request.method,
        request.url.path,
        exc.errors(),
    )
    return JSONResponse(
        status_code=422,
        content={"detail": _sanitize_errors(exc.errors())},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Translate domain errors to their HTTP status with a machine-readable code."""
    level = _logging.ERROR if exc.status_code >= 500 else _logging.INFO
    _err_logger.log(level, "%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    retry_after = exc.context.get("retry_after_seconds")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.to_payload()},
        headers={"Retry-After": str(retry_after)} if retry_after is not None else None,
    )


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security-hardening HTTP headers to every response."""

    async def dispatch(self, request: Request, call_next):
        response: StarletteResponse = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        response.headers["Cache-Control"] = "no-store"
        if _is_production:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


app.add_middleware(SecurityHeadersMiddleware)

# CORS: frontend URL + localhost + any extra origins
_cors_origins = [
    settings.FRONTEND_URL,
    "http://localhost:5173",
    "http://localhost:3000",
]
if settings.CORS_EXTRA_ORIGINS:
    _cors_origins.extend(o.strip() for o in settings.CORS_EXTRA_ORIGINS.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in _cors_origins if o],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-Id", "X-Request-ID", "X-Requested-With"],
)

# Rate limiting (session write endpoints)
app.add_middleware(RateLimitMiddleware)

# Request logging
app.add_middleware(RequestLoggingMiddleware)

# Include routers
from .domains.assessments_runtime.routes import router as runtime_router

app.include_router(runtime_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    db_ok = False
    try:
        from sqlalchemy import text
        from .platform.database import SessionLocal
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            db_ok = True
        finally:
            db.close()
    except Exception:
        _err_logger.exception("Health check database probe failed")
        db_ok = False

    integrations = {
        "claude_configured": settings.AI_SCORING_ENABLED and _is_configured_secret(settings.ANTHROPIC_API_KEY),
        "e2b_configured": _is_configured_secret(settings.E2B_API_KEY),
        "code_execution_backend": settings.CODE_EXECUTION_BACKEND,
    }

    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "assessment-engine",
        "database": db_ok,
        "integrations": integrations,
    }

import time
import uuid
import logging
from collections import defaultdict
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
from .request_context import set_request_id

logger = logging.getLogger("assessment_engine.middleware")

# In-memory rate limit: "<bucket>:<caller>" -> request timestamps within the window
_rate_limit_store = defaultdict(list)
_RATE_WINDOW_SEC = 60


def _caller_key(request: Request) -> str:
    """Rate-limit by gateway user id when present so users behind one NAT do not share a bucket."""
    user_id = (request.headers.get("x-user-id") or "").strip()
    if user_id:
        return f"user={user_id[:128]}"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return "ip=" + forwarded.split(",")[0].strip()
    return "ip=" + (request.client.host if request.client else "unknown")


def _rate_limit_key(caller: str, path: str, method: str) -> str:
    if method != "POST" or not path.startswith("/api/v1/sessions"):
        return ""
    if path.rstrip("/") == "/api/v1/sessions":
        return f"session_create:{caller}"
    if path.endswith("/violations"):
        return f"violation:{caller}"
    if path.endswith("/answers") or path.endswith("/complete"):
        return f"answer:{caller}"
    return ""


def _rate_limit_max(key: str) -> int:
    if key.startswith("session_create:"):
        return 10
    if key.startswith("violation:"):
        return 120
    if key.startswith("answer:"):
        return 60
    return 0


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Return 429 when too many requests per caller hit session write endpoints."""

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        key = _rate_limit_key(_caller_key(request), path, request.method)
        if not key:
            return await call_next(request)

        now = time.time()
        window_start = now - _RATE_WINDOW_SEC
        store = _rate_limit_store[key]
        store[:] = [t for t in store if t > window_start]
        max_allowed = _rate_limit_max(key)
        if len(store) >= max_allowed:
            logger.warning("Rate limit exceeded key=%s path=%s", key, path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please try again later."},
                headers={"Retry-After": str(_RATE_WINDOW_SEC)},
            )
        store.append(now)
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with method, path, status, and duration."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_request_id(request_id)
        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000

        if request.url.path != "/health":
            logger.info(
                "method=%s path=%s status=%d duration=%.1fms user=%s",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
                request.headers.get("x-user-id") or "-",
                extra={"request_id": request_id},
            )

        response.headers["X-Process-Time-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = request_id

        return response

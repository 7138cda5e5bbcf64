"""
api/main.py -- FastAPI application entry point for KeyPortal.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the CredentialStore on startup and disposes it on shutdown.
Route handlers reach it through request.app.state.store; nothing imports a
module-level database handle.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.desktop import router as desktop_router
from api.routes.v1.keys import router as keys_router
from api.routes.v1.profile import router as profile_router
from auth.store import CredentialStore
from core.config import get_settings
from licensing.errors import LicensingError

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyportal.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the credential store for the lifetime of the server."""
    logger.info("KeyPortal API starting up")
    app.state.store = CredentialStore(_settings.database_url)
    if not app.state.store.has_accounts():
        logger.warning("No accounts exist yet -- create an admin with: python main.py create-admin")
    logger.info("Credential store initialized")

    yield

    app.state.store.close()
    logger.info("KeyPortal API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="KeyPortal API",
    description="Access key distribution, desktop client authorization and account management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette wraps each add_middleware() call around the ones before it, so
# they are added innermost first: SlowAPI, then CORS, then TrustedHost.
# ---------------------------------------------------------------------------

# SlowAPIMiddleware reads the limiter from app.state.limiter.
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, latency and client address for every request."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "unknown"
    logger.info("%s %s %d %.1fms %s", request.method, request.url.path, response.status_code, elapsed_ms, client)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(desktop_router, prefix="/api/v1", tags=["Desktop"])
app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])
app.include_router(keys_router, prefix="/api/v1", tags=["Keys"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves the API as {"error": {"code", "message", "detail"?}}.
# The desktop endpoint is the one exception: it builds its own
# {"success", "message"} body and never reaches these handlers for a
# rejected login.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc.detail))
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """422 for body or query parameters that fail Pydantic validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Routes raise HTTPException(detail={"code", "message"}); that dict is passed through as the error."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(LicensingError)
async def licensing_error_handler(request: Request, exc: LicensingError) -> JSONResponse:
    """Licensing failures a route did not map itself are reported as conflicts."""
    logger.warning("Unmapped licensing error on %s: %s", request.url.path, exc)
    return _error_response(409, "licensing_error", str(exc))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # The traceback goes to the log only, never to the client.
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and database reachability."""
    database = "ok"
    try:
        with request.app.state.store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(status="ok" if database == "ok" else "degraded", version=__version__, database=database)

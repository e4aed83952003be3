"""
api/main.py -- FastAPI application entry point for CarFleet.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack:
  TrustedHostMiddleware     -- rejects requests with unexpected Host headers
  CORSMiddleware            -- adds CORS headers for allowed browser origins
  SlowAPIMiddleware         -- enforces per-route rate limits from api.limiter
  authenticate_requests     -- phase 1 of auth: attaches request.state.identity
  log_requests              -- one log line per request with latency

The authentication middleware never rejects. It only annotates the request;
protected routers reject through the require_identity dependency (phase 2).

Lifespan opens the store on startup and disposes of it on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.cars import router as cars_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.users import router as users_router
from auth.dependencies import authenticate, is_public
from core.config import get_settings
from core.errors import FleetError
from fleet.service import FleetService
from fleet.store import FleetStore

__version__ = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("carfleet.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store and service on startup; dispose of the engine on shutdown."""
    logger.info("CarFleet API starting up")
    app.state.store = FleetStore(_settings.database_url)
    app.state.service = FleetService(app.state.store)
    logger.info("Store initialized")

    yield

    app.state.store.close()
    logger.info("CarFleet API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CarFleet API",
    description="Users and their cars behind JWT bearer authentication.",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Cache-Control", "Content-Type"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Authentication middleware (phase 1)
# ---------------------------------------------------------------------------


@app.middleware("http")
async def authenticate_requests(request: Request, call_next):
    """Attach the caller's identity (or None) and always continue the chain.

    Public routes skip token parsing entirely. The store lookup is blocking,
    so it runs in the thread pool.
    """
    if is_public(request.method, request.url.path):
        request.state.identity = None
    else:
        request.state.identity = await run_in_threadpool(authenticate, request)
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(cars_router, prefix="/api/v1", tags=["Cars"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# The only place domain failures become HTTP responses. Every handler returns
# the same ErrorResponse envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(message=message, error_code=status_code, code=code, detail=detail).model_dump(
            by_alias=True
        ),
    )


@app.exception_handler(FleetError)
async def fleet_error_handler(request: Request, exc: FleetError) -> JSONResponse:
    """Map a typed domain failure to its status code."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", detail=str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies, paths or query params are a 400, like missing fields."""
    return _error(400, "validation_error", "Invalid fields", detail=str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (unknown path, wrong method) in the same envelope."""
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only. The response carries the exception
    text only in DEBUG mode.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = repr(exc) if _settings.debug else None
    return _error(500, "internal_error", "An unexpected error occurred.", detail=detail)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly on the app so it is reachable regardless of router
# registration. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check database ping failed")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})

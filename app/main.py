from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.auth import router as auth_router
from app.api.files import router as files_router
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.reports import router as reports_router
from app.api.users import router as users_router
from app.core.config import SETTINGS
from app.core.errors import QuotaExceededError, TrackerError
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import (
    RequestContextFilter,
    RequestContextMiddleware,
    route_path,
)

# Configure logging before anything else runs.
setup_logging(
    SETTINGS.log_level,
    json_format=SETTINGS.log_json,
    filters=[RequestContextFilter()],
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="report-tracker",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext → Metrics → CORS → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)


# ---------------------------------------------------------------------------
# Error envelope: {"success": false, "message": ..., "upgradeRequired"?: true}
# ---------------------------------------------------------------------------


@app.exception_handler(TrackerError)
async def tracker_error_handler(request: Request, exc: TrackerError) -> JSONResponse:
    body: dict[str, object] = {"success": False, "message": exc.message}
    if isinstance(exc, QuotaExceededError):
        body["upgradeRequired"] = True
    body.update({k: v for k, v in exc.details.items() if v is not None})

    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            route_path(request),
            exc.message,
        )
    else:
        logger.info(
            "Request rejected status=%d error=%s message=%s",
            exc.status_code,
            type(exc).__name__,
            exc.message,
        )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")]
    field = ".".join(loc) or None
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "message": f"{field}: {message}" if field else message,
            "field": field,
        },
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, route_path(request))
    return JSONResponse(
        status_code=500, content={"success": False, "message": "Server error"}
    )


app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(reports_router)
app.include_router(files_router)

logger.info(
    "report-tracker started  env=%s log_level=%s port=%d docs=%s storage=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    "s3" if SETTINGS.object_storage_configured else "local",
)

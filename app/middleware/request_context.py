"""Request context middleware: request ID, timing and a summary log line.

The request ID, and the caller's user and organization ids once
``require_user`` has resolved them, live in ContextVars.  ``RequestContextFilter``,
attached to the root handler by ``setup_logging``, copies them onto every
LogRecord emitted while the request is handled, whichever module logs
it.  A filter on the root logger itself would never see records that
propagate up from child loggers.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
organization_id_var: ContextVar[str | None] = ContextVar(
    "organization_id", default=None
)


class RequestContextFilter(logging.Filter):
    """Copy the request context vars onto every record a handler emits."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("-")  # type: ignore[attr-defined]
        if getattr(record, "user_id", None) is None:
            record.user_id = user_id_var.get()  # type: ignore[attr-defined]
        if getattr(record, "organization_id", None) is None:
            record.organization_id = organization_id_var.get()  # type: ignore[attr-defined]
        return True


def route_path(request: Request) -> str:
    """The matched route template, falling back to the raw path.

    Invite tokens travel in the URL path, so logs use the template.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, log one line on completion.

    A client-supplied X-Request-ID is reused; otherwise a UUID4 is
    generated.  The ID is echoed back in the X-Request-ID header.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set(None)
        organization_id_var.set(None)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)
        path = route_path(request)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response

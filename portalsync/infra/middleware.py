"""Request middleware for the status surface."""

import logging
import time
import uuid
from typing import Callable, List

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from portalsync.infra.config import config

logger = logging.getLogger("portalsync.request")

REQUEST_ID_HEADER = "X-Request-ID"

# Health checks and scrapes hit these every few seconds
_QUIET_PREFIXES = ("/health", "/metrics")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Propagate the caller's request id, or mint one, and echo it on the response."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request.state.request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request with its duration and the push channel state at the time."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        fields = {
            "request_id": getattr(request.state, "request_id", None),
            "method": request.method,
            "path": request.url.path,
        }
        try:
            response = await call_next(request)
        except Exception as e:
            fields["duration_ms"] = round((time.perf_counter() - started) * 1000)
            logger.error(f"Request failed: {str(e)}", extra=fields, exc_info=True)
            raise

        fields["duration_ms"] = round((time.perf_counter() - started) * 1000)
        fields["status_code"] = response.status_code
        runtime = getattr(request.app.state, "runtime", None)
        if runtime is not None:
            fields["push_state"] = runtime.connection.state.value
        level = logging.DEBUG if request.url.path.startswith(_QUIET_PREFIXES) else logging.INFO
        logger.log(level, "Request completed", extra=fields)
        response.headers["X-Response-Time-Ms"] = str(fields["duration_ms"])
        return response


def _allowed_origins() -> List[str]:
    origins = [o.strip() for o in config.CORS_ORIGINS.split(",") if o.strip()]
    if config.APP_ENV == "development":
        return origins or ["*"]
    # SECURITY: wildcard only in development
    return [o for o in origins if o != "*"]


def setup_cors(app):
    """Let the portal UI shell read the status surface from its own origin."""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", REQUEST_ID_HEADER],
        expose_headers=[REQUEST_ID_HEADER, "X-Response-Time-Ms"],
    )

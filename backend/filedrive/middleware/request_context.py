"""Request context middleware for observability.

Responsibilities (all handled in one pass, not separate middlewares):
- Generate or propagate ``X-Request-ID`` header
- Tag log records with the calling owner (unverified; the route validates it)
- Measure request duration
- Log every request/response as structured JSON
"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..core.config import settings
from ..core.identity import MAX_OWNER_ID_LENGTH
from ..core.logging_config import owner_id_var, request_id_var

logger = logging.getLogger(__name__)

# Probes would otherwise flood the request log.
_QUIET_PATHS = frozenset({"/", "/health"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Single middleware handling request-id, timing, and logging."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # --- Request ID ---
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        token = request_id_var.set(rid)
        owner = (request.headers.get(settings.owner_header) or "").strip()[:MAX_OWNER_ID_LENGTH]
        owner_token = owner_id_var.set(owner)

        try:
            # --- Timing ---
            start = time.monotonic()
            response = await call_next(request)
            duration_ms = round((time.monotonic() - start) * 1000, 1)

            # --- Response headers ---
            response.headers["X-Request-ID"] = rid
            response.headers["X-Response-Time"] = f"{duration_ms}ms"

            # --- Structured request log ---
            level = logging.DEBUG if request.url.path in _QUIET_PATHS else logging.INFO
            logger.log(
                level,
                f"{request.method} {request.url.path} {response.status_code}",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            return response
        finally:
            owner_id_var.reset(owner_token)
            request_id_var.reset(token)

"""
Correlation middleware for directory requests.

Every request gets an id that is echoed in X-Request-ID, stored on
request.state for the error handlers, and bound to the logging context. The
actor context starts empty; the auth dependency binds it for the handler.
"""

import re
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from src.logging_config import actor_id_var, get_logger, request_id_var

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
SLOW_REQUEST_MS = 1000

# Client-supplied ids are written to logs and error bodies verbatim
_SAFE_REQUEST_ID = re.compile(r"[A-Za-z0-9._-]{1,64}")


def resolve_request_id(incoming: Optional[str]) -> str:
    if incoming and _SAFE_REQUEST_ID.fullmatch(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Binds request and actor context for the lifetime of one request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        request_token = request_id_var.set(request_id)
        actor_token = actor_id_var.set(None)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - start) * 1000, 1)
            response.headers[REQUEST_ID_HEADER] = request_id

            fields = {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            }
            if duration_ms > SLOW_REQUEST_MS:
                logger.warning("Slow directory request", extra=fields)
            else:
                logger.debug("Directory request handled", extra=fields)
            return response
        finally:
            actor_id_var.reset(actor_token)
            request_id_var.reset(request_token)

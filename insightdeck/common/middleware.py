"""
Request correlation for the HTTP API.

Every request gets an ``X-Request-ID`` (the client's, or a new one). The id
is bound to the logging context for the duration of the request, stored on
upload jobs so worker logs can be traced back, and echoed in the response.
"""

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from insightdeck.common.logging_config import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Binds a request id and logs one line per finished request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER))
        started = time.perf_counter()
        fields = {"method": request.method, "path": request.url.path}

        try:
            response = await call_next(request)
        except Exception as e:
            fields.update(error=str(e), error_type=type(e).__name__)
            logger.error("Request failed", extra={"extra_fields": fields})
            raise
        finally:
            clear_request_id()

        response.headers[REQUEST_ID_HEADER] = request_id
        fields.update(
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        # Uploads that fail admission are worth seeing at a glance
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, f"{request.method} {request.url.path} -> {response.status_code}",
                   extra={"extra_fields": fields})
        return response

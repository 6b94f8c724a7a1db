"""
FastAPI middleware for request correlation and structured logging.

Every request gets a request ID that is stamped on all log events emitted
while it is handled and echoed back in the ``X-Request-ID`` header.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.logging import clear_request_context, generate_request_id, get_logger, set_request_context


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request correlation and structured logging."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = get_logger("api.middleware")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or generate_request_id()
        set_request_context(request_id=request_id)

        start_time = time.time()
        try:
            response: Response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000

            self.logger.log_api_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            self.logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=(time.time() - start_time) * 1000,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        finally:
            clear_request_context()

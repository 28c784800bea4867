"""Request id and timing middleware."""
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from kalkyl.services.logging_config import current_request_id

logger = logging.getLogger("kalkyl-api.middleware")

REQUEST_ID_HEADER = "X-Request-ID"
SKIP_LOG_PATHS = {"/health"}


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id, reports its duration in X-Process-Time
    (milliseconds) and logs one access line per request.

    A client-supplied X-Request-ID is kept so a save can be traced from the
    browser to the log. While the request runs, the id is published through
    ``current_request_id`` for every log record the handlers emit.
    Health checks are not logged.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = current_request_id.set(request_id)
        start_time = time.perf_counter()
        try:
            response: Response = await call_next(request)
        finally:
            current_request_id.reset(token)

        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(duration_ms)

        if request.url.path not in SKIP_LOG_PATHS:
            level = logging.WARNING if response.status_code >= 500 else logging.INFO
            logger.log(
                level,
                f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms} ms)",
                extra={
                    "http_method": request.method,
                    "http_path": request.url.path,
                    "http_status": response.status_code,
                    "request_id": request_id,
                    "duration_ms": duration_ms,
                },
            )

        return response

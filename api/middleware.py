"""
Request context: request id propagation and latency logging
"""

import time
import uuid
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Injects:
    - request_id (reused from an incoming X-Request-ID header when present)
    - api_latency_ms

    Status polling is frequent, so successful GET /migration/status calls
    are logged at DEBUG only.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.perf_counter()

        request.state.request_id = request_id

        response: Response = await call_next(request)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        response.headers["X-Request-ID"] = request_id
        response.headers["X-API-Latency-ms"] = str(latency_ms)

        level = logging.DEBUG if request.url.path.endswith("/status") and response.status_code < 400 else logging.INFO
        logger.log(
            level,
            f"[{request_id}] {request.method} {request.url.path} -> {response.status_code} ({latency_ms} ms)"
        )
        return response

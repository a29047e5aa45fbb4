"""Per-request context: correlation id for ledger logs and latency metrics"""

import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from payout_ledger.infrastructure.observability.logging import request_id_var
from payout_ledger.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Binds the caller's X-Request-ID (or a fresh one) for the duration of the
    request, so every ledger and payout log line it produces can be joined
    back to it, and records request latency by route template.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)

        elapsed = time.perf_counter() - started
        # Template, not raw path: payout and vendor ids would explode label cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", "unmatched")
        request_duration_histogram.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).observe(elapsed)
        logger.debug(
            "Request handled",
            extra={"correlation_id": request_id, "endpoint": endpoint, "status": response.status_code},
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response

"""
Middleware for request-scoped tenancy concerns.
"""

import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from tracker.core.ip import extract_client_ip
from tracker.core.logging import bind_log_context, clear_log_context
from tracker.core.tracing import set_trace_id
from tracker.tenancy.rate_limit import rate_limit_headers

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-Id"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Gives every request an id and a client IP, and starts it on an empty
    log context so nothing leaks in from a previous request on the worker.
    """

    async def dispatch(self, request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid4())
        request.state.request_id = request_id
        request.state.client_ip = extract_client_ip(request)
        set_trace_id(request_id)

        clear_log_context()
        bind_log_context(request_id=request_id)
        logger.debug(
            "request.start",
            extra={"path": request.url.path, "client_ip": request.state.client_ip},
        )

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    """
    Copies the decision of whichever rate-limit dependency ran onto the
    response, so integrators see their budget on every reply.
    """

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        decision = getattr(request.state, "rate_limit", None)
        if decision is not None:
            for key, value in rate_limit_headers(decision).items():
                response.headers.setdefault(key, value)
        return response

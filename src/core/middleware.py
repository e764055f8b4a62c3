"""
Request tracing for the recommendation API.

Every request gets a request id (taken from ``X-Request-ID`` when the
caller sends one). While the request runs, log lines carry that id plus
whatever the URL says about the request: the user, the strategy and the
viewed or anchor product. Responses echo ``X-Request-ID`` and report
``X-Process-Time-Ms``.
"""

import re
import time
import uuid
from typing import Callable, Dict

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from core.logging import bind_context, clear_context, get_logger


logger = get_logger(__name__)

# Route segment -> strategy bound to the log context
_ROUTE_STRATEGIES = {
    "gnn": "graph",
    "hybrid": "hybrid",
    "content": "content",
    "best": "graph",
}

_USER_ROUTE = re.compile(r"^/api/recommend/(gnn|hybrid|content|best|personalized|outfits)/([^/]+)$")
_PRODUCT_ROUTE = re.compile(r"^/api/recommend/similar/([^/]+)$")


def request_fields(request: Request) -> Dict[str, str]:
    """Log context derived from the path and query string."""
    fields: Dict[str, str] = {}
    path = request.url.path
    params = request.query_params

    match = _USER_ROUTE.match(path)
    if match:
        route, fields["user_id"] = match.groups()
        strategy = _ROUTE_STRATEGIES.get(route) or params.get("strategy")
        if strategy:
            fields["strategy"] = strategy
        if params.get("productId"):
            fields["product_id"] = params["productId"]
        return fields

    match = _PRODUCT_ROUTE.match(path)
    if match:
        fields["product_id"] = match.group(1)
    return fields


class RequestTracingMiddleware(BaseHTTPMiddleware):
    """
    Binds per-request log context and times the request.

    Client errors (4xx) are logged as warnings, server errors as errors.

    Usage:
        app.add_middleware(RequestTracingMiddleware)
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
        bind_context(request_id=request_id, method=request.method, path=request.url.path, **request_fields(request))

        start = time.perf_counter()
        logger.debug("Request started", query=str(request.query_params) or None)
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        else:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            if response.status_code >= 500:
                log = logger.error
            elif response.status_code >= 400:
                log = logger.warning
            else:
                log = logger.info
            log("Request completed", status_code=response.status_code, duration_ms=duration_ms)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time-Ms"] = str(duration_ms)
            return response
        finally:
            clear_context()

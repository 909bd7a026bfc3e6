import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HTTP_REQUESTS = Counter(
    "cafeteria_http_requests_total",
    "HTTP requests by route template and status",
    ["method", "route", "status"],
)

HTTP_LATENCY = Histogram(
    "cafeteria_http_request_duration_seconds",
    "HTTP request latency by route template",
    ["method", "route"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """Label by the matched route template so ids never become label values.

    The template is rebuilt from the full request path: a route mounted under
    a router prefix only knows its own suffix, which is empty for "/menu".
    """
    if request.scope.get("route") is None and request.scope.get("endpoint") is None:
        return UNMATCHED_ROUTE
    names = {str(value): name for name, value in request.path_params.items()}
    segments = request.url.path.split("/")
    return "/".join(f"{{{names[segment]}}}" if segment in names else segment for segment in segments)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            route = route_label(request)
            HTTP_REQUESTS.labels(method=request.method, route=route, status=status).inc()
            HTTP_LATENCY.labels(method=request.method, route=route).observe(time.perf_counter() - start)

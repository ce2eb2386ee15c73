"""Request metrics for the HTTP API.

Tracks:
- ``doauth_http_requests_total`` (counter) by method, route and status
- ``doauth_http_request_duration_seconds`` (histogram) by method and route
- ``doauth_http_requests_in_progress`` (gauge)

Routes are labelled by their template (``/api/v1/vaults/{vault_id}``) rather
than the concrete URL so ledger object ids never become label values.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from prometheus_client import CollectorRegistry
    from starlette.requests import Request
    from starlette.responses import Response

_UNMATCHED = "<unmatched>"


def route_label(request: Request) -> str:
    """Full route template of a matched request, e.g. ``/api/v1/vaults/{vault_id}``.

    Built from the request path with each path-parameter value put back as
    ``{name}``, so router prefixes are always included and ledger ids never
    become label values. Requests no route matched share one label.
    """
    if request.scope.get("route") is None:
        return _UNMATCHED
    names = {str(value): name for name, value in request.path_params.items()}
    segments = request.url.path.split("/")
    return "/".join(f"{{{names[s]}}}" if s in names else s for s in segments)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that records request count, duration and concurrency."""

    def __init__(self, app: object, *, registry: CollectorRegistry) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._request_count = Counter(
            "doauth_http_requests_total",
            "Total HTTP requests",
            ("method", "route", "status_code"),
            registry=registry,
        )
        self._request_duration = Histogram(
            "doauth_http_request_duration_seconds",
            "HTTP request duration in seconds",
            ("method", "route"),
            registry=registry,
        )
        self._in_progress = Gauge(
            "doauth_http_requests_in_progress",
            "HTTP requests currently being served",
            registry=registry,
        )

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        start = time.monotonic()
        self._in_progress.inc()
        try:
            response: Response = await call_next(request)
        finally:
            self._in_progress.dec()

        route = route_label(request)
        self._request_count.labels(
            method=request.method, route=route, status_code=str(response.status_code)
        ).inc()
        self._request_duration.labels(method=request.method, route=route).observe(
            time.monotonic() - start
        )
        return response

"""HTTP instrumentation for every request.

Progress-specific counters (signals, completions, resets) are bumped in
the services where the decision is made; this middleware only covers
the transport: in-flight gauge, request count and latency.

Path parameters are collapsed to their route template
(``/v1/progress/{course_id}``) so that one course per student does not
become one time series per student.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

from coursetrack.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION


def route_template(request: Request) -> str:
    """Return the matched route's path template, or the raw path when none matches."""
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # scrapes of /metrics would otherwise count themselves
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = route_template(request)
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method, endpoint=endpoint, status_code=status_code
            ).inc()
            REQUEST_DURATION.labels(method=request.method, endpoint=endpoint).observe(
                time.monotonic() - start
            )

        return response

"""HTTP middleware shared by the FastAPI services."""

from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

from paybridge.common.config import settings
from paybridge.common.logging import trace_id_ctx
from paybridge.common.metrics import http_request_duration_seconds, http_requests_total


def add_request_middleware(app: FastAPI) -> None:
    """Record request count/latency and bind a trace id for every HTTP call."""

    @app.middleware("http")
    async def request_middleware(request: Request, call_next):
        trace_id = request.headers.get("x-trace-id") or str(uuid4())
        token = trace_id_ctx.set(trace_id)
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            response.headers["X-Trace-Id"] = trace_id
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(
                service=settings.service_name,
                route=route,
                method=method,
            ).observe(elapsed)
            http_requests_total.labels(
                service=settings.service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()
            trace_id_ctx.reset(token)

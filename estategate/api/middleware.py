from __future__ import annotations

from typing import Callable

from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool

from estategate.api.error_handling import error_response
from estategate.logging import bind_request, set_correlation_id
from estategate.security.filters import RequestContext, SecurityFilterPipeline


def install_security_filters(
    app: FastAPI, get_pipeline: Callable[[], SecurityFilterPipeline]
) -> None:
    """Run the authentication and authorization stages before any route.

    The verified identity (or None) is exposed as ``request.state.identity``.
    A rejection short-circuits with the error envelope; the route never runs.
    """

    @app.middleware("http")
    async def security_filters(request: Request, call_next):
        ctx = RequestContext(
            method=request.method,
            path=request.url.path,
            headers=request.headers,
        )
        # Membership lookups hit the store synchronously
        outcome = await run_in_threadpool(get_pipeline().process, ctx)
        request.state.identity = outcome.context.identity
        if outcome.rejection is not None:
            rejection = outcome.rejection
            return error_response(
                rejection.status_code, rejection.message, code=rejection.error_code
            )
        return await call_next(request)


def install_correlation_id(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Propagate X-Request-ID (or a fresh UUID) as the log correlation id."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        bind_request(request.method, request.url.path)
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CollectorRegistry, generate_latest
from starlette.responses import Response

from doauth import __version__
from doauth.api.middleware.cors import setup_cors
from doauth.api.v1 import v1_router
from doauth.config.settings import AppConfig
from doauth.engine.client import DOAuthEngine
from doauth.errors.doauth_errors import DOAuthError
from doauth.metrics.middleware import PrometheusMiddleware

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle hooks.

    Initialises the engine (ledger store, cache, collaborators, services) on
    startup and shuts it down on exit.
    """
    config: AppConfig = app.state.config
    engine = DOAuthEngine(config, metrics_registry=app.state.metrics_registry)

    try:
        await engine.initialize()
        app.state.engine = engine
        yield
    finally:
        await engine.close()


def create_app(*, config: AppConfig | None = None) -> FastAPI:
    """Build and return the FastAPI application.

    Args:
        config: Optional AppConfig. If *None*, a default config is created
            from environment variables.
    """
    if config is None:
        config = AppConfig()

    app = FastAPI(
        title="py-doauth",
        version=__version__,
        description="Delegated-access control plane for encrypted vault data",
        lifespan=_lifespan,
    )

    # Shared by the HTTP middleware and the engine metrics
    app.state.config = config
    app.state.metrics_registry = CollectorRegistry() if config.metrics.enabled else None

    # -- Middleware --
    setup_cors(app, config.server)
    if app.state.metrics_registry is not None:
        app.add_middleware(PrometheusMiddleware, registry=app.state.metrics_registry)

    # -- Error handler --
    @app.exception_handler(DOAuthError)
    async def _doauth_error_handler(request: Request, exc: DOAuthError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(
                "%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.code
            )
        return JSONResponse(
            status_code=exc.status_code,
            content={"code": exc.code, "error": exc.message, "details": exc.details()},
        )

    # -- Base routes --
    @app.get("/health", tags=["base"])
    async def health(request: Request) -> dict:
        engine: DOAuthEngine | None = getattr(request.app.state, "engine", None)
        if engine is None:
            return {"status": "starting", "components": {}}
        components = await engine.health_check()
        healthy = all(v in ("ok", "disabled") for v in components.values())
        return {"status": "ok" if healthy else "degraded", "components": components}

    @app.get("/metrics", tags=["base"], include_in_schema=False)
    async def metrics_endpoint(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        engine: DOAuthEngine | None = getattr(request.app.state, "engine", None)
        if engine is not None and engine.is_initialized and engine.metrics is not None:
            await engine.refresh_stats()
        registry = request.app.state.metrics_registry
        body = generate_latest(registry) if registry is not None else generate_latest()
        return Response(
            content=body,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # -- Mount v1 API --
    app.include_router(v1_router)

    return app

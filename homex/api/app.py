"""FastAPI application factory.

:func:`create_app` builds the app with CORS, the request-context middleware,
error handlers and routes.  Its lifespan opens the runtime (database,
notifier, lifecycle service), starts the expiry scheduler, and tears it all
down after uvicorn has drained in-flight requests.

Passing a prebuilt :class:`~homex.orchestrator.runner.Runtime` skips that
lifespan management; tests use this with a temporary database.

Typical usage::

    app = create_app(Settings())
    uvicorn.run(app, host="0.0.0.0", port=5000)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from homex import __version__
from homex.api.errors import REQUEST_ID_HEADER, install_error_handlers
from homex.api.middleware import RequestContextMiddleware
from homex.api.routes import router
from homex.core.settings import Settings
from homex.orchestrator.runner import Runtime, open_runtime

__all__ = ["create_app"]

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, runtime: Runtime | None = None) -> FastAPI:
    """Build the Homex API application.

    Args:
        settings: Application settings; loaded from the environment if
            ``None``.
        runtime: Already-open runtime.  When given, the lifespan neither
            opens nor closes anything and the scheduler is left alone.
    """
    if settings is None:
        settings = runtime.settings if runtime is not None else Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.runtime is not None:
            yield
            return
        async with open_runtime(settings) as rt:
            app.state.runtime = rt
            await rt.scheduler.start()
            logger.info(
                "Homex API started (env=%s, origins=%s)",
                settings.environment,
                ",".join(settings.allowed_origins) or "-",
            )
            try:
                yield
            finally:
                logger.info("Homex API shutting down.")
                app.state.runtime = None

    app = FastAPI(
        title="Healthy Home Exchange API",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.runtime = runtime

    install_error_handlers(app)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
        max_age=600,
    )
    app.include_router(router)
    return app

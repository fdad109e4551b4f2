"""FastAPI application entrypoint and configuration.

This module provides the application factory that configures logging,
creates the process-wide dataset cache, sets up CORS middleware, registers
the error handler for domain errors, includes the tile, spectral and
dataset routers and exposes a health check endpoint.

Example:
    The application can be run with uvicorn:
        $ uvicorn spectral_tiler.main:app --reload

    Or created with explicit settings (tests, embedding):
        >>> from spectral_tiler.core import config
        >>> from spectral_tiler.main import create_app
        >>> app = create_app(config.Settings(data_dir=Path("/srv/imagery")))
"""

import contextlib
import logging
from collections.abc import AsyncIterator

import fastapi
from fastapi import responses
from fastapi.middleware import cors

from spectral_tiler.api import datasets, spectral, tiles
from spectral_tiler.core import config, errors, logging_setup
from spectral_tiler.services import dataset_cache

logger = logging.getLogger(__name__)


def create_app(settings: config.Settings | None = None) -> fastapi.FastAPI:
    """Create and configure the FastAPI application.

    The dataset cache lives on ``app.state.dataset_cache``; its periodic
    eviction sweep runs for the lifetime of the application and every open
    dataset is closed on shutdown.

    Args:
        settings: Settings to use instead of get_settings(). When given,
            they also replace the get_settings dependency of every route.

    Returns:
        Configured FastAPI application instance ready for ASGI server.
    """
    override = settings is not None
    settings = settings or config.get_settings()
    logging_setup.configure_logging(settings.log_level)
    cache = dataset_cache.DatasetCache(settings)

    @contextlib.asynccontextmanager
    async def lifespan(_app: fastapi.FastAPI) -> AsyncIterator[None]:
        cache.start()
        logger.info("Serving datasets from %s", settings.data_dir)
        yield
        await cache.close()

    app = fastapi.FastAPI(title="Spectral Tiler", version="0.1.0", lifespan=lifespan)
    app.state.dataset_cache = cache
    if override:
        app.dependency_overrides[config.get_settings] = lambda: settings

    app.include_router(tiles.router)
    app.include_router(spectral.router)
    app.include_router(datasets.router)

    app.add_middleware(
        cors.CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.allow_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Effective-Zoom", "X-Zoom-Corrected"],
    )

    @app.exception_handler(errors.TileServiceError)
    async def tile_service_error(
        _request: fastapi.Request, exc: errors.TileServiceError
    ) -> responses.JSONResponse:
        """Render domain errors as ``{"success": false, "error": {...}}``."""
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.kind, exc.message)
        return responses.JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.to_dict()},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:  # type: ignore[misc]
        """Health check endpoint for monitoring and load balancers.

        Returns:
            Dictionary with status "ok" if the service is running.
        """
        return {"status": "ok"}

    return app


app = create_app()

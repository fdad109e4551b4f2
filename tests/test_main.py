"""Tests for the FastAPI main application factory and health checks.

This module validates that:
    - The FastAPI app is correctly instantiated via main.create_app,
    - OpenAPI metadata (title, version) matches the project contract,
    - The tile, spectral and dataset routers are registered,
    - The dataset cache is attached to the application state and closed on
      shutdown,
    - Domain errors are rendered as the structured JSON error body,
    - Logging is configured once per process.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, cast

from fastapi import testclient

from spectral_tiler import main
from spectral_tiler.core import config, errors, logging_setup
from spectral_tiler.services import dataset_cache

if TYPE_CHECKING:
    import pathlib


def test_create_app(settings: config.Settings) -> None:
    """Test that create_app returns a configured FastAPI instance."""
    app = main.create_app(settings)
    assert app.title == "Spectral Tiler"
    assert app.version == "0.1.0"
    assert isinstance(app.state.dataset_cache, dataset_cache.DatasetCache)
    assert app.state.dataset_cache.data_dir == settings.data_dir


def test_health_endpoint(settings: config.Settings) -> None:
    """Test the health check endpoint returns ok status."""
    client = testclient.TestClient(main.create_app(settings))
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_app_includes_routers(settings: config.Settings) -> None:
    """Test that all API routers are included in the app."""
    app = main.create_app(settings)
    routes: list[str] = [
        cast(str, getattr(route, "path", ""))
        for route in app.routes  # type: ignore[attr-defined]
        if hasattr(route, "path")
    ]
    assert "/health" in routes
    assert "/tiles/{dataset_id}/{z}/{x}/{y}.{ext}" in routes
    assert "/spectral/{dataset_id}/{z}/{x}/{y}" in routes
    assert "/spectral/{z}/{x}/{y}" in routes
    assert "/spectral/indices" in routes
    assert "/datasets/resident" in routes


def test_settings_override_reaches_routes(settings: config.Settings) -> None:
    """Test that explicit settings replace the get_settings dependency."""
    app = main.create_app(settings)
    assert app.dependency_overrides[config.get_settings]() is settings


def test_error_handler_renders_structured_body(
    settings: config.Settings,
) -> None:
    """Test the JSON body produced for domain errors."""
    app = main.create_app(settings)

    @app.get("/boom")
    async def boom() -> None:
        raise errors.UnknownIndex(
            "Index 'FOO' not found", details={"available_indices": ["NDVI"]}
        )

    response = testclient.TestClient(app).get("/boom")
    assert response.status_code == 404
    assert response.json() == {
        "success": False,
        "error": {
            "error": "UnknownIndex",
            "message": "Index 'FOO' not found",
            "status_code": 404,
            "details": {"available_indices": ["NDVI"]},
        },
    }


def test_lifespan_closes_cached_datasets(
    settings: config.Settings, field_tif: pathlib.Path
) -> None:
    """Test that shutdown closes every resident dataset."""
    app = main.create_app(settings)
    cache: dataset_cache.DatasetCache = app.state.dataset_cache
    with testclient.TestClient(app) as client:
        response = client.post("/datasets/field/load")
        assert response.status_code == 200
        entry = cache.get("field")
        assert entry is not None
    assert len(cache) == 0
    assert entry.handle.closed


def test_configure_logging_is_idempotent() -> None:
    """Test that repeated configuration does not stack handlers."""
    logger = logging_setup.configure_logging("DEBUG")
    handlers = list(logger.handlers)
    again = logging_setup.configure_logging("warning")
    assert again is logger
    assert again.handlers == handlers
    assert again.level == logging.WARNING
    assert logging_setup.configure_logging("nonsense").level == logging.INFO

"""Application settings and configuration management.

This module provides Pydantic-based settings management that loads
configuration from environment variables or a .env file. Settings include
the raster data directory, the default dataset, dataset cache ageing,
tile rendering defaults, CORS origins and the log level.

Example:
    Settings can be accessed via the cached get_settings() function:
        >>> from spectral_tiler.core.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.data_dir)

    Environment variables can override defaults:
        >>> DATA_DIR=/srv/imagery
        >>> DEFAULT_DATASET=field_42.tif
        >>> CACHE_MAX_AGE_MINUTES=15
"""

import functools
import pathlib

import pydantic
import pydantic_settings


class Settings(pydantic_settings.BaseSettings):
    """Runtime configuration pulled from environment variables or defaults.

    All settings can be overridden via environment variables or .env file.
    The data directory is created on demand via ensure_directories().

    Attributes:
        data_dir: Directory holding the GeoTIFF datasets served by id.
        default_dataset: File used when a request names the "default"
            dataset or omits it.
        cache_max_age_minutes: Idle time after which an opened dataset is
            evicted by the periodic sweep.
        cache_sweep_interval_seconds: Period of the eviction sweep.
        tile_size: Output tile edge in pixels when a request does not set it.
        max_zoom: Highest accepted tile zoom level.
        image_quality: Quality for lossy output formats (JPEG, WEBP).
        allow_origins: List of allowed CORS origins (["*"] allows all).
        log_level: Level for the package logger.

    Example:
        Create settings with custom values:
            >>> settings = Settings(
            ...     data_dir=Path("/srv/imagery"),
            ...     cache_max_age_minutes=5,
            ... )
            >>> settings.ensure_directories()
    """

    data_dir: pathlib.Path = pathlib.Path("data")
    default_dataset: str = "odm_orthophoto.tif"
    cache_max_age_minutes: float = pydantic.Field(default=60, gt=0)
    cache_sweep_interval_seconds: float = pydantic.Field(default=600, gt=0)
    tile_size: int = pydantic.Field(default=256, ge=64, le=1024)
    max_zoom: int = pydantic.Field(default=22, ge=0, le=30)
    image_quality: int = pydantic.Field(default=90, ge=1, le=100)
    allow_origins: list[str] = ["*"]
    log_level: str = "INFO"

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    def ensure_directories(self) -> None:
        """Create the data directory if it doesn't already exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)


@functools.lru_cache
def get_settings() -> Settings:
    """Get cached settings instance with directories initialized.

    Settings are loaded from environment variables or .env file and cached
    for the lifetime of the application. Subsequent calls return the same
    cached instance.

    Returns:
        Settings instance with all configuration values populated and
        the data directory ensured to exist.
    """
    settings = Settings()
    settings.ensure_directories()
    return settings

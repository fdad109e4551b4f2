"""True-color XYZ tile endpoint and shared tile response helpers.

Tiles are computed on demand from GeoTIFFs in the data directory. The
dataset is opened once through the dataset cache; the window read and the
image encoding run in the threadpool so the event loop stays responsive.

Tile responses carry two headers describing how the tile was produced:
    - ``X-Effective-Zoom``: zoom level the pixels were computed at,
    - ``X-Zoom-Corrected``: "true" when the requested zoom was off by one
      and the service stepped down a level.

Example:
    Request a true-color tile:
        >>> response = client.get("/tiles/field_42/18/140486/95722.png")
        >>> response.headers["content-type"]
        >>> # image/png

    Stretch 16-bit data to a fixed range:
        >>> client.get("/tiles/field_42/18/140486/95722.webp?rescale=0,4000")

    Use in MapLibre GL JS:
        >>> map.addSource('field', {
        ...     type: 'raster',
        ...     tiles: ['http://api/tiles/field_42/{z}/{x}/{y}.png'],
        ...     tileSize: 256
        ... });
"""

import math

import fastapi
from fastapi import concurrency, responses

from spectral_tiler.api import datasets
from spectral_tiler.core import config, errors
from spectral_tiler.core.models import TileAddress, TileResult
from spectral_tiler.services import dataset_cache, tile_compute
from spectral_tiler.utils import tiles

router = fastapi.APIRouter(prefix="/tiles", tags=["tiles"])

Range = tuple[float, float]


def parse_tile(z: str, x: str, y: str, max_zoom: int) -> TileAddress:
    """Parse and validate path tile coordinates.

    Raises:
        InvalidTileCoordinate: If a value is not an integer or the address
            falls outside the tile grid.
    """
    try:
        values = [int(v) for v in (z, x, y)]
    except ValueError:
        raise errors.InvalidTileCoordinate(
            "Tile coordinates must be integers",
            details={"z": z, "x": x, "y": y},
        ) from None

    return tiles.validate_tile(*values, max_zoom=max_zoom)


def parse_range(value: str | None, name: str) -> Range | None:
    """Parse a ``"min,max"`` query value.

    Returns:
        (min, max) floats, or None when the parameter is absent.

    Raises:
        InvalidParameter: If the value is not two finite numbers.
    """
    if value is None or not value.strip():
        return None

    try:
        low, high = (float(part) for part in value.split(","))
    except ValueError:
        low = high = math.nan

    if not (math.isfinite(low) and math.isfinite(high)):
        raise errors.InvalidParameter(
            f'"{name}" must be two comma-separated numbers, got "{value}"',
            details={"parameter": name, "value": value},
        )

    return low, high


def parse_percentiles(value: str | None) -> Range | None:
    """Parse a ``"low,high"`` percentile pair with 0 <= low <= high <= 100.

    Raises:
        InvalidParameter: If the value is malformed or out of range.
    """
    ranks = parse_range(value, "percentiles")
    if ranks is not None and not 0 <= ranks[0] <= ranks[1] <= 100:
        raise errors.InvalidParameter(
            "Percentiles must satisfy 0 <= low <= high <= 100",
            details={"parameter": "percentiles", "value": value},
        )

    return ranks


async def tile_response(
    result: TileResult,
    img_format: str,
    quality: int,
) -> responses.Response:
    """Encode a computed tile in the threadpool and wrap it in a response."""
    media_type = tile_compute.media_type(img_format)
    content = await concurrency.run_in_threadpool(
        tile_compute.encode_tile, result, img_format, quality
    )
    return responses.Response(
        content=content,
        media_type=media_type,
        headers={
            "X-Effective-Zoom": str(result.effective_zoom),
            "X-Zoom-Corrected": str(result.zoom_corrected).lower(),
        },
    )


@router.get("/{dataset_id}/{z}/{x}/{y}.{ext}")
async def rgb_tile(
    dataset_id: str,
    z: str,
    x: str,
    y: str,
    ext: str,
    size: int | None = fastapi.Query(None, ge=64, le=1024),  # noqa: B008
    rescale: str | None = None,
    quality: int | None = fastapi.Query(None, ge=1, le=100),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    cache: dataset_cache.DatasetCache = fastapi.Depends(  # noqa: B008
        datasets.get_dataset_cache
    ),
) -> responses.Response:
    """Render a true-color tile from the red, green and blue bands.

    Args:
        dataset_id: Dataset id or file name ("default" for the configured
            default dataset).
        z: Zoom level.
        x: Tile column.
        y: Tile row (XYZ, origin top-left).
        ext: Image format: png, jpg, jpeg or webp.
        size: Output tile edge in pixels, defaults to the configured size.
        rescale: Optional "min,max" stretch applied to every band.
        quality: Quality for jpg/jpeg/webp, defaults to the configured
            quality.
        settings: Application settings (injected via FastAPI Depends).
        cache: Dataset cache (injected via FastAPI Depends).

    Returns:
        Encoded image; transparent where the raster has no data.

    Raises:
        InvalidTileCoordinate: For addresses outside the grid (400).
        InvalidParameter: For unknown formats or malformed rescale (400).
        DatasetNotFound: If the dataset does not exist (404).
    """
    tile = parse_tile(z, x, y, settings.max_zoom)
    tile_compute.resolve_format(ext)
    value_range = parse_range(rescale, "rescale")

    entry = await cache.get_or_open(dataset_id)
    result = await concurrency.run_in_threadpool(
        tile_compute.render_rgb_tile,
        entry,
        tile,
        size or settings.tile_size,
        value_range,
    )
    return await tile_response(result, ext, quality or settings.image_quality)

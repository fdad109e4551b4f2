"""Band-algebra tile endpoints and the spectral index catalogue.

A spectral tile evaluates a formula over the bands of a dataset for every
pixel of an XYZ tile and colors the result with a colormap. The formula is
either free-form (``expression``) or a registered index (``index``); band
variables are aliases such as ``red``, ``nir`` or ``b4`` resolved from the
dataset's band metadata.

Requests are validated before any pixel is read: a missing formula, an
unknown index or colormap, a syntax error or a band the dataset does not
have all fail fast with a structured 4xx error body.

Example:
    NDVI with its recommended colormap:
        >>> client.get("/spectral/field_42/18/140486/95722?index=NDVI")

    A custom formula with a fixed stretch, as WEBP:
        >>> client.get(
        ...     "/spectral/field_42/18/140486/95722"
        ...     "?expression=(nir-red)/(nir%2Bred)&rescale=-0.2,0.8"
        ...     "&colormap=viridis&format=webp"
        ... )

    Browse the catalogue:
        >>> client.get("/spectral/indices/ndvi").json()["required_bands"]
        >>> # ["nir", "red"]
"""

from typing import Any

import fastapi
from fastapi import concurrency, responses

from spectral_tiler.api import datasets
from spectral_tiler.api import tiles as api_tiles
from spectral_tiler.core import config
from spectral_tiler.services import dataset_cache, tile_compute
from spectral_tiler.utils import colormaps, spectral_indices

router = fastapi.APIRouter(prefix="/spectral", tags=["spectral"])


@router.get("/indices")
async def list_indices() -> dict[str, Any]:
    """List the registered spectral indices.

    Returns:
        Dictionary with each index's key, name, equation, required bands,
        value range, display range, reference and recommended colormap.
    """
    indices = [d.to_dict() for d in spectral_indices.list_indices()]
    return {"indices": indices, "count": len(indices)}


@router.get("/indices/{name}")
async def get_index(name: str) -> dict[str, object]:
    """Describe one spectral index.

    Raises:
        UnknownIndex: If no index has that key (404, details list the
            available keys).
    """
    return spectral_indices.get_index(name).to_dict()


@router.get("/colormaps")
async def list_colormaps() -> dict[str, Any]:
    return {
        "colormaps": colormaps.list_colormaps(),
        "default": colormaps.DEFAULT_COLORMAP,
    }


async def _spectral_tile(
    dataset_id: str | None,
    z: str,
    x: str,
    y: str,
    expression: str | None,
    index: str | None,
    colormap: str | None,
    size: int | None,
    rescale: str | None,
    percentiles: str | None,
    img_format: str,
    quality: int | None,
    settings: config.Settings,
    cache: dataset_cache.DatasetCache,
) -> responses.Response:
    tile = api_tiles.parse_tile(z, x, y, settings.max_zoom)
    tile_compute.resolve_format(img_format)
    plan = tile_compute.prepare_spectral(expression, index, colormap)
    value_range = api_tiles.parse_range(rescale, "rescale")
    ranks = api_tiles.parse_percentiles(percentiles)

    entry = await cache.get_or_open(dataset_id)
    tile_compute.check_bands(plan, entry.band_metadata)

    result = await concurrency.run_in_threadpool(
        tile_compute.render_spectral_tile,
        entry,
        tile,
        plan,
        size or settings.tile_size,
        value_range,
        ranks,
    )
    return await api_tiles.tile_response(
        result, img_format, quality or settings.image_quality
    )


@router.get("/{dataset_id}/{z}/{x}/{y}")
async def spectral_tile(
    dataset_id: str,
    z: str,
    x: str,
    y: str,
    expression: str | None = None,
    index: str | None = None,
    colormap: str | None = None,
    size: int | None = fastapi.Query(None, ge=64, le=1024),  # noqa: B008
    rescale: str | None = None,
    percentiles: str | None = None,
    img_format: str = fastapi.Query("png", alias="format"),  # noqa: B008
    quality: int | None = fastapi.Query(None, ge=1, le=100),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    cache: dataset_cache.DatasetCache = fastapi.Depends(  # noqa: B008
        datasets.get_dataset_cache
    ),
) -> responses.Response:
    """Render a colormapped band-algebra tile.

    Args:
        dataset_id: Dataset id or file name ("default" for the configured
            default dataset).
        z: Zoom level.
        x: Tile column.
        y: Tile row (XYZ, origin top-left).
        expression: Free-form formula over band aliases; wins over index.
        index: Registered index key, e.g. "NDVI" (case-insensitive).
        colormap: Colormap name; defaults to the index's recommendation,
            else viridis.
        size: Output tile edge in pixels.
        rescale: Fixed "min,max" normalisation range.
        percentiles: "low,high" percentile ranks for a per-tile stretch.
        img_format: png (default), jpeg/jpg or webp.
        quality: Quality for lossy formats.
        settings: Application settings (injected via FastAPI Depends).
        cache: Dataset cache (injected via FastAPI Depends).

    Returns:
        Encoded image with X-Effective-Zoom and X-Zoom-Corrected headers.

    Raises:
        MissingFormulaOrIndex: If neither expression nor index is given.
        UnknownIndex: For unregistered index keys (404).
        UnknownColormap: For unknown colormap names.
        ExpressionSyntaxError: If the formula does not compile.
        UnresolvedBandAlias: If the dataset lacks a band the formula uses.
        InvalidParameter: For malformed rescale/percentiles or formats.
        DatasetNotFound: If the dataset does not exist (404).
        TileGenerationError: On unexpected read or encoding failures (500).
    """
    return await _spectral_tile(
        dataset_id,
        z,
        x,
        y,
        expression,
        index,
        colormap,
        size,
        rescale,
        percentiles,
        img_format,
        quality,
        settings,
        cache,
    )


@router.get("/{z}/{x}/{y}")
async def default_spectral_tile(
    z: str,
    x: str,
    y: str,
    expression: str | None = None,
    index: str | None = None,
    colormap: str | None = None,
    size: int | None = fastapi.Query(None, ge=64, le=1024),  # noqa: B008
    rescale: str | None = None,
    percentiles: str | None = None,
    img_format: str = fastapi.Query("png", alias="format"),  # noqa: B008
    quality: int | None = fastapi.Query(None, ge=1, le=100),  # noqa: B008
    settings: config.Settings = fastapi.Depends(config.get_settings),  # noqa: B008
    cache: dataset_cache.DatasetCache = fastapi.Depends(  # noqa: B008
        datasets.get_dataset_cache
    ),
) -> responses.Response:
    """Same as spectral_tile() against the configured default dataset."""
    return await _spectral_tile(
        None,
        z,
        x,
        y,
        expression,
        index,
        colormap,
        size,
        rescale,
        percentiles,
        img_format,
        quality,
        settings,
        cache,
    )

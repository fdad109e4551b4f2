"""Tile compute pipeline: window, bands, band algebra, colormap, encoding.

This module composes the window resolver, the band alias table, the
expression engine and the colormap engine into pixel buffers ready for
image encoding. Validation (prepare_spectral, check_bands) never touches
raster pixels, so malformed requests are rejected before any read.

Normalisation of band-algebra results follows this precedence:
    1. an explicit ``rescale`` range,
    2. explicit ``percentiles`` computed on the tile's valid pixels,
    3. the named index's display range, then its theoretical range,
    4. a 2/98 percentile stretch for free-form formulas.

Tiles that miss the raster come back transparent; partially covered tiles
get the covered part placed at its true position and the rest transparent.

Example:
    Render an NDVI tile from a cached dataset entry:
        >>> plan = tile_compute.prepare_spectral(None, "ndvi", None)
        >>> tile_compute.check_bands(plan, entry.band_metadata)
        {'nir': 3, 'red': 0}
        >>> result = tile_compute.render_spectral_tile(
        ...     entry, TileAddress(14, 8470, 5527), plan, size=256
        ... )
        >>> png = tile_compute.encode_tile(result, "png")
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

import numpy as np
from rio_tiler.utils import render

from spectral_tiler.core import errors
from spectral_tiler.core.models import TileResult
from spectral_tiler.utils import colormaps, expression, spectral_indices, tiles

if TYPE_CHECKING:
    from collections.abc import Sequence

    from spectral_tiler.core.models import TileAddress, TileWindow
    from spectral_tiler.services.dataset_cache import DatasetCacheEntry
    from spectral_tiler.utils.bands import BandMetadata

logger = logging.getLogger(__name__)

Range = tuple[float, float]

IMAGE_FORMATS: dict[str, tuple[str, str]] = {
    "png": ("PNG", "image/png"),
    "jpeg": ("JPEG", "image/jpeg"),
    "jpg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}
DEFAULT_PERCENTILES: Range = (2.0, 98.0)


@dataclasses.dataclass(frozen=True)
class SpectralPlan:
    """Validated, compiled band-algebra request.

    Attributes:
        compiled: Compiled formula.
        index: Named index the formula came from, None for free formulas.
        colormap: Canonical colormap name.
    """

    compiled: expression.Expression
    index: spectral_indices.SpectralIndexDefinition | None
    colormap: str


def media_type(img_format: str) -> str:
    return resolve_format(img_format)[1]


def resolve_format(img_format: str) -> tuple[str, str]:
    """(rio-tiler driver, media type) for a format name.

    Raises:
        InvalidParameter: For unsupported formats.
    """
    try:
        return IMAGE_FORMATS[img_format.lower()]
    except KeyError:
        raise errors.InvalidParameter(
            f"Unsupported image format '{img_format}'",
            details={"available_formats": list(IMAGE_FORMATS)},
        ) from None


def prepare_spectral(
    formula: str | None,
    index_name: str | None,
    colormap: str | None,
) -> SpectralPlan:
    """Validate and compile a band-algebra request.

    A supplied formula takes precedence; the index name is then ignored.

    Raises:
        MissingFormulaOrIndex: If neither a formula nor an index is given.
        UnknownIndex: If the index name is not registered.
        ExpressionSyntaxError: If the formula does not compile.
        UnknownColormap: If the colormap name is unknown.
    """
    if formula and formula.strip():
        definition = None
        compiled = expression.compile_expression(formula)
    elif index_name and index_name.strip():
        definition = spectral_indices.get_index(index_name)
        compiled = expression.compile_expression(definition.equation)
    else:
        raise errors.MissingFormulaOrIndex(
            'Either "expression" or "index" query parameter must be provided',
            details={"available_indices": spectral_indices.index_names()},
        )

    if colormap:
        resolved = colormaps.resolve_colormap(colormap)
    elif definition is not None:
        resolved = definition.colormap
    else:
        resolved = colormaps.DEFAULT_COLORMAP

    return SpectralPlan(compiled=compiled, index=definition, colormap=resolved)


def check_bands(plan: SpectralPlan, metadata: BandMetadata) -> dict[str, int]:
    """Bind the plan's variables to band indices of a dataset.

    Returns:
        Variable -> zero-based band index.

    Raises:
        UnresolvedBandAlias: If a variable (or a band the index requires)
            cannot be resolved against the dataset's aliases.
    """
    missing: list[str] = []
    if plan.index is not None:
        availability = spectral_indices.can_calculate(plan.index.key, metadata)
        missing = availability.missing_bands

    mapping, unresolved = metadata.resolve(plan.compiled.variables)
    missing = sorted(set(missing) | set(unresolved))
    if missing:
        subject = plan.index.key if plan.index else "Expression"
        raise errors.UnresolvedBandAlias(
            f"{subject} requires bands not found in dataset: "
            f"{', '.join(missing)}",
            details={
                "missing_bands": missing,
                "available_bands": list(metadata.names),
            },
        )

    return mapping


def transparent_tile(size: int, tile_window: TileWindow | None = None) -> TileResult:
    """Fully transparent tile for requests outside the raster."""
    effective = tile_window.effective.z if tile_window else 0
    return TileResult(
        data=np.zeros((3, size, size), dtype=np.uint8),
        mask=np.zeros((size, size), dtype=np.uint8),
        effective_zoom=effective,
        zoom_corrected=bool(tile_window and tile_window.zoom_corrected),
        has_coverage=False,
    )


def _placement(
    window_source: Sequence[float],
    covered: Sequence[float],
    size: int,
) -> tuple[int, int, int, int]:
    """Rows/columns of the output tile that the covered rectangle fills."""
    sx0, sy0, sx1, sy1 = window_source
    min_x, min_y, max_x, max_y = covered
    scale_x = size / (sx1 - sx0)
    scale_y = size / (sy1 - sy0)

    def clamp(value: float) -> int:
        return min(max(round(value), 0), size)

    return (
        clamp((min_x - sx0) * scale_x),
        clamp((min_y - sy0) * scale_y),
        clamp((max_x - sx0) * scale_x),
        clamp((max_y - sy0) * scale_y),
    )


def read_tile_bands(
    entry: DatasetCacheEntry,
    tile_window: TileWindow,
    band_indexes: Sequence[int],
    size: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Read zero-based bands for a resolved tile into a size x size grid.

    The part of the tile inside the raster is read as a fractional pixel
    rectangle and placed at its position in the output grid.

    Returns:
        (data, valid): float64 (len(band_indexes), size, size) and a boolean
        (size, size) mask, False outside the raster and where the dataset
        mask marks pixels invalid.
    """
    window = tile_window.window
    data = np.zeros((len(band_indexes), size, size), dtype=np.float64)
    valid = np.zeros((size, size), dtype=bool)
    if window is None:
        return data, valid

    covered = window.clipped
    col0, row0, col1, row1 = _placement(window.source, covered, size)
    if col1 <= col0 or row1 <= row0:
        return data, valid

    with entry.use() as handle:
        part, part_valid = handle.read(
            covered, list(band_indexes), (row1 - row0, col1 - col0)
        )
    data[:, row0:row1, col0:col1] = part
    valid[row0:row1, col0:col1] = part_valid
    return data, valid


def _value_range(
    values: np.ndarray,
    plan: SpectralPlan,
    rescale: Range | None,
    percentiles: Range | None,
) -> Range:
    if rescale is not None:
        return rescale
    if percentiles is not None:
        return colormaps.percentile_range(values, *percentiles)
    if plan.index is not None:
        return plan.index.visual_range or plan.index.value_range
    return colormaps.percentile_range(values, *DEFAULT_PERCENTILES)


def _alpha(valid: np.ndarray) -> np.ndarray:
    return np.where(valid, 255, 0).astype(np.uint8)


def render_spectral_tile(
    entry: DatasetCacheEntry,
    tile: TileAddress,
    plan: SpectralPlan,
    size: int,
    rescale: Range | None = None,
    percentiles: Range | None = None,
    projector: tiles.Projector = tiles.default_projector,
) -> TileResult:
    """Compute a colormapped band-algebra tile.

    Args:
        entry: Resident dataset.
        tile: Validated tile address.
        plan: Output of prepare_spectral().
        size: Output tile edge in pixels.
        rescale: Fixed (min, max) normalisation range.
        percentiles: (low, high) percentile ranks for a per-tile stretch.
        projector: Coordinate projection used for non-WGS84 rasters.

    Returns:
        TileResult with RGB data and alpha mask.

    Raises:
        UnresolvedBandAlias: If the dataset lacks a band the plan needs.
        TileGenerationError: On unexpected windowing or reading failures.
    """
    mapping = check_bands(plan, entry.band_metadata)
    variables = sorted(mapping)
    band_indexes = sorted(set(mapping.values())) or [0]

    try:
        tile_window = tiles.resolve_tile_window(
            tile,
            entry.geotransform,
            entry.width,
            entry.height,
            entry.bounds,
            projector,
        )
        if not tile_window.has_coverage:
            return transparent_tile(size, tile_window)

        data, valid = read_tile_bands(entry, tile_window, band_indexes, size)
        env = {v: data[band_indexes.index(mapping[v])] for v in variables}
        values = expression.evaluate_bands(plan.compiled, env, (size, size))
        vmin, vmax = _value_range(values[valid], plan, rescale, percentiles)
        rgb = colormaps.apply_colormap(values, vmin, vmax, plan.colormap)
    except errors.TileServiceError:
        raise
    except Exception as exc:
        logger.exception("Spectral tile %s failed for %s", tile, entry.dataset_id)
        raise errors.TileGenerationError(str(exc)) from exc

    return TileResult(
        data=rgb,
        mask=_alpha(valid),
        effective_zoom=tile_window.effective.z,
        zoom_corrected=tile_window.zoom_corrected,
    )


def _rgb_band_indexes(metadata: BandMetadata) -> list[int]:
    if metadata.band_count < 3:
        return [0, 0, 0]

    resolved = [metadata.index_of(alias) for alias in ("red", "green", "blue")]
    if any(index is None for index in resolved):
        return [0, 1, 2]

    return [int(index) for index in resolved]  # type: ignore[arg-type]


def _stretch(band: np.ndarray, valid: np.ndarray, rescale: Range | None) -> np.ndarray:
    vmin, vmax = rescale or colormaps.percentile_range(
        band[valid], *DEFAULT_PERCENTILES
    )
    return np.floor(colormaps.normalize(band, vmin, vmax) * 255 + 0.5)


def render_rgb_tile(
    entry: DatasetCacheEntry,
    tile: TileAddress,
    size: int,
    rescale: Range | None = None,
    projector: tiles.Projector = tiles.default_projector,
) -> TileResult:
    """Compute a true-color tile from the red, green and blue bands.

    8-bit data passes through unchanged unless ``rescale`` is given; other
    data types are stretched per band with ``rescale`` or a 2/98 percentile
    stretch. Rasters with fewer than three bands render the first band as
    grey.

    Raises:
        TileGenerationError: On unexpected windowing or reading failures.
    """
    indexes = _rgb_band_indexes(entry.band_metadata)
    unique = sorted(set(indexes))

    try:
        tile_window = tiles.resolve_tile_window(
            tile,
            entry.geotransform,
            entry.width,
            entry.height,
            entry.bounds,
            projector,
        )
        if not tile_window.has_coverage:
            return transparent_tile(size, tile_window)

        data, valid = read_tile_bands(entry, tile_window, unique, size)
        rgb_bands = data[[unique.index(i) for i in indexes]]
        if entry.handle.dtype == "uint8" and rescale is None:
            rgb = np.clip(np.floor(rgb_bands + 0.5), 0, 255)
        else:
            rgb = np.stack([_stretch(b, valid, rescale) for b in rgb_bands])
    except errors.TileServiceError:
        raise
    except Exception as exc:
        logger.exception("RGB tile %s failed for %s", tile, entry.dataset_id)
        raise errors.TileGenerationError(str(exc)) from exc

    return TileResult(
        data=rgb.astype(np.uint8),
        mask=_alpha(valid),
        effective_zoom=tile_window.effective.z,
        zoom_corrected=tile_window.zoom_corrected,
    )


def encode_tile(result: TileResult, img_format: str = "png", quality: int = 90) -> bytes:
    """Encode a tile with rio-tiler.

    PNG (default) and WEBP keep the alpha mask; JPEG drops it.

    Raises:
        InvalidParameter: For unsupported formats.
        TileGenerationError: If encoding fails.
    """
    driver, _ = resolve_format(img_format)
    options: dict[str, int] = {}
    if driver in ("JPEG", "WEBP"):
        options["quality"] = quality

    mask = None if driver == "JPEG" else result.mask
    try:
        return render(result.data, mask=mask, img_format=driver, **options)
    except Exception as exc:
        logger.exception("Encoding %s tile failed", driver)
        raise errors.TileGenerationError(f"Encoding failed: {exc}") from exc

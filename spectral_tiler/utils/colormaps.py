"""Colormaps and value normalisation for single-band results.

A colormap is a short ordered list of RGB control points. A normalised
value in [0, 1] is scaled onto the control point index range and the two
neighbouring control points are linearly interpolated per channel.

Two normalisation modes run before the lookup:
    - fixed range: ``(value - min) / (max - min)`` clamped to [0, 1]; a
      degenerate range (max == min) maps every pixel to the midpoint color,
    - percentile stretch: min/max are taken from the tile's own value
      distribution (2nd/98th percentile by default).

Example:
    Color an NDVI array with a fixed range:
        >>> import numpy as np
        >>> from spectral_tiler.utils import colormaps
        >>> values = np.array([[-1.0, 0.0, 1.0]])
        >>> colormaps.apply_colormap(values, -1.0, 1.0, "Greys")[:, 0, :]
        array([[  0, 128, 255],
               [  0, 128, 255],
               [  0, 128, 255]], dtype=uint8)
"""

from __future__ import annotations

import functools
import math

import numpy as np

from spectral_tiler.core import errors
from spectral_tiler.utils import spectral_indices

RGB = tuple[int, int, int]

COLORMAPS: dict[str, tuple[RGB, ...]] = {
    "viridis": (
        (68, 1, 84),
        (59, 82, 139),
        (33, 145, 140),
        (94, 201, 98),
        (253, 231, 37),
    ),
    "plasma": (
        (13, 8, 135),
        (126, 3, 168),
        (204, 71, 120),
        (248, 149, 64),
        (240, 249, 33),
    ),
    "inferno": (
        (0, 0, 4),
        (87, 16, 110),
        (188, 55, 84),
        (249, 142, 9),
        (252, 255, 164),
    ),
    "magma": (
        (0, 0, 4),
        (81, 18, 124),
        (183, 55, 121),
        (251, 136, 97),
        (252, 253, 191),
    ),
    "cividis": (
        (0, 32, 76),
        (0, 90, 124),
        (122, 135, 124),
        (213, 181, 118),
        (255, 233, 69),
    ),
    "RdYlGn": (
        (165, 0, 38),
        (215, 48, 39),
        (252, 141, 89),
        (254, 224, 139),
        (217, 239, 139),
        (166, 217, 106),
        (26, 152, 80),
        (0, 104, 55),
    ),
    "RdYlBu": (
        (165, 0, 38),
        (215, 48, 39),
        (244, 109, 67),
        (253, 174, 97),
        (254, 224, 144),
        (224, 243, 248),
        (171, 217, 233),
        (116, 173, 209),
        (69, 117, 180),
        (49, 54, 149),
    ),
    "Spectral": (
        (158, 1, 66),
        (213, 62, 79),
        (244, 109, 67),
        (253, 174, 97),
        (254, 224, 139),
        (230, 245, 152),
        (171, 221, 164),
        (102, 194, 165),
        (50, 136, 189),
        (94, 79, 162),
    ),
    "Greys": (
        (0, 0, 0),
        (64, 64, 64),
        (128, 128, 128),
        (192, 192, 192),
        (255, 255, 255),
    ),
    "terrain": (
        (51, 102, 153),
        (102, 153, 102),
        (153, 153, 102),
        (204, 153, 102),
        (255, 255, 255),
    ),
    "ndvi": (
        (165, 0, 38),
        (215, 88, 39),
        (244, 165, 89),
        (254, 224, 139),
        (217, 239, 139),
        (166, 217, 106),
        (102, 194, 165),
        (26, 152, 80),
        (0, 104, 55),
    ),
}

DEFAULT_COLORMAP = "viridis"


def list_colormaps() -> list[str]:
    return list(COLORMAPS)


def resolve_colormap(name: str) -> str:
    """Canonical colormap name, matched case-insensitively.

    Raises:
        UnknownColormap: If no colormap has that name.
    """
    if name in COLORMAPS:
        return name

    for candidate in COLORMAPS:
        if candidate.lower() == name.strip().lower():
            return candidate

    raise errors.UnknownColormap(
        f"Colormap '{name}' not found",
        details={"available_colormaps": list_colormaps()},
    )


@functools.lru_cache(maxsize=None)
def control_points(name: str) -> np.ndarray:
    """Control points of a colormap as a read-only float64 (N, 3) array."""
    points = np.array(COLORMAPS[resolve_colormap(name)], dtype=np.float64)
    points.setflags(write=False)
    return points


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def color_at(value: float, name: str = DEFAULT_COLORMAP) -> RGB:
    """Color for one normalised value.

    Args:
        value: Normalised value, clamped to [0, 1].
        name: Colormap name.

    Returns:
        (r, g, b) integers. 0 and 1 return the first and last control
        points exactly.
    """
    colors = COLORMAPS[resolve_colormap(name)]
    clamped = min(max(value, 0.0), 1.0)
    scaled = clamped * (len(colors) - 1)
    lo = math.floor(scaled)
    hi = math.ceil(scaled)
    if lo == hi:
        return colors[lo]

    factor = scaled - lo
    c1, c2 = colors[lo], colors[hi]
    return tuple(  # type: ignore[return-value]
        math.floor(a + (b - a) * factor + 0.5) for a, b in zip(c1, c2, strict=True)
    )


def colorize(normalized: np.ndarray, name: str = DEFAULT_COLORMAP) -> np.ndarray:
    """Vectorised color_at over an array of normalised values.

    Returns:
        uint8 array shaped (3, *normalized.shape).
    """
    points = control_points(name)
    scaled = np.nan_to_num(np.asarray(normalized, dtype=np.float64), nan=0.0)
    scaled = np.clip(scaled, 0.0, 1.0)
    scaled = scaled * (len(points) - 1)
    lo = np.floor(scaled).astype(np.intp)
    hi = np.ceil(scaled).astype(np.intp)
    factor = (scaled - lo)[..., np.newaxis]
    rgb = points[lo] + (points[hi] - points[lo]) * factor
    rgb = _round_half_up(rgb).astype(np.uint8)
    return np.moveaxis(rgb, -1, 0)


def normalize(values: np.ndarray, vmin: float, vmax: float) -> np.ndarray:
    """Fixed-range normalisation clamped to [0, 1].

    A degenerate range (vmax == vmin) yields 0.5 everywhere.
    """
    values = np.asarray(values, dtype=np.float64)
    if vmax == vmin:
        return np.full(values.shape, 0.5)

    return np.clip((values - vmin) / (vmax - vmin), 0.0, 1.0)


def percentile_range(
    values: np.ndarray,
    low: float = 2.0,
    high: float = 98.0,
) -> tuple[float, float]:
    """Values at the given percentile ranks of the finite values.

    Ranks are ``floor(p / 100 * n)`` into the sorted finite values, clamped
    to the last element. The result always satisfies lo <= hi.

    Returns:
        (lo, hi); (0.0, 0.0) when there is no finite value.
    """
    finite = np.asarray(values, dtype=np.float64)
    finite = np.sort(finite[np.isfinite(finite)], axis=None)
    if finite.size == 0:
        return 0.0, 0.0

    low, high = sorted((low, high))
    last = finite.size - 1
    lo_index = min(math.floor(low / 100.0 * finite.size), last)
    hi_index = min(math.floor(high / 100.0 * finite.size), last)
    return float(finite[lo_index]), float(finite[hi_index])


def apply_colormap(
    values: np.ndarray,
    vmin: float,
    vmax: float,
    name: str = DEFAULT_COLORMAP,
) -> np.ndarray:
    """Normalise with a fixed range and colorize.

    Returns:
        uint8 array shaped (3, *values.shape).
    """
    return colorize(normalize(values, vmin, vmax), name)


def apply_colormap_percentiles(
    values: np.ndarray,
    name: str = DEFAULT_COLORMAP,
    low: float = 2.0,
    high: float = 98.0,
) -> np.ndarray:
    """Percentile-stretch ``values`` and colorize them."""
    vmin, vmax = percentile_range(values, low, high)
    return apply_colormap(values, vmin, vmax, name)


def recommended_colormap(index_name: str) -> str:
    """Colormap suggested for a spectral index, ``viridis`` if unknown."""
    definition = spectral_indices.find_index(index_name)
    return definition.colormap if definition else DEFAULT_COLORMAP

"""Data models shared by the tile compute pipeline.

This module defines the value objects passed between the window resolver,
the dataset cache and the tile compute orchestrator: tile addresses,
geotransforms, geographic bounds, pixel windows and the rendered tile
result.

Example:
    Describe a tile and a raster georeference:
        >>> from spectral_tiler.core.models import GeoTransform, TileAddress
        >>> tile = TileAddress(z=10, x=512, y=384)
        >>> transform = GeoTransform(
        ...     origin_x=500000.0,
        ...     origin_y=5200000.0,
        ...     res_x=10.0,
        ...     res_y=-10.0,
        ...     crs="EPSG:32633",
        ... )
        >>> transform.is_geographic
        False
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np

WGS84 = "EPSG:4326"


@dataclasses.dataclass(frozen=True)
class TileAddress:
    """XYZ web map tile address (zoom, column, row)."""

    z: int
    x: int
    y: int

    def parent_zoom(self) -> TileAddress:
        """Same column and row one zoom level up."""
        return TileAddress(z=self.z - 1, x=self.x, y=self.y)


@dataclasses.dataclass(frozen=True)
class GeoBounds:
    """Geographic bounding box in WGS84 degrees."""

    west: float
    south: float
    east: float
    north: float

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)


@dataclasses.dataclass(frozen=True)
class GeoTransform:
    """Affine georeference of a north-up raster.

    Attributes:
        origin_x: Ground X coordinate of the upper-left corner.
        origin_y: Ground Y coordinate of the upper-left corner.
        res_x: Pixel width in ground units.
        res_y: Pixel height in ground units (negative for north-up rasters).
        crs: Native coordinate reference identifier, e.g. "EPSG:32633".
    """

    origin_x: float
    origin_y: float
    res_x: float
    res_y: float
    crs: str = WGS84

    @property
    def is_geographic(self) -> bool:
        """True when the native reference is WGS84 longitude/latitude."""
        return self.crs.upper() in {WGS84, "OGC:CRS84"}


@dataclasses.dataclass(frozen=True)
class PixelWindow:
    """Integer pixel rectangle clamped to the raster extent.

    ``source`` keeps the unclamped floating-point rectangle the tile maps to.
    The integer bounds decide coverage; reads use ``clipped``, the part of
    ``source`` inside the raster, so pixels land at their exact position in
    the output image.
    """

    min_x: int
    min_y: int
    max_x: int
    max_y: int
    source: tuple[float, float, float, float]

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    @property
    def clipped(self) -> tuple[float, float, float, float]:
        """``source`` intersected with the raster, in fractional pixels."""
        sx0, sy0, sx1, sy1 = self.source
        return (
            max(sx0, self.min_x),
            max(sy0, self.min_y),
            min(sx1, self.max_x),
            min(sy1, self.max_y),
        )


@dataclasses.dataclass(frozen=True)
class TileWindow:
    """Outcome of resolving a tile against a raster.

    A ``window`` of None means the tile does not intersect the raster and
    the caller must substitute a transparent tile.
    """

    requested: TileAddress
    effective: TileAddress
    bbox: GeoBounds
    window: PixelWindow | None

    @property
    def zoom_corrected(self) -> bool:
        return self.effective.z != self.requested.z

    @property
    def has_coverage(self) -> bool:
        return self.window is not None


@dataclasses.dataclass
class TileResult:
    """Pixel buffer ready for image encoding.

    Attributes:
        data: uint8 array shaped (3, size, size).
        mask: uint8 alpha array shaped (size, size), 255 where valid.
        effective_zoom: Zoom level the pixels were computed at.
        zoom_corrected: Whether the zoom-mismatch recovery kicked in.
        has_coverage: False for transparent no-coverage tiles.
    """

    data: np.ndarray
    mask: np.ndarray
    effective_zoom: int
    zoom_corrected: bool = False
    has_coverage: bool = True


@dataclasses.dataclass
class DatasetInfo:
    """Serializable snapshot of a resident dataset."""

    id: str
    path: str
    width: int
    height: int
    band_count: int
    band_names: list[str]
    crs: str
    bounds: tuple[float, float, float, float]
    size_bytes: int
    opened_at: datetime.datetime
    last_access: datetime.datetime

"""XYZ tile math and tile-to-pixel-window resolution.

This module converts web map tile addresses into geographic bounding boxes
and then into pixel windows of a source raster. Rasters stored in a
projected coordinate system have the tile corners reprojected through a
projector callable (rasterio.warp.transform by default) before the
geotransform is applied.

When a requested tile does not touch the raster at its zoom level, but the
same column and row one level up do, the resolver steps down a single zoom
level. This recovers clients that are off by one in their zoom numbering.

Example:
    Resolve a tile against a WGS84 raster:
        >>> from spectral_tiler.core.models import GeoBounds, GeoTransform
        >>> from spectral_tiler.utils import tiles
        >>> tile = tiles.validate_tile(2, 2, 1, max_zoom=22)
        >>> transform = GeoTransform(0.0, 60.0, 0.1, -0.1, "EPSG:4326")
        >>> bounds = GeoBounds(0.0, 0.0, 90.0, 60.0)
        >>> result = tiles.resolve_tile_window(
        ...     tile, transform, width=900, height=600, bounds=bounds
        ... )
        >>> result.window
        PixelWindow(min_x=0, min_y=0, max_x=900, max_y=600, ...)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Sequence

from rasterio import warp

from spectral_tiler.core import errors
from spectral_tiler.core.models import (
    WGS84,
    GeoBounds,
    GeoTransform,
    PixelWindow,
    TileAddress,
    TileWindow,
)

logger = logging.getLogger(__name__)

MAX_LATITUDE = 85.05112877980659

Projector = Callable[
    [str, str, Sequence[float], Sequence[float]],
    tuple[Sequence[float], Sequence[float]],
]


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_tile(z: int, x: int, y: int, max_zoom: int) -> TileAddress:
    """Validate an XYZ tile address.

    Args:
        z: Zoom level.
        x: Tile column.
        y: Tile row.
        max_zoom: Highest accepted zoom level.

    Returns:
        The validated TileAddress.

    Raises:
        InvalidTileCoordinate: If any value is not an integer, the zoom is
            outside [0, max_zoom] or the column/row fall outside the grid.
    """
    if not all(_is_int(v) for v in (z, x, y)):
        raise errors.InvalidTileCoordinate(
            "Tile coordinates must be integers",
            details={"z": z, "x": x, "y": y},
        )

    if z < 0 or z > max_zoom:
        raise errors.InvalidTileCoordinate(
            f"Zoom {z} outside the supported range",
            details={"valid_zoom": [0, max_zoom]},
        )

    max_index = 2**z - 1
    if not (0 <= x <= max_index and 0 <= y <= max_index):
        raise errors.InvalidTileCoordinate(
            f"Tile {x}/{y} outside the grid at zoom {z}",
            details={"valid_x": [0, max_index], "valid_y": [0, max_index]},
        )

    return TileAddress(z=z, x=x, y=y)


def tms_to_xyz_y(z: int, y: int) -> int:
    """Flip a TMS row index into the XYZ convention (and back)."""
    return (2**z - 1) - y


def _tile_lon(x: float, z: int) -> float:
    return x / 2**z * 360.0 - 180.0


def _tile_lat(y: float, z: int) -> float:
    return math.degrees(math.atan(math.sinh(math.pi * (1 - 2 * y / 2**z))))


def tile_to_bbox(tile: TileAddress) -> GeoBounds:
    """Geographic bounding box of a tile.

    Args:
        tile: Tile address.

    Returns:
        GeoBounds in WGS84 degrees. tile_to_bbox(TileAddress(0, 0, 0)) is
        roughly (-180, -85.0511, 180, 85.0511).
    """
    return GeoBounds(
        west=_tile_lon(tile.x, tile.z),
        south=_tile_lat(tile.y + 1, tile.z),
        east=_tile_lon(tile.x + 1, tile.z),
        north=_tile_lat(tile.y, tile.z),
    )


def lon_to_tile_x(lon: float, z: int) -> int:
    """Column index containing a longitude, clamped to the grid."""
    n = 2**z
    x = math.floor((lon + 180.0) / 360.0 * n)
    return min(max(x, 0), n - 1)


def lat_to_tile_y(lat: float, z: int) -> int:
    """Row index containing a latitude, clamped to the grid."""
    n = 2**z
    lat = min(max(lat, -MAX_LATITUDE), MAX_LATITUDE)
    lat_rad = math.radians(lat)
    y = math.floor(
        (1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n
    )
    return min(max(y, 0), n - 1)


def tile_range(bounds: GeoBounds, z: int) -> tuple[int, int, int, int]:
    """Inclusive tile index range covering a geographic bbox.

    Returns:
        (min_x, min_y, max_x, max_y) tile indices at zoom ``z``.
    """
    return (
        lon_to_tile_x(bounds.west, z),
        lat_to_tile_y(bounds.north, z),
        lon_to_tile_x(bounds.east, z),
        lat_to_tile_y(bounds.south, z),
    )


def tile_intersects(tile: TileAddress, bounds: GeoBounds) -> bool:
    """Whether a tile falls inside the tile range covering ``bounds``."""
    if tile.z < 0:
        return False

    min_x, min_y, max_x, max_y = tile_range(bounds, tile.z)
    return min_x <= tile.x <= max_x and min_y <= tile.y <= max_y


def correct_zoom(tile: TileAddress, bounds: GeoBounds) -> TileAddress:
    """Step a tile one zoom level down when only the parent zoom matches.

    The substitution happens at most once: if neither the requested zoom
    nor ``z - 1`` contains the column/row, the requested tile is returned
    unchanged and resolution proceeds (usually to no coverage).
    """
    if tile_intersects(tile, bounds) or tile.z == 0:
        return tile

    parent = tile.parent_zoom()
    if tile_intersects(parent, bounds):
        logger.info(
            "Zoom corrected from %s to %s for tile %s/%s",
            tile.z,
            parent.z,
            tile.x,
            tile.y,
        )
        return parent

    return tile


def default_projector(
    src_crs: str,
    dst_crs: str,
    xs: Sequence[float],
    ys: Sequence[float],
) -> tuple[Sequence[float], Sequence[float]]:
    """Project coordinate arrays with rasterio (GDAL/PROJ)."""
    return warp.transform(src_crs, dst_crs, list(xs), list(ys))


def reproject_bbox(
    bbox: GeoBounds,
    dst_crs: str,
    projector: Projector = default_projector,
) -> tuple[float, float, float, float]:
    """Reproject the four corners of a WGS84 bbox and take their envelope.

    Raises:
        ReprojectionError: If the projector fails or yields non-finite values.
    """
    xs = [bbox.west, bbox.east, bbox.east, bbox.west]
    ys = [bbox.north, bbox.north, bbox.south, bbox.south]
    try:
        out_xs, out_ys = projector(WGS84, dst_crs, xs, ys)
    except Exception as exc:
        raise errors.ReprojectionError(
            f"Failed to reproject tile bounds to {dst_crs}: {exc}"
        ) from exc

    out_xs = [float(v) for v in out_xs]
    out_ys = [float(v) for v in out_ys]
    if not all(math.isfinite(v) for v in (*out_xs, *out_ys)):
        raise errors.ReprojectionError(
            f"Tile bounds are not representable in {dst_crs}"
        )

    return (min(out_xs), min(out_ys), max(out_xs), max(out_ys))


def bbox_to_window(
    bbox: tuple[float, float, float, float],
    transform: GeoTransform,
    width: int,
    height: int,
) -> PixelWindow | None:
    """Convert a bbox in the raster's native CRS into a clamped pixel window.

    The leading edge uses floor and the trailing edge ceil, so a tile smaller
    than a pixel still covers the pixel it falls in.

    Returns:
        The clamped PixelWindow, or None when the window is empty (the bbox
        does not intersect the raster).
    """
    minx, miny, maxx, maxy = bbox
    px = sorted(
        (
            (minx - transform.origin_x) / transform.res_x,
            (maxx - transform.origin_x) / transform.res_x,
        )
    )
    py = sorted(
        (
            (maxy - transform.origin_y) / transform.res_y,
            (miny - transform.origin_y) / transform.res_y,
        )
    )

    window = PixelWindow(
        min_x=min(max(math.floor(px[0]), 0), width),
        min_y=min(max(math.floor(py[0]), 0), height),
        max_x=min(max(math.ceil(px[1]), 0), width),
        max_y=min(max(math.ceil(py[1]), 0), height),
        source=(px[0], py[0], px[1], py[1]),
    )
    if window.is_empty:
        return None

    return window


def resolve_tile_window(
    tile: TileAddress,
    transform: GeoTransform,
    width: int,
    height: int,
    bounds: GeoBounds,
    projector: Projector = default_projector,
) -> TileWindow:
    """Resolve a tile to a pixel window of a raster.

    Args:
        tile: Requested (validated) tile.
        transform: Raster georeference.
        width: Raster width in pixels.
        height: Raster height in pixels.
        bounds: Raster extent in WGS84 degrees.
        projector: Coordinate projection callable used for rasters that
            are not in WGS84.

    Returns:
        TileWindow with the effective tile (possibly one zoom level down)
        and a pixel window, or no window when the tile misses the raster.

    Raises:
        ReprojectionError: If corner reprojection fails.
    """
    effective = correct_zoom(tile, bounds)
    bbox = tile_to_bbox(effective)

    if transform.is_geographic:
        native = bbox.as_tuple()
    else:
        native = reproject_bbox(bbox, transform.crs, projector)

    window = bbox_to_window(native, transform, width, height)
    if window is None:
        logger.debug(
            "Tile %s/%s/%s does not cover the raster",
            effective.z,
            effective.x,
            effective.y,
        )

    return TileWindow(
        requested=tile,
        effective=effective,
        bbox=bbox,
        window=window,
    )

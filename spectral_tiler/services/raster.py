"""Raster dataset access through rasterio.

RasterHandle wraps an opened rasterio dataset and derives, once, everything
the tile pipeline needs from it: the geotransform, the WGS84 extent and the
band alias table. Alpha bands are not data bands: they are left out of the
alias table and only contribute through the dataset mask. Reads and close
are serialised with a lock because rasterio dataset objects must not be
used from several threads at once.

Example:
    Open a GeoTIFF and read a window resampled to a 256px tile:
        >>> from spectral_tiler.services import raster
        >>> handle = raster.open_raster(Path("data/field.tif"))
        >>> handle.band_metadata.index_of("nir")
        3
        >>> data, valid = handle.read((0.0, 0.0, 512.0, 512.0), [0, 1, 2], (256, 256))
        >>> data.shape
        (3, 256, 256)
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import numpy as np
import rasterio
from rasterio import enums, errors as rio_errors, warp, windows

from spectral_tiler.core import errors
from spectral_tiler.core.models import WGS84, GeoBounds, GeoTransform
from spectral_tiler.utils import bands

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Sequence

    from rasterio.io import DatasetReader

logger = logging.getLogger(__name__)


def _crs_string(dataset: DatasetReader) -> str:
    if dataset.crs is None:
        logger.warning("%s has no CRS, assuming %s", dataset.name, WGS84)
        return WGS84

    epsg = dataset.crs.to_epsg()
    return f"EPSG:{epsg}" if epsg else dataset.crs.to_string()


def _data_band_indexes(dataset: DatasetReader) -> tuple[int, ...]:
    """One-based indexes of the bands that are not alpha channels."""
    indexes = tuple(
        bidx
        for bidx, interp in enumerate(dataset.colorinterp, start=1)
        if interp is not enums.ColorInterp.alpha
    )
    return indexes or tuple(range(1, dataset.count + 1))


class RasterHandle:
    """An opened raster plus its derived georeference and band metadata.

    Attributes:
        path: File the dataset was opened from.
        width: Raster width in pixels.
        height: Raster height in pixels.
        count: Number of data bands (alpha bands excluded).
        band_indexes: One-based dataset indexes of the data bands.
        dtype: Sample data type of the first band.
        nodata: Nodata value, if the dataset declares one.
        geotransform: Origin, resolution and CRS.
        bounds: Extent in WGS84 degrees.
        band_metadata: Band names and alias table.
    """

    def __init__(self, dataset: DatasetReader, path: pathlib.Path) -> None:
        self._dataset = dataset
        self._lock = threading.Lock()
        self.path = path
        self.width: int = dataset.width
        self.height: int = dataset.height
        self.band_indexes = _data_band_indexes(dataset)
        self.count: int = len(self.band_indexes)
        self.dtype: str = dataset.dtypes[0]
        self.nodata: float | None = dataset.nodata

        transform = dataset.transform
        self.geotransform = GeoTransform(
            origin_x=transform.c,
            origin_y=transform.f,
            res_x=transform.a,
            res_y=transform.e,
            crs=_crs_string(dataset),
        )
        self.bounds = self._geographic_bounds()

        names = bands.band_names_from_tags(
            dataset.descriptions,
            dataset.tags(),
            dataset.count,
            band_tags=[dataset.tags(bidx) for bidx in range(1, dataset.count + 1)],
        )
        if names:
            names = [names[bidx - 1] for bidx in self.band_indexes]
        self.band_metadata = bands.resolve_band_metadata(self.count, names)

    def _geographic_bounds(self) -> GeoBounds:
        left, bottom, right, top = self._dataset.bounds
        if not self.geotransform.is_geographic:
            left, bottom, right, top = warp.transform_bounds(
                self.geotransform.crs, WGS84, left, bottom, right, top
            )

        return GeoBounds(west=left, south=bottom, east=right, north=top)

    @property
    def closed(self) -> bool:
        return bool(self._dataset.closed)

    def read(
        self,
        rect: tuple[float, float, float, float],
        positions: Sequence[int],
        out_shape: tuple[int, int],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Read data bands of a pixel rectangle resampled to ``out_shape``.

        Args:
            rect: (col0, row0, col1, row1) in fractional pixels, inside the
                raster.
            positions: Zero-based positions in the data band list.
            out_shape: (height, width) of the output arrays.

        Returns:
            (data, valid): float64 array (len(positions), *out_shape) and a
            boolean array out_shape, False where the dataset mask (alpha
            band, internal mask or nodata) marks any band invalid.
        """
        col0, row0, col1, row1 = rect
        rio_window = windows.Window(
            col_off=col0, row_off=row0, width=col1 - col0, height=row1 - row0
        )
        indexes = [self.band_indexes[p] for p in positions]
        shape = (len(indexes), *out_shape)
        with self._lock:
            data = self._dataset.read(
                indexes,
                window=rio_window,
                out_shape=shape,
                resampling=enums.Resampling.bilinear,
            )
            masks = self._dataset.read_masks(
                indexes,
                window=rio_window,
                out_shape=shape,
                resampling=enums.Resampling.nearest,
            )

        valid = (masks != 0).all(axis=0)
        if self.nodata is not None:
            if np.isnan(self.nodata):
                valid &= ~np.isnan(data).any(axis=0)
            else:
                valid &= ~(data == self.nodata).any(axis=0)

        return data.astype(np.float64), valid

    def reopen(self) -> None:
        """Open the file again after close()."""
        with self._lock:
            if self._dataset.closed:
                self._dataset = rasterio.open(self.path)

    def close(self) -> None:
        with self._lock:
            self._dataset.close()


def open_raster(path: pathlib.Path) -> RasterHandle:
    """Open a raster file as a RasterHandle.

    Raises:
        DatasetNotFound: If the file is missing or GDAL cannot read it.
    """
    if not path.is_file():
        raise errors.DatasetNotFound(f"Dataset not found: {path.name}")

    try:
        dataset = rasterio.open(path)
    except rio_errors.RasterioIOError as exc:
        raise errors.DatasetNotFound(
            f"Dataset {path.name} is not a readable raster: {exc}"
        ) from exc

    try:
        return RasterHandle(dataset, path)
    except Exception:
        dataset.close()
        raise

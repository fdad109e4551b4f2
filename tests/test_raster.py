"""Tests for rasterio-backed dataset access.

This module writes small GeoTIFFs into a temporary directory and checks
that RasterHandle derives the georeference, the WGS84 extent and the band
alias table from them (alpha bands excluded, names taken from
descriptions or per-band tags), reads fractional windows with the dataset
mask applied, and that unreadable inputs are reported as DatasetNotFound.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from spectral_tiler.core import errors
from spectral_tiler.services import raster

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Callable


FULL = (0.0, 0.0, 64.0, 64.0)


def test_open_geographic_raster(field_tif: pathlib.Path) -> None:
    """Test georeference and band metadata of a WGS84 GeoTIFF."""
    handle = raster.open_raster(field_tif)
    try:
        assert (handle.width, handle.height, handle.count) == (64, 64, 4)
        assert handle.dtype == "uint16"
        assert handle.nodata is None
        transform = handle.geotransform
        assert transform.crs == "EPSG:4326"
        assert transform.is_geographic
        assert transform.origin_x == pytest.approx(10.0)
        assert transform.origin_y == pytest.approx(46.0)
        assert transform.res_x == pytest.approx(1 / 64)
        assert transform.res_y == pytest.approx(-1 / 64)
        assert handle.bounds.as_tuple() == pytest.approx((10.0, 45.0, 11.0, 46.0))
        assert handle.band_metadata.names == ("Red", "Green", "Blue", "NIR")
        assert handle.band_metadata.index_of("nir") == 3
    finally:
        handle.close()
    assert handle.closed


def test_read_resamples_window(field_tif: pathlib.Path) -> None:
    """Test reading selected bands into a smaller output grid."""
    handle = raster.open_raster(field_tif)
    try:
        data, valid = handle.read(FULL, [0, 3], (32, 32))
    finally:
        handle.close()
    assert data.shape == (2, 32, 32)
    assert data.dtype == np.float64
    assert np.all(data[0] == 100)
    assert np.all(data[1] == 400)
    assert valid.shape == (32, 32)
    assert valid.all()


def test_read_masks_nodata(
    data_dir: pathlib.Path,
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test that nodata pixels are reported invalid."""
    band = np.full((1, 64, 64), 7, dtype="uint8")
    band[:, :, :32] = 0
    path = write_geotiff(data_dir / "holes.tif", band, nodata=0)
    handle = raster.open_raster(path)
    try:
        _, valid = handle.read(FULL, [0], (64, 64))
    finally:
        handle.close()
    assert not valid[:, :32].any()
    assert valid[:, 32:].all()


def test_projected_raster_bounds_in_degrees(
    data_dir: pathlib.Path,
    write_geotiff: Callable[..., pathlib.Path],
    constant_bands: Callable[..., np.ndarray],
) -> None:
    """Test that projected rasters report their extent in WGS84."""
    path = write_geotiff(
        data_dir / "mercator.tif",
        constant_bands((1, 2, 3), "uint8"),
        bounds=(1_000_000.0, 5_000_000.0, 1_100_000.0, 5_100_000.0),
        crs="EPSG:3857",
    )
    handle = raster.open_raster(path)
    try:
        assert handle.geotransform.crs == "EPSG:3857"
        assert not handle.geotransform.is_geographic
        assert 8.9 < handle.bounds.west < 9.0
        assert 9.8 < handle.bounds.east < 9.9
        assert 40.0 < handle.bounds.south < handle.bounds.north < 42.0
    finally:
        handle.close()


def test_unnamed_bands_use_default_layout(
    rgb_tif: pathlib.Path,
) -> None:
    """Test the conventional layout when the file has no band names."""
    handle = raster.open_raster(rgb_tif)
    try:
        assert handle.band_metadata.names == ("Red", "Green", "Blue")
    finally:
        handle.close()


def test_open_missing_file(data_dir: pathlib.Path) -> None:
    """Test that a missing file raises DatasetNotFound."""
    with pytest.raises(errors.DatasetNotFound):
        raster.open_raster(data_dir / "missing.tif")


def test_open_unreadable_file(data_dir: pathlib.Path) -> None:
    """Test that a file GDAL cannot read raises DatasetNotFound."""
    path = data_dir / "notes.tif"
    path.write_text("not a raster")
    with pytest.raises(errors.DatasetNotFound, match="not a readable raster"):
        raster.open_raster(path)


def test_alpha_band_is_not_a_data_band(rgba_tif: pathlib.Path) -> None:
    """Test that an RGBA file exposes three bands and masks by alpha."""
    handle = raster.open_raster(rgba_tif)
    try:
        assert handle.count == 3
        assert handle.band_indexes == (1, 2, 3)
        assert handle.band_metadata.names == ("Red", "Green", "Blue")
        assert handle.band_metadata.index_of("nir") is None
        data, valid = handle.read(FULL, [0, 1, 2], (64, 64))
    finally:
        handle.close()
    assert data.shape == (3, 64, 64)
    assert not valid[:, :32].any()
    assert valid[:, 32:].all()
    assert np.all(data[0, :, 32:] == 10)


def test_band_names_from_per_band_tags(
    data_dir: pathlib.Path,
    write_geotiff: Callable[..., pathlib.Path],
    constant_bands: Callable[..., np.ndarray],
) -> None:
    """Test names stored as per-band BAND_NAME items."""
    path = write_geotiff(
        data_dir / "tagged.tif",
        constant_bands((1, 2, 3, 4), "uint16"),
        band_tags=[
            {"BAND_NAME": "Blue"},
            {"BAND_NAME": "Green"},
            {"BAND_NAME": "Red"},
            {"BAND_NAME": "RedEdge"},
        ],
    )
    handle = raster.open_raster(path)
    try:
        assert handle.band_metadata.names == ("Blue", "Green", "Red", "RedEdge")
        assert handle.band_metadata.index_of("red") == 2
        assert handle.band_metadata.index_of("re") == 3
    finally:
        handle.close()


def test_read_fractional_window(
    data_dir: pathlib.Path,
    write_geotiff: Callable[..., pathlib.Path],
) -> None:
    """Test that a fractional window is read without widening it."""
    columns = np.arange(64, dtype="float32") + 0.5
    path = write_geotiff(
        data_dir / "ramp.tif", np.broadcast_to(columns, (1, 64, 64)).copy()
    )
    handle = raster.open_raster(path)
    try:
        data, _ = handle.read((10.25, 0.0, 20.25, 64.0), [0], (64, 40))
    finally:
        handle.close()
    expected = 10.25 + (np.arange(40) + 0.5) * 10.0 / 40
    assert np.abs(data[0, 32] - expected).max() < 0.5


def test_reopen_after_close(field_tif: pathlib.Path) -> None:
    """Test that a closed handle can be reopened for reading."""
    handle = raster.open_raster(field_tif)
    handle.close()
    assert handle.closed
    handle.reopen()
    try:
        assert not handle.closed
        data, _ = handle.read(FULL, [0], (8, 8))
    finally:
        handle.close()
    assert np.all(data == 100)

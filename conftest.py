"""Pytest configuration: package imports and small GeoTIFF fixtures."""

from __future__ import annotations

import pathlib
import sys
from collections.abc import Callable, Iterator, Mapping, Sequence

import numpy as np
import pytest
import rasterio
from fastapi import testclient
from rasterio import transform as rio_transform

PROJECT_ROOT = pathlib.Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from spectral_tiler import main  # noqa: E402
from spectral_tiler.core import config  # noqa: E402

FIELD_BOUNDS = (10.0, 45.0, 11.0, 46.0)

GeoTiffWriter = Callable[..., pathlib.Path]


def _write_geotiff(
    path: pathlib.Path,
    data: np.ndarray,
    bounds: Sequence[float] = FIELD_BOUNDS,
    crs: str = "EPSG:4326",
    nodata: float | None = None,
    descriptions: Sequence[str] | None = None,
    band_tags: Sequence[Mapping[str, str]] | None = None,
    **creation_options: str,
) -> pathlib.Path:
    data = np.asarray(data)
    count, height, width = data.shape
    with rasterio.open(
        path,
        "w",
        driver="GTiff",
        width=width,
        height=height,
        count=count,
        dtype=data.dtype,
        crs=crs,
        transform=rio_transform.from_bounds(*bounds, width, height),
        nodata=nodata,
        **creation_options,
    ) as dst:
        dst.write(data)
        for index, description in enumerate(descriptions or (), start=1):
            dst.set_band_description(index, description)
        for index, items in enumerate(band_tags or (), start=1):
            dst.update_tags(index, **items)

    return path


def _constant_bands(
    values: Sequence[float], dtype: str, size: int = 64
) -> np.ndarray:
    """Stack of constant bands, one per value."""
    return np.stack(
        [np.full((size, size), value, dtype=dtype) for value in values]
    )


@pytest.fixture
def write_geotiff() -> GeoTiffWriter:
    """Writer for small GeoTIFFs.

    Signature: (path, data, bounds=, crs=, nodata=, descriptions=,
    band_tags=, **creation_options), e.g. ``photometric="RGB", alpha="YES"``
    for an RGBA file.
    """
    return _write_geotiff


@pytest.fixture
def data_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def settings(data_dir: pathlib.Path) -> config.Settings:
    return config.Settings(data_dir=data_dir, default_dataset="field.tif")


@pytest.fixture
def field_tif(data_dir: pathlib.Path) -> pathlib.Path:
    """4-band uint16 RGB+NIR raster over FIELD_BOUNDS, NDVI == 0.6."""
    return _write_geotiff(
        data_dir / "field.tif",
        _constant_bands((100, 150, 50, 400), "uint16"),
        descriptions=("Red", "Green", "Blue", "NIR"),
    )


@pytest.fixture
def rgb_tif(data_dir: pathlib.Path) -> pathlib.Path:
    """3-band uint8 RGB raster over FIELD_BOUNDS."""
    return _write_geotiff(
        data_dir / "rgb.tif",
        _constant_bands((10, 20, 30), "uint8"),
    )


@pytest.fixture
def rgba_tif(data_dir: pathlib.Path) -> pathlib.Path:
    """4-band uint8 RGBA raster; the west half is transparent black."""
    data = _constant_bands((10, 20, 30, 255), "uint8")
    data[:, :, :32] = 0
    return _write_geotiff(
        data_dir / "ortho.tif", data, photometric="RGB", alpha="YES"
    )


@pytest.fixture
def constant_bands() -> Callable[..., np.ndarray]:
    """Builder for constant band stacks: (values, dtype, size=64)."""
    return _constant_bands


@pytest.fixture
def client(settings: config.Settings) -> Iterator[testclient.TestClient]:
    """TestClient for an app serving ``data_dir``; runs startup/shutdown."""
    with testclient.TestClient(main.create_app(settings)) as test_client:
        yield test_client
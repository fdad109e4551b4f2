"""Tests for the spectral index registry.

This module checks that every registered index compiles, reads exactly
the bands it declares and recommends a known colormap, and that
availability checks against a dataset's alias table report missing bands.
"""

from __future__ import annotations

import pytest

from spectral_tiler.core import errors
from spectral_tiler.utils import bands, colormaps, expression, spectral_indices


@pytest.mark.parametrize("key", spectral_indices.index_names())
def test_index_equation_matches_required_bands(key: str) -> None:
    """Test that each equation compiles and reads its declared bands."""
    definition = spectral_indices.get_index(key)
    compiled = expression.compile_expression(definition.equation)
    assert compiled.variables == frozenset(definition.required_bands)
    assert definition.colormap in colormaps.COLORMAPS
    low, high = definition.value_range
    assert low < high


def test_registry_contents() -> None:
    """Test that the well-known indices are registered."""
    names = spectral_indices.index_names()
    assert len(names) == 10
    for key in ("NDVI", "NDWI", "EVI", "SAVI", "VARI", "NDRE", "MSAVI"):
        assert key in names


def test_get_index_is_case_insensitive() -> None:
    """Test lookups with mixed case and whitespace."""
    assert spectral_indices.get_index(" ndvi ").key == "NDVI"
    assert spectral_indices.get_index("Gndvi").key == "GNDVI"


def test_unknown_index_lists_choices() -> None:
    """Test that unknown keys raise with the available indices."""
    with pytest.raises(errors.UnknownIndex) as exc_info:
        spectral_indices.get_index("FOO")
    assert exc_info.value.status_code == 404
    assert "NDVI" in exc_info.value.details["available_indices"]
    assert spectral_indices.find_index("FOO") is None


def test_ndvi_needs_nir_on_rgb_raster() -> None:
    """Test NDVI availability for a 3-band RGB raster."""
    availability = spectral_indices.can_calculate(
        "NDVI", bands.resolve_band_metadata(3)
    )
    assert availability.can_calculate is False
    assert availability.missing_bands == ["nir"]


def test_ndvi_available_on_rgbn_raster() -> None:
    """Test NDVI availability for a 4-band RGB+NIR raster."""
    availability = spectral_indices.can_calculate(
        "ndvi", bands.resolve_band_metadata(4)
    )
    assert availability.can_calculate is True
    assert availability.missing_bands == []


def test_can_calculate_unknown_index() -> None:
    """Test that unknown indices are never calculable."""
    availability = spectral_indices.can_calculate(
        "FOO", bands.resolve_band_metadata(4)
    )
    assert availability.can_calculate is False
    assert availability.missing_bands == []


def test_to_dict_exposes_catalogue_fields() -> None:
    """Test the serialised form used by the catalogue endpoints."""
    data = spectral_indices.get_index("NDVI").to_dict()
    assert data["key"] == "NDVI"
    assert data["range"] == [-1.0, 1.0]
    assert data["visual_range"] == [0.2, 0.9]
    assert data["required_bands"] == ["nir", "red"]
    assert data["colormap"] == "RdYlGn"
    assert spectral_indices.get_index("NDWI").to_dict()["visual_range"] is None

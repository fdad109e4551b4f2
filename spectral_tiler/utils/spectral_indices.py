"""Registry of well-known spectral indices.

Each definition is a formula over the semantic band aliases produced by
spectral_tiler.utils.bands (``red``, ``nir``, ``swir1`` ...), with the
aliases it needs, its theoretical value range and, where useful, a
narrower range that gives better contrast on screen.

Lookups are case-insensitive. can_calculate() checks a dataset's alias
table before any pixel is read, so a request for NDVI on an RGB-only
raster fails fast with the list of missing bands.

Example:
    Check whether NDVI can be computed for a 3-band RGB raster:
        >>> from spectral_tiler.utils import bands, spectral_indices
        >>> rgb = bands.resolve_band_metadata(3)
        >>> spectral_indices.can_calculate("ndvi", rgb)
        IndexAvailability(can_calculate=False, missing_bands=['nir'])
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

from spectral_tiler.core import errors

if TYPE_CHECKING:
    from spectral_tiler.utils.bands import BandMetadata

Range = tuple[float, float]


@dataclasses.dataclass(frozen=True)
class SpectralIndexDefinition:
    """Static description of a spectral index.

    Attributes:
        key: Short registry key, e.g. "NDVI".
        name: Full name of the index.
        equation: Formula over band aliases.
        description: What the index highlights.
        value_range: Theoretical range of the index.
        required_bands: Aliases the formula reads.
        visual_range: Optional display range for better contrast.
        reference: Literature reference.
        colormap: Recommended colormap name.
    """

    key: str
    name: str
    equation: str
    description: str
    value_range: Range
    required_bands: tuple[str, ...]
    visual_range: Range | None = None
    reference: str | None = None
    colormap: str = "viridis"

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key,
            "name": self.name,
            "equation": self.equation,
            "description": self.description,
            "range": list(self.value_range),
            "visual_range": (
                list(self.visual_range) if self.visual_range else None
            ),
            "required_bands": list(self.required_bands),
            "reference": self.reference,
            "colormap": self.colormap,
        }


@dataclasses.dataclass(frozen=True)
class IndexAvailability:
    can_calculate: bool
    missing_bands: list[str] = dataclasses.field(default_factory=list)


_DEFINITIONS = (
    SpectralIndexDefinition(
        key="NDVI",
        name="Normalized Difference Vegetation Index",
        equation="(nir - red) / (nir + red)",
        description="Most common vegetation index, ranges from -1 to 1",
        value_range=(-1.0, 1.0),
        visual_range=(0.2, 0.9),
        required_bands=("nir", "red"),
        reference="Tucker (1979)",
        colormap="RdYlGn",
    ),
    SpectralIndexDefinition(
        key="NDWI",
        name="Normalized Difference Water Index",
        equation="(green - nir) / (green + nir)",
        description="Highlights open water bodies",
        value_range=(-1.0, 1.0),
        required_bands=("green", "nir"),
        reference="McFeeters (1996)",
        colormap="RdYlBu",
    ),
    SpectralIndexDefinition(
        key="EVI",
        name="Enhanced Vegetation Index",
        equation="2.5 * ((nir - red) / (nir + 6 * red - 7.5 * blue + 1))",
        description="NDVI variant with reduced atmospheric influence",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "red", "blue"),
        reference="Huete et al. (2002)",
        colormap="RdYlGn",
    ),
    SpectralIndexDefinition(
        key="SAVI",
        name="Soil Adjusted Vegetation Index",
        equation="((nir - red) / (nir + red + 0.5)) * 1.5",
        description="Minimises soil influence where vegetation is sparse",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "red"),
        reference="Huete (1988)",
        colormap="RdYlGn",
    ),
    SpectralIndexDefinition(
        key="VARI",
        name="Visible Atmospherically Resistant Index",
        equation="(green - red) / (green + red - blue)",
        description="Vegetation index using visible bands only",
        value_range=(-1.0, 1.0),
        required_bands=("green", "red", "blue"),
        colormap="viridis",
    ),
    SpectralIndexDefinition(
        key="NDMI",
        name="Normalized Difference Moisture Index",
        equation="(nir - swir1) / (nir + swir1)",
        description="Sensitive to vegetation water content",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "swir1"),
        reference="Gao (1996)",
        colormap="RdYlBu",
    ),
    SpectralIndexDefinition(
        key="NBR",
        name="Normalized Burn Ratio",
        equation="(nir - swir2) / (nir + swir2)",
        description="Maps burned areas",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "swir2"),
        reference="Key & Benson (2006)",
        colormap="Spectral",
    ),
    SpectralIndexDefinition(
        key="GNDVI",
        name="Green Normalized Difference Vegetation Index",
        equation="(nir - green) / (nir + green)",
        description="NDVI with the green band, sensitive to chlorophyll",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "green"),
        colormap="RdYlGn",
    ),
    SpectralIndexDefinition(
        key="NDRE",
        name="Normalized Difference Red Edge",
        equation="(nir - rededge) / (nir + rededge)",
        description="Crop health monitoring with the red edge band",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "rededge"),
        colormap="RdYlGn",
    ),
    SpectralIndexDefinition(
        key="MSAVI",
        name="Modified Soil Adjusted Vegetation Index",
        equation="(2 * nir + 1 - sqrt((2 * nir + 1)^2 - 8 * (nir - red))) / 2",
        description="SAVI variant without a fixed soil factor",
        value_range=(-1.0, 1.0),
        required_bands=("nir", "red"),
        reference="Qi et al. (1994)",
        colormap="RdYlGn",
    ),
)

SPECTRAL_INDICES: dict[str, SpectralIndexDefinition] = {
    d.key: d for d in _DEFINITIONS
}


def find_index(name: str) -> SpectralIndexDefinition | None:
    return SPECTRAL_INDICES.get(name.strip().upper())


def get_index(name: str) -> SpectralIndexDefinition:
    """Look up an index by key, case-insensitively.

    Raises:
        UnknownIndex: If no index with that key exists. The error details
            list the available keys.
    """
    definition = find_index(name)
    if definition is None:
        raise errors.UnknownIndex(
            f"Index '{name}' not found",
            details={"available_indices": index_names()},
        )

    return definition


def list_indices() -> list[SpectralIndexDefinition]:
    return list(SPECTRAL_INDICES.values())


def index_names() -> list[str]:
    return list(SPECTRAL_INDICES)


def can_calculate(name: str, metadata: BandMetadata) -> IndexAvailability:
    """Whether a dataset has every band an index needs.

    Args:
        name: Index key (case-insensitive).
        metadata: Alias table of the dataset.

    Returns:
        IndexAvailability; for unknown indices ``can_calculate`` is False
        and no bands are reported missing.
    """
    definition = find_index(name)
    if definition is None:
        return IndexAvailability(can_calculate=False)

    missing = [b for b in definition.required_bands if not metadata.has(b)]
    return IndexAvailability(can_calculate=not missing, missing_bands=missing)

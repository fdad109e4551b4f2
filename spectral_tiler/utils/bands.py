"""Band naming and alias resolution for multi-band rasters.

Band-algebra formulas refer to bands by alias (``nir``, ``red``, ``b4``)
rather than by raw index. This module recovers per-band names from raster
metadata (band descriptions, per-band ``BAND_NAME`` items or ``Band_n``
tags), falls back to conventional layouts keyed by band count, and derives
the alias table used to bind formula variables to band indices.

Semantic aliases come from an ordered precedence table: a band name is
matched against the categories in order and the first match wins, so a
"RedEdge" band never becomes ``red``.

Example:
    Resolve aliases for a 4-band RGB+NIR raster without metadata:
        >>> from spectral_tiler.utils import bands
        >>> metadata = bands.resolve_band_metadata(4)
        >>> metadata.names
        ('Red', 'Green', 'Blue', 'NIR')
        >>> metadata.index_of("nir"), metadata.index_of("B2")
        (3, 1)
"""

from __future__ import annotations

import dataclasses
import logging
import re
from collections.abc import Callable, Mapping, Sequence

logger = logging.getLogger(__name__)

DEFAULT_LAYOUTS: dict[int, tuple[str, ...]] = {
    3: ("Red", "Green", "Blue"),
    4: ("Red", "Green", "Blue", "NIR"),
    5: ("Blue", "Green", "Red", "NIR", "SWIR1"),
    6: ("Blue", "Green", "Red", "NIR", "SWIR1", "SWIR2"),
    8: (
        "Coastal",
        "Blue",
        "Green",
        "Red",
        "RedEdge",
        "NIR",
        "SWIR1",
        "SWIR2",
    ),
}
BAND_NAME_TAGS = ("BAND_NAME", "DESCRIPTION")


def _swir_aliases(name: str) -> list[str]:
    aliases = ["swir"]
    if "1" in name:
        aliases.append("swir1")
    if "2" in name:
        aliases.append("swir2")
    return aliases


def _is_rededge(name: str) -> bool:
    return "rededge" in name or "red edge" in name or "red_edge" in name


# (category, matcher, aliases) in precedence order; first match wins.
SEMANTIC_CATEGORIES: tuple[
    tuple[str, Callable[[str], bool], Callable[[str], list[str]]], ...
] = (
    (
        "red",
        lambda n: "red" in n and "edge" not in n and "infrared" not in n,
        lambda n: ["r", "red"],
    ),
    ("green", lambda n: "green" in n, lambda n: ["g", "green"]),
    ("blue", lambda n: "blue" in n, lambda n: ["b", "blue"]),
    (
        "nir",
        lambda n: "nir" in n or "infrared" in n,
        lambda n: ["nir", "near_infrared"],
    ),
    ("swir", lambda n: "swir" in n, _swir_aliases),
    ("rededge", _is_rededge, lambda n: ["rededge", "re"]),
)


@dataclasses.dataclass(frozen=True)
class BandMetadata:
    """Resolved band names and alias table of one dataset.

    Attributes:
        names: Canonical band names in band order.
        aliases: Lower-cased alias -> zero-based band index.
    """

    names: tuple[str, ...]
    aliases: Mapping[str, int]

    @property
    def band_count(self) -> int:
        return len(self.names)

    def index_of(self, alias: str) -> int | None:
        """Zero-based band index for an alias (case-insensitive)."""
        return self.aliases.get(alias.strip().lower())

    def has(self, alias: str) -> bool:
        return self.index_of(alias) is not None

    def resolve(
        self,
        aliases: Sequence[str] | set[str] | frozenset[str],
    ) -> tuple[dict[str, int], list[str]]:
        """Bind aliases to band indices.

        Returns:
            (mapping, missing): mapping of each resolvable alias to its
            index, and the sorted list of aliases that did not resolve.
        """
        mapping: dict[str, int] = {}
        missing: list[str] = []
        for alias in aliases:
            index = self.index_of(alias)
            if index is None:
                missing.append(alias)
            else:
                mapping[alias] = index

        return mapping, sorted(missing)


def semantic_category(name: str) -> str | None:
    """First semantic category whose matcher accepts ``name``."""
    lowered = name.lower()
    for category, matches, _ in SEMANTIC_CATEGORIES:
        if matches(lowered):
            return category

    return None


def band_aliases(name: str, index: int, band_count: int) -> list[str]:
    """Aliases registered for one band.

    Args:
        name: Canonical band name.
        index: Zero-based band index.
        band_count: Total number of bands in the dataset.

    Returns:
        Positional aliases ``b{n}``/``band{n}`` followed by the semantic
        aliases of the first matching category, if any.
    """
    if not 0 <= index < band_count:
        raise ValueError(f"Band index {index} outside 0..{band_count - 1}")

    aliases = [f"b{index + 1}", f"band{index + 1}"]
    lowered = name.lower()
    for _, matches, semantic in SEMANTIC_CATEGORIES:
        if matches(lowered):
            aliases.extend(semantic(lowered))
            break

    return aliases


def default_band_names(band_count: int) -> list[str]:
    """Conventional band layout for a band count, else ``Band{n}`` names."""
    layout = DEFAULT_LAYOUTS.get(band_count)
    if layout is not None:
        return list(layout)

    return [f"Band{i + 1}" for i in range(band_count)]


def _has_names(names: Sequence[str | None]) -> bool:
    return any(names)


def band_names_from_tags(
    descriptions: Sequence[str | None] | None,
    tags: Mapping[str, str] | None,
    band_count: int,
    band_tags: Sequence[Mapping[str, str]] | None = None,
) -> list[str | None]:
    """Per-band names from rasterio's view of the metadata.

    Sources are tried in order and the first one yielding any name wins:
        - ``dataset.descriptions`` (per-sample DESCRIPTION),
        - per-band ``BAND_NAME`` or ``DESCRIPTION`` items
          (``dataset.tags(bidx)``, the sample-scoped GDAL_METADATA items),
        - dataset-level ``Band_n`` items (one-based band number).

    Args:
        descriptions: ``dataset.descriptions``.
        tags: ``dataset.tags()``.
        band_count: Number of bands in the raster.
        band_tags: ``dataset.tags(bidx)`` for each band, in band order.

    Returns:
        A list of length ``band_count`` or an empty list if nothing usable
        was found.
    """
    names: list[str | None] = [None] * band_count
    for index, description in enumerate((descriptions or ())[:band_count]):
        names[index] = description.strip() if description else None
    if _has_names(names):
        return names

    for index, items in enumerate((band_tags or ())[:band_count]):
        upper = {key.upper(): value for key, value in items.items()}
        for key in BAND_NAME_TAGS:
            if upper.get(key, "").strip():
                names[index] = upper[key].strip()
                break
    if _has_names(names):
        return names

    for key, value in (tags or {}).items():
        match = re.fullmatch(r"band_(\d+)", key, flags=re.IGNORECASE)
        if match and value and value.strip():
            index = int(match.group(1)) - 1
            if 0 <= index < band_count:
                names[index] = value.strip()
    if _has_names(names):
        return names

    logger.debug("No band names in metadata for %s bands", band_count)
    return []


def resolve_band_metadata(
    band_count: int,
    names: Sequence[str | None] | None = None,
) -> BandMetadata:
    """Build the alias table for a dataset.

    Args:
        band_count: Number of bands in the raster.
        names: Names recovered from metadata, if any. Missing entries are
            filled with ``Band{n}``. When no name at all is given the
            conventional layout for ``band_count`` is used.

    Returns:
        BandMetadata with canonical names and aliases. When two bands claim
        the same alias, the later band wins.
    """
    if not names or not _has_names(names):
        names = default_band_names(band_count)

    canonical: list[str] = []
    aliases: dict[str, int] = {}
    for index in range(band_count):
        name = names[index] if index < len(names) else None
        name = name or f"Band{index + 1}"
        canonical.append(name)
        aliases[name.lower()] = index
        for alias in band_aliases(name, index, band_count):
            aliases[alias.lower()] = index

    return BandMetadata(names=tuple(canonical), aliases=aliases)

"""Dataset discovery and cache management endpoints.

Datasets are GeoTIFF files inside the configured data directory, addressed
by file name (``field_42.tif``) or by stem (``field_42``). Tile endpoints
open them lazily; these endpoints list what is available, report what is
currently resident in the dataset cache and let operators preload or
evict a dataset.

Example:
    List the raster files that can be served:
        >>> response = client.get("/datasets")
        >>> response.json()
        >>> # {"datasets": ["field_42.tif", "odm_orthophoto.tif"],
        >>> #  "default": "odm_orthophoto.tif"}

    Preload a dataset and inspect the cache:
        >>> client.post("/datasets/field_42/load").json()["band_names"]
        >>> # ["Red", "Green", "Blue", "NIR"]
        >>> client.get("/datasets/resident").json()["count"]
        >>> # 1
"""

import dataclasses
from typing import Any

import fastapi

from spectral_tiler.core import errors
from spectral_tiler.services import dataset_cache

router = fastapi.APIRouter(prefix="/datasets", tags=["datasets"])


def get_dataset_cache(request: fastapi.Request) -> dataset_cache.DatasetCache:
    """Resolve the process-wide dataset cache created by create_app()."""
    return request.app.state.dataset_cache


@router.get("")
async def list_datasets(
    cache: dataset_cache.DatasetCache = fastapi.Depends(get_dataset_cache),  # noqa: B008
) -> dict[str, Any]:
    """List raster files in the data directory.

    Returns:
        Dictionary with the file names and the default dataset.
    """
    return {
        "datasets": cache.list_available(),
        "default": cache.default_dataset,
    }


@router.get("/resident")
async def list_resident(
    cache: dataset_cache.DatasetCache = fastapi.Depends(get_dataset_cache),  # noqa: B008
) -> dict[str, Any]:
    """Report the datasets currently held open by the cache.

    Returns:
        Dictionary with one entry per resident dataset (id, path,
        dimensions, band names, CRS, WGS84 bounds, file size, open and
        last access timestamps) and their count.
    """
    resident = [dataclasses.asdict(info) for info in cache.list_resident()]
    return {"datasets": resident, "count": len(resident)}


@router.post("/{dataset_id}/load")
async def load_dataset(
    dataset_id: str,
    cache: dataset_cache.DatasetCache = fastapi.Depends(get_dataset_cache),  # noqa: B008
) -> dict[str, Any]:
    """Open a dataset into the cache ahead of tile requests.

    Raises:
        DatasetNotFound: If no readable raster backs the id (404).
    """
    entry = await cache.get_or_open(dataset_id)
    return dataclasses.asdict(entry.info())


@router.delete("/{dataset_id}")
async def evict_dataset(
    dataset_id: str,
    cache: dataset_cache.DatasetCache = fastapi.Depends(get_dataset_cache),  # noqa: B008
) -> dict[str, str]:
    """Close a resident dataset and drop it from the cache.

    Raises:
        DatasetNotFound: If the dataset is not resident (404).
    """
    if not cache.evict(dataset_id):
        raise errors.DatasetNotFound(
            f"Dataset '{dataset_id}' is not loaded",
            details={"resident": [i.id for i in cache.list_resident()]},
        )

    return {"evicted": cache.cache_key(dataset_id)}

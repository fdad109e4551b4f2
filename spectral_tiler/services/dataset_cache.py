"""Process-wide cache of opened raster datasets.

Opening a GeoTIFF and deriving its georeference and band metadata is done
once per file (``field`` and ``field.tif`` name the same entry); later tile
requests reuse the cached handle. Entries record their last access and a
periodic sweep evicts those idle for longer than the configured maximum
age. There is no size cap.

The cache is an explicit object: the application creates it at start-up,
stores it on ``app.state`` and handlers receive it through a FastAPI
dependency. Concurrent requests for a dataset that is not resident yet
share a single in-flight open instead of opening the file several times.

Example:
    Use the cache inside a running event loop:
        >>> cache = DatasetCache(settings)
        >>> cache.start()
        >>> entry = await cache.get_or_open("field_42")
        >>> entry.band_metadata.names
        ('Red', 'Green', 'Blue', 'NIR')
        >>> cache.evict("field_42")
        True
        >>> await cache.close()
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import datetime
import logging
import pathlib
import threading
import time
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Protocol

from spectral_tiler.core import errors
from spectral_tiler.core.models import DatasetInfo
from spectral_tiler.services import raster

if TYPE_CHECKING:
    from spectral_tiler.core import config
    from spectral_tiler.core.models import GeoBounds, GeoTransform
    from spectral_tiler.utils.bands import BandMetadata

logger = logging.getLogger(__name__)

RASTER_SUFFIXES = (".tif", ".tiff")
DEFAULT_ALIASES = frozenset({"default", "_default"})


class RasterOpenerProtocol(Protocol):
    """Callable opening a raster file into a handle."""

    def __call__(self, path: pathlib.Path) -> raster.RasterHandle: ...


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclasses.dataclass
class DatasetCacheEntry:
    """A resident dataset.

    ``last_access`` is a monotonic timestamp used for ageing;
    ``last_access_at`` is its wall-clock counterpart for reporting.

    Reads go through use(). Evicting an entry retires it: the handle is
    closed once the last in-flight read finishes, and a request that still
    holds a retired entry reopens the file for the duration of its read.
    """

    dataset_id: str
    path: pathlib.Path
    handle: raster.RasterHandle
    size_bytes: int
    last_access: float
    opened_at: datetime.datetime = dataclasses.field(default_factory=_utcnow)
    last_access_at: datetime.datetime = dataclasses.field(
        default_factory=_utcnow
    )
    _active: int = dataclasses.field(default=0, init=False, repr=False)
    _retired: bool = dataclasses.field(default=False, init=False, repr=False)
    _lock: threading.Lock = dataclasses.field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    @property
    def geotransform(self) -> GeoTransform:
        return self.handle.geotransform

    @property
    def band_metadata(self) -> BandMetadata:
        return self.handle.band_metadata

    @property
    def bounds(self) -> GeoBounds:
        return self.handle.bounds

    @property
    def width(self) -> int:
        return self.handle.width

    @property
    def height(self) -> int:
        return self.handle.height

    def touch(self, now: float) -> None:
        self.last_access = now
        self.last_access_at = _utcnow()

    @contextlib.contextmanager
    def use(self) -> Iterator[raster.RasterHandle]:
        """Hold the handle open for the duration of a read."""
        with self._lock:
            if self._retired and self.handle.closed:
                self.handle.reopen()
            self._active += 1
        try:
            yield self.handle
        finally:
            with self._lock:
                self._active -= 1
                if self._retired and self._active == 0:
                    self.handle.close()

    def retire(self) -> None:
        """Close the handle now, or after the last in-flight read."""
        with self._lock:
            self._retired = True
            if self._active == 0:
                self.handle.close()

    def info(self) -> DatasetInfo:
        return DatasetInfo(
            id=self.dataset_id,
            path=str(self.path),
            width=self.width,
            height=self.height,
            band_count=self.band_metadata.band_count,
            band_names=list(self.band_metadata.names),
            crs=self.geotransform.crs,
            bounds=self.bounds.as_tuple(),
            size_bytes=self.size_bytes,
            opened_at=self.opened_at,
            last_access=self.last_access_at,
        )


class DatasetCache:
    """Dataset id -> opened raster, with idle-time eviction.

    Args:
        settings: Application settings (data directory, default dataset,
            maximum idle age and sweep interval).
        opener: Callable opening a path into a RasterHandle.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        settings: config.Settings,
        opener: RasterOpenerProtocol = raster.open_raster,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.data_dir = settings.data_dir
        self.default_dataset = settings.default_dataset
        self.max_age = settings.cache_max_age_minutes * 60
        self.sweep_interval = settings.cache_sweep_interval_seconds
        self._opener = opener
        self._clock = clock
        self._entries: dict[str, DatasetCacheEntry] = {}
        self._pending: dict[str, asyncio.Future[DatasetCacheEntry]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    def resolve_id(self, dataset_id: str | None) -> str:
        """Map the default aliases (or a missing id) to the default dataset."""
        if not dataset_id or dataset_id in DEFAULT_ALIASES:
            return self.default_dataset
        return dataset_id

    def resolve_path(self, dataset_id: str) -> pathlib.Path:
        """File backing a dataset id inside the data directory.

        Ids ending in .tif/.tiff are file names, other ids get ``.tif``
        appended.

        Raises:
            DatasetNotFound: If the id tries to leave the data directory.
        """
        dataset_id = self.resolve_id(dataset_id)
        if (
            "/" in dataset_id
            or "\\" in dataset_id
            or dataset_id.startswith(".")
            or pathlib.PurePath(dataset_id).is_absolute()
        ):
            raise errors.DatasetNotFound(f"Invalid dataset id: {dataset_id}")

        if dataset_id.lower().endswith(RASTER_SUFFIXES):
            return self.data_dir / dataset_id

        return self.data_dir / f"{dataset_id}.tif"

    def cache_key(self, dataset_id: str | None) -> str:
        """File name an id resolves to; ``field`` and ``field.tif`` share it.

        Raises:
            DatasetNotFound: If the id tries to leave the data directory.
        """
        return self.resolve_path(self.resolve_id(dataset_id)).name

    def get(self, dataset_id: str) -> DatasetCacheEntry | None:
        """Resident entry for an id without opening or touching it."""
        return self._entries.get(self.cache_key(dataset_id))

    async def get_or_open(self, dataset_id: str | None) -> DatasetCacheEntry:
        """Return the cached dataset, opening it on first use.

        A hit refreshes the entry's last access. A miss opens the file in a
        worker thread; concurrent misses for the same id await the same
        open. Failures propagate to every waiter and are not retried.

        Raises:
            DatasetNotFound: If the id does not resolve to a readable raster.
        """
        key = self.cache_key(dataset_id)
        entry = self._entries.get(key)
        if entry is not None:
            entry.touch(self._clock())
            return entry

        pending = self._pending.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._open(key))
            self._pending[key] = pending
            pending.add_done_callback(lambda _: self._pending.pop(key, None))

        return await asyncio.shield(pending)

    async def _open(self, dataset_id: str) -> DatasetCacheEntry:
        path = self.resolve_path(dataset_id)
        if not path.is_file():
            raise errors.DatasetNotFound(
                f"Dataset '{dataset_id}' not found",
                details={"available_datasets": self.list_available()},
            )

        handle = await asyncio.to_thread(self._opener, path)
        entry = DatasetCacheEntry(
            dataset_id=dataset_id,
            path=path,
            handle=handle,
            size_bytes=path.stat().st_size,
            last_access=self._clock(),
        )
        self._entries[dataset_id] = entry
        logger.info(
            "Opened dataset %s (%sx%s, %s bands)",
            dataset_id,
            entry.width,
            entry.height,
            entry.band_metadata.band_count,
        )
        return entry

    def evict(self, dataset_id: str) -> bool:
        """Remove a dataset from the cache and close it once no read holds it.

        Returns:
            True if the dataset was resident.
        """
        entry = self._entries.pop(self.cache_key(dataset_id), None)
        if entry is None:
            return False

        entry.retire()
        logger.info("Evicted dataset %s", entry.dataset_id)
        return True

    def list_resident(self) -> list[DatasetInfo]:
        return [entry.info() for entry in self._entries.values()]

    def list_available(self) -> list[str]:
        """Raster file names present in the data directory."""
        if not self.data_dir.is_dir():
            return []

        return sorted(
            p.name
            for p in self.data_dir.iterdir()
            if p.is_file() and p.suffix.lower() in RASTER_SUFFIXES
        )

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict entries idle for longer than the maximum age.

        Returns:
            Ids of the evicted datasets.
        """
        now = self._clock() if now is None else now
        expired = [
            dataset_id
            for dataset_id, entry in self._entries.items()
            if now - entry.last_access > self.max_age
        ]
        for dataset_id in expired:
            self.evict(dataset_id)

        if expired:
            logger.info("Cache sweep evicted %s", ", ".join(expired))

        return expired

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep task on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(
                self._sweep_loop()
            )

    async def close(self) -> None:
        """Stop the sweep task and close every resident dataset."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

        for dataset_id in list(self._entries):
            self.evict(dataset_id)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, dataset_id: object) -> bool:
        if not isinstance(dataset_id, str):
            return False
        try:
            return self.cache_key(dataset_id) in self._entries
        except errors.DatasetNotFound:
            return False

"""Read-through disk cache over any sample source.

The first request for an index computes the sample from the wrapped source and
persists it; later requests are served from disk without touching the source.
Post-cache transforms run on every access and are never stored, so random
augmentations stay random while expensive slicing/binning is paid once.

Usage:
    sliced = SlicedDataset(recordings, SliceByTime(time_window=50_000))
    cached = CachedDataset(
        sliced,
        cache_root_path="cache/nmnist_50ms",
        transform=to_frame,
    )
    frames, label = cached[0]   # computes and writes 0.pkl
    frames, label = cached[0]   # reads 0.pkl
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from joblib import Parallel, delayed
from torch.utils.data import Dataset
from tqdm import tqdm

from eventcache.data.base import Sample, check_index
from eventcache.data.cache_manager import SampleCacheManager
from eventcache.errors import CacheMissError

logger = logging.getLogger(__name__)

LOCK_STRIPES = 64


class CachedDataset(Dataset):
    """Disk-backed, index-keyed cache in front of a sample source.

    Args:
        dataset: Source with ``__len__``/``__getitem__`` returning (data, label).
                 May be None to serve an existing cache directory read-only;
                 nothing is then created or written under cache_root_path.
        cache_root_path: Directory for cache entries (created if absent)
        transform: Applied to cached data after retrieval
        target_transform: Applied to cached label after retrieval
        transforms: Applied jointly as ``transforms(data, label)`` after the two above
        reset_cache: Delete existing entries at construction
        cache_params: Params describing how the source builds samples; recorded
                      in the manifest so stale caches are flagged on reopen
    """

    def __init__(
        self,
        dataset: Optional[Any],
        cache_root_path: Union[str, Path],
        transform: Optional[Callable] = None,
        target_transform: Optional[Callable] = None,
        transforms: Optional[Callable] = None,
        reset_cache: bool = False,
        cache_params: Optional[Dict[str, Any]] = None,
    ):
        self.dataset = dataset
        self.transform = transform
        self.target_transform = target_transform
        self.transforms = transforms

        if dataset is None and reset_cache:
            raise ValueError("reset_cache=True requires a source dataset to rebuild from")

        self.cache = SampleCacheManager(
            cache_root=cache_root_path,
            cache_params=cache_params,
            source_length=len(dataset) if dataset is not None else None,
            reset=reset_cache,
            read_only=dataset is None,
        )
        self.cache_root_path = self.cache.cache_root

        if dataset is None and self.cache.source_length is None:
            raise ValueError(
                f"No source dataset given and no manifest with a recorded length "
                f"found in {self.cache_root_path}"
            )

        self._locks = self._make_locks()

        logger.info(
            f"CachedDataset at {self.cache_root_path}: "
            f"{len(self.cache.cached_indices())}/{len(self)} entries cached"
        )

    def length(self) -> int:
        """Number of samples, identical to the source's length."""
        if self.dataset is not None:
            return len(self.dataset)
        return self.cache.source_length

    def __len__(self) -> int:
        return self.length()

    @staticmethod
    def _make_locks() -> List[threading.Lock]:
        return [threading.Lock() for _ in range(LOCK_STRIPES)]

    def _lock_for(self, index: int) -> threading.Lock:
        # Indices sharing a stripe serialise with each other
        return self._locks[index % LOCK_STRIPES]

    def _fetch(self, index: int) -> Tuple[Sample, bool]:
        """Return the untransformed sample, computing and persisting on a miss.

        Returns:
            Tuple of (sample, computed) where computed is True on a cache miss
        """
        with self._lock_for(index):
            if self.cache.is_cached(index):
                logger.debug(f"Cache hit: {index}")
                return self.cache.load_entry(index), False

            if self.dataset is None:
                raise CacheMissError(index)

            logger.debug(f"Cache miss: {index}")
            try:
                sample = self.dataset[index]
            except Exception:
                logger.error(f"✗ Source failed to compute sample {index}")
                raise

            self.cache.save_entry(index, sample)
            return sample, True

    def _warm_one(self, index: int) -> bool:
        return self._fetch(index)[1]

    def get(self, index: int) -> Sample:
        """Get the sample at ``index``, serving it from cache when possible.

        Args:
            index: Integer in ``[0, len(self))``

        Returns:
            (data, label) with post-cache transforms applied

        Raises:
            OutOfRangeError: If index is invalid (nothing is written)
            SerializationError: If the entry cannot be persisted or restored
            CacheMissError: If no entry exists and no source is attached
        """
        index = check_index(index, len(self))
        (data, label), _ = self._fetch(index)

        if self.transform is not None:
            data = self.transform(data)
        if self.target_transform is not None:
            label = self.target_transform(label)
        if self.transforms is not None:
            data, label = self.transforms(data, label)
        return data, label

    def __getitem__(self, index: int) -> Sample:
        return self.get(index)

    def warm_cache(
        self,
        indices: Optional[Iterable[int]] = None,
        n_jobs: int = 1,
        show_progress: bool = True,
    ) -> int:
        """Populate cache entries ahead of training.

        Args:
            indices: Indices to fill (default: all)
            n_jobs: Number of worker threads
            show_progress: Show a tqdm progress bar

        Returns:
            Number of entries computed (excludes entries already on disk)
        """
        if indices is None:
            indices = range(len(self))
        indices = [check_index(i, len(self)) for i in indices]
        todo = [i for i in indices if not self.cache.is_cached(i)]
        logger.info(
            f"Warming cache: {len(todo)} to compute, {len(indices) - len(todo)} already cached"
        )

        iterator = tqdm(todo, desc="Caching samples", disable=not show_progress)
        if n_jobs == 1:
            computed = [self._warm_one(i) for i in iterator]
        else:
            computed = Parallel(n_jobs=n_jobs, prefer="threads")(
                delayed(self._warm_one)(i) for i in iterator
            )

        n_computed = sum(computed)
        logger.info(f"✓ Cached {n_computed} new entries in {self.cache_root_path}")
        return n_computed

    def cached_indices(self) -> List[int]:
        """Indices with an entry on disk."""
        return self.cache.cached_indices()

    def get_stats(self) -> dict:
        """Get cache statistics (see ``SampleCacheManager.get_cache_stats``)."""
        stats = self.cache.get_cache_stats()
        stats["length"] = len(self)
        stats["missing"] = len(self) - stats["cached"]
        return stats

    def __getstate__(self):
        # Locks cannot be pickled (DataLoader workers under spawn)
        state = self.__dict__.copy()
        del state["_locks"]
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
        self._locks = self._make_locks()

"""Per-index cache entry storage with manifest tracking.

Each sample lives in its own pickle file under the cache root, named by its
index. Entries are written once through a temporary file and ``os.replace``,
so a reader never observes a partially written entry and concurrent writers
of the same index leave exactly one complete file behind.

Key Design Principles:
- One file per index (lazy, append-only, no global rewrite on each sample)
- Cache key derived from user-supplied params describing how samples were made
- Manifest records key + source length for sanity checks on reopen
- Only files this manager created are ever deleted

Example Usage:
    cache_mgr = SampleCacheManager(
        cache_root="data/cache/nmnist_50ms",
        cache_params={"time_window": 50_000, "overlap": 0, "tasks": ["train"]},
        source_length=60_000,
    )

    if not cache_mgr.is_cached(12):
        cache_mgr.save_entry(12, (events, label))
    events, label = cache_mgr.load_entry(12)
"""

import hashlib
import json
import logging
import os
import pickle
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from eventcache.errors import SerializationError

logger = logging.getLogger(__name__)

ENTRY_SUFFIX = ".pkl"
TMP_SUFFIX = ".tmp"
MANIFEST_NAME = "manifest.json"


class SampleCacheManager:
    """Manages per-index cache entries with manifest tracking.

    Args:
        cache_root: Directory holding the entries (created if absent)
        cache_params: Dict of parameters that determine entry contents
                      (e.g., {"time_window": 50000, "overlap": 0}). None adopts
                      the params recorded by an existing manifest.
        source_length: Length of the source being cached, recorded in the manifest
        reset: If True, delete existing entries before use
        read_only: Never create the directory or write the manifest; only
                   ``save_entry`` and ``clear`` touch the filesystem
    """

    def __init__(
        self,
        cache_root: Union[str, Path],
        cache_params: Optional[Dict[str, Any]] = None,
        source_length: Optional[int] = None,
        reset: bool = False,
        read_only: bool = False,
    ):
        if read_only and reset:
            raise ValueError("reset=True cannot be combined with read_only=True")

        self.cache_root = Path(cache_root)
        self.read_only = read_only
        if not read_only:
            self.cache_root.mkdir(parents=True, exist_ok=True)

        # Without explicit params, adopt whatever an existing manifest recorded
        self._adopt_params = cache_params is None
        self.cache_params = dict(cache_params or {})
        self.cache_key = self._generate_cache_key()

        self.manifest_path = self.cache_root / MANIFEST_NAME
        if reset:
            self.clear()
        self.manifest = self._load_manifest(source_length)
        if not read_only:
            self._save_manifest()

    def _generate_cache_key(self) -> str:
        """Generate cache key from cache params.

        Returns:
            Cache key (e.g., "overlap0_time_window50000"), or "default" without params
        """
        if not self.cache_params:
            return "default"

        parts = []
        for key, value in sorted(self.cache_params.items()):
            if isinstance(value, (list, tuple)):
                # Hash sequences for brevity
                joined = "_".join(str(v) for v in value)
                parts.append(f"{key}{hashlib.md5(joined.encode()).hexdigest()[:8]}")
            else:
                parts.append(f"{key}{value}")

        return "_".join(parts)

    def _load_manifest(self, source_length: Optional[int]) -> Dict:
        """Load cache manifest from disk, reconciling it with current settings.

        Returns:
            Manifest dict with structure:
            {
                "cache_key": "overlap0_time_window50000",
                "cache_params": {...},
                "source_length": 1200,
                "created": "..."
            }
        """
        fresh = {
            "cache_key": self.cache_key,
            "cache_params": self.cache_params,
            "source_length": source_length,
            "created": datetime.now().isoformat(),
        }
        if not self.manifest_path.exists():
            return fresh

        try:
            with open(self.manifest_path, "r") as f:
                manifest = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load manifest: {e}. Creating new manifest.")
            return fresh

        if self._adopt_params and "cache_key" in manifest:
            self.cache_key = manifest["cache_key"]
            self.cache_params = manifest.get("cache_params", {})
        elif manifest.get("cache_key") != self.cache_key:
            logger.warning(
                f"Cache key mismatch! Manifest has '{manifest.get('cache_key')}', "
                f"but current params generate '{self.cache_key}'. "
                f"Existing entries may be stale; pass reset_cache=True to rebuild. "
                f"Manifest will be updated."
            )
            manifest["cache_key"] = self.cache_key
            manifest["cache_params"] = self.cache_params

        if source_length is not None:
            recorded = manifest.get("source_length")
            if recorded is not None and recorded != source_length:
                logger.warning(
                    f"Source length changed from {recorded} to {source_length} "
                    f"for cache at {self.cache_root}"
                )
            manifest["source_length"] = source_length

        return manifest

    def _save_manifest(self):
        """Save manifest to disk."""
        with open(self.manifest_path, "w") as f:
            json.dump(self.manifest, f, indent=2, default=str)

    @property
    def source_length(self) -> Optional[int]:
        """Source length recorded in the manifest (None if never recorded)."""
        return self.manifest.get("source_length")

    def entry_path(self, index: int) -> Path:
        """Get the entry file path for an index.

        Args:
            index: Sample index

        Returns:
            Path to entry file (e.g., "<cache_root>/12.pkl")
        """
        return self.cache_root / f"{index}{ENTRY_SUFFIX}"

    def is_cached(self, index: int) -> bool:
        """Check whether an entry exists for ``index``."""
        return self.entry_path(index).exists()

    def cached_indices(self) -> List[int]:
        """List indices that have an entry, sorted ascending."""
        indices = []
        for path in self.cache_root.glob(f"*{ENTRY_SUFFIX}"):
            if path.stem.isdigit():
                indices.append(int(path.stem))
        return sorted(indices)

    def load_entry(self, index: int) -> Any:
        """Load the cached sample for an index.

        Args:
            index: Sample index

        Returns:
            The sample exactly as it was saved

        Raises:
            SerializationError: If the entry is missing, unreadable or cannot be unpickled
        """
        path = self.entry_path(index)
        try:
            with open(path, "rb") as f:
                return pickle.load(f)
        except (OSError, EOFError, pickle.UnpicklingError, AttributeError, ImportError) as e:
            logger.error(f"✗ Could not restore entry {path.name}: {e}")
            raise SerializationError(index, "restore", str(e)) from e

    def save_entry(self, index: int, sample: Any):
        """Persist a sample for an index.

        Writes to a temporary file in the cache root, then renames it over the
        final path. On failure the temporary file is removed and any existing
        entry is left untouched.

        Args:
            index: Sample index
            sample: Picklable sample, typically a (data, label) tuple

        Raises:
            SerializationError: If the sample cannot be pickled or written
        """
        path = self.entry_path(index)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{index}.", suffix=TMP_SUFFIX, dir=self.cache_root
            )
            with os.fdopen(fd, "wb") as f:
                pickle.dump(sample, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(tmp_name, path)
        except Exception as e:
            # Payload __reduce__ hooks may raise anything; all of it is a persist failure
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            logger.error(f"✗ Could not persist entry {path.name}: {e}")
            raise SerializationError(index, "persist", str(e)) from e

    def clear(self) -> int:
        """Delete all entries and leftover temporary files.

        Returns:
            Number of entries removed
        """
        removed = 0
        if not self.cache_root.is_dir():
            return removed
        for path in self.cache_root.glob(f"*{ENTRY_SUFFIX}"):
            if path.stem.isdigit():
                path.unlink()
                removed += 1
        for path in self.cache_root.glob(f".*{TMP_SUFFIX}"):
            path.unlink()
        if self.manifest_path.exists():
            self.manifest_path.unlink()
        logger.info(f"Cleared {removed} entries from {self.cache_root}")
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with cache statistics:
            {
                "cache_root": "data/cache/nmnist_50ms",
                "cache_key": "overlap0_time_window50000",
                "source_length": 1200,
                "cached": 800,
                "missing": 400,
                "size_bytes": 123456
            }
        """
        indices = self.cached_indices()
        size = sum(self.entry_path(i).stat().st_size for i in indices)
        length = self.source_length

        return {
            "cache_root": str(self.cache_root),
            "cache_key": self.cache_key,
            "source_length": length,
            "cached": len(indices),
            "missing": (length - len(indices)) if length is not None else None,
            "size_bytes": size,
        }

    def print_status(self):
        """Print cache status to logger."""
        stats = self.get_cache_stats()
        logger.info(f"Cache key: {stats['cache_key']}")
        logger.info(f"Cache root: {stats['cache_root']}")
        logger.info(f"  ✓ Cached: {stats['cached']} entries ({stats['size_bytes'] / 1e6:.2f} MB)")
        if stats["missing"] is not None:
            logger.info(f"  ✗ Missing: {stats['missing']} of {stats['source_length']}")

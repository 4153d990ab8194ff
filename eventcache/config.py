"""Cache build configuration.

Settings are merged in this order (later wins):

1. ``CacheConfig`` defaults (``cache_root_path`` falls back to
   ``$EVENTCACHE_CACHE_ROOT``, which may come from a ``.env`` file)
2. A YAML file
3. Dotlist overrides, e.g. ``["slice_time_window=50000", "reset_cache=true"]``

Example YAML:

    cache_root_path: cache/nmnist_50ms
    slice_time_window: 50000
    slice_overlap: 0
    include_incomplete: false
    metadata_path: cache/nmnist_50ms/meta
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from dotenv import find_dotenv, load_dotenv
from omegaconf import OmegaConf

from eventcache.data.slicers import SliceByEventCount, SliceByTime

logger = logging.getLogger(__name__)

CACHE_ROOT_ENV = "EVENTCACHE_CACHE_ROOT"
DEFAULT_CACHE_ROOT = "cache"


@dataclass
class CacheConfig:
    """Configuration for slicing a dataset and caching its samples."""

    cache_root_path: str = DEFAULT_CACHE_ROOT
    reset_cache: bool = False
    cache_params: Dict[str, Any] = field(default_factory=dict)

    # Slicing: exactly one of time window / event count
    slice_time_window: Optional[float] = None
    slice_event_count: Optional[int] = None
    slice_overlap: float = 0.0
    include_incomplete: bool = False
    metadata_path: Optional[str] = None

    num_workers: int = 1
    log_file: Optional[str] = None


def load_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[List[str]] = None,
) -> CacheConfig:
    """Load configuration from defaults, an optional YAML file and overrides.

    Args:
        path: YAML config file
        overrides: OmegaConf dotlist entries ("key=value")

    Returns:
        Populated CacheConfig

    Raises:
        FileNotFoundError: If path is given but does not exist
    """
    load_dotenv(find_dotenv(usecwd=True))

    base = OmegaConf.structured(CacheConfig)
    env_root = os.getenv(CACHE_ROOT_ENV)
    if env_root:
        base.cache_root_path = env_root

    layers = [base]
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        layers.append(OmegaConf.load(path))
        logger.info(f"Loaded config: {path}")
    if overrides:
        layers.append(OmegaConf.from_dotlist(list(overrides)))

    merged = OmegaConf.merge(*layers)
    config = OmegaConf.to_object(merged)

    if config.slice_time_window is not None and config.slice_event_count is not None:
        raise ValueError("Set only one of slice_time_window and slice_event_count")
    return config


def build_slicer(config: CacheConfig):
    """Create the slicer described by a config.

    Returns:
        SliceByTime or SliceByEventCount

    Raises:
        ValueError: If neither slicing option is set
    """
    if config.slice_time_window is not None:
        return SliceByTime(
            time_window=config.slice_time_window,
            overlap=config.slice_overlap,
            include_incomplete=config.include_incomplete,
        )
    if config.slice_event_count is not None:
        return SliceByEventCount(
            event_count=config.slice_event_count,
            overlap=int(config.slice_overlap),
            include_incomplete=config.include_incomplete,
        )
    raise ValueError("Config must set slice_time_window or slice_event_count")


def slicer_cache_params(config: CacheConfig) -> Dict[str, Any]:
    """Params recorded in the cache manifest for a sliced cache."""
    params = dict(config.cache_params)
    if config.slice_time_window is not None:
        params["time_window"] = config.slice_time_window
    if config.slice_event_count is not None:
        params["event_count"] = config.slice_event_count
    params["overlap"] = config.slice_overlap
    params["include_incomplete"] = config.include_incomplete
    return params

"""Event datasets: raw sources, slicing and the disk-backed sample cache."""

from .base import Compose, SampleSource, check_index
from .cache_manager import SampleCacheManager
from .cached_dataset import CachedDataset
from .collate import create_dataloader, pad_collate
from .events import EVENT_DTYPE, InMemoryRecordings, NumpyEventRecordings, make_events
from .sliced_dataset import SlicedDataset
from .slicers import SliceAtTimePoints, SliceByEventCount, SliceByTime

__all__ = [
    # Contract
    "SampleSource",
    "Compose",
    "check_index",
    # Sources
    "EVENT_DTYPE",
    "make_events",
    "InMemoryRecordings",
    "NumpyEventRecordings",
    # Slicing
    "SliceByTime",
    "SliceByEventCount",
    "SliceAtTimePoints",
    "SlicedDataset",
    # Cache
    "SampleCacheManager",
    "CachedDataset",
    # Batching
    "pad_collate",
    "create_dataloader",
]

"""eventcache: slicing and disk caching for event-based datasets."""

__version__ = "0.1.0"

"""Exception taxonomy for the sample cache.

Errors raised by a wrapped sample source are never wrapped here; they reach
the caller unchanged.
"""

from typing import Optional


class CacheError(Exception):
    """Base class for cache errors."""


class OutOfRangeError(CacheError, IndexError):
    """Index outside ``[0, length)``.

    Subclasses ``IndexError`` so plain ``for x in dataset`` loops terminate.
    """

    def __init__(self, index: int, length: int):
        self.index = index
        self.length = length
        super().__init__(f"Index {index} out of range for dataset of length {length}")


class SerializationError(CacheError):
    """A cache entry could not be persisted or restored.

    Args:
        index: Sample index of the failing entry
        stage: "persist" or "restore"
        reason: Short description of the underlying failure
    """

    def __init__(self, index: int, stage: str, reason: Optional[str] = None):
        self.index = index
        self.stage = stage
        msg = f"Failed to {stage} cache entry for index {index}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CacheMissError(CacheError, KeyError):
    """Entry absent and no source to compute it from."""

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No cache entry for index {index} and no source dataset attached")

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])

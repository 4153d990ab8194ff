"""Sample source contract shared by every dataset in the package.

A sample source is anything with ``__len__`` and ``__getitem__`` returning a
``(data, label)`` pair. Raw recordings, sliced views and caches all satisfy it,
so they stack:

    recordings = NumpyEventRecordings("data/events")
    sliced = SlicedDataset(recordings, SliceByTime(time_window=50_000))
    cached = CachedDataset(sliced, cache_root_path="cache/slices_50ms")
"""

import operator
from typing import Any, Callable, Iterable, List, Protocol, Tuple, runtime_checkable

from eventcache.errors import OutOfRangeError

Sample = Tuple[Any, Any]


@runtime_checkable
class SampleSource(Protocol):
    """Indexed provider of ``(data, label)`` samples."""

    def __len__(self) -> int:
        ...

    def __getitem__(self, index: int) -> Sample:
        ...


def check_index(index, length: int) -> int:
    """Validate a sample index.

    Args:
        index: Python or numpy integer
        length: Number of samples in the source

    Returns:
        The index as a plain ``int``

    Raises:
        TypeError: If index is not integer-like
        OutOfRangeError: If index is outside ``[0, length)``
    """
    index = operator.index(index)
    if index < 0 or index >= length:
        raise OutOfRangeError(index, length)
    return index


class Compose:
    """Chain callables, applying them in order.

    Args:
        transforms: Callables taking and returning one payload
    """

    def __init__(self, transforms: Iterable[Callable]):
        self.transforms: List[Callable] = list(transforms)

    def __call__(self, payload):
        for t in self.transforms:
            payload = t(payload)
        return payload

    def __repr__(self) -> str:
        inner = ", ".join(repr(t) for t in self.transforms)
        return f"{self.__class__.__name__}([{inner}])"

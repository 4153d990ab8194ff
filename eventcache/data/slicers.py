"""Slicing policies that split one event recording into sub-samples.

A slicer works in two steps so that the expensive scan over timestamps can be
done once and stored:

1. ``get_slice_metadata(data, label)`` returns ``[(start, stop), ...]`` event
   index ranges for a recording.
2. ``slice_with_metadata(data, label, metadata)`` cuts the recording with
   those ranges.

Event data is a numpy structured array with a ``t`` field (see
``eventcache.data.events``). Timestamps must be sorted ascending.
"""

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

SliceMetadata = List[Tuple[int, int]]


def _slice_count(span: float, window: float, stride: float, include_incomplete: bool) -> int:
    """Number of windows of length ``window`` stepping by ``stride`` over ``span``."""
    if include_incomplete:
        n_slices = int(math.ceil((span - window) / stride + 1))
    else:
        n_slices = int(math.floor((span - window) / stride + 1))
    # Windows longer than the recording still yield one slice
    return max(n_slices, 1)


class _Slicer:
    def get_slice_metadata(self, data: np.ndarray, label: Any) -> SliceMetadata:
        raise NotImplementedError

    def slice_with_metadata(
        self, data: np.ndarray, label: Any, metadata: Sequence[Tuple[int, int]]
    ) -> Tuple[List[np.ndarray], List[Any]]:
        """Cut ``data`` with precomputed ranges; every slice keeps the recording label."""
        slices = [data[start:stop] for start, stop in metadata]
        return slices, [label] * len(slices)

    def slice(self, data: np.ndarray, label: Any) -> Tuple[List[np.ndarray], List[Any]]:
        return self.slice_with_metadata(data, label, self.get_slice_metadata(data, label))


@dataclass(frozen=True)
class SliceByTime(_Slicer):
    """Fixed-duration time windows.

    Args:
        time_window: Window length in the recording's time unit (usually µs)
        overlap: Overlap between consecutive windows, must be < time_window
        include_incomplete: Keep a trailing window shorter than time_window
        start_time: Start of the first window (default: first timestamp)
        end_time: End of the sliced span (default: last timestamp)
    """

    time_window: float
    overlap: float = 0.0
    include_incomplete: bool = False
    start_time: Optional[float] = None
    end_time: Optional[float] = None

    def __post_init__(self):
        if self.time_window <= 0:
            raise ValueError(f"time_window must be positive, got {self.time_window}")
        if self.overlap < 0 or self.overlap >= self.time_window:
            raise ValueError(
                f"overlap must be in [0, time_window), got {self.overlap} for window {self.time_window}"
            )

    def get_slice_metadata(self, data: np.ndarray, label: Any) -> SliceMetadata:
        times = data["t"]
        if len(times) == 0:
            return []

        stride = self.time_window - self.overlap
        start_time = times[0] if self.start_time is None else self.start_time
        end_time = times[-1] if self.end_time is None else self.end_time
        n_slices = _slice_count(end_time - start_time, self.time_window, stride, self.include_incomplete)

        window_starts = np.arange(n_slices) * stride + start_time
        window_ends = window_starts + self.time_window
        starts = np.searchsorted(times, window_starts)
        stops = np.searchsorted(times, window_ends)
        return [(int(a), int(b)) for a, b in zip(starts, stops)]


@dataclass(frozen=True)
class SliceByEventCount(_Slicer):
    """Windows holding a fixed number of events.

    Args:
        event_count: Events per slice
        overlap: Events shared between consecutive slices, must be < event_count
        include_incomplete: Keep a trailing slice with fewer events
    """

    event_count: int
    overlap: int = 0
    include_incomplete: bool = False

    def __post_init__(self):
        if self.event_count <= 0:
            raise ValueError(f"event_count must be positive, got {self.event_count}")
        if self.overlap < 0 or self.overlap >= self.event_count:
            raise ValueError(
                f"overlap must be in [0, event_count), got {self.overlap} for count {self.event_count}"
            )

    def get_slice_metadata(self, data: np.ndarray, label: Any) -> SliceMetadata:
        n_events = len(data)
        if n_events == 0:
            return []

        count = min(self.event_count, n_events)
        stride = count - min(self.overlap, count - 1)
        n_slices = _slice_count(n_events, count, stride, self.include_incomplete)

        starts = np.arange(n_slices) * stride
        stops = np.minimum(starts + count, n_events)
        return [(int(a), int(b)) for a, b in zip(starts, stops)]


@dataclass(frozen=True)
class SliceAtTimePoints(_Slicer):
    """Explicit time windows ``[start_tw[i], end_tw[i])``.

    Args:
        start_tw: Window start times
        end_tw: Window end times, same length as start_tw
    """

    start_tw: Tuple[float, ...]
    end_tw: Tuple[float, ...]

    def __post_init__(self):
        # Normalise lists so the dataclass stays hashable and its repr stable
        object.__setattr__(self, "start_tw", tuple(self.start_tw))
        object.__setattr__(self, "end_tw", tuple(self.end_tw))
        if len(self.start_tw) != len(self.end_tw):
            raise ValueError("start_tw and end_tw must have the same length")
        if any(e < s for s, e in zip(self.start_tw, self.end_tw)):
            raise ValueError("every end_tw must be >= its start_tw")

    def get_slice_metadata(self, data: np.ndarray, label: Any) -> SliceMetadata:
        times = data["t"]
        starts = np.searchsorted(times, np.asarray(self.start_tw))
        stops = np.searchsorted(times, np.asarray(self.end_tw))
        return [(int(a), int(b)) for a, b in zip(starts, stops)]

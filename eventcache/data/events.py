"""Raw event recordings as sample sources.

Events are numpy structured arrays with fields ``t`` (µs), ``x``, ``y`` and
``p`` (polarity). Two sources are provided:

- ``InMemoryRecordings``: a list of (events, label) pairs
- ``NumpyEventRecordings``: a directory laid out as ``root/<class>/<name>.npy``
"""

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from torch.utils.data import Dataset

from eventcache.data.base import Sample, check_index

logger = logging.getLogger(__name__)

EVENT_DTYPE = np.dtype([("t", np.int64), ("x", np.int16), ("y", np.int16), ("p", np.int8)])


def make_events(t, x, y, p) -> np.ndarray:
    """Build a structured event array from equal-length sequences.

    Args:
        t: Timestamps (µs)
        x: Column coordinates
        y: Row coordinates
        p: Polarities (0/1)

    Returns:
        Structured array with dtype ``EVENT_DTYPE``
    """
    t = np.asarray(t)
    if not (len(t) == len(x) == len(y) == len(p)):
        raise ValueError("t, x, y and p must have the same length")
    events = np.empty(len(t), dtype=EVENT_DTYPE)
    events["t"] = t
    events["x"] = x
    events["y"] = y
    events["p"] = p
    return events


class InMemoryRecordings(Dataset):
    """Recordings already loaded in memory.

    Args:
        recordings: Sequence of (events, label) pairs
    """

    def __init__(self, recordings: Sequence[Tuple[np.ndarray, Any]]):
        self.recordings = list(recordings)

    def __len__(self) -> int:
        return len(self.recordings)

    def __getitem__(self, index: int) -> Sample:
        index = check_index(index, len(self))
        return self.recordings[index]


class NumpyEventRecordings(Dataset):
    """Event recordings stored as ``.npy`` files, one sub-folder per class.

    Class folders are sorted by name; a recording's label is its folder's
    position in that order.

    Args:
        root: Dataset root directory
        transform: Applied to the events on load
        target_transform: Applied to the label on load
    """

    def __init__(
        self,
        root: Union[str, Path],
        transform: Optional[Callable] = None,
        target_transform: Optional[Callable] = None,
    ):
        self.root = Path(root)
        self.transform = transform
        self.target_transform = target_transform

        if not self.root.is_dir():
            raise FileNotFoundError(f"Dataset root not found: {self.root}")

        self.classes: List[str] = sorted(p.name for p in self.root.iterdir() if p.is_dir())
        self.files: List[Path] = []
        self.labels: List[int] = []
        for label, name in enumerate(self.classes):
            for path in sorted((self.root / name).glob("*.npy")):
                self.files.append(path)
                self.labels.append(label)

        if not self.files:
            raise FileNotFoundError(f"No .npy recordings found under {self.root}")

        logger.info(
            f"NumpyEventRecordings: {len(self.files)} recordings in {len(self.classes)} classes"
        )

    def __len__(self) -> int:
        return len(self.files)

    def __getitem__(self, index: int) -> Sample:
        index = check_index(index, len(self))
        events = np.load(self.files[index])
        if events.dtype.names is None or "t" not in events.dtype.names:
            raise ValueError(f"{self.files[index]} is not a structured event array with a 't' field")
        # Slicers rely on sorted timestamps
        events = events[np.argsort(events["t"], kind="stable")]
        label = self.labels[index]

        if self.transform is not None:
            events = self.transform(events)
        if self.target_transform is not None:
            label = self.target_transform(label)
        return events, label

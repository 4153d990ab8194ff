"""Expose every slice of every recording as its own sample.

Slice boundaries are computed once per recording at construction and kept in
a DataFrame (one row per slice). When ``metadata_path`` is given the table is
stored as Parquet and reused as long as the slicer and recording count match.
"""

import hashlib
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pandas as pd
from torch.utils.data import Dataset

from eventcache.data.base import Sample, check_index

logger = logging.getLogger(__name__)

METADATA_COLUMNS = ["recording_index", "slice_index", "start", "stop"]


class SlicedDataset(Dataset):
    """Dataset of slices cut from the recordings of another dataset.

    Args:
        dataset: Source of whole recordings, (events, label) per index
        slicer: Slicing policy (e.g., ``SliceByTime(time_window=50_000)``)
        metadata_path: Optional directory to persist slice metadata in
        transform: Applied to each slice's data
        target_transform: Applied to each slice's label
        transforms: Applied jointly as ``transforms(data, label)`` after the two above
    """

    def __init__(
        self,
        dataset: Any,
        slicer: Any,
        metadata_path: Optional[Union[str, Path]] = None,
        transform: Optional[Callable] = None,
        target_transform: Optional[Callable] = None,
        transforms: Optional[Callable] = None,
    ):
        self.dataset = dataset
        self.slicer = slicer
        self.metadata_path = Path(metadata_path) if metadata_path is not None else None
        self.transform = transform
        self.target_transform = target_transform
        self.transforms = transforms

        self.metadata = self._load_or_build_metadata()

        logger.info(
            f"SlicedDataset created: {len(self)} slices from {len(dataset)} recordings "
            f"({slicer!r})"
        )

    def _metadata_key(self) -> str:
        """Key identifying the slicer configuration and source size."""
        raw = f"{self.slicer!r}|{len(self.dataset)}"
        return hashlib.md5(raw.encode()).hexdigest()[:12]

    def _metadata_file(self) -> Path:
        return self.metadata_path / f"slices_{self._metadata_key()}.parquet"

    def _load_or_build_metadata(self) -> pd.DataFrame:
        if self.metadata_path is not None:
            path = self._metadata_file()
            if path.exists():
                try:
                    metadata = pd.read_parquet(path)
                    logger.info(f"Loaded slice metadata: {path.name} ({len(metadata)} slices)")
                    return metadata
                except Exception as e:
                    logger.warning(f"Failed to load slice metadata: {e}. Rebuilding.")

        metadata = self._build_metadata()

        if self.metadata_path is not None:
            self.metadata_path.mkdir(parents=True, exist_ok=True)
            metadata.to_parquet(self._metadata_file(), index=False)
            logger.info(f"✓ Saved slice metadata: {self._metadata_file().name}")

        return metadata

    def _build_metadata(self) -> pd.DataFrame:
        """Scan all recordings and collect slice ranges."""
        rows = []
        for recording_index in range(len(self.dataset)):
            data, label = self.dataset[recording_index]
            for slice_index, (start, stop) in enumerate(self.slicer.get_slice_metadata(data, label)):
                rows.append((recording_index, slice_index, start, stop))

        metadata = pd.DataFrame(rows, columns=METADATA_COLUMNS)
        return metadata.astype("int64")

    def __len__(self) -> int:
        return len(self.metadata)

    def __getitem__(self, index: int) -> Sample:
        """Get one slice.

        Args:
            index: Global slice index

        Returns:
            (data, label) for the slice, with transforms applied
        """
        index = check_index(index, len(self))
        row = self.metadata.iloc[index]

        data, label = self.dataset[int(row["recording_index"])]
        slices, labels = self.slicer.slice_with_metadata(
            data, label, [(int(row["start"]), int(row["stop"]))]
        )
        data, label = slices[0], labels[0]

        if self.transform is not None:
            data = self.transform(data)
        if self.target_transform is not None:
            label = self.target_transform(label)
        if self.transforms is not None:
            data, label = self.transforms(data, label)
        return data, label

    def get_metadata_row(self, index: int) -> pd.Series:
        """Get metadata for a specific slice.

        Args:
            index: Global slice index

        Returns:
            Metadata as pandas Series
        """
        return self.metadata.iloc[check_index(index, len(self))]

    def get_stats(self) -> dict:
        """Get dataset statistics.

        Returns:
            Dict with statistics
        """
        lengths = self.metadata["stop"] - self.metadata["start"]
        per_recording = self.metadata.groupby("recording_index").size()
        return {
            "n_slices": len(self),
            "n_recordings": len(self.dataset),
            "n_recordings_with_slices": int(per_recording.shape[0]),
            "mean_events_per_slice": float(lengths.mean()) if len(lengths) else 0.0,
            "max_slices_per_recording": int(per_recording.max()) if len(per_recording) else 0,
        }

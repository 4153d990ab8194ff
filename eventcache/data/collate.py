"""Batching helpers for variable-length event samples."""

from typing import List, Sequence, Tuple

import numpy as np
import torch
from torch.utils.data import DataLoader


def _to_tensor(data) -> torch.Tensor:
    if isinstance(data, torch.Tensor):
        return data
    data = np.asarray(data)
    if data.dtype.names is not None:
        # Structured events -> (n_events, n_fields)
        data = np.stack([data[name].astype(np.float32) for name in data.dtype.names], axis=-1)
    return torch.as_tensor(data)


def pad_collate(batch: Sequence[Tuple]) -> Tuple[torch.Tensor, torch.Tensor]:
    """Collate (data, label) pairs, zero-padding data along the first dimension.

    Slices cut by time hold different numbers of events, and frame tensors
    binned from them can differ in their number of time bins, so the default
    collate cannot stack them.
    """
    tensors: List[torch.Tensor] = [_to_tensor(item[0]) for item in batch]
    max_len = max(t.shape[0] for t in tensors)

    padded = []
    for t in tensors:
        if t.shape[0] < max_len:
            pad = torch.zeros((max_len - t.shape[0], *t.shape[1:]), dtype=t.dtype)
            t = torch.cat([t, pad], dim=0)
        padded.append(t)

    x_batch = torch.stack(padded, dim=0)
    y_batch = torch.stack([torch.as_tensor(item[1]) for item in batch], dim=0)
    return x_batch, y_batch


def create_dataloader(
    dataset,
    batch_size: int = 32,
    shuffle: bool = True,
    num_workers: int = 0,
) -> DataLoader:
    """Create a DataLoader that pads variable-length samples."""
    return DataLoader(
        dataset,
        batch_size=batch_size,
        shuffle=shuffle,
        num_workers=num_workers,
        collate_fn=pad_collate,
        persistent_workers=True if num_workers > 0 else False,
    )

"""Tests for CachedDataset read-through caching."""

import pickle
import tempfile
import threading
from pathlib import Path

import numpy as np
import pytest
import torch
from torch.utils.data import DataLoader

from eventcache.data.cached_dataset import LOCK_STRIPES, CachedDataset
from eventcache.errors import CacheMissError, OutOfRangeError, SerializationError


class CountingSource:
    """Length-n source returning (i, i % 2) and counting computations."""

    def __init__(self, n: int = 5):
        self.n = n
        self.calls = []

    def __len__(self) -> int:
        return self.n

    def __getitem__(self, idx):
        self.calls.append(idx)
        return idx, idx % 2


class ArraySource:
    def __len__(self) -> int:
        return 4

    def __getitem__(self, idx):
        rng = np.random.default_rng(idx)
        return rng.normal(size=(3, 8)).astype(np.float32), idx


class FailingSource(CountingSource):
    def __getitem__(self, idx):
        self.calls.append(idx)
        raise RuntimeError(f"broken recording {idx}")


class UnpicklableSource(CountingSource):
    def __getitem__(self, idx):
        self.calls.append(idx)
        return threading.Lock(), 0


@pytest.fixture
def temp_cache_dir():
    """Create temporary cache directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "cache"


def entry_files(cache_dir: Path):
    return sorted(p.name for p in cache_dir.glob("*.pkl"))


def test_repeated_requests_hit_cache(temp_cache_dir):
    source = CountingSource()
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)

    results = [ds.get(i) for i in [0, 2, 0, 4]]

    assert results == [(0, 0), (2, 0), (0, 0), (4, 0)]
    assert len(source.calls) == 3
    assert source.calls == [0, 2, 4]


def test_length_matches_source(temp_cache_dir):
    ds = CachedDataset(CountingSource(7), cache_root_path=temp_cache_dir)
    assert len(ds) == 7
    assert ds.length() == 7


def test_out_of_range_writes_nothing(temp_cache_dir):
    source = CountingSource()
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)

    with pytest.raises(OutOfRangeError):
        ds.get(10)
    with pytest.raises(OutOfRangeError):
        ds[-1]

    assert entry_files(temp_cache_dir) == []
    assert source.calls == []


def test_out_of_range_is_index_error(temp_cache_dir):
    ds = CachedDataset(CountingSource(3), cache_root_path=temp_cache_dir)
    # Legacy iteration protocol stops on IndexError
    assert list(ds) == [(0, 0), (1, 1), (2, 0)]


def test_numpy_integer_index(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir)
    assert ds[np.int64(3)] == (3, 1)


def test_entry_count_tracks_distinct_indices(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir, reset_cache=True)

    for i in [1, 1, 3, 1, 3]:
        ds.get(i)

    assert entry_files(temp_cache_dir) == ["1.pkl", "3.pkl"]
    assert ds.cached_indices() == [1, 3]


def test_entries_survive_new_instance(temp_cache_dir):
    first = CountingSource()
    CachedDataset(first, cache_root_path=temp_cache_dir).get(2)

    second = CountingSource()
    ds = CachedDataset(second, cache_root_path=temp_cache_dir)
    assert ds.get(2) == (2, 0)
    assert second.calls == []


def test_reset_cache_clears_entries(temp_cache_dir):
    CachedDataset(CountingSource(), cache_root_path=temp_cache_dir).get(0)
    assert entry_files(temp_cache_dir) == ["0.pkl"]

    source = CountingSource()
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)
    assert entry_files(temp_cache_dir) == []
    ds.get(0)
    assert source.calls == [0]


def test_reset_keeps_foreign_files(temp_cache_dir):
    temp_cache_dir.mkdir(parents=True)
    (temp_cache_dir / "notes.txt").write_text("keep me")
    CachedDataset(CountingSource(), cache_root_path=temp_cache_dir, reset_cache=True)
    assert (temp_cache_dir / "notes.txt").exists()


def test_array_payload_round_trips_exactly(temp_cache_dir):
    source = ArraySource()
    cold = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)
    warm = CachedDataset(source, cache_root_path=temp_cache_dir)

    for i in range(len(source)):
        expected, label = source[i]
        x_cold, y_cold = cold[i]
        x_warm, y_warm = warm[i]
        np.testing.assert_array_equal(x_cold, expected)
        np.testing.assert_array_equal(x_warm, expected)
        assert x_warm.dtype == expected.dtype
        assert y_cold == y_warm == label


def test_transform_applied_after_retrieval(temp_cache_dir):
    source = ArraySource()
    plain = CachedDataset(source, cache_root_path=temp_cache_dir / "plain")

    def double(x):
        return x * 2

    transformed = CachedDataset(source, cache_root_path=temp_cache_dir / "t", transform=double)

    for i in range(len(source)):
        np.testing.assert_array_equal(transformed[i][0], double(plain[i][0]))
        # Second read comes from disk and must still be transformed
        np.testing.assert_array_equal(transformed[i][0], double(plain[i][0]))


def test_transform_not_persisted(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir, transform=lambda x: x + 100)
    assert ds[1] == (101, 1)

    with open(temp_cache_dir / "1.pkl", "rb") as f:
        assert pickle.load(f) == (1, 1)


def test_target_and_joint_transforms(temp_cache_dir):
    ds = CachedDataset(
        CountingSource(),
        cache_root_path=temp_cache_dir,
        target_transform=lambda y: y * 10,
        transforms=lambda x, y: (x, (x, y)),
    )
    assert ds[3] == (3, (3, 10))


def test_source_error_propagates_and_is_not_cached(temp_cache_dir):
    source = FailingSource()
    ds = CachedDataset(source, cache_root_path=temp_cache_dir)

    with pytest.raises(RuntimeError, match="broken recording 2"):
        ds.get(2)
    with pytest.raises(RuntimeError):
        ds.get(2)

    assert source.calls == [2, 2]
    assert entry_files(temp_cache_dir) == []


def test_unpicklable_payload_raises_serialization_error(temp_cache_dir):
    ds = CachedDataset(UnpicklableSource(), cache_root_path=temp_cache_dir)

    with pytest.raises(SerializationError) as excinfo:
        ds.get(1)

    assert excinfo.value.index == 1
    assert excinfo.value.stage == "persist"
    assert entry_files(temp_cache_dir) == []
    assert list(temp_cache_dir.glob(".*.tmp")) == []


def test_corrupt_entry_raises_serialization_error(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir)
    (temp_cache_dir / "0.pkl").write_bytes(b"not a pickle")

    with pytest.raises(SerializationError) as excinfo:
        ds.get(0)
    assert excinfo.value.stage == "restore"


def test_cache_only_mode_serves_existing_entries(temp_cache_dir):
    CachedDataset(CountingSource(), cache_root_path=temp_cache_dir).warm_cache([0, 1], show_progress=False)

    ds = CachedDataset(None, cache_root_path=temp_cache_dir)
    assert len(ds) == 5
    assert ds[1] == (1, 1)
    with pytest.raises(CacheMissError):
        ds[4]


def test_cache_only_mode_requires_manifest(temp_cache_dir):
    with pytest.raises(ValueError):
        CachedDataset(None, cache_root_path=temp_cache_dir)
    assert not temp_cache_dir.exists()


def test_cache_only_mode_writes_nothing(temp_cache_dir):
    CachedDataset(CountingSource(), cache_root_path=temp_cache_dir).get(0)
    before = {p.name: p.read_bytes() for p in temp_cache_dir.iterdir()}

    ds = CachedDataset(None, cache_root_path=temp_cache_dir, cache_params={"time_window": 10})
    assert ds[0] == (0, 0)
    with pytest.raises(CacheMissError):
        ds[3]

    after = {p.name: p.read_bytes() for p in temp_cache_dir.iterdir()}
    assert after == before


def test_cache_only_mode_rejects_reset(temp_cache_dir):
    CachedDataset(CountingSource(), cache_root_path=temp_cache_dir).get(0)
    with pytest.raises(ValueError):
        CachedDataset(None, cache_root_path=temp_cache_dir, reset_cache=True)
    assert entry_files(temp_cache_dir) == ["0.pkl"]


def test_payload_error_surfaces_as_serialization_error(temp_cache_dir):
    class Handle:
        def __reduce__(self):
            raise RuntimeError("cannot serialise this handle")

    class HandleSource(CountingSource):
        def __getitem__(self, idx):
            return Handle(), idx

    ds = CachedDataset(HandleSource(), cache_root_path=temp_cache_dir)
    with pytest.raises(SerializationError) as excinfo:
        ds.get(0)
    assert excinfo.value.stage == "persist"
    assert list(temp_cache_dir.glob(".*.tmp")) == []


def test_warm_cache_computes_each_index_once(temp_cache_dir):
    source = CountingSource(20)
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)
    ds.get(0)

    n_computed = ds.warm_cache(n_jobs=4, show_progress=False)

    assert n_computed == 19
    assert sorted(source.calls) == list(range(20))
    assert ds.warm_cache(show_progress=False) == 0


def test_concurrent_gets_compute_once(temp_cache_dir):
    source = CountingSource(1)
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)

    threads = [threading.Thread(target=ds.get, args=(0,)) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert source.calls == [0]


def test_lock_pool_does_not_grow_with_indices(temp_cache_dir):
    source = CountingSource(3 * LOCK_STRIPES)
    ds = CachedDataset(source, cache_root_path=temp_cache_dir, reset_cache=True)

    ds.warm_cache(n_jobs=4, show_progress=False)

    assert len(ds._locks) == LOCK_STRIPES
    assert sorted(source.calls) == list(range(3 * LOCK_STRIPES))


def test_dataset_is_picklable(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir)
    ds.get(0)
    clone = pickle.loads(pickle.dumps(ds))
    assert clone.get(0) == (0, 0)
    assert clone.get(1) == (1, 1)


def test_dataloader_batches(temp_cache_dir):
    ds = CachedDataset(ArraySource(), cache_root_path=temp_cache_dir)
    loader = DataLoader(ds, batch_size=2, shuffle=False)
    batches = list(loader)
    assert len(batches) == 2
    x, y = batches[0]
    assert x.shape == (2, 3, 8)
    assert torch.equal(y, torch.tensor([0, 1]))


def test_get_stats(temp_cache_dir):
    ds = CachedDataset(CountingSource(), cache_root_path=temp_cache_dir, reset_cache=True)
    ds.get(0)
    ds.get(4)
    stats = ds.get_stats()
    assert stats["length"] == 5
    assert stats["cached"] == 2
    assert stats["missing"] == 3

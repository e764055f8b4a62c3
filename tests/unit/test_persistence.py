"""
Tests for the persistence & cache manager.
"""

import json

import pytest


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    from engines.persistence import ModelStore
    return ModelStore(tmp_path, timeout_seconds=60, clock=clock)


class TestModelStore:
    """Tests for ModelStore save/load."""

    def test_missing_state(self, store):
        """Test loading a strategy that was never saved."""
        assert store.load_sync("graph") is None
        assert store.read_metadata("graph") is None

    def test_save_and_load(self, store):
        """Test a saved state loads back with its metadata."""
        record = store.save_sync("content", {"product_count": 2}, {"p:1": {"document": "a"}}, {"k": 1})

        state = store.load_sync("content")

        assert state is not None
        assert state.entries == {"p:1": {"document": "a"}}
        assert state.extra == {"k": 1}
        assert state.metadata["trained"] is True
        assert state.metadata["product_count"] == 2
        assert state.metadata["entry_count"] == 1
        assert state.metadata["run_id"] == record["run_id"]
        assert state.last_trained_at == store.clock()

    def test_writes_leave_no_temp_files(self, store, tmp_path):
        """Test only the two artifacts remain after an atomic write."""
        store.save_sync("graph", {}, {"p:1": {"kind": "product", "vector": [0.1]}})

        assert sorted(p.name for p in tmp_path.iterdir()) == ["graph_features.json", "graph_model.json"]

    def test_stale_state_rejected(self, store, clock):
        """Test state older than the timeout is not loaded."""
        store.save_sync("hybrid", {}, {"p:1": {}})

        clock.now += 61

        assert store.load_sync("hybrid") is None
        assert store.load_sync("hybrid", allow_stale=True) is not None

    def test_fresh_within_timeout(self, store, clock):
        """Test state at exactly the timeout is still fresh."""
        store.save_sync("hybrid", {}, {"p:1": {}})

        clock.now += 60

        assert store.is_fresh_metadata(store.read_metadata("hybrid")) is True

    def test_run_id_mismatch_is_missing(self, store):
        """Test features from a different run are treated as missing."""
        store.save_sync("graph", {}, {"p:1": {}})
        features_path = store.features_path("graph")
        features = json.loads(features_path.read_text())
        features["run_id"] = "another-run"
        features_path.write_text(json.dumps(features))

        assert store.load_sync("graph") is None

    def test_unreadable_metadata(self, store, tmp_path):
        """Test malformed metadata files are treated as missing."""
        tmp_path.joinpath("graph_model.json").write_text("{not json")
        assert store.load_sync("graph") is None

        tmp_path.joinpath("graph_model.json").write_text("[]")
        assert store.load_sync("graph") is None

    def test_entries_must_be_a_map(self, store):
        """Test a features file whose entries are not an object is rejected."""
        store.save_sync("graph", {}, {"p:1": {}})
        features_path = store.features_path("graph")
        features = json.loads(features_path.read_text())
        features["entries"] = ["p:1"]
        features_path.write_text(json.dumps(features))

        assert store.load_sync("graph") is None

    def test_delete(self, store):
        """Test delete removes both artifacts."""
        store.save_sync("graph", {}, {})

        store.delete("graph")

        assert not store.metadata_path("graph").exists()
        assert not store.features_path("graph").exists()

    async def test_async_api(self, store):
        """Test the executor-backed async wrappers."""
        await store.save("content", {}, {"p:1": {"document": "x"}})

        assert await store.is_fresh("content") is True
        assert (await store.metadata("content"))["last_trained_at"] > 0
        assert await store.metadata("graph") is None
        state = await store.load("content")
        assert state.entries == {"p:1": {"document": "x"}}


class TestDecodeEntries:
    """Tests for per-entry decoding."""

    def test_corrupt_entries_are_skipped(self):
        """Test entries that fail to decode are dropped, others kept."""
        from core.errors import CorruptPersistedEntryError
        from engines.persistence import decode_entries

        def decode(entry_id, raw):
            if raw == "bad":
                raise CorruptPersistedEntryError(entry_id, "bad entry")
            return float(raw)

        decoded = decode_entries({"a": 1, "b": "bad", "c": "not-a-number", "d": 2}, decode, strategy="test")

        assert decoded == {"a": 1.0, "d": 2.0}

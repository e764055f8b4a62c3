"""
Tests for the fixed-size embedding arena.
"""

import numpy as np
import pytest


def _arena(capacity=3, dim=4):
    from engines.arena import EmbeddingArena
    return EmbeddingArena(dim=dim, capacity=capacity, rng=np.random.default_rng(0))


class TestFitDimension:
    """Tests for fitting persisted vectors to the arena dimension."""

    def test_pads_short_vectors(self):
        """Test shorter vectors are zero-padded."""
        from engines.arena import fit_dimension

        vector = fit_dimension([1.0, 2.0], 4)

        assert vector.tolist() == [1.0, 2.0, 0.0, 0.0]
        assert vector.dtype == np.float32

    def test_truncates_long_vectors(self):
        """Test longer vectors are truncated."""
        from engines.arena import fit_dimension

        assert fit_dimension([1, 2, 3, 4, 5], 3).tolist() == [1.0, 2.0, 3.0]

    def test_non_finite_components_become_zero(self):
        """Test None, NaN and infinity are replaced with 0."""
        from engines.arena import fit_dimension

        vector = fit_dimension([None, float("nan"), float("inf"), 1.5], 4)

        assert vector.tolist() == [0.0, 0.0, 0.0, 1.5]

    @pytest.mark.parametrize("raw", [None, "1,2,3", {"x": 1}, ["a", "b"]])
    def test_rejects_non_numeric(self, raw):
        """Test non-list values raise CorruptPersistedEntryError."""
        from core.errors import CorruptPersistedEntryError
        from engines.arena import fit_dimension

        with pytest.raises(CorruptPersistedEntryError):
            fit_dimension(raw, 4)


class TestEmbeddingArena:
    """Tests for EmbeddingArena."""

    def test_insert_and_get(self):
        """Test inserted nodes are retrievable with the right kind."""
        from engines.arena import PRODUCT, node_key

        arena = _arena()
        key = node_key(PRODUCT, "p1")
        arena.insert(key, PRODUCT, np.ones(4))

        assert key == "p:p1"
        assert key in arena
        assert arena.get(key).tolist() == [1.0, 1.0, 1.0, 1.0]
        assert arena.kind(key) == PRODUCT
        assert len(arena) == 1

    def test_insert_existing_is_unchanged(self):
        """Test inserting an existing key keeps its vector."""
        arena = _arena()
        arena.insert("p:a", "product", np.ones(4))

        vector = arena.insert("p:a", "product", np.zeros(4))

        assert vector.tolist() == [1.0, 1.0, 1.0, 1.0]
        assert len(arena) == 1

    def test_random_initialisation(self):
        """Test nodes without a vector get a non-zero random one."""
        arena = _arena()

        vector = arena.insert("u:a", "user")

        assert np.any(vector != 0)

    def test_evicts_least_recently_updated(self):
        """Test a full arena evicts the stalest node."""
        arena = _arena(capacity=2)
        arena.insert("p:a", "product")
        arena.insert("p:b", "product")

        arena.insert("p:c", "product")

        assert "p:a" not in arena
        assert "p:b" in arena and "p:c" in arena
        assert arena.evictions == 1

    def test_update_refreshes_generation(self):
        """Test set() makes a node the most recently updated."""
        arena = _arena(capacity=2)
        arena.insert("p:a", "product")
        arena.insert("p:b", "product")
        arena.set("p:a", np.ones(4))

        arena.insert("p:c", "product")

        assert "p:a" in arena
        assert "p:b" not in arena

    def test_protected_nodes_survive(self):
        """Test protected nodes are never evicted."""
        arena = _arena(capacity=2)
        arena.insert("p:a", "product")
        arena.insert("p:b", "product")

        arena.insert("p:c", "product", protected={"p:a", "p:c"})

        assert "p:a" in arena
        assert "p:b" not in arena

    def test_full_and_all_protected(self):
        """Test a full arena with every node protected raises MemoryError."""
        arena = _arena(capacity=1)
        arena.insert("p:a", "product")

        with pytest.raises(MemoryError):
            arena.insert("p:b", "product", protected={"p:a"})

    def test_memory_is_fixed(self):
        """Test the arena footprint does not grow with insertions."""
        arena = _arena(capacity=4)
        before = arena.nbytes

        for i in range(10):
            arena.insert(f"u:{i}", "user")

        assert arena.nbytes == before
        assert len(arena) == 4

    def test_keys_by_kind(self):
        """Test keys() filters by node kind."""
        arena = _arena()
        arena.insert("u:a", "user")
        arena.insert("p:a", "product")

        assert arena.keys("user") == ["u:a"]
        keys, matrix = arena.product_matrix()
        assert keys == ["p:a"]
        assert matrix.shape == (1, 4)

    def test_load_entries_skips_corrupt(self):
        """Test corrupt persisted vectors are skipped and the rest loaded."""
        arena = _arena()

        loaded = arena.load_entries([
            ("p:a", "product", [1.0, 2.0]),
            ("p:b", "product", "garbage"),
            ("u:a", "user", [1, 2, 3, 4, 5, 6]),
        ])

        assert loaded == 2
        assert "p:b" not in arena
        assert arena.get("p:a").tolist() == [1.0, 2.0, 0.0, 0.0]
        assert arena.get("u:a").tolist() == [1.0, 2.0, 3.0, 4.0]

    def test_to_entries(self):
        """Test entries carry kind and vector."""
        arena = _arena()
        arena.insert("p:a", "product", np.full(4, 0.5))

        entries = arena.to_entries()

        assert entries == {"p:a": {"kind": "product", "vector": [0.5, 0.5, 0.5, 0.5]}}

    def test_clear(self):
        """Test clear() frees every slot."""
        arena = _arena(capacity=2)
        arena.insert("p:a", "product")
        arena.insert("p:b", "product")

        arena.clear()

        assert len(arena) == 0
        arena.insert("p:c", "product")
        arena.insert("p:d", "product")
        assert arena.evictions == 0

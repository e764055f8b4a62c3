"""
Fixed-size embedding arena.

All node embeddings live in one preallocated ``(capacity, dim)`` float32
array. A side table maps external node ids ("u:<id>" / "p:<id>") to slot
indices. Memory use is therefore fixed at construction time.

Only training and loading insert nodes; users scored at request time
stay outside the arena. When the arena is full, inserting a new node
evicts the least recently updated node that is not protected by the
current training pass.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import numpy as np

from core.errors import CorruptPersistedEntryError
from core.logging import get_logger


logger = get_logger(__name__)

USER = "user"
PRODUCT = "product"


def node_key(kind: str, entity_id: str) -> str:
    """Arena key for a node; users and products share the id space."""
    return f"{'u' if kind == USER else 'p'}:{entity_id}"


def fit_dimension(values: Any, dim: int) -> np.ndarray:
    """
    Coerce a persisted vector to exactly ``dim`` components.

    Shorter vectors are zero-padded, longer ones truncated; None/NaN/inf
    components become 0.

    Raises:
        CorruptPersistedEntryError: if ``values`` is not a numeric sequence
    """
    if values is None or isinstance(values, (str, bytes, dict)):
        raise CorruptPersistedEntryError("vector", f"expected a list, got {type(values).__name__}")
    try:
        cleaned = [0.0 if v is None else float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise CorruptPersistedEntryError("vector", str(e))

    vector = np.zeros(dim, dtype=np.float32)
    n = min(dim, len(cleaned))
    if n:
        vector[:n] = np.asarray(cleaned[:n], dtype=np.float32)
    return np.nan_to_num(vector, nan=0.0, posinf=0.0, neginf=0.0)


class EmbeddingArena:
    """
    Bounded node -> vector store.

    Args:
        dim: Embedding dimensionality
        capacity: Maximum number of nodes held at once
        rng: Random source for initial vectors (inject a seeded Generator
             for reproducible runs)
        init_scale: Standard deviation of initial vectors
    """

    def __init__(
        self,
        dim: int,
        capacity: int,
        rng: Optional[np.random.Generator] = None,
        init_scale: float = 0.1,
    ):
        self.dim = dim
        self.capacity = capacity
        self.rng = rng or np.random.default_rng()
        self.init_scale = init_scale

        self._vectors = np.zeros((capacity, dim), dtype=np.float32)
        self._generation = np.zeros(capacity, dtype=np.int64)
        self._slots: Dict[str, int] = {}
        self._kinds: Dict[str, str] = {}
        self._free: List[int] = list(range(capacity - 1, -1, -1))
        self._clock = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, key: str) -> bool:
        return key in self._slots

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    def _allocate(self, protected: Optional[Set[str]]) -> int:
        if self._free:
            return self._free.pop()

        # Evict the stalest unprotected node
        candidates = [
            (self._generation[slot], key)
            for key, slot in self._slots.items()
            if not protected or key not in protected
        ]
        if not candidates:
            raise MemoryError(f"Embedding arena full ({self.capacity} nodes, all protected)")
        _, victim = min(candidates)
        logger.debug("Evicting arena node", node=victim)
        self.remove(victim)
        self.evictions += 1
        return self._free.pop()

    def insert(
        self,
        key: str,
        kind: str,
        vector: Optional[np.ndarray] = None,
        protected: Optional[Set[str]] = None,
    ) -> np.ndarray:
        """
        Add a node (random vector unless ``vector`` is given) and return its
        vector view. Existing nodes are returned unchanged.
        """
        slot = self._slots.get(key)
        if slot is not None:
            return self._vectors[slot]

        slot = self._allocate(protected)
        if vector is None:
            vector = self.rng.normal(0.0, self.init_scale, self.dim)
        self._vectors[slot] = vector
        self._generation[slot] = self._tick()
        self._slots[key] = slot
        self._kinds[key] = kind
        return self._vectors[slot]

    def get(self, key: str) -> Optional[np.ndarray]:
        slot = self._slots.get(key)
        return None if slot is None else self._vectors[slot]

    def set(self, key: str, vector: np.ndarray) -> None:
        slot = self._slots[key]
        self._vectors[slot] = vector
        self._generation[slot] = self._tick()

    def remove(self, key: str) -> None:
        slot = self._slots.pop(key, None)
        if slot is None:
            return
        self._kinds.pop(key, None)
        self._vectors[slot] = 0.0
        self._generation[slot] = 0
        self._free.append(slot)

    def clear(self) -> None:
        self._vectors.fill(0.0)
        self._generation.fill(0)
        self._slots.clear()
        self._kinds.clear()
        self._free = list(range(self.capacity - 1, -1, -1))

    def kind(self, key: str) -> Optional[str]:
        return self._kinds.get(key)

    def keys(self, kind: Optional[str] = None) -> List[str]:
        if kind is None:
            return list(self._slots)
        return [key for key, k in self._kinds.items() if k == kind]

    def matrix(self, keys: Sequence[str]) -> np.ndarray:
        """Stacked copy of the vectors for ``keys`` (all must be present)."""
        if not keys:
            return np.zeros((0, self.dim), dtype=np.float32)
        return self._vectors[[self._slots[k] for k in keys]].copy()

    def product_matrix(self) -> Tuple[List[str], np.ndarray]:
        keys = self.keys(PRODUCT)
        return keys, self.matrix(keys)

    @property
    def nbytes(self) -> int:
        return int(self._vectors.nbytes + self._generation.nbytes)

    # =========================================================================
    # Persistence helpers
    # =========================================================================

    def to_entries(self) -> Dict[str, Dict[str, Any]]:
        return {
            key: {"kind": self._kinds[key], "vector": self._vectors[slot].tolist()}
            for key, slot in self._slots.items()
        }

    def load_entries(self, entries: Iterable[Tuple[str, str, Any]]) -> int:
        """
        Insert ``(key, kind, raw_vector)`` triples, fitting each vector to
        the arena dimension. Corrupt entries are logged and skipped.

        Returns:
            Number of nodes loaded
        """
        loaded = 0
        for key, kind, raw in entries:
            try:
                vector = fit_dimension(raw, self.dim)
            except CorruptPersistedEntryError as e:
                logger.warning("Skipping corrupt embedding", node=key, reason=e.reason)
                continue
            if key in self._slots:
                self.set(key, vector)
            else:
                self.insert(key, kind, vector)
            loaded += 1
        return loaded

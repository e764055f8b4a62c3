"""
Embedding Scorer (graph strategy).

Every user and product node gets a random vector in the embedding arena.
Training is a score-driven nudge, not graph convolution: for each node the
average dot product with its neighbours (clipped to [-1, 1]) scales a step
of ``learning_rate`` towards the neighbours' mean vector. A pass reads a
snapshot of the previous pass and writes all updates at the end.

Scores are ``sigmoid(user . product)`` so that personalization multipliers
always act on a positive base.
"""

from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from config.settings import Settings
from core.errors import CorruptPersistedEntryError
from core.logging import get_logger
from core.memory import MemoryMonitor
from core.utils import checkpoint, chunk_list
from engines.arena import PRODUCT, USER, EmbeddingArena, fit_dimension, node_key
from engines.base import Scorer
from engines.persistence import ModelStore, PersistedState, decode_entries
from recs.entity_store import EntityStore
from recs.models import Strategy, User


logger = get_logger(__name__)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -30.0, 30.0)))


class EmbeddingScorer(Scorer):
    """Graph strategy over user/product node embeddings."""

    name = Strategy.GRAPH.value
    model_label = "GNN"

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        model_store: ModelStore,
        monitor: Optional[MemoryMonitor] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(store, settings, model_store, monitor, seed)
        self.dim = settings.embedding_dim
        self.arena = EmbeddingArena(
            dim=self.dim,
            capacity=settings.embedding_arena_capacity,
            rng=self.np_rng,
            init_scale=settings.embedding_init_scale,
        )
        self.neighbors: Dict[str, Set[str]] = {}
        self.guests: "OrderedDict[str, np.ndarray]" = OrderedDict()
        self.perturbed = 0

    # =========================================================================
    # Training
    # =========================================================================

    async def _update(self, keys: List[str]) -> None:
        """Run ``training_passes`` nudge passes over ``keys``."""
        lr = self.settings.learning_rate
        noise = self.settings.embedding_init_scale * 0.1

        for _ in range(self.settings.training_passes):
            updates: Dict[str, np.ndarray] = {}
            for batch in chunk_list(keys, self.settings.batch_size):
                for key in batch:
                    linked = [k for k in sorted(self.neighbors.get(key, ())) if k in self.arena]
                    if not linked:
                        continue
                    current = self.arena.get(key)
                    if current is None:
                        continue
                    around = self.arena.matrix(linked)
                    try:
                        with np.errstate(over="raise", invalid="raise", divide="raise"):
                            average = float(np.clip((around @ current).mean(), -1.0, 1.0))
                            updated = current + lr * average * around.mean(axis=0)
                        if not np.all(np.isfinite(updated)):
                            raise FloatingPointError("non-finite embedding")
                    except FloatingPointError:
                        self.perturbed += 1
                        updated = np.nan_to_num(current) + self.np_rng.normal(0.0, noise, self.dim)
                    updates[key] = updated.astype(np.float32)
                self.monitor.reclaim()
                await checkpoint()

            for key, vector in updates.items():
                if key in self.arena:
                    self.arena.set(key, vector)
        self.guests.clear()

    async def _fit(self) -> Dict[str, int]:
        graph = await self.builder.build_graph()
        adjacency = graph.adjacency()
        protected = set(adjacency)

        for key in adjacency:
            kind = USER if key.startswith("u:") else PRODUCT
            self.arena.insert(key, kind, protected=protected)
        self.neighbors = adjacency

        await self._update(list(adjacency))
        return {
            "users": len(graph.users),
            "products": len(graph.products),
            "nodes": len(self.arena),
        }

    async def _fit_incremental(self, prior: Optional[PersistedState]) -> Dict[str, int]:
        if not self.trained and prior is not None:
            self._reset()
            await self._import_state(prior)

        graph = await self.builder.build_graph()
        current = graph.adjacency()
        protected = set(current)

        dirty: List[str] = []
        for key, linked in current.items():
            known = self.neighbors.get(key)
            if key not in self.arena:
                self.arena.insert(key, USER if key.startswith("u:") else PRODUCT, protected=protected)
                self.neighbors[key] = set(linked)
                dirty.append(key)
                continue
            merged = (known or set()) | linked
            if merged != known:
                self.neighbors[key] = merged
                dirty.append(key)

        # Evicted nodes drop out of the neighbour table
        self.neighbors = {k: v for k, v in self.neighbors.items() if k in self.arena}

        await self._update(dirty)
        logger.info(
            "Merged graph state",
            current_nodes=len(current),
            updated_nodes=len(dirty),
            total_nodes=len(self.arena),
            evictions=self.arena.evictions,
        )
        return {
            "users": len(self.arena.keys(USER)),
            "products": len(self.arena.keys(PRODUCT)),
            "nodes": len(self.arena),
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def _export_state(self) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        entries = self.arena.to_entries()
        for key, entry in entries.items():
            entry["neighbors"] = sorted(self.neighbors.get(key, ()))
        metadata = {
            "dimension": self.dim,
            "node_count": len(entries),
            "user_count": len(self.arena.keys(USER)),
            "product_count": len(self.arena.keys(PRODUCT)),
        }
        return metadata, entries, {}

    def _decode(self, key: str, raw: Any) -> Tuple[str, np.ndarray, Set[str]]:
        if not isinstance(raw, dict):
            raise CorruptPersistedEntryError(key, "entry is not an object")
        kind = raw.get("kind")
        if kind not in (USER, PRODUCT):
            raise CorruptPersistedEntryError(key, f"unknown node kind {kind!r}")
        try:
            vector = fit_dimension(raw.get("vector"), self.dim)
        except CorruptPersistedEntryError as e:
            raise CorruptPersistedEntryError(key, e.reason)
        linked = raw.get("neighbors") or []
        if not isinstance(linked, list):
            raise CorruptPersistedEntryError(key, "neighbors is not a list")
        return kind, vector, {str(n) for n in linked}

    async def _import_state(self, state: PersistedState) -> bool:
        decoded = decode_entries(state.entries, self._decode, strategy=self.name)
        self.arena.load_entries((key, kind, vector) for key, (kind, vector, _) in decoded.items())
        self.neighbors = {key: linked for key, (_, _, linked) in decoded.items() if key in self.arena}
        return self.is_available()

    def _reset(self) -> None:
        self.arena.clear()
        self.neighbors = {}
        self.guests.clear()

    # =========================================================================
    # Scoring
    # =========================================================================

    def is_available(self) -> bool:
        return bool(self.arena.keys(PRODUCT))

    def knows_user(self, user: User) -> bool:
        return self.is_available()

    def user_vector(self, user: User) -> np.ndarray:
        """
        The user's trained embedding, or a request-time vector.

        Users outside the trained graph never enter the arena, so serving
        them cannot evict trained nodes. Their vector is the mean of the
        embeddings of products they interacted with (random when none is
        known) and is kept in a bounded LRU beside the arena.
        """
        vector = self.arena.get(node_key(USER, user.id))
        if vector is not None:
            return vector

        vector = self.guests.get(user.id)
        if vector is not None:
            self.guests.move_to_end(user.id)
            return vector

        known = [k for k in (node_key(PRODUCT, pid) for pid in user.history_product_ids) if k in self.arena]
        if known:
            vector = self.arena.matrix(known).mean(axis=0)
        else:
            logger.debug("Sampling embedding for unseen user", user_id=user.id)
            vector = self.np_rng.normal(0.0, self.settings.embedding_init_scale, self.dim).astype(np.float32)
        self.guests[user.id] = vector
        while len(self.guests) > self.settings.guest_cache_size:
            self.guests.popitem(last=False)
        return vector

    def _product_scores(self, user: User, product_keys: Sequence[str]) -> np.ndarray:
        vector = self.user_vector(user)
        return _sigmoid(self.arena.matrix(product_keys) @ vector)

    async def candidate_pool(self, user: User, limit: int, seed_id: Optional[str] = None) -> List[str]:
        keys, _ = self.arena.product_matrix()
        if not keys:
            return []
        scores = self._product_scores(user, keys)
        order = np.argsort(-scores, kind="stable")
        ranked = [keys[i][2:] for i in order]

        if seed_id and node_key(PRODUCT, seed_id) in self.arena:
            similar = self.seed_similarity(seed_id, ranked)
            by_seed = sorted(similar, key=lambda pid: similar[pid], reverse=True)[: max(1, limit // 2)]
            chosen = set(by_seed)
            ranked = by_seed + [pid for pid in ranked if pid not in chosen]
        return ranked[:limit]

    async def score_candidates(self, user: User, candidate_ids: Sequence[str]) -> Dict[str, float]:
        keys = [node_key(PRODUCT, pid) for pid in candidate_ids]
        present = [k for k in keys if k in self.arena]
        if not present:
            return {}
        scores = self._product_scores(user, present)
        return {key[2:]: float(score) for key, score in zip(present, scores)}

    def seed_similarity(self, seed_id: str, candidate_ids: Sequence[str]) -> Dict[str, float]:
        seed = self.arena.get(node_key(PRODUCT, seed_id))
        if seed is None:
            return {}
        keys = [node_key(PRODUCT, pid) for pid in candidate_ids]
        present = [k for k in keys if k in self.arena]
        if not present:
            return {}
        vectors = self.arena.matrix(present)
        norms = np.linalg.norm(vectors, axis=1) * (np.linalg.norm(seed) or 1.0)
        norms[norms == 0] = 1.0
        cosine = (vectors @ seed) / norms
        return {key[2:]: max(0.0, float(c)) for key, c in zip(present, cosine)}

    def memory_usage(self) -> Dict[str, Any]:
        return {
            "nodes": len(self.arena),
            "capacity": self.arena.capacity,
            "dimension": self.dim,
            "arena_bytes": self.arena.nbytes,
            "neighbor_entries": sum(len(v) for v in self.neighbors.values()),
            "evictions": self.arena.evictions,
            "guests": len(self.guests),
            "perturbed_updates": self.perturbed,
            "megabytes": round(self.arena.nbytes / 1024 / 1024, 3),
        }

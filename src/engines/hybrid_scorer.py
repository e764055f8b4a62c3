"""
Hybrid CF+CB Scorer (matrix strategy).

Collaborative part: similarity-weighted average utility of the users who
rated an item (self excluded, neighbours at or below the similarity
threshold ignored, 0.1 when nobody qualifies).

Content part: preferred style in the product tags, price inside the
preferred range, and cosine between the user's content profile vector
and the product feature vector, capped at 1.0.

    hybrid = cf_weight * cf + cb_weight * cb      (weights sum to 1.0)

Users missing from the trained matrix but with history get a utility row
synthesized from their interactions and on-the-fly cosine similarity to
the trained users.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config.constants import DEFAULT_HYBRID_CONFIG
from config.settings import Settings
from core.errors import CorruptPersistedEntryError
from core.logging import get_logger
from core.memory import MemoryMonitor
from engines.base import Scorer
from engines.builder import UtilityMatrix, utility_map, utility_row
from engines.persistence import ModelStore, PersistedState, decode_entries
from engines.similarity import SimilarityIndex, cosine_to_rows, item_similarity, user_similarity
from recs.entity_store import EntityStore
from recs.models import Product, Strategy, User


logger = get_logger(__name__)


@dataclass
class ItemMeta:
    """Product attributes the item similarity needs."""
    category: str = ""
    brand: str = ""
    tags: List[str] = field(default_factory=list)
    description: str = ""
    rating: float = 0.0

    @classmethod
    def from_product(cls, product: Product) -> "ItemMeta":
        return cls(
            category=product.category,
            brand=product.brand,
            tags=sorted(product.tag_set),
            description=product.description,
            rating=product.rating,
        )


def vector_cosine(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of equal-length vectors; 0 for empty, mismatched or zero vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0 or not np.isfinite(denom):
        return 0.0
    return float(np.dot(va, vb) / denom)


class HybridScorer(Scorer):
    """Collaborative filtering blended with a content-based score."""

    name = Strategy.HYBRID.value
    model_label = "Hybrid"
    requires_gender = True

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        model_store: ModelStore,
        monitor: Optional[MemoryMonitor] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(store, settings, model_store, monitor, seed)
        self.config = DEFAULT_HYBRID_CONFIG
        self.cf_weight = settings.cf_weight
        self.cb_weight = settings.cb_weight

        self.utility: Optional[UtilityMatrix] = None
        self.items: Dict[str, ItemMeta] = {}
        self.user_sim: Optional[SimilarityIndex] = None
        self.item_sim: Optional[SimilarityIndex] = None

    def update_weights(self, cf_weight: float, cb_weight: float) -> None:
        """
        Change the CF/CB blend.

        Raises:
            ValueError: if either weight is outside [0, 1] or they do not sum to 1.0
        """
        if not (0.0 <= cf_weight <= 1.0 and 0.0 <= cb_weight <= 1.0):
            raise ValueError("Weights must be between 0 and 1")
        if not math.isclose(cf_weight + cb_weight, 1.0, abs_tol=1e-9):
            raise ValueError("Weights must sum to 1.0")
        self.cf_weight = cf_weight
        self.cb_weight = cb_weight
        logger.info("Updated hybrid weights", cf_weight=cf_weight, cb_weight=cb_weight)

    # =========================================================================
    # Training
    # =========================================================================

    async def _compute_similarities(self) -> None:
        s = self.settings
        self.user_sim = await user_similarity(
            self.utility.matrix,
            s.dense_similarity_limit,
            s.user_neighbors_k,
            s.similarity_threshold,
            s.batch_size,
            self.monitor,
        )
        metas = [self.items[pid] for pid in self.utility.product_ids]
        self.item_sim = await item_similarity(
            [m.description for m in metas],
            [m.category for m in metas],
            [m.brand for m in metas],
            [m.tags for m in metas],
            s.dense_similarity_limit,
            s.item_neighbors_k,
            s.similarity_threshold,
            s.batch_size,
            self.monitor,
            config=self.config,
        )

    async def _install(self, rows: Dict[str, Dict[str, float]], items: Dict[str, ItemMeta]) -> None:
        self.items = items
        self.utility = UtilityMatrix.from_rows(rows, list(items))
        await self._compute_similarities()

    def _counts(self) -> Dict[str, int]:
        users = len(self.utility.user_ids) if self.utility else 0
        products = len(self.items)
        return {"users": users, "products": products, "nodes": users + products}

    async def _fit(self) -> Dict[str, int]:
        self.utility = await self.builder.build_matrix()
        self.items = {pid: ItemMeta.from_product(p) for pid, p in self.utility.products.items()}
        await self._compute_similarities()
        return self._counts()

    async def _fit_incremental(self, prior: Optional[PersistedState]) -> Dict[str, int]:
        if self.trained and self.utility is not None:
            prior_rows = {uid: self.utility.row_map(uid) for uid in self.utility.user_ids}
            prior_items = dict(self.items)
        elif prior is not None:
            prior_rows, prior_items = self._decode_state(prior)
        else:
            prior_rows, prior_items = {}, {}

        users = await self.builder.fetch_users(self.settings.max_users)
        products = await self.builder.fetch_products(self.settings.max_products)

        items = {pid: ItemMeta.from_product(p) for pid, p in products.items()}
        for pid, meta in prior_items.items():
            if len(items) >= self.settings.max_products:
                break
            items.setdefault(pid, meta)

        rows = {uid: utility_map(user) for uid, user in users.items()}
        carried = 0
        for uid, row in prior_rows.items():
            if len(rows) >= self.settings.max_users:
                break
            if uid not in rows:
                rows[uid] = row
                carried += 1

        self._reset()
        await self._install(rows, items)
        logger.info("Merged hybrid state", current_users=len(users), carried_users=carried, products=len(items))
        return self._counts()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _export_state(self) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        entries: Dict[str, Any] = {}
        if self.utility is not None:
            for uid in self.utility.user_ids:
                entries[f"u:{uid}"] = {"kind": "user", "ratings": self.utility.row_map(uid)}
        for pid, meta in self.items.items():
            entries[f"p:{pid}"] = {"kind": "product", **asdict(meta)}

        metadata = {
            "user_count": len(self.utility.user_ids) if self.utility else 0,
            "product_count": len(self.items),
            "user_similarity": "sparse" if self.user_sim and self.user_sim.is_sparse else "dense",
            "item_similarity": "sparse" if self.item_sim and self.item_sim.is_sparse else "dense",
        }
        extra = {"cf_weight": self.cf_weight, "cb_weight": self.cb_weight}
        return metadata, entries, extra

    @staticmethod
    def _decode(key: str, raw: Any) -> Tuple[str, Any]:
        if not isinstance(raw, dict):
            raise CorruptPersistedEntryError(key, "entry is not an object")
        kind = raw.get("kind")
        if kind == "user":
            ratings = raw.get("ratings")
            if not isinstance(ratings, dict):
                raise CorruptPersistedEntryError(key, "ratings is not a map")
            row = {}
            for pid, value in ratings.items():
                value = float(value) if value is not None else 0.0
                row[str(pid)] = value if math.isfinite(value) else 0.0
            return kind, row
        if kind == "product":
            tags = raw.get("tags") or []
            if not isinstance(tags, list):
                raise CorruptPersistedEntryError(key, "tags is not a list")
            return kind, ItemMeta(
                category=str(raw.get("category") or ""),
                brand=str(raw.get("brand") or ""),
                tags=[str(t) for t in tags],
                description=str(raw.get("description") or ""),
                rating=float(raw.get("rating") or 0.0),
            )
        raise CorruptPersistedEntryError(key, f"unknown entry kind {kind!r}")

    def _decode_state(self, state: PersistedState) -> Tuple[Dict[str, Dict[str, float]], Dict[str, ItemMeta]]:
        decoded = decode_entries(state.entries, self._decode, strategy=self.name)
        rows = {key[2:]: value for key, (kind, value) in decoded.items() if kind == "user"}
        items = {key[2:]: value for key, (kind, value) in decoded.items() if kind == "product"}
        return rows, items

    async def _import_state(self, state: PersistedState) -> bool:
        rows, items = self._decode_state(state)
        if not items:
            return False
        await self._install(rows, items)

        cf, cb = state.extra.get("cf_weight"), state.extra.get("cb_weight")
        if cf is not None and cb is not None:
            try:
                self.update_weights(float(cf), float(cb))
            except ValueError as e:
                logger.warning("Ignoring persisted hybrid weights", error=str(e))
        return self.is_available()

    def _reset(self) -> None:
        self.utility = None
        self.items = {}
        self.user_sim = None
        self.item_sim = None

    # =========================================================================
    # Scoring
    # =========================================================================

    def is_available(self) -> bool:
        return self.utility is not None and bool(self.items)

    def _user_context(self, user: User) -> Optional[Tuple[Optional[int], np.ndarray]]:
        """(row index or None, similarity to every trained user)."""
        if not self.is_available():
            return None
        index = self.utility.user_index.get(user.id)
        if index is not None:
            return index, self.user_sim.row(index)
        row = utility_row(user, self.utility.item_index)
        if not row.any():
            return None
        return None, cosine_to_rows(row, self.utility.matrix)

    def knows_user(self, user: User) -> bool:
        if not self.is_available():
            return False
        if user.id in self.utility.user_index:
            return True
        return any(pid in self.utility.item_index for pid in user.history_product_ids)

    def collaborative_scores(self, user: User, candidate_ids: Sequence[str]) -> Dict[str, float]:
        context = self._user_context(user)
        if context is None:
            return {}
        self_index, sims = context
        present = [pid for pid in candidate_ids if pid in self.utility.item_index]
        if not present:
            return {}

        columns = self.utility.matrix[:, [self.utility.item_index[pid] for pid in present]]
        mask = (columns > 0) & (sims[:, None] > self.settings.similarity_threshold)
        if self_index is not None:
            mask[self_index, :] = False
        weighted = (sims[:, None] * columns * mask).sum(axis=0)
        total = (np.abs(sims)[:, None] * mask).sum(axis=0)
        scores = np.where(total > 0, weighted / np.where(total > 0, total, 1.0), self.config.CF_DEFAULT)
        return {pid: float(score) for pid, score in zip(present, scores)}

    def content_score(self, user: User, product: Product) -> float:
        score = 0.0
        preferences = user.preferences
        if preferences.style and preferences.style.lower() in product.tag_set:
            score += self.config.CB_STYLE_MATCH
        if preferences.price_range and preferences.price_range.contains(product.price):
            score += self.config.CB_PRICE_IN_RANGE
        if user.content_profile and user.content_profile.feature_vector:
            similarity = vector_cosine(user.content_profile.feature_vector, product.feature_vector)
            score += similarity * self.config.CB_FEATURE_SIMILARITY
        return min(score, 1.0)

    async def score_candidates(self, user: User, candidate_ids: Sequence[str]) -> Dict[str, float]:
        cf_scores = self.collaborative_scores(user, candidate_ids)
        if not cf_scores:
            return {}
        products = {p.id: p for p in await self.store.get_products(list(cf_scores))}
        scores = {}
        for pid, cf in cf_scores.items():
            product = products.get(pid)
            if product is None:
                continue
            scores[pid] = self.cf_weight * cf + self.cb_weight * self.content_score(user, product)
        return scores

    async def candidate_pool(self, user: User, limit: int, seed_id: Optional[str] = None) -> List[str]:
        """
        Catalog items sharing a history category, brand or style, best rated
        first, padded with the best rated remaining items.
        """
        if not self.is_available():
            return []
        cap = min(limit, self.config.MAX_CANDIDATES)

        history = [self.items[pid] for pid in user.history_product_ids if pid in self.items]
        categories = {m.category for m in history if m.category}
        brands = {m.brand for m in history if m.brand}
        styles = {t for m in history for t in m.tags}

        by_rating = sorted(self.items, key=lambda pid: self.items[pid].rating, reverse=True)
        matching = [
            pid for pid in by_rating
            if self.items[pid].category in categories
            or self.items[pid].brand in brands
            or styles.intersection(self.items[pid].tags)
        ]

        pool: List[str] = []
        if seed_id and seed_id in self.utility.item_index:
            similar = self.seed_similarity(seed_id, by_rating)
            similar.pop(seed_id, None)
            pool = sorted(similar, key=lambda pid: similar[pid], reverse=True)[: max(1, cap // 2)]

        chosen = set(pool)
        for pid in matching + by_rating:
            if len(pool) >= cap:
                break
            if pid not in chosen:
                pool.append(pid)
                chosen.add(pid)
        return pool

    def seed_similarity(self, seed_id: str, candidate_ids: Sequence[str]) -> Dict[str, float]:
        if not self.is_available() or self.item_sim is None:
            return {}
        seed_index = self.utility.item_index.get(seed_id)
        if seed_index is None:
            return {}
        return {
            pid: self.item_sim.get(seed_index, self.utility.item_index[pid])
            for pid in candidate_ids
            if pid in self.utility.item_index
        }

    def memory_usage(self) -> Dict[str, Any]:
        matrix_bytes = int(self.utility.matrix.nbytes) if self.utility is not None else 0
        user_bytes = self.user_sim.nbytes if self.user_sim else 0
        item_bytes = self.item_sim.nbytes if self.item_sim else 0
        total = matrix_bytes + user_bytes + item_bytes
        return {
            **self._counts(),
            "matrix_bytes": matrix_bytes,
            "user_similarity_entries": self.user_sim.entries if self.user_sim else 0,
            "item_similarity_entries": self.item_sim.entries if self.item_sim else 0,
            "user_similarity_sparse": bool(self.user_sim and self.user_sim.is_sparse),
            "item_similarity_sparse": bool(self.item_sim and self.item_sim.is_sparse),
            "cf_weight": self.cf_weight,
            "cb_weight": self.cb_weight,
            "megabytes": round(total / 1024 / 1024, 3),
        }

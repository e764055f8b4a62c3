"""
Content Scorer (TF-IDF strategy).

Each product gets one lowercase document (name, description, category,
brand, tags, colors). A user's document repeats every interacted product's
document once per unit of interaction weight, so purchases count five
times as much as views. Scores blend TF-IDF cosine with category, brand,
tag and color matches against the user's profile.

This is the only strategy that can rank "similar to this product" with no
user history at all.
"""

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from sklearn.feature_extraction.text import TfidfVectorizer

from config.constants import DEFAULT_CONTENT_CONFIG
from config.settings import Settings
from core.errors import CorruptPersistedEntryError
from core.logging import get_logger
from core.memory import MemoryMonitor
from core.utils import checkpoint, chunk_list
from engines.base import Scorer
from engines.persistence import ModelStore, PersistedState, decode_entries
from recs.entity_store import EntityStore
from recs.models import Product, Strategy, User


logger = get_logger(__name__)


def product_document(product: Product) -> str:
    parts = [product.name, product.description, product.category, product.brand]
    parts.extend(product.outfit_tags)
    parts.extend(product.colors)
    return " ".join(p for p in parts if p).lower()


@dataclass
class ProductFeatures:
    document: str
    category: str = ""
    brand: str = ""
    tags: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    price: float = 0.0
    rating: float = 0.0

    @classmethod
    def from_product(cls, product: Product) -> "ProductFeatures":
        return cls(
            document=product_document(product),
            category=product.category,
            brand=product.brand,
            tags=sorted(product.tag_set),
            colors=sorted(product.color_set),
            price=product.price,
            rating=product.rating,
        )


@dataclass
class UserProfile:
    """Weighted summary of the products a user interacted with."""
    preferred_category: str = ""
    preferred_brand: str = ""
    avg_price: float = 0.0
    avg_rating: float = 0.0
    tags: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)
    document: str = ""
    history_size: int = 0


def build_profile(user: User, features: Dict[str, ProductFeatures]) -> Optional[UserProfile]:
    """
    Profile from ``user``'s history; None when no interacted product has
    features.
    """
    config = DEFAULT_CONTENT_CONFIG
    categories: Dict[str, float] = defaultdict(float)
    brands: Dict[str, float] = defaultdict(float)
    tags: Dict[str, float] = defaultdict(float)
    colors: Dict[str, float] = defaultdict(float)
    documents: List[str] = []
    price_total = rating_total = total_weight = 0.0

    for event in user.interaction_history:
        product = features.get(event.product_id)
        if product is None:
            continue
        weight = event.weight
        total_weight += weight
        if product.category:
            categories[product.category] += weight
        if product.brand:
            brands[product.brand] += weight
        for tag in product.tags:
            tags[tag] += weight
        for color in product.colors:
            colors[color] += weight
        price_total += product.price * weight
        rating_total += product.rating * weight
        documents.extend([product.document] * weight)

    if total_weight == 0:
        return None

    def top(weights: Dict[str, float], n: Optional[int] = None) -> List[str]:
        ranked = [k for k, _ in sorted(weights.items(), key=lambda kv: kv[1], reverse=True)]
        return ranked[:n] if n else ranked

    return UserProfile(
        preferred_category=next(iter(top(categories)), ""),
        preferred_brand=next(iter(top(brands)), ""),
        avg_price=price_total / total_weight,
        avg_rating=rating_total / total_weight,
        tags=top(tags, config.MAX_PROFILE_TAGS),
        colors=top(colors, config.MAX_PROFILE_COLORS),
        document=" ".join(documents),
        history_size=len(user.interaction_history),
    )


class ContentScorer(Scorer):
    """TF-IDF content-based strategy."""

    name = Strategy.CONTENT.value
    model_label = "Content-based Filtering (TF-IDF)"

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        model_store: ModelStore,
        monitor: Optional[MemoryMonitor] = None,
        seed: Optional[int] = None,
    ):
        super().__init__(store, settings, model_store, monitor, seed)
        self.config = DEFAULT_CONTENT_CONFIG
        self.features: Dict[str, ProductFeatures] = {}
        self.profiles: Dict[str, UserProfile] = {}
        self.product_ids: List[str] = []
        self.index: Dict[str, int] = {}
        self.vectorizer: Optional[TfidfVectorizer] = None
        self.doc_matrix = None

    # =========================================================================
    # Index
    # =========================================================================

    def _fit_index(self) -> None:
        """Refit TF-IDF over every product document."""
        self.product_ids = list(self.features)
        self.index = {pid: i for i, pid in enumerate(self.product_ids)}
        self.vectorizer = None
        self.doc_matrix = None

        documents = [self.features[pid].document for pid in self.product_ids]
        if not any(documents):
            return
        vectorizer = TfidfVectorizer()
        try:
            self.doc_matrix = vectorizer.fit_transform(documents)
        except ValueError as e:
            logger.warning("TF-IDF index is empty", error=str(e))
            return
        self.vectorizer = vectorizer

    def _transform(self, document: str):
        return self.vectorizer.transform([document])

    def _similarities(self, query) -> np.ndarray:
        """Cosine of a (1, vocab) TF-IDF row against every product document."""
        return np.asarray((self.doc_matrix @ query.T).toarray()).ravel()

    def document_similarity(self, first_id: str, second_id: str) -> Optional[float]:
        """TF-IDF cosine of two indexed products, None if either is unknown."""
        if self.doc_matrix is None or first_id not in self.index or second_id not in self.index:
            return None
        first = self.doc_matrix[self.index[first_id]]
        second = self.doc_matrix[self.index[second_id]]
        return float((first @ second.T).toarray()[0, 0])

    # =========================================================================
    # Training
    # =========================================================================

    async def _add_products(self, products: Iterable[Product]) -> None:
        for batch in chunk_list(list(products), self.settings.batch_size):
            for product in batch:
                self.features[product.id] = ProductFeatures.from_product(product)
            self.monitor.reclaim()
            await checkpoint()

    async def _ensure_history_features(self, users: Iterable[User]) -> None:
        """Fetch interacted products that fell outside the product cap."""
        missing = {
            pid for user in users for pid in user.history_product_ids
            if pid not in self.features
        }
        if not missing:
            return
        history_products = await self.store.get_products(sorted(missing))
        await self._add_products(history_products)

    async def _build_profiles(self, users: Sequence[User]) -> None:
        for batch in chunk_list(list(users), self.settings.batch_size):
            for user in batch:
                profile = build_profile(user, self.features)
                if profile is not None:
                    self.profiles[user.id] = profile
            self.monitor.reclaim()
            await checkpoint()

    async def _fit(self) -> Dict[str, int]:
        products = await self.builder.fetch_products(self.settings.max_products)
        await self._add_products(products.values())

        users = list((await self.builder.fetch_users(self.settings.max_users)).values())
        await self._ensure_history_features(users)
        await self._build_profiles(users)
        self._fit_index()
        return self._counts()

    async def _fit_incremental(self, prior: Optional[PersistedState]) -> Dict[str, int]:
        if not self.trained and prior is not None:
            self._reset()
            self._apply_decoded(prior)

        products = await self.builder.fetch_products(self.settings.max_products)
        room = max(0, self.settings.max_products - len(self.features))
        new_products = [p for pid, p in products.items() if pid not in self.features][:room]
        await self._add_products(new_products)

        users = list((await self.builder.fetch_users(self.settings.max_users)).values())
        changed = [
            u for u in users
            if u.id not in self.profiles or self.profiles[u.id].history_size != len(u.interaction_history)
        ]
        await self._ensure_history_features(changed)
        await self._build_profiles(changed)
        self._fit_index()

        logger.info(
            "Merged content state",
            new_products=len(new_products),
            rebuilt_profiles=len(changed),
            products=len(self.features),
            profiles=len(self.profiles),
        )
        return self._counts()

    def _counts(self) -> Dict[str, int]:
        return {
            "users": len(self.profiles),
            "products": len(self.features),
            "nodes": len(self.profiles) + len(self.features),
        }

    # =========================================================================
    # Persistence
    # =========================================================================

    def _export_state(self) -> Tuple[Dict[str, Any], Dict[str, Any], Dict[str, Any]]:
        entries: Dict[str, Any] = {}
        for pid, features in self.features.items():
            entries[f"p:{pid}"] = {"kind": "product", **asdict(features)}
        for uid, profile in self.profiles.items():
            entries[f"u:{uid}"] = {"kind": "user", **asdict(profile)}
        metadata = {
            "product_count": len(self.features),
            "user_count": len(self.profiles),
            "vocabulary_size": len(self.vectorizer.vocabulary_) if self.vectorizer else 0,
        }
        return metadata, entries, {}

    @staticmethod
    def _decode(key: str, raw: Any) -> Tuple[str, Any]:
        if not isinstance(raw, dict):
            raise CorruptPersistedEntryError(key, "entry is not an object")
        kind = raw.get("kind")
        document = raw.get("document")
        if not isinstance(document, str):
            raise CorruptPersistedEntryError(key, "document is not a string")
        for name in ("tags", "colors"):
            if not isinstance(raw.get(name) or [], list):
                raise CorruptPersistedEntryError(key, f"{name} is not a list")

        if kind == "product":
            return kind, ProductFeatures(
                document=document,
                category=str(raw.get("category") or ""),
                brand=str(raw.get("brand") or ""),
                tags=[str(t) for t in raw.get("tags") or []],
                colors=[str(c) for c in raw.get("colors") or []],
                price=float(raw.get("price") or 0.0),
                rating=float(raw.get("rating") or 0.0),
            )
        if kind == "user":
            return kind, UserProfile(
                preferred_category=str(raw.get("preferred_category") or ""),
                preferred_brand=str(raw.get("preferred_brand") or ""),
                avg_price=float(raw.get("avg_price") or 0.0),
                avg_rating=float(raw.get("avg_rating") or 0.0),
                tags=[str(t) for t in raw.get("tags") or []],
                colors=[str(c) for c in raw.get("colors") or []],
                document=document,
                history_size=int(raw.get("history_size") or 0),
            )
        raise CorruptPersistedEntryError(key, f"unknown entry kind {kind!r}")

    def _apply_decoded(self, state: PersistedState) -> None:
        decoded = decode_entries(state.entries, self._decode, strategy=self.name)
        for key, (kind, value) in decoded.items():
            if kind == "product":
                self.features[key[2:]] = value
            else:
                self.profiles[key[2:]] = value

    async def _import_state(self, state: PersistedState) -> bool:
        self._apply_decoded(state)
        self._fit_index()
        return self.is_available()

    def _reset(self) -> None:
        self.features = {}
        self.profiles = {}
        self.product_ids = []
        self.index = {}
        self.vectorizer = None
        self.doc_matrix = None

    # =========================================================================
    # Scoring
    # =========================================================================

    def is_available(self) -> bool:
        return self.doc_matrix is not None and bool(self.product_ids)

    def knows_user(self, user: User) -> bool:
        if user.id in self.profiles:
            return True
        return any(pid in self.features for pid in user.history_product_ids)

    def profile_for(self, user: User) -> Optional[UserProfile]:
        """Trained profile, or one built on the fly from current history."""
        profile = self.profiles.get(user.id)
        if profile is None:
            profile = build_profile(user, self.features)
        return profile

    def content_score(self, profile: UserProfile, product_id: str, tfidf: float) -> float:
        features = self.features[product_id]
        score = 0.0
        if profile.preferred_category and features.category == profile.preferred_category:
            score += self.config.CATEGORY_MATCH
        if profile.preferred_brand and features.brand == profile.preferred_brand:
            score += self.config.BRAND_MATCH
        score += self.config.TFIDF_WEIGHT * tfidf
        if profile.tags:
            overlap = len(set(features.tags) & set(profile.tags))
            score += min(self.config.TAG_OVERLAP_CAP, overlap / self.config.TAG_OVERLAP_DIVISOR)
        if profile.colors:
            overlap = len(set(features.colors) & set(profile.colors))
            score += min(self.config.COLOR_OVERLAP_CAP, overlap / self.config.COLOR_OVERLAP_DIVISOR)
        return min(1.0, score)

    def _profile_similarities(self, profile: UserProfile) -> np.ndarray:
        if not profile.document:
            return np.zeros(len(self.product_ids))
        return self._similarities(self._transform(profile.document))

    async def score_candidates(self, user: User, candidate_ids: Sequence[str]) -> Dict[str, float]:
        if not self.is_available():
            return {}
        profile = self.profile_for(user)
        if profile is None:
            return {}
        similarities = self._profile_similarities(profile)
        return {
            pid: self.content_score(profile, pid, float(similarities[self.index[pid]]))
            for pid in candidate_ids
            if pid in self.index
        }

    def _ranked_above(self, similarities: np.ndarray, exclude: Optional[str] = None) -> List[str]:
        order = np.argsort(-similarities, kind="stable")
        return [
            self.product_ids[i] for i in order
            if similarities[i] >= self.config.MIN_SIMILARITY and self.product_ids[i] != exclude
        ]

    async def candidate_pool(self, user: User, limit: int, seed_id: Optional[str] = None) -> List[str]:
        """
        TF-IDF neighbours of the seed product (or of the user document),
        padded with the rest of the indexed catalog.
        """
        if not self.is_available():
            return []
        pool: List[str] = []
        if seed_id and seed_id in self.index:
            pool = self._ranked_above(self._similarities(self.doc_matrix[self.index[seed_id]]), exclude=seed_id)
        else:
            profile = self.profile_for(user)
            if profile is not None:
                pool = self._ranked_above(self._profile_similarities(profile))
        pool = pool[:limit]

        if len(pool) < limit:
            chosen = set(pool)
            for pid in self.product_ids:
                if len(pool) >= limit:
                    break
                if pid not in chosen and pid != seed_id:
                    pool.append(pid)
        return pool

    def seed_similarity(self, seed_id: str, candidate_ids: Sequence[str]) -> Dict[str, float]:
        if not self.is_available() or seed_id not in self.index:
            return {}
        similarities = self._similarities(self.doc_matrix[self.index[seed_id]])
        return {
            pid: float(similarities[self.index[pid]])
            for pid in candidate_ids
            if pid in self.index
        }

    def memory_usage(self) -> Dict[str, Any]:
        matrix_bytes = 0
        if self.doc_matrix is not None:
            matrix_bytes = int(self.doc_matrix.data.nbytes + self.doc_matrix.indices.nbytes + self.doc_matrix.indptr.nbytes)
        document_bytes = sum(len(f.document) for f in self.features.values())
        document_bytes += sum(len(p.document) for p in self.profiles.values())
        return {
            **self._counts(),
            "vocabulary_size": len(self.vectorizer.vocabulary_) if self.vectorizer else 0,
            "matrix_bytes": matrix_bytes,
            "document_bytes": document_bytes,
            "megabytes": round((matrix_bytes + document_bytes) / 1024 / 1024, 3),
        }

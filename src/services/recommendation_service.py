"""
Recommendation Service.

Orchestrates strategy scorers, the personalization layer, the cold-start
fallback and outfit synthesis behind the public operations:

    recommend / recommend_best        ranked products for a user
    recommend_personalize             same, biased towards a viewed product
    recommend_outfits                 bundles anchored on a product
    similar_products / trending       catalog lookups
    train / train_incremental         model lifecycle
    memory_stats / clear_memory       maintenance
    update_weights                    hybrid CF/CB blend

Usage:
    service = RecommendationService(store, settings)
    result = await service.recommend("u1", k=10, strategy=Strategy.HYBRID)
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config.constants import (
    DEFAULT_OUTFIT_CONFIG,
    DEFAULT_PERSONALIZATION_CONFIG,
    DEFAULT_SIMILAR_CONFIG,
    OUTFIT_SEED_BLEND,
    PERSONALIZE_SEED_BLEND,
    SeedBlend,
)
from config.settings import Settings
from core.errors import MissingPreconditionError, NoHistoryError, NotFoundError
from core.logging import get_logger
from core.memory import MemoryMonitor
from engines.base import Scorer
from engines.factory import build_scorers, create_model_store, normalize_strategy
from engines.hybrid_scorer import HybridScorer, vector_cosine
from engines.persistence import ModelStore
from recs.entity_store import EntityStore, iter_pages
from recs.models import (
    Gender,
    OutfitResult,
    Product,
    RecommendationResult,
    SimilarProduct,
    Strategy,
    TrainingReport,
    TrendingProduct,
    User,
)
from scoring.context import HistoryAnalysis
from scoring.filters import allowed_categories, is_excluded
from scoring.personalization import PersonalizationLayer
from services.cold_start import MODEL_LABEL as COLD_START_LABEL
from services.cold_start import ColdStartRecommender
from services.explanations import explain_cold_start, explain_outfits, explain_recommendations
from services.outfit_engine import OutfitSynthesizer


logger = get_logger(__name__)

# Strategies whose ranked results also carry unanchored outfits
OUTFIT_STRATEGIES = (Strategy.GRAPH, Strategy.HYBRID)


class RecommendationService:
    """
    Public recommendation operations over one entity store.

    Args:
        store: Entity store
        settings: Engine settings
        scorers: Pre-built scorers (default: one per strategy)
        model_store: Persistence shared by the default scorers
        monitor: Memory reclamation hook shared by the default scorers
        rng: Random source for outfit picks
    """

    def __init__(
        self,
        store: EntityStore,
        settings: Settings,
        scorers: Optional[Dict[Strategy, Scorer]] = None,
        model_store: Optional[ModelStore] = None,
        monitor: Optional[MemoryMonitor] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.settings = settings
        self.monitor = monitor or MemoryMonitor(settings.memory_cleanup_interval)
        self.model_store = model_store or create_model_store(settings)
        self.scorers = scorers or build_scorers(store, settings, self.model_store, self.monitor)
        self.personalization = PersonalizationLayer(DEFAULT_PERSONALIZATION_CONFIG)
        self.cold_start = ColdStartRecommender(store, page_size=settings.batch_size)
        self.rng = rng or random.Random(settings.random_seed)

    # =========================================================================
    # Lookups
    # =========================================================================

    def scorer(self, strategy) -> Scorer:
        strategy = normalize_strategy(strategy)
        scorer = self.scorers.get(strategy)
        if scorer is None:
            raise MissingPreconditionError(f"Strategy {strategy.value} is not configured", strategy=strategy.value)
        return scorer

    async def _require_user(self, user_id: str) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", user_id=user_id)
        return user

    async def _require_product(self, product_id: str) -> Product:
        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        return product

    async def _history(self, user: User) -> HistoryAnalysis:
        if not user.has_history:
            return HistoryAnalysis()
        products = await self.store.get_products(user.history_product_ids)
        return HistoryAnalysis.from_history(user.interaction_history, {p.id: p for p in products})

    def _outfit_synthesizer(self) -> OutfitSynthesizer:
        content = self.scorers.get(Strategy.CONTENT)
        similarity = None
        if content is not None and content.is_available():
            similarity = content.document_similarity
        return OutfitSynthesizer(DEFAULT_OUTFIT_CONFIG, rng=self.rng, similarity=similarity)

    def _pool_size(self, k: int) -> int:
        return k * self.settings.candidate_pool_factor

    # =========================================================================
    # Scoring helpers
    # =========================================================================

    @staticmethod
    def _blend(
        base_scores: Dict[str, float],
        similarities: Dict[str, float],
        products: Dict[str, Product],
        seed: Product,
        blend: SeedBlend,
    ) -> Dict[str, float]:
        """Mix seed similarity into base scores with same-category/brand boosts."""
        blended = {}
        for pid, base in base_scores.items():
            score = blend.BASE_WEIGHT * base + blend.SIMILARITY_WEIGHT * similarities.get(pid, 0.0)
            product = products.get(pid)
            if product is not None:
                if seed.category and product.category == seed.category:
                    score *= blend.SAME_CATEGORY
                if seed.brand and product.brand == seed.brand:
                    score *= blend.SAME_BRAND
            blended[pid] = score
        return blended

    async def _scored_candidates(
        self,
        scorer: Scorer,
        user: User,
        limit: int,
        seed: Optional[Product] = None,
        blend: Optional[SeedBlend] = None,
    ):
        """(candidate products in pool order, base scores by id)."""
        pool_ids = await scorer.candidate_pool(user, limit, seed_id=seed.id if seed else None)
        if seed is not None:
            pool_ids = [pid for pid in pool_ids if pid != seed.id]
        base_scores = await scorer.score_candidates(user, pool_ids)
        products = await self.store.get_products([pid for pid in pool_ids if pid in base_scores])
        by_id = {p.id: p for p in products}
        if seed is not None and blend is not None:
            similarities = scorer.seed_similarity(seed.id, list(base_scores))
            base_scores = self._blend(base_scores, similarities, by_id, seed, blend)
        candidates = [by_id[pid] for pid in pool_ids if pid in by_id]
        return candidates, base_scores

    async def _cold_start_result(
        self,
        user: Optional[User],
        k: int,
        strategy: Optional[Strategy],
        seed: Optional[Product] = None,
    ) -> RecommendationResult:
        predicate = None
        exclude = set()
        if seed is not None:
            exclude.add(seed.id)

            def predicate(product: Product) -> bool:
                return product.category == seed.category or (bool(seed.brand) and product.brand == seed.brand)

        products = await self.cold_start.recommend(user, k, predicate=predicate, exclude_ids=exclude)
        logger.info(
            "Serving cold start recommendations",
            user_id=user.id if user else None,
            strategy=strategy.value if strategy else None,
            returned=len(products),
        )
        return RecommendationResult(
            products=products,
            model=COLD_START_LABEL,
            explanation=explain_cold_start(user, filtered=seed is not None),
            strategy=strategy.value if strategy else None,
            cold_start=True,
        )

    # =========================================================================
    # Recommendations
    # =========================================================================

    async def recommend(self, user_id: str, k: Optional[int] = None, strategy=Strategy.HYBRID) -> RecommendationResult:
        """
        Top ``k`` products for a user with interaction history.

        Raises:
            NotFoundError: unknown user
            NoHistoryError: user has no interactions
            ModelUnavailableError: strict load-only mode without fresh state
        """
        k = max(1, k or self.settings.default_k)
        strategy = normalize_strategy(strategy)
        user = await self._require_user(user_id)
        if not user.has_history:
            raise NoHistoryError(f"User {user_id} has no interaction history", user_id=user_id)

        scorer = self.scorer(strategy)
        await scorer.ensure_ready()
        if not scorer.is_available() or not scorer.knows_user(user):
            return await self._cold_start_result(user, k, strategy)

        candidates, base_scores = await self._scored_candidates(scorer, user, self._pool_size(k))
        history = await self._history(user)
        ranked = self.personalization.rerank(candidates, base_scores, user, history, strict_gender=True)
        if not ranked:
            return await self._cold_start_result(user, k, strategy)

        products = [scored.product for scored in ranked[:k]]
        outfits = []
        if strategy in OUTFIT_STRATEGIES:
            outfits = self._outfit_synthesizer().unanchored(
                products, user.gender, user.preferences.style, DEFAULT_OUTFIT_CONFIG.MAX_UNANCHORED_OUTFITS,
            )

        logger.info(
            "Generated recommendations",
            user_id=user_id,
            strategy=strategy.value,
            candidates=len(candidates),
            returned=len(products),
        )
        return RecommendationResult(
            products=products,
            model=scorer.model_label,
            explanation=explain_recommendations(user, history, products),
            strategy=strategy.value,
            outfits=outfits,
        )

    async def recommend_best(self, user_id: str, k: Optional[int] = None) -> RecommendationResult:
        return await self.recommend(user_id, k, strategy=Strategy.GRAPH)

    async def recommend_personalize(
        self,
        user_id: str,
        k: Optional[int] = None,
        product_id: Optional[str] = None,
        strategy=Strategy.CONTENT,
    ) -> RecommendationResult:
        """
        Recommendations biased towards the product being viewed.

        Unknown users and users without history get cold-start results
        (restricted to the viewed product's category or brand) instead of
        an error.
        """
        k = max(1, k or self.settings.default_k)
        strategy = normalize_strategy(strategy)

        seed = None
        if product_id:
            seed = await self.store.get_product(product_id)
            if seed is None:
                logger.warning("Viewed product not found, ignoring", product_id=product_id)

        user = await self.store.get_user(user_id)
        if user is None or not user.has_history:
            logger.info("Falling back to cold start", user_id=user_id, known_user=user is not None)
            return await self._cold_start_result(user, k, strategy, seed=seed)

        scorer = self.scorer(strategy)
        await scorer.ensure_ready()
        if not scorer.is_available() or not scorer.knows_user(user):
            return await self._cold_start_result(user, k, strategy, seed=seed)

        candidates, base_scores = await self._scored_candidates(
            scorer, user, self._pool_size(k), seed=seed, blend=PERSONALIZE_SEED_BLEND,
        )
        history = await self._history(user)
        ranked = self.personalization.rerank(
            candidates, base_scores, user, history,
            exclude_ids=[seed.id] if seed else None,
        )
        if not ranked:
            return await self._cold_start_result(user, k, strategy, seed=seed)

        products = [scored.product for scored in ranked[:k]]
        return RecommendationResult(
            products=products,
            model=scorer.model_label,
            explanation=explain_recommendations(user, history, products, seed=seed),
            strategy=strategy.value,
        )

    # =========================================================================
    # Outfits
    # =========================================================================

    def _resolve_gender(self, user: User, override: Optional[str], scorer: Scorer) -> Gender:
        gender = Gender.parse(override) if override else None
        if gender is None:
            gender = user.gender
        if gender is None:
            if scorer.requires_gender:
                raise MissingPreconditionError(
                    "Gender is required for outfit recommendations",
                    user_id=user.id,
                    strategy=scorer.name,
                )
            gender = Gender.OTHER
        return gender

    async def _outfit_pool(
        self,
        scorer: Scorer,
        user: User,
        seed: Product,
        gender: Gender,
        history: HistoryAnalysis,
        k: int,
    ) -> List[Product]:
        config = DEFAULT_OUTFIT_CONFIG
        size = max(2 * k, config.POOL_FLOOR)
        categories = allowed_categories(gender, for_outfits=True)

        candidates: List[Product] = []
        scores: Dict[str, float] = {}
        if scorer.is_available():
            candidates, scores = await self._scored_candidates(
                scorer, user, self._pool_size(size), seed=seed, blend=OUTFIT_SEED_BLEND,
            )

        allowed = [
            p for p in candidates
            if (categories is None or p.category in categories) and not is_excluded(gender, user.age, p)
        ]
        allowed.sort(key=lambda p: scores.get(p.id, 0.0), reverse=True)

        history_categories = set(history.categories)

        def rank(product: Product) -> int:
            if product.category in history_categories:
                return 0
            if product.category == seed.category:
                return 1
            return 2

        pool = sorted(allowed, key=rank)[:size]

        if len(pool) < config.MIN_POOL_BEFORE_PADDING:
            padding = await self.cold_start.recommend(
                user,
                config.PADDING_LIMIT,
                exclude_ids={seed.id} | {p.id for p in pool},
                categories=categories,
            )
            pool.extend(padding)
        return pool

    async def recommend_outfits(
        self,
        user_id: str,
        product_id: Optional[str],
        k: Optional[int] = None,
        gender: Optional[str] = None,
        strategy=Strategy.CONTENT,
    ) -> OutfitResult:
        """
        Outfits anchored on ``product_id``.

        Raises:
            MissingPreconditionError: no anchor product, or no resolvable
                gender for a strategy that needs one
            NotFoundError: unknown user or anchor product
        """
        if not product_id:
            raise MissingPreconditionError("Outfit recommendations need a product id", user_id=user_id)
        k = max(1, k or self.settings.default_k)
        strategy = normalize_strategy(strategy)

        user = await self._require_user(user_id)
        seed = await self._require_product(product_id)
        scorer = self.scorer(strategy)
        resolved_gender = self._resolve_gender(user, gender, scorer)

        await scorer.ensure_ready()
        history = await self._history(user)
        pool = await self._outfit_pool(scorer, user, seed, resolved_gender, history, k)

        outfits = self._outfit_synthesizer().synthesize(
            pool, seed, resolved_gender, user.preferences.style, k,
        )
        logger.info(
            "Generated outfits",
            user_id=user_id,
            product_id=product_id,
            strategy=strategy.value,
            gender=resolved_gender.value,
            pool_size=len(pool),
            outfits=len(outfits),
        )
        return OutfitResult(
            outfits=outfits,
            model=scorer.model_label,
            explanation=explain_outfits(user, seed, resolved_gender, history, outfits),
            strategy=strategy.value,
        )

    # =========================================================================
    # Catalog lookups
    # =========================================================================

    async def similar_products(self, product_id: str, k: Optional[int] = None) -> List[SimilarProduct]:
        """Products close to ``product_id`` by feature vector, category and tags."""
        k = max(1, k or self.settings.default_k)
        config = DEFAULT_SIMILAR_CONFIG
        seed = await self._require_product(product_id)
        seed_tags = set(seed.outfit_tags)

        total = min(await self.store.count_products(), self.settings.max_products)
        matches: List[SimilarProduct] = []
        async for page in iter_pages(self.store.list_products, total, self.settings.batch_size):
            for product in page:
                if product.id == seed.id:
                    continue
                score = vector_cosine(seed.feature_vector, product.feature_vector)
                if seed.category and product.category == seed.category:
                    score += config.SAME_CATEGORY
                common = seed_tags.intersection(product.outfit_tags)
                score += len(common) / max(len(seed_tags), 1) * config.TAG_OVERLAP
                if score > config.THRESHOLD:
                    matches.append(SimilarProduct(product=product, similarity=round(score, 6)))
            self.monitor.reclaim()

        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:k]

    async def trending(
        self,
        days: int = 30,
        k: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[TrendingProduct]:
        """Products with the most interactions in the last ``days`` days."""
        k = max(1, k or self.settings.default_k)
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)

        counts: Dict[str, int] = {}
        total = min(await self.store.count_users_with_history(), self.settings.max_users)
        async for page in iter_pages(self.store.list_users_with_history, total, self.settings.batch_size):
            for user in page:
                for event in user.interaction_history:
                    if event.timestamp >= cutoff:
                        counts[event.product_id] = counts.get(event.product_id, 0) + 1
            self.monitor.reclaim()

        if not counts:
            return []
        products = await self.store.get_products(list(counts))
        ranked = sorted(products, key=lambda p: (counts[p.id], p.rating), reverse=True)
        return [TrendingProduct(product=p, interaction_count=counts[p.id]) for p in ranked[:k]]

    # =========================================================================
    # Training & maintenance
    # =========================================================================

    def _selected(self, strategy=None) -> Dict[Strategy, Scorer]:
        if strategy is None:
            return dict(self.scorers)
        strategy = normalize_strategy(strategy)
        return {strategy: self.scorer(strategy)}

    async def train(self, strategy=None, force: bool = False) -> Dict[str, TrainingReport]:
        """Full training for one strategy (or all). Fresh models are skipped unless forced."""
        reports = {}
        for key, scorer in self._selected(strategy).items():
            reports[key.value] = await scorer.train(force=force)
        return reports

    async def train_incremental(self, strategy=None) -> Dict[str, TrainingReport]:
        reports = {}
        for key, scorer in self._selected(strategy).items():
            reports[key.value] = await scorer.train_incremental()
        return reports

    async def preload(self) -> Dict[str, bool]:
        """Load fresh persisted state for every strategy, without training."""
        loaded = {}
        for key, scorer in self.scorers.items():
            loaded[key.value] = scorer.is_fresh() or await scorer.load()
        return loaded

    def memory_stats(self) -> Dict[str, Any]:
        strategies = {}
        for key, scorer in self.scorers.items():
            strategies[key.value] = {
                "trained": scorer.trained,
                "fresh": scorer.is_fresh(),
                **scorer.memory_usage(),
            }
        return {"strategies": strategies, "process": self.monitor.stats()}

    def clear_memory(self, strategy=None) -> List[str]:
        """Drop in-memory models; the next request reloads persisted state."""
        cleared = []
        for key, scorer in self._selected(strategy).items():
            scorer.clear_memory()
            cleared.append(key.value)
        return cleared

    async def model_status(self) -> Dict[str, Dict[str, Any]]:
        """Per-strategy freshness of in-memory and persisted state."""
        status = {}
        for key, scorer in self.scorers.items():
            metadata = await self.model_store.metadata(scorer.name)
            status[key.value] = {
                "in_memory": scorer.trained,
                "fresh": scorer.is_fresh(),
                "persisted": metadata is not None,
                "persisted_fresh": self.model_store.is_fresh_metadata(metadata),
                "last_trained_at": metadata.get("last_trained_at_iso") if metadata else None,
            }
        return status

    def update_weights(self, cf_weight: float, cb_weight: float) -> Dict[str, float]:
        """
        Change the hybrid CF/CB blend.

        Raises:
            ValueError: weights outside [0, 1] or not summing to 1.0
        """
        scorer = self.scorer(Strategy.HYBRID)
        if not isinstance(scorer, HybridScorer):
            raise MissingPreconditionError("Hybrid strategy does not support weights")
        scorer.update_weights(cf_weight, cb_weight)
        return {"cf_weight": scorer.cf_weight, "cb_weight": scorer.cb_weight}

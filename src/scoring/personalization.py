"""
PersonalizationLayer -- re-ranks base strategy scores.

Multipliers compose on the base score in a fixed order:

    1. gender category allow-list      x1.3 allowed / x0.3 otherwise
    2. opposite-gender keywords        dropped
    3. age band category / style       x1.2 / x1.15
    4. history category, brand, style  x1.4 / x1.3 / x1.25
    5. preferred style                 x1.2
       price outside preferred range   x0.5
       preferred colors                x(1 + matched_fraction * 0.2)

Adults never see children's products. The final order is a stable sort on
the composed score, so ties keep candidate order.

Usage::

    layer = PersonalizationLayer()
    history = HistoryAnalysis.from_history(user.interaction_history, products_by_id)
    ranked = layer.rerank(candidates, base_scores, user, history)
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from config.constants import DEFAULT_PERSONALIZATION_CONFIG, PersonalizationConfig
from scoring.context import HistoryAnalysis, age_profile
from scoring.filters import allowed_categories, is_excluded
from recs.models import Product, User


@dataclass
class ScoredProduct:
    product: Product
    score: float
    base_score: float
    factors: List[str] = field(default_factory=list)


class PersonalizationLayer:
    """
    Applies personalization multipliers and exclusions.

    Stateless; safe to share across requests.
    """

    def __init__(self, config: PersonalizationConfig = DEFAULT_PERSONALIZATION_CONFIG) -> None:
        self.config = config

    def score(
        self,
        product: Product,
        base_score: float,
        user: User,
        history: HistoryAnalysis,
    ) -> ScoredProduct:
        """Compose all multipliers for one product (exclusions not applied)."""
        c = self.config
        score = base_score
        factors: List[str] = []
        tags = product.tag_set

        allowed = allowed_categories(user.gender)
        if allowed is not None:
            if product.category in allowed:
                score *= c.GENDER_MATCH
                factors.append(f"suitable for {user.gender.value}")
            else:
                score *= c.GENDER_MISMATCH

        profile = age_profile(user.age)
        if profile is not None:
            if product.category in profile.categories:
                score *= c.AGE_CATEGORY_MATCH
            if profile.style in tags:
                score *= c.AGE_STYLE_MATCH
                factors.append(f"{profile.style} style for your age")

        if product.category and product.category in history.categories:
            score *= c.HISTORY_CATEGORY
            factors.append(f"you have interacted with {product.category}")
        if product.brand and product.brand in history.brands:
            score *= c.HISTORY_BRAND
            factors.append(f"you have shown interest in {product.brand}")
        if tags.intersection(history.styles):
            score *= c.HISTORY_STYLE
            factors.append("matches your style history")

        preferences = user.preferences
        if preferences.style and preferences.style.lower() in tags:
            score *= c.PREFERRED_STYLE
            factors.append(f"matches your preferred {preferences.style} style")
        if preferences.price_range and not preferences.price_range.contains(product.price):
            score *= c.PRICE_OUT_OF_RANGE
        if preferences.color_preferences:
            wanted = [color.lower() for color in preferences.color_preferences]
            matched = [color for color in wanted if color in product.color_set]
            if matched:
                score *= 1 + (len(matched) / len(wanted)) * c.COLOR_BOOST
                factors.append(f"has your favorite colors ({', '.join(matched)})")

        return ScoredProduct(product=product, score=score, base_score=base_score, factors=factors)

    def is_allowed(self, product: Product, user: User, strict_gender: bool = False) -> bool:
        """Hard filters: keyword/age exclusions and, if strict, the gender allow-list."""
        if is_excluded(user.gender, user.age, product):
            return False
        if strict_gender:
            allowed = allowed_categories(user.gender)
            if allowed is not None and product.category not in allowed:
                return False
        return True

    def rerank(
        self,
        candidates: Sequence[Product],
        base_scores: Dict[str, float],
        user: User,
        history: HistoryAnalysis,
        strict_gender: bool = False,
        exclude_ids: Optional[Iterable[str]] = None,
    ) -> List[ScoredProduct]:
        """
        Score, filter and stably sort ``candidates``.

        Candidates without a base score are skipped; duplicates keep their
        first occurrence.
        """
        excluded = set(exclude_ids or ())
        seen = set()
        scored: List[ScoredProduct] = []
        for product in candidates:
            if product.id in seen or product.id in excluded or product.id not in base_scores:
                continue
            seen.add(product.id)
            if not self.is_allowed(product, user, strict_gender):
                continue
            scored.append(self.score(product, base_scores[product.id], user, history))

        # sorted() is stable: ties keep candidate order
        return sorted(scored, key=lambda s: s.score, reverse=True)

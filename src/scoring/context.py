"""
User context for personalization.

Defines the age bands with their style/category affinities and the
history analysis (ranked categories, brands and styles) that the
personalization layer and explanations operate on. Both are built once
per request.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from config.constants import CATEGORIES, DEFAULT_HISTORY_WEIGHT, HISTORY_WEIGHTS
from recs.models import InteractionEvent, Product


class AgeBand(Enum):
    """Age brackets matching the affinity table."""
    TEEN = "13-18"
    YOUNG_ADULT = "19-25"
    ADULT = "26-35"
    MIDDLE_AGED = "36-50"
    SENIOR = "51+"


@dataclass(frozen=True)
class AgeProfile:
    band: AgeBand
    style: str
    categories: FrozenSet[str]


_ALL_CATEGORIES = CATEGORIES

AGE_PROFILES: Dict[AgeBand, AgeProfile] = {
    AgeBand.TEEN: AgeProfile(AgeBand.TEEN, "casual", frozenset({"Tops", "Bottoms", "Shoes", "Accessories"})),
    AgeBand.YOUNG_ADULT: AgeProfile(AgeBand.YOUNG_ADULT, "modern", _ALL_CATEGORIES),
    AgeBand.ADULT: AgeProfile(AgeBand.ADULT, "professional", _ALL_CATEGORIES),
    AgeBand.MIDDLE_AGED: AgeProfile(AgeBand.MIDDLE_AGED, "classic", _ALL_CATEGORIES),
    AgeBand.SENIOR: AgeProfile(AgeBand.SENIOR, "traditional", _ALL_CATEGORIES),
}


def age_band(age: Optional[int]) -> Optional[AgeBand]:
    """Map an age in years to its band. Under 13 (or unknown) has no band."""
    if age is None or age < 13:
        return None
    if age <= 18:
        return AgeBand.TEEN
    if age <= 25:
        return AgeBand.YOUNG_ADULT
    if age <= 35:
        return AgeBand.ADULT
    if age <= 50:
        return AgeBand.MIDDLE_AGED
    return AgeBand.SENIOR


def age_profile(age: Optional[int]) -> Optional[AgeProfile]:
    band = age_band(age)
    return AGE_PROFILES[band] if band else None


@dataclass
class HistoryAnalysis:
    """
    What a user's interaction history says about them.

    Each list is ordered by accumulated interaction weight, strongest first.
    """
    categories: List[str] = field(default_factory=list)
    brands: List[str] = field(default_factory=list)
    styles: List[str] = field(default_factory=list)
    colors: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.categories or self.brands or self.styles)

    @classmethod
    def from_history(
        cls,
        events: Iterable[InteractionEvent],
        products: Dict[str, Product],
    ) -> "HistoryAnalysis":
        """
        Rank attributes of interacted products.

        Args:
            events: The user's interaction history
            products: product_id -> Product for (at least) the interacted ids;
                events pointing at unknown products are ignored
        """
        categories: Dict[str, float] = defaultdict(float)
        brands: Dict[str, float] = defaultdict(float)
        styles: Dict[str, float] = defaultdict(float)
        colors: Dict[str, float] = defaultdict(float)

        for event in events:
            product = products.get(event.product_id)
            if product is None:
                continue
            weight = HISTORY_WEIGHTS.get(event.interaction_type.value, DEFAULT_HISTORY_WEIGHT)
            if product.category:
                categories[product.category] += weight
            if product.brand:
                brands[product.brand] += weight
            for tag in product.outfit_tags:
                styles[tag.lower()] += weight
            for color in product.colors:
                colors[color.lower()] += weight

        return cls(
            categories=_ranked(categories),
            brands=_ranked(brands),
            styles=_ranked(styles),
            colors=_ranked(colors),
        )


def _ranked(weights: Dict[str, float]) -> List[str]:
    # Stable: ties keep first-seen order
    return [key for key, _ in sorted(weights.items(), key=lambda kv: kv[1], reverse=True)]

"""
Application constants and algorithm configuration.

These are values that don't change based on environment but may need
to be tuned or referenced across the codebase.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet


# =============================================================================
# Interaction Weights
# =============================================================================

# Weight of each interaction type in utility values and user documents
INTERACTION_WEIGHTS: Dict[str, int] = {
    "view": 1,
    "like": 2,
    "cart": 3,
    "review": 4,
    "purchase": 5,
}

# Weight of each interaction type when ranking history categories/brands/styles
HISTORY_WEIGHTS: Dict[str, float] = {
    "purchase": 3.0,
    "cart": 2.0,
    "like": 1.5,
}
DEFAULT_HISTORY_WEIGHT = 1.0

DEFAULT_RATING = 3
MAX_RATING = 5

# Canonical catalog categories
CATEGORIES: FrozenSet[str] = frozenset({"Tops", "Bottoms", "Shoes", "Dresses", "Accessories"})


# =============================================================================
# Personalization Configuration
# =============================================================================

@dataclass(frozen=True)
class PersonalizationConfig:
    """Multipliers applied on top of base strategy scores."""

    GENDER_MATCH: float = 1.3
    GENDER_MISMATCH: float = 0.3

    AGE_CATEGORY_MATCH: float = 1.2
    AGE_STYLE_MATCH: float = 1.15

    HISTORY_CATEGORY: float = 1.4
    HISTORY_BRAND: float = 1.3
    HISTORY_STYLE: float = 1.25

    PREFERRED_STYLE: float = 1.2
    PRICE_OUT_OF_RANGE: float = 0.5
    # Color boost is 1 + fraction_of_preferred_colors_matched * COLOR_BOOST
    COLOR_BOOST: float = 0.2

    # Users older than this never see child/kids/junior products
    CHILD_PRODUCT_MAX_AGE: int = 12


DEFAULT_PERSONALIZATION_CONFIG = PersonalizationConfig()


@dataclass(frozen=True)
class SeedBlend:
    """How a seed product's similarity is blended into base scores."""

    BASE_WEIGHT: float
    SIMILARITY_WEIGHT: float
    SAME_CATEGORY: float = 1.0
    SAME_BRAND: float = 1.0


# recommend_personalize with a currently-viewed product
PERSONALIZE_SEED_BLEND = SeedBlend(BASE_WEIGHT=0.6, SIMILARITY_WEIGHT=0.4, SAME_CATEGORY=1.3, SAME_BRAND=1.2)

# Outfit candidate scoring around the anchor product
OUTFIT_SEED_BLEND = SeedBlend(BASE_WEIGHT=0.5, SIMILARITY_WEIGHT=0.5, SAME_CATEGORY=1.2)


# =============================================================================
# Strategy Configuration
# =============================================================================

@dataclass(frozen=True)
class HybridConfig:
    """Item similarity blend and content-based score for the hybrid strategy."""

    # Item-item similarity
    CONTENT_FLOOR: float = 0.05
    SAME_CATEGORY: float = 0.3
    SAME_BRAND: float = 0.2
    TAG_OVERLAP: float = 0.3

    # Collaborative score when no neighbour rated the item
    CF_DEFAULT: float = 0.1

    # Content-based score
    CB_STYLE_MATCH: float = 0.3
    CB_PRICE_IN_RANGE: float = 0.2
    CB_FEATURE_SIMILARITY: float = 0.2

    MAX_CANDIDATES: int = 200


DEFAULT_HYBRID_CONFIG = HybridConfig()


@dataclass(frozen=True)
class ContentConfig:
    """TF-IDF content score components."""

    CATEGORY_MATCH: float = 0.2
    BRAND_MATCH: float = 0.15
    TFIDF_WEIGHT: float = 0.5

    TAG_OVERLAP_CAP: float = 0.1
    TAG_OVERLAP_DIVISOR: float = 10.0
    COLOR_OVERLAP_CAP: float = 0.05
    COLOR_OVERLAP_DIVISOR: float = 5.0

    MIN_SIMILARITY: float = 0.1
    MAX_PROFILE_TAGS: int = 10
    MAX_PROFILE_COLORS: int = 5


DEFAULT_CONTENT_CONFIG = ContentConfig()


# =============================================================================
# Outfit Configuration
# =============================================================================

@dataclass(frozen=True)
class OutfitConfig:
    """Outfit assembly and compatibility scoring."""

    REFERENCE_PRICE: float = 200.0
    PRICE_BAND: float = 400.0
    DIVERSITY_CATEGORIES: int = 3

    # compatibility = DIVERSITY*d + PRICE*p (+ SIMILARITY*s when docs available)
    WEIGHTS_WITH_SIMILARITY: Dict[str, float] = field(default_factory=lambda: {
        "diversity": 0.4,
        "price": 0.3,
        "similarity": 0.3,
    })
    WEIGHTS_WITHOUT_SIMILARITY: Dict[str, float] = field(default_factory=lambda: {
        "diversity": 0.6,
        "price": 0.4,
    })

    MAX_ATTEMPTS_PER_TEMPLATE: int = 5
    MAX_UNANCHORED_OUTFITS: int = 3
    MIN_PRODUCTS: int = 2

    # Ranked pool handed to the synthesizer
    POOL_FLOOR: int = 20
    MIN_POOL_BEFORE_PADDING: int = 5
    PADDING_LIMIT: int = 20

    DEFAULT_STYLE: str = "casual"


DEFAULT_OUTFIT_CONFIG = OutfitConfig()


@dataclass(frozen=True)
class SimilarProductsConfig:
    """Scoring for the similar-products lookup."""

    SAME_CATEGORY: float = 0.2
    TAG_OVERLAP: float = 0.3
    THRESHOLD: float = 0.1


DEFAULT_SIMILAR_CONFIG = SimilarProductsConfig()


# =============================================================================
# Pagination
# =============================================================================

@dataclass(frozen=True)
class PaginationConfig:
    """List endpoint pagination defaults."""

    DEFAULT_K: int = 9
    DEFAULT_PER_PAGE: int = 9
    MAX_K: int = 200


DEFAULT_PAGINATION_CONFIG = PaginationConfig()

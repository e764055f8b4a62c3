"""
Gender and age appropriateness rules.

Category allow-lists per gender, and keyword matching that keeps
opposite-gender and children's products away from users they do not
suit. Keywords match whole words (case-insensitive) in the product name
and description; children's markers are matched in the name only.
"""

import re
from typing import FrozenSet, Iterable, Optional, Pattern

from config.constants import DEFAULT_PERSONALIZATION_CONFIG
from recs.models import Gender, Product


# =============================================================================
# Category allow-lists
# =============================================================================

MALE_CATEGORIES: FrozenSet[str] = frozenset({"Tops", "Bottoms", "Shoes"})
FEMALE_CATEGORIES: FrozenSet[str] = frozenset({"Dresses", "Accessories", "Shoes"})
OTHER_CATEGORIES: FrozenSet[str] = MALE_CATEGORIES | FEMALE_CATEGORIES

# Outfits widen the female list with separates
OUTFIT_CATEGORIES = {
    Gender.MALE: MALE_CATEGORIES,
    Gender.FEMALE: FEMALE_CATEGORIES | {"Tops", "Bottoms"},
    Gender.OTHER: OTHER_CATEGORIES,
}

GENDER_CATEGORIES = {
    Gender.MALE: MALE_CATEGORIES,
    Gender.FEMALE: FEMALE_CATEGORIES,
    Gender.OTHER: OTHER_CATEGORIES,
}


def allowed_categories(gender: Optional[Gender], for_outfits: bool = False) -> Optional[FrozenSet[str]]:
    """Categories suitable for ``gender``; None when gender is unknown."""
    if gender is None:
        return None
    table = OUTFIT_CATEGORIES if for_outfits else GENDER_CATEGORIES
    return table[gender]


# =============================================================================
# Keyword markers
# =============================================================================

FEMALE_KEYWORDS = (
    "female", "woman", "women", "women's", "woman's", "girl", "girls", "girl's",
    "ladies", "lady", "she", "her",
)
MALE_KEYWORDS = (
    "male", "man", "men", "men's", "man's", "boy", "boys", "boy's",
    "gentleman", "gents", "he", "him", "his",
)
CHILD_KEYWORDS = (
    "kid", "kids", "kid's", "kids'", "baby", "babies", "baby's", "babies'",
    "toddler", "toddlers", "toddler's", "toddlers'", "infant", "infants",
    "infant's", "infants'", "child", "children", "child's", "children's",
    "junior", "juniors", "junior's", "juniors'", "youth", "youths", "youth's", "youths'",
)


def _keyword_pattern(keywords: Iterable[str]) -> Pattern:
    # Longest first so "women's" wins over "women"
    alternatives = "|".join(re.escape(k) for k in sorted(set(keywords), key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])", re.IGNORECASE)


FEMALE_PATTERN = _keyword_pattern(FEMALE_KEYWORDS)
MALE_PATTERN = _keyword_pattern(MALE_KEYWORDS)
CHILD_PATTERN = _keyword_pattern(CHILD_KEYWORDS)


def _product_text(product: Product) -> str:
    return f"{product.name} {product.description}"


def violates_gender_keywords(gender: Optional[Gender], product: Product) -> bool:
    """True when the product text carries opposite-gender markers."""
    if gender == Gender.MALE:
        return FEMALE_PATTERN.search(_product_text(product)) is not None
    if gender == Gender.FEMALE:
        return MALE_PATTERN.search(_product_text(product)) is not None
    return False


def is_child_product(product: Product) -> bool:
    return CHILD_PATTERN.search(product.name or "") is not None


def violates_age_restriction(age: Optional[int], product: Product) -> bool:
    """Adults never get children's products."""
    if age is None or age <= DEFAULT_PERSONALIZATION_CONFIG.CHILD_PRODUCT_MAX_AGE:
        return False
    return is_child_product(product)


def is_excluded(gender: Optional[Gender], age: Optional[int], product: Product) -> bool:
    """Hard exclusion: gender keyword markers or age restriction."""
    return violates_gender_keywords(gender, product) or violates_age_restriction(age, product)

"""
Human-readable explanations attached to recommendation results.

Each builder collects short reasons and joins them with ". ".
"""

from typing import List, Optional, Sequence

from core.utils import dedupe_preserving_order
from recs.models import Gender, Outfit, Product, User
from scoring.context import HistoryAnalysis, age_profile


def _gender_text(gender: Optional[Gender]) -> Optional[str]:
    if gender is None:
        return None
    return "unisex" if gender == Gender.OTHER else gender.value


def _history_reasons(history: HistoryAnalysis) -> List[str]:
    reasons = []
    if history.categories:
        reasons.append(
            f"Based on your interaction history with categories: {', '.join(history.categories[:3])}"
        )
    if history.brands:
        reasons.append(f"You have shown interest in brands: {', '.join(history.brands[:2])}")
    return reasons


def explain_recommendations(
    user: User,
    history: HistoryAnalysis,
    products: Sequence[Product],
    seed: Optional[Product] = None,
    fallback: str = "Based on your interaction history and preferences",
) -> str:
    reasons: List[str] = []
    if seed is not None:
        reasons.append(f"Based on the product you are viewing: {seed.name} ({seed.category})")

    gender = _gender_text(user.gender)
    if gender:
        reasons.append(f"Suitable for your {gender} gender")

    profile = age_profile(user.age)
    if profile is not None:
        reasons.append(f"Appropriate for age {user.age} and {profile.style} style")

    reasons.extend(_history_reasons(history))

    if user.preferences.style:
        reasons.append(f"Matches your preferred {user.preferences.style} style")

    if products:
        categories = dedupe_preserving_order(p.category for p in products if p.category)
        reasons.append(
            f"Recommending {len(products)} similar products from categories: {', '.join(categories)}"
        )

    return ". ".join(reasons) if reasons else fallback


def explain_outfits(
    user: User,
    seed: Optional[Product],
    gender: Optional[Gender],
    history: HistoryAnalysis,
    outfits: Sequence[Outfit],
) -> str:
    reasons: List[str] = []
    if seed is not None:
        reasons.append(f"Based on the product you selected: {seed.name} ({seed.category})")

    gender_text = _gender_text(gender)
    if gender_text:
        reasons.append(f"Outfit matching suitable for {gender_text} gender")

    if history.styles:
        reasons.append(f"Combining styles you often choose: {', '.join(history.styles[:2])}")

    if outfits:
        reasons.append(f"Created {len(outfits)} complete outfit combinations")

    if not reasons:
        return "Outfit matching based on the product you selected"
    return ". ".join(reasons)


def explain_cold_start(user: Optional[User] = None, filtered: bool = False) -> str:
    explanation = "Using most popular products due to no interaction history"
    if filtered:
        explanation += " (filtered by same category or brand)"
    if user is None:
        return explanation

    context = []
    gender = _gender_text(user.gender)
    if gender:
        context.append(f"{gender} gender")
    if user.age:
        context.append(f"age {user.age}")
    if context:
        return f"Based on {' and '.join(context)}. {explanation}"
    return explanation

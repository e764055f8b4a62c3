"""
Shared Scoring Module.

Personalization and appropriateness rules applied on top of any
strategy's base scores.

Quick start::

    from scoring import HistoryAnalysis, PersonalizationLayer

    history = HistoryAnalysis.from_history(user.interaction_history, products_by_id)
    ranked = PersonalizationLayer().rerank(candidates, base_scores, user, history)
"""

from scoring.context import AgeBand, AgeProfile, HistoryAnalysis, age_band, age_profile
from scoring.filters import (
    allowed_categories,
    is_child_product,
    is_excluded,
    violates_age_restriction,
    violates_gender_keywords,
)
from scoring.personalization import PersonalizationLayer, ScoredProduct

__all__ = [
    "AgeBand",
    "AgeProfile",
    "HistoryAnalysis",
    "age_band",
    "age_profile",
    "allowed_categories",
    "is_child_product",
    "is_excluded",
    "violates_age_restriction",
    "violates_gender_keywords",
    "PersonalizationLayer",
    "ScoredProduct",
]

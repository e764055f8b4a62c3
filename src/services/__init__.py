"""
Services module for business logic.

Provides the recommendation operations (ranked products, personalized
results, outfits, catalog lookups, training) on top of the scorers.
"""

from services.cold_start import ColdStartRecommender
from services.outfit_engine import OutfitSynthesizer
from services.recommendation_service import RecommendationService

__all__ = [
    "ColdStartRecommender",
    "OutfitSynthesizer",
    "RecommendationService",
]

"""
Domain models and entity store access.

- models: pydantic models for users, products, interactions and results
- entity_store: read-only access to users and products (Supabase or in-memory)
"""

from recs.entity_store import EntityStore, InMemoryEntityStore, SupabaseEntityStore, create_entity_store
from recs.models import (
    Gender,
    InteractionEvent,
    InteractionType,
    Outfit,
    OutfitResult,
    Product,
    RecommendationResult,
    Strategy,
    User,
)

__all__ = [
    "EntityStore",
    "InMemoryEntityStore",
    "SupabaseEntityStore",
    "create_entity_store",
    "Gender",
    "InteractionEvent",
    "InteractionType",
    "Outfit",
    "OutfitResult",
    "Product",
    "RecommendationResult",
    "Strategy",
    "User",
]

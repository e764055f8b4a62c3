"""
FastAPI dependencies.

The recommendation service (and with it every scorer's in-memory model)
is a process-wide singleton; tests swap it out via
``app.dependency_overrides[get_recommendation_service]``.
"""

from functools import lru_cache

from config.settings import get_settings
from core.logging import get_logger
from recs.entity_store import create_entity_store
from services.recommendation_service import RecommendationService


logger = get_logger(__name__)


@lru_cache
def get_recommendation_service() -> RecommendationService:
    """Get the recommendation service singleton."""
    settings = get_settings()
    store = create_entity_store(settings)
    logger.info(
        "Created recommendation service",
        store=type(store).__name__,
        models_dir=str(settings.models_dir),
        strict_load_only=settings.strict_load_only,
    )
    return RecommendationService(store, settings)

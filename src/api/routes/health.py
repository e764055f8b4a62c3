"""
Health check endpoints.

Provides endpoints for monitoring application health and status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.dependencies import get_recommendation_service
from config.database import get_supabase_client_optional
from services.recommendation_service import RecommendationService


router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status with basic info
    """
    return {
        "status": "healthy",
        "service": "recommendation-engine",
    }


@router.get("/health/detailed")
async def detailed_health_check(
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    """
    Detailed health check with dependency status.

    Checks:
    - Configuration loaded
    - Entity store backend
    - Freshness of every strategy's model

    Returns:
        Detailed health status
    """
    settings = service.settings

    store_status = "in_memory"
    if settings.supabase_configured:
        store_status = "connected" if get_supabase_client_optional() else "error"

    models = await service.model_status()
    any_fresh = any(m["fresh"] or m["persisted_fresh"] for m in models.values())

    healthy = store_status != "error" and (any_fresh or not settings.strict_load_only)
    return {
        "status": "healthy" if healthy else "degraded",
        "service": "recommendation-engine",
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "entity_store": store_status,
            "models": models,
        },
    }


@router.get("/ready")
async def readiness_check(
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, str]:
    """
    Kubernetes-style readiness probe.

    In strict load-only mode the service is ready once some strategy has
    fresh state; otherwise models are trained on demand.
    """
    settings = service.settings
    if settings.strict_load_only:
        models = await service.model_status()
        if not any(m["fresh"] or m["persisted_fresh"] for m in models.values()):
            return {"status": "not_ready", "reason": "no_fresh_model"}
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes-style liveness probe.

    Returns 200 if the service is alive.
    """
    return {"status": "alive"}

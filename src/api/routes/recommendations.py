"""
Recommendation Routes.

Endpoints under /api/recommend for ranked products, personalized
results, outfits, catalog lookups and model maintenance.

List endpoints take ``k`` (results generated) plus ``pageNumber`` and
``perPage`` (pagination over those ``k`` results).
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query

from api.dependencies import get_recommendation_service
from config.constants import DEFAULT_PAGINATION_CONFIG
from core.logging import get_logger
from core.utils import convert_numpy, paginate
from recs.models import RecommendationResult, Strategy, TrainRequest, WeightsRequest
from services.recommendation_service import RecommendationService


logger = get_logger(__name__)

router = APIRouter(prefix="/api/recommend", tags=["Recommendations"])

MAX_K = DEFAULT_PAGINATION_CONFIG.MAX_K
DEFAULT_K = DEFAULT_PAGINATION_CONFIG.DEFAULT_K
DEFAULT_PER_PAGE = DEFAULT_PAGINATION_CONFIG.DEFAULT_PER_PAGE


def _dump(model) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


def _envelope(data: Dict[str, Any], message: str) -> Dict[str, Any]:
    return convert_numpy({"success": True, "data": data, "message": message})


def _paginated_result(result: RecommendationResult, page: int, per_page: int, message: str) -> Dict[str, Any]:
    data = _dump(result)
    data["products"], data["pagination"] = paginate(data["products"], page, per_page)
    return _envelope(data, message)


# =============================================================================
# Ranked recommendations
# =============================================================================

async def _recommend(
    service: RecommendationService,
    user_id: str,
    strategy: Strategy,
    k: int,
    page: int,
    per_page: int,
) -> Dict[str, Any]:
    result = await service.recommend(user_id, k, strategy=strategy)
    return _paginated_result(result, page, per_page, f"{strategy.value} recommendations generated successfully")


@router.get("/gnn/{user_id}", summary="Graph strategy recommendations")
async def recommend_gnn(
    user_id: str,
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    return await _recommend(service, user_id, Strategy.GRAPH, k, page, per_page)


@router.get("/hybrid/{user_id}", summary="Hybrid CF + CB recommendations")
async def recommend_hybrid(
    user_id: str,
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    return await _recommend(service, user_id, Strategy.HYBRID, k, page, per_page)


@router.get("/content/{user_id}", summary="TF-IDF content recommendations")
async def recommend_content(
    user_id: str,
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    return await _recommend(service, user_id, Strategy.CONTENT, k, page, per_page)


@router.get("/best/{user_id}", summary="Best model recommendations")
async def recommend_best(
    user_id: str,
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    result = await service.recommend_best(user_id, k)
    return _paginated_result(result, page, per_page, "Best recommendations generated successfully")


@router.get("/personalized/{user_id}", summary="Recommendations around a viewed product")
async def recommend_personalized(
    user_id: str,
    product_id: Optional[str] = Query(None, alias="productId"),
    strategy: str = Query(Strategy.CONTENT.value),
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    """
    Personalized products, biased towards ``productId`` when given.

    Unknown users and users without history get top-rated products.
    """
    result = await service.recommend_personalize(user_id, k, product_id=product_id, strategy=strategy)
    return _paginated_result(result, page, per_page, "Personalized recommendations generated successfully")


# =============================================================================
# Outfits
# =============================================================================

@router.get("/outfits/{user_id}", summary="Outfits anchored on a product")
async def recommend_outfits(
    user_id: str,
    product_id: Optional[str] = Query(None, alias="productId"),
    gender: Optional[str] = Query(None),
    strategy: str = Query(Strategy.CONTENT.value),
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    result = await service.recommend_outfits(user_id, product_id, k, gender=gender, strategy=strategy)
    data = _dump(result)
    data["outfits"], data["pagination"] = paginate(data["outfits"], page, per_page)
    return _envelope(data, "Outfit recommendations generated successfully")


# =============================================================================
# Catalog lookups
# =============================================================================

@router.get("/similar/{product_id}", summary="Similar products")
async def similar_products(
    product_id: str,
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    matches = await service.similar_products(product_id, k)
    items, pagination = paginate([_dump(m) for m in matches], page, per_page)
    return _envelope(
        {"productId": product_id, "similarProducts": items, "pagination": pagination},
        "Similar products found successfully",
    )


@router.get("/trending", summary="Trending products")
async def trending_products(
    days: int = Query(30, ge=1, le=365),
    k: int = Query(DEFAULT_K, ge=1, le=MAX_K),
    page: int = Query(1, ge=1, alias="pageNumber"),
    per_page: int = Query(DEFAULT_PER_PAGE, ge=1, alias="perPage"),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    trending = await service.trending(days, k)
    items, pagination = paginate([_dump(t) for t in trending], page, per_page)
    return _envelope(
        {"trendingProducts": items, "period": f"{days} days", "pagination": pagination},
        "Trending products retrieved successfully",
    )


# =============================================================================
# Model maintenance
# =============================================================================

@router.post("/train", summary="Train models")
async def train_models(
    request: Optional[TrainRequest] = Body(None),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    """
    Full (or incremental) training for one strategy or all of them.

    Fresh models are skipped unless ``force`` is set.
    """
    request = request or TrainRequest()
    if request.incremental:
        reports = await service.train_incremental(request.strategy)
    else:
        reports = await service.train(request.strategy, force=request.force)
    logger.info(
        "Training requested",
        strategy=request.strategy.value if request.strategy else "all",
        incremental=request.incremental,
        statuses={name: report.status for name, report in reports.items()},
    )
    return _envelope(
        {name: _dump(report) for name, report in reports.items()},
        "Models trained successfully",
    )


@router.get("/memory", summary="Memory usage")
async def memory_stats(
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    return _envelope(service.memory_stats(), "Memory stats retrieved successfully")


@router.post("/memory/clear", summary="Drop in-memory models")
async def clear_memory(
    strategy: Optional[str] = Query(None),
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    cleared = service.clear_memory(strategy)
    return _envelope({"cleared": cleared}, "In-memory models cleared")


@router.put("/hybrid/weights", summary="Update hybrid CF/CB weights")
async def update_hybrid_weights(
    request: WeightsRequest,
    service: RecommendationService = Depends(get_recommendation_service),
) -> Dict[str, Any]:
    weights = service.update_weights(request.cf_weight, request.cb_weight)
    return _envelope(
        {"cfWeight": weights["cf_weight"], "cbWeight": weights["cb_weight"]},
        "Hybrid weights updated",
    )

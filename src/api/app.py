"""
FastAPI Application Factory.

This module provides a clean, configurable FastAPI application setup.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:app --host 0.0.0.0 --port 8080

    # Or use the convenience function
    from api.app import create_app
    app = create_app()
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.dependencies import get_recommendation_service
from config.settings import get_settings
from core.errors import ModelUnavailableError, RecommendationError
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Runs on startup:
    - Initialize logging
    - Optionally load persisted model state

    Runs on shutdown:
    - Log shutdown
    """
    settings = get_settings()

    # Configure logging based on environment
    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting recommendation API",
        environment=settings.environment,
        port=settings.port,
        strict_load_only=settings.strict_load_only,
    )

    # Models are otherwise loaded (or trained) on first request
    if settings.preload_models:
        service = app.dependency_overrides.get(get_recommendation_service, get_recommendation_service)()
        loaded = await service.preload()
        logger.info("Preloaded persisted models", loaded=loaded)

    yield  # Application is running

    logger.info("Shutting down recommendation API")


# =============================================================================
# Exception handlers
# =============================================================================

async def recommendation_error_handler(request: Request, exc: RecommendationError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Recommendation request failed",
        path=request.url.path,
        error=exc.code,
        message=exc.message,
        status_code=exc.status_code,
    )
    headers = {}
    if isinstance(exc, ModelUnavailableError) and exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers or None)


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("Invalid request", path=request.url.path, message=str(exc))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "invalid_request", "message": str(exc), "retryable": False},
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title="Fashion Recommendation API",
        description="""
        Fashion recommendation engine with three interchangeable strategies.

        ## Strategies

        - **Graph**: node embeddings over the user-product interaction graph
        - **Hybrid**: collaborative filtering blended with content-based scores
        - **Content**: TF-IDF similarity over product documents

        ## Main Endpoints

        - `/api/recommend/{gnn,hybrid,content,best}/{user_id}` - Ranked products
        - `/api/recommend/personalized/{user_id}` - Around a viewed product
        - `/api/recommend/outfits/{user_id}` - Outfits anchored on a product
        - `/api/recommend/train` - Offline training trigger

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Model freshness per strategy
        - `/ready` - Kubernetes readiness probe
        - `/live` - Kubernetes liveness probe
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    # =========================================================================
    # Error handling
    # =========================================================================

    app.add_exception_handler(RecommendationError, recommendation_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.recommendations import router as recommendations_router
    app.include_router(recommendations_router)

    return app


# Create default app instance for uvicorn
# Usage: uvicorn api.app:app
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    # In-memory models live per worker process
    uvicorn.run("api.app:app", host=settings.host, port=settings.port, workers=settings.workers)

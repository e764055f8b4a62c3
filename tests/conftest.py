"""
Pytest configuration and shared fixtures for the recommendation engine tests.
"""
import os
import sys
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), "src"))

# Load environment variables
from dotenv import load_dotenv
load_dotenv(os.path.join(os.path.dirname(os.path.dirname(__file__)), ".env"))


# ============================================================================
# Fixtures: Catalog
# ============================================================================

def _product(pid, name, description, category, brand, price, tags, colors, rating, **extra):
    from recs.models import Product
    return Product(
        id=pid,
        name=name,
        description=description,
        category=category,
        brand=brand,
        price=price,
        outfit_tags=tags,
        colors=colors,
        rating=rating,
        **extra,
    )


@pytest.fixture
def catalog_products() -> list:
    """Twelve products across the five catalog categories."""
    return [
        _product("t1", "Classic Cotton Shirt", "Breathable cotton shirt for everyday casual wear",
                 "Tops", "Acme", 40.0, ["top", "shirt", "casual"], ["white", "blue"], 4.5,
                 compatible_products=["b1", "s1"], feature_vector=[1.0, 0.0, 0.2]),
        _product("t2", "Linen Summer Shirt", "Light linen shirt for warm casual days",
                 "Tops", "Breeze", 55.0, ["top", "shirt", "casual"], ["beige"], 4.0,
                 feature_vector=[0.9, 0.1, 0.2]),
        _product("t3", "Polo Shirt", "Classic pique polo shirt",
                 "Tops", "Acme", 35.0, ["top", "casual"], ["navy"], 3.8,
                 feature_vector=[0.8, 0.2, 0.0]),
        _product("b1", "Slim Fit Jeans", "Stretch denim jeans with a slim fit",
                 "Bottoms", "Denimco", 60.0, ["bottom", "pants", "casual"], ["blue"], 4.2,
                 compatible_products=["t1"], feature_vector=[0.1, 1.0, 0.0]),
        _product("b2", "Chino Pants", "Cotton chino pants for smart casual looks",
                 "Bottoms", "Acme", 50.0, ["bottom", "pants"], ["khaki"], 3.9,
                 feature_vector=[0.2, 0.9, 0.1]),
        _product("s1", "Leather Sneakers", "Minimal white leather sneakers",
                 "Shoes", "Stride", 80.0, ["shoes", "casual"], ["white"], 4.6,
                 compatible_products=["t1"], feature_vector=[0.0, 0.1, 1.0]),
        _product("s2", "Running Shoes", "Lightweight running shoes with cushioned sole",
                 "Shoes", "Stride", 90.0, ["shoes", "sport"], ["black"], 4.1,
                 feature_vector=[0.0, 0.2, 0.9]),
        _product("d1", "Floral Summer Dress", "Flowing floral dress for summer days",
                 "Dresses", "Bloom", 65.0, ["dress", "casual"], ["red"], 4.7,
                 feature_vector=[0.5, 0.5, 0.5]),
        _product("d2", "Evening Gown", "Elegant satin evening dress",
                 "Dresses", "Bloom", 120.0, ["dress", "elegant"], ["black"], 4.3),
        _product("a1", "Leather Belt", "Brown leather belt with brass buckle",
                 "Accessories", "Acme", 25.0, ["accessory"], ["brown"], 4.4),
        _product("a2", "Silver Necklace", "Delicate silver pendant necklace",
                 "Accessories", "Shine", 35.0, ["accessory", "elegant"], ["silver"], 4.9),
        _product("a3", "Kids Cartoon Cap", "Colorful cap with a cartoon print",
                 "Accessories", "Tiny", 15.0, ["accessory"], ["yellow"], 5.0),
    ]


@pytest.fixture
def catalog_users() -> list:
    """
    Users covering the main request paths.

    u_male      male, history across tops/bottoms/shoes
    u_female    female, history across dresses/accessories/shoes
    u_tops      male, five purchases all in Tops
    u_new       female, no history
    u_nogender  no gender, small history
    """
    from recs.models import User

    return [
        User(id="u_male", gender="male", age=30, preferences={"style": "casual"}, interaction_history=[
            {"product_id": "t1", "interaction_type": "purchase", "rating": 5},
            {"product_id": "b1", "interaction_type": "like", "rating": 4},
            {"product_id": "s1", "interaction_type": "view"},
        ]),
        User(id="u_female", gender="female", age=24, preferences={"style": "casual"}, interaction_history=[
            {"product_id": "d1", "interaction_type": "purchase", "rating": 5},
            {"product_id": "a2", "interaction_type": "cart", "rating": 4},
            {"product_id": "s1", "interaction_type": "view"},
        ]),
        User(id="u_tops", gender="male", age=30, interaction_history=[
            {"product_id": pid, "interaction_type": "purchase", "rating": 5}
            for pid in ("t1", "t2", "t3", "t1", "t2")
        ]),
        User(id="u_new", gender="female", age=22),
        User(id="u_nogender", age=40, interaction_history=[
            {"product_id": "t2", "interaction_type": "view"},
            {"product_id": "a1", "interaction_type": "like"},
        ]),
    ]


@pytest.fixture
def entity_store(catalog_users, catalog_products):
    """In-memory entity store over the test catalog."""
    from recs.entity_store import InMemoryEntityStore
    return InMemoryEntityStore(users=catalog_users, products=catalog_products)


@pytest.fixture
def empty_store():
    from recs.entity_store import InMemoryEntityStore
    return InMemoryEntityStore()


# ============================================================================
# Fixtures: Settings & Services
# ============================================================================

@pytest.fixture
def model_dir(tmp_path):
    """Isolated directory for persisted model state."""
    return tmp_path / "models"


@pytest.fixture
def test_settings(model_dir):
    """Small, seeded settings writing models under tmp_path."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing(
        model_dir=model_dir,
        embedding_dim=8,
        max_nodes=100,
        batch_size=4,
    )


@pytest.fixture
def strict_settings(model_dir):
    """Same as test_settings but never trains inline."""
    from config.settings import get_settings_for_testing
    return get_settings_for_testing(
        model_dir=model_dir,
        embedding_dim=8,
        max_nodes=100,
        batch_size=4,
        strict_load_only=True,
    )


@pytest.fixture
def model_store(test_settings):
    from engines.factory import create_model_store
    return create_model_store(test_settings)


@pytest.fixture
def service(entity_store, test_settings):
    """Recommendation service with inline training enabled."""
    from services.recommendation_service import RecommendationService
    return RecommendationService(entity_store, test_settings)


@pytest.fixture
def strict_service(entity_store, strict_settings):
    """Recommendation service in strict load-only mode."""
    from services.recommendation_service import RecommendationService
    return RecommendationService(entity_store, strict_settings)


# ============================================================================
# Fixtures: FastAPI Test Client
# ============================================================================

@pytest.fixture
def app(service):
    """FastAPI application wired to the test service."""
    from api.app import create_app
    from api.dependencies import get_recommendation_service

    application = create_app()
    application.dependency_overrides[get_recommendation_service] = lambda: service
    return application


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ============================================================================
# Markers auto-use
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: marks tests as unit tests")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "supabase: marks tests that require Supabase")


# ============================================================================
# Skip conditions
# ============================================================================

def pytest_collection_modifyitems(config, items):
    """Auto-skip Supabase tests when no credentials are configured."""
    skip_supabase = pytest.mark.skip(reason="Supabase tests require credentials")

    supabase_url = os.getenv("SUPABASE_URL")

    for item in items:
        if "supabase" in item.keywords and not supabase_url:
            item.add_marker(skip_supabase)

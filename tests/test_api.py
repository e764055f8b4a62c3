"""
Tests for FastAPI server
"""
import pytest


# =============================================================================
# Health
# =============================================================================

class TestHealth:
    """Tests for health endpoints."""

    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers
        assert float(response.headers["X-Process-Time-Ms"]) >= 0

    async def test_request_id_is_echoed(self, async_client):
        response = await async_client.get("/live", headers={"X-Request-ID": "abc123"})

        assert response.headers["X-Request-ID"] == "abc123"

    async def test_detailed_health(self, async_client):
        """Test per-strategy model status is reported."""
        response = await async_client.get("/health/detailed")

        assert response.status_code == 200
        body = response.json()
        assert body["checks"]["config"] == "ok"
        assert set(body["checks"]["models"]) == {"graph", "hybrid", "content"}

    async def test_liveness_and_readiness(self, async_client):
        assert (await async_client.get("/live")).json() == {"status": "alive"}
        assert (await async_client.get("/ready")).json() == {"status": "ready"}


# =============================================================================
# Recommendations
# =============================================================================

class TestRecommendationEndpoints:
    """Tests for /api/recommend ranked endpoints."""

    @pytest.mark.parametrize("route", ["gnn", "hybrid", "content", "best"])
    async def test_ranked_routes(self, async_client, route):
        response = await async_client.get(f"/api/recommend/{route}/u_male", params={"k": 5})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["products"]
        assert body["data"]["pagination"]["count"] <= 5

    async def test_unknown_user_is_404(self, async_client):
        response = await async_client.get("/api/recommend/hybrid/ghost")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    async def test_no_history_is_409(self, async_client):
        response = await async_client.get("/api/recommend/content/u_new")

        assert response.status_code == 409
        assert response.json()["retryable"] is False

    async def test_pagination(self, async_client):
        """Test k results are split into pages of perPage."""
        response = await async_client.get(
            "/api/recommend/personalized/u_new",
            params={"k": 5, "perPage": 2},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["pagination"] == {"page": 1, "pages": 3, "count": 5, "perPage": 2}
        assert [p["id"] for p in data["products"]] == ["a2", "d1"]
        assert data["coldStart"] is True

    async def test_last_page(self, async_client):
        response = await async_client.get(
            "/api/recommend/personalized/u_new",
            params={"k": 5, "perPage": 2, "pageNumber": 3},
        )

        assert [p["id"] for p in response.json()["data"]["products"]] == ["d2"]

    async def test_unknown_strategy_is_400(self, async_client):
        response = await async_client.get("/api/recommend/personalized/u_male", params={"strategy": "bogus"})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    async def test_strict_mode_is_503(self, app, strict_service, async_client):
        """Test a missing model in strict mode asks the caller to retry later."""
        from api.dependencies import get_recommendation_service

        app.dependency_overrides[get_recommendation_service] = lambda: strict_service

        response = await async_client.get("/api/recommend/hybrid/u_male")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "180"
        assert response.json()["retryable"] is True


class TestOutfitEndpoint:
    """Tests for /api/recommend/outfits."""

    async def test_outfits(self, async_client):
        response = await async_client.get(
            "/api/recommend/outfits/u_male",
            params={"productId": "t1", "k": 2},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["outfits"]
        outfit = data["outfits"][0]
        assert outfit["name"] == "Men's Outfit 1"
        assert "compatibilityScore" in outfit
        assert "totalPrice" in outfit

    async def test_product_id_required(self, async_client):
        response = await async_client.get("/api/recommend/outfits/u_male")

        assert response.status_code == 400
        assert response.json()["error"] == "missing_precondition"

    async def test_unknown_product_is_404(self, async_client):
        response = await async_client.get("/api/recommend/outfits/u_male", params={"productId": "gone"})

        assert response.status_code == 404


class TestCatalogEndpoints:
    """Tests for similar and trending products."""

    async def test_similar(self, async_client):
        response = await async_client.get("/api/recommend/similar/t1", params={"k": 3})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["productId"] == "t1"
        assert [s["product"]["id"] for s in data["similarProducts"]][:2] == ["t2", "t3"]

    async def test_trending(self, async_client):
        response = await async_client.get("/api/recommend/trending", params={"k": 3})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["period"] == "30 days"
        assert [t["interactionCount"] for t in data["trendingProducts"]] == [3, 3, 2]


class TestMaintenanceEndpoints:
    """Tests for training, memory and weights endpoints."""

    async def test_train_single_strategy(self, async_client):
        response = await async_client.post("/api/recommend/train", json={"strategy": "content"})

        assert response.status_code == 200
        data = response.json()["data"]
        assert list(data) == ["content"]
        assert data["content"]["status"] == "trained"
        assert data["content"]["productCount"] == 12

    async def test_memory_and_clear(self, async_client):
        await async_client.post("/api/recommend/train", json={"strategy": "content"})

        stats = (await async_client.get("/api/recommend/memory")).json()["data"]
        cleared = (await async_client.post("/api/recommend/memory/clear", params={"strategy": "content"})).json()

        assert stats["strategies"]["content"]["trained"] is True
        assert cleared["data"]["cleared"] == ["content"]

    async def test_update_weights(self, async_client):
        response = await async_client.put(
            "/api/recommend/hybrid/weights",
            json={"cfWeight": 0.7, "cbWeight": 0.3},
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"cfWeight": 0.7, "cbWeight": 0.3}

    async def test_weights_must_sum_to_one(self, async_client):
        response = await async_client.put(
            "/api/recommend/hybrid/weights",
            json={"cfWeight": 0.5, "cbWeight": 0.6},
        )

        assert response.status_code == 400
        assert "sum to 1.0" in response.json()["message"]

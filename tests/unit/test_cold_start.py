"""
Tests for the top-rated cold-start fallback.
"""

import pytest


@pytest.fixture
def cold_start(entity_store):
    from services.cold_start import ColdStartRecommender
    return ColdStartRecommender(entity_store, page_size=3)


class TestColdStart:
    """Tests for ColdStartRecommender.recommend."""

    async def test_top_rated_for_gender(self, cold_start, entity_store):
        """Test results follow rating within the gender categories, kids products excluded."""
        user = await entity_store.get_user("u_new")

        products = await cold_start.recommend(user, 5)

        assert [p.id for p in products] == ["a2", "d1", "s1", "a1", "d2"]

    async def test_deterministic(self, cold_start, entity_store):
        user = await entity_store.get_user("u_new")

        first = await cold_start.recommend(user, 4)
        second = await cold_start.recommend(user, 4)

        assert [p.id for p in first] == [p.id for p in second]

    async def test_anonymous_sees_every_category(self, cold_start):
        """Test no user means no gender or age filter."""
        products = await cold_start.recommend(None, 3)

        assert [p.id for p in products] == ["a3", "a2", "d1"]

    async def test_predicate_and_exclusions(self, cold_start, entity_store):
        """Test the extra predicate and excluded ids."""
        user = await entity_store.get_user("u_new")

        products = await cold_start.recommend(
            user, 5,
            predicate=lambda p: p.category == "Dresses",
            exclude_ids={"d1"},
        )

        assert [p.id for p in products] == ["d2"]

    async def test_explicit_categories(self, cold_start, entity_store):
        user = await entity_store.get_user("u_male")

        products = await cold_start.recommend(user, 2, categories=["Bottoms"])

        assert [p.id for p in products] == ["b1", "b2"]

    async def test_non_positive_k(self, cold_start):
        assert await cold_start.recommend(None, 0) == []

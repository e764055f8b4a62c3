"""
Tests for the personalization layer and its user context.
"""

import pytest


@pytest.fixture
def layer():
    from scoring.personalization import PersonalizationLayer
    return PersonalizationLayer()


@pytest.fixture
def products(catalog_products):
    return {p.id: p for p in catalog_products}


def _empty_history():
    from scoring.context import HistoryAnalysis
    return HistoryAnalysis()


class TestAgeBand:
    """Tests for age_band."""

    @pytest.mark.parametrize("age,band", [
        (None, None),
        (12, None),
        (13, "13-18"),
        (18, "13-18"),
        (19, "19-25"),
        (35, "26-35"),
        (36, "36-50"),
        (51, "51+"),
    ])
    def test_band_edges(self, age, band):
        from scoring.context import age_band

        result = age_band(age)

        assert (result.value if result else None) == band


class TestHistoryAnalysis:
    """Tests for HistoryAnalysis.from_history."""

    def test_ranked_by_history_weight(self, catalog_users, products):
        """Test purchases outrank likes and views."""
        from scoring.context import HistoryAnalysis

        u_male = catalog_users[0]

        history = HistoryAnalysis.from_history(u_male.interaction_history, products)

        assert history.categories == ["Tops", "Bottoms", "Shoes"]
        assert history.brands == ["Acme", "Denimco", "Stride"]
        assert history.styles[0] == "casual"
        assert not history.is_empty

    def test_unknown_products_ignored(self):
        from recs.models import InteractionEvent
        from scoring.context import HistoryAnalysis

        history = HistoryAnalysis.from_history([InteractionEvent(product_id="gone")], {})

        assert history.is_empty


class TestScore:
    """Tests for PersonalizationLayer.score."""

    def test_gender_and_age_multipliers(self, layer, products):
        """Test allowed categories are boosted and others damped."""
        from recs.models import User

        user = User(id="u", gender="male", age=30)

        shirt = layer.score(products["t1"], 1.0, user, _empty_history())
        dress = layer.score(products["d1"], 1.0, user, _empty_history())

        assert shirt.score == pytest.approx(1.3 * 1.2)
        assert dress.score == pytest.approx(0.3 * 1.2)
        assert "suitable for male" in shirt.factors

    def test_history_multipliers(self, layer, products, catalog_users):
        """Test category, brand and style history compound."""
        from scoring.context import HistoryAnalysis
        from recs.models import User

        history = HistoryAnalysis.from_history(catalog_users[0].interaction_history, products)

        scored = layer.score(products["t3"], 1.0, User(id="u"), history)

        assert scored.score == pytest.approx(1.4 * 1.3 * 1.25)
        assert "you have interacted with Tops" in scored.factors
        assert "you have shown interest in Acme" in scored.factors

    def test_price_outside_range(self, layer, products):
        from recs.models import User

        user = User(id="u", preferences={"price_range": {"max": 50}})

        assert layer.score(products["t1"], 1.0, user, _empty_history()).score == pytest.approx(1.0)
        assert layer.score(products["b1"], 1.0, user, _empty_history()).score == pytest.approx(0.5)

    def test_color_and_style_preferences(self, layer, products):
        """Test preferred colors boost by matched fraction and style by a flat factor."""
        from recs.models import User

        user = User(id="u", preferences={"style": "Casual", "color_preferences": ["White", "red"]})

        scored = layer.score(products["t1"], 1.0, user, _empty_history())

        assert scored.score == pytest.approx(1.2 * 1.1)
        assert "has your favorite colors (white)" in scored.factors


class TestRerank:
    """Tests for PersonalizationLayer.rerank."""

    def test_strict_gender_drops_disallowed(self, layer, products):
        from recs.models import User

        user = User(id="u", gender="male", age=30)
        candidates = [products["d1"], products["t1"]]
        base = {"d1": 1.0, "t1": 0.1}

        soft = layer.rerank(candidates, base, user, _empty_history())
        strict = layer.rerank(candidates, base, user, _empty_history(), strict_gender=True)

        assert [s.product.id for s in soft] == ["d1", "t1"]
        assert [s.product.id for s in strict] == ["t1"]

    def test_ties_keep_candidate_order(self, layer, products):
        """Test equal scores keep their original order."""
        from recs.models import User

        candidates = [products["b2"], products["t2"], products["a1"]]
        base = {"b2": 0.5, "t2": 0.5, "a1": 0.5}

        ranked = layer.rerank(candidates, base, User(id="u"), _empty_history())

        assert [s.product.id for s in ranked] == ["b2", "t2", "a1"]

    def test_exclusions(self, layer, products):
        """Test excluded ids, unscored candidates, duplicates and child products are dropped."""
        from recs.models import User

        user = User(id="u", age=30)
        candidates = [products["t1"], products["t2"], products["t1"], products["a3"], products["b1"]]
        base = {"t1": 0.9, "t2": 0.8, "a3": 1.0}

        ranked = layer.rerank(candidates, base, user, _empty_history(), exclude_ids=["t2"])

        assert [s.product.id for s in ranked] == ["t1"]
        assert ranked[0].base_score == 0.9

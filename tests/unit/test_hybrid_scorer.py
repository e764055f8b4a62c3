"""
Tests for the hybrid CF + CB strategy.
"""

import pytest


@pytest.fixture
def scorer(entity_store, test_settings, model_store):
    from engines.hybrid_scorer import HybridScorer
    return HybridScorer(entity_store, test_settings, model_store)


class TestVectorCosine:
    """Tests for vector_cosine."""

    def test_identical(self):
        from engines.hybrid_scorer import vector_cosine
        assert vector_cosine([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_mismatched_or_empty(self):
        """Test mismatched, empty and zero vectors score 0."""
        from engines.hybrid_scorer import vector_cosine

        assert vector_cosine([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0
        assert vector_cosine([], [1.0]) == 0.0
        assert vector_cosine([0.0, 0.0], [1.0, 1.0]) == 0.0


class TestUpdateWeights:
    """Tests for HybridScorer.update_weights."""

    def test_valid_weights(self, scorer):
        scorer.update_weights(0.7, 0.3)

        assert scorer.cf_weight == 0.7
        assert scorer.cb_weight == 0.3

    @pytest.mark.parametrize("cf,cb,message", [
        (1.2, -0.2, "between 0 and 1"),
        (0.5, 0.6, "sum to 1.0"),
    ])
    def test_invalid_weights(self, scorer, cf, cb, message):
        """Test out-of-range or non-normalized weights are rejected unchanged."""
        with pytest.raises(ValueError, match=message):
            scorer.update_weights(cf, cb)

        assert scorer.cf_weight == 0.6
        assert scorer.cb_weight == 0.4


class TestTraining:
    """Tests for matrix training and persistence."""

    async def test_full_training(self, scorer):
        report = await scorer.train()

        assert report.status == "trained"
        assert report.user_count == 4
        assert report.product_count == 12
        assert scorer.utility.shape == (4, 12)
        assert scorer.user_sim.is_sparse is False

    async def test_load_rebuilds_similarities(self, scorer, entity_store, test_settings, model_store):
        """Test a loaded model recomputes similarities from persisted rows."""
        from engines.hybrid_scorer import HybridScorer

        await scorer.train()
        scorer.update_weights(0.8, 0.2)
        await scorer.train(force=True)

        other = HybridScorer(entity_store, test_settings, model_store)

        assert await other.load() is True
        assert other.utility.row_map("u_male") == scorer.utility.row_map("u_male")
        assert other.user_sim is not None and other.item_sim is not None
        assert other.cf_weight == 0.8

    async def test_sparse_similarity_above_limit(self, entity_store, model_store):
        """Test similarities switch to top-K maps above the dense limit."""
        from config.settings import get_settings_for_testing
        from engines.hybrid_scorer import HybridScorer

        settings = get_settings_for_testing(dense_similarity_limit=2, user_neighbors_k=1, item_neighbors_k=2)
        scorer = HybridScorer(entity_store, settings, model_store)

        await scorer.train()

        assert scorer.user_sim.is_sparse
        assert scorer.item_sim.is_sparse
        assert scorer.user_sim.get(0, 0) == 1.0
        assert scorer.item_sim.get(0, 1) == pytest.approx(scorer.item_sim.get(1, 0))


class TestScoring:
    """Tests for hybrid scoring."""

    async def test_tops_history_ranks_tops_first(self, scorer, entity_store):
        """Test a Tops-only purchaser gets the Tops item its neighbour bought on top."""
        await scorer.ensure_ready()
        user = await entity_store.get_user("u_tops")

        pool = await scorer.candidate_pool(user, 30)
        scores = await scorer.score_candidates(user, pool)

        best = max(scores, key=scores.get)
        assert best == "t1"
        assert scores["t1"] > scores["s2"]

    async def test_collaborative_default(self, scorer, entity_store):
        """Test items no neighbour rated get the CF default."""
        await scorer.ensure_ready()
        user = await entity_store.get_user("u_tops")

        cf = scorer.collaborative_scores(user, ["t1", "s2"])

        assert cf["t1"] == pytest.approx(5.0)
        assert cf["s2"] == pytest.approx(0.1)

    async def test_user_outside_matrix_with_history(self, scorer):
        """Test a user missing from the matrix is scored from their history."""
        from recs.models import User

        await scorer.ensure_ready()
        guest = User(id="guest", gender="male", interaction_history=[
            {"product_id": "t1", "interaction_type": "purchase", "rating": 5},
        ])

        assert scorer.knows_user(guest)
        scores = await scorer.score_candidates(guest, ["b1", "s2"])

        assert set(scores) == {"b1", "s2"}

    async def test_user_without_usable_history(self, scorer):
        """Test a user with no interaction on trained products is unknown."""
        from recs.models import User

        await scorer.ensure_ready()
        stranger = User(id="stranger", interaction_history=[{"product_id": "gone"}])

        assert not scorer.knows_user(stranger)
        assert await scorer.score_candidates(stranger, ["t1"]) == {}

    async def test_content_score(self, scorer, entity_store):
        """Test the content part adds style, price and feature similarity, capped at 1."""
        from recs.models import User

        product = await entity_store.get_product("t1")
        user = User(id="x", preferences={
            "style": "casual",
            "price_range": {"min": 10, "max": 50},
        }, content_profile={"feature_vector": [1.0, 0.0, 0.2]})

        assert scorer.content_score(user, product) == pytest.approx(0.7)
        assert scorer.content_score(User(id="y"), product) == 0.0

    async def test_candidate_pool_prefers_history_matches(self, scorer, entity_store):
        """Test items sharing history attributes come before the rest."""
        await scorer.ensure_ready()
        user = await entity_store.get_user("u_tops")

        pool = await scorer.candidate_pool(user, 3)

        # best rated first among items sharing a category, brand or tag
        assert pool == ["d1", "s1", "t1"]

    async def test_seed_similarity(self, scorer):
        """Test seed similarity uses the item similarity index."""
        await scorer.ensure_ready()

        similarities = scorer.seed_similarity("t1", ["t2", "d2"])

        assert similarities["t2"] > similarities["d2"]

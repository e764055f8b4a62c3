"""
Tests for the configuration module.
"""

from pathlib import Path

import pytest
from pydantic import ValidationError


class TestSettings:
    """Tests for Settings class."""

    def test_defaults(self):
        """Test default values without any environment."""
        from config.settings import Settings

        settings = Settings(_env_file=None)

        assert settings.port == 8080
        assert settings.cf_weight == 0.6
        assert settings.cb_weight == 0.4
        assert settings.strict_load_only is False
        assert settings.candidate_pool_factor == 3

    def test_is_development_property(self):
        """Test is_development property."""
        from config.settings import Settings

        for env in ["development", "dev", "local"]:
            settings = Settings(_env_file=None, environment=env)
            assert settings.is_development is True

        settings = Settings(_env_file=None, environment="production")
        assert settings.is_development is False

    def test_is_production_property(self):
        """Test is_production property."""
        from config.settings import Settings

        for env in ["production", "prod"]:
            settings = Settings(_env_file=None, environment=env)
            assert settings.is_production is True

        settings = Settings(_env_file=None, environment="development")
        assert settings.is_production is False

    def test_cors_origins_parsing(self):
        """Test that CORS origins can be parsed from comma-separated string."""
        from config.settings import Settings

        settings = Settings(
            _env_file=None,
            cors_origins="http://localhost:3000,http://localhost:5173",
        )

        assert settings.cors_origins == ["http://localhost:3000", "http://localhost:5173"]

    def test_cache_timeout_seconds(self):
        """Test the staleness timeout is derived from minutes."""
        from config.settings import Settings

        settings = Settings(_env_file=None, cache_timeout_minutes=2)

        assert settings.cache_timeout_seconds == 120

    def test_models_dir_defaults_under_base_dir(self):
        """Test models_dir falls back to <base_dir>/models."""
        from config.settings import Settings

        settings = Settings(_env_file=None, base_dir="/srv/recs")
        assert settings.models_dir == Path("/srv/recs/models")

        settings = Settings(_env_file=None, model_dir="/tmp/state")
        assert settings.models_dir == Path("/tmp/state")

    def test_hybrid_weights_must_sum_to_one(self):
        """Test that mismatched CF/CB weights are rejected."""
        from config.settings import Settings

        with pytest.raises(ValidationError):
            Settings(_env_file=None, cf_weight=0.7, cb_weight=0.7)

    def test_strict_mode_from_environment(self, monkeypatch):
        """Test RECOMMEND_STRICT_LOAD_ONLY toggles strict load-only mode."""
        from config.settings import Settings

        monkeypatch.setenv("RECOMMEND_STRICT_LOAD_ONLY", "true")

        settings = Settings(_env_file=None)
        assert settings.strict_load_only is True

    def test_arena_capacity(self):
        """Test the embedding arena never holds fewer slots than max_nodes."""
        from config.settings import Settings

        assert Settings(_env_file=None, max_nodes=50).embedding_arena_capacity == 100
        assert Settings(_env_file=None, max_nodes=50, arena_capacity=10).embedding_arena_capacity == 50
        assert Settings(_env_file=None, max_nodes=50, arena_capacity=80).embedding_arena_capacity == 80

    def test_supabase_configured(self):
        """Test supabase_configured needs both URL and key."""
        from config.settings import Settings

        assert Settings(_env_file=None, supabase_url="", supabase_service_key="").supabase_configured is False
        assert Settings(
            _env_file=None,
            supabase_url="https://test.supabase.co",
            supabase_service_key="test-key",
        ).supabase_configured is True


class TestGetSettingsForTesting:
    """Tests for the testing settings factory."""

    def test_testing_defaults(self):
        """Test testing environment is seeded and in debug mode."""
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing()

        assert settings.environment == "testing"
        assert settings.debug is True
        assert settings.random_seed == 7

    def test_overrides(self, tmp_path):
        """Test overrides are applied."""
        from config.settings import get_settings_for_testing

        settings = get_settings_for_testing(model_dir=tmp_path, batch_size=5)

        assert settings.models_dir == tmp_path
        assert settings.batch_size == 5


class TestConstants:
    """Tests for algorithm constants."""

    def test_interaction_weights(self):
        """Test interaction types are weighted view < like < cart < review < purchase."""
        from config.constants import INTERACTION_WEIGHTS

        order = ["view", "like", "cart", "review", "purchase"]
        assert [INTERACTION_WEIGHTS[t] for t in order] == [1, 2, 3, 4, 5]

    def test_outfit_weights_sum_to_one(self):
        """Test both compatibility weightings sum to 1."""
        from config.constants import DEFAULT_OUTFIT_CONFIG

        assert sum(DEFAULT_OUTFIT_CONFIG.WEIGHTS_WITH_SIMILARITY.values()) == pytest.approx(1.0)
        assert sum(DEFAULT_OUTFIT_CONFIG.WEIGHTS_WITHOUT_SIMILARITY.values()) == pytest.approx(1.0)

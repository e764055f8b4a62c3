"""
Centralized settings management using pydantic-settings.

All environment variables and configuration values are defined here.
Use get_settings() to access the singleton settings instance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Optional environment variables:
        - SUPABASE_URL / SUPABASE_SERVICE_KEY: Entity store backend. When
          unset the engine runs on the in-memory store.
        - RECOMMEND_STRICT_LOAD_ONLY: Never train inline; fail with 503
          when no fresh persisted model exists.
        - MODEL_DIR: Where persisted model state is written
        - ENVIRONMENT: Environment name (development, staging, production)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ==========================================================================
    # Environment
    # ==========================================================================
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Debug mode")

    @property
    def is_development(self) -> bool:
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # ==========================================================================
    # Server Configuration
    # ==========================================================================
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of uvicorn workers")

    cors_origins: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        description="Allowed CORS origins"
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",")]
        return v

    # ==========================================================================
    # Supabase Configuration (entity store)
    # ==========================================================================
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service role key")
    users_table: str = Field(default="users", description="Table holding users and their interaction history")
    products_table: str = Field(default="products", description="Table holding the product catalog")

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)

    catalog_path: Optional[Path] = Field(
        default=None,
        description="JSON catalog ({users: [...], products: [...]}) for the in-memory store"
    )

    # ==========================================================================
    # Path Configuration
    # ==========================================================================
    base_dir: Path = Field(
        default=Path("."),
        description="Base directory for data files"
    )

    @field_validator("base_dir", mode="before")
    @classmethod
    def parse_base_dir(cls, v):
        if isinstance(v, str):
            return Path(v)
        return v

    model_dir: Optional[Path] = Field(
        default=None,
        description="Directory for persisted model state (default: <base_dir>/models)"
    )

    @property
    def models_dir(self) -> Path:
        if self.model_dir:
            return Path(self.model_dir)
        return self.base_dir / "models"

    # ==========================================================================
    # Model Cache / Persistence
    # ==========================================================================
    cache_timeout_minutes: float = Field(
        default=30,
        description="Persisted state older than this is stale and must be retrained"
    )
    strict_load_only: bool = Field(
        default=False,
        validation_alias=AliasChoices("strict_load_only", "recommend_strict_load_only"),
        description="Fail with a retryable error instead of training inline"
    )
    preload_models: bool = Field(
        default=False,
        description="Try to load persisted state for every strategy at startup"
    )
    single_flight_training: bool = Field(
        default=True,
        description="Serialize concurrent training/loading per strategy"
    )

    @property
    def cache_timeout_seconds(self) -> float:
        return self.cache_timeout_minutes * 60

    # ==========================================================================
    # Builder Limits
    # ==========================================================================
    max_nodes: int = Field(default=5000, ge=1, description="Node ceiling for the graph strategy")
    max_users: int = Field(default=2000, ge=1, description="User cap for the utility matrix")
    max_products: int = Field(default=5000, ge=1, description="Product cap for matrix/content strategies")
    batch_size: int = Field(default=100, ge=1, description="Entity store page size")
    memory_cleanup_interval: int = Field(
        default=50,
        ge=1,
        description="Run a full garbage collection every N reclamation calls"
    )

    # ==========================================================================
    # Embedding Strategy
    # ==========================================================================
    embedding_dim: int = Field(default=32, ge=1, description="Node embedding dimensionality")
    learning_rate: float = Field(default=0.01, gt=0, description="Embedding nudge rate")
    training_passes: int = Field(default=3, ge=1, description="Score-driven update passes per run")
    embedding_init_scale: float = Field(default=0.1, gt=0, description="Std-dev of random initial embeddings")
    arena_capacity: Optional[int] = Field(
        default=None,
        description="Embedding arena slots (default: 2 * max_nodes)"
    )
    guest_cache_size: int = Field(
        default=1024,
        ge=1,
        description="Request-time vectors kept for users outside the trained graph"
    )
    random_seed: Optional[int] = Field(
        default=None,
        description="Seed for embedding initialisation, sampling and outfit picks"
    )

    @property
    def embedding_arena_capacity(self) -> int:
        if self.arena_capacity:
            return max(self.arena_capacity, self.max_nodes)
        return 2 * self.max_nodes

    # ==========================================================================
    # Hybrid Strategy
    # ==========================================================================
    cf_weight: float = Field(default=0.6, ge=0, le=1, description="Collaborative filtering weight")
    cb_weight: float = Field(default=0.4, ge=0, le=1, description="Content-based weight")
    dense_similarity_limit: int = Field(
        default=1000,
        description="Above this many users/items similarity is kept as sparse top-K"
    )
    user_neighbors_k: int = Field(default=50, ge=1, description="Top-K user neighbours in sparse mode")
    item_neighbors_k: int = Field(default=30, ge=1, description="Top-K item neighbours in sparse mode")
    similarity_threshold: float = Field(default=0.1, description="Minimum similarity kept/used")

    # ==========================================================================
    # Request Defaults
    # ==========================================================================
    default_k: int = Field(default=10, ge=1, description="Default number of recommendations")
    candidate_pool_factor: int = Field(
        default=3,
        ge=1,
        description="Candidate pool size as a multiple of k"
    )

    @model_validator(mode="after")
    def check_hybrid_weights(self):
        if abs(self.cf_weight + self.cb_weight - 1.0) > 1e-9:
            raise ValueError("cf_weight and cb_weight must sum to 1.0")
        return self


@lru_cache
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Uses lru_cache to ensure only one instance is created.
    Settings are loaded from environment variables and .env file.

    Returns:
        Settings: The application settings instance
    """
    # Try to find .env file in project root
    env_file = Path(__file__).parent.parent.parent / ".env"
    if env_file.exists():
        os.environ.setdefault("ENV_FILE", str(env_file))

    return Settings(_env_file=env_file if env_file.exists() else None)


def get_settings_for_testing(**overrides) -> Settings:
    """
    Create a settings instance for testing with optional overrides.

    This bypasses the cache to allow different settings in tests.

    Args:
        **overrides: Setting values to override

    Returns:
        Settings: A new settings instance with overrides applied
    """
    test_defaults = {
        "environment": "testing",
        "debug": True,
        "random_seed": 7,
    }
    test_defaults.update(overrides)

    return Settings(_env_file=None, **test_defaults)

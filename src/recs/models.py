"""
Pydantic models for the recommendation engine.

Models cover:
- Catalog entities (User, Product, InteractionEvent)
- Transient results (Outfit, RecommendationResult, OutfitResult)
- Training / maintenance reports
- API request/response schemas

All models accept both snake_case and camelCase input and serialize
camelCase through the API.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from config.constants import DEFAULT_RATING, INTERACTION_WEIGHTS, MAX_RATING
from core.utils import normalize_string_set


class CamelModel(BaseModel):
    """Base model: camelCase aliases, snake_case names both accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class InteractionType(str, Enum):
    """How a user interacted with a product."""
    VIEW = "view"
    LIKE = "like"
    CART = "cart"
    REVIEW = "review"
    PURCHASE = "purchase"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> Optional["Gender"]:
        """Lenient parse: unknown or empty values become None."""
        if isinstance(value, Gender):
            return value
        if not value:
            return None
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class Strategy(str, Enum):
    """Interchangeable scoring strategies."""
    GRAPH = "graph"
    HYBRID = "hybrid"
    CONTENT = "content"


# =============================================================================
# Catalog Entities
# =============================================================================

class InteractionEvent(CamelModel):
    """A single recorded interaction. Immutable once recorded."""

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId", "product"))
    interaction_type: InteractionType = InteractionType.VIEW
    rating: Optional[float] = Field(default=None, ge=1, le=5)
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_validator("interaction_type", mode="before")
    @classmethod
    def parse_interaction_type(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("timestamp", mode="after")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def weight(self) -> int:
        return INTERACTION_WEIGHTS.get(self.interaction_type.value, 1)

    @property
    def utility(self) -> float:
        """Utility matrix value: type weight x normalized rating."""
        rating = self.rating if self.rating is not None else DEFAULT_RATING
        return self.weight * (rating / MAX_RATING)


class PriceRange(CamelModel):
    """Preferred price range; either bound may be open."""

    min_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("min_price", "minPrice", "min"))
    max_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("max_price", "maxPrice", "max"))

    def contains(self, price: float) -> bool:
        if self.min_price is not None and price < self.min_price:
            return False
        if self.max_price is not None and price > self.max_price:
            return False
        return True


class UserPreferences(CamelModel):
    style: Optional[str] = None
    color_preferences: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    brands: List[str] = Field(default_factory=list)

    @field_validator("color_preferences", "brands", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []


class ContentProfile(CamelModel):
    """Weighted content representation built from interacted products."""
    feature_vector: List[float] = Field(default_factory=list)
    document: str = ""


class User(CamelModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id", "user_id", "userId"))
    name: Optional[str] = None
    gender: Optional[Gender] = None
    age: Optional[int] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    interaction_history: List[InteractionEvent] = Field(default_factory=list)
    embedding: Optional[List[float]] = None
    content_profile: Optional[ContentProfile] = None

    @field_validator("gender", mode="before")
    @classmethod
    def parse_gender(cls, v):
        return Gender.parse(v)

    @field_validator("preferences", mode="before")
    @classmethod
    def none_to_preferences(cls, v):
        return v if v is not None else {}

    @field_validator("interaction_history", mode="before")
    @classmethod
    def none_to_history(cls, v):
        return v or []

    @property
    def has_history(self) -> bool:
        return len(self.interaction_history) > 0

    @property
    def history_product_ids(self) -> List[str]:
        return [event.product_id for event in self.interaction_history]


class Product(CamelModel):
    id: str = Field(validation_alias=AliasChoices("id", "_id", "product_id", "productId"))
    name: str = ""
    description: str = ""
    category: str = ""
    brand: str = ""
    price: float = 0.0
    sale: float = 0.0
    outfit_tags: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)
    compatible_products: List[str] = Field(default_factory=list)
    rating: float = 0.0
    num_reviews: int = 0
    images: List[str] = Field(default_factory=list)
    feature_vector: List[float] = Field(default_factory=list)

    @field_validator("name", "description", "category", "brand", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return v if v is not None else ""

    @field_validator("price", "sale", "rating", mode="before")
    @classmethod
    def none_to_zero(cls, v):
        return v if v is not None else 0.0

    @field_validator("outfit_tags", "compatible_products", "images", "feature_vector", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []

    @field_validator("colors", mode="before")
    @classmethod
    def color_names(cls, v):
        # Colors arrive either as names or as {"name": ..., "hex": ...} objects
        names = []
        for color in v or []:
            if isinstance(color, dict):
                color = color.get("name")
            if color:
                names.append(str(color))
        return names

    @property
    def tag_set(self) -> set:
        return normalize_string_set(self.outfit_tags)

    @property
    def color_set(self) -> set:
        return normalize_string_set(self.colors)


# =============================================================================
# Results
# =============================================================================

class Outfit(CamelModel):
    """A transient bundle of at least two distinct products."""
    name: str
    products: List[Product]
    style: str
    total_price: float
    compatibility_score: float = Field(ge=0.0, le=1.0)
    gender: str
    description: str = ""

    @property
    def key(self) -> str:
        """Canonical identity: sorted member ids."""
        return "|".join(sorted(p.id for p in self.products))


class RecommendationResult(CamelModel):
    products: List[Product] = Field(default_factory=list)
    model: str
    explanation: str = ""
    strategy: Optional[str] = None
    cold_start: bool = False
    outfits: List[Outfit] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)


class OutfitResult(CamelModel):
    outfits: List[Outfit] = Field(default_factory=list)
    model: str
    explanation: str = ""
    strategy: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class SimilarProduct(CamelModel):
    product: Product
    similarity: float


class TrendingProduct(CamelModel):
    product: Product
    interaction_count: int


class TrainingReport(CamelModel):
    strategy: str
    status: str                       # "trained", "incremental", "fresh"
    duration_ms: float = 0.0
    user_count: int = 0
    product_count: int = 0
    node_count: int = 0
    trained_at: Optional[datetime] = None


# =============================================================================
# API Schemas
# =============================================================================

class TrainRequest(CamelModel):
    strategy: Optional[Strategy] = None
    incremental: bool = False
    force: bool = False


class WeightsRequest(CamelModel):
    cf_weight: float = Field(ge=0.0, le=1.0)
    cb_weight: float = Field(ge=0.0, le=1.0)

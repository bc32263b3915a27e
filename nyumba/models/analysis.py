"""Pydantic v2 models for room analysis, recommendations and placements."""

import base64
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from nyumba.models.media import MediaAsset
from nyumba.models.product import CatalogProduct

# ---------------------------------------------------------------------------
# Vision model output
# ---------------------------------------------------------------------------

_STRICT = ConfigDict(extra="forbid", populate_by_name=True)


class Position(BaseModel):
    model_config = _STRICT

    x: float
    y: float


class Size(BaseModel):
    model_config = _STRICT

    width: float
    height: float


class CoarseRecommendation(BaseModel):
    """A category-level shopping-list group, consumed by the resolver."""

    model_config = _STRICT

    category: str
    items: list[str]
    reasoning: str
    price_range_hint: str | None = Field(alias="priceRange")
    where_to_find_hint: str | None = Field(alias="whereToFind")


class FineRecommendation(BaseModel):
    """A named product with a placement box, consumed by the compositor."""

    model_config = _STRICT

    category: str
    product_name: str = Field(alias="productName")
    reason: str
    placement: str
    priority: Literal["high", "medium", "low"]
    estimated_budget: str = Field(alias="estimatedBudget")
    position: Position | None
    size: Size | None


class AnalysisPayload(BaseModel):
    """Strictly validated JSON returned by the vision model."""

    model_config = _STRICT

    room_type: str = Field(alias="roomType")
    room_size: str = Field(alias="roomSize")
    current_style: str = Field(alias="currentStyle")
    lighting_condition: str = Field(alias="lightingCondition")
    color_scheme: str = Field(alias="colorScheme")
    suggested_styles: list[str] = Field(alias="suggestedStyles")
    coarse_recommendations: list[CoarseRecommendation] = Field(alias="recommendations")
    fine_recommendations: list[FineRecommendation] = Field(alias="productSuggestions")
    analysis_text: str = Field(alias="analysisText")


# ---------------------------------------------------------------------------
# Resolved recommendations
# ---------------------------------------------------------------------------

class ResolvedProduct(BaseModel):
    """A recommended product, either backed by inventory or virtual.

    ``is_virtual`` is True exactly when ``product_id`` is None.  Build
    instances through ``from_catalog`` or ``virtual``.
    """

    product_id: int | None = None
    name: str
    category: str
    price_kes: int
    image_url: str | None = None
    reasoning: str = ""
    is_virtual: bool
    price_range_hint: str | None = None
    where_to_find_hint: str | None = None

    @model_validator(mode="after")
    def _check_virtual_flag(self) -> "ResolvedProduct":
        if self.is_virtual != (self.product_id is None):
            raise ValueError("is_virtual must be True exactly when product_id is None")
        return self

    @classmethod
    def from_catalog(cls, product: CatalogProduct, reasoning: str) -> "ResolvedProduct":
        return cls(
            product_id=product.id,
            name=product.name,
            category=product.category,
            price_kes=product.price_kes,
            image_url=product.primary_image_url,
            reasoning=reasoning,
            is_virtual=False,
        )

    @classmethod
    def virtual(
        cls,
        name: str,
        category: str,
        price_kes: int,
        reasoning: str,
        price_range_hint: str | None = None,
        where_to_find_hint: str | None = None,
    ) -> "ResolvedProduct":
        return cls(
            product_id=None,
            name=name,
            category=category,
            price_kes=price_kes,
            image_url=None,
            reasoning=reasoning,
            is_virtual=True,
            price_range_hint=price_range_hint or "Contact vendors for pricing",
            where_to_find_hint=where_to_find_hint or "Available from local Kenyan vendors",
        )


class RecommendationGroup(BaseModel):
    category: str
    requested_items: list[str] = []
    reasoning: str = ""
    price_range_hint: str | None = None
    where_to_find_hint: str | None = None
    products: list[ResolvedProduct] = []


class ProductRef(BaseModel):
    name: str
    product_id: int | None = None


class Placement(BaseModel):
    """A hotspot tying a recommended product to a point on the frame."""

    product_ref: ProductRef
    category: str
    price_kes: int
    image_url: str | None = None
    x: float = Field(ge=0, le=100)
    y: float = Field(ge=0, le=100)
    reasoning: str = ""
    is_virtual: bool = False


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------

class ProductPosition(BaseModel):
    product_name: str
    x_pixels: int
    y_pixels: int
    width_pixels: int
    height_pixels: int


class CompositeResult(BaseModel):
    """The synthesized "after" image and where each product landed."""

    after_image: bytes
    product_positions: list[ProductPosition] = []

    @property
    def after_image_data_uri(self) -> str:
        encoded = base64.b64encode(self.after_image).decode("utf-8")
        return f"data:image/jpeg;base64,{encoded}"


class CompositeUnavailable(BaseModel):
    """Compositing failed or was skipped; the caller shows the original frame."""

    reason: str


# ---------------------------------------------------------------------------
# Persisted analysis
# ---------------------------------------------------------------------------

class RoomAnalysis(BaseModel):
    """Complete analysis for one media asset. Written once, never updated."""

    id: int | None = None
    media_asset_id: int
    owner_id: int
    room_type: str
    room_size: str
    current_style: str
    lighting_condition: str
    color_scheme: str
    budget_tier: str | None = None
    suggested_styles: list[str] = []
    recommendation_groups: list[RecommendationGroup] = []
    product_placements: list[Placement] = []
    analysis_text: str = ""
    after_image_url: str | None = None
    composite_positions: list[ProductPosition] = []
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AnalysisView(BaseModel):
    """Polling response: ``analysis`` stays None while the asset is processing."""

    asset: MediaAsset
    analysis: RoomAnalysis | None = None

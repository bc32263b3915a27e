"""Pydantic v2 read model for vendor catalog products."""

import json

from pydantic import BaseModel, field_validator


class CatalogProduct(BaseModel):
    """Product fields the recommendation pipeline reads from the catalog."""

    model_config = {"from_attributes": True}

    id: int
    name: str
    category: str
    description: str | None = None
    price_kes: int
    image_urls: list[str] = []
    budget_tier: str | None = None
    is_active: bool = True

    @field_validator("image_urls", mode="before")
    @classmethod
    def _decode_image_urls(cls, v):
        # Vendors store image_urls as a JSON-encoded text column
        if v is None or v == "":
            return []
        if isinstance(v, str):
            try:
                decoded = json.loads(v)
            except json.JSONDecodeError:
                return [v]
            return decoded if isinstance(decoded, list) else [decoded]
        return v

    @property
    def primary_image_url(self) -> str | None:
        return self.image_urls[0] if self.image_urls else None

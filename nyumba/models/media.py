"""Pydantic v2 models for uploaded media, user preferences and asset status."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, field_validator

from nyumba.errors import InvalidStatusTransition

BudgetTier = Literal["economy", "mid-range", "premium", "luxury"]
SpaceSize = Literal["small", "medium", "large"]


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class AssetStatus(str, Enum):
    """Lifecycle of a media asset: processing -> completed | failed."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not AssetStatus.PROCESSING

    def can_transition_to(self, new_status: "AssetStatus") -> bool:
        return self is AssetStatus.PROCESSING and new_status.is_terminal


def ensure_transition(current: AssetStatus, new_status: AssetStatus) -> None:
    """Raise ``InvalidStatusTransition`` unless *current* -> *new_status* is legal."""
    if not current.can_transition_to(new_status):
        raise InvalidStatusTransition(
            f"Illegal status transition {current.value} -> {new_status.value}"
        )


class UserPreferences(BaseModel):
    """Style and budget preferences submitted with an upload."""

    model_config = {"frozen": True}

    budget_tier: BudgetTier | None = None
    room_type: str = ""
    favorite_colors: frozenset[str] = frozenset()
    style_preference: str = ""
    priorities: frozenset[str] = frozenset()
    space_size: SpaceSize = "medium"

    @field_validator("favorite_colors", "priorities", mode="before")
    @classmethod
    def _split_csv(cls, v):
        # Form posts send these as "red, blue"
        if isinstance(v, str):
            return frozenset(part.strip() for part in v.split(",") if part.strip())
        return v

    @field_validator("room_type", "style_preference")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()


class MediaAsset(BaseModel):
    """An uploaded room photo or video."""

    model_config = {"from_attributes": True}

    id: int
    owner_id: int
    source_url: str
    source_key: str | None = None
    kind: MediaKind
    status: AssetStatus = AssetStatus.PROCESSING
    frame_url: str | None = None
    thumbnail_url: str | None = None
    file_size: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubmitResult(BaseModel):
    """Returned to the caller as soon as the upload has been accepted."""

    asset_id: int
    status: AssetStatus

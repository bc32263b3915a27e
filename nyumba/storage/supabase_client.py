"""
Supabase client for Nyumba. Handles the database operations of the
room analysis pipeline: media assets and their status, room analyses,
and read-only access to the vendor product catalog.
"""

import logging
from datetime import datetime, timezone

from postgrest.exceptions import APIError
from pydantic import ValidationError as PydanticValidationError
from supabase import Client, create_client

from nyumba.config import SUPABASE_SERVICE_KEY, SUPABASE_URL
from nyumba.errors import AssetNotFoundError, DuplicateAnalysisError, InvalidStatusTransition
from nyumba.models.analysis import RoomAnalysis
from nyumba.models.media import AssetStatus, MediaAsset, MediaKind, ensure_transition
from nyumba.models.product import CatalogProduct

logger = logging.getLogger(__name__)

MEDIA_ASSETS_TABLE = "media_assets"
ROOM_ANALYSES_TABLE = "room_analyses"
PRODUCTS_TABLE = "products"

_UNIQUE_VIOLATION = "23505"

_supabase: Client | None = None


def _get_supabase() -> Client:
    """Return the shared Supabase client, creating it on first use."""
    global _supabase
    if _supabase is None:
        _supabase = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _supabase


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Media assets
# ---------------------------------------------------------------------------

def create_media_asset(
    owner_id: int,
    source_url: str,
    source_key: str | None,
    kind: MediaKind,
    file_size: int | None = None,
) -> MediaAsset:
    """Insert a new media asset with status ``processing``."""
    now = _now()
    row = {
        "owner_id": owner_id,
        "source_url": source_url,
        "source_key": source_key,
        "kind": MediaKind(kind).value,
        "status": AssetStatus.PROCESSING.value,
        "file_size": file_size,
        "created_at": now,
        "updated_at": now,
    }
    result = _get_supabase().table(MEDIA_ASSETS_TABLE).insert(row).execute()
    return MediaAsset.model_validate(result.data[0])


def get_media_asset(asset_id: int) -> MediaAsset | None:
    """Fetch a single media asset by its ID. Returns None when absent."""
    result = (
        _get_supabase()
        .table(MEDIA_ASSETS_TABLE)
        .select("*")
        .eq("id", asset_id)
        .execute()
    )
    if result.data:
        return MediaAsset.model_validate(result.data[0])
    return None


def update_asset_status(
    asset_id: int,
    status: AssetStatus | str,
    frame_url: str | None = None,
    thumbnail_url: str | None = None,
) -> MediaAsset:
    """Move an asset from ``processing`` to a terminal status.

    The update is conditional on the row still being ``processing``, so a
    terminal status can never be overwritten, even by a concurrent writer.
    """
    status = AssetStatus(status)
    ensure_transition(AssetStatus.PROCESSING, status)

    row: dict = {"status": status.value, "updated_at": _now()}
    if frame_url is not None:
        row["frame_url"] = frame_url
    if thumbnail_url is not None:
        row["thumbnail_url"] = thumbnail_url

    result = (
        _get_supabase()
        .table(MEDIA_ASSETS_TABLE)
        .update(row)
        .eq("id", asset_id)
        .eq("status", AssetStatus.PROCESSING.value)
        .execute()
    )
    if result.data:
        logger.info("[store] Asset %s -> %s", asset_id, status.value)
        return MediaAsset.model_validate(result.data[0])

    existing = get_media_asset(asset_id)
    if existing is None:
        raise AssetNotFoundError(f"Media asset {asset_id} not found")
    ensure_transition(existing.status, status)
    # Row exists and is still processing but the update matched nothing
    raise InvalidStatusTransition(f"Status update for asset {asset_id} was not applied")


# ---------------------------------------------------------------------------
# Room analyses
# ---------------------------------------------------------------------------

def create_analysis(analysis: RoomAnalysis) -> int:
    """Insert the analysis for a media asset and return its ID.

    ``room_analyses.media_asset_id`` carries a unique constraint; a second
    analysis for the same asset raises ``DuplicateAnalysisError``.
    """
    if get_analysis_by_asset_id(analysis.media_asset_id) is not None:
        raise DuplicateAnalysisError(
            f"Analysis already exists for media asset {analysis.media_asset_id}"
        )

    row = analysis.model_dump(mode="json", exclude={"id"})
    try:
        result = _get_supabase().table(ROOM_ANALYSES_TABLE).insert(row).execute()
    except APIError as exc:
        if exc.code == _UNIQUE_VIOLATION:
            raise DuplicateAnalysisError(
                f"Analysis already exists for media asset {analysis.media_asset_id}"
            ) from exc
        raise

    return result.data[0]["id"]


def get_analysis_by_asset_id(asset_id: int) -> RoomAnalysis | None:
    """Fetch the analysis for a media asset, or None if not written yet."""
    result = (
        _get_supabase()
        .table(ROOM_ANALYSES_TABLE)
        .select("*")
        .eq("media_asset_id", asset_id)
        .execute()
    )
    if result.data:
        return RoomAnalysis.model_validate(result.data[0])
    return None


def delete_analysis(analysis_id: int) -> None:
    """Remove an analysis row whose asset could not be marked completed."""
    _get_supabase().table(ROOM_ANALYSES_TABLE).delete().eq("id", analysis_id).execute()


# ---------------------------------------------------------------------------
# Product catalog (read-only)
# ---------------------------------------------------------------------------

def get_all_active_products(
    category: str | None = None,
    budget_tier: str | None = None,
) -> list[CatalogProduct]:
    """Return active catalog products, optionally filtered.

    A ``budget_tier`` filter keeps products without a tier as well as
    products in the requested tier.
    """
    query = (
        _get_supabase()
        .table(PRODUCTS_TABLE)
        .select("*")
        .eq("is_active", True)
    )

    if category:
        query = query.ilike("category", f"%{category}%")

    if budget_tier:
        query = query.or_(f"budget_tier.is.null,budget_tier.eq.{budget_tier}")

    query = query.order("id")
    result = query.execute()

    products: list[CatalogProduct] = []
    for row in result.data or []:
        try:
            products.append(CatalogProduct.model_validate(row))
        except PydanticValidationError as exc:
            logger.warning("[store] Skipping malformed product %s: %s", row.get("id"), exc)
    return products

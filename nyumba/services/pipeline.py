"""
Room-to-recommendation pipeline.

``submit_media`` validates and stores an upload, then hands the rest of
the work to a background asyncio task:

    frame extraction -> vision analysis -> catalog read -> resolution
    -> placement -> best-effort compositing
    -> write RoomAnalysis once -> mark the asset ``completed``

Any failure in a required stage marks the asset ``failed`` and nothing
is written to ``room_analyses``.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from nyumba.config import EXTERNAL_CALL_TIMEOUT_SECONDS
from nyumba.errors import AssetNotFoundError, PipelineError, ValidationError
from nyumba.models.analysis import (
    AnalysisView,
    CompositeResult,
    CompositeUnavailable,
    ProductPosition,
    RoomAnalysis,
)
from nyumba.models.media import AssetStatus, MediaAsset, SubmitResult, UserPreferences
from nyumba.models.product import CatalogProduct
from nyumba.services import compositor, media_ingest, room_analyzer
from nyumba.services.placement import generate_placements
from nyumba.services.resolver import resolve_recommendations
from nyumba.storage import s3_client, supabase_client

logger = logging.getLogger(__name__)

# asset_id -> running pipeline task
_runs: dict[int, asyncio.Task] = {}


async def _call(fn, *args, **kwargs):
    """Run a blocking client call in a worker thread under the external-call timeout."""
    return await asyncio.wait_for(
        asyncio.to_thread(fn, *args, **kwargs),
        timeout=EXTERNAL_CALL_TIMEOUT_SECONDS,
    )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def _coerce_preferences(preferences) -> UserPreferences | None:
    if preferences is None or isinstance(preferences, UserPreferences):
        return preferences
    try:
        return UserPreferences.model_validate(preferences)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid preferences: {exc}") from exc


async def submit_media(
    file_bytes: bytes,
    file_name: str,
    file_size: int,
    mime_type: str,
    owner_id: int,
    preferences: UserPreferences | dict | None = None,
) -> SubmitResult:
    """Accept an upload and start its pipeline run in the background.

    Returns as soon as the asset row exists with status ``processing``;
    the run itself is never awaited here.  Raises ``ValidationError``
    before anything is stored when the upload or preferences are invalid.
    """
    prefs = _coerce_preferences(preferences)
    asset = await media_ingest.ingest(file_bytes, file_name, mime_type, file_size, owner_id)

    task = asyncio.create_task(
        run_pipeline(asset, file_bytes, mime_type, prefs),
        name=f"pipeline-{asset.id}",
    )
    _runs[asset.id] = task
    task.add_done_callback(lambda _t, asset_id=asset.id: _runs.pop(asset_id, None))

    logger.info("[pipeline] Accepted %s asset %s for owner %s", asset.kind.value, asset.id, owner_id)
    return SubmitResult(asset_id=asset.id, status=asset.status)


async def wait_for_run(asset_id: int) -> None:
    """Wait for the background run of *asset_id*, if one is still active."""
    task = _runs.get(asset_id)
    if task is not None:
        await asyncio.shield(task)


async def drain_runs() -> None:
    """Wait for every active run; used on application shutdown."""
    if _runs:
        logger.info("[pipeline] Waiting for %d active runs", len(_runs))
        await asyncio.gather(*list(_runs.values()), return_exceptions=True)


# ---------------------------------------------------------------------------
# Background run
# ---------------------------------------------------------------------------

async def _read_catalog() -> list[CatalogProduct]:
    try:
        return await _call(supabase_client.get_all_active_products)
    except Exception as exc:
        logger.warning("[pipeline] Catalog read failed, continuing without inventory: %s", exc)
        return []


async def _publish_composite(
    asset: MediaAsset,
    composite: CompositeResult | CompositeUnavailable,
    frame_url: str,
) -> tuple[str, list[ProductPosition]]:
    """Return ``(after_image_url, positions)``, falling back to the bare frame."""
    if isinstance(composite, CompositeUnavailable):
        logger.info("[pipeline] Composite unavailable for asset %s: %s", asset.id, composite.reason)
        return frame_url, []
    if not composite.product_positions:
        # Nothing was layered; the frame itself is the "after" image
        return frame_url, []

    key = s3_client.build_key("composites", "after.jpg", asset.owner_id)
    try:
        stored = await _call(s3_client.put_object, key, composite.after_image, "image/jpeg")
    except Exception as exc:
        logger.warning("[pipeline] Could not store composite for asset %s: %s", asset.id, exc)
        return frame_url, []
    return stored.url, composite.product_positions


async def _run_stages(
    asset: MediaAsset,
    source_bytes: bytes,
    mime_type: str,
    preferences: UserPreferences | None,
    work_dir: Path,
) -> RoomAnalysis:
    frame = await media_ingest.extract_frame(asset, source_bytes, mime_type, work_dir)
    frame_url, thumbnail_url = await media_ingest.publish_frame(asset, frame)

    payload = await room_analyzer.analyze_room(frame.frame_bytes, preferences, frame.mime_type)

    budget_tier = preferences.budget_tier if preferences else None
    catalog = await _read_catalog()
    groups = resolve_recommendations(payload.coarse_recommendations, budget_tier, catalog)

    room_type = payload.room_type or (preferences.room_type if preferences else "")
    image_lookup = compositor.build_product_image_lookup(payload.fine_recommendations, groups)

    placements = generate_placements(groups, room_type)
    composite = await compositor.try_composite(
        frame.frame_bytes, payload.fine_recommendations, image_lookup
    )
    after_image_url, composite_positions = await _publish_composite(asset, composite, frame_url)

    now = datetime.now(timezone.utc)
    analysis = RoomAnalysis(
        media_asset_id=asset.id,
        owner_id=asset.owner_id,
        room_type=payload.room_type,
        room_size=payload.room_size,
        current_style=payload.current_style,
        lighting_condition=payload.lighting_condition,
        color_scheme=payload.color_scheme,
        budget_tier=budget_tier,
        suggested_styles=payload.suggested_styles,
        recommendation_groups=groups,
        product_placements=placements,
        analysis_text=payload.analysis_text,
        after_image_url=after_image_url,
        composite_positions=composite_positions,
        created_at=now,
        updated_at=now,
    )
    analysis_id = await _call(supabase_client.create_analysis, analysis)
    try:
        await _call(
            supabase_client.update_asset_status,
            asset.id,
            AssetStatus.COMPLETED,
            frame_url=frame_url,
            thumbnail_url=thumbnail_url,
        )
    except Exception:
        # A failed asset must not keep an analysis row
        await _discard_analysis(asset.id, analysis_id)
        raise
    return analysis.model_copy(update={"id": analysis_id})


async def _discard_analysis(asset_id: int, analysis_id: int) -> None:
    try:
        await _call(supabase_client.delete_analysis, analysis_id)
    except Exception as exc:
        logger.error(
            "[pipeline] Could not remove analysis %s of asset %s: %s",
            analysis_id, asset_id, exc, exc_info=True,
        )


async def _mark_failed(asset_id: int) -> None:
    try:
        await _call(supabase_client.update_asset_status, asset_id, AssetStatus.FAILED)
    except Exception as exc:
        logger.error("[pipeline] Could not mark asset %s failed: %s", asset_id, exc, exc_info=True)


async def run_pipeline(
    asset: MediaAsset,
    source_bytes: bytes,
    mime_type: str,
    preferences: UserPreferences | None = None,
) -> RoomAnalysis | None:
    """Run every stage for one asset and record its terminal status.

    Returns the stored analysis, or None when the run failed.
    """
    logger.info("[pipeline] Starting run for asset %s", asset.id)
    try:
        with tempfile.TemporaryDirectory(prefix=f"nyumba-{asset.id}-") as tmp:
            analysis = await _run_stages(asset, source_bytes, mime_type, preferences, Path(tmp))
    except PipelineError as exc:
        logger.error("[pipeline] Asset %s failed (%s): %s", asset.id, type(exc).__name__, exc)
        await _mark_failed(asset.id)
        return None
    except Exception as exc:
        logger.error("[pipeline] Unexpected error for asset %s: %s", asset.id, exc, exc_info=True)
        await _mark_failed(asset.id)
        return None

    logger.info(
        "[pipeline] Asset %s completed: %d groups, %d placements",
        asset.id,
        len(analysis.recommendation_groups),
        len(analysis.product_placements),
    )
    return analysis


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_analysis(asset_id: int) -> AnalysisView:
    """Return the asset and, once it has completed, its analysis."""
    asset = await _call(supabase_client.get_media_asset, asset_id)
    if asset is None:
        raise AssetNotFoundError(f"Media asset {asset_id} not found")

    analysis = None
    if asset.status is AssetStatus.COMPLETED:
        analysis = await _call(supabase_client.get_analysis_by_asset_id, asset_id)
    return AnalysisView(asset=asset, analysis=analysis)

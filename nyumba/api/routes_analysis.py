"""Room analysis API routes.

Handles room photo / video upload, analysis polling, and the budget tier
listing used by the preferences form.
"""

from __future__ import annotations

from fastapi import APIRouter, File, Form, UploadFile

from nyumba.config import BUDGET_TIERS
from nyumba.models.analysis import AnalysisView
from nyumba.models.media import SubmitResult
from nyumba.services.pipeline import get_analysis, submit_media

router = APIRouter(prefix="/api", tags=["analysis"])


def _preferences_from_form(
    budget_tier: str | None,
    room_type: str,
    favorite_colors: str,
    style_preference: str,
    priorities: str,
    space_size: str | None,
) -> dict | None:
    """Collect the optional preference fields; None when none were sent."""
    fields = {
        "budget_tier": budget_tier or None,
        "room_type": room_type,
        "favorite_colors": favorite_colors,
        "style_preference": style_preference,
        "priorities": priorities,
    }
    if space_size:
        fields["space_size"] = space_size
    if not any(fields.values()):
        return None
    return fields


# ---------------------------------------------------------------------------
# POST /api/media
# ---------------------------------------------------------------------------

@router.post("/media", response_model=SubmitResult, status_code=202)
async def upload_media(
    file: UploadFile = File(...),
    owner_id: int = Form(...),
    budget_tier: str | None = Form(None),
    room_type: str = Form(""),
    favorite_colors: str = Form(""),
    style_preference: str = Form(""),
    priorities: str = Form(""),
    space_size: str | None = Form(None),
) -> SubmitResult:
    """Upload a room photo or video; analysis continues in the background."""
    file_bytes = await file.read()
    preferences = _preferences_from_form(
        budget_tier, room_type, favorite_colors, style_preference, priorities, space_size
    )
    return await submit_media(
        file_bytes=file_bytes,
        file_name=file.filename or "upload",
        file_size=file.size if file.size is not None else len(file_bytes),
        mime_type=file.content_type or "",
        owner_id=owner_id,
        preferences=preferences,
    )


# ---------------------------------------------------------------------------
# GET /api/media/{asset_id}/analysis
# ---------------------------------------------------------------------------

@router.get("/media/{asset_id}/analysis", response_model=AnalysisView)
async def read_analysis(asset_id: int) -> AnalysisView:
    """Poll an upload: ``analysis`` is null until the asset has completed."""
    return await get_analysis(asset_id)


# ---------------------------------------------------------------------------
# GET /api/tiers
# ---------------------------------------------------------------------------

@router.get("/tiers")
async def list_tiers() -> list[dict]:
    return [{"id": tier_id, **tier} for tier_id, tier in BUDGET_TIERS.items()]

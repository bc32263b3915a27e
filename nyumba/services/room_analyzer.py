"""Room analysis service using the Gemini vision model.

Accepts a single room frame (raw bytes or a public URL) together with the
client's preferences, sends it to Gemini with a strict JSON response
schema, and returns the validated ``AnalysisPayload``.  The payload
carries both the coarse shopping-list groups used by the resolver and the
fine-grained product suggestions used by the compositor.
"""

from __future__ import annotations

import asyncio
import logging
import re

import httpx
from google import genai
from google.genai import types as genai_types
from pydantic import ValidationError as PydanticValidationError

from nyumba.config import (
    ANALYSIS_SYSTEM_PROMPT,
    BUDGET_TIERS,
    CLIENT_CONTEXT_TEMPLATE,
    EXTERNAL_CALL_TIMEOUT_SECONDS,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GENERIC_CLIENT_CONTEXT,
    ROOM_ANALYSIS_PROMPT,
    ROOM_ANALYSIS_SCHEMA,
)
from nyumba.errors import AnalysisError
from nyumba.models.analysis import AnalysisPayload
from nyumba.models.media import UserPreferences

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Gemini client initialisation
# ---------------------------------------------------------------------------
_client: genai.Client | None = None


def _get_client() -> genai.Client:
    global _client
    if _client is None:
        _client = genai.Client(api_key=GEMINI_API_KEY)
    return _client


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _strip_code_fencing(raw_text: str) -> str:
    """Remove optional ```json ... ``` wrappers around a JSON payload."""
    text = raw_text.strip()
    text = re.sub(r"^```(?:json)?\s*\n?", "", text)
    text = re.sub(r"\n?```\s*$", "", text)
    return text


def _join(values: frozenset[str], default: str) -> str:
    return ", ".join(sorted(values)) if values else default


def build_analysis_prompt(preferences: UserPreferences | None) -> str:
    """Build the full analysis prompt, tailored to *preferences* if given."""
    if preferences is None:
        return ROOM_ANALYSIS_PROMPT.format(client_context=GENERIC_CLIENT_CONTEXT)

    tier = preferences.budget_tier or "mid-range"
    client_context = CLIENT_CONTEXT_TEMPLATE.format(
        budget_tier=tier,
        kes_range=BUDGET_TIERS[tier]["kes_range"],
        room_type=preferences.room_type or "not specified",
        space_size=preferences.space_size,
        favorite_colors=_join(preferences.favorite_colors, "no preference"),
        style_preference=preferences.style_preference or "modern",
        priorities=_join(preferences.priorities, "general improvement"),
    )
    return ROOM_ANALYSIS_PROMPT.format(client_context=client_context)


async def _download_frame(url: str) -> tuple[bytes, str | None]:
    async with httpx.AsyncClient(timeout=EXTERNAL_CALL_TIMEOUT_SECONDS, follow_redirects=True) as client:
        response = await client.get(url)
        response.raise_for_status()
    content_type = response.headers.get("content-type", "").split(";")[0].strip() or None
    return response.content, content_type


def parse_analysis(raw_text: str | None) -> AnalysisPayload:
    """Strictly validate the model's JSON text.

    Raises ``AnalysisError`` for empty text, invalid JSON, missing fields
    or unexpected extra fields.
    """
    if not raw_text or not raw_text.strip():
        raise AnalysisError("Vision model returned an empty response")

    text = _strip_code_fencing(raw_text)
    try:
        return AnalysisPayload.model_validate_json(text)
    except PydanticValidationError as exc:
        raise AnalysisError(f"Vision model returned non-conforming JSON: {exc}") from exc


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def analyze_room(
    frame: bytes | str,
    preferences: UserPreferences | None = None,
    mime_type: str = "image/jpeg",
) -> AnalysisPayload:
    """Analyse a room frame and return the structured design analysis.

    Parameters
    ----------
    frame:
        Raw image bytes, or an ``http(s)`` URL that is downloaded first.
    preferences:
        Client style and budget preferences; ``None`` builds a generic prompt.
    mime_type:
        MIME type of the frame bytes.

    Returns
    -------
    AnalysisPayload
        Validated model output.  Exactly one model call is made; any
        failure is raised as ``AnalysisError``.
    """
    prompt = build_analysis_prompt(preferences)

    try:
        if isinstance(frame, str):
            frame_bytes, fetched_type = await _download_frame(frame)
            mime_type = fetched_type if fetched_type and fetched_type.startswith("image/") else mime_type
        else:
            frame_bytes = frame

        response = await asyncio.wait_for(
            _get_client().aio.models.generate_content(
                model=GEMINI_MODEL,
                contents=genai_types.Content(
                    role="user",
                    parts=[
                        genai_types.Part(
                            inline_data=genai_types.Blob(mime_type=mime_type, data=frame_bytes)
                        ),
                        genai_types.Part(text=prompt),
                    ],
                ),
                config=genai_types.GenerateContentConfig(
                    system_instruction=ANALYSIS_SYSTEM_PROMPT,
                    response_mime_type="application/json",
                    response_json_schema=ROOM_ANALYSIS_SCHEMA,
                ),
            ),
            timeout=EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError as exc:
        raise AnalysisError("Vision model call timed out") from exc
    except httpx.HTTPError as exc:
        raise AnalysisError(f"Could not download frame: {exc}") from exc
    except Exception as exc:
        logger.error("[analyzer] Gemini call failed: %s", exc, exc_info=True)
        raise AnalysisError(f"Vision model call failed: {exc}") from exc

    payload = parse_analysis(response.text)
    logger.info(
        "[analyzer] %s analysed: %d groups, %d product suggestions",
        payload.room_type,
        len(payload.coarse_recommendations),
        len(payload.fine_recommendations),
    )
    return payload


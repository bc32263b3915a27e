"""Media ingest service.

Validates uploaded room photos and videos, stores the original in
object storage, writes the ``processing`` media asset row, and later
turns the upload into a single analysis frame plus a thumbnail.
Video frames are pulled with ffprobe / ffmpeg.
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, UnidentifiedImageError

from nyumba.config import (
    EXTERNAL_CALL_TIMEOUT_SECONDS,
    FFMPEG_BIN,
    FFMPEG_TIMEOUT_SECONDS,
    FFPROBE_BIN,
    FRAME_FALLBACK_OFFSET_SECONDS,
    FRAME_MAX_OFFSET_SECONDS,
    MAX_IMAGE_BYTES,
    MAX_VIDEO_BYTES,
    THUMBNAIL_WIDTH,
)
from nyumba.errors import MediaProcessingError, ValidationError
from nyumba.models.media import MediaAsset, MediaKind
from nyumba.storage import s3_client, supabase_client

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
}


@dataclass
class ExtractedFrame:
    frame_bytes: bytes
    thumbnail_bytes: bytes
    mime_type: str
    timestamp: float | None = None  # seconds into the clip, videos only


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _kind_for_mime(mime_type: str) -> MediaKind | None:
    family = mime_type.split("/", 1)[0].strip().lower()
    if family == "image":
        return MediaKind.IMAGE
    if family == "video":
        return MediaKind.VIDEO
    return None


def validate_upload(
    file_bytes: bytes,
    declared_mime_type: str,
    declared_size_bytes: int,
    kind: MediaKind | None = None,
    max_image_bytes: int = MAX_IMAGE_BYTES,
) -> MediaKind:
    """Check MIME family and size ceilings and return the media kind.

    Raises ``ValidationError`` without touching storage or the database.
    """
    mime_kind = _kind_for_mime(declared_mime_type or "")
    if mime_kind is None:
        raise ValidationError(
            f"Unsupported file type '{declared_mime_type}'. Upload an image or a video."
        )
    if kind is not None and MediaKind(kind) is not mime_kind:
        raise ValidationError(
            f"Declared type '{declared_mime_type}' does not match expected {MediaKind(kind).value}."
        )

    if not file_bytes:
        raise ValidationError("Uploaded file is empty.")

    ceiling = MAX_VIDEO_BYTES if mime_kind is MediaKind.VIDEO else max_image_bytes
    size = max(declared_size_bytes or 0, len(file_bytes))
    if size > ceiling:
        raise ValidationError(
            f"{mime_kind.value.capitalize()} file size must be less than "
            f"{ceiling // (1024 * 1024)}MB."
        )

    return mime_kind


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------

async def ingest(
    file_bytes: bytes,
    file_name: str,
    declared_mime_type: str,
    declared_size_bytes: int,
    owner_id: int,
    kind: MediaKind | None = None,
    max_image_bytes: int = MAX_IMAGE_BYTES,
) -> MediaAsset:
    """Validate, store the original, and create the ``processing`` asset row."""
    kind = validate_upload(
        file_bytes, declared_mime_type, declared_size_bytes, kind, max_image_bytes
    )

    folder = "videos" if kind is MediaKind.VIDEO else "photos"
    if "." not in file_name and declared_mime_type in _EXTENSIONS:
        file_name = f"{file_name}.{_EXTENSIONS[declared_mime_type]}"
    key = s3_client.build_key(folder, file_name, owner_id)

    stored = await asyncio.wait_for(
        asyncio.to_thread(s3_client.put_object, key, file_bytes, declared_mime_type),
        timeout=EXTERNAL_CALL_TIMEOUT_SECONDS,
    )
    logger.info("[ingest] Stored %s upload at %s (%d bytes)", kind.value, stored.key, len(file_bytes))

    try:
        asset = await asyncio.to_thread(
            supabase_client.create_media_asset,
            owner_id,
            stored.url,
            stored.key,
            kind,
            declared_size_bytes,
        )
    except Exception:
        logger.error("[ingest] Could not record asset for %s; removing upload", stored.key)
        try:
            await asyncio.to_thread(s3_client.delete_object, stored.key)
        except Exception as cleanup_exc:
            logger.warning("[ingest] Cleanup of %s failed: %s", stored.key, cleanup_exc)
        raise

    return asset


# ---------------------------------------------------------------------------
# Frame extraction
# ---------------------------------------------------------------------------

def choose_frame_timestamp(duration: float | None) -> float:
    """Midpoint of the clip, capped at 5 s; 3 s when the duration is unknown."""
    if duration is None or duration <= 0:
        return FRAME_FALLBACK_OFFSET_SECONDS
    return min(duration / 2.0, FRAME_MAX_OFFSET_SECONDS)


def probe_duration(video_path: str, *, timeout_s: float = FFMPEG_TIMEOUT_SECONDS) -> float | None:
    """Return the clip duration in seconds, or None if ffprobe cannot tell."""
    cmd = [
        FFPROBE_BIN,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        video_path,
    ]
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("[ingest] ffprobe failed for %s: %s", video_path, exc)
        return None

    if p.returncode != 0 or not (p.stdout or "").strip():
        return None

    try:
        data = json.loads(p.stdout)
        duration = float(data["format"]["duration"])
    except (KeyError, TypeError, ValueError):
        return None
    return duration if duration > 0 else None


def extract_frame_at(
    video_path: str,
    output_path: str,
    timestamp: float,
    *,
    timeout_s: float = FFMPEG_TIMEOUT_SECONDS,
) -> str:
    """Write one high-quality JPEG frame at *timestamp* seconds."""
    cmd = [
        FFMPEG_BIN,
        "-y",
        "-ss",
        f"{timestamp:.3f}",
        "-i",
        video_path,
        "-vframes",
        "1",
        "-q:v",
        "2",
        output_path,
    ]
    try:
        p = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout_s)
    except subprocess.TimeoutExpired as exc:
        raise MediaProcessingError(f"ffmpeg timed out extracting a frame: {exc}") from exc
    except OSError as exc:
        raise MediaProcessingError(f"ffmpeg could not be started: {exc}") from exc

    if p.returncode != 0 or not Path(output_path).exists():
        raise MediaProcessingError(
            f"ffmpeg_failed: rc={p.returncode} stderr={(p.stderr or '')[-400:]}"
        )
    return output_path


def _thumbnail(frame_bytes: bytes) -> bytes:
    try:
        return s3_client.make_thumbnail(frame_bytes, width=THUMBNAIL_WIDTH)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise MediaProcessingError(f"Could not decode frame for thumbnail: {exc}") from exc


def _extract_video_frame(source_bytes: bytes, mime_type: str, work_dir: Path) -> ExtractedFrame:
    video_path = work_dir / f"source.{_EXTENSIONS.get(mime_type, 'mp4')}"
    video_path.write_bytes(source_bytes)
    frame_path = work_dir / "frame.jpg"

    timestamp = choose_frame_timestamp(probe_duration(str(video_path)))
    logger.info("[ingest] Extracting frame at %.2fs from %s", timestamp, video_path.name)
    extract_frame_at(str(video_path), str(frame_path), timestamp)

    frame_bytes = frame_path.read_bytes()
    return ExtractedFrame(
        frame_bytes=frame_bytes,
        thumbnail_bytes=_thumbnail(frame_bytes),
        mime_type="image/jpeg",
        timestamp=timestamp,
    )


def _passthrough_image(source_bytes: bytes, mime_type: str) -> ExtractedFrame:
    try:
        with Image.open(io.BytesIO(source_bytes)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError) as exc:
        raise MediaProcessingError(f"Uploaded image cannot be decoded: {exc}") from exc

    return ExtractedFrame(
        frame_bytes=source_bytes,
        thumbnail_bytes=_thumbnail(source_bytes),
        mime_type=mime_type if mime_type.startswith("image/") else "image/jpeg",
    )


async def extract_frame(
    asset: MediaAsset,
    source_bytes: bytes,
    mime_type: str,
    work_dir: Path,
) -> ExtractedFrame:
    """Produce the analysis frame and thumbnail for an asset.

    ``work_dir`` is private to the current pipeline run.
    """
    if asset.kind is MediaKind.VIDEO:
        return await asyncio.to_thread(_extract_video_frame, source_bytes, mime_type, work_dir)
    return await asyncio.to_thread(_passthrough_image, source_bytes, mime_type)


async def publish_frame(asset: MediaAsset, frame: ExtractedFrame) -> tuple[str, str]:
    """Upload frame and thumbnail; return ``(frame_url, thumbnail_url)``.

    For photos the frame is the original upload, so only the thumbnail is new.
    """
    try:
        if asset.kind is MediaKind.VIDEO:
            frame_key = s3_client.build_key("frames", "frame.jpg", asset.owner_id)
            stored_frame = await asyncio.wait_for(
                asyncio.to_thread(s3_client.put_object, frame_key, frame.frame_bytes, "image/jpeg"),
                timeout=EXTERNAL_CALL_TIMEOUT_SECONDS,
            )
            frame_url = stored_frame.url
        else:
            frame_url = asset.source_url

        thumb_key = s3_client.build_key("thumbnails", "thumb.jpg", asset.owner_id)
        stored_thumb = await asyncio.wait_for(
            asyncio.to_thread(s3_client.put_object, thumb_key, frame.thumbnail_bytes, "image/jpeg"),
            timeout=EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
    except MediaProcessingError:
        raise
    except Exception as exc:
        raise MediaProcessingError(f"Could not store frame for asset {asset.id}: {exc}") from exc

    return frame_url, stored_thumb.url

"""
Room compositor.

Layers vendor product images onto the room frame at the boxes suggested
by the vision model to produce an "after" visualisation.  Best-effort:
single products that cannot be fetched or decoded are skipped, and any
total failure is reported to the caller as ``CompositeUnavailable``.
Pure Pillow, no AI calls.
"""

from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path

import httpx
from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from nyumba.config import (
    COMPOSITE_JPEG_QUALITY,
    COMPOSITE_PLACEHOLDERS,
    COMPOSITING_ENABLED,
    EXTERNAL_CALL_TIMEOUT_SECONDS,
    MAX_PRODUCT_IMAGE_BYTES,
)
from nyumba.models.analysis import (
    CompositeResult,
    CompositeUnavailable,
    FineRecommendation,
    ProductPosition,
    RecommendationGroup,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER_FILL = "#e0e0e0"
_PLACEHOLDER_TEXT = "#666666"


# ---------------------------------------------------------------------------
# Product image lookup
# ---------------------------------------------------------------------------

def build_product_image_lookup(
    fine_recommendations: list[FineRecommendation],
    groups: list[RecommendationGroup],
) -> dict[str, str]:
    """Map each suggested product name to an image of a resolved product.

    A resolved product whose name contains the suggestion (or the other
    way round) wins over one that only shares the category.
    """
    candidates = [p for g in groups for p in g.products if p.image_url]
    lookup: dict[str, str] = {}

    for rec in fine_recommendations:
        wanted = rec.product_name.lower().strip()
        category = rec.category.lower().strip()

        by_name = next(
            (p for p in candidates if wanted and (wanted in p.name.lower() or p.name.lower() in wanted)),
            None,
        )
        match = by_name or next((p for p in candidates if p.category.lower().strip() == category), None)

        if match is not None:
            lookup[rec.product_name] = match.image_url
            logger.debug("[compositor] Matched '%s' to product '%s'", rec.product_name, match.name)
        else:
            logger.info("[compositor] No product image for '%s'", rec.product_name)

    return lookup


# ---------------------------------------------------------------------------
# Image helpers
# ---------------------------------------------------------------------------

def create_placeholder_image(product_name: str, width: int, height: int) -> bytes:
    """Grey PNG tile with the product name centred on it."""
    tile = Image.new("RGBA", (max(1, width), max(1, height)), _PLACEHOLDER_FILL)
    draw = ImageDraw.Draw(tile)
    font = ImageFont.load_default()

    left, top, right, bottom = draw.textbbox((0, 0), product_name, font=font)
    x = (tile.width - (right - left)) / 2
    y = (tile.height - (bottom - top)) / 2
    draw.text((x, y), product_name, fill=_PLACEHOLDER_TEXT, font=font)

    buf = io.BytesIO()
    tile.save(buf, format="PNG")
    return buf.getvalue()


def fit_contain(image_bytes: bytes, width: int, height: int) -> Image.Image:
    """Scale an image into a ``width`` x ``height`` box without cropping.

    The aspect ratio is kept and the unused area stays transparent.
    """
    img = Image.open(io.BytesIO(image_bytes))
    img = ImageOps.exif_transpose(img).convert("RGBA")
    fitted = ImageOps.contain(img, (width, height), Image.Resampling.LANCZOS)

    canvas = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    offset = ((width - fitted.width) // 2, (height - fitted.height) // 2)
    canvas.paste(fitted, offset, fitted)
    return canvas


def _to_pixels(rec: FineRecommendation, room_width: int, room_height: int) -> tuple[int, int, int, int]:
    left = round(rec.position.x / 100 * room_width)
    top = round(rec.position.y / 100 * room_height)
    width = round(rec.size.width / 100 * room_width)
    height = round(rec.size.height / 100 * room_height)
    return left, top, width, height


async def _load_product_image(ref: str, client: httpx.AsyncClient) -> bytes:
    if ref.startswith(("http://", "https://")):
        response = await client.get(ref)
        response.raise_for_status()
        data = response.content
    else:
        data = await asyncio.to_thread(Path(ref).read_bytes)

    if len(data) > MAX_PRODUCT_IMAGE_BYTES:
        raise ValueError(f"product image is {len(data)} bytes, over the {MAX_PRODUCT_IMAGE_BYTES} limit")
    return data


# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------

def _open_room(frame_bytes: bytes) -> Image.Image:
    base = Image.open(io.BytesIO(frame_bytes))
    return ImageOps.exif_transpose(base).convert("RGB")


def _layer_and_encode(
    base: Image.Image,
    layers: list[tuple[str, tuple[int, int, int, int], bytes | None]],
) -> tuple[bytes, list[ProductPosition]]:
    """Paste each ``(name, box, image_bytes)`` layer and encode the result.

    A layer without image bytes gets a placeholder tile.  Runs in a
    worker thread.
    """
    positions: list[ProductPosition] = []

    for name, (left, top, width, height), product_bytes in layers:
        try:
            if product_bytes is None:
                product_bytes = create_placeholder_image(name, width, height)
            layer = fit_contain(product_bytes, width, height)
        except (OSError, UnidentifiedImageError, ValueError) as exc:
            logger.warning("[compositor] Error processing %s: %s", name, exc)
            continue

        base.paste(layer, (left, top), layer)
        positions.append(
            ProductPosition(
                product_name=name,
                x_pixels=left,
                y_pixels=top,
                width_pixels=width,
                height_pixels=height,
            )
        )
        logger.debug("[compositor] Placed %s at (%d, %d) size %dx%d", name, left, top, width, height)

    buf = io.BytesIO()
    base.save(buf, format="JPEG", quality=COMPOSITE_JPEG_QUALITY)
    return buf.getvalue(), positions


async def composite_products_onto_room(
    frame_bytes: bytes,
    fine_recommendations: list[FineRecommendation],
    product_images: dict[str, str],
    use_placeholders: bool | None = None,
) -> CompositeResult:
    """Layer product images onto the room frame in recommendation order.

    Product images are fetched on the event loop; decoding, layering and
    encoding run in worker threads.

    Args:
        frame_bytes: Encoded room frame.
        fine_recommendations: Suggestions with percentage position and size.
        product_images: Product name -> image URL or local path.
        use_placeholders: Draw a labelled tile for boxes without an image.
            Defaults to the ``COMPOSITE_PLACEHOLDERS`` setting.

    Returns:
        CompositeResult with the JPEG "after" image and the pixel box of
        every product that made it onto the frame.
    """
    if use_placeholders is None:
        use_placeholders = COMPOSITE_PLACEHOLDERS

    base = await asyncio.to_thread(_open_room, frame_bytes)
    room_width, room_height = base.size
    logger.info("[compositor] Room dimensions: %dx%d", room_width, room_height)

    layers: list[tuple[str, tuple[int, int, int, int], bytes | None]] = []

    async with httpx.AsyncClient(timeout=EXTERNAL_CALL_TIMEOUT_SECONDS, follow_redirects=True) as client:
        for rec in fine_recommendations:
            if rec.position is None or rec.size is None:
                logger.info("[compositor] Skipping %s - no position/size data", rec.product_name)
                continue

            box = _to_pixels(rec, room_width, room_height)
            if box[2] <= 0 or box[3] <= 0:
                logger.info("[compositor] Skipping %s - empty box", rec.product_name)
                continue

            ref = product_images.get(rec.product_name)
            if ref is None:
                if use_placeholders:
                    layers.append((rec.product_name, box, None))
                else:
                    logger.info("[compositor] No image found for %s", rec.product_name)
                continue

            try:
                product_bytes = await _load_product_image(ref, client)
            except (httpx.HTTPError, OSError, ValueError) as exc:
                logger.warning("[compositor] Error fetching %s: %s", rec.product_name, exc)
                continue
            layers.append((rec.product_name, box, product_bytes))

    after_image, positions = await asyncio.to_thread(_layer_and_encode, base, layers)
    logger.info("[compositor] Composited %d/%d products", len(positions), len(fine_recommendations))
    return CompositeResult(after_image=after_image, product_positions=positions)


async def try_composite(
    frame_bytes: bytes,
    fine_recommendations: list[FineRecommendation],
    product_images: dict[str, str],
    timeout: float = EXTERNAL_CALL_TIMEOUT_SECONDS,
) -> CompositeResult | CompositeUnavailable:
    """Run the compositor, turning any total failure into ``CompositeUnavailable``."""
    if not COMPOSITING_ENABLED:
        return CompositeUnavailable(reason="compositing disabled")

    try:
        return await asyncio.wait_for(
            composite_products_onto_room(frame_bytes, fine_recommendations, product_images),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        logger.warning("[compositor] Timed out after %.0fs", timeout)
        return CompositeUnavailable(reason=f"compositing timed out after {timeout:.0f}s")
    except Exception as exc:
        logger.warning("[compositor] Room composition error: %s", exc, exc_info=True)
        return CompositeUnavailable(reason=f"Failed to composite products: {exc}")

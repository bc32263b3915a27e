"""
Central configuration module for the Nyumba backend.

Loads environment variables, defines upload limits, budget tiers,
heuristic item prices, hotspot zone templates, and the LLM prompt
templates used by the room analysis pipeline.
"""

import os
from dotenv import load_dotenv

load_dotenv()

# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")

STORAGE_ENDPOINT_URL = os.getenv("STORAGE_ENDPOINT_URL", "")
STORAGE_ACCESS_KEY = os.getenv("STORAGE_ACCESS_KEY", "")
STORAGE_SECRET_KEY = os.getenv("STORAGE_SECRET_KEY", "")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "nyumba-media")
STORAGE_REGION = os.getenv("STORAGE_REGION", "auto")
STORAGE_PUBLIC_URL = os.getenv("STORAGE_PUBLIC_URL", "")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")

FFMPEG_BIN = os.getenv("FFMPEG_BIN", "ffmpeg")
FFPROBE_BIN = os.getenv("FFPROBE_BIN", "ffprobe")

EXTERNAL_CALL_TIMEOUT_SECONDS = float(os.getenv("EXTERNAL_CALL_TIMEOUT_SECONDS", "60"))
FFMPEG_TIMEOUT_SECONDS = float(os.getenv("FFMPEG_TIMEOUT_SECONDS", "30"))

COMPOSITING_ENABLED = os.getenv("COMPOSITING_ENABLED", "true").lower() == "true"
COMPOSITE_PLACEHOLDERS = os.getenv("COMPOSITE_PLACEHOLDERS", "false").lower() == "true"

# ---------------------------------------------------------------------------
# Upload limits
# ---------------------------------------------------------------------------
MAX_IMAGE_BYTES = 16 * 1024 * 1024  # room photos
MAX_PRODUCT_IMAGE_BYTES = 5 * 1024 * 1024  # vendor product images
MAX_VIDEO_BYTES = 50 * 1024 * 1024

# ---------------------------------------------------------------------------
# Frame / thumbnail extraction
# ---------------------------------------------------------------------------
FRAME_MAX_OFFSET_SECONDS = 5.0  # never sample deeper than this into a clip
FRAME_FALLBACK_OFFSET_SECONDS = 3.0  # used when ffprobe cannot read the duration
THUMBNAIL_WIDTH = 400

# ---------------------------------------------------------------------------
# Compositing
# ---------------------------------------------------------------------------
COMPOSITE_JPEG_QUALITY = 90

# ---------------------------------------------------------------------------
# Budget tiers (KES)
# ---------------------------------------------------------------------------
BUDGET_TIERS: dict[str, dict] = {
    "economy": {
        "label": "Economy",
        "kes_range": "KES 50,000 - 150,000",
        "price_multiplier": 0.6,
    },
    "mid-range": {
        "label": "Mid-range",
        "kes_range": "KES 150,000 - 500,000",
        "price_multiplier": 1.0,
    },
    "premium": {
        "label": "Premium",
        "kes_range": "KES 500,000 - 1,000,000",
        "price_multiplier": 1.8,
    },
    "luxury": {
        "label": "Luxury",
        "kes_range": "KES 1,000,000+",
        "price_multiplier": 3.0,
    },
}

# ---------------------------------------------------------------------------
# Heuristic base prices for virtual products (KES)
# ---------------------------------------------------------------------------
# First matching keyword group wins, so order matters.
ITEM_BASE_PRICES: list[tuple[tuple[str, ...], int]] = [
    (("sofa", "couch"), 35000),
    (("chair",), 8000),
    (("table",), 15000),
    (("bed",), 40000),
    (("lamp", "light"), 3000),
    (("rug", "carpet"), 12000),
    (("art", "painting"), 5000),
    (("curtain", "drape"), 6000),
    (("shelf", "bookcase"), 10000),
]
DEFAULT_ITEM_PRICE = 10000

MAX_PRODUCTS_PER_GROUP = 3
FALLBACK_GROUP_SIZE = 4
MAX_PLACEMENTS_PER_GROUP = 2

# ---------------------------------------------------------------------------
# Hotspot zone templates  (x, y percentages of the frame)
# ---------------------------------------------------------------------------
ZONE_TEMPLATES: dict[str, list[tuple[float, float]]] = {
    "living room": [
        (30, 60),  # main seating
        (70, 55),  # secondary seating
        (50, 40),  # centre / coffee table
        (20, 30),  # left wall
        (80, 30),  # right wall
        (50, 20),  # ceiling / pendant
    ],
    "bedroom": [
        (50, 60),  # bed
        (25, 50),  # left nightstand
        (75, 50),  # right nightstand
        (50, 30),  # wall art above the bed
        (50, 20),  # ceiling
    ],
    "default": [
        (30, 50),
        (70, 50),
        (50, 35),
        (50, 65),
    ],
}

# ---------------------------------------------------------------------------
# LLM Prompts
# ---------------------------------------------------------------------------

ANALYSIS_SYSTEM_PROMPT = """\
You are an expert interior designer specializing in African and Kenyan home \
design. Provide detailed, culturally-aware, actionable advice with specific \
product recommendations."""

ROOM_ANALYSIS_PROMPT = """\
You are a world-class interior designer with expertise in African and Kenyan \
home aesthetics, analyzing a room photo for a client in Kenya.

{client_context}

Analyze the attached room image and provide professional recommendations:

1. Room characteristics and potential
2. Specific furniture and decor recommendations grouped by category, with:
   - Exact product types (e.g. "Mid-century modern 3-seater sofa", \
"Handwoven Kenyan basket wall art")
   - Estimated price ranges in KES
   - Why each piece would work in this space
   - Where to typically find such items in Kenya
3. Color palette recommendations
4. Lighting suggestions
5. Cultural and local design elements that would enhance the space

## Output fields

- **roomType** -- detected room type (e.g. "living room", "bedroom", "kitchen")
- **roomSize** -- "small", "medium" or "large"
- **currentStyle** -- current style (e.g. "modern", "traditional", "minimalist")
- **lightingCondition** -- "bright", "moderate" or "dim"
- **colorScheme** -- detailed color palette description
- **suggestedStyles** -- list of style names, best fit first
- **recommendations** -- list of {{category, items, reasoning, priceRange, \
whereToFind}} shopping-list groups
- **productSuggestions** -- 5-8 specific products that would transform the \
space, each {{category, productName, reason, placement, priority, \
estimatedBudget, position, size}}:
   - `position`: {{"x": N, "y": N}}, percentages (0-100) from the top-left corner
   - `size`: {{"width": N, "height": N}}, percentages of the room image
   - Use realistic furniture placement (sofas against walls, coffee tables \
in the centre) and make sure products don't overlap
- **analysisText** -- comprehensive professional analysis (3-4 paragraphs)

Be specific and actionable. Think like you're creating a shopping list for \
the homeowner. Return ONLY the JSON object.
"""

CLIENT_CONTEXT_TEMPLATE = """\
CLIENT PREFERENCES:
- Budget: {budget_tier} ({kes_range})
- Room Type: {room_type}
- Space Size: {space_size}
- Favorite Colors: {favorite_colors}
- Style Preference: {style_preference}
- Priorities: {priorities}

Focus on matching the {style_preference} style preference, staying within \
the {budget_tier} budget with prices in Kenyan Shillings (KES), incorporating \
the favorite colors, addressing the priorities, and optimizing for a \
{space_size} space."""

GENERIC_CLIENT_CONTEXT = """\
The client has not shared preferences. Recommend a balanced mid-range \
refresh with prices in Kenyan Shillings (KES)."""


def _strict_object(properties: dict) -> dict:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


_STRING = {"type": "string"}
_NUMBER = {"type": "number"}

ROOM_ANALYSIS_SCHEMA: dict = _strict_object(
    {
        "roomType": _STRING,
        "roomSize": _STRING,
        "currentStyle": _STRING,
        "lightingCondition": _STRING,
        "colorScheme": _STRING,
        "suggestedStyles": {"type": "array", "items": _STRING},
        "recommendations": {
            "type": "array",
            "items": _strict_object(
                {
                    "category": _STRING,
                    "items": {"type": "array", "items": _STRING},
                    "reasoning": _STRING,
                    "priceRange": _STRING,
                    "whereToFind": _STRING,
                }
            ),
        },
        "productSuggestions": {
            "type": "array",
            "items": _strict_object(
                {
                    "category": _STRING,
                    "productName": _STRING,
                    "reason": _STRING,
                    "placement": _STRING,
                    "priority": {"type": "string", "enum": ["high", "medium", "low"]},
                    "estimatedBudget": _STRING,
                    "position": _strict_object({"x": _NUMBER, "y": _NUMBER}),
                    "size": _strict_object({"width": _NUMBER, "height": _NUMBER}),
                }
            ),
        },
        "analysisText": _STRING,
    }
)

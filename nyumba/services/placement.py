"""
Placement engine.

Assigns percentage hotspot coordinates on the room frame to resolved
products using static, room-type specific zone templates.  Pure and
deterministic: no I/O, no randomness.
"""

from __future__ import annotations

import re

from nyumba.config import MAX_PLACEMENTS_PER_GROUP, ZONE_TEMPLATES
from nyumba.models.analysis import Placement, ProductRef, RecommendationGroup

DEFAULT_TEMPLATE = "default"


def normalise_room_type(room_type: str | None) -> str:
    """``" Living-Room "`` -> ``"living room"``."""
    if not room_type:
        return ""
    return re.sub(r"[\s_-]+", " ", room_type.strip().lower())


def zones_for(room_type: str | None) -> list[tuple[float, float]]:
    """Return the anchor list for *room_type*, or the default template."""
    return ZONE_TEMPLATES.get(normalise_room_type(room_type), ZONE_TEMPLATES[DEFAULT_TEMPLATE])


def generate_placements(groups: list[RecommendationGroup], room_type: str | None) -> list[Placement]:
    """Place up to two products per group on the next unused anchors.

    Groups are walked in order.  Once the template's anchors are used up
    the remaining products are dropped; anchors are never reused.
    """
    zones = zones_for(room_type)
    placements: list[Placement] = []

    for group in groups:
        for product in group.products[:MAX_PLACEMENTS_PER_GROUP]:
            if len(placements) >= len(zones):
                return placements
            x, y = zones[len(placements)]
            placements.append(
                Placement(
                    product_ref=ProductRef(name=product.name, product_id=product.product_id),
                    category=product.category,
                    price_kes=product.price_kes,
                    image_url=product.image_url,
                    x=x,
                    y=y,
                    reasoning=product.reasoning or group.reasoning,
                    is_virtual=product.is_virtual,
                )
            )

    return placements

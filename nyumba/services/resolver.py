"""
Recommendation resolver.

Turns the analyzer's coarse shopping-list groups into concrete products.
Groups are matched against the active vendor catalog when one is
available; when nothing in the catalog fits, virtual products with a
heuristic KES price estimate stand in so every group still has something
to show.  Resolution never fails: unmatched situations are logged as
``ResolutionWarning``s.
"""

from __future__ import annotations

import logging

from nyumba.config import (
    BUDGET_TIERS,
    DEFAULT_ITEM_PRICE,
    FALLBACK_GROUP_SIZE,
    ITEM_BASE_PRICES,
    MAX_PRODUCTS_PER_GROUP,
)
from nyumba.errors import ResolutionWarning
from nyumba.models.analysis import CoarseRecommendation, RecommendationGroup, ResolvedProduct
from nyumba.models.product import CatalogProduct

logger = logging.getLogger(__name__)

FALLBACK_GROUP_CATEGORY = "Recommended"
FALLBACK_GROUP_ITEMS = ["furniture", "decor"]
FALLBACK_GROUP_REASONING = "Curated selection for your space"


def _warn(message: str, sink: list[ResolutionWarning] | None) -> None:
    warning = ResolutionWarning(message)
    logger.warning("[resolver] %s", warning)
    if sink is not None:
        sink.append(warning)


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

def estimate_price(item_name: str, budget_tier: str | None = None) -> int:
    """Heuristic KES price for an item that has no catalog match.

    The first keyword group found in the lowercased name sets the base
    price, which is then scaled by the tier multiplier (1.0 when the tier
    is absent or unknown).

    >>> estimate_price("3-seater sofa", "premium")
    63000
    """
    name = item_name.lower()
    base = DEFAULT_ITEM_PRICE
    for keywords, price in ITEM_BASE_PRICES:
        if any(keyword in name for keyword in keywords):
            base = price
            break

    multiplier = BUDGET_TIERS.get(budget_tier or "", {}).get("price_multiplier", 1.0)
    return round(base * multiplier)


# ---------------------------------------------------------------------------
# Catalog matching
# ---------------------------------------------------------------------------

def filter_by_tier(products: list[CatalogProduct], tier: str | None) -> list[CatalogProduct]:
    """Keep products without a tier plus products in *tier*."""
    if not tier:
        return list(products)
    return [p for p in products if p.budget_tier is None or p.budget_tier == tier]


def _search_terms(coarse: CoarseRecommendation) -> list[str]:
    terms = [coarse.category, *coarse.items]
    return [t.strip().lower() for t in terms if t and t.strip()]


def match_products(
    coarse: CoarseRecommendation,
    products: list[CatalogProduct],
) -> list[CatalogProduct]:
    """Products whose category, name or description mention the group.

    Matching is a case-insensitive substring test of the group's category
    and each requested item.  Catalog order is preserved.
    """
    terms = _search_terms(coarse)
    matches: list[CatalogProduct] = []
    for product in products:
        haystacks = [
            product.category.lower(),
            product.name.lower(),
            (product.description or "").lower(),
        ]
        if any(term in field for term in terms for field in haystacks):
            matches.append(product)
    return matches


def _virtual_products(
    coarse: CoarseRecommendation,
    budget_tier: str | None,
) -> list[ResolvedProduct]:
    return [
        ResolvedProduct.virtual(
            name=item,
            category=coarse.category,
            price_kes=estimate_price(item, budget_tier),
            reasoning=coarse.reasoning,
            price_range_hint=coarse.price_range_hint,
            where_to_find_hint=coarse.where_to_find_hint,
        )
        for item in coarse.items[:MAX_PRODUCTS_PER_GROUP]
    ]


def _group(coarse: CoarseRecommendation, products: list[ResolvedProduct]) -> RecommendationGroup:
    return RecommendationGroup(
        category=coarse.category,
        requested_items=list(coarse.items),
        reasoning=coarse.reasoning,
        price_range_hint=coarse.price_range_hint,
        where_to_find_hint=coarse.where_to_find_hint,
        products=products[:MAX_PRODUCTS_PER_GROUP],
    )


# ---------------------------------------------------------------------------
# Main entry-point
# ---------------------------------------------------------------------------

def resolve_recommendations(
    recommendations: list[CoarseRecommendation],
    budget_tier: str | None,
    catalog: list[CatalogProduct],
    warnings: list[ResolutionWarning] | None = None,
) -> list[RecommendationGroup]:
    """Resolve every coarse group to at most three products.

    Group order follows *recommendations*; product order follows the
    catalog (or the requested items for virtual products).  Any
    ``ResolutionWarning`` raised along the way is logged and, when a
    *warnings* list is passed, appended to it.
    """
    active = [p for p in catalog if p.is_active]

    if not recommendations:
        if not active:
            _warn("No recommendations and an empty catalog; nothing to resolve", warnings)
            return []
        _warn("Analyzer returned no groups; using a curated catalog selection", warnings)
        return [
            RecommendationGroup(
                category=FALLBACK_GROUP_CATEGORY,
                requested_items=list(FALLBACK_GROUP_ITEMS),
                reasoning=FALLBACK_GROUP_REASONING,
                products=[
                    ResolvedProduct.from_catalog(p, FALLBACK_GROUP_REASONING)
                    for p in active[:FALLBACK_GROUP_SIZE]
                ],
            )
        ]

    if not active:
        _warn("Catalog is empty; every group resolves to virtual products", warnings)
        return [_group(rec, _virtual_products(rec, budget_tier)) for rec in recommendations]

    in_tier = filter_by_tier(active, budget_tier)
    groups: list[RecommendationGroup] = []

    for rec in recommendations:
        matched = match_products(rec, in_tier)
        if matched:
            products = [ResolvedProduct.from_catalog(p, rec.reasoning) for p in matched]
        elif in_tier:
            _warn(f"No catalog match for '{rec.category}'; showing top {budget_tier or 'any'}-tier products", warnings)
            products = [ResolvedProduct.from_catalog(p, rec.reasoning) for p in in_tier[:MAX_PRODUCTS_PER_GROUP]]
        else:
            _warn(f"No products in tier '{budget_tier}' for '{rec.category}'; using virtual products", warnings)
            products = _virtual_products(rec, budget_tier)

        if not products:
            _warn(f"Group '{rec.category}' resolved to no products", warnings)
        groups.append(_group(rec, products))

    logger.info(
        "[resolver] Resolved %d groups (%d products)",
        len(groups),
        sum(len(g.products) for g in groups),
    )
    return groups

"""
Tests for the placement engine.
"""
import pytest

from nyumba.models.analysis import RecommendationGroup, ResolvedProduct
from nyumba.services.placement import generate_placements, normalise_room_type, zones_for


def make_groups(n_groups, per_group):
    groups = []
    for g in range(n_groups):
        products = [
            ResolvedProduct.virtual(
                name=f"item {g}-{p}",
                category=f"cat {g}",
                price_kes=1000,
                reasoning="" if p else f"product reason {g}",
            )
            for p in range(per_group)
        ]
        groups.append(
            RecommendationGroup(category=f"cat {g}", reasoning=f"group reason {g}", products=products)
        )
    return groups


class TestZoneLookup:
    @pytest.mark.parametrize("room_type", ["living room", "Living Room", " living-room ", "LIVING_ROOM"])
    def test_living_room_spellings(self, room_type):
        assert normalise_room_type(room_type) == "living room"
        assert len(zones_for(room_type)) == 6

    def test_bedroom_has_five_zones(self):
        assert len(zones_for("Bedroom")) == 5

    def test_unknown_room_uses_default_template(self):
        assert zones_for("garage") == zones_for(None) == [(30, 50), (70, 50), (50, 35), (50, 65)]


class TestGeneratePlacements:
    def test_living_room_drops_products_beyond_six_zones(self):
        """Four groups of two products: 8 candidates, 6 anchors."""
        groups = make_groups(4, 2)
        placements = generate_placements(groups, "living room")

        assert len(placements) == 6
        names = [p.product_ref.name for p in placements]
        assert names == ["item 0-0", "item 0-1", "item 1-0", "item 1-1", "item 2-0", "item 2-1"]
        assert (placements[0].x, placements[0].y) == (30, 60)
        assert (placements[5].x, placements[5].y) == (50, 20)

    def test_identical_inputs_give_identical_output(self):
        groups = make_groups(3, 3)
        first = [p.model_dump_json() for p in generate_placements(groups, "bedroom")]
        second = [p.model_dump_json() for p in generate_placements(groups, "bedroom")]
        assert first == second

    def test_at_most_two_products_per_group(self):
        placements = generate_placements(make_groups(2, 3), "living room")
        assert [p.category for p in placements] == ["cat 0", "cat 0", "cat 1", "cat 1"]

    def test_coordinates_are_percentages(self):
        for room_type in ("living room", "bedroom", "kitchen"):
            for placement in generate_placements(make_groups(5, 2), room_type):
                assert 0 <= placement.x <= 100
                assert 0 <= placement.y <= 100

    def test_reasoning_falls_back_to_group(self):
        placements = generate_placements(make_groups(1, 2), "bedroom")
        assert placements[0].reasoning == "product reason 0"
        assert placements[1].reasoning == "group reason 0"

    def test_carries_product_fields(self):
        placements = generate_placements(make_groups(1, 1), "kitchen")
        assert placements[0].product_ref.product_id is None
        assert placements[0].is_virtual is True
        assert placements[0].price_kes == 1000

    def test_no_groups_no_placements(self):
        assert generate_placements([], "living room") == []

"""
Unit tests for the shelf packer.

Covers the documented packing scenarios plus the layout invariants that
must hold for any input: no overlaps, containment, conservation and
determinism.
"""

import pytest

from core.exceptions import InvalidInputError
from models.geometry import LineItem
from models.settings import RollSettings
from modules.packer import EPSILON, expand_units, find_overlaps, pack, pack_summary


# Fixtures

@pytest.fixture
def plain_settings():
    """22in roll, 0.25in gap, no borders."""
    return RollSettings(
        roll_width=22.0,
        max_roll_height=60.0,
        gap=0.25,
        border=False,
        footer_height=1.5,
    )


@pytest.fixture
def mixed_items():
    """A realistic batch with mixed sizes, quantities and rotation flags."""
    return [
        LineItem("1001", "designs/logo.png", 10.0, 4.0, quantity=3),
        LineItem("1002", "designs/pocket.png", 3.5, 3.5, quantity=6),
        LineItem("1003", "designs/back.png", 11.0, 14.0, quantity=2, allow_rotate=False),
        LineItem("1004", "designs/sleeve.png", 2.5, 9.0, quantity=4),
        LineItem("1005", "designs/banner.png", 20.0, 3.0, quantity=2),
        LineItem("1001", "designs/tag.png", 1.5, 1.0, quantity=10),
    ]


def item(order_id, width, height, quantity=1, allow_rotate=False, ref=None):
    return LineItem(order_id, ref or f"designs/{order_id}.png", width, height, quantity, allow_rotate)


# Tests for the documented scenarios

class TestPackingScenarios:
    """Test the reference packing scenarios."""

    def test_three_items_share_one_shelf(self, plain_settings):
        """Test three 6x4 items fit side by side on the first shelf."""
        rolls = pack([item("A", 6, 4), item("B", 6, 4), item("C", 6, 4)], plain_settings)

        assert len(rolls) == 1
        placements = rolls[0].placements
        assert [p.y for p in placements] == [0.25, 0.25, 0.25]
        assert [p.x for p in placements] == pytest.approx([0.25, 6.5, 12.75])

    def test_fourth_item_starts_second_shelf(self, plain_settings):
        """Test a fourth 6x4 item wraps to a new shelf on the same roll."""
        items = [item(oid, 6, 4) for oid in ("A", "B", "C", "D")]
        rolls = pack(items, plain_settings)

        assert len(rolls) == 1
        fourth = rolls[0].placements[3]
        assert fourth.x == pytest.approx(0.25)
        assert fourth.y == pytest.approx(0.25 + 4 + 0.25)

    def test_item_too_wide_in_both_orientations(self, plain_settings):
        """Test a 25x4 design fails even though rotation is allowed."""
        with pytest.raises(InvalidInputError) as exc_info:
            pack([item("A", 25, 4, allow_rotate=True)], plain_settings)

        assert "does not fit" in exc_info.value.message
        assert exc_info.value.details["order_id"] == "A"

    def test_item_too_wide_upright_is_rotated(self, plain_settings):
        """Test a 21.6x4 design wider than the printable width is laid sideways."""
        rolls = pack([item("A", 21.6, 4, allow_rotate=True)], plain_settings)

        placement = rolls[0].placements[0]
        assert placement.rotated is True
        assert (placement.width, placement.height) == pytest.approx((4, 21.6))
        assert placement.x == pytest.approx(0.25)

    def test_item_too_wide_upright_without_rotation(self, plain_settings):
        """Test the same design fails when rotation is not allowed."""
        with pytest.raises(InvalidInputError):
            pack([item("A", 21.6, 4, allow_rotate=False)], plain_settings)

    def test_second_item_starts_new_roll(self, plain_settings):
        """Test two tall items that cannot share a roll are split."""
        rolls = pack([item("A", 20, 30), item("B", 20, 30)], plain_settings)

        assert [r.roll_number for r in rolls] == [1, 2]
        assert [r.design_count for r in rolls] == [1, 1]
        assert rolls[0].placements[0].order_id == "A"
        assert rolls[1].placements[0].y == pytest.approx(0.25)

    def test_empty_input_yields_no_rolls(self, plain_settings):
        """Test empty input is not an error."""
        assert pack([], plain_settings) == []


# Tests for orientation and ordering

class TestOrientation:
    """Test rotation and sort-order decisions."""

    def test_rotates_to_keep_shelf_low(self, plain_settings):
        """Test a portrait design is laid flat when it opens a shelf."""
        rolls = pack([item("A", 4, 10, allow_rotate=True)], plain_settings)

        placement = rolls[0].placements[0]
        assert placement.rotated is True
        assert (placement.width, placement.height) == (10, 4)

    def test_respects_no_rotate_flag(self, plain_settings):
        """Test allow_rotate=False keeps the upright orientation."""
        placement = pack([item("A", 4, 10)], plain_settings)[0].placements[0]

        assert placement.rotated is False
        assert (placement.width, placement.height) == (4, 10)

    def test_square_items_never_rotate(self, plain_settings):
        """Test rotation is never chosen when it changes nothing."""
        placement = pack([item("A", 5, 5, allow_rotate=True)], plain_settings)[0].placements[0]
        assert placement.rotated is False

    def test_tallest_items_placed_first(self, plain_settings):
        """Test units are sorted by height, then width, then order id."""
        items = [item("C", 2, 2), item("B", 3, 5), item("A", 4, 5), item("D", 3, 5)]
        placements = pack(items, plain_settings)[0].placements

        assert [p.order_id for p in placements] == ["A", "B", "D", "C"]

    def test_border_widens_footprint(self):
        """Test enabled borders are part of the packed footprint."""
        settings = RollSettings(gap=0.3, border=True, border_size=0.1)
        placement = pack([item("A", 6, 4)], settings)[0].placements[0]

        assert placement.width == pytest.approx(6.2)
        assert placement.height == pytest.approx(4.2)


# Tests for layout invariants

class TestPackingInvariants:
    """Test properties that hold for every packing result."""

    def test_no_overlaps(self, mixed_items, plain_settings):
        """Test no two placements on a roll come closer than the gap."""
        for roll in pack(mixed_items, plain_settings):
            assert find_overlaps(roll, plain_settings.gap) is None

    def test_containment(self, mixed_items, plain_settings):
        """Test every placement stays inside the roll's printable area."""
        for roll in pack(mixed_items, plain_settings):
            for p in roll.placements:
                assert p.x >= plain_settings.gap - EPSILON
                assert p.y >= plain_settings.gap - EPSILON
                assert p.right + plain_settings.gap <= plain_settings.roll_width + EPSILON
                assert p.bottom <= plain_settings.usable_height + EPSILON
            assert roll.content_height <= plain_settings.usable_height + EPSILON

    def test_conservation(self, mixed_items, plain_settings):
        """Test each unit of quantity appears exactly once."""
        rolls = pack(mixed_items, plain_settings)

        placed = sum(r.design_count for r in rolls)
        assert placed == sum(i.quantity for i in mixed_items)
        assert placed == len(expand_units(mixed_items, plain_settings))

    def test_deterministic(self, mixed_items, plain_settings):
        """Test identical input produces identical rolls."""
        assert pack(mixed_items, plain_settings) == pack(list(mixed_items), plain_settings)

    def test_rolls_numbered_from_one(self, plain_settings):
        """Test roll numbers follow creation order."""
        items = [item(f"{n:04d}", 21, 20) for n in range(5)]
        rolls = pack(items, plain_settings)

        assert [r.roll_number for r in rolls] == list(range(1, len(rolls) + 1))
        assert len(rolls) == 3

    def test_over_length_item_gets_own_roll(self, plain_settings):
        """Test an item taller than a roll still gets placed."""
        rolls = pack([item("A", 15, 70), item("B", 15, 70)], plain_settings)

        assert len(rolls) == 2
        assert [r.design_count for r in rolls] == [1, 1]
        assert rolls[0].content_height == pytest.approx(70.25)

    def test_small_items_fill_beside_over_length_item(self, plain_settings):
        """Test the shelf next to an over-length item is still usable."""
        rolls = pack([item("A", 10, 70), item("B", 5, 5)], plain_settings)

        assert len(rolls) == 1
        assert rolls[0].placements[1].y == pytest.approx(0.25)


# Tests for validation and summaries

class TestPackValidation:
    """Test input validation and summaries."""

    def test_rejects_non_positive_size(self, plain_settings):
        """Test zero-sized designs are rejected."""
        with pytest.raises(InvalidInputError):
            pack([item("A", 0, 4)], plain_settings)

    def test_rejects_zero_quantity(self, plain_settings):
        """Test quantity below one is rejected."""
        with pytest.raises(InvalidInputError):
            pack([item("A", 4, 4, quantity=0)], plain_settings)

    def test_rejects_invalid_settings(self):
        """Test settings are validated before packing."""
        with pytest.raises(InvalidInputError):
            pack([item("A", 4, 4)], RollSettings(roll_width=-1))

    def test_pack_summary(self, plain_settings):
        """Test the summary counts designs and rolls."""
        rolls = pack([item("A", 6, 4, quantity=3)], plain_settings)
        summary = pack_summary(rolls, plain_settings)

        assert summary["totalDesigns"] == 3
        assert summary["totalRolls"] == 1
        roll_summary = summary["rolls"][0]
        assert roll_summary["orderIds"] == ["A"]
        assert roll_summary["totalHeight"] == pytest.approx(4.25 + 1.5)
        assert 0 < roll_summary["utilization"] <= 1

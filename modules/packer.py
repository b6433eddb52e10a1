"""
Shelf packer for gangsheet rolls.

Places every design instance of a batch onto fixed-width rolls using a
row ("shelf") heuristic:

1. Expand each line item into `quantity` units.
2. Sort units tallest first, then widest, then by order id.
3. Fill the current shelf left to right; each unit takes the orientation
   that grows the shelf the least.
4. When a unit does not fit on the shelf, open a new shelf below it; when
   the new shelf would run past the roll's usable height, seal the roll
   and start the next one.

This is a deterministic heuristic, not an optimal bin packer: nothing is
reshuffled once placed. The same input always produces the same rolls.

Footprints include the design border on every side. Gaps are kept
between neighbours and from the roll edges (a placement's top-left corner
is never closer than `gap` to the roll's top or left edge).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any, Iterable, List, Optional

from core.exceptions import InvalidInputError
from logging_config import get_logger
from models.geometry import LineItem, Placement, Roll
from models.settings import RollSettings


logger = get_logger(__name__)

# Tolerance for float comparisons, in inches
EPSILON = 1e-9


@dataclass(frozen=True)
class _Unit:
    """One copy of a line item, with its upright footprint."""

    item: LineItem
    width: float
    height: float
    sequence: int


@dataclass(frozen=True)
class _Orientation:
    width: float
    height: float
    rotated: bool


class _RollBuilder:
    """Mutable cursor state for the roll currently being filled."""

    def __init__(self, settings: RollSettings):
        self.settings = settings
        self.placements: List[Placement] = []
        self.shelf_y = settings.gap
        self.shelf_height = 0.0
        self.cursor_x = settings.gap

    @property
    def is_empty(self) -> bool:
        return not self.placements

    def fits_on_shelf(self, orientation: _Orientation) -> bool:
        if self.cursor_x + orientation.width + self.settings.gap > self.settings.roll_width + EPSILON:
            return False
        # Growing the shelf must not push the roll past its usable height.
        ceiling = max(self.settings.usable_height, self.shelf_y + self.shelf_height)
        return self.shelf_y + orientation.height <= ceiling + EPSILON

    def next_shelf_y(self) -> float:
        return self.shelf_y + self.shelf_height + self.settings.gap

    def open_shelf(self, shelf_y: float) -> None:
        self.shelf_y = shelf_y
        self.shelf_height = 0.0
        self.cursor_x = self.settings.gap

    def place(self, unit: _Unit, orientation: _Orientation) -> Placement:
        placement = Placement(
            x=self.cursor_x,
            y=self.shelf_y,
            width=orientation.width,
            height=orientation.height,
            rotated=orientation.rotated,
            item=unit.item,
        )
        self.placements.append(placement)
        self.cursor_x += orientation.width + self.settings.gap
        self.shelf_height = max(self.shelf_height, orientation.height)
        return placement

    def seal(self, roll_number: int) -> Roll:
        content_height = max(p.bottom for p in self.placements)
        return Roll(
            roll_number=roll_number,
            placements=tuple(self.placements),
            content_height=content_height,
        )


def expand_units(line_items: Iterable[LineItem], settings: RollSettings) -> List[_Unit]:
    """Expand line items by quantity into units with border-inclusive footprints."""
    margin = 2 * settings.border_margin
    units = []
    for item in line_items:
        for _ in range(item.quantity):
            units.append(_Unit(
                item=item,
                width=item.print_width + margin,
                height=item.print_height + margin,
                sequence=len(units),
            ))
    return units


def _sort_key(unit: _Unit):
    # Tallest, then widest, then order id. Design ref and input sequence
    # only break the remaining ties so the order is total.
    return (-unit.height, -unit.width, unit.item.order_id, unit.item.design_ref, unit.sequence)


def _orientations(unit: _Unit, roll_width: float) -> List[_Orientation]:
    options = [_Orientation(unit.width, unit.height, False)]
    # A design whose long side exceeds the whole roll width is never turned
    # sideways into an extra-long placement.
    rotatable = max(unit.width, unit.height) <= roll_width + EPSILON
    if unit.item.allow_rotate and rotatable and abs(unit.width - unit.height) > EPSILON:
        options.append(_Orientation(unit.height, unit.width, True))
    return options


def _least_growth(options: List[_Orientation], shelf_height: float) -> _Orientation:
    # min() keeps the first of equal candidates, so ties stay unrotated.
    return min(options, key=lambda o: max(0.0, o.height - shelf_height))


def pack(line_items: Iterable[LineItem], settings: RollSettings) -> List[Roll]:
    """
    Pack line items onto rolls.

    Args:
        line_items: Items to place (quantity expands to separate placements)
        settings: Roll geometry (width, usable height, gap, border)

    Returns:
        Rolls in creation order, numbered from 1. Empty input gives [].

    Raises:
        InvalidInputError: If settings or an item are invalid, or an item
            is wider than the printable roll width in every orientation
    """
    settings.validate()
    items = list(line_items)
    for item in items:
        item.validate()

    units = sorted(expand_units(items, settings), key=_sort_key)
    if not units:
        return []

    printable_width = settings.roll_width - 2 * settings.gap
    rolls: List[Roll] = []
    builder = _RollBuilder(settings)

    for unit in units:
        candidates = [
            o for o in _orientations(unit, settings.roll_width)
            if o.width <= printable_width + EPSILON
        ]
        if not candidates:
            raise InvalidInputError(
                f"Design for order {unit.item.order_id} "
                f"({unit.item.print_width:g} x {unit.item.print_height:g} in) "
                f"does not fit the {settings.roll_width:g} in roll",
                {
                    "order_id": unit.item.order_id,
                    "design_ref": unit.item.design_ref,
                    "footprint": [unit.width, unit.height],
                    "printable_width": printable_width,
                }
            )

        on_shelf = [o for o in candidates if builder.fits_on_shelf(o)]
        if on_shelf:
            builder.place(unit, _least_growth(on_shelf, builder.shelf_height))
            continue

        orientation = _least_growth(candidates, 0.0)
        if builder.is_empty:
            # Taller than a whole roll: it still gets an (over-length) roll.
            builder.place(unit, orientation)
            continue

        next_y = builder.next_shelf_y()
        if next_y + orientation.height > settings.usable_height + EPSILON:
            rolls.append(builder.seal(len(rolls) + 1))
            builder = _RollBuilder(settings)
        else:
            builder.open_shelf(next_y)
        builder.place(unit, orientation)

    rolls.append(builder.seal(len(rolls) + 1))

    logger.debug(f"Packed {len(units)} designs onto {len(rolls)} rolls")
    return rolls


def pack_summary(rolls: List[Roll], settings: RollSettings) -> Dict[str, Any]:
    """
    Summarize a packing result.

    Utilization is the share of each roll's content area covered by
    design footprints.
    """
    summaries = []
    for roll in rolls:
        used = sum(p.width * p.height for p in roll.placements)
        area = settings.roll_width * roll.content_height
        summaries.append({
            "rollNumber": roll.roll_number,
            "designCount": roll.design_count,
            "contentHeight": round(roll.content_height, 4),
            "totalHeight": round(roll.content_height + settings.footer_height, 4),
            "utilization": round(used / area, 4) if area > 0 else 0.0,
            "orderIds": roll.order_ids,
        })

    return {
        "totalDesigns": sum(r.design_count for r in rolls),
        "totalRolls": len(rolls),
        "rolls": summaries,
    }


def find_overlaps(roll: Roll, gap: float) -> Optional[tuple]:
    """
    Return the first pair of placements closer than `gap`, or None.

    Handy for checking a packing result in tests.
    """
    placements = roll.placements
    for i, a in enumerate(placements):
        for b in placements[i + 1:]:
            separated = (
                a.right + gap <= b.x + EPSILON
                or b.right + gap <= a.x + EPSILON
                or a.bottom + gap <= b.y + EPSILON
                or b.bottom + gap <= a.y + EPSILON
            )
            if not separated:
                return a, b
    return None

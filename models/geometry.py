"""
Geometry value types for gangsheet packing.

These models describe what gets printed and where:
- LineItem: one product line to print (design + print size + quantity)
- Placement: one design instance positioned on a roll
- Roll: an ordered, sealed sequence of placements sharing one output image

All measurements are in inches, measured from the top-left corner of the
roll. Conversion to pixels happens only in the renderer.

Thread Safety:
    - All classes are frozen dataclasses (immutable)
    - Safe to share between the orchestrator and render worker threads
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Tuple

from core.exceptions import InvalidInputError


@dataclass(frozen=True)
class LineItem:
    """
    One product instance to be printed.

    Created from order data by the order collaborator and never mutated.
    A quantity of N expands to N independent placements when packed.
    """

    order_id: str
    """Order this item belongs to (shown in roll footers)."""

    design_ref: str
    """Opaque design handle: URL or storage key."""

    print_width: float
    """Upright print width in inches."""

    print_height: float
    """Upright print height in inches."""

    quantity: int = 1
    """Number of copies to place."""

    allow_rotate: bool = True
    """Whether the packer may turn this design 90 degrees."""

    line_id: Optional[str] = None
    """Order-product identifier, used for quantity overrides."""

    label: str = ""
    """Display name of the product modification (e.g. 'Front')."""

    def validate(self) -> None:
        """
        Check that the item can be packed.

        Raises:
            InvalidInputError: For non-positive sizes, quantity < 1 or an
                empty design reference
        """
        details = {"order_id": self.order_id, "design_ref": self.design_ref}
        if not self.design_ref:
            raise InvalidInputError(f"Order {self.order_id}: missing design reference", details)
        if self.print_width <= 0 or self.print_height <= 0:
            raise InvalidInputError(
                f"Order {self.order_id}: print size must be positive, "
                f"got {self.print_width} x {self.print_height} in",
                details
            )
        if self.quantity < 1:
            raise InvalidInputError(
                f"Order {self.order_id}: quantity must be at least 1, got {self.quantity}",
                details
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "orderId": self.order_id,
            "designRef": self.design_ref,
            "printWidth": self.print_width,
            "printHeight": self.print_height,
            "quantity": self.quantity,
            "allowRotate": self.allow_rotate,
            "lineId": self.line_id,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineItem":
        """Create from dictionary (accepts camelCase or snake_case keys)."""
        line_id = data.get("lineId", data.get("line_id"))
        return cls(
            order_id=str(data.get("orderId", data.get("order_id", ""))),
            design_ref=data.get("designRef", data.get("design_ref", "")),
            print_width=float(data.get("printWidth", data.get("print_width", 0.0))),
            print_height=float(data.get("printHeight", data.get("print_height", 0.0))),
            quantity=int(data.get("quantity", 1)),
            allow_rotate=bool(data.get("allowRotate", data.get("allow_rotate", True))),
            line_id=str(line_id) if line_id is not None else None,
            label=data.get("label", ""),
        )


@dataclass(frozen=True)
class Placement:
    """
    One design instance positioned on one roll.

    Width and height are the post-rotation footprint, border included.
    Invariant: 0 <= x and x + width <= roll width; placements on the same
    roll never overlap, gap margins included.
    """

    x: float
    y: float
    width: float
    height: float
    rotated: bool
    item: LineItem

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def order_id(self) -> str:
        return self.item.order_id

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses (preview)."""
        return {
            "x": round(self.x, 4),
            "y": round(self.y, 4),
            "width": round(self.width, 4),
            "height": round(self.height, 4),
            "rotated": self.rotated,
            "orderId": self.item.order_id,
            "designRef": self.item.design_ref,
            "lineId": self.item.line_id,
        }


@dataclass(frozen=True)
class Roll:
    """
    A sealed sequence of placements rendered into one output image.

    Roll numbers are 1-based and follow creation order.
    """

    roll_number: int
    placements: Tuple[Placement, ...]
    content_height: float

    @property
    def order_ids(self) -> List[str]:
        """Distinct order ids in first-placement order (footer display)."""
        seen: List[str] = []
        for placement in self.placements:
            if placement.order_id not in seen:
                seen.append(placement.order_id)
        return seen

    @property
    def design_count(self) -> int:
        return len(self.placements)

    def to_dict(self, include_placements: bool = True) -> Dict[str, Any]:
        data = {
            "rollNumber": self.roll_number,
            "contentHeight": round(self.content_height, 4),
            "designCount": self.design_count,
            "orderIds": self.order_ids,
        }
        if include_placements:
            data["placements"] = [p.to_dict() for p in self.placements]
        return data

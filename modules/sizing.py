"""Print-size helpers for turning design records into line items."""

from __future__ import annotations

from typing import Optional, Tuple

from core.exceptions import InvalidInputError
from models.geometry import LineItem


def calculate_print_dimensions(
    pixel_width: int,
    pixel_height: int,
    print_size: float
) -> Tuple[float, float]:
    """
    Scale a design so its long side measures `print_size` inches.

    Landscape designs are constrained by width, portrait and square
    designs by height. The aspect ratio is preserved.

    Returns:
        (width, height) in inches
    """
    if pixel_width <= 0 or pixel_height <= 0:
        raise InvalidInputError(
            f"Design pixel size must be positive, got {pixel_width} x {pixel_height}"
        )
    if print_size <= 0:
        raise InvalidInputError(f"Print size must be positive, got {print_size}")

    aspect_ratio = pixel_width / pixel_height
    if pixel_width > pixel_height:
        return print_size, print_size / aspect_ratio
    return print_size * aspect_ratio, print_size


def line_item_from_design(
    order_id: str,
    design_ref: str,
    pixel_width: int,
    pixel_height: int,
    print_size: float,
    quantity: int = 1,
    allow_rotate: bool = True,
    line_id: Optional[str] = None,
    label: str = "",
) -> LineItem:
    """
    Build a LineItem from a design's pixel size and its target print size.

    Args:
        order_id: Order the design belongs to
        design_ref: URL or storage key of the design image
        pixel_width: Source image width in pixels
        pixel_height: Source image height in pixels
        print_size: Length of the long side on the garment, in inches
        quantity: Copies to print
        allow_rotate: Whether the packer may rotate the design
        line_id: Order-product id (for quantity overrides)
        label: Modification name shown in previews

    Returns:
        LineItem with print_width/print_height in inches
    """
    width, height = calculate_print_dimensions(pixel_width, pixel_height, print_size)
    return LineItem(
        order_id=str(order_id),
        design_ref=design_ref,
        print_width=round(width, 4),
        print_height=round(height, 4),
        quantity=quantity,
        allow_rotate=allow_rotate,
        line_id=line_id,
        label=label,
    )

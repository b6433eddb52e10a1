"""
Roll renderer for gangsheets.

Turns one packed Roll into a print-ready RGBA image at the configured DPI:
transparent background (DTF film), every design resized with a bicubic
filter, rotated when the packer turned it, framed with an optional solid
border, and an opaque footer band identifying the roll.

One call renders one roll. Calls share no mutable state, so independent
rolls can be rendered on separate worker threads. Fetched designs are
cached per call only.

Failure semantics:
    Any placement whose image cannot be fetched or processed aborts the
    whole roll with a RenderError naming the placement. Partial rolls are
    never produced.

Cancellation:
    If a cancel event is given it is checked before each placement, never
    in the middle of compositing one.
"""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Dict, List, Optional, Tuple

import qrcode
import qrcode.image.pil
from PIL import Image, ImageColor, ImageDraw, ImageFont

from core.exceptions import GangsheetError, JobCancelledError, RenderError
from logging_config import get_logger
from models.geometry import Placement, Roll
from models.settings import RollSettings


logger = get_logger(__name__)

# Footer layout
FOOTER_FONT_RATIO = 0.15          # font size as a fraction of the DPI
FOOTER_PADDING_INCHES = 0.1
MAX_FOOTER_ORDER_IDS = 10
FOOTER_BACKGROUND = (255, 255, 255, 255)
FOOTER_INK = (0, 0, 0, 255)

TRANSPARENT = (0, 0, 0, 0)

FONT_CANDIDATES = (
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Bold.ttf",
    "/Library/Fonts/Arial Bold.ttf",
    "/System/Library/Fonts/Helvetica.ttc",
    "C:/Windows/Fonts/arialbd.ttf",
    "DejaVuSans-Bold.ttf",
)

FetchImage = Callable[[str], Image.Image]


@dataclass(frozen=True)
class RenderedRoll:
    """PNG output for one roll."""

    roll_number: int
    file_name: str
    png_bytes: bytes
    width_px: int
    height_px: int
    design_count: int
    order_ids: Tuple[str, ...]


def roll_file_name(roll_number: int) -> str:
    """Stable per-job file name for a roll image."""
    return f"roll-{roll_number}.png"


def to_pixels(inches: float, dpi: int) -> int:
    return int(round(inches * dpi))


def parse_color(value: str) -> Tuple[int, int, int, int]:
    """Parse a CSS colour name or hex string into RGBA."""
    try:
        return ImageColor.getcolor(value, "RGBA")
    except ValueError as e:
        raise RenderError(f"Unknown colour {value!r}", details={"color": value}) from e


def canvas_size(roll: Roll, settings: RollSettings) -> Tuple[int, int]:
    """Pixel size of a roll image, footer included."""
    width = to_pixels(settings.roll_width, settings.dpi)
    height = to_pixels(roll.content_height, settings.dpi) + to_pixels(settings.footer_height, settings.dpi)
    return width, height


# =============================================================================
# DESIGN TRANSFORMS
# =============================================================================

def resize_design(image: Image.Image, width_px: int, height_px: int) -> Image.Image:
    """Resize with a bicubic filter to an exact pixel size."""
    if image.size == (width_px, height_px):
        return image.copy()
    return image.resize((width_px, height_px), Image.Resampling.BICUBIC)


def rotate_clockwise(image: Image.Image) -> Image.Image:
    """Rotate 90 degrees clockwise (lossless)."""
    return image.transpose(Image.Transpose.ROTATE_270)


def add_border(image: Image.Image, border_px: int, color: Tuple[int, int, int, int]) -> Image.Image:
    """
    Frame an image with a solid border, growing it by border_px per side.

    The design's own transparency is kept; only the frame is coloured.
    """
    if border_px <= 0:
        return image
    framed = Image.new("RGBA", (image.width + 2 * border_px, image.height + 2 * border_px), TRANSPARENT)
    framed.alpha_composite(image, (border_px, border_px))
    draw = ImageDraw.Draw(framed)
    draw.rectangle(
        [0, 0, framed.width - 1, framed.height - 1],
        outline=color,
        width=border_px
    )
    return framed


def placement_box(placement: Placement, dpi: int) -> Tuple[int, int, int, int]:
    """
    Pixel rectangle (left, top, right, bottom) of a placement footprint.

    Edges are rounded rather than sizes, so placements that touch in inches
    share an edge in pixels instead of overlapping by one.
    """
    return (
        to_pixels(placement.x, dpi),
        to_pixels(placement.y, dpi),
        to_pixels(placement.right, dpi),
        to_pixels(placement.bottom, dpi),
    )


def _prepare_design(
    placement: Placement,
    index: int,
    roll_number: int,
    size_px: Tuple[int, int],
    border_px: int,
    fetch_image: FetchImage,
    border_color: Optional[Tuple[int, int, int, int]],
) -> Image.Image:
    item = placement.item
    try:
        source = fetch_image(item.design_ref)
    except GangsheetError as e:
        raise RenderError(
            f"Roll {roll_number}, placement {index + 1} (order {item.order_id}): {e.message}",
            roll_number, index, {"design_ref": item.design_ref}
        ) from e
    except (OSError, ValueError) as e:
        raise RenderError(
            f"Roll {roll_number}, placement {index + 1} (order {item.order_id}): "
            f"cannot load design {item.design_ref!r} ({e})",
            roll_number, index, {"design_ref": item.design_ref}
        ) from e

    # Design area inside the border, in placed orientation
    inner_w = max(1, size_px[0] - 2 * border_px)
    inner_h = max(1, size_px[1] - 2 * border_px)

    try:
        if source.mode != "RGBA":
            source = source.convert("RGBA")
        if placement.rotated:
            tile = rotate_clockwise(resize_design(source, inner_h, inner_w))
        else:
            tile = resize_design(source, inner_w, inner_h)
        if border_color is not None:
            tile = add_border(tile, border_px, border_color)
    except (OSError, ValueError) as e:
        raise RenderError(
            f"Roll {roll_number}, placement {index + 1} (order {item.order_id}): "
            f"cannot process design {item.design_ref!r} ({e})",
            roll_number, index, {"design_ref": item.design_ref}
        ) from e

    return tile


def _composite(canvas: Image.Image, tile: Image.Image, x: int, y: int) -> None:
    # Pixel rounding can push a tile one pixel past the content area.
    width = min(tile.width, canvas.width - x)
    height = min(tile.height, canvas.height - y)
    if width <= 0 or height <= 0:
        return
    if (width, height) != tile.size:
        tile = tile.crop((0, 0, width, height))
    canvas.alpha_composite(tile, (x, y))


# =============================================================================
# FOOTER
# =============================================================================

@functools.lru_cache(maxsize=32)
def load_font(size: int) -> ImageFont.ImageFont:
    """Load a bold sans font, falling back to Pillow's bundled font."""
    for path in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def footer_lines(roll: Roll, gangsheet_name: str) -> List[str]:
    """Text lines printed in a roll's footer."""
    order_ids = roll.order_ids
    orders = ", ".join(order_ids[:MAX_FOOTER_ORDER_IDS])
    if len(order_ids) > MAX_FOOTER_ORDER_IDS:
        orders += "..."
    return [
        f"{gangsheet_name} - Roll {roll.roll_number}",
        f"Designs: {roll.design_count}",
        f"Orders: {orders}",
    ]


def make_qr_code(data: str, size_px: int) -> Image.Image:
    """Render a QR code scaled to a square of size_px pixels."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
        image_factory=qrcode.image.pil.PilImage,
    )
    qr.add_data(data)
    qr.make(fit=True)
    image = qr.make_image(fill_color="black", back_color="white").get_image().convert("RGBA")
    return image.resize((size_px, size_px), Image.Resampling.NEAREST)


def _fit_text(draw: ImageDraw.ImageDraw, text: str, font, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + "...", font=font) > max_width:
        text = text[:-1]
    return text + "..." if text else ""


def draw_footer(
    canvas: Image.Image,
    roll: Roll,
    settings: RollSettings,
    gangsheet_name: str,
    identity: str,
) -> None:
    """
    Draw the identification band at the bottom of a roll image.

    Layout: opaque background, separator rule along the top edge, text
    lines on the left, QR code (encoding `identity`) right-aligned.
    """
    dpi = settings.dpi
    footer_px = to_pixels(settings.footer_height, dpi)
    if footer_px <= 0:
        return

    top = canvas.height - footer_px
    width = canvas.width
    pad = max(4, to_pixels(FOOTER_PADDING_INCHES, dpi))

    draw = ImageDraw.Draw(canvas)
    draw.rectangle([0, top, width - 1, canvas.height - 1], fill=FOOTER_BACKGROUND)
    rule_px = max(2, dpi // 150)
    draw.rectangle([0, top, width - 1, top + rule_px - 1], fill=FOOTER_INK)

    qr_size = min(footer_px - 2 * pad, width // 3)
    text_right = width - pad
    if qr_size > 0:
        qr_image = make_qr_code(identity, qr_size)
        qr_left = width - pad - qr_size
        canvas.paste(qr_image, (qr_left, top + pad))
        text_right = qr_left - pad

    font = load_font(max(10, int(dpi * FOOTER_FONT_RATIO)))
    _, top_edge, _, bottom_edge = font.getbbox("Ag")
    text_height = bottom_edge - min(0, top_edge)
    line_height = text_height + max(2, pad // 2)

    text_y = top + pad
    for line in footer_lines(roll, gangsheet_name):
        if text_y + text_height > canvas.height:
            break
        draw.text((pad, text_y), _fit_text(draw, line, font, text_right - pad), fill=FOOTER_INK, font=font)
        text_y += line_height


# =============================================================================
# ROLL RENDERING
# =============================================================================

def render_roll(
    roll: Roll,
    settings: RollSettings,
    fetch_image: FetchImage,
    gangsheet_name: str,
    identity: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Image.Image:
    """
    Composite one roll.

    Args:
        roll: Packed roll (placements in inches)
        settings: Job's settings snapshot
        fetch_image: Callable returning a PIL image for a design reference
        gangsheet_name: Shown in the footer
        identity: Encoded in the footer QR code (defaults to name + roll)
        cancel_event: Checked between placements

    Returns:
        RGBA image of size canvas_size(roll, settings)

    Raises:
        RenderError: If any placement cannot be fetched or processed
        JobCancelledError: If cancel_event was set
    """
    dpi = settings.dpi
    canvas = Image.new("RGBA", canvas_size(roll, settings), TRANSPARENT)
    border_color = parse_color(settings.border_color) if settings.border else None
    border_px = to_pixels(settings.border_size, dpi) if border_color is not None else 0

    tiles: Dict[tuple, Image.Image] = {}
    for index, placement in enumerate(roll.placements):
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError(message=f"Rendering of roll {roll.roll_number} cancelled")

        left, top, right, bottom = placement_box(placement, dpi)
        size_px = (right - left, bottom - top)
        key = (placement.item.design_ref, size_px, placement.rotated)
        tile = tiles.get(key)
        if tile is None:
            tile = _prepare_design(
                placement, index, roll.roll_number, size_px, border_px, fetch_image, border_color
            )
            tiles[key] = tile

        _composite(canvas, tile, left, top)

    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelledError(message=f"Rendering of roll {roll.roll_number} cancelled")

    draw_footer(
        canvas,
        roll,
        settings,
        gangsheet_name,
        identity or f"{gangsheet_name}/{roll_file_name(roll.roll_number)}",
    )

    logger.debug(
        f"Rendered roll {roll.roll_number}: {roll.design_count} designs, "
        f"{len(tiles)} distinct, {canvas.width}x{canvas.height}px"
    )
    return canvas


def encode_png(image: Image.Image, dpi: int) -> bytes:
    """Lossless PNG bytes with DPI metadata."""
    buf = BytesIO()
    image.save(buf, format="PNG", dpi=(dpi, dpi))
    return buf.getvalue()


def render_roll_png(
    roll: Roll,
    settings: RollSettings,
    fetch_image: FetchImage,
    gangsheet_name: str,
    identity: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RenderedRoll:
    """Render a roll and encode it as PNG (the unit of work for a render worker)."""
    image = render_roll(roll, settings, fetch_image, gangsheet_name, identity, cancel_event)
    try:
        png_bytes = encode_png(image, settings.dpi)
    except (OSError, ValueError) as e:
        raise RenderError(f"Roll {roll.roll_number}: PNG encoding failed ({e})", roll.roll_number) from e

    return RenderedRoll(
        roll_number=roll.roll_number,
        file_name=roll_file_name(roll.roll_number),
        png_bytes=png_bytes,
        width_px=image.width,
        height_px=image.height,
        design_count=roll.design_count,
        order_ids=tuple(roll.order_ids),
    )

"""
Roll settings model.

RollSettings is the tenant-scoped print configuration. A job takes an
owned copy of the tenant's settings when it is created, so later edits to
the tenant defaults never reach an in-flight job.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, replace as dataclass_replace
from typing import Dict, Any

from PIL import ImageColor

from core.exceptions import InvalidInputError


# Wire (camelCase) name -> field name
_WIRE_NAMES = {
    "rollWidth": "roll_width",
    "maxRollHeight": "max_roll_height",
    "rollLength": "max_roll_height",
    "dpi": "dpi",
    "gap": "gap",
    "border": "border",
    "borderSize": "border_size",
    "borderColor": "border_color",
    "footerHeight": "footer_height",
}


@dataclass(frozen=True)
class RollSettings:
    """
    Physical roll and rendering parameters, all lengths in inches.

    Frozen so that a job's snapshot cannot be altered after creation.
    """

    roll_width: float = 22.0
    """Physical roll width."""

    max_roll_height: float = 60.0
    """Soft cap before a new roll is started (footer included)."""

    dpi: int = 300
    """Pixels per inch for rasterization."""

    gap: float = 0.3
    """Minimum spacing between placements and from the roll edges."""

    border: bool = True
    """Whether each design gets a solid border."""

    border_size: float = 0.1
    """Border thickness on each side."""

    border_color: str = "red"
    """Border colour (CSS colour name or hex)."""

    footer_height: float = 1.5
    """Identification band reserved at the bottom of each roll."""

    @property
    def border_margin(self) -> float:
        """Extra footprint added to each side of a design by its border."""
        return self.border_size if self.border else 0.0

    @property
    def usable_height(self) -> float:
        """Height available for placements on one roll."""
        return self.max_roll_height - self.footer_height

    def validate(self) -> "RollSettings":
        """
        Check the settings are physically meaningful.

        Returns:
            self, for chaining

        Raises:
            InvalidInputError: If any value is out of range or the border
                colour cannot be parsed
        """
        problems = []
        if self.roll_width <= 0:
            problems.append(f"roll width must be positive (got {self.roll_width})")
        if self.max_roll_height <= 0:
            problems.append(f"max roll height must be positive (got {self.max_roll_height})")
        if self.dpi <= 0:
            problems.append(f"dpi must be positive (got {self.dpi})")
        if self.gap < 0:
            problems.append(f"gap cannot be negative (got {self.gap})")
        if self.border_size < 0:
            problems.append(f"border size cannot be negative (got {self.border_size})")
        if self.footer_height < 0:
            problems.append(f"footer height cannot be negative (got {self.footer_height})")
        elif self.footer_height >= self.max_roll_height:
            problems.append("footer height must be smaller than the max roll height")
        if self.roll_width <= 2 * self.gap:
            problems.append("gap leaves no printable width on the roll")
        if self.border:
            try:
                ImageColor.getrgb(self.border_color)
            except ValueError:
                problems.append(f"unknown border colour {self.border_color!r}")

        if problems:
            raise InvalidInputError(
                "Invalid roll settings: " + "; ".join(problems),
                {"settings": self.to_dict()}
            )
        return self

    def replace(self, **changes) -> "RollSettings":
        """Return a copy with some fields changed."""
        return dataclass_replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (camelCase, as exposed over HTTP)."""
        data = asdict(self)
        return {
            "rollWidth": data["roll_width"],
            "maxRollHeight": data["max_roll_height"],
            "dpi": data["dpi"],
            "gap": data["gap"],
            "border": data["border"],
            "borderSize": data["border_size"],
            "borderColor": data["border_color"],
            "footerHeight": data["footer_height"],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: "RollSettings" = None) -> "RollSettings":
        """
        Create from a dictionary, filling missing keys from `base`.

        Accepts both camelCase wire names and snake_case field names.
        Unknown keys are ignored.

        Args:
            data: Partial or complete settings dictionary
            base: Settings to take missing values from (defaults if None)
        """
        base = base or cls()
        changes: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            field_name = _WIRE_NAMES.get(key, key)
            if field_name not in cls.__dataclass_fields__ or value is None:
                continue
            changes[field_name] = value

        try:
            for name in ("roll_width", "max_roll_height", "gap", "border_size", "footer_height"):
                if name in changes:
                    changes[name] = float(changes[name])
            if "dpi" in changes:
                changes["dpi"] = int(changes["dpi"])
        except (TypeError, ValueError) as e:
            raise InvalidInputError(f"Invalid roll settings value: {e}", {"settings": dict(data)})

        if "border" in changes:
            changes["border"] = _as_bool(changes["border"])
        if "border_color" in changes:
            changes["border_color"] = str(changes["border_color"])

        return base.replace(**changes)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)

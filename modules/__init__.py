"""Pure processing steps of the gangsheet engine: packing, sizing, rendering and packaging."""

__all__ = [
    "packer",
    "packager",
    "renderer",
    "sizing",
]

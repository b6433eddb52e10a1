"""
Design image storage.

Resolves a design reference to a decoded RGBA image. A reference is
either an http(s) URL or a storage key relative to the configured
storage directory.

THREAD SAFETY:
    - DesignStore holds no mutable state after construction
    - fetch_image() may be called concurrently from render workers
    - Every call returns a new Image object owned by the caller

Usage:
    store = DesignStore(Path("storage/designs"), timeout_seconds=15)
    image = store.fetch_image("tenant-1/designs/abc123.png")
    image = store.fetch_image("https://cdn.example.com/designs/abc123.png")
"""

from __future__ import annotations

import logging
import urllib.error
import urllib.request
from io import BytesIO
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .exceptions import DesignNotFoundError


class DesignStore:
    """
    Reads design images from local storage or over HTTP.

    Attributes:
        storage_dir: Root directory for storage keys
        timeout_seconds: Network timeout for URL references
    """

    def __init__(
        self,
        storage_dir: str | Path,
        timeout_seconds: float = 15.0,
        logger: Optional[logging.Logger] = None
    ):
        self._storage_dir = Path(storage_dir).resolve()
        self._timeout = timeout_seconds
        self._logger = logger or logging.getLogger("gangsheet_engine.core.design_store")

    @property
    def storage_dir(self) -> Path:
        return self._storage_dir

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def fetch_bytes(self, design_ref: str) -> bytes:
        """
        Read the raw bytes of a design.

        Raises:
            DesignNotFoundError: If the reference cannot be resolved or read
        """
        if design_ref.startswith(("http://", "https://")):
            return self._download(design_ref)
        return self._read_key(design_ref)

    def fetch_image(self, design_ref: str) -> Image.Image:
        """
        Fetch and decode a design as an RGBA image.

        Raises:
            DesignNotFoundError: If the design is missing or not a decodable image
        """
        data = self.fetch_bytes(design_ref)
        try:
            image = Image.open(BytesIO(data))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise DesignNotFoundError(design_ref, f"cannot decode image ({e})")

        return image.convert("RGBA") if image.mode != "RGBA" else image

    def save(self, design_ref: str, data: bytes) -> Path:
        """Store design bytes under a storage key (used by uploads and fixtures)."""
        path = self._resolve_key(design_ref)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return path

    def _download(self, url: str) -> bytes:
        self._logger.debug(f"Downloading design {url}")
        try:
            with urllib.request.urlopen(url, timeout=self._timeout) as resp:
                return resp.read()
        except (urllib.error.URLError, TimeoutError, ValueError) as e:
            raise DesignNotFoundError(url, f"download failed ({e})")

    def _read_key(self, design_ref: str) -> bytes:
        path = self._resolve_key(design_ref)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise DesignNotFoundError(design_ref, "no such file in design storage")
        except OSError as e:
            raise DesignNotFoundError(design_ref, f"read failed ({e})")

    def _resolve_key(self, design_ref: str) -> Path:
        path = (self._storage_dir / design_ref).resolve()
        if path != self._storage_dir and self._storage_dir not in path.parents:
            raise DesignNotFoundError(design_ref, "key escapes the storage directory")
        return path

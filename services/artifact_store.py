"""
Filesystem storage for finished gangsheet archives.

Archives are stored under a tenant- and job-scoped key:

    gangsheets/{tenant_id}/{job_id}/{file_name}.zip

The key (not the absolute path) is what gets recorded on the job as its
artifact location, so the storage root can move without rewriting jobs.
Writes go to a temporary file first and are renamed into place, so a
reader never sees a partially written archive.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path

from werkzeug.utils import secure_filename

from core.exceptions import PackagingError
from logging_config import get_logger


logger = get_logger(__name__)

KEY_PREFIX = "gangsheets"


class ArtifactStore:
    """Stores and serves job archives below a root directory."""

    def __init__(self, root_dir: str | Path):
        self._root = Path(root_dir).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root_dir(self) -> Path:
        return self._root

    @staticmethod
    def build_key(tenant_id: str, job_id: str, file_name: str) -> str:
        tenant = secure_filename(str(tenant_id)) or "default"
        return f"{KEY_PREFIX}/{tenant}/{job_id}/{file_name}"

    def save(self, tenant_id: str, job_id: str, file_name: str, data: bytes) -> str:
        """
        Persist an archive.

        Returns:
            Storage key for the job's artifact_location

        Raises:
            PackagingError: If the archive cannot be written
        """
        key = self.build_key(tenant_id, job_id, file_name)
        path = self._path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".part")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except OSError as e:
            raise PackagingError(f"Failed to store archive {key}: {e}", {"key": key}) from e

        logger.info(f"Stored artifact {key} ({len(data)} bytes)")
        return key

    def load(self, key: str) -> bytes:
        """
        Read a stored archive.

        Raises:
            PackagingError: If the archive is missing or unreadable
        """
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except OSError as e:
            raise PackagingError(f"Stored archive {key} is unavailable: {e}", {"key": key}) from e

    def exists(self, key: str) -> bool:
        return self._path_for(key).is_file()

    def delete(self, key: str) -> bool:
        """Remove an archive and its job directory. Returns False if absent."""
        path = self._path_for(key)
        if not path.exists():
            return False
        job_dir = path.parent
        if job_dir != self._root and self._root in job_dir.parents:
            shutil.rmtree(job_dir)
        else:
            path.unlink()
        logger.info(f"Deleted artifact {key}")
        return True

    def _path_for(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise PackagingError(f"Artifact key escapes the storage root: {key!r}", {"key": key})
        return path

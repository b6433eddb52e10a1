"""
Archive packager for completed gangsheet jobs.

Bundles the rendered roll PNGs of one job into a single ZIP:

    roll-1.png
    roll-2.png
    ...
    manifest.json   machine-readable job summary
    info.txt        human-readable summary for the print operator

Entries are written in roll order with a fixed timestamp, so packaging the
same rolls with the same manifest twice yields identical bytes.
"""

from __future__ import annotations

import json
import posixpath
import zipfile
from dataclasses import dataclass, field
from datetime import datetime
from io import BytesIO
from typing import Dict, Any, List, Sequence

from werkzeug.utils import secure_filename

from core.exceptions import PackagingError
from logging_config import get_logger
from models.settings import RollSettings


logger = get_logger(__name__)

MANIFEST_NAME = "manifest.json"
INFO_NAME = "info.txt"
MANIFEST_VERSION = 1

# Earliest timestamp a ZIP entry can carry
FIXED_ENTRY_TIME = (1980, 1, 1, 0, 0, 0)


@dataclass(frozen=True)
class ArchiveManifest:
    """Summary written to manifest.json."""

    job_id: str
    name: str
    generated_at: str
    """ISO-8601 timestamp supplied by the caller (not the packaging time)."""

    settings: Dict[str, Any]
    rolls: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total_rolls(self) -> int:
        return len(self.rolls)

    @property
    def total_designs(self) -> int:
        return sum(int(r.get("designCount", 0)) for r in self.rolls)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": MANIFEST_VERSION,
            "jobId": self.job_id,
            "name": self.name,
            "generatedAt": self.generated_at,
            "totalRolls": self.total_rolls,
            "totalDesigns": self.total_designs,
            "settings": self.settings,
            "rolls": list(self.rolls),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArchiveManifest":
        return cls(
            job_id=data.get("jobId", ""),
            name=data.get("name", ""),
            generated_at=data.get("generatedAt", ""),
            settings=data.get("settings", {}),
            rolls=list(data.get("rolls", [])),
        )


def build_manifest(
    job_id: str,
    name: str,
    settings: RollSettings,
    rendered_rolls: Sequence,
    generated_at: datetime,
) -> ArchiveManifest:
    """
    Describe a job's rendered rolls.

    Args:
        rendered_rolls: RenderedRoll-like objects (roll_number, file_name,
            width_px, height_px, design_count, order_ids)
    """
    rolls = [
        {
            "rollNumber": r.roll_number,
            "fileName": r.file_name,
            "widthPx": r.width_px,
            "heightPx": r.height_px,
            "designCount": r.design_count,
            "orderIds": list(r.order_ids),
        }
        for r in sorted(rendered_rolls, key=lambda r: r.roll_number)
    ]
    return ArchiveManifest(
        job_id=job_id,
        name=name,
        generated_at=generated_at.isoformat(),
        settings=settings.to_dict(),
        rolls=rolls,
    )


def info_text(manifest: ArchiveManifest) -> str:
    lines = [
        f"Gangsheet: {manifest.name}",
        f"Job: {manifest.job_id}",
        f"Generated: {manifest.generated_at}",
        f"Total Rolls: {manifest.total_rolls}",
        f"Total Designs: {manifest.total_designs}",
        "",
    ]
    for roll in manifest.rolls:
        lines.append(
            f"{roll['fileName']}: {roll['designCount']} designs, "
            f"{roll['widthPx']}x{roll['heightPx']}px, "
            f"orders {', '.join(roll['orderIds'])}"
        )
    return "\n".join(lines) + "\n"


def _check_entry_name(file_name: str, seen: set) -> None:
    unsafe = (
        not file_name
        or file_name in (".", "..")
        or posixpath.basename(file_name) != file_name
        or "\\" in file_name
    )
    if unsafe:
        raise PackagingError(f"Unsafe archive entry name: {file_name!r}", {"file_name": file_name})
    if file_name in (MANIFEST_NAME, INFO_NAME):
        raise PackagingError(f"Reserved archive entry name: {file_name!r}", {"file_name": file_name})
    if file_name in seen:
        raise PackagingError(f"Duplicate archive entry name: {file_name!r}", {"file_name": file_name})
    seen.add(file_name)


def _write_entry(archive: zipfile.ZipFile, name: str, data: bytes, compress_type: int) -> None:
    info = zipfile.ZipInfo(name, date_time=FIXED_ENTRY_TIME)
    info.compress_type = compress_type
    info.external_attr = 0o644 << 16
    archive.writestr(info, data)


def build_archive(roll_files: Sequence, manifest: ArchiveManifest) -> bytes:
    """
    Write a job's roll images and summaries into one ZIP.

    Args:
        roll_files: Objects with roll_number, file_name and png_bytes
        manifest: Job summary for manifest.json and info.txt

    Returns:
        ZIP archive bytes

    Raises:
        PackagingError: On unsafe or duplicate file names, or if the
            archive cannot be written
    """
    ordered = sorted(roll_files, key=lambda r: r.roll_number)
    seen: set = set()
    for roll_file in ordered:
        _check_entry_name(roll_file.file_name, seen)

    buf = BytesIO()
    try:
        with zipfile.ZipFile(buf, "w") as archive:
            # PNG data is already deflated
            for roll_file in ordered:
                _write_entry(archive, roll_file.file_name, roll_file.png_bytes, zipfile.ZIP_STORED)

            manifest_json = json.dumps(manifest.to_dict(), indent=2, sort_keys=True)
            _write_entry(archive, MANIFEST_NAME, manifest_json.encode("utf-8"), zipfile.ZIP_DEFLATED)
            _write_entry(archive, INFO_NAME, info_text(manifest).encode("utf-8"), zipfile.ZIP_DEFLATED)
    except (OSError, ValueError) as e:
        raise PackagingError(f"Failed to write archive: {e}", {"job_id": manifest.job_id}) from e

    data = buf.getvalue()
    logger.debug(f"Packaged {len(ordered)} rolls for job {manifest.job_id[:8]} ({len(data)} bytes)")
    return data


def read_manifest(archive_bytes: bytes) -> ArchiveManifest:
    """
    Read manifest.json back out of an archive.

    Raises:
        PackagingError: If the data is not a ZIP or has no valid manifest
    """
    try:
        with zipfile.ZipFile(BytesIO(archive_bytes)) as archive:
            raw = archive.read(MANIFEST_NAME)
    except zipfile.BadZipFile as e:
        raise PackagingError(f"Not a gangsheet archive: {e}") from e
    except KeyError as e:
        raise PackagingError("Archive has no manifest.json") from e

    try:
        return ArchiveManifest.from_dict(json.loads(raw.decode("utf-8")))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PackagingError(f"Invalid manifest.json: {e}") from e


def archive_entry_names(archive_bytes: bytes) -> List[str]:
    """Entry names in archive order."""
    try:
        with zipfile.ZipFile(BytesIO(archive_bytes)) as archive:
            return archive.namelist()
    except zipfile.BadZipFile as e:
        raise PackagingError(f"Not a gangsheet archive: {e}") from e


def archive_file_name(name: str) -> str:
    """
    Download file name for a gangsheet archive.

    Example:
        archive_file_name("GS 2026/03 rush")  ->  "GS_2026_03_rush.zip"
    """
    base = secure_filename(name) or "gangsheet"
    return f"{base}.zip"

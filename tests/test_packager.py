"""
Unit tests for the archive packager.
"""

import json
import zipfile
from datetime import datetime, timezone
from io import BytesIO

import pytest

from core.exceptions import PackagingError
from models.settings import RollSettings
from modules.packager import (
    FIXED_ENTRY_TIME,
    archive_entry_names,
    archive_file_name,
    build_archive,
    build_manifest,
    read_manifest,
)
from modules.renderer import RenderedRoll


# Fixtures

@pytest.fixture
def rendered_rolls():
    """Two rendered rolls, deliberately out of order."""
    return [
        RenderedRoll(2, "roll-2.png", b"\x89PNG second", 660, 1200, 1, ("1002",)),
        RenderedRoll(1, "roll-1.png", b"\x89PNG first", 660, 1800, 4, ("1001", "1002")),
    ]


@pytest.fixture
def manifest(rendered_rolls):
    return build_manifest(
        job_id="5f0c2a91-0000-4000-8000-000000000001",
        name="GS_20260302_091240",
        settings=RollSettings(),
        rendered_rolls=rendered_rolls,
        generated_at=datetime(2026, 3, 2, 9, 12, 40, tzinfo=timezone.utc),
    )


class TestBuildArchive:
    """Test archive layout and determinism."""

    def test_entries_in_roll_order(self, rendered_rolls, manifest):
        """Test rolls come first in roll order, then the summaries."""
        data = build_archive(rendered_rolls, manifest)

        assert archive_entry_names(data) == ["roll-1.png", "roll-2.png", "manifest.json", "info.txt"]

    def test_image_payloads_unchanged(self, rendered_rolls, manifest):
        """Test PNG bytes are stored verbatim with a fixed timestamp."""
        data = build_archive(rendered_rolls, manifest)

        with zipfile.ZipFile(BytesIO(data)) as archive:
            assert archive.read("roll-1.png") == b"\x89PNG first"
            info = archive.getinfo("roll-2.png")
            assert info.date_time == FIXED_ENTRY_TIME
            assert info.compress_type == zipfile.ZIP_STORED

    def test_identical_inputs_identical_bytes(self, rendered_rolls, manifest):
        """Test packaging the same rolls twice is byte-identical."""
        assert build_archive(rendered_rolls, manifest) == build_archive(list(reversed(rendered_rolls)), manifest)

    def test_manifest_contents(self, rendered_rolls, manifest):
        """Test the manifest summarises the job."""
        data = read_manifest(build_archive(rendered_rolls, manifest)).to_dict()

        assert data["jobId"] == manifest.job_id
        assert data["totalRolls"] == 2
        assert data["totalDesigns"] == 5
        assert data["generatedAt"] == "2026-03-02T09:12:40+00:00"
        assert [r["fileName"] for r in data["rolls"]] == ["roll-1.png", "roll-2.png"]
        assert data["settings"]["dpi"] == 300

    def test_info_text(self, rendered_rolls, manifest):
        """Test the operator summary file."""
        with zipfile.ZipFile(BytesIO(build_archive(rendered_rolls, manifest))) as archive:
            info = archive.read("info.txt").decode("utf-8")

        assert info.startswith("Gangsheet: GS_20260302_091240\n")
        assert "Total Rolls: 2" in info
        assert "roll-1.png: 4 designs, 660x1800px, orders 1001, 1002" in info

    def test_manifest_is_sorted_json(self, rendered_rolls, manifest):
        """Test manifest.json is stable, readable JSON."""
        with zipfile.ZipFile(BytesIO(build_archive(rendered_rolls, manifest))) as archive:
            raw = archive.read("manifest.json").decode("utf-8")

        assert raw == json.dumps(json.loads(raw), indent=2, sort_keys=True)


class TestArchiveErrors:
    """Test rejected inputs."""

    def test_duplicate_file_names(self, manifest):
        """Test two rolls cannot share a file name."""
        rolls = [
            RenderedRoll(1, "roll-1.png", b"a", 1, 1, 1, ()),
            RenderedRoll(2, "roll-1.png", b"b", 1, 1, 1, ()),
        ]
        with pytest.raises(PackagingError, match="Duplicate"):
            build_archive(rolls, manifest)

    @pytest.mark.parametrize("file_name", ["../roll-1.png", "dir/roll-1.png", "", "manifest.json"])
    def test_unsafe_file_names(self, manifest, file_name):
        """Test path-like and reserved names are rejected."""
        rolls = [RenderedRoll(1, file_name, b"a", 1, 1, 1, ())]
        with pytest.raises(PackagingError):
            build_archive(rolls, manifest)

    def test_read_manifest_rejects_non_zip(self):
        """Test garbage input raises PackagingError."""
        with pytest.raises(PackagingError):
            read_manifest(b"not a zip file")

    def test_read_manifest_requires_manifest(self):
        """Test archives without manifest.json are rejected."""
        buf = BytesIO()
        with zipfile.ZipFile(buf, "w") as archive:
            archive.writestr("roll-1.png", b"a")

        with pytest.raises(PackagingError, match="manifest"):
            read_manifest(buf.getvalue())


class TestArchiveFileName:
    """Test download file names."""

    def test_sanitizes_name(self):
        """Test separators and spaces are made safe."""
        assert archive_file_name("GS 2026/03 rush") == "GS_2026_03_rush.zip"

    def test_falls_back_when_nothing_safe_remains(self):
        """Test a fully unsafe name still gives a usable file name."""
        assert archive_file_name("../..") == "gangsheet.zip"

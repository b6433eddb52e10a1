"""
Unit tests for the gangsheet orchestrator.

Uses the in-memory order gateway, a mocked design store and a real
artifact store in a temp directory. Roll settings run at 10 DPI so that
renders stay tiny.
"""

import threading
import time
import zipfile
from io import BytesIO
from unittest.mock import Mock

import pytest
from PIL import Image

from core.exceptions import (
    ArtifactNotReadyError,
    DesignNotFoundError,
    InvalidInputError,
    JobNotFoundError,
    JobStateError,
    OrderNotFoundError,
    OrderNotPrintableError,
    RenderError,
)
from core.order_gateway import InMemoryOrderGateway
from models.geometry import LineItem
from models.job import JobStage, JobStatus
from models.settings import RollSettings
from modules.packager import read_manifest
from modules.packer import pack
from services.artifact_store import ArtifactStore
from services.gangsheet_service import (
    CANCELLED_MESSAGE,
    GangsheetService,
    apply_quantity_overrides,
    default_job_name,
    normalize_order_ids,
)
from services.settings_store import SettingsStore


TENANT = "tenant-1"


# Fixtures

@pytest.fixture
def small_settings():
    """10 in roll, 12 in max height, 10 DPI, no borders."""
    return RollSettings(
        roll_width=10.0,
        max_roll_height=12.0,
        dpi=10,
        gap=0.5,
        border=False,
        footer_height=1.0,
    )


@pytest.fixture
def gateway():
    gateway = InMemoryOrderGateway()
    gateway.add_order(TENANT, "1001", [
        LineItem("1001", "designs/logo.png", 4.0, 3.0, quantity=2, line_id="L1"),
    ])
    gateway.add_order(TENANT, "1002", [
        LineItem("1002", "designs/back.png", 8.0, 6.0, allow_rotate=False, line_id="L2"),
        LineItem("1002", "designs/sleeve.png", 2.0, 5.0, line_id="L3"),
    ])
    gateway.add_order(TENANT, "1003", [
        LineItem("1003", "designs/missing.png", 3.0, 3.0, line_id="L4"),
    ])
    gateway.add_order(TENANT, "1004", [
        LineItem("1004", "designs/huge.png", 30.0, 3.0, line_id="L5"),
    ])
    gateway.add_order(TENANT, "1005", [], status="pending_payment")
    # One 9x8 design fills a roll, so these three pack onto rolls 1-3 in order
    for order_id, ref in (("2001", "designs/a.png"), ("2002", "designs/missing.png"), ("2003", "designs/c.png")):
        gateway.add_order(TENANT, order_id, [LineItem(order_id, ref, 9.0, 8.0, allow_rotate=False)])
    return gateway


@pytest.fixture
def design_store():
    """Design store mock: every design is a solid image, except missing.png."""
    store = Mock()

    def fetch_image(design_ref):
        if design_ref.endswith("missing.png"):
            raise DesignNotFoundError(design_ref)
        return Image.new("RGBA", (40, 30), (200, 30, 30, 255))

    store.fetch_image.side_effect = fetch_image
    return store


@pytest.fixture
def service(gateway, design_store, tmp_path, small_settings):
    service = GangsheetService(
        order_gateway=gateway,
        design_store=design_store,
        artifact_store=ArtifactStore(tmp_path / "artifacts"),
        settings_store=SettingsStore(small_settings),
        render_workers=2,
    )
    yield service
    service.shutdown()


def wait_for_terminal(service, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        snapshot = service.get_status(job_id)
        if snapshot.is_terminal:
            return snapshot
        time.sleep(0.02)
    raise AssertionError(f"Job {job_id} did not finish within {timeout}s")


# Tests for job creation

class TestCreateJob:
    """Test job creation and validation."""

    def test_creates_pending_job(self, service):
        """Test a valid batch creates a pending job."""
        job_id = service.create_job(TENANT, ["1001", "1002"], name="Morning run")
        snapshot = service.get_status(job_id)

        assert snapshot.status == JobStatus.PENDING
        assert snapshot.name == "Morning run"
        assert snapshot.order_ids == ("1001", "1002")
        assert snapshot.progress == 0

    def test_default_name(self, service):
        """Test unnamed jobs get a timestamped name."""
        job_id = service.create_job(TENANT, ["1001"])
        assert service.get_status(job_id).name.startswith("GS_")

    def test_missing_order_rejected(self, service):
        """Test unknown orders fail creation with no job stored."""
        with pytest.raises(OrderNotFoundError):
            service.create_job(TENANT, ["1001", "9999"])
        assert service.list_jobs(TENANT) == []

    def test_unprintable_order_rejected(self, service):
        """Test unpaid orders fail creation."""
        with pytest.raises(OrderNotPrintableError):
            service.create_job(TENANT, ["1005"])

    def test_empty_batch_rejected(self, service):
        """Test at least one order id is required."""
        with pytest.raises(InvalidInputError):
            service.create_job(TENANT, ["", "  "])

    def test_settings_snapshot(self, service):
        """Test later tenant setting changes do not reach the job."""
        job_id = service.create_job(TENANT, ["1001"])
        service.update_default_settings(TENANT, {"dpi": 20})

        assert service.get_status(job_id).settings.dpi == 10
        assert service.get_default_settings(TENANT).dpi == 20

    def test_explicit_settings_override_defaults(self, service):
        """Test per-job settings are merged over the tenant defaults."""
        job_id = service.create_job(TENANT, ["1001"], settings={"gap": 0.25})
        settings = service.get_status(job_id).settings

        assert settings.gap == 0.25
        assert settings.dpi == 10

    def test_invalid_override(self, service):
        """Test negative quantity overrides are rejected."""
        with pytest.raises(InvalidInputError):
            service.create_job(TENANT, ["1001"], quantity_overrides={"L1": -1})


# Tests for running jobs

class TestRunJob:
    """Test the generation pipeline end to end."""

    def test_successful_run(self, service):
        """Test a job completes with one archive entry per roll."""
        job_id = service.create_job(TENANT, ["1001", "1002"], name="GS_run")
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.COMPLETED
        assert snapshot.stage == JobStage.DONE
        assert snapshot.progress == 100
        assert snapshot.total_designs == 4
        assert snapshot.processed_designs == 4
        assert snapshot.completed_at is not None
        assert snapshot.artifact_location.endswith("/GS_run.zip")

        archive = service.get_artifact(job_id)
        manifest = read_manifest(archive)
        assert manifest.total_designs == 4
        assert manifest.total_rolls == snapshot.total_rolls == len(snapshot.roll_artifacts)

        with zipfile.ZipFile(BytesIO(archive)) as zf:
            roll_files = [n for n in zf.namelist() if n.startswith("roll-")]
            assert roll_files == [f"roll-{n}.png" for n in range(1, snapshot.total_rolls + 1)]
            first = Image.open(BytesIO(zf.read("roll-1.png")))
            assert first.width == 100

    def test_run_twice_rejected(self, service):
        """Test a job runs at most once."""
        job_id = service.create_job(TENANT, ["1001"])
        service.run_job(job_id)

        with pytest.raises(JobStateError):
            service.run_job(job_id)

    def test_concurrent_runs_single_winner(self, service):
        """Test racing run_job calls execute the job once."""
        job_id = service.create_job(TENANT, ["1001"])
        outcomes = []
        lock = threading.Lock()

        def run():
            try:
                service.run_job(job_id)
                outcome = "ran"
            except JobStateError:
                outcome = "rejected"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=run) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ran") == 1
        assert service.get_status(job_id).status == JobStatus.COMPLETED

    def test_item_too_wide_fails_job(self, service):
        """Test packing errors fail the job without rendering."""
        job_id = service.create_job(TENANT, ["1001", "1004"])
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert "does not fit" in snapshot.error_message
        assert snapshot.total_rolls == 0

    def test_missing_design_fails_job(self, service):
        """Test one bad design fails the job and exposes no artifact."""
        job_id = service.create_job(TENANT, ["1001", "1003"])
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert "Rendering failed" in snapshot.error_message
        assert "designs/missing.png" in snapshot.error_message
        assert snapshot.artifact_location is None

        with pytest.raises(ArtifactNotReadyError):
            service.get_artifact(job_id)

    def test_one_failed_roll_fails_multi_roll_job(self, service, tmp_path):
        """Test a bad design on roll 2 of 3 fails the job and stores nothing."""
        job_id = service.create_job(TENANT, ["2001", "2002", "2003"])
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.total_rolls == 3
        assert snapshot.error_message.startswith("Rendering failed for 1 of 3 rolls")
        assert "Roll 2, placement 1 (order 2002)" in snapshot.error_message
        assert snapshot.artifact_location is None
        assert [p for p in (tmp_path / "artifacts").rglob("*") if p.is_file()] == []

    def test_render_failures_aggregated(self, service):
        """Test roll failures are combined and the other renders are told to stop."""
        job_id = service.create_job(TENANT, ["2001", "2002", "2003"])
        job = service.get_status(job_id)
        items = service._orders.fetch_printable_line_items(TENANT, job.order_ids)
        rolls = pack(items, job.settings)
        cancel_event = threading.Event()

        with pytest.raises(RenderError) as exc_info:
            service._render_rolls(job, rolls, cancel_event, Mock())

        assert len(rolls) == 3
        assert exc_info.value.details["failed_rolls"] == [2]
        assert exc_info.value.message.startswith("Rendering failed for 1 of 3 rolls")
        assert cancel_event.is_set()

    def test_upstream_failure_at_run_time(self, service, gateway):
        """Test an order that became unprintable fails the job."""
        job_id = service.create_job(TENANT, ["1001"])
        gateway.set_status(TENANT, "1001", "cancelled")

        snapshot = service.run_job(job_id)
        assert snapshot.status == JobStatus.FAILED
        assert "not printable" in snapshot.error_message

    def test_quantity_overrides(self, service):
        """Test overrides change quantities by line id."""
        job_id = service.create_job(TENANT, ["1001"], quantity_overrides={"L1": 3})
        assert service.run_job(job_id).total_designs == 3

    def test_all_lines_overridden_to_zero(self, service):
        """Test a batch with nothing left to print fails."""
        job_id = service.create_job(TENANT, ["1001"], quantity_overrides={"L1": 0})
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error_message == "No designs found for the selected orders"

    def test_unknown_job(self, service):
        """Test unknown ids raise JobNotFoundError."""
        with pytest.raises(JobNotFoundError):
            service.run_job("no-such-job")

    def test_submit_job_runs_in_background(self, service):
        """Test submit_job returns at once and the job completes."""
        job_id = service.create_job(TENANT, ["1002"])
        assert service.submit_job(job_id) == job_id

        snapshot = wait_for_terminal(service, job_id)
        assert snapshot.status == JobStatus.COMPLETED


# Tests for cancellation

class TestCancelJob:
    """Test cooperative cancellation."""

    def test_cancel_pending(self, service):
        """Test a pending job fails immediately and cannot run."""
        job_id = service.create_job(TENANT, ["1001"])
        snapshot = service.cancel_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error_message == CANCELLED_MESSAGE
        with pytest.raises(JobStateError):
            service.run_job(job_id)

    def test_cancel_while_rendering(self, service, design_store):
        """Test a processing job fails once the signal is observed."""
        job_id = service.create_job(TENANT, ["1001", "1002"])

        def fetch_and_cancel(design_ref):
            service.cancel_job(job_id)
            return Image.new("RGBA", (40, 30), (0, 0, 0, 255))

        design_store.fetch_image.side_effect = fetch_and_cancel
        snapshot = service.run_job(job_id)

        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error_message == CANCELLED_MESSAGE
        assert snapshot.artifact_location is None

    def test_cancel_while_storing(self, service, monkeypatch, tmp_path):
        """Test a cancel accepted during the final store step still fails the job."""
        job_id = service.create_job(TENANT, ["1001"])
        artifacts = service._artifacts
        save = artifacts.save
        accepted = []

        def cancel_then_save(*args, **kwargs):
            accepted.append(service.cancel_job(job_id).status)
            return save(*args, **kwargs)

        monkeypatch.setattr(artifacts, "save", cancel_then_save)
        snapshot = service.run_job(job_id)

        assert accepted == [JobStatus.PROCESSING]
        assert snapshot.status == JobStatus.FAILED
        assert snapshot.error_message == CANCELLED_MESSAGE
        assert snapshot.artifact_location is None
        assert [p for p in (tmp_path / "artifacts").rglob("*") if p.is_file()] == []

    def test_cancel_events_released(self, service):
        """Test no cancel signal is kept for created, finished or deleted jobs."""
        pending = service.create_job(TENANT, ["1001"])
        assert pending not in service._cancel_events

        done = service.create_job(TENANT, ["1001"])
        service.run_job(done)
        service.delete_job(done, TENANT)
        assert service._cancel_events == {}

    def test_cancel_finished_job(self, service):
        """Test finished jobs cannot be cancelled."""
        job_id = service.create_job(TENANT, ["1001"])
        service.run_job(job_id)

        with pytest.raises(JobStateError):
            service.cancel_job(job_id)

    def test_cancel_other_tenant(self, service):
        """Test cancellation is tenant-scoped."""
        job_id = service.create_job(TENANT, ["1001"])
        with pytest.raises(JobNotFoundError):
            service.cancel_job(job_id, tenant_id="tenant-2")


# Tests for queries and maintenance

class TestQueries:
    """Test preview, listing, deletion and settings."""

    def test_preview(self, service):
        """Test preview packs without creating a job."""
        preview = service.preview(TENANT, ["1001", "1002"])

        assert preview["totalDesigns"] == 4
        assert preview["totalRolls"] >= 1
        assert preview["settings"]["dpi"] == 10
        assert all("placements" in roll for roll in preview["rolls"])
        assert service.list_jobs(TENANT) == []

    def test_preview_too_wide(self, service):
        """Test preview surfaces packing errors."""
        with pytest.raises(InvalidInputError):
            service.preview(TENANT, ["1004"])

    def test_list_jobs(self, service):
        """Test listing by tenant and status."""
        done = service.create_job(TENANT, ["1001"])
        service.run_job(done)
        pending = service.create_job(TENANT, ["1002"])

        assert {s.id for s in service.list_jobs(TENANT)} == {done, pending}
        assert [s.id for s in service.list_jobs(TENANT, JobStatus.PENDING)] == [pending]
        assert service.list_jobs("tenant-2") == []

    def test_delete_job_removes_artifact(self, service):
        """Test deleting a completed job removes its archive."""
        job_id = service.create_job(TENANT, ["1001"])
        location = service.run_job(job_id).artifact_location

        service.delete_job(job_id, TENANT)

        assert not service._artifacts.exists(location)
        with pytest.raises(JobNotFoundError):
            service.get_status(job_id)

    def test_delete_pending_job_rejected(self, service):
        """Test unfinished jobs cannot be deleted."""
        job_id = service.create_job(TENANT, ["1001"])
        with pytest.raises(JobStateError):
            service.delete_job(job_id, TENANT)


# Tests for helper functions

class TestHelpers:
    """Test input normalisation helpers."""

    def test_normalize_order_ids(self):
        """Test blanks and duplicates are dropped, order kept."""
        assert normalize_order_ids([" 2", 1, "2", "", 3]) == ["2", "1", "3"]

    def test_normalize_rejects_string(self):
        """Test a bare string is not treated as a list of characters."""
        with pytest.raises(InvalidInputError):
            normalize_order_ids("1001")

    def test_apply_quantity_overrides(self):
        """Test overrides replace or drop lines by line id."""
        items = [
            LineItem("1", "a.png", 1, 1, quantity=1, line_id="A"),
            LineItem("1", "b.png", 1, 1, quantity=2, line_id="B"),
            LineItem("1", "c.png", 1, 1, quantity=5),
        ]
        result = apply_quantity_overrides(items, {"A": 4, "B": 0})

        assert [(i.design_ref, i.quantity) for i in result] == [("a.png", 4), ("c.png", 5)]

    def test_default_job_name(self):
        """Test the timestamp format."""
        from datetime import datetime
        assert default_job_name(datetime(2026, 3, 2, 9, 12, 40)) == "GS_20260302_091240"

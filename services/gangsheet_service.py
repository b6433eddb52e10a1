"""
Gangsheet generation orchestrator.

Owns the GenerationJob state machine and drives one job from a list of
order ids to a stored ZIP of print-ready roll images:

    1. Fetch printable line items from the order collaborator
    2. Pack them onto rolls (synchronous, cheap)
    3. Render every roll on a bounded worker pool
    4. Package the rendered rolls into one archive
    5. Store the archive and mark the job Completed

THREADING MODEL:
    - submit_job() runs a job on its own named thread (Job-xxxxxxxx)
    - Roll renders fan out to a shared ThreadPoolExecutor sized to the CPU
      count, so concurrent jobs cannot flood memory with bitmaps
    - The job thread is the only writer of job state; render workers hand
      results back through their futures and never touch the JobStore
    - Readers poll frozen JobSnapshot copies from the JobStore

FAILURES:
    run_job() never raises for job-level failures. Invalid input, upstream
    errors, render errors and packaging errors all end in FAILED with a
    human-readable error message. The first failed roll stops the other
    renders of that job; a job is COMPLETED only if every roll rendered.

CANCELLATION:
    Cooperative. A PENDING job fails at once; a PROCESSING job fails when
    its thread next checks the signal (between stages, and between
    placements inside each roll render).

Usage:
    service = GangsheetService(order_gateway, design_store, artifact_store)

    job_id = service.create_job("tenant-1", ["1001", "1002"])
    service.submit_job(job_id)

    snapshot = service.get_status(job_id)
    if snapshot.status == JobStatus.COMPLETED:
        archive = service.get_artifact(job_id)

    service.shutdown()
"""

from __future__ import annotations

import dataclasses
import os
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, Any, Iterable, List, Mapping, Optional, Union

from core.design_store import DesignStore
from core.exceptions import (
    ArtifactNotReadyError,
    GangsheetError,
    InvalidInputError,
    JobCancelledError,
    JobError,
    JobStateError,
    RenderError,
)
from core.order_gateway import OrderGateway
from logging_config import get_logger, get_job_logger, set_thread_name
from models.geometry import LineItem, Roll
from models.job import GenerationJob, JobSnapshot, JobStage, JobStatus, RollArtifact
from models.settings import RollSettings
from modules.packager import archive_file_name, build_archive, build_manifest
from modules.packer import pack, pack_summary
from modules.renderer import RenderedRoll, render_roll_png, roll_file_name

from .artifact_store import ArtifactStore
from .job_store import JobStore
from .settings_store import SettingsStore


logger = get_logger(__name__)

MAX_NAME_LENGTH = 100
CANCELLED_MESSAGE = "Cancelled by request"

SettingsInput = Union[RollSettings, Mapping[str, Any], None]


def default_job_name(now: Optional[datetime] = None) -> str:
    """Timestamped default name, e.g. GS_20260302_091240."""
    return (now or datetime.now()).strftime("GS_%Y%m%d_%H%M%S")


def normalize_order_ids(order_ids: Iterable) -> List[str]:
    """Strip, drop blanks and de-duplicate order ids, keeping their order."""
    if isinstance(order_ids, (str, bytes)):
        raise InvalidInputError("Order ids must be a list")
    seen: List[str] = []
    for order_id in order_ids or []:
        value = str(order_id).strip()
        if value and value not in seen:
            seen.append(value)
    if not seen:
        raise InvalidInputError("At least one order id is required")
    return seen


def normalize_quantity_overrides(overrides: Optional[Mapping]) -> Dict[str, int]:
    """
    Validate quantity overrides keyed by line id.

    A quantity of 0 leaves that line off the gangsheet.
    """
    result: Dict[str, int] = {}
    for line_id, quantity in (overrides or {}).items():
        try:
            value = int(quantity)
        except (TypeError, ValueError):
            raise InvalidInputError(
                f"Quantity override for line {line_id} is not a number: {quantity!r}",
                {"line_id": str(line_id)}
            )
        if value < 0:
            raise InvalidInputError(
                f"Quantity override for line {line_id} cannot be negative",
                {"line_id": str(line_id), "quantity": value}
            )
        result[str(line_id)] = value
    return result


def apply_quantity_overrides(items: Iterable[LineItem], overrides: Mapping[str, int]) -> List[LineItem]:
    """Replace line quantities by line id; lines overridden to 0 are dropped."""
    result = []
    for item in items:
        if item.line_id is not None and item.line_id in overrides:
            quantity = overrides[item.line_id]
            if quantity == 0:
                continue
            item = dataclasses.replace(item, quantity=quantity)
        result.append(item)
    return result


class GangsheetService:
    """
    Orchestrates gangsheet generation jobs.

    Attributes:
        job_store: Registry of jobs (readers get snapshots)
        settings_store: Tenant default roll settings
    """

    def __init__(
        self,
        order_gateway: OrderGateway,
        design_store: DesignStore,
        artifact_store: ArtifactStore,
        job_store: Optional[JobStore] = None,
        settings_store: Optional[SettingsStore] = None,
        render_workers: Optional[int] = None,
    ):
        """
        Args:
            order_gateway: Source of printable line items
            design_store: Anything with fetch_image(design_ref) -> PIL image
            artifact_store: Where finished archives are kept
            job_store: Job registry (a fresh in-memory one if None)
            settings_store: Tenant settings (library defaults if None)
            render_workers: Render pool size (CPU count if None)
        """
        self._orders = order_gateway
        self._designs = design_store
        self._artifacts = artifact_store
        self._jobs = job_store or JobStore()
        self._settings = settings_store or SettingsStore()

        workers = render_workers or os.cpu_count() or 1
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="Render")
        self._render_workers = workers

        self._cancel_events: Dict[str, threading.Event] = {}
        self._active_threads: Dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

        logger.info(f"GangsheetService initialized with {workers} render workers")

    @property
    def job_store(self) -> JobStore:
        return self._jobs

    @property
    def settings_store(self) -> SettingsStore:
        return self._settings

    @property
    def render_workers(self) -> int:
        return self._render_workers

    # =========================================================================
    # JOB CREATION AND EXECUTION
    # =========================================================================

    def create_job(
        self,
        tenant_id: str,
        order_ids: Iterable[str],
        name: Optional[str] = None,
        settings: SettingsInput = None,
        quantity_overrides: Optional[Mapping[str, int]] = None,
    ) -> str:
        """
        Validate a batch of orders and persist a PENDING job.

        Args:
            tenant_id: Owning tenant
            order_ids: Orders to print
            name: Gangsheet name (default GS_YYYYmmdd_HHMMSS)
            settings: Full or partial settings overriding the tenant
                defaults for this job only
            quantity_overrides: line id -> quantity

        Returns:
            job_id (UUID string)

        Raises:
            InvalidInputError: Empty batch, bad overrides or bad settings
            UpstreamFetchError: Orders missing or not printable
        """
        ids = normalize_order_ids(order_ids)
        overrides = normalize_quantity_overrides(quantity_overrides)
        job_settings = self._resolve_settings(tenant_id, settings)

        self._orders.validate_orders(tenant_id, ids)

        job = GenerationJob(
            id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            name=(name or "").strip()[:MAX_NAME_LENGTH] or default_job_name(),
            order_ids=tuple(ids),
            settings=job_settings,
            quantity_overrides=overrides,
        )
        self._jobs.add(job)

        logger.info(f"Created job {job.id[:8]} '{job.name}' for tenant {tenant_id} ({len(ids)} orders)")
        return job.id

    def submit_job(self, job_id: str) -> str:
        """
        Run a job on a background thread and return immediately.

        Poll get_status(job_id) for progress.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job is not PENDING
        """
        snapshot = self._jobs.snapshot(job_id)
        if snapshot.status != JobStatus.PENDING:
            raise JobStateError(
                f"Job {job_id} is {snapshot.status.value}, only pending jobs can run",
                job_id
            )

        thread = threading.Thread(
            target=self._job_thread_main,
            args=(job_id,),
            name=f"Job-{job_id[:8]}",
            daemon=True
        )
        with self._threads_lock:
            self._active_threads[job_id] = thread
        thread.start()

        return job_id

    def run_job(self, job_id: str) -> JobSnapshot:
        """
        Run a job to completion on the calling thread.

        Returns:
            Final snapshot (COMPLETED or FAILED)

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job was already claimed, finished or
                cancelled (at most one run per job)
        """
        self._jobs.claim(job_id)
        job_logger = get_job_logger(job_id)
        cancel_event = self._cancel_event(job_id)
        # A cancel accepted between the claim and the event above found no event to set
        if self._jobs.update(job_id, lambda j: j.cancel_requested):
            cancel_event.set()

        try:
            self._generate(job_id, cancel_event, job_logger)
        except JobCancelledError:
            job_logger.info("Job cancelled")
            self._fail(job_id, CANCELLED_MESSAGE)
        except GangsheetError as e:
            job_logger.error(f"Job failed: {e}")
            self._fail(job_id, e.message)
        except Exception as e:
            job_logger.error(f"Job failed with unexpected error: {e}", exc_info=True)
            self._fail(job_id, f"Unexpected error: {e}")
        finally:
            with self._threads_lock:
                self._cancel_events.pop(job_id, None)

        snapshot = self._jobs.snapshot(job_id)
        job_logger.info(f"Job finished: status={snapshot.status.value}")
        return snapshot

    def _job_thread_main(self, job_id: str) -> None:
        set_thread_name(f"Job-{job_id[:8]}")
        job_logger = get_job_logger(job_id)
        job_logger.info("Job thread starting")
        try:
            self.run_job(job_id)
        except JobError as e:
            # Cancelled or claimed elsewhere before this thread got to it
            job_logger.warning(f"Job not run: {e.message}")
        finally:
            with self._threads_lock:
                self._active_threads.pop(job_id, None)
            job_logger.info("Job thread exiting")

    def _generate(self, job_id: str, cancel_event: threading.Event, job_logger) -> None:
        job = self._jobs.snapshot(job_id)

        # =====================================================================
        # STEP 1: Fetch line items
        # =====================================================================
        self._set_stage(job_id, JobStage.FETCHING_DESIGNS)
        job_logger.info(f"Fetching line items for {len(job.order_ids)} orders")
        overrides = self._jobs.update(job_id, lambda j: dict(j.quantity_overrides))
        items = apply_quantity_overrides(
            self._orders.fetch_printable_line_items(job.tenant_id, job.order_ids),
            overrides
        )
        if not items:
            raise InvalidInputError("No designs found for the selected orders")
        self._check_cancelled(cancel_event, job_id)

        # =====================================================================
        # STEP 2: Pack
        # =====================================================================
        self._set_stage(job_id, JobStage.CALCULATING)
        rolls = pack(items, job.settings)
        total_designs = sum(r.design_count for r in rolls)

        def record_rolls(j: GenerationJob) -> None:
            j.rolls = list(rolls)
            j.total_designs = total_designs
            j.processed_designs = 0

        self._jobs.update(job_id, record_rolls)
        job_logger.info(f"Packed {total_designs} designs onto {len(rolls)} rolls")
        self._check_cancelled(cancel_event, job_id)

        # =====================================================================
        # STEP 3: Render
        # =====================================================================
        self._set_stage(job_id, JobStage.GENERATING)
        rendered = self._render_rolls(job, rolls, cancel_event, job_logger)
        self._check_cancelled(cancel_event, job_id)

        # =====================================================================
        # STEP 4: Package and store
        # =====================================================================
        self._set_stage(job_id, JobStage.PACKAGING)
        manifest = build_manifest(
            job_id=job_id,
            name=job.name,
            settings=job.settings,
            rendered_rolls=rendered,
            generated_at=job.started_at or job.created_at,
        )
        archive = build_archive(rendered, manifest)
        self._check_cancelled(cancel_event, job_id)

        location = self._artifacts.save(job.tenant_id, job_id, archive_file_name(job.name), archive)
        artifacts = [
            RollArtifact(
                roll_number=r.roll_number,
                file_name=r.file_name,
                width_px=r.width_px,
                height_px=r.height_px,
                design_count=r.design_count,
                order_ids=r.order_ids,
            )
            for r in rendered
        ]

        # Checked under the store lock: an accepted cancel never ends COMPLETED.
        def complete(j: GenerationJob) -> bool:
            if j.cancel_requested:
                j.mark_failed(CANCELLED_MESSAGE)
                return False
            j.mark_completed(location, artifacts)
            return True

        if not self._jobs.update(job_id, complete):
            self._artifacts.delete(location)
            job_logger.info("Job cancelled after packaging; stored archive removed")
            return
        job_logger.info(f"Job completed: {len(artifacts)} rolls stored at {location}")

    def _render_rolls(
        self,
        job: JobSnapshot,
        rolls: List[Roll],
        cancel_event: threading.Event,
        job_logger
    ) -> List[RenderedRoll]:
        """
        Fan roll renders out to the worker pool and gather the results.

        The first failure sets the job's stop signal (in-flight renders
        stop at their next placement) and cancels renders not yet started.
        """
        futures: Dict[Future, Roll] = {
            self._executor.submit(
                render_roll_png,
                roll,
                job.settings,
                self._designs.fetch_image,
                job.name,
                f"{job.id}/{roll_file_name(roll.roll_number)}",
                cancel_event,
            ): roll
            for roll in rolls
        }

        rendered: List[RenderedRoll] = []
        failures: List[RenderError] = []

        for future in as_completed(futures):
            roll = futures[future]
            try:
                result = future.result()
            except (CancelledError, JobCancelledError):
                continue
            except RenderError as e:
                failures.append(e)
            except Exception as e:
                job_logger.error(f"Roll {roll.roll_number} crashed: {e}", exc_info=True)
                failures.append(RenderError(f"Roll {roll.roll_number}: {e}", roll.roll_number))
            else:
                rendered.append(result)
                self._jobs.update(job.id, lambda j, n=result.design_count: _add_processed(j, n))
                job_logger.debug(f"Roll {roll.roll_number} rendered ({result.width_px}x{result.height_px}px)")
                continue

            job_logger.error(f"Roll {roll.roll_number} failed: {failures[-1].message}")
            if len(failures) == 1:
                cancel_event.set()
                for other in futures:
                    other.cancel()

        if failures:
            failures.sort(key=lambda e: e.roll_number or 0)
            raise RenderError(
                f"Rendering failed for {len(failures)} of {len(rolls)} rolls: "
                + "; ".join(e.message for e in failures),
                details={"failed_rolls": [e.roll_number for e in failures]}
            )

        return sorted(rendered, key=lambda r: r.roll_number)

    # =========================================================================
    # QUERIES
    # =========================================================================

    def get_status(self, job_id: str, tenant_id: Optional[str] = None) -> JobSnapshot:
        """Current snapshot of a job. Raises JobNotFoundError."""
        return self._jobs.snapshot(job_id, tenant_id)

    def get_artifact(self, job_id: str, tenant_id: Optional[str] = None) -> bytes:
        """
        Archive bytes of a completed job.

        Raises:
            JobNotFoundError: If the job does not exist
            ArtifactNotReadyError: If the job is not COMPLETED
            PackagingError: If the stored archive is unreadable
        """
        snapshot = self._jobs.snapshot(job_id, tenant_id)
        if snapshot.status != JobStatus.COMPLETED or not snapshot.artifact_location:
            raise ArtifactNotReadyError(job_id, snapshot.status.value)
        return self._artifacts.load(snapshot.artifact_location)

    def list_jobs(self, tenant_id: str, status: Optional[JobStatus] = None) -> List[JobSnapshot]:
        return self._jobs.list_by_tenant(tenant_id, status)

    def preview(
        self,
        tenant_id: str,
        order_ids: Iterable[str],
        settings: SettingsInput = None,
        quantity_overrides: Optional[Mapping[str, int]] = None,
    ) -> Dict[str, Any]:
        """
        Pack a batch without rendering it.

        Returns:
            Packing summary with per-roll placements and the settings used

        Raises:
            InvalidInputError, UpstreamFetchError: As for create_job, or if
                an item cannot fit the roll
        """
        ids = normalize_order_ids(order_ids)
        overrides = normalize_quantity_overrides(quantity_overrides)
        preview_settings = self._resolve_settings(tenant_id, settings)

        items = apply_quantity_overrides(self._orders.fetch_printable_line_items(tenant_id, ids), overrides)
        if not items:
            raise InvalidInputError("No designs found for the selected orders")

        rolls = pack(items, preview_settings)
        summary = pack_summary(rolls, preview_settings)
        for entry, roll in zip(summary["rolls"], rolls):
            entry["placements"] = [p.to_dict() for p in roll.placements]
        summary["settings"] = preview_settings.to_dict()
        summary["orderIds"] = ids
        return summary

    # =========================================================================
    # CONTROL
    # =========================================================================

    def cancel_job(self, job_id: str, tenant_id: Optional[str] = None) -> JobSnapshot:
        """
        Request cancellation.

        PENDING jobs fail immediately; PROCESSING jobs fail once the job
        thread observes the signal.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job already finished
        """
        def request_cancel(job: GenerationJob) -> JobSnapshot:
            if job.status.is_terminal:
                raise JobStateError(
                    f"Job {job_id} already {job.status.value}",
                    job_id,
                    {"status": job.status.value}
                )
            job.cancel_requested = True
            if job.status == JobStatus.PENDING:
                job.mark_failed(CANCELLED_MESSAGE)
            return job.snapshot()

        snapshot = self._jobs.update(job_id, request_cancel, tenant_id)

        with self._threads_lock:
            event = self._cancel_events.get(job_id)
            if snapshot.status.is_terminal:
                self._cancel_events.pop(job_id, None)
        if event is not None:
            event.set()

        logger.info(f"Cancellation requested for job {job_id[:8]} ({snapshot.status.value})")
        return snapshot

    def delete_job(self, job_id: str, tenant_id: str) -> None:
        """
        Delete a finished job and its stored archive.

        Raises:
            JobNotFoundError: If the job does not exist for the tenant
            JobStateError: If the job is still pending or processing
        """
        snapshot = self._jobs.delete(job_id, tenant_id)
        with self._threads_lock:
            self._cancel_events.pop(job_id, None)
        if snapshot.artifact_location:
            self._artifacts.delete(snapshot.artifact_location)
        logger.info(f"Deleted job {job_id[:8]}")

    def get_default_settings(self, tenant_id: str) -> RollSettings:
        return self._settings.get(tenant_id)

    def update_default_settings(self, tenant_id: str, changes: Mapping[str, Any]) -> RollSettings:
        """Merge changes into the tenant defaults. Existing jobs keep their snapshot."""
        return self._settings.update(tenant_id, dict(changes))

    def shutdown(self, timeout_per_thread: float = 5.0) -> None:
        """
        Wait for running job threads, then stop the render pool.

        Call this during application shutdown.
        """
        with self._threads_lock:
            active = list(self._active_threads.items())

        if active:
            logger.info(f"Waiting for {len(active)} job threads to complete...")

        stragglers = 0
        for job_id, thread in active:
            if thread.is_alive():
                thread.join(timeout=timeout_per_thread)
                if thread.is_alive():
                    stragglers += 1
                    logger.warning(f"Job thread {job_id[:8]} did not complete in time")

        self._executor.shutdown(wait=stragglers == 0, cancel_futures=True)
        logger.info("Gangsheet service shutdown complete")

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _resolve_settings(self, tenant_id: str, settings: SettingsInput) -> RollSettings:
        if isinstance(settings, RollSettings):
            return settings.validate()
        base = self._settings.get(tenant_id)
        if not settings:
            return base
        return RollSettings.from_dict(dict(settings), base=base).validate()

    def _cancel_event(self, job_id: str) -> threading.Event:
        with self._threads_lock:
            return self._cancel_events.setdefault(job_id, threading.Event())

    def _check_cancelled(self, cancel_event: threading.Event, job_id: str) -> None:
        if cancel_event.is_set():
            raise JobCancelledError(job_id)

    def _set_stage(self, job_id: str, stage: JobStage) -> None:
        def apply(job: GenerationJob) -> None:
            job.stage = stage

        self._jobs.update(job_id, apply)

    def _fail(self, job_id: str, message: str) -> None:
        def apply(job: GenerationJob) -> None:
            if not job.status.is_terminal:
                job.mark_failed(message)

        self._jobs.update(job_id, apply)


def _add_processed(job: GenerationJob, design_count: int) -> None:
    job.processed_designs += design_count

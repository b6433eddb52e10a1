"""
Gangsheet generation job models.

GenerationJob is the mutable unit of work owned by the orchestrator.
Everything handed to other threads (HTTP handlers, pollers) is a frozen
JobSnapshot copied out under the job store lock.

Thread Safety:
    - Only the orchestrator mutates a GenerationJob, through JobStore.update()
    - Readers receive JobSnapshot instances (immutable)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple

from core.exceptions import JobStateError
from models.geometry import Roll
from models.settings import RollSettings


class JobStatus(Enum):
    """
    Status of a gangsheet generation job.

    Lifecycle:
        PENDING -> PROCESSING -> (COMPLETED | FAILED)
        PENDING -> FAILED (cancelled before it started)
    """

    PENDING = "pending"
    """Job created, waiting for a worker to run it."""

    PROCESSING = "processing"
    """A worker has claimed the job and is generating rolls."""

    COMPLETED = "completed"
    """Every roll rendered and the archive is stored."""

    FAILED = "failed"
    """Job failed or was cancelled; error_message says why."""

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class JobStage(Enum):
    """Sub-step of a processing job, used for progress reporting."""

    QUEUED = "queued"
    FETCHING_DESIGNS = "fetching_designs"
    CALCULATING = "calculating"
    GENERATING = "generating"
    PACKAGING = "packaging"
    DONE = "done"

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    JobStage.QUEUED: "Pending",
    JobStage.FETCHING_DESIGNS: "Fetching Designs",
    JobStage.CALCULATING: "Calculating Placements",
    JobStage.GENERATING: "Generating Images",
    JobStage.PACKAGING: "Packaging",
    JobStage.DONE: "Done",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RollArtifact:
    """One rendered roll image inside a completed job's archive."""

    roll_number: int
    file_name: str
    width_px: int
    height_px: int
    design_count: int
    order_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rollNumber": self.roll_number,
            "fileName": self.file_name,
            "widthPx": self.width_px,
            "heightPx": self.height_px,
            "designCount": self.design_count,
            "orderIds": list(self.order_ids),
        }


@dataclass
class GenerationJob:
    """
    A persisted gangsheet generation job.

    Status transitions are append-only (see transition_to). Once the job
    reaches COMPLETED or FAILED it is never modified again; regenerating
    means creating a new job.
    """

    id: str
    tenant_id: str
    name: str
    order_ids: Tuple[str, ...]
    settings: RollSettings
    """Owned snapshot of the tenant settings at creation time."""

    status: JobStatus = JobStatus.PENDING
    stage: JobStage = JobStage.QUEUED
    quantity_overrides: Dict[str, int] = field(default_factory=dict)
    rolls: List[Roll] = field(default_factory=list)
    roll_artifacts: List[RollArtifact] = field(default_factory=list)
    artifact_location: Optional[str] = None
    error_message: Optional[str] = None
    total_designs: int = 0
    processed_designs: int = 0
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=_utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def transition_to(self, new_status: JobStatus) -> None:
        """
        Move to a new status.

        Raises:
            JobStateError: If the transition would revert or leave a
                terminal status
        """
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise JobStateError(
                f"Cannot move job from {self.status.value} to {new_status.value}",
                self.id,
                {"from": self.status.value, "to": new_status.value}
            )
        self.status = new_status
        if new_status == JobStatus.PROCESSING:
            self.started_at = _utcnow()
        if new_status.is_terminal:
            self.completed_at = _utcnow()
            self.stage = JobStage.DONE

    def mark_failed(self, error_message: str) -> None:
        """Record the failure cause and move to FAILED."""
        self.transition_to(JobStatus.FAILED)
        self.error_message = error_message

    def mark_completed(self, artifact_location: str, roll_artifacts: List[RollArtifact]) -> None:
        """Record the stored archive and move to COMPLETED."""
        self.transition_to(JobStatus.COMPLETED)
        self.artifact_location = artifact_location
        self.roll_artifacts = list(roll_artifacts)

    @property
    def progress(self) -> int:
        """0-100 estimate of how far along the job is."""
        if self.status == JobStatus.COMPLETED:
            return 100
        if self.status in (JobStatus.PENDING, JobStatus.FAILED):
            return 0
        if self.stage == JobStage.FETCHING_DESIGNS:
            return 10
        if self.stage == JobStage.CALCULATING:
            return 30
        if self.stage == JobStage.GENERATING:
            if self.total_designs > 0:
                return 30 + int(self.processed_designs / self.total_designs * 50)
            return 50
        if self.stage == JobStage.PACKAGING:
            return 90
        return 0

    def snapshot(self) -> "JobSnapshot":
        """Create an immutable copy for readers."""
        return JobSnapshot(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            order_ids=tuple(self.order_ids),
            settings=self.settings,
            status=self.status,
            stage=self.stage,
            progress=self.progress,
            total_designs=self.total_designs,
            processed_designs=self.processed_designs,
            total_rolls=len(self.rolls),
            roll_artifacts=tuple(self.roll_artifacts),
            artifact_location=self.artifact_location,
            error_message=self.error_message,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


@dataclass(frozen=True)
class JobSnapshot:
    """
    Read-only view of a job at one point in time.

    Returned by GangsheetService.get_status(); safe to poll repeatedly.
    """

    id: str
    tenant_id: str
    name: str
    order_ids: Tuple[str, ...]
    settings: RollSettings
    status: JobStatus
    stage: JobStage
    progress: int
    total_designs: int
    processed_designs: int
    total_rolls: int
    roll_artifacts: Tuple[RollArtifact, ...]
    artifact_location: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "name": self.name,
            "orderIds": list(self.order_ids),
            "settings": self.settings.to_dict(),
            "status": self.status.value,
            "currentStep": self.stage.label,
            "progress": self.progress,
            "totalDesigns": self.total_designs,
            "processedDesigns": self.processed_designs,
            "totalRolls": self.total_rolls,
            "rolls": [r.to_dict() for r in self.roll_artifacts],
            "errorMessage": self.error_message,
            "complete": self.is_terminal,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

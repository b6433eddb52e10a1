"""
Thread-safe registry of generation jobs.

The JobStore is the only channel between the orchestrator threads that
run jobs and the request threads that poll them:

    - The orchestrator mutates a job only through update()/claim()
    - Readers only ever receive frozen JobSnapshot copies

Everything happens under one threading.Lock, so a poll never observes a
half-applied state change. This in-memory store is the persistence seam:
a database-backed store only has to keep the same method contract
(claim() in particular must stay an atomic compare-and-set).
"""

from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional, TypeVar

from core.exceptions import JobNotFoundError, JobStateError
from logging_config import get_logger
from models.job import GenerationJob, JobSnapshot, JobStatus


logger = get_logger(__name__)

T = TypeVar("T")


class JobStore:
    """
    In-memory job registry keyed by job id.

    Usage:
        store.add(job)
        store.claim(job_id)                     # PENDING -> PROCESSING, once
        store.update(job_id, lambda j: setattr(j, "processed_designs", 4))
        snapshot = store.snapshot(job_id)
    """

    def __init__(self):
        self._jobs: Dict[str, GenerationJob] = {}
        self._lock = threading.Lock()

    def add(self, job: GenerationJob) -> JobSnapshot:
        with self._lock:
            if job.id in self._jobs:
                raise JobStateError(f"Job {job.id} already exists", job.id)
            self._jobs[job.id] = job
            logger.debug(f"Stored job {job.id[:8]} for tenant {job.tenant_id}")
            return job.snapshot()

    def snapshot(self, job_id: str, tenant_id: Optional[str] = None) -> JobSnapshot:
        """
        Immutable view of a job.

        When tenant_id is given, jobs of other tenants are reported as not
        found.

        Raises:
            JobNotFoundError: If no such job is visible
        """
        with self._lock:
            return self._get(job_id, tenant_id).snapshot()

    def update(
        self,
        job_id: str,
        mutate: Callable[[GenerationJob], T],
        tenant_id: Optional[str] = None
    ) -> T:
        """
        Apply a mutation to a job under the store lock.

        Any exception raised by `mutate` propagates; mutations that go
        through GenerationJob.transition_to() are rejected before they
        change anything.
        """
        with self._lock:
            return mutate(self._get(job_id, tenant_id))

    def claim(self, job_id: str) -> JobSnapshot:
        """
        Atomically move a PENDING job to PROCESSING.

        Raises:
            JobNotFoundError: If the job does not exist
            JobStateError: If the job is not PENDING (already claimed,
                finished or cancelled)
        """
        with self._lock:
            job = self._get(job_id)
            if job.status != JobStatus.PENDING:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value}, only pending jobs can run",
                    job_id,
                    {"status": job.status.value}
                )
            job.transition_to(JobStatus.PROCESSING)
            return job.snapshot()

    def list_by_tenant(self, tenant_id: str, status: Optional[JobStatus] = None) -> List[JobSnapshot]:
        """Snapshots of a tenant's jobs, newest first."""
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if j.tenant_id == tenant_id and (status is None or j.status == status)
            ]
            snapshots = [j.snapshot() for j in jobs]
        return sorted(snapshots, key=lambda s: s.created_at, reverse=True)

    def delete(self, job_id: str, tenant_id: Optional[str] = None) -> JobSnapshot:
        """
        Remove a finished job.

        Raises:
            JobNotFoundError: If no such job is visible
            JobStateError: If the job has not finished yet
        """
        with self._lock:
            job = self._get(job_id, tenant_id)
            if not job.status.is_terminal:
                raise JobStateError(
                    f"Job {job_id} is {job.status.value} and cannot be deleted",
                    job_id,
                    {"status": job.status.value}
                )
            del self._jobs[job_id]
            logger.debug(f"Deleted job {job_id[:8]}")
            return job.snapshot()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _get(self, job_id: str, tenant_id: Optional[str] = None) -> GenerationJob:
        # Caller holds the lock
        job = self._jobs.get(job_id)
        if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
            raise JobNotFoundError(job_id)
        return job

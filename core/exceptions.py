"""
Custom exceptions for the gangsheet engine.

Exception Hierarchy:
    GangsheetError (base)
    ├── InvalidInputError          - Settings or line items cannot be packed (fatal)
    ├── UpstreamFetchError         - Order or design data unavailable
    │   ├── OrderNotFoundError     - Order missing for the tenant
    │   ├── OrderNotPrintableError - Order exists but is not in a printable state
    │   └── DesignNotFoundError    - Design image missing or undecodable
    ├── RenderError                - Compositing a roll failed
    ├── PackagingError             - Archive assembly failed
    └── JobError                   - Job lifecycle errors
        ├── JobNotFoundError       - Unknown job id (or wrong tenant)
        ├── JobStateError          - Illegal status transition / duplicate run
        ├── ArtifactNotReadyError  - Download requested before completion
        └── JobCancelledError      - Cooperative cancellation observed

Usage:
    Job-level errors (InvalidInputError, UpstreamFetchError, RenderError,
    PackagingError) are caught by the orchestrator and recorded on the job
    as a Failed status with a human-readable message. JobError subclasses
    are raised to callers of the service API.
"""

from typing import Optional, Dict, Any


class GangsheetError(Exception):
    """
    Base exception for all gangsheet engine errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# INPUT ERRORS - The job fails immediately, nothing is rendered
# =============================================================================

class InvalidInputError(GangsheetError):
    """
    Line items or roll settings cannot produce a valid gangsheet.

    Typical causes:
    - A design is wider than the printable roll width in every orientation
    - Non-positive print sizes or quantities
    - Roll settings with a footer taller than the roll
    """


# =============================================================================
# UPSTREAM ERRORS - Retryable by creating a new job once upstream recovers
# =============================================================================

class UpstreamFetchError(GangsheetError):
    """
    Order data or design images could not be fetched.

    Not retried internally; the caller creates a new job once the
    upstream collaborator is healthy again.
    """

    kind = "Upstream"


class OrderNotFoundError(UpstreamFetchError):
    """One or more orders do not exist for the tenant."""

    kind = "NotFound"

    def __init__(self, tenant_id: str, order_ids):
        missing = list(order_ids)
        message = f"Orders not found for tenant {tenant_id}: {', '.join(missing)}"
        super().__init__(message, {"tenant_id": tenant_id, "order_ids": missing})
        self.tenant_id = tenant_id
        self.order_ids = missing


class OrderNotPrintableError(UpstreamFetchError):
    """One or more orders are not in a printable status."""

    kind = "NotPrintable"

    def __init__(self, tenant_id: str, statuses: Dict[str, str]):
        listing = ", ".join(f"{oid} ({status})" for oid, status in statuses.items())
        message = f"Orders not printable: {listing}"
        super().__init__(message, {"tenant_id": tenant_id, "statuses": dict(statuses)})
        self.tenant_id = tenant_id
        self.statuses = dict(statuses)


class DesignNotFoundError(UpstreamFetchError):
    """A design image is missing from storage or cannot be decoded."""

    kind = "NotFound"

    def __init__(self, design_ref: str, reason: str = "not found"):
        message = f"Design {design_ref!r} unavailable: {reason}"
        super().__init__(message, {"design_ref": design_ref})
        self.design_ref = design_ref
        self.reason = reason


# =============================================================================
# PROCESSING ERRORS - Recorded on the job as Failed
# =============================================================================

class RenderError(GangsheetError):
    """
    A roll could not be composited.

    Raised for a single roll; the orchestrator aggregates the failures of
    every roll into one job error message.
    """

    def __init__(
        self,
        message: str,
        roll_number: Optional[int] = None,
        placement_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if roll_number is not None:
            error_details["roll_number"] = roll_number
        if placement_index is not None:
            error_details["placement_index"] = placement_index
        super().__init__(message, error_details)
        self.roll_number = roll_number
        self.placement_index = placement_index


class PackagingError(GangsheetError):
    """The download archive could not be assembled or stored."""


# =============================================================================
# JOB LIFECYCLE ERRORS - Raised to service callers
# =============================================================================

class JobError(GangsheetError):
    """Base class for job lifecycle errors."""

    def __init__(
        self,
        message: str,
        job_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        error_details = details or {}
        if job_id:
            error_details["job_id"] = job_id
        super().__init__(message, error_details)
        self.job_id = job_id


class JobNotFoundError(JobError):
    """No job with this id exists (for this tenant)."""

    def __init__(self, job_id: str):
        super().__init__(f"Gangsheet job {job_id} not found", job_id)


class JobStateError(JobError):
    """The requested operation is not valid in the job's current status."""


class ArtifactNotReadyError(JobError):
    """The job has not completed, so there is no archive to download."""

    def __init__(self, job_id: str, status: str):
        super().__init__(
            f"Gangsheet job {job_id} is not completed (status: {status})",
            job_id,
            {"status": status}
        )
        self.status = status


class JobCancelledError(JobError):
    """Cancellation was requested and observed between work units."""

    def __init__(self, job_id: Optional[str] = None, message: str = "Job cancelled by request"):
        super().__init__(message, job_id)

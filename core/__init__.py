"""
Core module for the gangsheet engine.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- order_gateway: Order collaborator interface (line items for a batch of orders)
- design_store: Design image storage (fetch by URL or storage key)

Only the exceptions are re-exported here; import the collaborators from
their modules so that models can depend on core.exceptions without a
circular import.
"""

from .exceptions import (
    GangsheetError,
    InvalidInputError,
    UpstreamFetchError,
    OrderNotFoundError,
    OrderNotPrintableError,
    DesignNotFoundError,
    RenderError,
    PackagingError,
    JobError,
    JobNotFoundError,
    JobStateError,
    ArtifactNotReadyError,
    JobCancelledError,
)

__all__ = [
    "GangsheetError",
    "InvalidInputError",
    "UpstreamFetchError",
    "OrderNotFoundError",
    "OrderNotPrintableError",
    "DesignNotFoundError",
    "RenderError",
    "PackagingError",
    "JobError",
    "JobNotFoundError",
    "JobStateError",
    "ArtifactNotReadyError",
    "JobCancelledError",
]

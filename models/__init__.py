"""
Data models for the gangsheet engine.

This module contains the value types passed between components:
- LineItem, Placement, Roll: packing geometry (frozen)
- RollSettings: tenant print configuration (frozen snapshot)
- GenerationJob: the orchestrator's mutable unit of work
- JobSnapshot, RollArtifact: immutable views handed to readers

All dataclasses handed across threads are frozen:
- Render workers only ever see Roll and RollSettings
- Pollers only ever see JobSnapshot
"""

from .geometry import LineItem, Placement, Roll
from .settings import RollSettings
from .job import GenerationJob, JobSnapshot, JobStatus, JobStage, RollArtifact

__all__ = [
    # Geometry
    "LineItem",
    "Placement",
    "Roll",
    # Settings
    "RollSettings",
    # Job models
    "GenerationJob",
    "JobSnapshot",
    "JobStatus",
    "JobStage",
    "RollArtifact",
]

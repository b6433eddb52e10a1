"""
Services layer for the gangsheet engine.

- GangsheetService: Job orchestration (job threads + render pool)
- JobStore: Thread-safe job registry, the only channel to readers
- ArtifactStore: Finished archives on disk
- SettingsStore: Tenant default roll settings

Thread Model:
    Main Thread (Flask)
    ├── Job threads (one per submitted job, named Job-xxxxxxxx)
    └── Render pool (bounded, shared by all jobs)
"""

from .artifact_store import ArtifactStore
from .gangsheet_service import GangsheetService
from .job_store import JobStore
from .settings_store import SettingsStore

__all__ = [
    "ArtifactStore",
    "GangsheetService",
    "JobStore",
    "SettingsStore",
]

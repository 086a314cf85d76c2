"""Pipeline stages: save, reconciliation, outbox recovery and query answering."""

from sync_pipeline.stages.orchestrator import (
    DocumentSyncOrchestrator,
    MarkerResult,
    RecoveryResult,
    SaveResult,
    SyncConfig,
)

__all__ = [
    "DocumentSyncOrchestrator",
    "MarkerResult",
    "RecoveryResult",
    "SaveResult",
    "SyncConfig",
]

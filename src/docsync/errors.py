"""Exception hierarchy for sync runs and snapshot publishing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from docsync.entities.results import FailureKind

if TYPE_CHECKING:
    from docsync.entities.results import RunReport


class DocSyncError(Exception):
    """Base class for all docsync errors."""


class ConfigError(DocSyncError):
    """Source configuration or settings are invalid."""


class FatalRunError(DocSyncError):
    """A run cannot proceed; raised before any external side effect."""


class SourceNotFoundError(FatalRunError):
    """No configured source has the requested id."""

    def __init__(self, source_id: str) -> None:
        super().__init__(f"Source not found: {source_id}")
        self.source_id = source_id


class WorkspaceError(FatalRunError):
    """The scratch workspace could not be allocated."""


class SourceSyncError(DocSyncError):
    """A single source failed to sync.

    Recovered by the orchestrator and turned into a failed ``SyncResult``.
    """

    def __init__(self, message: str, kind: FailureKind = FailureKind.UNKNOWN) -> None:
        super().__init__(message)
        self.kind = kind


class PartialSyncError(DocSyncError):
    """One or more sources failed while the rest of the run completed."""

    def __init__(self, report: RunReport) -> None:
        failed = [r.source_id for r in report.results if not r.success]
        super().__init__(f"{len(failed)}/{report.total} sources failed: {', '.join(failed)}")
        self.report = report
        self.failed_sources = failed


class PublishError(DocSyncError):
    """Snapshot publication failed."""


class PublishConflictError(PublishError):
    """The snapshot branch moved while a new snapshot was being built."""

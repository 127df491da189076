"""Domain entities for docsync."""

from docsync.entities.results import FailureKind, RunReport, RunState, SyncResult, format_duration
from docsync.entities.snapshot import PublishRecord, PublishState, SnapshotConfig
from docsync.entities.sources import (
    AdditionalSync,
    ContentFile,
    CustomSource,
    GitHubSource,
    Source,
    SourceType,
    YouTubeSource,
)

__all__ = [
    "AdditionalSync",
    "ContentFile",
    "CustomSource",
    "FailureKind",
    "GitHubSource",
    "PublishRecord",
    "PublishState",
    "RunReport",
    "RunState",
    "SnapshotConfig",
    "Source",
    "SourceType",
    "SyncResult",
    "YouTubeSource",
    "format_duration",
]

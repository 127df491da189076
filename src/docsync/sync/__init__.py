"""Source sync, workspace handling and snapshot publishing."""

from docsync.sync.auth import TokenProvider
from docsync.sync.dispatcher import PublishDispatcher, PublishHandle
from docsync.sync.engine import SourceSyncEngine, reconcile_directory
from docsync.sync.filters import DocFilePolicy
from docsync.sync.github import GitHubFetcher
from docsync.sync.orchestrator import SyncOptions, SyncOrchestrator
from docsync.sync.publisher import SnapshotPayload, SnapshotPublisher, collect_snapshot
from docsync.sync.registry import SourceRegistry
from docsync.sync.status import PublishStatusStore
from docsync.sync.workspace import Workspace, WorkspaceManager
from docsync.sync.youtube import YouTubeFetcher

__all__ = [
    "DocFilePolicy",
    "GitHubFetcher",
    "PublishDispatcher",
    "PublishHandle",
    "PublishStatusStore",
    "SnapshotPayload",
    "SnapshotPublisher",
    "SourceRegistry",
    "SourceSyncEngine",
    "SyncOptions",
    "SyncOrchestrator",
    "TokenProvider",
    "Workspace",
    "WorkspaceManager",
    "YouTubeFetcher",
    "collect_snapshot",
    "reconcile_directory",
]

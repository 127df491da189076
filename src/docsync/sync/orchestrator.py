"""Sync orchestrator: sources -> workspace -> per-source sync -> publish -> cleanup."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from docsync.entities.results import FailureKind, RunReport, RunState, SyncResult
from docsync.entities.snapshot import SnapshotConfig
from docsync.errors import DocSyncError, FatalRunError, PartialSyncError
from docsync.sync.publisher import collect_snapshot

if TYPE_CHECKING:
    from docsync.config import SyncSettings
    from docsync.entities.sources import Source
    from docsync.sync.dispatcher import PublishDispatcher, PublishHandle
    from docsync.sync.engine import SourceSyncEngine
    from docsync.sync.registry import SourceRegistry
    from docsync.sync.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncOptions:
    """What a single run should do."""

    reset: bool = False
    push: bool = True
    source_filter: str | None = None


@dataclass
class RunContext:
    """State of one run, passed explicitly between steps."""

    run_id: str
    options: SyncOptions
    sources: list[Source] = field(default_factory=list)
    workspace: Workspace | None = None
    results: list[SyncResult] = field(default_factory=list)
    publish: PublishHandle | None = None
    states: list[RunState] = field(default_factory=list)

    def enter(self, state: RunState) -> None:
        self.states.append(state)
        logger.debug("Run %s -> %s", self.run_id, state.value)


class SyncOrchestrator:
    """Runs the sync workflow for all sources or a single one.

    Orchestrates:
    - Source resolution and workspace allocation (fatal on failure)
    - Concurrent, isolated per-source syncs with a timeout each
    - A detached snapshot publish of whatever succeeded
    - Workspace cleanup on every path once a workspace exists
    """

    def __init__(
        self,
        registry: SourceRegistry,
        workspaces: WorkspaceManager,
        engine: SourceSyncEngine,
        dispatcher: PublishDispatcher | None = None,
        settings: SyncSettings | None = None,
    ) -> None:
        from docsync.config import SYNC_SETTINGS

        self._registry = registry
        self._workspaces = workspaces
        self._engine = engine
        self._dispatcher = dispatcher
        self._settings = settings or SYNC_SETTINGS

    @classmethod
    def from_settings(cls, settings: SyncSettings, registry: SourceRegistry | None = None) -> SyncOrchestrator:
        """Wire the production collaborators from ``settings``."""
        from docsync.sync.auth import TokenProvider
        from docsync.sync.dispatcher import PublishDispatcher
        from docsync.sync.engine import SourceSyncEngine
        from docsync.sync.filters import DocFilePolicy
        from docsync.sync.github import GitHubFetcher
        from docsync.sync.publisher import SnapshotPublisher
        from docsync.sync.registry import SourceRegistry
        from docsync.sync.status import PublishStatusStore
        from docsync.sync.workspace import WorkspaceManager
        from docsync.sync.youtube import YouTubeFetcher

        if registry is None:
            registry = SourceRegistry.from_file(settings.sources_path)

        engine = SourceSyncEngine(
            github=GitHubFetcher(tokens=TokenProvider(token=settings.github_token)),
            youtube=YouTubeFetcher(settings.youtube_api_key) if settings.youtube_api_key else None,
            policy=DocFilePolicy.from_settings(settings),
        )
        dispatcher = PublishDispatcher(
            SnapshotPublisher(max_attempts=settings.publish_max_attempts),
            PublishStatusStore(settings.status_path),
        )
        return cls(registry, WorkspaceManager(settings.scratch_root), engine, dispatcher, settings)

    @property
    def registry(self) -> SourceRegistry:
        return self._registry

    @property
    def dispatcher(self) -> PublishDispatcher | None:
        return self._dispatcher

    async def run(self, options: SyncOptions | None = None, raise_on_failure: bool = False) -> RunReport:
        """Execute one sync run.

        Args:
            options: Reset, push and single-source filter.
            raise_on_failure: Raise ``PartialSyncError`` when any source failed
                (after cleanup and publish trigger).

        Raises:
            SourceNotFoundError: ``source_filter`` names no source.
            FatalRunError: No sources, or the workspace could not be created.
            PartialSyncError: Only with ``raise_on_failure``.
        """
        options = options or SyncOptions()
        ctx = RunContext(run_id=self._workspaces.new_run_id(), options=options)

        try:
            ctx.enter(RunState.RESOLVING_SOURCES)
            ctx.sources = self._resolve_sources(options.source_filter)

            ctx.enter(RunState.PREPARING_WORKSPACE)
            workspace = self._workspaces.prepare(reset=options.reset, run_id=ctx.run_id)
            ctx.workspace = workspace
        except FatalRunError as e:
            ctx.enter(RunState.FAILED)
            logger.error("Run %s aborted: %s", ctx.run_id, e)
            raise

        try:
            ctx.enter(RunState.SYNCING_SOURCES)
            ctx.results = await self._sync_sources(ctx, workspace)

            ctx.enter(RunState.PUBLISH_TRIGGERED)
            ctx.publish = await self._trigger_publish(ctx, workspace)
        finally:
            ctx.enter(RunState.CLEANING_UP)
            self._workspaces.cleanup(workspace)

        ctx.enter(RunState.DONE)
        report = RunReport(
            run_id=ctx.run_id,
            results=tuple(ctx.results),
            publish=ctx.publish,
            states=tuple(ctx.states),
        )

        logger.info(
            "Done: %d/%d sources, %d files",
            report.succeeded,
            report.total,
            report.files,
        )

        if raise_on_failure and report.failed:
            raise PartialSyncError(report)
        return report

    def _resolve_sources(self, source_filter: str | None) -> list[Source]:
        if source_filter:
            sources = [self._registry.get_by_id(source_filter)]
        else:
            sources = self._registry.list_sources()

        if not sources:
            raise FatalRunError("No sources to sync")

        logger.info("Found %d source(s) to sync", len(sources))
        return sources

    async def _sync_sources(self, ctx: RunContext, workspace: Workspace) -> list[SyncResult]:
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        timeout = self._settings.source_timeout_seconds

        async def sync_one(source: Source) -> SyncResult:
            async with semaphore:
                try:
                    return await asyncio.wait_for(self._engine.sync_source(source, workspace), timeout)
                except TimeoutError:
                    logger.error("%s: sync timed out after %gs", source.id, timeout)
                    return SyncResult.failed(
                        source.id, f"Sync timed out after {timeout:g}s", FailureKind.TIMEOUT, timeout * 1000
                    )
                except Exception as e:
                    logger.exception("%s: unexpected sync error", source.id)
                    return SyncResult.failed(source.id, f"Unexpected error: {e}", FailureKind.UNKNOWN)

        return list(await asyncio.gather(*(sync_one(s) for s in ctx.sources)))

    async def _trigger_publish(self, ctx: RunContext, workspace: Workspace) -> PublishHandle | None:
        """Submit the snapshot publish without waiting for it.

        A reset run over every source replaces the snapshot's ``docs/`` tree;
        otherwise only the folders of sources that succeeded are replaced.
        """
        succeeded = [s for s, r in zip(ctx.sources, ctx.results) if r.success]

        if not ctx.options.push:
            logger.info("Push disabled, skipping snapshot publish")
            return None
        if not succeeded:
            logger.warning("No source synced successfully, nothing to publish")
            return None
        if self._dispatcher is None or not self._settings.snapshot_repo:
            logger.warning("Snapshot repository not configured, skipping publish")
            return None

        files = sum(r.file_count for r in ctx.results if r.success)
        config = SnapshotConfig(
            github_token=self._settings.github_token,
            snapshot_repo=self._settings.snapshot_repo,
            snapshot_branch=self._settings.snapshot_branch,
            commit_message=f"chore: sync {len(succeeded)} sources ({files} files)",
        )

        try:
            payload = await asyncio.to_thread(
                collect_snapshot,
                workspace.root,
                [s.output_path for s in succeeded],
                workspace.reset and not ctx.options.source_filter,
            )
            return self._dispatcher.submit(ctx.run_id, payload, config)
        except (OSError, DocSyncError):
            logger.exception("Could not trigger snapshot publish for run %s", ctx.run_id)
            return None

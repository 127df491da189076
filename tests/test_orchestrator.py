"""Tests for whole sync runs: isolation, cleanup and publish hand-off."""

from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from docsync.config import SyncSettings
from docsync.entities.results import FailureKind, RunState, SyncResult
from docsync.entities.snapshot import PublishState
from docsync.entities.sources import ContentFile, CustomSource, GitHubSource, Source
from docsync.errors import FatalRunError, PartialSyncError, PublishError, SourceNotFoundError, SourceSyncError
from docsync.sync import engine as engine_module
from docsync.sync.dispatcher import PublishDispatcher
from docsync.sync.engine import SourceSyncEngine
from docsync.sync.orchestrator import SyncOptions, SyncOrchestrator
from docsync.sync.registry import SourceRegistry
from docsync.sync.status import PublishStatusStore
from docsync.sync.workspace import Workspace, WorkspaceManager

from conftest import RecordingPublisher

if TYPE_CHECKING:
    from conftest import FakeGitHubFetcher


def scratch_entries(settings: SyncSettings) -> list[Path]:
    root = settings.scratch_root
    return list(root.iterdir()) if root.exists() else []


@pytest.fixture
def docs_registry() -> SourceRegistry:
    return SourceRegistry(
        [
            GitHubSource(id="docs-a", repo="acme/docs-a", readme_only=True),
            GitHubSource(id="docs-b", repo="acme/docs-b"),
        ]
    )


@pytest.fixture
def orchestrator(
    docs_registry: SourceRegistry,
    workspaces: WorkspaceManager,
    engine: SourceSyncEngine,
    dispatcher: PublishDispatcher,
    settings: SyncSettings,
) -> SyncOrchestrator:
    return SyncOrchestrator(docs_registry, workspaces, engine, dispatcher, settings)


@pytest.fixture
def upstream(fake_github: FakeGitHubFetcher, twelve_file_tree: dict[str, str]) -> FakeGitHubFetcher:
    """docs-a's README fetch fails on the network; docs-b has 12 doc files."""
    fake_github.failures["acme/docs-a"] = SourceSyncError("Network error fetching README", FailureKind.NETWORK)
    fake_github.trees["acme/docs-b"] = twelve_file_tree
    return fake_github


class TestRun:
    def test_partial_failure_scenario(
        self,
        orchestrator: SyncOrchestrator,
        upstream: FakeGitHubFetcher,
        publisher: RecordingPublisher,
        settings: SyncSettings,
    ) -> None:
        async def scenario():
            report = await orchestrator.run()
            assert report.publish is not None
            await report.publish.wait()
            return report

        report = asyncio.run(scenario())

        assert (report.total, report.succeeded, report.failed) == (2, 1, 1)
        a, b = report.results
        assert (a.source_id, a.success, a.error_kind) == ("docs-a", False, FailureKind.NETWORK)
        assert a.error
        assert (b.source_id, b.success, b.file_count) == ("docs-b", True, 12)
        assert not report.success

        assert scratch_entries(settings) == []

        payload, config = publisher.pushed[0]
        assert len(payload) == 12
        assert all(path.startswith("docs/docs-b/") for path in payload.files)
        assert payload.prefixes == ("docs/docs-b",)
        assert config.snapshot_repo == "acme/docs-snapshot"
        assert config.commit_message == "chore: sync 1 sources (12 files)"

    def test_report_dict(self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher) -> None:
        async def scenario():
            report = await orchestrator.run()
            await report.publish.wait()
            return report.to_dict()

        data = asyncio.run(scenario())

        assert data["total"] == 2
        assert data["succeeded"] == 1
        assert data["files"] == 12
        assert data["publish"]["state"] == PublishState.SUCCEEDED
        assert data["results"][1] == {
            "sourceId": "docs-b",
            "success": True,
            "fileCount": 12,
            "duration": data["results"][1]["duration"],
            "error": None,
            "errorKind": None,
        }

    def test_states_in_order(self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher) -> None:
        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))

        assert report.states == (
            RunState.RESOLVING_SOURCES,
            RunState.PREPARING_WORKSPACE,
            RunState.SYNCING_SOURCES,
            RunState.PUBLISH_TRIGGERED,
            RunState.CLEANING_UP,
            RunState.DONE,
        )

    def test_unknown_filter_aborts_before_workspace(
        self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, settings: SyncSettings
    ) -> None:
        with pytest.raises(SourceNotFoundError) as exc_info:
            asyncio.run(orchestrator.run(SyncOptions(source_filter="nonexistent")))

        assert exc_info.value.source_id == "nonexistent"
        assert scratch_entries(settings) == []
        assert upstream.calls == []

    def test_filter_syncs_single_source(
        self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, publisher: RecordingPublisher
    ) -> None:
        async def scenario():
            report = await orchestrator.run(SyncOptions(source_filter="docs-b"))
            await report.publish.wait()
            return report

        report = asyncio.run(scenario())

        assert [r.source_id for r in report.results] == ["docs-b"]
        assert report.success
        assert [call[1] for call in upstream.calls] == ["acme/docs-b"]

    def test_empty_registry_is_fatal(
        self, workspaces: WorkspaceManager, engine: SourceSyncEngine, settings: SyncSettings
    ) -> None:
        orchestrator = SyncOrchestrator(SourceRegistry(), workspaces, engine, None, settings)
        with pytest.raises(FatalRunError, match="No sources"):
            asyncio.run(orchestrator.run())

    def test_workspace_failure_is_fatal(self, docs_registry: SourceRegistry, engine: SourceSyncEngine, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        settings = SyncSettings(scratch_root=blocker)
        orchestrator = SyncOrchestrator(docs_registry, WorkspaceManager(blocker), engine, None, settings)

        with pytest.raises(FatalRunError):
            asyncio.run(orchestrator.run())

    def test_raise_on_failure(self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, settings: SyncSettings) -> None:
        with pytest.raises(PartialSyncError) as exc_info:
            asyncio.run(orchestrator.run(SyncOptions(push=False), raise_on_failure=True))

        assert exc_info.value.failed_sources == ["docs-a"]
        assert exc_info.value.report.succeeded == 1
        assert scratch_entries(settings) == []


class TestIsolation:
    def test_failed_source_does_not_affect_sibling(
        self,
        workspaces: WorkspaceManager,
        engine: SourceSyncEngine,
        settings: SyncSettings,
        upstream: FakeGitHubFetcher,
    ) -> None:
        seen: dict[str, bytes] = {}

        class CapturingEngine(SourceSyncEngine):
            async def sync_source(self, source: Source, workspace: Workspace) -> SyncResult:
                result = await engine.sync_source(source, workspace)
                out = workspace.output_dir(source.output_path)
                for path in out.rglob("*.md"):
                    seen[f"{source.id}/{path.relative_to(out).as_posix()}"] = path.read_bytes()
                return result

        registry = SourceRegistry(
            [
                GitHubSource(id="docs-a", repo="acme/docs-a", readme_only=True),
                GitHubSource(id="docs-b", repo="acme/docs-b"),
            ]
        )
        orchestrator = SyncOrchestrator(registry, workspaces, CapturingEngine(), None, settings)
        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))

        assert report.results[1].success
        assert "docs-b/guide/page-00.md" in seen
        assert not any(key.startswith("docs-a/") for key in seen)

    def test_unexpected_engine_error_contained(
        self, workspaces: WorkspaceManager, settings: SyncSettings, engine: SourceSyncEngine, upstream: FakeGitHubFetcher
    ) -> None:
        class LeakyEngine(SourceSyncEngine):
            async def sync_source(self, source: Source, workspace: Workspace) -> SyncResult:
                if source.id == "boom":
                    raise RuntimeError("engine bug")
                return await engine.sync_source(source, workspace)

        registry = SourceRegistry([CustomSource(id="boom"), GitHubSource(id="docs-b", repo="acme/docs-b")])
        orchestrator = SyncOrchestrator(registry, workspaces, LeakyEngine(), None, settings)

        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))

        assert report.results[0].error_kind == FailureKind.UNKNOWN
        assert "engine bug" in report.results[0].error
        assert report.results[1].success
        assert scratch_entries(settings) == []

    def test_slow_source_times_out(self, workspaces: WorkspaceManager, engine: SourceSyncEngine, tmp_path: Path) -> None:
        async def slow() -> list:
            await asyncio.sleep(10)
            return []

        settings = SyncSettings(scratch_root=tmp_path / "scratch", source_timeout_seconds=0.05)
        registry = SourceRegistry([CustomSource(id="slow", fetch=slow)])
        orchestrator = SyncOrchestrator(registry, workspaces, engine, None, settings)

        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))

        assert report.results[0].error_kind == FailureKind.TIMEOUT
        assert scratch_entries(settings) == []

    def test_timed_out_write_ends_before_cleanup(
        self, workspaces: WorkspaceManager, engine: SourceSyncEngine, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real_reconcile = engine_module.reconcile_directory

        def slow_reconcile(output_dir: Path, files: dict[str, bytes]) -> int:
            time.sleep(0.3)
            return real_reconcile(output_dir, files)

        monkeypatch.setattr(engine_module, "reconcile_directory", slow_reconcile)
        pages = [ContentFile(path=f"f-{i}.md", content="# page") for i in range(3)]
        settings = SyncSettings(scratch_root=tmp_path / "scratch", source_timeout_seconds=0.05)
        registry = SourceRegistry([CustomSource(id="big", fetch=lambda: pages)])
        orchestrator = SyncOrchestrator(registry, workspaces, engine, None, settings)

        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))

        assert report.results[0].error_kind == FailureKind.TIMEOUT
        assert scratch_entries(settings) == []

    def test_blocking_fetch_times_out_promptly(
        self, workspaces: WorkspaceManager, engine: SourceSyncEngine, tmp_path: Path
    ) -> None:
        release = threading.Event()

        def blocking_fetch() -> list:
            release.wait(5)
            return []

        settings = SyncSettings(scratch_root=tmp_path / "scratch", source_timeout_seconds=0.05)
        registry = SourceRegistry([CustomSource(id="blocking", fetch=blocking_fetch)])
        orchestrator = SyncOrchestrator(registry, workspaces, engine, None, settings)

        async def scenario():
            start = time.perf_counter()
            report = await orchestrator.run(SyncOptions(push=False))
            elapsed = time.perf_counter() - start
            release.set()
            return report, elapsed

        report, elapsed = asyncio.run(scenario())

        assert report.results[0].error_kind == FailureKind.TIMEOUT
        assert elapsed < 1
        assert scratch_entries(settings) == []


class TestPublishTrigger:
    def test_no_push_skips_publish(
        self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, publisher: RecordingPublisher
    ) -> None:
        report = asyncio.run(orchestrator.run(SyncOptions(push=False)))
        assert report.publish is None
        assert publisher.pushed == []

    def test_nothing_succeeded_skips_publish(
        self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, publisher: RecordingPublisher
    ) -> None:
        report = asyncio.run(orchestrator.run(SyncOptions(source_filter="docs-a")))
        assert report.publish is None
        assert publisher.pushed == []

    @pytest.mark.parametrize(
        ("options", "prefixes"),
        [
            (SyncOptions(reset=True), ("docs",)),
            (SyncOptions(), ("docs/docs-b",)),
            (SyncOptions(reset=True, source_filter="docs-b"), ("docs/docs-b",)),
        ],
    )
    def test_reset_decides_snapshot_scope(
        self,
        orchestrator: SyncOrchestrator,
        upstream: FakeGitHubFetcher,
        publisher: RecordingPublisher,
        options: SyncOptions,
        prefixes: tuple[str, ...],
    ) -> None:
        async def scenario():
            report = await orchestrator.run(options)
            await report.publish.wait()

        asyncio.run(scenario())

        payload, _ = publisher.pushed[0]
        assert payload.prefixes == prefixes
        assert all(path.startswith("docs/docs-b/") for path in payload.files)

    def test_missing_snapshot_repo_skips_publish(
        self,
        docs_registry: SourceRegistry,
        workspaces: WorkspaceManager,
        engine: SourceSyncEngine,
        dispatcher: PublishDispatcher,
        upstream: FakeGitHubFetcher,
        tmp_path: Path,
    ) -> None:
        settings = SyncSettings(scratch_root=tmp_path / "scratch")
        orchestrator = SyncOrchestrator(docs_registry, workspaces, engine, dispatcher, settings)

        report = asyncio.run(orchestrator.run())

        assert report.publish is None
        assert report.succeeded == 1

    def test_trigger_failure_still_cleans_up(
        self,
        docs_registry: SourceRegistry,
        workspaces: WorkspaceManager,
        engine: SourceSyncEngine,
        upstream: FakeGitHubFetcher,
        settings: SyncSettings,
    ) -> None:
        class ClosedDispatcher(PublishDispatcher):
            def submit(self, run_id, payload, config):
                raise PublishError("publish queue closed")

        dispatcher = ClosedDispatcher(None, PublishStatusStore())  # type: ignore[arg-type]
        orchestrator = SyncOrchestrator(docs_registry, workspaces, engine, dispatcher, settings)

        report = asyncio.run(orchestrator.run())

        assert report.publish is None
        assert report.succeeded == 1
        assert scratch_entries(settings) == []

    def test_publish_failure_does_not_fail_run(
        self,
        docs_registry: SourceRegistry,
        workspaces: WorkspaceManager,
        engine: SourceSyncEngine,
        upstream: FakeGitHubFetcher,
        settings: SyncSettings,
    ) -> None:
        dispatcher = PublishDispatcher(
            RecordingPublisher(error=PublishError("HTTP 500")),  # type: ignore[arg-type]
            PublishStatusStore(),
        )
        orchestrator = SyncOrchestrator(docs_registry, workspaces, engine, dispatcher, settings)

        async def scenario():
            report = await orchestrator.run(SyncOptions(source_filter="docs-b"))
            record = await report.publish.wait()
            return report, record

        report, record = asyncio.run(scenario())

        assert report.success
        assert record.state == PublishState.FAILED
        assert record.error == "HTTP 500"

    def test_concurrent_runs_use_separate_workspaces(
        self, orchestrator: SyncOrchestrator, upstream: FakeGitHubFetcher, settings: SyncSettings
    ) -> None:
        async def scenario():
            return await asyncio.gather(
                orchestrator.run(SyncOptions(push=False, source_filter="docs-b")),
                orchestrator.run(SyncOptions(push=False, source_filter="docs-b")),
            )

        first, second = asyncio.run(scenario())

        assert first.run_id != second.run_id
        assert first.success and second.success
        assert scratch_entries(settings) == []

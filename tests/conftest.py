"""Shared test fixtures for docsync."""

from __future__ import annotations

from pathlib import Path

import pytest

from docsync.config import SyncSettings
from docsync.entities.results import FailureKind
from docsync.entities.snapshot import SnapshotConfig
from docsync.errors import SourceSyncError
from docsync.sync.dispatcher import PublishDispatcher
from docsync.sync.engine import SourceSyncEngine
from docsync.sync.github import GitHubFetcher
from docsync.sync.publisher import PublishOutcome, SnapshotPayload
from docsync.sync.status import PublishStatusStore
from docsync.sync.workspace import WorkspaceManager


class FakeGitHubFetcher(GitHubFetcher):
    """In-memory GitHub: repos are dicts of relative path -> text."""

    def __init__(self) -> None:
        super().__init__()
        self.trees: dict[str, dict[str, str]] = {}
        self.readmes: dict[str, str] = {}
        self.failures: dict[str, SourceSyncError] = {}
        self.calls: list[tuple[str, str, str]] = []

    async def fetch_readme(self, repo: str, branch: str) -> str:
        self.calls.append(("readme", repo, branch))
        if repo in self.failures:
            raise self.failures[repo]
        if repo not in self.readmes:
            raise SourceSyncError(f"Failed to fetch README from {repo}@{branch}: HTTP 404", FailureKind.NOT_FOUND)
        return self.readmes[repo]

    async def checkout(self, repo: str, branch: str, dest: Path) -> Path:
        self.calls.append(("checkout", repo, branch))
        if repo in self.failures:
            raise self.failures[repo]
        if repo not in self.trees:
            raise SourceSyncError(f"Git clone of {repo}@{branch} failed: not found", FailureKind.NOT_FOUND)
        for rel, text in self.trees[repo].items():
            target = dest / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
        return dest


class RecordingPublisher:
    """Stands in for SnapshotPublisher; remembers every payload it was given."""

    def __init__(self, error: Exception | None = None) -> None:
        self.pushed: list[tuple[SnapshotPayload, SnapshotConfig]] = []
        self.error = error

    async def push(self, payload: SnapshotPayload, config: SnapshotConfig) -> PublishOutcome:
        self.pushed.append((payload, config))
        if self.error:
            raise self.error
        return PublishOutcome(
            commit_sha="c0ffee" * 6 + "abcd",
            files=len(payload),
            changed=len(payload),
            deleted=0,
            attempts=1,
        )


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    """Settings pointing every path into the test's tmp dir."""
    return SyncSettings(
        snapshot_repo="acme/docs-snapshot",
        scratch_root=tmp_path / "scratch",
        status_path=tmp_path / "status.json",
        sources_path=tmp_path / "docsync.yaml",
        source_timeout_seconds=5.0,
    )


@pytest.fixture
def fake_github() -> FakeGitHubFetcher:
    return FakeGitHubFetcher()


@pytest.fixture
def engine(fake_github: FakeGitHubFetcher) -> SourceSyncEngine:
    return SourceSyncEngine(github=fake_github)


@pytest.fixture
def workspaces(settings: SyncSettings) -> WorkspaceManager:
    return WorkspaceManager(settings.scratch_root)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def dispatcher(publisher: RecordingPublisher) -> PublishDispatcher:
    return PublishDispatcher(publisher, PublishStatusStore())  # type: ignore[arg-type]


@pytest.fixture
def twelve_file_tree() -> dict[str, str]:
    """A repository tree with 12 documentation files and some noise."""
    tree = {f"guide/page-{i:02d}.md": f"# Page {i}\n\nBody {i}.\n" for i in range(10)}
    tree["api/reference.mdx"] = "# API\n"
    tree["nav.yml"] = "items: []\n"
    tree["src/index.ts"] = "export {}\n"
    tree["package-lock.json"] = "{}\n"
    tree["node_modules/dep/README.md"] = "# dep\n"
    return tree

"""Per-source sync: fetch upstream content into a workspace output folder."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import tempfile
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

import httpx

from docsync.entities.results import FailureKind, SyncResult, format_duration
from docsync.entities.sources import ContentFile, CustomSource, GitHubSource, Source, SourceType, YouTubeSource
from docsync.errors import SourceSyncError
from docsync.sync.filters import DocFilePolicy
from docsync.sync.github import GitHubFetcher
from docsync.sync.youtube import render_video, slugify

if TYPE_CHECKING:
    from docsync.sync.workspace import Workspace
    from docsync.sync.youtube import YouTubeFetcher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def reconcile_directory(output_dir: Path, files: dict[str, bytes]) -> int:
    """Make ``output_dir`` hold exactly ``files``.

    Files no longer present upstream are removed first, then new or changed
    files are written. Unchanged files are left untouched, so re-running with
    identical upstream content is a no-op on disk. Returns the file count.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    keep = set(files)

    existing = sorted(output_dir.rglob("*"), key=lambda p: len(p.parts), reverse=True)
    removed = 0
    for path in existing:
        if path.is_symlink() or path.is_file():
            if path.relative_to(output_dir).as_posix() not in keep:
                path.unlink()
                removed += 1
        elif path.is_dir() and not any(path.iterdir()):
            path.rmdir()

    written = 0
    for rel, data in files.items():
        target = output_dir / rel
        if target.is_file() and target.read_bytes() == data:
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        written += 1

    if removed:
        logger.debug("Removed %d stale file(s) from %s", removed, output_dir)
    logger.debug("Wrote %d of %d file(s) to %s", written, len(files), output_dir)
    return len(files)


def select_files(checkout: Path, content_path: str, policy: DocFilePolicy) -> dict[str, Path]:
    """Documentation files under ``checkout/content_path``, keyed by relative path.

    Raises:
        SourceSyncError: ``content_path`` does not exist in the checkout.
    """
    base = checkout / content_path if content_path else checkout
    if not base.is_dir():
        raise SourceSyncError(f"Content path '{content_path}' not found in repository", FailureKind.NOT_FOUND)

    selected: dict[str, Path] = {}
    for path in base.rglob("*"):
        if path.is_symlink() or not path.is_file():
            continue
        rel = path.relative_to(base).as_posix()
        if policy.allows(rel):
            selected[rel] = path
    return selected


class SourceSyncEngine:
    """Syncs one source into ``docs/<output_path>`` of a workspace.

    Dispatches once on the source type. Never raises for upstream or
    filesystem problems: they come back as a failed ``SyncResult``.
    """

    def __init__(
        self,
        github: GitHubFetcher | None = None,
        youtube: YouTubeFetcher | None = None,
        policy: DocFilePolicy | None = None,
    ) -> None:
        self._github = github or GitHubFetcher()
        self._youtube = youtube
        self._policy = policy or DocFilePolicy()
        self._handlers: dict[SourceType, Callable[[Source, Path], Awaitable[int]]] = {
            SourceType.GITHUB: self._sync_github,  # type: ignore[dict-item]
            SourceType.YOUTUBE: self._sync_youtube,  # type: ignore[dict-item]
            SourceType.CUSTOM: self._sync_custom,  # type: ignore[dict-item]
        }

    async def sync_source(self, source: Source, workspace: Workspace) -> SyncResult:
        """Fetch ``source`` into the workspace and report the outcome."""
        start = time.perf_counter()
        logger.info("Syncing %s...", source.id)

        try:
            output_dir = workspace.output_dir(source.output_path)
            handler = self._handlers[SourceType(source.type)]
            file_count = await handler(source, output_dir)
        except SourceSyncError as e:
            return self._failure(source, str(e), e.kind, start)
        except httpx.HTTPError as e:
            return self._failure(source, f"HTTP error: {e}", FailureKind.NETWORK, start)
        except OSError as e:
            return self._failure(source, f"Filesystem error: {e}", FailureKind.FILESYSTEM, start)

        duration_ms = (time.perf_counter() - start) * 1000
        logger.info("%s: %d files in %s", source.id, file_count, format_duration(duration_ms))
        return SyncResult.ok(source.id, file_count, duration_ms)

    def _failure(self, source: Source, message: str, kind: FailureKind, start: float) -> SyncResult:
        duration_ms = (time.perf_counter() - start) * 1000
        logger.error("%s: sync failed (%s) - %s", source.id, kind.value, message)
        return SyncResult.failed(source.id, message, kind, duration_ms)

    async def _sync_github(self, source: GitHubSource, output_dir: Path) -> int:
        if source.readme_only:
            content = await self._github.fetch_readme(source.repo, source.branch)
            return await _in_thread(reconcile_directory, output_dir, {"README.md": content.encode("utf-8")})

        with tempfile.TemporaryDirectory(prefix=f"docsync-{source.id}-", ignore_cleanup_errors=True) as tmp:
            tmp_path = Path(tmp)
            checkout = await _finish(self._github.checkout(source.repo, source.branch, tmp_path / "primary"))
            selected = select_files(checkout, source.content_path, self._policy)

            for index, extra in enumerate(source.additional_syncs):
                try:
                    extra_checkout = await _finish(
                        self._github.checkout(extra.repo, extra.branch, tmp_path / f"extra-{index}")
                    )
                    selected.update(select_files(extra_checkout, extra.content_path, self._policy))
                except SourceSyncError as e:
                    logger.warning("[%s] Additional sync failed for %s: %s", source.id, extra.repo, e)

            files = await _in_thread(_read_all, selected)

        return await _in_thread(reconcile_directory, output_dir, files)

    async def _sync_youtube(self, source: YouTubeSource, output_dir: Path) -> int:
        if self._youtube is None:
            raise SourceSyncError("YouTube API key not configured", FailureKind.UNSUPPORTED)

        videos = await self._youtube.list_videos(source.channel_id, source.max_videos)
        logger.info("Found %d videos for %s", len(videos), source.id)

        files: dict[str, bytes] = {}
        index = []
        for video in videos:
            filename = f"{video.id}-{slugify(video.title) or 'video'}.md"
            files[filename] = render_video(video).encode("utf-8")
            index.append(
                {"id": video.id, "title": video.title, "publishedAt": video.published_at, "file": filename}
            )

        files["videos.json"] = json.dumps(
            {
                "lastSync": datetime.now(tz=UTC).date().isoformat(),
                "totalVideos": len(videos),
                "channelId": source.channel_id,
                "handle": source.handle,
                "videos": index,
            },
            indent=2,
        ).encode("utf-8")

        return await _in_thread(reconcile_directory, output_dir, files)

    async def _sync_custom(self, source: CustomSource, output_dir: Path) -> int:
        if source.fetch is None:
            raise SourceSyncError(f"Custom source {source.id} has no fetch function", FailureKind.UNSUPPORTED)

        if inspect.iscoroutinefunction(source.fetch):
            produced = await source.fetch()
        else:
            # Plain fetchers may block; keep them off the event loop.
            produced = await asyncio.to_thread(source.fetch)
            if inspect.isawaitable(produced):
                produced = await produced

        try:
            items = [ContentFile.model_validate(item) for item in produced]
        except ValueError as e:
            raise SourceSyncError(f"Custom source {source.id} returned invalid files: {e}") from e

        files = {item.path: item.content.encode("utf-8") for item in items}
        return await _in_thread(reconcile_directory, output_dir, files)


async def _finish(step: Awaitable[T]) -> T:
    """Await ``step`` and let it complete even if the caller is cancelled.

    Worker threads cannot be interrupted, so a timed-out source waits here
    for its filesystem work to end before the cancellation propagates.
    Nothing writes into the workspace or a temp checkout after its owner
    starts removing it.
    """
    worker = asyncio.ensure_future(step)
    try:
        return await asyncio.shield(worker)
    except asyncio.CancelledError:
        await asyncio.wait([worker])
        if not worker.cancelled() and worker.exception() is not None:
            logger.debug("Step failed after cancellation: %s", worker.exception())
        raise


def _in_thread(func: Callable[..., T], *args: Any) -> Awaitable[T]:
    return _finish(asyncio.to_thread(func, *args))


def _read_all(selected: dict[str, Path]) -> dict[str, bytes]:
    return {rel: path.read_bytes() for rel, path in sorted(selected.items())}

"""Publish a workspace's docs/ tree as a commit on the snapshot branch.

The new tree and commit are built off to the side through the GitHub git
data API; the branch only moves in the final, non-forced ref update. If the
branch advanced in the meantime the update is rejected and the publish is
retried on the new head.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

import httpx

from docsync.entities.snapshot import SnapshotConfig
from docsync.errors import PublishConflictError, PublishError
from docsync.sync.workspace import DOCS_DIR

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.github.com"
INLINE_LIMIT = 100 * 1024


@dataclass(frozen=True)
class SnapshotPayload:
    """Files to publish, keyed by repository path (``docs/...``).

    ``prefixes`` are the folders this payload owns in the snapshot: files
    under them that are absent from ``files`` are deleted on publish.
    """

    files: dict[str, bytes]
    prefixes: tuple[str, ...]

    def __len__(self) -> int:
        return len(self.files)


@dataclass(frozen=True)
class PublishOutcome:
    commit_sha: str
    files: int
    changed: int
    deleted: int
    attempts: int


def collect_snapshot(
    root: Path, output_paths: Iterable[str] | None = None, replace_all: bool = False
) -> SnapshotPayload:
    """Read the publishable files of a workspace into memory.

    With ``output_paths`` only those ``docs/<output_path>`` folders are
    collected; otherwise everything under ``docs/``. The payload owns the
    collected folders in the snapshot, or the whole ``docs/`` tree with
    ``replace_all`` so folders this run did not produce are deleted too.
    """
    docs_dir = root / DOCS_DIR
    if output_paths is None:
        children = docs_dir.iterdir() if docs_dir.is_dir() else []
        prefixes = sorted(f"{DOCS_DIR}/{p.name}" for p in children if p.is_dir())
        folders = [docs_dir]
    else:
        prefixes = sorted({f"{DOCS_DIR}/{p}" for p in output_paths})
        folders = [root / prefix for prefix in prefixes]

    files: dict[str, bytes] = {}
    for folder in folders:
        if not folder.is_dir():
            continue
        for path in sorted(folder.rglob("*")):
            if path.is_file() and not path.is_symlink():
                files[path.relative_to(root).as_posix()] = path.read_bytes()

    if replace_all:
        prefixes = [DOCS_DIR]
    return SnapshotPayload(files=files, prefixes=tuple(prefixes))


def git_blob_sha(data: bytes) -> str:
    """The SHA-1 git assigns to a blob with this content."""
    header = f"blob {len(data)}\0".encode()
    return hashlib.sha1(header + data, usedforsecurity=False).hexdigest()


def _under(path: str, prefixes: tuple[str, ...]) -> bool:
    return any(path.startswith(prefix + "/") for prefix in prefixes)


class SnapshotPublisher:
    """Pushes snapshot payloads to a GitHub repository branch."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        api_base_url: str = API_BASE_URL,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        timeout: float = 60.0,
    ) -> None:
        self._transport = transport
        self._api_base_url = api_base_url.rstrip("/")
        self.max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._timeout = timeout

    async def publish(self, workspace_root: Path, config: SnapshotConfig) -> str:
        """Publish everything under ``workspace_root/docs`` and return the commit SHA."""
        payload = await asyncio.to_thread(collect_snapshot, workspace_root)
        outcome = await self.push(payload, config)
        return outcome.commit_sha

    async def push(self, payload: SnapshotPayload, config: SnapshotConfig) -> PublishOutcome:
        """Publish ``payload``, retrying on branch conflicts.

        Raises:
            PublishError: Nothing to publish, or the API rejected a request.
            PublishConflictError: The branch kept moving for ``max_attempts``.
        """
        if not payload.files:
            raise PublishError("No files to publish")

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if config.github_token:
            headers["Authorization"] = f"Bearer {config.github_token}"

        async with httpx.AsyncClient(
            base_url=f"{self._api_base_url}/repos/{config.snapshot_repo}",
            headers=headers,
            transport=self._transport,
            timeout=self._timeout,
        ) as client:
            for attempt in range(1, self.max_attempts + 1):
                try:
                    outcome = await self._push_once(client, payload, config)
                except PublishConflictError:
                    if attempt == self.max_attempts:
                        raise
                    logger.warning(
                        "Snapshot branch %s moved, retrying (%d/%d)",
                        config.snapshot_branch,
                        attempt,
                        self.max_attempts,
                    )
                    await asyncio.sleep(self._retry_delay * attempt)
                    continue

                return PublishOutcome(
                    commit_sha=outcome[0],
                    files=len(payload.files),
                    changed=outcome[1],
                    deleted=outcome[2],
                    attempts=attempt,
                )

        raise PublishError(f"Invalid max_attempts: {self.max_attempts}")

    async def _push_once(
        self, client: httpx.AsyncClient, payload: SnapshotPayload, config: SnapshotConfig
    ) -> tuple[str, int, int]:
        branch = config.snapshot_branch
        base_sha = await self._get_branch_head(client, branch)

        existing: dict[str, str] = {}
        base_tree_sha: str | None = None
        if base_sha:
            commit = await self._request(client, "GET", f"/git/commits/{base_sha}")
            base_tree_sha = commit["tree"]["sha"]
            tree = await self._request(client, "GET", f"/git/trees/{base_tree_sha}", params={"recursive": "1"})
            if tree.get("truncated"):
                logger.warning("Snapshot tree listing truncated; stale files may survive this publish")
            existing = {item["path"]: item["sha"] for item in tree.get("tree", []) if item.get("type") == "blob"}

        items: list[dict[str, Any]] = []
        for path, data in payload.files.items():
            if existing.get(path) == git_blob_sha(data):
                continue
            items.append(await self._tree_item(client, path, data))
        changed = len(items)

        deleted = 0
        for path in existing:
            if _under(path, payload.prefixes) and path not in payload.files:
                items.append({"path": path, "mode": "100644", "type": "blob", "sha": None})
                deleted += 1

        if base_sha and not items:
            logger.info("Snapshot unchanged, %s stays at %s", branch, base_sha[:8])
            return base_sha, 0, 0

        tree_body: dict[str, Any] = {"tree": items}
        if base_tree_sha:
            tree_body["base_tree"] = base_tree_sha
        new_tree = await self._request(client, "POST", "/git/trees", json=tree_body)

        commit_body: dict[str, Any] = {"message": config.commit_message, "tree": new_tree["sha"]}
        if base_sha:
            commit_body["parents"] = [base_sha]
        new_commit = await self._request(client, "POST", "/git/commits", json=commit_body)
        commit_sha: str = new_commit["sha"]

        if base_sha:
            await self._request(
                client, "PATCH", f"/git/refs/heads/{branch}", json={"sha": commit_sha, "force": False}
            )
        else:
            await self._request(client, "POST", "/git/refs", json={"ref": f"refs/heads/{branch}", "sha": commit_sha})

        logger.info(
            "Published %d changed, %d deleted file(s) to %s@%s: %s",
            changed,
            deleted,
            config.snapshot_repo,
            branch,
            commit_sha[:8],
        )
        return commit_sha, changed, deleted

    async def _get_branch_head(self, client: httpx.AsyncClient, branch: str) -> str | None:
        try:
            response = await client.get(f"/git/ref/heads/{branch}")
        except httpx.TransportError as e:
            raise PublishError(f"Network error reading branch {branch}: {e}") from e
        if response.status_code == 404:
            logger.info("Snapshot branch %s does not exist yet, it will be created", branch)
            return None
        self._raise_for_status(response, "GET", f"/git/ref/heads/{branch}")
        return str(response.json()["object"]["sha"])

    async def _tree_item(self, client: httpx.AsyncClient, path: str, data: bytes) -> dict[str, Any]:
        if len(data) < INLINE_LIMIT:
            try:
                return {"path": path, "mode": "100644", "type": "blob", "content": data.decode("utf-8")}
            except UnicodeDecodeError:
                pass

        blob = await self._request(
            client,
            "POST",
            "/git/blobs",
            json={"content": base64.b64encode(data).decode("ascii"), "encoding": "base64"},
        )
        return {"path": path, "mode": "100644", "type": "blob", "sha": blob["sha"]}

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise PublishError(f"Network error on {method} {url}: {e}") from e
        self._raise_for_status(response, method, url)
        data: dict[str, Any] = response.json()
        return data

    @staticmethod
    def _raise_for_status(response: httpx.Response, method: str, url: str) -> None:
        if response.is_success:
            return

        text = response.text
        if "/git/refs" in url and (
            response.status_code == 409
            or (response.status_code == 422 and ("fast forward" in text.lower() or "already exists" in text.lower()))
        ):
            raise PublishConflictError(f"Snapshot branch moved during publish: {text[:200]}")

        raise PublishError(f"{method} {url} failed: HTTP {response.status_code} {text[:200]}")

"""GitHub access for source syncs: README downloads and shallow checkouts."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx
from git import GitCommandError, Repo

from docsync.entities.results import FailureKind
from docsync.errors import SourceSyncError
from docsync.sync.auth import TokenProvider

logger = logging.getLogger(__name__)

RAW_BASE_URL = "https://raw.githubusercontent.com"
GIT_BASE_URL = "https://github.com"

# git aborts a clone that moves under 1 KiB/s for this many seconds.
CLONE_STALL_SECONDS = 30

CLONE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_HTTP_LOW_SPEED_LIMIT": "1000",
    "GIT_HTTP_LOW_SPEED_TIME": str(CLONE_STALL_SECONDS),
}


def classify_http_error(response: httpx.Response) -> FailureKind:
    """Map an upstream HTTP error response onto a failure kind."""
    status = response.status_code
    if status == 429:
        return FailureKind.RATE_LIMITED
    if status == 403 and response.headers.get("x-ratelimit-remaining") == "0":
        return FailureKind.RATE_LIMITED
    if status in (401, 403):
        return FailureKind.AUTH
    if status == 404:
        return FailureKind.NOT_FOUND
    if status >= 500:
        return FailureKind.NETWORK
    return FailureKind.UNKNOWN


def classify_git_error(stderr: str) -> FailureKind:
    """Diagnose a failed git command from its stderr."""
    text = stderr.lower()

    if any(kw in text for kw in ["rate limit", "too many requests"]):
        return FailureKind.RATE_LIMITED
    if any(kw in text for kw in ["authentication failed", "could not read username", "permission denied", "403"]):
        return FailureKind.AUTH
    if any(kw in text for kw in ["repository not found", "not found", "does not exist", "does not appear to be a git repository"]):
        return FailureKind.NOT_FOUND
    if any(kw in text for kw in ["could not resolve host", "timed out", "connection", "network", "unable to access"]):
        return FailureKind.NETWORK
    return FailureKind.UNKNOWN


def _redact(text: str, token: str | None) -> str:
    return text.replace(token, "***") if token else text


class GitHubFetcher:
    """Fetches repository content from GitHub.

    ``transport`` lets callers swap the HTTP layer (tests pass an
    ``httpx.MockTransport``); ``git_base_url`` lets them clone from a
    local mirror.
    """

    def __init__(
        self,
        tokens: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        raw_base_url: str = RAW_BASE_URL,
        git_base_url: str = GIT_BASE_URL,
        timeout: float = 30.0,
    ) -> None:
        self._tokens = tokens or TokenProvider()
        self._transport = transport
        self._raw_base_url = raw_base_url.rstrip("/")
        self._git_base_url = git_base_url.rstrip("/")
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout, follow_redirects=True)

    async def fetch_readme(self, repo: str, branch: str) -> str:
        """Download ``README.md`` at ``branch``.

        Raises:
            SourceSyncError: The README could not be fetched.
        """
        url = f"{self._raw_base_url}/{repo}/{branch}/README.md"
        headers: dict[str, str] = {}
        token = self._tokens.resolve(repo)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            async with self._client() as client:
                response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise SourceSyncError(f"Timed out fetching README from {repo}: {e}", FailureKind.NETWORK) from e
        except httpx.TransportError as e:
            raise SourceSyncError(f"Network error fetching README from {repo}: {e}", FailureKind.NETWORK) from e

        if response.is_error:
            kind = classify_http_error(response)
            raise SourceSyncError(
                f"Failed to fetch README from {repo}@{branch}: HTTP {response.status_code} {response.reason_phrase}",
                kind,
            )
        return response.text

    def clone_url(self, repo: str, token: str | None = None) -> str:
        """Clone URL for ``repo``, with ``x-access-token`` credentials when given."""
        base = self._git_base_url
        if token and base.startswith("https://"):
            base = f"https://x-access-token:{token}@{base[len('https://'):]}"
        return f"{base}/{repo}.git"

    async def checkout(self, repo: str, branch: str, dest: Path) -> Path:
        """Shallow-clone ``repo`` at ``branch`` into ``dest``.

        Runs in a worker thread; git is blocking.

        Raises:
            SourceSyncError: The clone failed.
        """
        token = self._tokens.resolve(repo)
        await asyncio.to_thread(self._clone, repo, branch, dest, token)
        return dest

    def _clone(self, repo: str, branch: str, dest: Path, token: str | None) -> None:
        url = self.clone_url(repo, token)
        logger.info("Cloning %s@%s to %s", repo, branch, dest)
        try:
            git_repo = Repo.clone_from(
                url,
                dest,
                env=CLONE_ENV,
                depth=1,
                branch=branch,
                single_branch=True,
            )
        except GitCommandError as e:
            stderr = _redact(str(e.stderr or e), token)
            raise SourceSyncError(
                f"Git clone of {repo}@{branch} failed: {stderr.strip()}",
                classify_git_error(stderr),
            ) from None
        git_repo.close()

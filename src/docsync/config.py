"""Runtime settings for source sync and snapshot publishing."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_DOC_EXTENSIONS: tuple[str, ...] = (".md", ".mdx", ".yml", ".yaml", ".json")

DEFAULT_EXCLUDED_FILES: tuple[str, ...] = (
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "bun.lockb",
    "composer.lock",
    "Gemfile.lock",
    "Cargo.lock",
    "Pipfile.lock",
    "poetry.lock",
    "uv.lock",
    "go.sum",
)


class SyncSettings(BaseModel):
    """Configuration for sync runs, snapshot publishing and the trigger server."""

    # Credentials
    github_token: str | None = Field(default=None, description="GitHub token for private repos and snapshot pushes")
    youtube_api_key: str | None = Field(default=None, description="YouTube Data API key for channel sources")

    # Snapshot target
    snapshot_repo: str | None = Field(default=None, description="owner/name of the snapshot repository")
    snapshot_branch: str = Field(default="main", description="Branch that receives snapshot commits")
    publish_max_attempts: int = Field(default=3, ge=1, description="Publish attempts before a conflict is fatal")

    # Storage
    sources_path: Path = Field(
        default_factory=lambda: Path("docsync.yaml"),
        description="YAML or JSON file declaring the sources",
    )
    scratch_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "docsync-sync",
        description="Parent directory for per-run workspaces",
    )
    status_path: Path = Field(
        default_factory=lambda: Path.home() / ".docsync" / "publish-status.json",
        description="Path to the publish status file",
    )

    # Source sync
    max_concurrency: int = Field(default=4, ge=1, description="Sources synced in parallel")
    source_timeout_seconds: float = Field(default=60.0, gt=0, description="Upper bound for one source's sync")
    doc_extensions: tuple[str, ...] = Field(
        default=DEFAULT_DOC_EXTENSIONS,
        description="File extensions kept from upstream repositories",
    )
    excluded_files: tuple[str, ...] = Field(
        default=DEFAULT_EXCLUDED_FILES,
        description="File names dropped even when their extension is allowed",
    )

    # Trigger server
    server_host: str = Field(default="0.0.0.0", description="Bind address for the HTTP trigger server")
    server_port: int = Field(default=9848, description="Port for the HTTP trigger server")
    webhook_secret: str | None = Field(default=None, description="GitHub webhook secret for HMAC validation")

    @classmethod
    def from_env(cls, **overrides: object) -> SyncSettings:
        """Build settings from environment variables, then apply overrides."""
        env = os.environ
        values: dict[str, object] = {}

        mapping = {
            "GITHUB_TOKEN": "github_token",
            "YOUTUBE_API_KEY": "youtube_api_key",
            "GITHUB_SNAPSHOT_REPO": "snapshot_repo",
            "GITHUB_SNAPSHOT_BRANCH": "snapshot_branch",
            "DOCSYNC_SOURCES": "sources_path",
            "DOCSYNC_SCRATCH_ROOT": "scratch_root",
            "DOCSYNC_STATUS_PATH": "status_path",
            "DOCSYNC_WEBHOOK_SECRET": "webhook_secret",
            "DOCSYNC_PORT": "server_port",
            "DOCSYNC_MAX_CONCURRENCY": "max_concurrency",
        }
        for var, field_name in mapping.items():
            value = env.get(var)
            if value:
                values[field_name] = value

        values.update(overrides)
        return cls.model_validate(values)


# Default configuration
SYNC_SETTINGS = SyncSettings()

"""Snapshot publish configuration and status records."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class SnapshotConfig(BaseModel):
    """Where and how a snapshot is published. Passed by value, never persisted."""

    model_config = ConfigDict(frozen=True)

    github_token: str | None = Field(default=None, repr=False)
    snapshot_repo: str
    snapshot_branch: str = "main"
    commit_message: str = "chore: sync content"


class PublishState(StrEnum):
    """Lifecycle of a detached snapshot publish."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _now() -> datetime:
    return datetime.now(tz=UTC)


class PublishRecord(BaseModel):
    """Queryable status of one run's snapshot publish."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    run_id: str
    state: PublishState = PublishState.PENDING
    snapshot_repo: str
    snapshot_branch: str
    files: int = 0
    attempts: int = 0
    commit_sha: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

"""Per-source sync results and run reports."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from docsync.sync.dispatcher import PublishHandle


class FailureKind(StrEnum):
    """Why a single source failed to sync."""

    AUTH = "auth"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    TIMEOUT = "timeout"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class RunState(StrEnum):
    """Steps of a sync run, in order. ``failed`` is only reachable from the first two."""

    RESOLVING_SOURCES = "resolving_sources"
    PREPARING_WORKSPACE = "preparing_workspace"
    SYNCING_SOURCES = "syncing_sources"
    PUBLISH_TRIGGERED = "publish_triggered"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


def format_duration(ms: float) -> str:
    """Render sub-second durations in milliseconds and longer ones in seconds."""
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


class SyncResult(BaseModel):
    """Outcome of one source's sync attempt. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    success: bool
    file_count: int = Field(default=0, ge=0)
    duration_ms: float = Field(default=0.0, ge=0)
    error: str | None = None
    error_kind: FailureKind | None = None

    @model_validator(mode="after")
    def error_iff_failed(self) -> SyncResult:
        """A failed result carries an error message; a successful one does not."""
        if self.success and self.error is not None:
            raise ValueError("successful result must not carry an error")
        if not self.success and not self.error:
            raise ValueError("failed result requires an error message")
        return self

    @property
    def duration_label(self) -> str:
        return format_duration(self.duration_ms)

    @classmethod
    def ok(cls, source_id: str, file_count: int, duration_ms: float) -> SyncResult:
        return cls(source_id=source_id, success=True, file_count=file_count, duration_ms=duration_ms)

    @classmethod
    def failed(
        cls,
        source_id: str,
        error: str,
        kind: FailureKind = FailureKind.UNKNOWN,
        duration_ms: float = 0.0,
    ) -> SyncResult:
        return cls(
            source_id=source_id,
            success=False,
            error=error or kind.value,
            error_kind=kind,
            duration_ms=duration_ms,
        )


@dataclass(frozen=True)
class RunReport:
    """Aggregated outcome of one orchestrator run.

    ``publish`` is the handle of the detached snapshot publish, or None
    when nothing was published.
    """

    run_id: str
    results: tuple[SyncResult, ...]
    publish: PublishHandle | None = None
    states: tuple[RunState, ...] = ()

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def files(self) -> int:
        return sum(r.file_count for r in self.results if r.success)

    @property
    def success(self) -> bool:
        return self.total > 0 and self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        """Serialise for API responses and CLI output."""
        return {
            "runId": self.run_id,
            "success": self.success,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "files": self.files,
            "publish": (
                {"runId": self.publish.run_id, "state": self.publish.state.value}
                if self.publish
                else None
            ),
            "results": [
                {
                    "sourceId": r.source_id,
                    "success": r.success,
                    "fileCount": r.file_count,
                    "duration": r.duration_label,
                    "error": r.error,
                    "errorKind": r.error_kind.value if r.error_kind else None,
                }
                for r in self.results
            ],
        }

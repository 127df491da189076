"""Fire-and-forget execution of snapshot publishes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from docsync.entities.snapshot import PublishRecord, PublishState
from docsync.errors import PublishError

if TYPE_CHECKING:
    from docsync.entities.snapshot import SnapshotConfig
    from docsync.sync.publisher import SnapshotPayload, SnapshotPublisher
    from docsync.sync.status import PublishStatusStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishHandle:
    """Reference to a submitted publish. Its outcome lives in the status store."""

    run_id: str
    task: asyncio.Task[None] = field(repr=False, compare=False)
    store: PublishStatusStore = field(repr=False, compare=False)

    @property
    def state(self) -> PublishState:
        record = self.store.get(self.run_id)
        return record.state if record else PublishState.PENDING

    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> PublishRecord | None:
        """Block until the publish finishes and return its final record."""
        await asyncio.shield(self.task)
        return self.store.get(self.run_id)


class PublishDispatcher:
    """Runs publishes as independent asyncio tasks.

    ``submit`` returns immediately; the submitting run never observes the
    publish result. Success and failure are written to the status store.
    """

    def __init__(self, publisher: SnapshotPublisher, status: PublishStatusStore) -> None:
        self._publisher = publisher
        self._status = status
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def status(self) -> PublishStatusStore:
        return self._status

    def submit(self, run_id: str, payload: SnapshotPayload, config: SnapshotConfig) -> PublishHandle:
        """Schedule a publish of ``payload`` and return its handle."""
        self._status.create(run_id, config.snapshot_repo, config.snapshot_branch, len(payload))
        task = asyncio.create_task(self._run(run_id, payload, config), name=f"publish-{run_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Snapshot publish for run %s submitted (%d files)", run_id, len(payload))
        return PublishHandle(run_id=run_id, task=task, store=self._status)

    async def _run(self, run_id: str, payload: SnapshotPayload, config: SnapshotConfig) -> None:
        self._status.mark_running(run_id)
        try:
            outcome = await self._publisher.push(payload, config)
        except PublishError as e:
            logger.error("Snapshot publish for run %s failed: %s", run_id, e)
            self._status.mark_failed(run_id, str(e))
            return
        except asyncio.CancelledError:
            self._status.mark_failed(run_id, "Publish cancelled")
            raise
        except Exception as e:
            logger.exception("Snapshot publish for run %s crashed", run_id)
            self._status.mark_failed(run_id, f"Unexpected error: {e}")
            return

        self._status.mark_succeeded(run_id, outcome.commit_sha, outcome.attempts)
        logger.info("Snapshot publish for run %s done: %s", run_id, outcome.commit_sha[:8])

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight publish to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

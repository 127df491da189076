"""Queryable status of detached snapshot publishes."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from docsync.entities.snapshot import PublishRecord, PublishState

logger = logging.getLogger(__name__)

MAX_RECORDS = 100


class PublishStatusStore:
    """Publish records keyed by run id, persisted to a JSON file.

    With ``path=None`` records live in memory only. Keeps the most recent
    ``MAX_RECORDS`` runs. Records stay in creation order.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._records: dict[str, PublishRecord] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        """Load records from disk."""
        if self._path is None or not self._path.exists():
            return

        try:
            with self._path.open(encoding="utf-8") as f:
                data = json.load(f)
            for item in data.get("runs", []):
                record = PublishRecord.model_validate(item)
                self._records[record.run_id] = record
            logger.info("Loaded %d publish records from %s", len(self._records), self._path)
        except (OSError, json.JSONDecodeError, ValidationError):
            logger.exception("Failed to load publish status from %s", self._path)
            self._records = {}

    def _save(self) -> None:
        if self._path is None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        data: dict[str, Any] = {"runs": [r.model_dump(mode="json", by_alias=True) for r in self._records.values()]}
        with self._path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def _put(self, record: PublishRecord) -> PublishRecord:
        with self._lock:
            self._records[record.run_id] = record
            overflow = len(self._records) - MAX_RECORDS
            if overflow > 0:
                for run_id in list(self._records)[:overflow]:
                    del self._records[run_id]
            try:
                self._save()
            except OSError:
                logger.exception("Failed to persist publish status to %s", self._path)
        return record

    def create(self, run_id: str, snapshot_repo: str, snapshot_branch: str, files: int) -> PublishRecord:
        """Record a newly submitted publish as pending."""
        record = PublishRecord(
            run_id=run_id,
            snapshot_repo=snapshot_repo,
            snapshot_branch=snapshot_branch,
            files=files,
        )
        return self._put(record)

    def _update(self, run_id: str, **changes: Any) -> PublishRecord | None:
        current = self._records.get(run_id)
        if current is None:
            logger.warning("No publish record for run %s", run_id)
            return None
        changes["updated_at"] = datetime.now(tz=UTC)
        return self._put(current.model_copy(update=changes))

    def mark_running(self, run_id: str) -> PublishRecord | None:
        return self._update(run_id, state=PublishState.RUNNING)

    def mark_succeeded(self, run_id: str, commit_sha: str, attempts: int) -> PublishRecord | None:
        return self._update(run_id, state=PublishState.SUCCEEDED, commit_sha=commit_sha, attempts=attempts, error=None)

    def mark_failed(self, run_id: str, error: str) -> PublishRecord | None:
        return self._update(run_id, state=PublishState.FAILED, error=error[:500])

    def get(self, run_id: str) -> PublishRecord | None:
        """Record for one run, or None."""
        return self._records.get(run_id)

    def list_recent(self, limit: int = 20) -> list[PublishRecord]:
        """Newest records first."""
        return list(reversed(self._records.values()))[:limit]

    def latest(self) -> PublishRecord | None:
        """Most recently created record."""
        recent = self.list_recent(limit=1)
        return recent[0] if recent else None

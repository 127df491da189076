"""Run-scoped scratch workspaces."""

from __future__ import annotations

import logging
import secrets
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

from docsync.errors import WorkspaceError

logger = logging.getLogger(__name__)

DOCS_DIR = "docs"


@dataclass(frozen=True)
class Workspace:
    """A scratch directory owned by exactly one run."""

    run_id: str
    root: Path
    reset: bool = False

    @property
    def docs_dir(self) -> Path:
        return self.root / DOCS_DIR

    def output_dir(self, output_path: str) -> Path:
        """Directory a source writes into: ``docs/<output_path>``.

        ``docs/`` itself is refused; it holds every source's folder.
        """
        target = (self.docs_dir / output_path).resolve()
        docs = self.docs_dir.resolve()
        if docs not in target.parents:
            raise ValueError(f"Output path must be a folder inside docs/: {output_path!r}")
        return target


class WorkspaceManager:
    """Allocates and removes per-run workspaces under a scratch root.

    The orchestrator is the only caller of ``cleanup``; sync and publish
    code only ever receive the ``Workspace`` value.
    """

    def __init__(self, scratch_root: Path) -> None:
        self.scratch_root = scratch_root

    @staticmethod
    def new_run_id() -> str:
        """Timestamp plus random suffix, unique even within one millisecond."""
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"

    def prepare(self, reset: bool = False, run_id: str | None = None) -> Workspace:
        """Create ``<scratch_root>/<run_id>/docs``.

        The run directory is always new, so ``docs/`` starts empty. Content
        that outlives a run lives in the snapshot, so ``reset`` is recorded on
        the workspace: a reset run replaces the snapshot's whole ``docs/``
        tree, an incremental run only the folders it synced.

        Raises:
            WorkspaceError: The directory could not be created, or the run id
                is already in use.
        """
        run_id = run_id or self.new_run_id()
        workspace = Workspace(run_id=run_id, root=self.scratch_root / run_id, reset=reset)

        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            workspace.root.mkdir()
        except FileExistsError as e:
            raise WorkspaceError(f"Workspace for run {run_id} already exists") from e
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace {workspace.root}: {e}") from e

        try:
            workspace.docs_dir.mkdir()
        except OSError as e:
            self.cleanup(workspace)
            raise WorkspaceError(f"Cannot prepare docs folder in {workspace.root}: {e}") from e

        logger.info("Workspace ready: %s", workspace.root)
        return workspace

    def cleanup(self, workspace: Workspace) -> bool:
        """Remove the whole workspace tree. Never raises.

        Returns True when the tree is gone afterwards.
        """
        try:
            shutil.rmtree(workspace.root)
        except FileNotFoundError:
            pass
        except OSError:
            logger.exception("Failed to clean up workspace %s", workspace.root)
            return False

        logger.info("Workspace cleaned up: %s", workspace.root)
        return True

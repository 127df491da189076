"""Which upstream files count as documentation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

from docsync.config import DEFAULT_DOC_EXTENSIONS, DEFAULT_EXCLUDED_FILES

if TYPE_CHECKING:
    from docsync.config import SyncSettings

_SKIPPED_DIRS = frozenset({".git", "node_modules"})


@dataclass(frozen=True)
class DocFilePolicy:
    """Extension allow-list plus a name deny-list.

    Paths are POSIX-style and relative to the synced tree.
    """

    extensions: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_DOC_EXTENSIONS))
    excluded_names: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_EXCLUDED_FILES))

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> DocFilePolicy:
        return cls(
            extensions=frozenset(ext.lower() for ext in settings.doc_extensions),
            excluded_names=frozenset(settings.excluded_files),
        )

    def allows(self, relative_path: str) -> bool:
        path = PurePosixPath(relative_path)
        if any(part in _SKIPPED_DIRS for part in path.parts[:-1]):
            return False
        if path.name in self.excluded_names:
            return False
        return path.suffix.lower() in self.extensions

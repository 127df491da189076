"""Registry of configured content sources."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from docsync.entities.sources import CustomSource, GitHubSource, Source, SourceType, YouTubeSource
from docsync.errors import ConfigError, SourceNotFoundError

logger = logging.getLogger(__name__)


class SourcesSection(BaseModel):
    """The ``sources`` block of a configuration file."""

    github: list[GitHubSource] = Field(default_factory=list)
    youtube: list[YouTubeSource] = Field(default_factory=list)
    custom: list[CustomSource] = Field(default_factory=list)


class SourceConfigFile(BaseModel):
    """Top-level shape of ``docsync.yaml`` / ``docsync.json``."""

    sources: SourcesSection = Field(default_factory=SourcesSection)


def load_source_config(path: Path) -> list[Source]:
    """Read and validate a YAML or JSON source configuration file.

    Returns sources in file order: GitHub first, then YouTube, then custom.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read source config {path}: {e}") from e

    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text) if text.strip() else {}
        else:
            data = yaml.safe_load(text) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot parse source config {path}: {e}") from e

    return parse_source_config(data)


def parse_source_config(data: Any) -> list[Source]:
    """Validate an already-decoded configuration mapping."""
    try:
        config = SourceConfigFile.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid source config: {e}") from e

    section = config.sources
    return [*section.github, *section.youtube, *section.custom]


def _check_output_paths(sources: list[Source] | tuple[Source, ...]) -> None:
    """Each source must own a folder no other source writes into or around."""
    # With a trailing slash a folder sorts directly before everything nested in it.
    owners = sorted((s.output_path + "/", s.id) for s in sources)
    for (path, owner), (other_path, other) in zip(owners, owners[1:]):
        if other_path == path:
            raise ConfigError(f"Sources {owner} and {other} share output path {path[:-1]!r}")
        if other_path.startswith(path):
            raise ConfigError(f"Output path {other_path[:-1]!r} of {other} is nested in {path[:-1]!r} of {owner}")


class SourceRegistry:
    """Immutable, ordered view over the configured sources.

    Built once per process (or per reload); safe to share between
    concurrent runs because nothing mutates it after construction.
    """

    def __init__(self, sources: list[Source] | tuple[Source, ...] = ()) -> None:
        by_id: dict[str, Source] = {}
        for source in sources:
            if source.id in by_id:
                raise ConfigError(f"Duplicate source id: {source.id}")
            by_id[source.id] = source
        _check_output_paths(sources)
        self._sources: tuple[Source, ...] = tuple(sources)
        self._by_id = by_id

    @classmethod
    def from_file(cls, path: Path) -> SourceRegistry:
        """Load a registry from a config file. A missing file yields no sources."""
        if not path.exists():
            logger.warning("Source config %s not found, registry is empty", path)
            return cls()

        sources = load_source_config(path)
        logger.info("Loaded %d source(s) from %s", len(sources), path)
        return cls(sources)

    @classmethod
    def from_mapping(cls, data: Any) -> SourceRegistry:
        """Build a registry from a decoded config mapping."""
        return cls(parse_source_config(data))

    def register_custom(self, source: CustomSource) -> SourceRegistry:
        """Return a new registry that also contains a programmatic custom source."""
        return SourceRegistry([*self._sources, source])

    def list_sources(self) -> list[Source]:
        """List all sources in configuration order."""
        return list(self._sources)

    def list_by_type(self, source_type: SourceType | str) -> list[Source]:
        """List sources of one kind. May be empty."""
        wanted = SourceType(source_type)
        return [s for s in self._sources if s.type == wanted]

    def get_by_id(self, source_id: str) -> Source:
        """Resolve a source by id.

        Raises:
            SourceNotFoundError: No source has this id.
        """
        try:
            return self._by_id[source_id]
        except KeyError:
            raise SourceNotFoundError(source_id) from None

    def find_by_repo(self, repo: str) -> list[GitHubSource]:
        """GitHub sources pulling from ``owner/name`` (case-insensitive)."""
        wanted = repo.lower()
        return [
            s
            for s in self._sources
            if isinstance(s, GitHubSource)
            and (s.repo.lower() == wanted or any(a.repo.lower() == wanted for a in s.additional_syncs))
        ]

    def describe(self) -> dict[str, Any]:
        """Registry dump served by ``GET /sources``."""
        github = [
            {
                "id": s.id,
                "label": s.label,
                "type": s.type,
                "repo": s.repo,
                "branch": s.branch,
                "outputPath": s.output_path,
                "readmeOnly": s.readme_only,
            }
            for s in self.list_by_type(SourceType.GITHUB)
            if isinstance(s, GitHubSource)
        ]
        youtube = [
            {
                "id": s.id,
                "label": s.label,
                "type": s.type,
                "channelId": s.channel_id,
                "handle": s.handle,
            }
            for s in self.list_by_type(SourceType.YOUTUBE)
            if isinstance(s, YouTubeSource)
        ]
        custom = [
            {"id": s.id, "label": s.label, "type": s.type, "outputPath": s.output_path}
            for s in self.list_by_type(SourceType.CUSTOM)
        ]
        return {
            "total": len(self._sources),
            "github": {"count": len(github), "sources": github},
            "youtube": {"count": len(youtube), "sources": youtube},
            "custom": {"count": len(custom), "sources": custom},
        }

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: str) -> bool:
        return source_id in self._by_id

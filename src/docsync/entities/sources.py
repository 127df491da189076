"""Domain models for configured content sources."""

from __future__ import annotations

import re
from enum import StrEnum
from typing import Annotated, Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


class SourceType(StrEnum):
    """The kinds of content origin a source can point at."""

    GITHUB = "github"
    YOUTUBE = "youtube"
    CUSTOM = "custom"


def default_label(source_id: str) -> str:
    """Title-case an id on hyphens: ``nuxt-ui`` becomes ``Nuxt Ui``."""
    return " ".join(word[:1].upper() + word[1:] for word in source_id.split("-"))


def _check_repo(value: str) -> str:
    if not _REPO_PATTERN.match(value):
        raise ValueError(f"repo must be in format owner/name, got {value!r}")
    return value


def _check_relative(value: str) -> str:
    parts = [p for p in value.replace("\\", "/").split("/") if p not in ("", ".")]
    if value.startswith("/") or ".." in parts:
        raise ValueError(f"path must be relative and stay inside the tree, got {value!r}")
    return "/".join(parts)


class ContentFile(BaseModel):
    """A single text file produced by a source, addressed by relative path."""

    model_config = ConfigDict(frozen=True)

    path: str
    content: str

    @field_validator("path")
    @classmethod
    def relative_path(cls, v: str) -> str:
        """Reject absolute paths and parent traversal."""
        normalized = _check_relative(v)
        if not normalized:
            raise ValueError("path must not be empty")
        return normalized


class _SourceBase(BaseModel):
    """Fields shared by every source kind.

    Accepts both snake_case and camelCase keys, so config files written
    for the JavaScript tooling (``outputPath``, ``readmeOnly``) load as-is.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(min_length=1, description="Unique, stable slug")
    label: str = Field(default="", description="Display name")
    output_path: str = Field(default="", description="Folder under docs/ the source writes to")

    @model_validator(mode="before")
    @classmethod
    def apply_defaults(cls, data: Any) -> Any:
        """Fill label and output path from the id when they are omitted."""
        if isinstance(data, dict) and data.get("id"):
            data = dict(data)
            if not data.get("label"):
                data["label"] = default_label(data["id"])
            if not data.get("output_path") and not data.get("outputPath"):
                data["output_path"] = data["id"]
        return data

    @field_validator("output_path")
    @classmethod
    def relative_output(cls, v: str) -> str:
        """Keep the output folder strictly inside docs/."""
        normalized = _check_relative(v)
        if not normalized:
            raise ValueError(f"output path must name a folder under docs/, got {v!r}")
        return normalized


class AdditionalSync(BaseModel):
    """An extra repository merged into a GitHub source's output folder."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    repo: str
    branch: str = "main"
    content_path: str = ""

    @field_validator("repo")
    @classmethod
    def owner_name(cls, v: str) -> str:
        return _check_repo(v)

    @field_validator("content_path")
    @classmethod
    def relative_content(cls, v: str) -> str:
        return _check_relative(v)


class GitHubSource(_SourceBase):
    """Documentation pulled from a GitHub repository."""

    type: Literal["github"] = "github"
    repo: str = Field(description="owner/name")
    branch: str = "main"
    content_path: str = Field(default="", description="Repository sub-folder to sync; empty syncs the whole tree")
    readme_only: bool = Field(default=False, description="Collapse the sync to the README")
    additional_syncs: tuple[AdditionalSync, ...] = ()

    @field_validator("repo")
    @classmethod
    def owner_name(cls, v: str) -> str:
        """Require ``owner/name``."""
        return _check_repo(v)

    @field_validator("content_path")
    @classmethod
    def relative_content(cls, v: str) -> str:
        """Keep the content path inside the repository."""
        return _check_relative(v)


class YouTubeSource(_SourceBase):
    """Video metadata and transcripts from a YouTube channel."""

    type: Literal["youtube"] = "youtube"
    channel_id: str = Field(min_length=1)
    handle: str | None = None
    max_videos: int = Field(default=50, gt=0)


class CustomSource(_SourceBase):
    """Files produced by an application-supplied callable.

    ``fetch`` may be a plain function or a coroutine function returning a
    list of ``ContentFile``. It is never serialised.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    type: Literal["custom"] = "custom"
    fetch: Callable[[], Any] | None = Field(default=None, exclude=True)


Source = Annotated[GitHubSource | YouTubeSource | CustomSource, Field(discriminator="type")]

"""Resolve GitHub credentials for upstream fetches and snapshot pushes."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


class TokenProvider:
    """Finds a usable GitHub token, or None when anonymous access must do.

    Lookup order: explicit token, ``GITHUB_TOKEN``, then the gh CLI
    ``hosts.yml``. Per-repository overrides win over all of them.
    """

    def __init__(
        self,
        token: str | None = None,
        repo_tokens: dict[str, str] | None = None,
        gh_config_path: Path | None = None,
    ) -> None:
        self._token = token
        self._repo_tokens = {k.lower(): v for k, v in (repo_tokens or {}).items()}
        self._gh_config_path = gh_config_path or (Path.home() / ".config" / "gh" / "hosts.yml")
        self._fallback: str | None = None
        self._fallback_loaded = False

    def resolve(self, repo: str | None = None) -> str | None:
        """Return the token to use for ``repo`` (``owner/name``)."""
        if repo and repo.lower() in self._repo_tokens:
            return self._repo_tokens[repo.lower()]
        if self._token:
            return self._token
        if not self._fallback_loaded:
            self._fallback = self._load_fallback()
            self._fallback_loaded = True
        return self._fallback

    def _load_fallback(self) -> str | None:
        token = os.environ.get("GITHUB_TOKEN")
        if token:
            return token

        if self._gh_config_path.exists():
            try:
                with open(self._gh_config_path, encoding="utf-8") as f:
                    config = yaml.safe_load(f)
                if config and "github.com" in config:
                    return config["github.com"].get("oauth_token")
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to read gh config %s: %s", self._gh_config_path, e)

        logger.debug("No GitHub token found, using anonymous access")
        return None

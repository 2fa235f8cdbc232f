"""Workspace repository list stored as YAML.

File format (``~/.config/gitcrew/workspaces.yaml``)::

    version: 1
    repos:
      - path: /home/me/src/api
        name: API
        pinned: true
        last_opened: '2026-01-05T10:00:00+00:00'

Every mutating operation loads the file first. A file that fails to
parse raises WorkspaceCorruptedError from that load, so a corrupted file
is never overwritten.
"""
from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path

import yaml

from gitcrew.domain.errors import (
    NotGitRepositoryError,
    RepoExistsError,
    RepoNotFoundError,
    WorkspaceCorruptedError,
)
from gitcrew.domain.models import RepositoryEntry, WorkspaceFile, utc_now
from gitcrew.infra.config import gitcrew_home
from gitcrew.infra.durable_write import atomic_write_text
from gitcrew.infra.git import find_git_root

logger = logging.getLogger(__name__)

WORKSPACES_FILE = "workspaces.yaml"
CURRENT_VERSION = 1


def default_workspace_path() -> Path:
    return gitcrew_home() / WORKSPACES_FILE


def normalize_path(path: str | Path) -> str:
    return os.path.normpath(os.path.abspath(os.path.expanduser(str(path))))


def deduplicate(repos: list[RepositoryEntry]) -> list[RepositoryEntry]:
    """Normalize every path and drop repeats, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for repo in repos:
        repo.path = normalize_path(repo.path)
        if repo.path in seen:
            continue
        seen.add(repo.path)
        result.append(repo)
    return result


def sort_repos(repos: list[RepositoryEntry]) -> None:
    """Pinned first, then most recently opened, then by display name."""
    def key(repo: RepositoryEntry) -> tuple[bool, float, str]:
        opened = repo.last_opened.timestamp() if repo.last_opened else float("-inf")
        return (not repo.pinned, -opened, repo.display_name)

    repos.sort(key=key)


class WorkspaceStore:
    """Loads and saves the workspace file."""

    def __init__(self, path: Path | None = None):
        self.path = path or default_workspace_path()

    def load(self) -> WorkspaceFile:
        try:
            raw_text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return WorkspaceFile(version=CURRENT_VERSION, repos=[])

        try:
            raw = yaml.safe_load(raw_text)
        except yaml.YAMLError as exc:
            raise WorkspaceCorruptedError(self.path, f"YAML parse error: {exc}") from exc
        if raw is None:
            return WorkspaceFile(version=CURRENT_VERSION, repos=[])
        if not isinstance(raw, dict):
            raise WorkspaceCorruptedError(self.path, "top level must be a mapping")

        entries = raw.get("repos") or []
        if not isinstance(entries, list):
            raise WorkspaceCorruptedError(self.path, "'repos' must be a list")
        try:
            version = int(raw.get("version", CURRENT_VERSION))
            repos = [RepositoryEntry.from_dict(entry) for entry in entries]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise WorkspaceCorruptedError(self.path, f"invalid entry: {exc}") from exc

        return WorkspaceFile(version=version, repos=deduplicate(repos))

    def save(self, file: WorkspaceFile) -> None:
        sort_repos(file.repos)
        data = {
            "version": file.version,
            "repos": [repo.to_dict() for repo in file.repos],
        }
        text = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        atomic_write_text(self.path, text, mode=0o600, dir_mode=0o700)

    def add_repo(self, path: str | Path) -> str:
        """Register the git repository containing ``path``; returns its root."""
        root = str(find_git_root(Path(normalize_path(path))))
        file = self.load()
        if any(repo.path == root for repo in file.repos):
            raise RepoExistsError(root)
        file.repos.append(RepositoryEntry(path=root))
        self.save(file)
        logger.info("Added workspace repository %s", root)
        return root

    def _resolve(self, path: str | Path) -> str:
        normalized = normalize_path(path)
        try:
            return str(find_git_root(Path(normalized)))
        except NotGitRepositoryError:
            # Removed or moved repositories are still removable by path.
            return normalized

    def remove_repo(self, path: str | Path) -> str:
        target = self._resolve(path)
        file = self.load()
        remaining = [repo for repo in file.repos if repo.path != target]
        if len(remaining) == len(file.repos):
            raise RepoNotFoundError(target)
        file.repos = remaining
        self.save(file)
        logger.info("Removed workspace repository %s", target)
        return target

    def update_last_opened(self, path: str | Path, when: datetime | None = None) -> None:
        target = normalize_path(path)
        file = self.load()
        for repo in file.repos:
            if repo.path == target:
                repo.last_opened = when or utc_now()
                break
        else:
            raise RepoNotFoundError(target)
        self.save(file)

"""Repository health check for the workspace list."""
from __future__ import annotations

import logging
from pathlib import Path

from gitcrew.domain.errors import ConfigError, CrewError
from gitcrew.domain.models import RepoInfo, RepositoryEntry, RepoState, TaskSummary
from gitcrew.domain.naming import crew_dir, tasks_path
from gitcrew.infra.config import load_config
from gitcrew.infra.task_store import JsonTaskStore

logger = logging.getLogger(__name__)


def check_repository(repo: RepositoryEntry, *, global_config: Path | None = None) -> RepoInfo:
    """Check that ``repo`` can host a board and summarize its active tasks.

    Checks run in order and stop at the first failure: path exists, is a
    git repository, has ``.crew``, config loads strictly, tasks load.
    """
    root = Path(repo.path)
    if not root.exists():
        return RepoInfo(repo, RepoState.NOT_FOUND, error="Path does not exist")
    if not (root / ".git").exists():
        return RepoInfo(repo, RepoState.NOT_GIT_REPO, error="Not a git repository")
    crew = crew_dir(root)
    if not crew.is_dir():
        return RepoInfo(repo, RepoState.NOT_INITIALIZED, error="gitcrew not initialized")

    try:
        _, warnings = load_config(root, strict=True, global_path=global_config)
    except ConfigError as exc:
        logger.info("Health check: %s has a config error: %s", root, exc)
        return RepoInfo(repo, RepoState.CONFIG_ERROR, error=f"Config error: {exc.reason}")

    try:
        tasks = JsonTaskStore(tasks_path(crew)).list(include_terminal=False)
    except (CrewError, OSError) as exc:
        logger.info("Health check: %s failed to load tasks: %s", root, exc)
        return RepoInfo(repo, RepoState.LOAD_ERROR, error=f"Load error: {exc}")

    return RepoInfo(
        repo,
        RepoState.OK,
        summary=TaskSummary.from_tasks(tasks),
        warning="; ".join(warnings),
    )

"""Git operations: repository discovery, task worktrees, diff and merge."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from gitcrew.domain.errors import GitError, NotGitRepositoryError, UncommittedChangesError
from gitcrew.domain.models import Task
from gitcrew.domain.naming import branch_name, worktree_path

logger = logging.getLogger(__name__)


def find_git_root(path: Path) -> Path:
    """Walk up from ``path`` to the nearest directory containing ``.git``.

    Pure filesystem walk, no git subprocess, so it also works for
    repositories whose ``.git`` is a file (linked worktrees, submodules).
    """
    current = path.expanduser().absolute()
    if not current.exists():
        raise NotGitRepositoryError(path)
    if not current.is_dir():
        current = current.parent
    for candidate in (current, *current.parents):
        if (candidate / ".git").exists():
            return candidate
    raise NotGitRepositoryError(path)


class GitRepo:
    """Git commands run against one repository root."""

    def __init__(self, root: Path, *, timeout: float = 30.0):
        self.root = root
        self.timeout = timeout

    def run(self, *args: str, cwd: Path | None = None) -> str:
        cmd = ["git", *args]
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd or self.root),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitError(list(args), "command timed out") from exc
        except FileNotFoundError as exc:
            raise GitError(list(args), "git not found") from exc
        if result.returncode != 0:
            raise GitError(list(args), result.stderr.strip() or f"exit {result.returncode}")
        return result.stdout

    def current_branch(self) -> str:
        try:
            return self.run("symbolic-ref", "--short", "HEAD").strip()
        except GitError:
            logger.debug("HEAD is detached in %s", self.root)
            return "main"

    def branch_exists(self, name: str) -> bool:
        try:
            self.run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}")
        except GitError:
            return False
        return True

    def has_uncommitted_changes(self, cwd: Path | None = None) -> bool:
        return bool(self.run("status", "--porcelain", "--untracked-files=no", cwd=cwd).strip())


class WorktreeManager:
    """One worktree and branch per task under ``.crew/worktrees``."""

    def __init__(self, repo: GitRepo, crew: Path):
        self.repo = repo
        self.crew = crew

    def path_for(self, task: Task) -> Path:
        return worktree_path(self.crew, task.id)

    def branch_for(self, task: Task) -> str:
        return branch_name(task.id, task.issue)

    def exists(self, task: Task) -> bool:
        return self.path_for(task).is_dir()

    def create(self, task: Task) -> Path:
        """Create (or reuse) the task's worktree and return its path."""
        path = self.path_for(task)
        if path.is_dir():
            return path
        path.parent.mkdir(parents=True, exist_ok=True)
        branch = self.branch_for(task)
        if self.repo.branch_exists(branch):
            self.repo.run("worktree", "add", str(path), branch)
        else:
            self.repo.run("worktree", "add", "-b", branch, str(path), task.base_branch)
        logger.info("Created worktree %s on branch %s", path, branch)
        return path

    def remove(self, task: Task, *, force: bool = False) -> None:
        path = self.path_for(task)
        if not path.exists():
            return
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self.repo.run(*args)
        logger.info("Removed worktree %s", path)

    def diff_command(self, task: Task) -> list[str]:
        """Argv showing the task's changes against its base branch."""
        return ["git", "diff", f"{task.base_branch}...{self.branch_for(task)}"]

    def merge(self, task: Task) -> None:
        """Merge the task branch into its base branch in the main worktree."""
        if self.repo.has_uncommitted_changes():
            raise UncommittedChangesError(self.repo.root)
        current = self.repo.current_branch()
        if current != task.base_branch:
            self.repo.run("checkout", task.base_branch)
        self.repo.run(
            "merge", "--no-ff", self.branch_for(task),
            "-m", f"Merge task #{task.id}: {task.title}",
        )
        logger.info("Merged %s into %s", self.branch_for(task), task.base_branch)

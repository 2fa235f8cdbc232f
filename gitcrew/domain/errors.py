"""Exception hierarchy for gitcrew.

One base class, one subclass per failure mode. Callers that only need to
show a banner catch ``CrewError``; callers that react differently (for
example refusing to write a corrupted workspace file) catch the specific
subclass.
"""
from __future__ import annotations

from pathlib import Path


class CrewError(Exception):
    """Base exception for all gitcrew errors."""


# -- Not found ---------------------------------------------------------------


class TaskNotFoundError(CrewError):
    """Referenced task does not exist in the task store."""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task not found: #{task_id}")


class RepoNotFoundError(CrewError):
    """Repository is not registered in the workspace file."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Repository not in workspace: {path}")


class NoSessionError(CrewError):
    """Task has no live session."""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task #{task_id} has no running session")


class AgentNotFoundError(CrewError):
    """Named agent is not defined in the configuration."""
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Agent not found: {name}")


class NoWorktreeError(CrewError):
    """Task has no worktree to work in."""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task #{task_id} has no worktree")


class LogNotFoundError(CrewError):
    """Task has no session log yet."""
    def __init__(self, task_id: int, path: Path):
        self.task_id = task_id
        self.path = path
        super().__init__(f"No log for task #{task_id} ({path})")


# -- Rejected operations -----------------------------------------------------


class InvalidTransitionError(CrewError):
    """Action is not legal from the task's current status."""
    def __init__(self, task_id: int, status: str, action: str):
        self.task_id = task_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} task #{task_id} while it is {status}"
        )


class SessionRunningError(CrewError):
    """A session is already live for the task."""
    def __init__(self, session_name: str):
        self.session_name = session_name
        super().__init__(f"Session already running: {session_name}")


class NoAgentError(CrewError):
    """Start was requested without an agent name or command."""
    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"No agent selected for task #{task_id}")


class EmptyTitleError(CrewError):
    """Task title is blank."""
    def __init__(self) -> None:
        super().__init__("Task title must not be empty")


class EmptyMessageError(CrewError):
    """Comment text is blank."""
    def __init__(self) -> None:
        super().__init__("Comment text must not be empty")


class RepoExistsError(CrewError):
    """Repository is already registered in the workspace file."""
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Repository already in workspace: {path}")


class UncommittedChangesError(CrewError):
    """Merge refused because the main worktree is dirty."""
    def __init__(self, repo_root: Path):
        self.repo_root = repo_root
        super().__init__(f"Uncommitted changes in {repo_root}; commit or stash first")


# -- Environment -------------------------------------------------------------


class NotGitRepositoryError(CrewError):
    """Path is not inside a git repository."""
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"Not a git repository: {path}")


class NotInitializedError(CrewError):
    """Repository has no .crew directory."""
    def __init__(self, repo_root: Path):
        self.repo_root = repo_root
        super().__init__(
            f"gitcrew is not initialized in {repo_root}; run 'gitcrew init'"
        )


class ConfigError(CrewError):
    """Configuration file could not be parsed or validated."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")


# -- Backends ----------------------------------------------------------------


class SessionBackendError(CrewError):
    """Terminal multiplexer command failed."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Session backend '{command}' failed: {reason}")


class GitError(CrewError):
    """A git subprocess failed."""
    def __init__(self, args: list[str], reason: str):
        self.args_list = list(args)
        self.reason = reason
        super().__init__(f"git {' '.join(args)} failed: {reason}")


class EventLogError(CrewError):
    """Agent event log could not be read."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read event log {path}: {reason}")


class CommandRejectedError(CrewError):
    """Agent control command failed validation."""
    def __init__(self, command_type: str, reason: str):
        self.command_type = command_type
        self.reason = reason
        super().__init__(f"Rejected {command_type} command: {reason}")


# -- Persistence -------------------------------------------------------------


class WorkspaceCorruptedError(CrewError):
    """Workspace file exists but cannot be parsed.

    Every mutating store operation loads first, so raising this also
    guarantees the file is never overwritten.
    """
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Workspace file {path} is corrupted: {reason}")


class TaskStoreCorruptedError(CrewError):
    """Task store file exists but cannot be parsed."""
    def __init__(self, path: Path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Task store {path} is corrupted: {reason}")

"""Tasks, lifecycle rules, agent events and workspace entries."""
from .models import (
    AgentCommand,
    AgentCommandType,
    AgentEvent,
    AgentEventType,
    ExecutionState,
    ExecutionSubstate,
    RepoInfo,
    RepoState,
    RepositoryEntry,
    Task,
    TaskStatus,
    TaskSummary,
    WorkspaceFile,
)
from .lifecycle import StatusChoice, TaskAction
from .errors import (
    AgentNotFoundError,
    CommandRejectedError,
    ConfigError,
    CrewError,
    EventLogError,
    GitError,
    InvalidTransitionError,
    LogNotFoundError,
    NoAgentError,
    NoSessionError,
    NotGitRepositoryError,
    NotInitializedError,
    RepoExistsError,
    RepoNotFoundError,
    SessionBackendError,
    SessionRunningError,
    TaskNotFoundError,
    TaskStoreCorruptedError,
    UncommittedChangesError,
    WorkspaceCorruptedError,
)

__all__ = [
    # Models
    "AgentCommand",
    "AgentCommandType",
    "AgentEvent",
    "AgentEventType",
    "ExecutionState",
    "ExecutionSubstate",
    "RepoInfo",
    "RepoState",
    "RepositoryEntry",
    "Task",
    "TaskStatus",
    "TaskSummary",
    "WorkspaceFile",
    # Lifecycle
    "StatusChoice",
    "TaskAction",
    # Errors
    "AgentNotFoundError",
    "CommandRejectedError",
    "ConfigError",
    "CrewError",
    "EventLogError",
    "GitError",
    "InvalidTransitionError",
    "LogNotFoundError",
    "NoAgentError",
    "NoSessionError",
    "NotGitRepositoryError",
    "NotInitializedError",
    "RepoExistsError",
    "RepoNotFoundError",
    "SessionBackendError",
    "SessionRunningError",
    "TaskNotFoundError",
    "TaskStoreCorruptedError",
    "UncommittedChangesError",
    "WorkspaceCorruptedError",
]

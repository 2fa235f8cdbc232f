"""Core data models for gitcrew.

All dataclasses and enums shared by the store, the use cases and the
terminal UI. Single source of truth to avoid circular imports.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_time(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# -- Tasks -------------------------------------------------------------------


class TaskStatus(str, Enum):
    """Task lifecycle states. See lifecycle.py for transition rules."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    NEEDS_INPUT = "needs_input"
    FOR_REVIEW = "for_review"
    REVIEWING = "reviewing"
    REVIEWED = "reviewed"
    DONE = "done"
    ERROR = "error"
    STOPPED = "stopped"
    CLOSED = "closed"
    MERGED = "merged"

    @property
    def display(self) -> str:
        return _STATUS_DISPLAY[self]

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.CLOSED, TaskStatus.MERGED)


_STATUS_DISPLAY = {
    TaskStatus.TODO: "To Do",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.NEEDS_INPUT: "Needs Input",
    TaskStatus.FOR_REVIEW: "For Review",
    TaskStatus.REVIEWING: "Reviewing",
    TaskStatus.REVIEWED: "Reviewed",
    TaskStatus.DONE: "Done",
    TaskStatus.ERROR: "Error",
    TaskStatus.STOPPED: "Stopped",
    TaskStatus.CLOSED: "Closed",
    TaskStatus.MERGED: "Merged",
}


@dataclass
class Comment:
    """A note attached to a task; reviewer sessions write one per review."""
    text: str
    time: datetime = field(default_factory=utc_now)
    author: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"text": self.text, "time": _format_time(self.time)}
        if self.author:
            data["author"] = self.author
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Comment:
        return cls(
            text=str(data.get("text") or ""),
            time=_parse_time(data.get("time")) or utc_now(),
            author=str(data.get("author") or ""),
        )


@dataclass
class Task:
    """One unit of agent-assisted work bound to a git worktree.

    ``session`` is non-empty exactly while a live session exists for the
    task. ``block_reason`` marks the task as blocked without changing its
    status.
    """
    id: int
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    agent: str = ""
    session: str = ""
    base_branch: str = "main"
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    labels: list[str] = field(default_factory=list)
    parent_id: int | None = None
    issue: int = 0
    pr: int = 0
    block_reason: str = ""
    comments: list[Comment] = field(default_factory=list)

    @property
    def is_blocked(self) -> bool:
        return bool(self.block_reason)

    @property
    def has_session(self) -> bool:
        return bool(self.session)

    def add_label(self, label: str) -> None:
        label = label.strip()
        if label and label not in self.labels:
            self.labels.append(label)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "agent": self.agent,
            "session": self.session,
            "base_branch": self.base_branch,
            "created_at": _format_time(self.created_at),
            "started_at": _format_time(self.started_at),
            "labels": list(self.labels),
            "parent_id": self.parent_id,
            "issue": self.issue,
            "pr": self.pr,
            "block_reason": self.block_reason,
            "comments": [comment.to_dict() for comment in self.comments],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        task = cls(
            id=int(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            status=TaskStatus(data.get("status", TaskStatus.TODO.value)),
            agent=str(data.get("agent") or ""),
            session=str(data.get("session") or ""),
            base_branch=str(data.get("base_branch") or "main"),
            created_at=_parse_time(data.get("created_at")) or utc_now(),
            started_at=_parse_time(data.get("started_at")),
            parent_id=data.get("parent_id"),
            issue=int(data.get("issue") or 0),
            pr=int(data.get("pr") or 0),
            block_reason=str(data.get("block_reason") or ""),
        )
        for label in data.get("labels") or []:
            task.add_label(str(label))
        for item in data.get("comments") or []:
            if isinstance(item, dict):
                task.comments.append(Comment.from_dict(item))
        return task


@dataclass
class TaskSummary:
    """Per-status task counts for one repository."""
    counts: dict[TaskStatus, int] = field(default_factory=dict)

    @classmethod
    def from_tasks(cls, tasks: list[Task]) -> TaskSummary:
        summary = cls()
        for task in tasks:
            summary.counts[task.status] = summary.counts.get(task.status, 0) + 1
        return summary

    def count(self, status: TaskStatus) -> int:
        return self.counts.get(status, 0)

    @property
    def total_active(self) -> int:
        return sum(n for status, n in self.counts.items() if not status.is_terminal)


# -- Agent protocol ----------------------------------------------------------


class AgentEventType(str, Enum):
    """Entries of the agent communication log."""
    TOOL_CALL = "tool_call"
    REQUEST_PERMISSION = "request_permission"
    PERMISSION_RESPONSE = "permission_response"
    PROMPT_SENT = "prompt_sent"
    SESSION_END = "session_end"
    AGENT_MESSAGE_CHUNK = "agent_message_chunk"
    AGENT_THOUGHT_CHUNK = "agent_thought_chunk"
    TOOL_CALL_UPDATE = "tool_call_update"
    USER_MESSAGE_CHUNK = "user_message_chunk"
    SESSION_UPDATE = "session_update"
    PLAN = "plan"
    CURRENT_MODE_UPDATE = "current_mode_update"
    AVAILABLE_COMMANDS = "available_commands"
    WARNING = "_warning"


@dataclass(frozen=True)
class AgentEvent:
    """One immutable entry in a task's event log.

    ``payload`` is the decoded JSON value; its shape depends on ``type``.
    """
    type: AgentEventType
    timestamp: datetime
    payload: Any = None
    session_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "ts": self.timestamp.isoformat(),
            "type": self.type.value,
            "session_id": self.session_id,
            "payload": self.payload,
        }


class ExecutionSubstate(str, Enum):
    """Agent execution phase reported through the state side channel."""
    IDLE = "idle"
    AWAITING_USER = "awaiting_user"
    AWAITING_PERMISSION = "awaiting_permission"
    RUNNING = "running"

    @property
    def compact_label(self) -> str:
        """Short label for list views; running is the unlabeled default."""
        return "" if self is ExecutionSubstate.RUNNING else self.value


@dataclass
class ExecutionState:
    substate: ExecutionSubstate
    session_id: str = ""
    updated_at: datetime = field(default_factory=utc_now)


class AgentCommandType(str, Enum):
    PROMPT = "prompt"
    PERMISSION = "permission"
    CANCEL = "cancel"
    STOP = "stop"


@dataclass
class AgentCommand:
    """Control request delivered to a running agent process."""
    type: AgentCommandType
    text: str = ""
    option_id: str = ""
    id: str = ""
    created_at: datetime = field(default_factory=utc_now)


# -- Workspace ---------------------------------------------------------------


@dataclass
class RepositoryEntry:
    """One repository registered in the workspace file."""
    path: str
    name: str = ""
    pinned: bool = False
    last_opened: datetime | None = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return os.path.basename(self.path.rstrip("/")) or self.path

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path}
        if self.name:
            data["name"] = self.name
        if self.pinned:
            data["pinned"] = True
        if self.last_opened is not None:
            data["last_opened"] = _format_time(self.last_opened)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RepositoryEntry:
        return cls(
            path=str(data["path"]),
            name=str(data.get("name") or ""),
            pinned=bool(data.get("pinned", False)),
            last_opened=_parse_time(data.get("last_opened")),
        )


@dataclass
class WorkspaceFile:
    version: int = 1
    repos: list[RepositoryEntry] = field(default_factory=list)


class RepoState(str, Enum):
    """Health of a workspace repository."""
    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_GIT_REPO = "not_git_repo"
    NOT_INITIALIZED = "not_initialized"
    CONFIG_ERROR = "config_error"
    LOAD_ERROR = "load_error"


@dataclass
class RepoInfo:
    """Result of probing one workspace repository."""
    repo: RepositoryEntry
    state: RepoState
    summary: TaskSummary = field(default_factory=TaskSummary)
    error: str = ""
    warning: str = ""

"""Messages of the repository board.

Everything deriving from BoardMsg belongs to one board instance. When a
board runs inside the workspace router, results of its commands that are
BoardMsg get tagged with the repository path and routed back to that
board; anything else passes through to the router or the host.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from gitcrew.domain.lifecycle import StatusChoice, TaskAction
from gitcrew.domain.models import ExecutionSubstate, Task
from gitcrew.tui.runtime import Msg


class BoardMsg(Msg):
    """Base class for messages owned by a board."""


@dataclass
class TasksLoaded(BoardMsg):
    tasks: list[Task]
    substates: dict[int, ExecutionSubstate] = field(default_factory=dict)
    reconciled: list[int] = field(default_factory=list)


@dataclass
class ReloadTasks(BoardMsg):
    pass


@dataclass
class RefreshTick(BoardMsg):
    pass


@dataclass
class ActionDone(BoardMsg):
    """A task operation finished; show ``message`` and reload."""
    message: str


@dataclass
class BoardError(BoardMsg):
    error: BaseException


@dataclass
class DescriptionEdited(BoardMsg):
    task_id: int
    path: Path


# Dialog answers.

@dataclass
class ActionChosen(BoardMsg):
    task_id: int
    action: TaskAction


@dataclass
class ActionConfirmed(BoardMsg):
    task_id: int
    action: TaskAction


@dataclass
class AgentChosen(BoardMsg):
    task_id: int
    agent: str


@dataclass
class StatusChosen(BoardMsg):
    task_id: int
    choice: StatusChoice


@dataclass
class TextEntered(BoardMsg):
    """Text typed into a board prompt; ``task_id`` is None for a new task."""
    purpose: str
    task_id: int | None
    text: str


@dataclass
class FocusWorkspace(Msg):
    """Board asks the workspace router to focus the repository list."""

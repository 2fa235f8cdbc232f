"""Task lifecycle state machine.

Defines the guarded status transitions and the predicates that decide
which user actions are legal on a task. The terminal UI offers only what
these predicates allow; the use cases re-check them and raise
InvalidTransitionError when called directly with an illegal action.

Statuses that come with side effects are reached only through their
operation: IN_PROGRESS through Start, STOPPED through Stop, REVIEWING
through Review, CLOSED through Close and MERGED through Merge. The
guarded status table holds the remaining bookkeeping edges.

State Diagram (operations in brackets, plain edges are status changes):

    TODO ─[start]─> IN_PROGRESS ──┬──> NEEDS_INPUT ──> IN_PROGRESS
                                  │
                                  ├──> FOR_REVIEW ─[review]─> REVIEWING ──> REVIEWED ─[merge]─> MERGED
                                  │        │                                   │
                                  │        └──────────────> REVIEWED ──> DONE ─┘
                                  │
                                  ├─[stop]─> STOPPED ─[start]─> IN_PROGRESS
                                  │
                                  └──> ERROR ─[start]─> IN_PROGRESS

    Any non-terminal state ─[close]─> CLOSED
    CLOSED and MERGED are terminal.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import InvalidTransitionError
from .models import Task, TaskStatus

S = TaskStatus

TRANSITIONS: dict[TaskStatus, tuple[TaskStatus, ...]] = {
    S.TODO: (),
    S.IN_PROGRESS: (S.NEEDS_INPUT, S.FOR_REVIEW, S.ERROR),
    S.NEEDS_INPUT: (S.IN_PROGRESS,),
    S.FOR_REVIEW: (S.REVIEWED, S.DONE),
    S.REVIEWING: (),
    S.REVIEWED: (S.DONE, S.FOR_REVIEW),
    S.DONE: (S.FOR_REVIEW,),
    S.ERROR: (S.FOR_REVIEW,),
    S.STOPPED: (S.FOR_REVIEW,),
    S.CLOSED: (),
    S.MERGED: (),
}

STARTABLE = frozenset({S.TODO, S.ERROR, S.STOPPED})
MERGEABLE = frozenset({S.REVIEWED, S.DONE})
REVIEWABLE = frozenset({S.FOR_REVIEW})

# Display order for task lists: work that needs attention first.
STATUS_ORDER: tuple[TaskStatus, ...] = (
    S.NEEDS_INPUT,
    S.IN_PROGRESS,
    S.FOR_REVIEW,
    S.REVIEWING,
    S.REVIEWED,
    S.ERROR,
    S.STOPPED,
    S.TODO,
    S.DONE,
    S.MERGED,
    S.CLOSED,
)


class TaskAction(str, Enum):
    """User-facing operations on a task."""
    START = "start"
    STOP = "stop"
    REVIEW = "review"
    ATTACH = "attach"
    CONSOLE = "console"
    DIFF = "diff"
    LOGS = "logs"
    EDIT = "edit"
    CHANGE_STATUS = "change_status"
    BLOCK = "block"
    UNBLOCK = "unblock"
    MERGE = "merge"
    CLOSE = "close"
    DELETE = "delete"


@dataclass(frozen=True)
class StatusChoice:
    """A destination offered by the change-status menu."""
    status: TaskStatus
    forced: bool = False


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS.get(current, ())


def validate_transition(task: Task, target: TaskStatus, *, force: bool = False) -> None:
    """Raise InvalidTransitionError unless current -> target is allowed.

    ``force`` admits any change to a different status.
    """
    if target == task.status:
        raise InvalidTransitionError(task.id, task.status.value, f"set status {target.value}")
    if force or can_transition(task.status, target):
        return
    raise InvalidTransitionError(task.id, task.status.value, f"set status {target.value}")


def can_start(task: Task) -> bool:
    return task.status in STARTABLE


def can_stop(task: Task) -> bool:
    return task.has_session and not task.status.is_terminal


def can_attach(task: Task) -> bool:
    return task.has_session and not task.status.is_terminal


def can_review(task: Task) -> bool:
    return task.status in REVIEWABLE and not task.has_session and task.started_at is not None


def can_merge(task: Task) -> bool:
    return task.status in MERGEABLE


def can_close(task: Task) -> bool:
    return not task.status.is_terminal


def can_block(task: Task) -> bool:
    return not task.status.is_terminal and not task.is_blocked


def can_unblock(task: Task) -> bool:
    return not task.status.is_terminal and task.is_blocked


def has_worktree(task: Task) -> bool:
    return task.started_at is not None and not task.status.is_terminal


def is_allowed(task: Task, action: TaskAction) -> bool:
    """Single guard entry point used by both the menu and the use cases."""
    if action is TaskAction.START:
        return can_start(task)
    if action is TaskAction.STOP:
        return can_stop(task)
    if action is TaskAction.ATTACH:
        return can_attach(task)
    if action is TaskAction.REVIEW:
        return can_review(task)
    if action is TaskAction.CONSOLE:
        return task.started_at is not None
    if action is TaskAction.DIFF:
        return has_worktree(task)
    if action is TaskAction.MERGE:
        return can_merge(task)
    if action in (TaskAction.CLOSE, TaskAction.CHANGE_STATUS):
        return can_close(task)
    if action is TaskAction.BLOCK:
        return can_block(task)
    if action is TaskAction.UNBLOCK:
        return can_unblock(task)
    # logs, edit, delete
    return True


def available_actions(task: Task) -> list[TaskAction]:
    return [action for action in TaskAction if is_allowed(task, action)]


def default_action(task: Task) -> TaskAction | None:
    """Action bound to Enter on the task list."""
    if task.status.is_terminal:
        return None
    if task.has_session:
        return TaskAction.ATTACH
    if can_start(task):
        return TaskAction.START
    if can_merge(task):
        return TaskAction.MERGE
    return None


def status_choices(current: TaskStatus) -> list[StatusChoice]:
    """Guarded destinations first, then every other status as forced."""
    guarded = [StatusChoice(status) for status in TRANSITIONS.get(current, ())]
    offered = {choice.status for choice in guarded} | {current}
    forced = [
        StatusChoice(status, forced=True)
        for status in TaskStatus
        if status not in offered
    ]
    return guarded + forced


def sort_key(task: Task) -> tuple[int, int]:
    return (STATUS_ORDER.index(task.status), task.id)

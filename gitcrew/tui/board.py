"""Task board for one repository.

RepoBoard lists the repository's tasks and offers only the actions the
lifecycle guards allow. Every blocking operation (task store, tmux, git)
runs as a deferred command whose result comes back as a BoardMsg.
External programs (attach, pager, diff, editor, console) are requested
through ExecProcess so the host can hand them the terminal; menus,
confirmations and text prompts are requested as dialogs whose answers
come back as BoardMsg.
"""
from __future__ import annotations

import logging
import os
import shlex
import shutil
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from rich.console import Group, RenderableType
from rich.text import Text

from gitcrew.domain import lifecycle
from gitcrew.domain.errors import CrewError, LogNotFoundError
from gitcrew.domain.lifecycle import TaskAction
from gitcrew.domain.models import ExecutionSubstate, Task, TaskStatus
from gitcrew.domain.naming import branch_name, description_path
from gitcrew.infra.durable_write import atomic_write_text
from gitcrew.tui.messages import (
    ActionChosen,
    ActionConfirmed,
    ActionDone,
    AgentChosen,
    BoardError,
    DescriptionEdited,
    FocusWorkspace,
    RefreshTick,
    ReloadTasks,
    StatusChosen,
    TasksLoaded,
    TextEntered,
)
from gitcrew.tui.runtime import (
    AskText,
    Choose,
    Cmd,
    Confirm,
    ExecProcess,
    KeyPress,
    Model,
    Msg,
    Option,
    Tick,
    WindowSize,
    batch,
    msg_cmd,
    quit_cmd,
)
from gitcrew.usecase.tasks import StartRequest, TaskService

logger = logging.getLogger(__name__)

PAGE_SIZE = 5

STATUS_STYLES = {
    TaskStatus.TODO: "white",
    TaskStatus.IN_PROGRESS: "cyan",
    TaskStatus.NEEDS_INPUT: "bold yellow",
    TaskStatus.FOR_REVIEW: "magenta",
    TaskStatus.REVIEWING: "magenta",
    TaskStatus.REVIEWED: "green",
    TaskStatus.DONE: "bold green",
    TaskStatus.ERROR: "bold red",
    TaskStatus.STOPPED: "yellow",
    TaskStatus.CLOSED: "dim",
    TaskStatus.MERGED: "dim green",
}

ACTION_LABELS = {
    TaskAction.START: "Start",
    TaskAction.STOP: "Stop",
    TaskAction.REVIEW: "Review",
    TaskAction.ATTACH: "Attach",
    TaskAction.CONSOLE: "Console",
    TaskAction.DIFF: "Diff",
    TaskAction.LOGS: "Logs",
    TaskAction.EDIT: "Edit description",
    TaskAction.CHANGE_STATUS: "Change status",
    TaskAction.BLOCK: "Block",
    TaskAction.UNBLOCK: "Unblock",
    TaskAction.MERGE: "Merge",
    TaskAction.CLOSE: "Close",
    TaskAction.DELETE: "Delete",
}

# Shortcut keys on the task list.
ACTION_KEYS = {
    "s": TaskAction.START,
    "x": TaskAction.STOP,
    "R": TaskAction.REVIEW,
    "a": TaskAction.ATTACH,
    "c": TaskAction.CONSOLE,
    "d": TaskAction.DIFF,
    "l": TaskAction.LOGS,
    "e": TaskAction.EDIT,
    "S": TaskAction.CHANGE_STATUS,
    "m": TaskAction.MERGE,
    "X": TaskAction.CLOSE,
    "D": TaskAction.DELETE,
}

CONFIRM_DETAILS = {
    TaskAction.STOP: "The agent session is ended.",
    TaskAction.MERGE: "The task branch is merged into its base branch and the worktree removed.",
    TaskAction.CLOSE: "The session is ended and the worktree removed without merging.",
    TaskAction.DELETE: "The task is removed from the store together with its worktree and session.",
}

ALLOWED_SECTION = "Allowed"
FORCED_SECTION = "Forced (skips the lifecycle guards)"

FOOTER_HINTS = "enter: default  space: actions  n: new  s: start  a: attach  R: review  r: reload  q: quit"

CUSTOM_COMMAND = "__custom__"


class InputPurpose(str, Enum):
    NEW_TASK = "new_task"
    AGENT_COMMAND = "agent_command"
    BLOCK_REASON = "block_reason"


def pager_command() -> list[str]:
    pager = os.environ.get("PAGER", "").strip()
    if pager:
        return shlex.split(pager)
    if shutil.which("less"):
        return ["less", "-R"]
    return ["more"]


def editor_command() -> list[str]:
    for var in ("VISUAL", "EDITOR"):
        value = os.environ.get(var, "").strip()
        if value:
            return shlex.split(value)
    return ["vi"]


def _reload_on_exit(code: int | None, error: BaseException | None) -> Msg:
    if error is not None:
        return BoardError(error)
    return ReloadTasks()


def _key_name(msg: KeyPress) -> str:
    """Printable keys by character so shifted letters compare as ``S``."""
    if msg.is_printable and msg.character != " ":
        return msg.character
    return msg.key


class RepoBoard(Model):
    """Task list and actions for one repository."""

    def __init__(
        self,
        service: TaskService,
        *,
        embedded: bool = False,
        auto_refresh: bool = True,
    ):
        self.service = service
        self.embedded = embedded
        self.auto_refresh = auto_refresh
        self.focused = not embedded

        self.tasks: list[Task] = []
        self.substates: dict[int, ExecutionSubstate] = {}
        self.cursor = 0
        self.offset = 0
        self.width = 80
        self.height = 24
        self.loading = True

        self.error: str = ""
        self.notice: str = ""
        for warning in service.config_warnings:
            logger.warning("Config warning in %s: %s", service.repo_root, warning)
        if service.config_warnings:
            self.notice = "; ".join(service.config_warnings)

    # -- Model ---------------------------------------------------------------

    def init(self) -> Cmd | None:
        return batch(self._load_cmd(), self._tick_cmd())

    def update(self, msg: Msg) -> Cmd | None:
        if isinstance(msg, WindowSize):
            self.width, self.height = msg.width, msg.height
            return None
        if isinstance(msg, KeyPress):
            return self._on_key(msg)
        if isinstance(msg, TasksLoaded):
            self._apply_tasks(msg)
            return None
        if isinstance(msg, ReloadTasks):
            return self._load_cmd()
        if isinstance(msg, RefreshTick):
            return batch(self._load_cmd(), self._tick_cmd())
        if isinstance(msg, ActionDone):
            self.notice = msg.message
            self.error = ""
            return self._load_cmd()
        if isinstance(msg, BoardError):
            self.loading = False
            self.error = str(msg.error) or type(msg.error).__name__
            return None
        if isinstance(msg, DescriptionEdited):
            return self._save_description_cmd(msg.task_id, msg.path)
        return self._on_answer(msg)

    @property
    def repo_name(self) -> str:
        return self.service.repo_root.name

    def selected(self) -> Task | None:
        if 0 <= self.cursor < len(self.tasks):
            return self.tasks[self.cursor]
        return None

    def set_focused(self, focused: bool) -> None:
        self.focused = focused

    # -- Loading -------------------------------------------------------------

    def _load_cmd(self) -> Cmd:
        service = self.service

        def load() -> Msg:
            try:
                reconciled = service.reconcile_sessions()
                tasks = service.list()
                substates = service.substates(tasks)
            except (CrewError, OSError) as exc:
                logger.warning("Loading tasks of %s failed: %s", service.repo_root, exc)
                return BoardError(exc)
            return TasksLoaded(tasks, substates, reconciled)

        return load

    def _tick_cmd(self) -> Cmd | None:
        interval = self.service.config.tui.auto_refresh_seconds
        if not self.auto_refresh or interval <= 0:
            return None
        return Tick(interval, lambda now: RefreshTick())

    def _apply_tasks(self, msg: TasksLoaded) -> None:
        current = self.selected()
        self.tasks = list(msg.tasks)
        self.substates = dict(msg.substates)
        self.loading = False
        if current is not None:
            for index, task in enumerate(self.tasks):
                if task.id == current.id:
                    self.cursor = index
                    break
        self._clamp_cursor()
        if msg.reconciled:
            ids = ", ".join(f"#{task_id}" for task_id in msg.reconciled)
            self.notice = f"Session ended unexpectedly: {ids}"

    def _clamp_cursor(self) -> None:
        if not self.tasks:
            self.cursor = 0
            return
        self.cursor = max(0, min(self.cursor, len(self.tasks) - 1))

    # -- Keys ----------------------------------------------------------------

    def _on_key(self, msg: KeyPress) -> Cmd | None:
        self.error = ""
        self.notice = ""
        key = _key_name(msg)
        if key in ("q", "ctrl+c"):
            return quit_cmd
        if key in ("tab", "escape") and self.embedded:
            return msg_cmd(FocusWorkspace())
        if key in ("up", "k"):
            self.cursor -= 1
        elif key in ("down", "j"):
            self.cursor += 1
        elif key in ("pageup", "ctrl+u"):
            self.cursor -= PAGE_SIZE
        elif key in ("pagedown", "ctrl+f"):
            self.cursor += PAGE_SIZE
        elif key in ("home", "g"):
            self.cursor = 0
        elif key in ("end", "G"):
            self.cursor = len(self.tasks) - 1
        elif key == "r":
            return self._load_cmd()
        elif key == "n":
            return self._ask(InputPurpose.NEW_TASK, None, "New task", "Title of the new task")
        elif key == "enter":
            task = self.selected()
            if task is not None:
                action = lifecycle.default_action(task)
                if action is not None:
                    return self.perform(task, action)
        elif key in ("space", "."):
            task = self.selected()
            if task is not None:
                return msg_cmd(self._action_menu(task))
        elif key == "b":
            task = self.selected()
            if task is not None:
                action = TaskAction.UNBLOCK if task.is_blocked else TaskAction.BLOCK
                return self.perform(task, action)
        elif key in ACTION_KEYS:
            task = self.selected()
            if task is not None:
                return self.perform(task, ACTION_KEYS[key])
        self._clamp_cursor()
        return None

    # -- Dialogs -------------------------------------------------------------

    def _action_menu(self, task: Task) -> Choose:
        default = lifecycle.default_action(task)
        options = []
        for action in lifecycle.available_actions(task):
            hint = "enter" if action is default else ""
            options.append(Option(ACTION_LABELS[action], action, hint=hint))
        task_id = task.id
        return Choose(f"Task #{task.id}: {task.title}", options, lambda action: ActionChosen(task_id, action))

    def _agent_menu(self, task: Task) -> Choose:
        config = self.service.config
        options = []
        for name in config.agent_names():
            agent = config.agents[name]
            hint = "default" if name == config.default_agent else agent.description
            options.append(Option(name, name, hint=hint))
        options.append(Option("Custom command…", CUSTOM_COMMAND))
        task_id = task.id
        return Choose(f"Start task #{task.id} with", options, lambda agent: AgentChosen(task_id, agent))

    def _status_menu(self, task: Task) -> Choose:
        options = []
        for choice in lifecycle.status_choices(task.status):
            if choice.forced:
                options.append(Option(choice.status.display, choice, section=FORCED_SECTION, variant="error"))
            else:
                options.append(Option(choice.status.display, choice, section=ALLOWED_SECTION, variant="primary"))
        task_id = task.id
        return Choose(f"Change status of task #{task.id}", options, lambda choice: StatusChosen(task_id, choice))

    def _ask(self, purpose: InputPurpose, task_id: int | None, title: str, placeholder: str) -> Cmd:
        return msg_cmd(AskText(
            title,
            lambda text: TextEntered(purpose.value, task_id, text),
            placeholder=placeholder,
        ))

    def _confirm(self, task: Task, action: TaskAction) -> Cmd:
        task_id = task.id
        question = f"Really {ACTION_LABELS[action].lower()} task #{task_id}?"
        detail = f"{task.title}\n{CONFIRM_DETAILS[action]}"
        return msg_cmd(Confirm(question, lambda: ActionConfirmed(task_id, action), detail=detail))

    def _on_answer(self, msg: Msg) -> Cmd | None:
        if isinstance(msg, TextEntered):
            return self._submit_input(InputPurpose(msg.purpose), msg.task_id, msg.text)
        if not isinstance(msg, (ActionChosen, ActionConfirmed, AgentChosen, StatusChosen)):
            return None
        task = self._task_by_id(msg.task_id)
        if task is None:
            return None
        if isinstance(msg, ActionChosen):
            return self.perform(task, msg.action)
        if isinstance(msg, ActionConfirmed):
            return self._confirmed(msg.action, task.id)
        if isinstance(msg, AgentChosen):
            if msg.agent == CUSTOM_COMMAND:
                return self._ask(
                    InputPurpose.AGENT_COMMAND, task.id,
                    f"Start task #{task.id} with command", "Command to run in the worktree",
                )
            return self._start_cmd(task.id, StartRequest(agent=msg.agent))
        choice = msg.choice
        verb = "Forced" if choice.forced else "Set"
        return self._service_cmd(
            f"{verb} task #{task.id} to {choice.status.display}",
            self.service.set_status, task.id, choice.status, force=choice.forced,
        )

    def _task_by_id(self, task_id: int | None) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    # -- Actions -------------------------------------------------------------

    def perform(self, task: Task, action: TaskAction) -> Cmd | None:
        """Run ``action`` on ``task`` if the guards allow it; otherwise nothing."""
        if not lifecycle.is_allowed(task, action):
            logger.debug("Ignoring %s on task #%d (%s)", action.value, task.id, task.status.value)
            return None
        if action is TaskAction.START:
            return msg_cmd(self._agent_menu(task))
        if action is TaskAction.CHANGE_STATUS:
            return msg_cmd(self._status_menu(task))
        if action is TaskAction.BLOCK:
            return self._ask(InputPurpose.BLOCK_REASON, task.id, f"Block task #{task.id}", "Why is this task blocked?")
        if action in CONFIRM_DETAILS:
            return self._confirm(task, action)
        if action is TaskAction.UNBLOCK:
            return self._service_cmd(f"Unblocked task #{task.id}", self.service.unblock, task.id)
        if action is TaskAction.REVIEW:
            return self._service_cmd(f"Started review of task #{task.id}", self.service.review, task.id)
        if action is TaskAction.ATTACH:
            return self._exec_cmd(lambda: (self.service.attach_command(task.id), None))
        if action is TaskAction.DIFF:
            return self._exec_cmd(lambda: self.service.diff_command(task.id))
        if action is TaskAction.LOGS:
            return self._exec_cmd(lambda: (self._log_argv(task.id), None))
        if action is TaskAction.CONSOLE:
            return self._exec_cmd(lambda: (self._console_argv(task.id), None))
        if action is TaskAction.EDIT:
            return self._edit_cmd(task)
        return None

    def _confirmed(self, action: TaskAction, task_id: int) -> Cmd | None:
        service = self.service
        if action is TaskAction.STOP:
            return self._service_cmd(f"Stopped task #{task_id}", service.stop, task_id)
        if action is TaskAction.MERGE:
            return self._service_cmd(f"Merged task #{task_id}", service.merge, task_id)
        if action is TaskAction.CLOSE:
            return self._service_cmd(f"Closed task #{task_id}", service.close, task_id)
        if action is TaskAction.DELETE:
            return self._service_cmd(f"Deleted task #{task_id}", service.delete, task_id)
        return None

    def _submit_input(self, purpose: InputPurpose | None, task_id: int | None, value: str) -> Cmd | None:
        service = self.service
        if purpose is InputPurpose.NEW_TASK:
            return self._create_cmd(value)
        if task_id is None:
            return None
        if purpose is InputPurpose.AGENT_COMMAND:
            return self._start_cmd(task_id, StartRequest(command=value))
        if purpose is InputPurpose.BLOCK_REASON:
            return self._service_cmd(f"Blocked task #{task_id}", service.block, task_id, value)
        return None

    def _service_cmd(self, message: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Cmd:
        def run() -> Msg:
            try:
                fn(*args, **kwargs)
            except (CrewError, OSError) as exc:
                logger.warning("%s failed: %s", getattr(fn, "__name__", fn), exc)
                return BoardError(exc)
            return ActionDone(message)

        return run

    def _create_cmd(self, title: str) -> Cmd:
        service = self.service

        def run() -> Msg:
            try:
                task = service.create(title)
            except (CrewError, OSError) as exc:
                return BoardError(exc)
            return ActionDone(f"Created task #{task.id}")

        return run

    def _start_cmd(self, task_id: int, request: StartRequest) -> Cmd:
        service = self.service

        def run() -> Msg:
            try:
                task = service.start(task_id, request)
            except (CrewError, OSError) as exc:
                logger.warning("Starting task #%d failed: %s", task_id, exc)
                return BoardError(exc)
            return ActionDone(f"Started task #{task.id} with {task.agent}")

        return run

    def _exec_cmd(self, build: Callable[[], tuple[list[str], Path | None]]) -> Cmd:
        def run() -> Msg:
            try:
                argv, cwd = build()
            except (CrewError, OSError) as exc:
                return BoardError(exc)
            return ExecProcess(argv, _reload_on_exit, cwd=cwd)

        return run

    def _log_argv(self, task_id: int) -> list[str]:
        path = self.service.log_path(task_id)
        if not path.exists():
            raise LogNotFoundError(task_id, path)
        return pager_command() + [str(path)]

    def _console_argv(self, task_id: int) -> list[str]:
        return [
            self.service.executable, "-m", "gitcrew",
            "--repo", str(self.service.repo_root),
            "console", str(task_id),
        ]

    def _edit_cmd(self, task: Task) -> Cmd:
        path = description_path(self.service.crew, task.id)
        task_id = task.id
        description = task.description

        def on_exit(code: int | None, error: BaseException | None) -> Msg:
            if error is not None:
                return BoardError(error)
            if code != 0:
                return ReloadTasks()
            return DescriptionEdited(task_id, path)

        def run() -> Msg:
            try:
                atomic_write_text(path, description + "\n" if description else "")
            except OSError as exc:
                return BoardError(exc)
            return ExecProcess(editor_command() + [str(path)], on_exit)

        return run

    def _save_description_cmd(self, task_id: int, path: Path) -> Cmd:
        service = self.service

        def run() -> Msg:
            try:
                text = path.read_text(encoding="utf-8")
                service.update_description(task_id, text)
            except (CrewError, OSError) as exc:
                return BoardError(exc)
            return ActionDone(f"Updated description of task #{task_id}")

        return run

    # -- View ----------------------------------------------------------------

    def view(self) -> RenderableType:
        parts: list[RenderableType] = [self._render_header()]
        if self.error:
            parts.append(Text(f" {self.error}", style="bold white on red"))
        elif self.notice:
            parts.append(Text(f" {self.notice}", style="green"))

        detail = self._render_detail()
        reserved = len(parts) + 2 + (detail.plain.count("\n") + 1 if detail else 0)
        parts.append(self._render_rows(max(1, self.height - reserved)))
        if detail is not None:
            parts.append(detail)
        if not self.embedded:
            parts.append(Text(f" {FOOTER_HINTS}", style="dim"))
        return Group(*parts)

    def _render_header(self) -> Text:
        header = Text()
        style = "bold reverse" if self.embedded and self.focused else "bold"
        header.append(f" {self.repo_name} ", style=style)
        active = sum(1 for task in self.tasks if not task.status.is_terminal)
        header.append(f"  {active} active / {len(self.tasks)} tasks", style="dim")
        if self.loading:
            header.append("  loading…", style="dim italic")
        return header

    def _render_rows(self, rows: int) -> Text:
        if not self.tasks:
            if self.loading:
                return Text(" Loading tasks…", style="dim")
            return Text(" No tasks yet. Press n to create one.", style="dim")
        if self.cursor < self.offset:
            self.offset = self.cursor
        elif self.cursor >= self.offset + rows:
            self.offset = self.cursor - rows + 1
        self.offset = max(0, min(self.offset, max(0, len(self.tasks) - rows)))

        lines = []
        for index in range(self.offset, min(len(self.tasks), self.offset + rows)):
            lines.append(self._render_row(self.tasks[index], index == self.cursor))
        return Text("\n").join(lines)

    def _render_row(self, task: Task, selected: bool) -> Text:
        row = Text(no_wrap=True, overflow="ellipsis")
        row.append("› " if selected else "  ", style="bold cyan")
        row.append(f"#{task.id:<4}", style="dim")
        row.append(f"{task.status.display:<12}", style=STATUS_STYLES[task.status])
        if task.is_blocked:
            row.append("⊘ ", style="bold red")
        substate = self.substates.get(task.id)
        if substate is not None and substate.compact_label:
            row.append(f"[{substate.compact_label}] ", style="yellow")
        row.append(task.title, style="bold" if selected else "")
        if task.agent:
            row.append(f"  {task.agent}", style="dim")
        row.truncate(max(1, self.width), overflow="ellipsis")
        if selected and self.focused:
            row.stylize("on grey23")
        return row

    def _render_detail(self) -> Text | None:
        task = self.selected()
        if task is None:
            return None
        detail = Text()
        detail.append(f"\n {task.title}\n", style="bold")
        meta = f" branch {branch_name(task.id, task.issue)} · base {task.base_branch}"
        if task.labels:
            meta += " · " + ", ".join(task.labels)
        detail.append(meta, style="dim")
        if task.block_reason:
            detail.append(f"\n Blocked: {task.block_reason}", style="red")
        if task.description:
            first = task.description.splitlines()[0]
            detail.append(f"\n {first}", style="italic")
        return detail

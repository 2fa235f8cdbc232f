"""Shared fakes for gitcrew tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from gitcrew.domain.errors import GitError, NoSessionError, SessionRunningError, UncommittedChangesError
from gitcrew.domain.models import Task
from gitcrew.domain.naming import branch_name, crew_dir, tasks_path, task_id_from_session
from gitcrew.domain.ports import SessionBackend
from gitcrew.infra.config import CrewConfig
from gitcrew.infra.task_store import JsonTaskStore
from gitcrew.tui.runtime import Choose, Cmd, Dialog, Effect, KeyPress, Model, Msg, QuitMsg, msg_cmd, run_sync
from gitcrew.usecase.tasks import TaskService


class FakeBackend(SessionBackend):
    """In-memory session backend recording every call."""

    def __init__(self) -> None:
        self.running: dict[str, str] = {}
        self.started: list[tuple[str, str, Path]] = []
        self.stopped: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.fail_start = False

    def start(self, session_name, command, *, cwd, log_path=None):
        if session_name in self.running:
            raise SessionRunningError(session_name)
        if self.fail_start:
            raise OSError("tmux exploded")
        self.running[session_name] = command
        self.started.append((session_name, command, cwd))

    def stop(self, session_name):
        self.running.pop(session_name, None)
        self.stopped.append(session_name)

    def attach_command(self, session_name):
        if session_name not in self.running:
            raise NoSessionError(task_id_from_session(session_name) or 0)
        return ["tmux", "attach", "-t", session_name]

    def send(self, session_name, text):
        self.sent.append((session_name, text))

    def peek(self, session_name, lines, escape=False):
        if session_name not in self.running:
            raise NoSessionError(task_id_from_session(session_name) or 0)
        return f"{session_name}: last {lines} lines"

    def is_running(self, session_name):
        return session_name in self.running

    def list_pane_processes(self, session_name):
        return []


class FakeRepo:
    def __init__(self, root: Path) -> None:
        self.root = root

    def current_branch(self) -> str:
        return "main"


class FakeWorktrees:
    """Stands in for WorktreeManager without running git."""

    def __init__(self, root: Path) -> None:
        self.repo = FakeRepo(root)
        self.crew = crew_dir(root)
        self.created: list[int] = []
        self.removed: list[int] = []
        self.merged: list[int] = []
        self.dirty = False
        self.fail_remove = False

    def path_for(self, task: Task) -> Path:
        return self.crew / "worktrees" / str(task.id)

    def branch_for(self, task: Task) -> str:
        return branch_name(task.id, task.issue)

    def exists(self, task: Task) -> bool:
        return self.path_for(task).is_dir()

    def create(self, task: Task) -> Path:
        path = self.path_for(task)
        path.mkdir(parents=True, exist_ok=True)
        self.created.append(task.id)
        return path

    def remove(self, task: Task, *, force: bool = False) -> None:
        if self.fail_remove:
            raise GitError(["worktree", "remove"], "worktree is locked")
        path = self.path_for(task)
        if path.is_dir():
            path.rmdir()
            self.removed.append(task.id)

    def diff_command(self, task: Task) -> list[str]:
        return ["git", "diff", f"{task.base_branch}...{self.branch_for(task)}"]

    def merge(self, task: Task) -> None:
        if self.dirty:
            raise UncommittedChangesError(self.repo.root)
        self.merged.append(task.id)


def build_service(root: Path, *, config: CrewConfig | None = None) -> TaskService:
    crew = crew_dir(root)
    crew.mkdir(parents=True, exist_ok=True)
    store = JsonTaskStore(tasks_path(crew))
    store.initialize()
    return TaskService(
        root,
        store,
        FakeBackend(),
        FakeWorktrees(root),
        config=config or CrewConfig(),
        executable="python3",
    )


@pytest.fixture
def service(tmp_path: Path) -> TaskService:
    return build_service(tmp_path)


@pytest.fixture
def make_service(tmp_path: Path):
    def factory(*, config: CrewConfig | None = None) -> TaskService:
        return build_service(tmp_path, config=config)
    return factory


# ── Message loop helpers ──

HOST_INTERCEPTED = (Effect, QuitMsg)


def key(name: str) -> KeyPress:
    """KeyPress the way Textual reports it: printable keys carry a character."""
    if name == "space":
        return KeyPress("space", " ")
    if len(name) == 1:
        return KeyPress(name, name)
    return KeyPress(name)


def settle(model: Model, cmd: Cmd | None) -> list[Msg]:
    """Run ``cmd`` and every follow-up inline; returns all produced messages.

    Messages the host would intercept are collected but not fed back.
    """
    produced: list[Msg] = []
    queue = run_sync(cmd)
    while queue:
        msg = queue.pop(0)
        produced.append(msg)
        if isinstance(msg, HOST_INTERCEPTED):
            continue
        queue.extend(run_sync(model.update(msg)))
    return produced


def press(model: Model, *names: str) -> list[Msg]:
    produced: list[Msg] = []
    for name in names:
        produced.extend(settle(model, model.update(key(name))))
    return produced


def dialog(produced: list[Msg], kind: type = Dialog):
    """The last dialog a model asked the host to open."""
    found = [m for m in produced if isinstance(m, kind)]
    assert found, f"no {kind.__name__} in {produced!r}"
    return found[-1]


def answer(model: Model, produced: list[Msg], value) -> list[Msg]:
    """Answer the last dialog in ``produced`` the way its screen would."""
    return settle(model, msg_cmd(dialog(produced).resolve(value)))


def choose(model: Model, produced: list[Msg], label: str) -> list[Msg]:
    menu = dialog(produced, Choose)
    option = next(o for o in menu.options if o.label == label)
    return answer(model, produced, option.value)

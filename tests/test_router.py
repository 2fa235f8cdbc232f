"""WorkspaceRouter: repository list, per-repository boards and message tagging."""
from __future__ import annotations

from pathlib import Path

import pytest
from rich.console import Console

from gitcrew.domain.models import RepoInfo, RepositoryEntry, RepoState
from gitcrew.infra.workspace_store import WorkspaceStore
from gitcrew.tui.board import RepoBoard
from gitcrew.tui.messages import ActionDone, FocusWorkspace, ReloadTasks, TasksLoaded
from gitcrew.tui.runtime import AskText, BatchMsg, Choose, Confirm, ExecProcess, Option, QuitMsg, Tick, WindowSize
from gitcrew.tui.workspace.messages import RepoMsg
from gitcrew.tui.workspace.router import (
    WorkspaceRouter,
    wrap_repo_cmd,
    wrap_repo_msg,
)
from gitcrew.usecase.tasks import TaskService

from conftest import answer, build_service, dialog, key, press, settle


# ── Helper factories ──

class Workspace:
    """Two initialized repositories registered in a workspace file."""

    def __init__(self, root: Path):
        self.store = WorkspaceStore(root / "home" / "workspaces.yaml")
        self.services: dict[str, TaskService] = {}
        self.states: dict[str, RepoState] = {}
        self.alpha = self.add_repo(root / "alpha")
        self.beta = self.add_repo(root / "beta")

    def add_repo(self, path: Path) -> str:
        (path / ".git").mkdir(parents=True)
        self.services[str(path)] = build_service(path)
        return self.store.add_repo(path)

    def health_check(self, repo: RepositoryEntry) -> RepoInfo:
        return RepoInfo(repo, self.states.get(repo.path, RepoState.OK))

    def board(self, path: str) -> RepoBoard:
        return RepoBoard(self.services[path], embedded=True, auto_refresh=False)

    def router(self) -> WorkspaceRouter:
        router = WorkspaceRouter(
            self.store, board_factory=self.board, health_check=self.health_check, refresh_seconds=0,
        )
        settle(router, router.init())
        return router


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path)


def _render(router: WorkspaceRouter) -> str:
    console = Console(record=True, width=router.width, color_system=None)
    console.print(router.view())
    return console.export_text()


# ── Message tagging ──

def test_board_messages_are_tagged_with_their_repository() -> None:
    assert wrap_repo_msg("/r/a", ReloadTasks()) == RepoMsg("/r/a", ReloadTasks())
    assert wrap_repo_msg("/r/a", None) is None
    assert wrap_repo_msg("/r/a", QuitMsg()) is None

    passthrough = [FocusWorkspace(), RepoMsg("/r/b", ReloadTasks())]
    for msg in passthrough:
        assert wrap_repo_msg("/r/a", msg) is msg


def test_batches_are_rewrapped() -> None:
    wrapped = wrap_repo_msg("/r/a", BatchMsg([lambda: ReloadTasks(), lambda: QuitMsg()]))
    assert isinstance(wrapped, BatchMsg)
    assert [cmd() for cmd in wrapped.cmds] == [RepoMsg("/r/a", ReloadTasks()), None]


def test_exec_completion_is_tagged() -> None:
    exec_msg = ExecProcess(["less", "log"], lambda code, error: ReloadTasks())
    wrapped = wrap_repo_msg("/r/a", exec_msg)
    assert isinstance(wrapped, ExecProcess)
    assert wrapped.argv == ["less", "log"]
    assert wrapped.on_exit(0, None) == RepoMsg("/r/a", ReloadTasks())


def test_dialog_answers_are_tagged() -> None:
    confirm = wrap_repo_msg("/r/a", Confirm("Really?", lambda: ReloadTasks()))
    assert isinstance(confirm, Confirm)
    assert confirm.question == "Really?"
    assert confirm.resolve(True) == RepoMsg("/r/a", ReloadTasks())
    assert confirm.resolve(False) is None

    menu = wrap_repo_msg("/r/a", Choose("Pick", [Option("One", 1)], lambda value: TasksLoaded([])))
    assert menu.resolve(1) == RepoMsg("/r/a", TasksLoaded([]))
    assert menu.resolve(None) is None

    prompt = wrap_repo_msg("/r/a", AskText("Title", lambda text: ActionDone(text)))
    assert prompt.resolve("hi") == RepoMsg("/r/a", ActionDone("hi"))


def test_ticks_stay_ticks() -> None:
    tick = Tick(2.0, lambda now: ReloadTasks())
    wrapped = wrap_repo_cmd("/r/a", tick)
    assert isinstance(wrapped, Tick)
    assert wrapped.interval == 2.0
    assert wrapped.fire() == RepoMsg("/r/a", ReloadTasks())
    assert wrap_repo_cmd("/r/a", None) is None


# ── Loading ──

def test_init_opens_board_for_first_repository(workspace: Workspace) -> None:
    workspace.services[workspace.alpha].create("Fix login")
    router = workspace.router()

    assert [r.path for r in router.repos] == [workspace.alpha, workspace.beta]
    assert router.active_repo == workspace.alpha
    assert list(router.models) == [workspace.alpha]
    assert [t.title for t in router.models[workspace.alpha].tasks] == ["Fix login"]
    assert router.left_focused


def test_unhealthy_repository_gets_no_board(workspace: Workspace) -> None:
    workspace.states[workspace.alpha] = RepoState.NOT_INITIALIZED
    router = workspace.router()

    assert router.models == {}
    press(router, "enter")
    assert router.error == "cannot open: not_initialized"
    assert router.left_focused


def test_corrupted_workspace_shows_empty_list(workspace: Workspace, tmp_path: Path) -> None:
    workspace.store.path.write_text("repos: [\n")
    router = workspace.router()

    assert router.repos == []
    assert "is corrupted" in router.corrupted
    assert "Changes are not saved" in _render(router)

    answer(router, press(router, "a"), str(tmp_path / "alpha"))
    assert "is corrupted" in router.error
    assert workspace.store.path.read_text() == "repos: [\n"


# ── Focus ──

def test_focus_moves_between_list_and_board(workspace: Workspace) -> None:
    router = workspace.router()
    board = router.models[workspace.alpha]

    press(router, "tab")
    assert not router.left_focused
    assert board.focused

    press(router, "left")
    assert router.left_focused
    assert not board.focused

    press(router, "enter")
    assert not router.left_focused
    press(router, "escape")
    assert router.left_focused


def test_opening_a_board_records_last_opened(workspace: Workspace) -> None:
    router = workspace.router()
    press(router, "down", "enter")
    opened = {r.path: r.last_opened for r in workspace.store.load().repos}
    assert opened[workspace.beta] is not None
    assert opened[workspace.alpha] is None


def test_keys_reach_focused_board(workspace: Workspace) -> None:
    router = workspace.router()
    produced = press(router, "enter", "n")
    board = router.models[workspace.alpha]
    assert dialog(produced, AskText).title == "New task"

    produced = answer(router, produced, "quick fix")
    assert [m.msg for m in produced if isinstance(m, RepoMsg) and isinstance(m.msg, ActionDone)] == [
        ActionDone("Created task #1"),
    ]
    assert [t.title for t in board.tasks] == ["quick fix"]


def test_dialog_answer_reaches_board_that_asked(workspace: Workspace) -> None:
    router = workspace.router()
    produced = press(router, "enter", "n")
    press(router, "left", "down")
    assert router.active_repo == workspace.beta

    answer(router, produced, "alpha work")
    assert [t.title for t in workspace.services[workspace.alpha].list()] == ["alpha work"]
    assert workspace.services[workspace.beta].list() == []


def test_q_quits_from_list_and_board(workspace: Workspace) -> None:
    router = workspace.router()
    assert any(isinstance(m, QuitMsg) for m in press(router, "q"))
    press(router, "enter")
    assert any(isinstance(m, QuitMsg) for m in press(router, "q"))


def test_board_quit_is_swallowed(workspace: Workspace) -> None:
    router = workspace.router()
    produced = settle(router, router.update(RepoMsg(workspace.alpha, key("q"))))
    assert not any(isinstance(m, QuitMsg) for m in produced)


# ── Routing ──

def test_results_return_to_originating_board(workspace: Workspace) -> None:
    router = workspace.router()
    workspace.services[workspace.alpha].create("alpha task")

    pending = router.update(RepoMsg(workspace.alpha, ReloadTasks()))
    press(router, "down")
    assert router.active_repo == workspace.beta
    assert workspace.beta in router.models

    settle(router, pending)
    assert [t.title for t in router.models[workspace.alpha].tasks] == ["alpha task"]
    assert router.models[workspace.beta].tasks == []


def test_messages_for_closed_boards_are_dropped(workspace: Workspace) -> None:
    router = workspace.router()
    assert router.update(RepoMsg("/nowhere", TasksLoaded([]))) is None


# ── Adding and removing ──

def test_remove_disposes_board_and_clears_active(workspace: Workspace) -> None:
    router = workspace.router()
    assert workspace.alpha in router.models

    produced = press(router, "d")
    assert dialog(produced, Confirm).question == "Remove alpha from the workspace?"
    answer(router, produced, True)

    assert workspace.alpha not in router.models
    assert workspace.alpha not in router.infos
    assert [r.path for r in router.repos] == [workspace.beta]
    assert router.active_repo == workspace.beta
    assert router.notice == f"Removed {workspace.alpha}"


def test_remove_can_be_cancelled(workspace: Workspace) -> None:
    router = workspace.router()
    assert answer(router, press(router, "d"), False) == []
    assert len(workspace.store.load().repos) == 2


def test_add_repository(workspace: Workspace, tmp_path: Path) -> None:
    gamma = tmp_path / "gamma"
    (gamma / ".git").mkdir(parents=True)
    workspace.services[str(gamma)] = build_service(gamma)
    router = workspace.router()

    produced = press(router, "a")
    assert dialog(produced, AskText).placeholder == "Path of a git repository"
    answer(router, produced, str(gamma))

    assert router.active_repo == str(gamma)
    assert str(gamma) in [r.path for r in router.repos]
    assert str(gamma) in router.models


def test_blank_repository_path_is_ignored(workspace: Workspace) -> None:
    router = workspace.router()
    answer(router, press(router, "a"), "   ")
    assert len(workspace.store.load().repos) == 2
    assert router.error == ""


# ── Layout ──

def test_resize_reaches_boards(workspace: Workspace) -> None:
    router = workspace.router()
    settle(router, router.update(WindowSize(160, 40)))
    _, right = router.pane_widths()
    board = router.models[workspace.alpha]
    assert (board.width, board.height) == (right - 2, 36)


def test_split_and_narrow_views(workspace: Workspace) -> None:
    workspace.services[workspace.alpha].create("Fix login")
    router = workspace.router()
    router.update(WindowSize(160, 30))
    wide = _render(router)
    assert "Repositories" in wide
    assert "Fix login" in wide

    router.update(WindowSize(80, 30))
    narrow = _render(router)
    assert "Repositories" in narrow
    assert "Fix login" not in narrow

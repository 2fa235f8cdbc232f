"""Multi-repository workspace.

WorkspaceRouter shows the repositories of the workspace file on the left
and hosts one RepoBoard per healthy repository on the right. Boards are
owned by path in ``models``; a board is created the first time its
repository is active and healthy and dropped when the repository leaves
the list.

Every command a board returns is wrapped with the board's path before
the host runs it. When the wrapped command resolves:

- a BatchMsg is rewrapped command by command
- a QuitMsg is swallowed, other boards are still live
- a BoardMsg becomes RepoMsg(path, msg) and is routed back to that board
- an Effect (child process or dialog) passes through with its outcome
  tagged the same way
- anything else (FocusWorkspace, RepoMsg) passes through

Ticks are mapped instead of wrapped so the host still sees a Tick.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gitcrew.domain.errors import CrewError, WorkspaceCorruptedError
from gitcrew.domain.models import RepoInfo, RepositoryEntry, RepoState, TaskStatus
from gitcrew.infra.health import check_repository
from gitcrew.infra.workspace_store import WorkspaceStore
from gitcrew.tui.board import RepoBoard
from gitcrew.tui.messages import BoardMsg, FocusWorkspace, RefreshTick
from gitcrew.tui.runtime import (
    AskText,
    BatchMsg,
    Cmd,
    Confirm,
    Effect,
    KeyPress,
    Model,
    Msg,
    QuitMsg,
    Tick,
    WindowSize,
    batch,
    msg_cmd,
    quit_cmd,
)
from gitcrew.tui.workspace.messages import (
    AddRepoEntered,
    RepoAdded,
    RepoMsg,
    RemoveRepoConfirmed,
    RepoRemoved,
    ReposLoaded,
    SummaryLoaded,
    WorkspaceError,
    WorkspaceTick,
)
from gitcrew.usecase.tasks import TaskService

logger = logging.getLogger(__name__)

SPLIT_MIN_WIDTH = 120
LEFT_RATIO = 0.3
MIN_PANE_WIDTH = 24
APP_PADDING = 4
PAGE_SIZE = 5
REFRESH_SECONDS = 5.0

STATE_LABELS = {
    RepoState.NOT_FOUND: "missing",
    RepoState.NOT_GIT_REPO: "not a git repo",
    RepoState.NOT_INITIALIZED: "not initialized",
    RepoState.CONFIG_ERROR: "config error",
    RepoState.LOAD_ERROR: "load error",
}


BoardFactory = Callable[[str], RepoBoard]
HealthCheck = Callable[[RepositoryEntry], RepoInfo]


def default_board_factory(path: str) -> RepoBoard:
    return RepoBoard(TaskService.for_repo(Path(path)), embedded=True, auto_refresh=False)


def wrap_repo_msg(path: str, msg: Msg | None) -> Msg | None:
    """Tag ``msg`` from the board at ``path`` for delivery back to it."""
    if msg is None:
        return None
    if isinstance(msg, BatchMsg):
        return BatchMsg([cmd for cmd in (wrap_repo_cmd(path, c) for c in msg.cmds) if cmd is not None])
    if isinstance(msg, QuitMsg):
        logger.debug("Ignoring quit from board %s", path)
        return None
    if isinstance(msg, (RepoMsg, FocusWorkspace)):
        return msg
    if isinstance(msg, BoardMsg):
        return RepoMsg(path, msg)
    if isinstance(msg, Effect):
        return msg.map(lambda result: wrap_repo_msg(path, result))
    return msg


def wrap_repo_cmd(path: str, cmd: Cmd | None) -> Cmd | None:
    if cmd is None:
        return None
    if isinstance(cmd, Tick):
        return cmd.map(lambda msg: wrap_repo_msg(path, msg))

    def wrapped() -> Msg | None:
        return wrap_repo_msg(path, cmd())

    return wrapped


class WorkspaceRouter(Model):
    """Repository list plus one board per healthy repository."""

    def __init__(
        self,
        store: WorkspaceStore,
        *,
        board_factory: BoardFactory = default_board_factory,
        health_check: HealthCheck = check_repository,
        refresh_seconds: float = REFRESH_SECONDS,
    ):
        self.store = store
        self.board_factory = board_factory
        self.health_check = health_check
        self.refresh_seconds = refresh_seconds

        self.repos: list[RepositoryEntry] = []
        self.infos: dict[str, RepoInfo] = {}
        self.models: dict[str, RepoBoard] = {}
        self.active_repo = ""
        self.cursor = 0
        self.left_focused = True
        self.width = 80
        self.height = 24
        self.loaded = False
        self.error = ""
        self.notice = ""
        self.corrupted = ""

    # -- Model ---------------------------------------------------------------

    def init(self) -> Cmd | None:
        return batch(self._load_repos_cmd(), self._tick_cmd())

    def update(self, msg: Msg) -> Cmd | None:
        if isinstance(msg, WindowSize):
            return self._on_resize(msg)
        if isinstance(msg, KeyPress):
            return self._on_key(msg)
        if isinstance(msg, RepoMsg):
            return self._route(msg)
        if isinstance(msg, ReposLoaded):
            return self._on_repos_loaded(msg)
        if isinstance(msg, SummaryLoaded):
            if msg.path not in self._paths():
                return None
            self.infos[msg.path] = msg.info
            if msg.path == self.active_repo:
                return self.ensure_active_model()
            return None
        if isinstance(msg, RepoAdded):
            self.notice = f"Added {msg.path}"
            self.active_repo = msg.path
            return self._load_repos_cmd()
        if isinstance(msg, AddRepoEntered):
            path = msg.path.strip()
            return self._add_cmd(path) if path else None
        if isinstance(msg, RemoveRepoConfirmed):
            return self._remove_cmd(msg.path)
        if isinstance(msg, RepoRemoved):
            return self._on_repo_removed(msg.path)
        if isinstance(msg, FocusWorkspace):
            self.left_focused = True
            self._sync_focus()
            return None
        if isinstance(msg, WorkspaceTick):
            return self._on_tick()
        if isinstance(msg, WorkspaceError):
            self.error = str(msg.error)
            return None
        return None

    def active_model(self) -> RepoBoard | None:
        return self.models.get(self.active_repo)

    def _paths(self) -> set[str]:
        return {repo.path for repo in self.repos}

    # -- Layout --------------------------------------------------------------

    @property
    def split(self) -> bool:
        return self.width >= SPLIT_MIN_WIDTH

    @property
    def content_height(self) -> int:
        return max(1, self.height - 2)

    def pane_widths(self) -> tuple[int, int]:
        usable = max(1, self.width - APP_PADDING)
        if not self.split:
            return usable, usable
        left = max(MIN_PANE_WIDTH, int(usable * LEFT_RATIO))
        right = max(MIN_PANE_WIDTH, usable - left)
        return left, right

    def _board_size(self) -> WindowSize:
        # Panel borders take two columns and two rows.
        _, right = self.pane_widths()
        return WindowSize(max(1, right - 2), max(1, self.content_height - 2))

    def _on_resize(self, msg: WindowSize) -> Cmd | None:
        self.width, self.height = msg.width, msg.height
        size = self._board_size()
        cmds = [wrap_repo_cmd(path, board.update(size)) for path, board in self.models.items()]
        return batch(*cmds)

    # -- Boards --------------------------------------------------------------

    def ensure_active_model(self) -> Cmd | None:
        """Create the active repository's board if it is healthy and missing."""
        path = self.active_repo
        if not path or path in self.models:
            return None
        info = self.infos.get(path)
        if info is None or info.state is not RepoState.OK:
            return None
        try:
            board = self.board_factory(path)
        except (CrewError, OSError) as exc:
            logger.warning("Could not open board for %s: %s", path, exc)
            self.error = str(exc)
            return None
        self.models[path] = board
        self._sync_focus()
        logger.info("Opened board for %s", path)
        return batch(
            wrap_repo_cmd(path, board.init()),
            wrap_repo_cmd(path, board.update(self._board_size())),
        )

    def _route(self, msg: RepoMsg) -> Cmd | None:
        board = self.models.get(msg.path)
        if board is None:
            logger.debug("Dropping %s for closed board %s", type(msg.msg).__name__, msg.path)
            return None
        return wrap_repo_cmd(msg.path, board.update(msg.msg))

    def _sync_focus(self) -> None:
        for path, board in self.models.items():
            board.set_focused(path == self.active_repo and not self.left_focused)

    def _dispose(self, path: str) -> None:
        self.models.pop(path, None)
        self.infos.pop(path, None)
        if self.active_repo == path:
            self.active_repo = ""

    # -- Workspace file ------------------------------------------------------

    def _load_repos_cmd(self) -> Cmd:
        store = self.store

        def load() -> Msg:
            try:
                file = store.load()
            except WorkspaceCorruptedError as exc:
                logger.error("%s", exc)
                return ReposLoaded([], error=exc)
            except (CrewError, OSError) as exc:
                return WorkspaceError(exc)
            return ReposLoaded(file.repos)

        return load

    def _summary_cmd(self, repo: RepositoryEntry) -> Cmd:
        health_check = self.health_check

        def load() -> Msg:
            try:
                info = health_check(repo)
            except (CrewError, OSError) as exc:
                info = RepoInfo(repo, RepoState.LOAD_ERROR, error=str(exc))
            return SummaryLoaded(repo.path, info)

        return load

    def _load_summaries(self) -> Cmd | None:
        return batch(*[self._summary_cmd(repo) for repo in self.repos])

    def _store_cmd(self, action: Callable[[], Msg | None]) -> Cmd:
        def run() -> Msg | None:
            try:
                return action()
            except (CrewError, OSError) as exc:
                logger.warning("Workspace update failed: %s", exc)
                return WorkspaceError(exc)

        return run

    def _add_cmd(self, path: str) -> Cmd:
        store = self.store
        return self._store_cmd(lambda: RepoAdded(store.add_repo(path)))

    def _remove_cmd(self, path: str) -> Cmd:
        store = self.store
        return self._store_cmd(lambda: RepoRemoved(store.remove_repo(path)))

    def _touch_cmd(self, path: str) -> Cmd:
        store = self.store

        def touch() -> None:
            store.update_last_opened(path)
            return None

        return self._store_cmd(touch)

    def _on_repos_loaded(self, msg: ReposLoaded) -> Cmd | None:
        self.loaded = True
        self.corrupted = str(msg.error) if msg.error is not None else ""
        self.repos = list(msg.repos)
        known = self._paths()
        for path in list(self.models) + list(self.infos):
            if path not in known:
                self._dispose(path)
        if self.active_repo not in known:
            self.active_repo = ""
        self._clamp_cursor()
        if self.active_repo:
            self.cursor = next(i for i, repo in enumerate(self.repos) if repo.path == self.active_repo)
        elif self.repos:
            self.active_repo = self.repos[self.cursor].path
        if not self.active_repo:
            self.left_focused = True
        self._sync_focus()
        return batch(self._load_summaries(), self.ensure_active_model())

    def _on_repo_removed(self, path: str) -> Cmd | None:
        self.notice = f"Removed {path}"
        self._dispose(path)
        self.left_focused = True
        self._sync_focus()
        self._clamp_cursor()
        return self._load_repos_cmd()

    def _tick_cmd(self) -> Cmd | None:
        if self.refresh_seconds <= 0:
            return None
        return Tick(self.refresh_seconds, lambda now: WorkspaceTick())

    def _on_tick(self) -> Cmd | None:
        forward = None
        board = self.active_model()
        if board is not None:
            forward = wrap_repo_cmd(self.active_repo, board.update(RefreshTick()))
        return batch(forward, self._load_summaries(), self._tick_cmd())

    # -- Keys ----------------------------------------------------------------

    def _on_key(self, msg: KeyPress) -> Cmd | None:
        self.error = ""
        self.notice = ""
        key = msg.key
        if key in ("ctrl+c", "q"):
            return quit_cmd
        if key == "ctrl+left":
            return self._focus_list()
        if key == "ctrl+right":
            return self._focus_board()
        if self.left_focused and key in ("tab", "right"):
            return self._focus_board()
        if key == "left" and not self.left_focused:
            return self._focus_list()

        if not self.left_focused:
            board = self.active_model()
            if board is None:
                return self._focus_list()
            return wrap_repo_cmd(self.active_repo, board.update(msg))
        return self._on_list_key(msg)

    def _on_list_key(self, msg: KeyPress) -> Cmd | None:
        key = msg.key
        if key in ("up", "k"):
            return self._move(-1)
        if key in ("down", "j"):
            return self._move(1)
        if key in ("pageup", "ctrl+u"):
            return self._move(-PAGE_SIZE)
        if key in ("pagedown", "ctrl+f"):
            return self._move(PAGE_SIZE)
        if key == "enter":
            return self._focus_board()
        if key == "a":
            return msg_cmd(AskText(
                "Add repository",
                AddRepoEntered,
                placeholder="Path of a git repository",
            ))
        if key == "d" and self.repos:
            repo = self.repos[self.cursor]
            path = repo.path
            return msg_cmd(Confirm(
                f"Remove {repo.display_name} from the workspace?",
                lambda: RemoveRepoConfirmed(path),
                detail=f"{path}\nThe repository itself is not touched.",
            ))
        if key == "r":
            return self._load_repos_cmd()
        return None

    def _clamp_cursor(self) -> None:
        if not self.repos:
            self.cursor = 0
            return
        self.cursor = max(0, min(self.cursor, len(self.repos) - 1))

    def _move(self, delta: int) -> Cmd | None:
        if not self.repos:
            return None
        self.cursor += delta
        self._clamp_cursor()
        self.active_repo = self.repos[self.cursor].path
        self._sync_focus()
        return self.ensure_active_model()

    def _focus_list(self) -> Cmd | None:
        self.left_focused = True
        self._sync_focus()
        return None

    def _focus_board(self) -> Cmd | None:
        if not self.active_repo:
            return None
        info = self.infos.get(self.active_repo)
        if info is None or info.state is not RepoState.OK:
            state = info.state.value if info is not None else "loading"
            self.error = f"cannot open: {state}"
            return None
        self.left_focused = False
        create = self.ensure_active_model()
        self._sync_focus()
        return batch(create, self._touch_cmd(self.active_repo))

    # -- View ----------------------------------------------------------------

    def view(self) -> RenderableType:
        header = Text()
        header.append(" gitcrew workspace ", style="bold reverse")
        header.append(f"  {len(self.repos)} repositories", style="dim")

        left_width, right_width = self.pane_widths()
        height = self.content_height
        list_panel = Panel(
            self._render_list(),
            title="Repositories",
            border_style="cyan" if self.left_focused else "dim",
            width=left_width,
            height=height,
        )
        board_panel = Panel(
            self._render_board(),
            title=self._board_title(),
            border_style="dim" if self.left_focused else "cyan",
            width=right_width,
            height=height,
        )
        if self.split:
            body = Table.grid(padding=(0, 1))
            body.add_column(width=left_width)
            body.add_column(width=right_width)
            body.add_row(list_panel, board_panel)
        else:
            body = list_panel if self.left_focused else board_panel
        return Group(header, body, self._render_footer())

    def _render_list(self) -> Text:
        lines = []
        if self.corrupted:
            lines.append(Text(f"{self.corrupted}\nChanges are not saved until it is fixed.", style="bold red"))
        if not self.repos:
            if self.loaded:
                lines.append(Text("No repositories. Press a to add one.", style="dim"))
            else:
                lines.append(Text("Loading…", style="dim"))
        for index, repo in enumerate(self.repos):
            lines.append(self._render_repo(repo, index == self.cursor))
        return Text("\n").join(lines)

    def _render_repo(self, repo: RepositoryEntry, selected: bool) -> Text:
        row = Text(no_wrap=True, overflow="ellipsis")
        row.append("› " if selected else "  ", style="bold cyan")
        if repo.pinned:
            row.append("★ ", style="yellow")
        row.append(repo.display_name, style="bold" if selected else "")
        info = self.infos.get(repo.path)
        if info is None:
            row.append("  …", style="dim")
        elif info.state is RepoState.OK:
            summary = info.summary
            row.append(f"  {summary.total_active} active", style="dim")
            waiting = summary.count(TaskStatus.NEEDS_INPUT)
            if waiting:
                row.append(f"  {waiting} waiting", style="bold yellow")
            failed = summary.count(TaskStatus.ERROR)
            if failed:
                row.append(f"  {failed} failed", style="bold red")
            if info.warning:
                row.append("  !", style="yellow")
        else:
            row.append(f"  {STATE_LABELS.get(info.state, info.state.value)}", style="red")
        return row

    def _board_title(self) -> str:
        for repo in self.repos:
            if repo.path == self.active_repo:
                return repo.display_name
        return ""

    def _render_board(self) -> RenderableType:
        board = self.active_model()
        if board is not None:
            return board.view()
        if not self.active_repo:
            return Text("Select a repository.", style="dim")
        info = self.infos.get(self.active_repo)
        if info is None:
            return Text("Checking repository…", style="dim")
        if info.state is RepoState.NOT_INITIALIZED:
            return Text(f"{info.error}\nRun 'gitcrew init' in {self.active_repo}.", style="yellow")
        return Text(info.error or info.state.value, style="red")

    def _render_footer(self) -> Text:
        if self.error:
            return Text(f" {self.error}", style="bold white on red")
        if self.notice:
            return Text(f" {self.notice}", style="green")
        if self.left_focused:
            hints = "enter/tab: open  a: add  d: remove  r: reload  q: quit"
        else:
            hints = "ctrl+←: repositories  q: quit"
        return Text(f" {hints}", style="dim")

"""Textual host for runtime models.

ModelHost owns the only event loop. It feeds key and resize events into
the model, runs returned commands on worker threads, schedules Ticks as
timers, suspends itself for ExecProcess requests and re-renders the
model's view after every update. Dialogs open as modal screens whose
result is resolved into a Msg for the model.
"""
from __future__ import annotations

import logging
import os
import subprocess

from textual import events, work
from textual.app import App, ComposeResult, SuspendNotSupported
from textual.css.query import NoMatches
from textual.screen import Screen
from textual.widgets import Static

from gitcrew.tui.runtime import (
    AskText,
    BatchMsg,
    Choose,
    Cmd,
    Confirm,
    Dialog,
    ExecProcess,
    KeyPress,
    Model,
    Msg,
    QuitMsg,
    Tick,
    WindowSize,
)
from gitcrew.tui.screens.confirm import ConfirmScreen
from gitcrew.tui.screens.menu import MenuScreen
from gitcrew.tui.screens.prompt import PromptScreen

logger = logging.getLogger(__name__)


class ModelScreen(Screen, inherit_bindings=False):
    """Full-screen view of one model; every key goes to the model."""

    DEFAULT_CSS = """
    ModelScreen {
        layout: vertical;
    }
    #model-view {
        width: 1fr;
        height: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static(id="model-view")

    def on_mount(self) -> None:
        host = self.app
        if isinstance(host, ModelHost):
            host.start_model(WindowSize(self.size.width, self.size.height))

    def on_resize(self, event: events.Resize) -> None:
        host = self.app
        if isinstance(host, ModelHost):
            host.dispatch(WindowSize(event.size.width, event.size.height))

    def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        host = self.app
        if isinstance(host, ModelHost):
            host.dispatch(KeyPress(event.key, event.character))


class ModelHost(App, inherit_bindings=False):
    """Runs a runtime Model inside Textual."""

    TITLE = "gitcrew"
    ENABLE_COMMAND_PALETTE = False

    def __init__(self, model: Model, **kwargs) -> None:
        super().__init__(**kwargs)
        self.model = model
        self._started = False
        self.model_screen: ModelScreen | None = None

    def on_mount(self) -> None:
        self.model_screen = ModelScreen()
        self.push_screen(self.model_screen)

    def start_model(self, size: WindowSize) -> None:
        if self._started:
            return
        self._started = True
        self.dispatch(size)
        self.run_cmd(self.model.init())
        self.refresh_view()

    # -- Message loop --------------------------------------------------------

    def dispatch(self, msg: Msg | None) -> None:
        """Deliver ``msg`` on the event loop thread."""
        if msg is None:
            return
        if isinstance(msg, QuitMsg):
            logger.debug("Model requested quit")
            self.exit()
            return
        if isinstance(msg, BatchMsg):
            for cmd in msg.cmds:
                self.run_cmd(cmd)
            return
        if isinstance(msg, ExecProcess):
            self._exec(msg)
            return
        if isinstance(msg, Dialog):
            self._open_dialog(msg)
            return
        cmd = self.model.update(msg)
        self.refresh_view()
        self.run_cmd(cmd)

    def run_cmd(self, cmd: Cmd | None) -> None:
        if cmd is None:
            return
        if isinstance(cmd, Tick):
            self.set_timer(cmd.interval, lambda: self.dispatch(cmd.fire()))
            return
        self._run_in_thread(cmd)

    @work(thread=True, exit_on_error=False, group="commands")
    def _run_in_thread(self, cmd: Cmd) -> None:
        try:
            msg = cmd()
        except Exception:
            logger.exception("Command %r raised", cmd)
            return
        if msg is not None:
            self.call_from_thread(self.dispatch, msg)

    def _exec(self, request: ExecProcess) -> None:
        env = None
        if request.env:
            env = {**os.environ, **request.env}
        code: int | None = None
        error: BaseException | None = None
        logger.info("Suspending for %s", " ".join(request.argv))
        try:
            with self.suspend():
                code = subprocess.call(
                    request.argv,
                    cwd=str(request.cwd) if request.cwd else None,
                    env=env,
                )
        except (OSError, SuspendNotSupported) as exc:
            logger.warning("Could not run %s: %s", request.argv[0], exc)
            error = exc
        self.dispatch(request.on_exit(code, error))

    def refresh_view(self) -> None:
        if self.model_screen is None:
            return
        try:
            view = self.model_screen.query_one("#model-view", Static)
        except NoMatches:
            return
        view.update(self.model.view())

    def _open_dialog(self, dialog: Dialog) -> None:
        if isinstance(dialog, Confirm):
            screen = ConfirmScreen(dialog.question, dialog.detail)
        elif isinstance(dialog, Choose):
            screen = MenuScreen(dialog.title, dialog.options)
        elif isinstance(dialog, AskText):
            screen = PromptScreen(dialog.title, dialog.value, dialog.placeholder)
        else:
            logger.warning("No screen for %s", type(dialog).__name__)
            return
        self.push_screen(screen, callback=lambda answer: self.dispatch(dialog.resolve(answer)))

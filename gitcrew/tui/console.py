"""Interactive console for one task's agent session.

The console re-reads the whole event log every second and derives the
transcript and the pending permission request from scratch; nothing is
carried over between refreshes except an undelivered prompt. Prompts
are typed into a dialog; commands go out through the AgentControl port.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from rich.console import Group, RenderableType
from rich.text import Text

from gitcrew.domain.errors import CrewError
from gitcrew.domain.models import AgentCommand, AgentCommandType, AgentEvent, ExecutionState
from gitcrew.domain.ports import AgentControl, EventLogReader, ExecutionStateReader
from gitcrew.protocol.state import PermissionRequest, derive_protocol_state, substate_label
from gitcrew.tui.runtime import (
    AskText,
    Choose,
    Cmd,
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

logger = logging.getLogger(__name__)

REFRESH_SECONDS = 1.0
PAGE_SIZE = 10
# Rows outside the transcript viewport.
CHROME_LINES = 4


@dataclass
class ConsoleRefreshed(Msg):
    events: list[AgentEvent]
    state: ExecutionState | None
    queued: int = 0


@dataclass
class ConsoleTick(Msg):
    pass


@dataclass
class ConsoleError(Msg):
    error: BaseException


@dataclass
class CommandSent(Msg):
    command: AgentCommand


@dataclass
class CommandFailed(Msg):
    command: AgentCommand
    error: BaseException


@dataclass
class PromptEntered(Msg):
    text: str


@dataclass
class PermissionChosen(Msg):
    option_id: str


class AgentConsole(Model):
    """Transcript, permission prompt and prompt dialog for one task."""

    def __init__(
        self,
        task_id: int,
        events: EventLogReader,
        states: ExecutionStateReader,
        control: AgentControl,
        *,
        refresh_seconds: float = REFRESH_SECONDS,
    ):
        self.task_id = task_id
        self.events_reader = events
        self.states_reader = states
        self.control = control
        self.refresh_seconds = refresh_seconds

        self.events: list[AgentEvent] = []
        self.state: ExecutionState | None = None
        self.permission: PermissionRequest | None = None
        self.transcript: tuple[str, ...] = ()
        self.queued = 0
        # Last prompt that was not delivered; offered again on the next Enter.
        self.draft = ""
        self.error = ""
        self.scroll = 0
        self.width = 80
        self.height = 24

    @classmethod
    def for_task(cls, service, task_id: int) -> AgentConsole:
        """Console wired to ``service``'s event log, state file and command queue."""
        service.get(task_id)
        return cls(
            task_id,
            service.event_log(task_id),
            service.state_store(task_id),
            service.control(task_id),
        )

    def init(self) -> Cmd | None:
        return batch(self._refresh_cmd(), self._tick_cmd())

    def update(self, msg: Msg) -> Cmd | None:
        if isinstance(msg, WindowSize):
            self.width, self.height = msg.width, msg.height
            self._derive()
            return None
        if isinstance(msg, ConsoleRefreshed):
            self.events = msg.events
            self.state = msg.state
            self.queued = msg.queued
            self._derive()
            return None
        if isinstance(msg, ConsoleTick):
            return batch(self._refresh_cmd(), self._tick_cmd())
        if isinstance(msg, ConsoleError):
            self.error = str(msg.error)
            return None
        if isinstance(msg, CommandSent):
            return self._on_sent(msg.command)
        if isinstance(msg, CommandFailed):
            self.error = str(msg.error)
            return None
        if isinstance(msg, PromptEntered):
            return self._submit_prompt(msg.text)
        if isinstance(msg, PermissionChosen):
            return self._send_cmd(AgentCommand(AgentCommandType.PERMISSION, option_id=msg.option_id))
        if isinstance(msg, KeyPress):
            return self._on_key(msg)
        return None

    def _derive(self) -> None:
        derived = derive_protocol_state(self.events, self.width)
        self.permission = derived.permission
        self.transcript = derived.transcript

    # -- Keys ----------------------------------------------------------------

    def _on_key(self, msg: KeyPress) -> Cmd | None:
        self.error = ""
        key = msg.key
        if key == "ctrl+c":
            return quit_cmd
        if key == "ctrl+d":
            return self._send_cmd(AgentCommand(AgentCommandType.STOP))
        if key == "escape":
            return self._send_cmd(AgentCommand(AgentCommandType.CANCEL))
        if key == "pageup":
            self.scroll += PAGE_SIZE
            return None
        if key == "pagedown":
            self.scroll = max(0, self.scroll - PAGE_SIZE)
            return None
        if self.permission is not None:
            if key == "enter":
                return msg_cmd(self._permission_menu(self.permission))
            if msg.character and msg.character in "123456789":
                index = int(msg.character) - 1
                if index < len(self.permission.options):
                    return self.update(PermissionChosen(self.permission.options[index].option_id))
            return None
        if key in ("enter", "i"):
            return msg_cmd(AskText(
                f"Prompt for task #{self.task_id}",
                PromptEntered,
                value=self.draft,
                placeholder="Type a prompt and press Enter",
            ))
        return None

    def _permission_menu(self, permission: PermissionRequest) -> Choose:
        options = [
            Option(f"[{index}] {option.label}", option.option_id)
            for index, option in enumerate(permission.options[:9], start=1)
        ]
        return Choose(permission.message, options, PermissionChosen)

    def _submit_prompt(self, text: str) -> Cmd | None:
        text = text.strip()
        if not text:
            return None
        self.draft = text
        if self.permission is not None:
            self.error = "Answer the permission request first"
            return None
        return self._send_cmd(AgentCommand(AgentCommandType.PROMPT, text=text))

    def _on_sent(self, command: AgentCommand) -> Cmd | None:
        if command.type is AgentCommandType.PROMPT:
            self.draft = ""
            self.scroll = 0
        elif command.type is AgentCommandType.PERMISSION:
            self.permission = None
        elif command.type is AgentCommandType.STOP:
            return quit_cmd
        return self._refresh_cmd()

    # -- Commands ------------------------------------------------------------

    def _refresh_cmd(self) -> Cmd:
        events_reader, states_reader, control = self.events_reader, self.states_reader, self.control

        def refresh() -> Msg:
            try:
                events = events_reader.read_all()
                state = states_reader.load()
                queued = len(control.pending())
            except (CrewError, OSError) as exc:
                logger.warning("Console refresh failed: %s", exc)
                return ConsoleError(exc)
            return ConsoleRefreshed(events, state, queued)

        return refresh

    def _tick_cmd(self) -> Cmd | None:
        if self.refresh_seconds <= 0:
            return None
        return Tick(self.refresh_seconds, lambda now: ConsoleTick())

    def _send_cmd(self, command: AgentCommand) -> Cmd:
        control = self.control

        def send() -> Msg:
            try:
                control.send(command)
            except (CrewError, OSError) as exc:
                logger.warning("Sending %s failed: %s", command.type.value, exc)
                return CommandFailed(command, exc)
            return CommandSent(command)

        return send

    # -- View ----------------------------------------------------------------

    def view(self) -> RenderableType:
        header = Text(f"ACP Console - Task #{self.task_id}", style="bold")

        rows = max(1, self.height - CHROME_LINES)
        lines = list(self.transcript)
        self.scroll = min(self.scroll, max(0, len(lines) - rows))
        end = len(lines) - self.scroll
        visible = lines[max(0, end - rows):end]
        body = Text("\n".join(visible)) if visible else Text("No events yet.", style="dim")

        parts: list[RenderableType] = [header, body]
        if self.permission is not None:
            perm = Text(f" {self.permission.message}:", style="bold yellow")
            for index, option in enumerate(self.permission.options[:9], start=1):
                perm.append(f" [{index}] {option.label} ")
            parts.append(perm)

        if self.error:
            parts.append(Text(f"Error: {self.error}", style="bold red"))
        else:
            status = f"State: {substate_label(self.state)}"
            if self.queued:
                status += f" | {self.queued} queued"
            parts.append(Text(
                f"{status} | Enter: prompt | Esc: cancel | Ctrl+D: stop | Ctrl+C: quit",
                style="dim",
            ))
        return Group(*parts)

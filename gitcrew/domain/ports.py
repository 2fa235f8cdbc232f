"""Abstract interfaces the use cases and UI depend on.

Concrete implementations live in gitcrew.infra:
- SessionBackend: TmuxBackend (tmux on a per-repository socket)
- AgentControl: FileCommandQueue (JSON command files per task)
- EventLogReader: JsonlEventLog (events.jsonl per task)
- ExecutionStateReader: ExecutionStateStore (state.json per task)
"""
from __future__ import annotations

import abc
from pathlib import Path

from .models import AgentCommand, AgentEvent, ExecutionState


class SessionBackend(abc.ABC):
    """Long-lived terminal sessions keyed by a name derived from a task id."""

    @abc.abstractmethod
    def start(
        self,
        session_name: str,
        command: str,
        *,
        cwd: Path,
        log_path: Path | None = None,
    ) -> None:
        """Create a detached session running ``command`` in ``cwd``."""

    @abc.abstractmethod
    def stop(self, session_name: str) -> None:
        """Terminate the session and every process running in it."""

    @abc.abstractmethod
    def attach_command(self, session_name: str) -> list[str]:
        """Argv that hands the terminal to the session until detach.

        The caller runs it with the host interface suspended.
        """

    @abc.abstractmethod
    def send(self, session_name: str, text: str) -> None:
        """Type ``text`` into the session followed by Enter."""

    @abc.abstractmethod
    def peek(self, session_name: str, lines: int, escape: bool = False) -> str:
        """Return the last ``lines`` lines of the session's screen.

        ``escape`` keeps terminal colour sequences.
        """

    @abc.abstractmethod
    def is_running(self, session_name: str) -> bool:
        """Whether the session exists."""

    @abc.abstractmethod
    def list_pane_processes(self, session_name: str) -> list[int]:
        """PIDs of the processes in the session's panes."""

    def list_sessions(self) -> list[str]:
        """Names of all live sessions; backends may not support listing."""
        return []


class AgentControl(abc.ABC):
    """Command channel to one task's agent process."""

    @abc.abstractmethod
    def send(self, command: AgentCommand) -> None:
        """Enqueue ``command``; raises CommandRejectedError if invalid."""

    @abc.abstractmethod
    def pending(self) -> list[AgentCommand]:
        """Queued commands the agent has not picked up yet, oldest first."""


class EventLogReader(abc.ABC):

    @abc.abstractmethod
    def read_all(self) -> list[AgentEvent]:
        """Every event in arrival order; empty when no log exists yet."""


class ExecutionStateReader(abc.ABC):

    @abc.abstractmethod
    def load(self) -> ExecutionState | None:
        """Current side-channel state, or None when nothing was written."""

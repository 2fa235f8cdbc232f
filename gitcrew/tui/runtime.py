"""Message-loop primitives shared by the board, the console and the router.

Models are plain objects with ``init``/``update``/``view``. ``update``
mutates the model and may return a Cmd: a zero-argument callable that
the host runs off the event loop and whose return value (a Msg or None)
is fed back into ``update``. Models never do blocking work in ``update``.

Special results the host intercepts instead of delivering:

- BatchMsg: run each contained Cmd
- QuitMsg: exit the program
- Effect: work only the host can do. ExecProcess suspends the UI and runs
  a child process; Confirm, Choose and AskText open a modal screen. The
  outcome comes back through the effect's callback as an ordinary Msg.

Tick is a Cmd the host schedules as a timer rather than a thread.
"""
from __future__ import annotations

import abc
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from rich.console import RenderableType


class Msg:
    """Base class for everything delivered to Model.update."""


Cmd = Callable[[], Optional[Msg]]


@dataclass
class BatchMsg(Msg):
    cmds: list[Cmd]


@dataclass
class QuitMsg(Msg):
    pass


@dataclass
class KeyPress(Msg):
    """A key event; ``key`` uses Textual key names (``enter``, ``ctrl+c``, ``a``)."""
    key: str
    character: str | None = None

    @property
    def is_printable(self) -> bool:
        return self.character is not None and len(self.character) == 1 and self.character.isprintable()


@dataclass
class WindowSize(Msg):
    width: int
    height: int


class Effect(Msg):
    """A request the host fulfils; its outcome is reported through a callback.

    ``map`` wraps the callback so the outcome can be retagged, which is
    how the workspace router routes it back to the board that asked.
    """

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> Effect:
        raise NotImplementedError


@dataclass
class ExecProcess(Effect):
    """Request to hand the terminal to a child process.

    ``on_exit`` receives the return code (None if the process could not
    be started) and the startup error, and returns the Msg to deliver.
    """
    argv: list[str]
    on_exit: Callable[[int | None, BaseException | None], Msg | None]
    cwd: Path | None = None
    env: dict[str, str] | None = None

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> ExecProcess:
        original = self.on_exit
        return replace(self, on_exit=lambda code, error: fn(original(code, error)))


class Dialog(Effect):
    """A modal question. ``resolve`` turns the answer into the Msg to deliver.

    A dismissed dialog answers None and delivers nothing.
    """

    def resolve(self, answer: Any) -> Msg | None:
        raise NotImplementedError


@dataclass
class Confirm(Dialog):
    question: str
    then: Callable[[], Msg | None]
    detail: str = ""

    def resolve(self, answer: Any) -> Msg | None:
        return self.then() if answer else None

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> Confirm:
        original = self.then
        return replace(self, then=lambda: fn(original()))


@dataclass
class Option:
    label: str
    value: Any
    hint: str = ""
    # Options sharing a section are grouped under its heading.
    section: str = ""
    variant: str = "default"


@dataclass
class Choose(Dialog):
    title: str
    options: list[Option]
    then: Callable[[Any], Msg | None]

    def resolve(self, answer: Any) -> Msg | None:
        return None if answer is None else self.then(answer)

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> Choose:
        original = self.then
        return replace(self, then=lambda value: fn(original(value)))


@dataclass
class AskText(Dialog):
    title: str
    then: Callable[[str], Msg | None]
    value: str = ""
    placeholder: str = ""

    def resolve(self, answer: Any) -> Msg | None:
        return None if answer is None else self.then(answer)

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> AskText:
        original = self.then
        return replace(self, then=lambda text: fn(original(text)))


@dataclass
class Tick:
    """Cmd that yields ``make(now)`` after ``interval`` seconds."""
    interval: float
    make: Callable[[datetime], Msg | None]

    def fire(self) -> Msg | None:
        return self.make(datetime.now())

    def __call__(self) -> Msg | None:
        time.sleep(self.interval)
        return self.fire()

    def map(self, fn: Callable[[Msg | None], Msg | None]) -> Tick:
        make = self.make
        return Tick(self.interval, lambda now: fn(make(now)))


def batch(*cmds: Cmd | None) -> Cmd | None:
    """Combine commands, dropping Nones; None if nothing is left."""
    live = [cmd for cmd in cmds if cmd is not None]
    if not live:
        return None
    if len(live) == 1:
        return live[0]
    return _Batch(live)


@dataclass
class _Batch:
    cmds: list[Cmd] = field(default_factory=list)

    def __call__(self) -> Msg:
        return BatchMsg(list(self.cmds))


def msg_cmd(msg: Msg | None) -> Cmd:
    """Cmd that immediately yields ``msg``."""
    return lambda: msg


def quit_cmd() -> Msg:
    return QuitMsg()


class Model(abc.ABC):
    """A state machine driven by the host's message loop."""

    @abc.abstractmethod
    def init(self) -> Cmd | None:
        """Commands to run once when the model is mounted."""

    @abc.abstractmethod
    def update(self, msg: Msg) -> Cmd | None:
        """Apply ``msg``; return follow-up work, if any."""

    @abc.abstractmethod
    def view(self) -> RenderableType:
        """Render the current state."""


def run_sync(cmd: Cmd | None, *, limit: int = 100) -> list[Any]:
    """Resolve ``cmd`` inline, flattening batches; skips Ticks.

    Tests use it to drive models without a host.
    """
    out: list[Any] = []
    pending: list[Cmd] = [cmd] if cmd is not None else []
    while pending and len(out) < limit:
        current = pending.pop(0)
        if isinstance(current, Tick):
            continue
        result = current()
        if isinstance(result, BatchMsg):
            pending.extend(result.cmds)
        elif result is not None:
            out.append(result)
    return out

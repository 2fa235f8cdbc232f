"""AgentConsole against the on-disk protocol files of a task."""
from __future__ import annotations

from datetime import datetime, timezone

from rich.console import Console

from gitcrew.domain.errors import CommandRejectedError
from gitcrew.domain.models import (
    AgentCommandType,
    AgentEvent,
    AgentEventType,
    ExecutionSubstate,
)
from gitcrew.domain.ports import AgentControl
from gitcrew.tui.console import AgentConsole, CommandFailed, PromptEntered
from gitcrew.tui.runtime import AskText, Choose, QuitMsg
from gitcrew.usecase.tasks import TaskService

from conftest import answer, choose, dialog, press, settle

T0 = datetime(2026, 4, 2, 8, 15, 0, tzinfo=timezone.utc)


# ── Helper factories ──

def _console(service: TaskService) -> AgentConsole:
    task = service.create("Fix login")
    console = AgentConsole.for_task(service, task.id)
    settle(console, console.init())
    return console


def _append(service: TaskService, kind: AgentEventType, payload=None) -> None:
    service.event_log(1).append(AgentEvent(kind, T0, payload))


def _ask_permission(service: TaskService) -> None:
    _append(
        service,
        AgentEventType.REQUEST_PERMISSION,
        {
            "toolCall": {"title": "Edit src/login.py"},
            "options": [
                {"optionId": "allow", "name": "Allow"},
                {"optionId": "reject", "name": "Reject"},
            ],
        },
    )


def _render(console: AgentConsole) -> str:
    out = Console(record=True, width=100, color_system=None)
    out.print(console.view())
    return out.export_text()


def _queued(service: TaskService):
    return service.control(1).pending()


class RejectingControl(AgentControl):
    def send(self, command):
        raise CommandRejectedError(command.type.value, "queue closed")

    def pending(self):
        return []


# ── Tests ──

def test_empty_log_renders_placeholder(service: TaskService) -> None:
    console = _console(service)
    text = _render(console)
    assert "ACP Console - Task #1" in text
    assert "No events yet." in text
    assert "State: unknown" in text


def test_refresh_replays_log_and_state(service: TaskService) -> None:
    console = _console(service)
    _append(service, AgentEventType.AGENT_MESSAGE_CHUNK, {"update": {"content": {"text": "Hello "}}})
    _append(service, AgentEventType.AGENT_MESSAGE_CHUNK, {"update": {"content": {"text": "there"}}})
    service.set_substate(1, ExecutionSubstate.AWAITING_USER)

    settle(console, console._refresh_cmd())
    assert console.transcript == ("[08:15:00] AGENT: Hello there",)
    assert console.state.substate is ExecutionSubstate.AWAITING_USER
    assert "State: awaiting_user" in _render(console)


def test_prompt_is_queued_and_draft_cleared(service: TaskService) -> None:
    console = _console(service)
    produced = press(console, "enter")
    prompt = dialog(produced, AskText)
    assert prompt.title == "Prompt for task #1"
    assert prompt.value == ""

    answer(console, produced, "add tests")
    queued = _queued(service)
    assert [(c.type, c.text) for c in queued] == [(AgentCommandType.PROMPT, "add tests")]
    assert console.draft == ""
    assert console.queued == 1
    assert "1 queued" in _render(console)


def test_blank_prompt_is_ignored(service: TaskService) -> None:
    console = _console(service)
    answer(console, press(console, "enter"), "   ")
    assert _queued(service) == []


def test_cancelled_prompt_sends_nothing(service: TaskService) -> None:
    console = _console(service)
    assert answer(console, press(console, "i"), None) == []
    assert _queued(service) == []


def test_permission_answered_by_number(service: TaskService) -> None:
    _console(service)
    _ask_permission(service)
    console = AgentConsole.for_task(service, 1)
    settle(console, console.init())

    assert console.permission is not None
    assert "Edit src/login.py: [1] Allow  [2] Reject" in _render(console)

    press(console, "9")
    assert _queued(service) == []

    press(console, "2")
    queued = _queued(service)
    assert [(c.type, c.option_id) for c in queued] == [(AgentCommandType.PERMISSION, "reject")]


def test_enter_offers_permission_menu(service: TaskService) -> None:
    console = _console(service)
    _ask_permission(service)
    settle(console, console._refresh_cmd())

    produced = press(console, "enter")
    menu = dialog(produced, Choose)
    assert menu.title == "Edit src/login.py"
    assert [o.label for o in menu.options] == ["[1] Allow", "[2] Reject"]

    choose(console, produced, "[1] Allow")
    assert [c.option_id for c in _queued(service)] == ["allow"]


def test_prompt_blocked_while_permission_pending(service: TaskService) -> None:
    console = _console(service)
    _ask_permission(service)
    settle(console, console._refresh_cmd())

    # A prompt dialog opened before the request arrived.
    settle(console, console.update(PromptEntered("go on")))
    assert console.error == "Answer the permission request first"
    assert console.draft == "go on"
    assert _queued(service) == []
    assert "Error: Answer the permission request first" in _render(console)


def test_escape_cancels_and_ctrl_d_stops(service: TaskService) -> None:
    console = _console(service)
    press(console, "escape")
    produced = press(console, "ctrl+d")

    assert [c.type for c in _queued(service)] == [AgentCommandType.CANCEL, AgentCommandType.STOP]
    assert any(isinstance(m, QuitMsg) for m in produced)


def test_ctrl_c_quits_without_sending(service: TaskService) -> None:
    console = _console(service)
    assert any(isinstance(m, QuitMsg) for m in press(console, "ctrl+c"))
    assert _queued(service) == []


def test_rejected_prompt_is_offered_again(service: TaskService) -> None:
    task = service.create("Fix login")
    console = AgentConsole(
        task.id,
        service.event_log(task.id),
        service.state_store(task.id),
        RejectingControl(),
        refresh_seconds=0,
    )
    settle(console, console.init())
    produced = answer(console, press(console, "enter"), "hello")

    assert any(isinstance(m, CommandFailed) for m in produced)
    assert "queue closed" in console.error
    assert dialog(press(console, "enter"), AskText).value == "hello"


def test_corrupt_state_is_reported(service: TaskService) -> None:
    console = _console(service)
    state_path = service.acp_paths(1).state
    state_path.parent.mkdir(parents=True, exist_ok=True)
    state_path.write_text("{nope")

    settle(console, console._refresh_cmd())
    assert "invalid execution state" in console.error

"""Protocol state reconstruction.

Folds a task's agent event log into what the console shows: the pending
permission request (if any) and a coalesced, human-readable transcript.
Every function here is pure and safe to call on each refresh; the log is
always replayed from the start because the writer is a different process.

Payloads follow the Agent Client Protocol JSON shapes:

- session notifications: ``{"update": {"sessionUpdate": ..., "content": {"text": ...}, "title": ...}}``
- permission requests:   ``{"toolCall": {"title": ...}, "options": [{"optionId": ..., "name": ...}]}``
- prompts sent:          ``{"text": ...}``
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from gitcrew.domain.models import AgentEvent, AgentEventType, ExecutionState
from gitcrew.protocol.wrap import wrap_text

TIME_FORMAT = "%H:%M:%S"
MIN_WRAP_WIDTH = 20
DEFAULT_PERMISSION_MESSAGE = "Permission required"


@dataclass(frozen=True)
class PermissionOption:
    option_id: str
    label: str


FALLBACK_OPTIONS: tuple[PermissionOption, ...] = (
    PermissionOption("allow", "Allow"),
    PermissionOption("deny", "Deny"),
)


@dataclass(frozen=True)
class PermissionRequest:
    message: str
    options: tuple[PermissionOption, ...]


@dataclass(frozen=True)
class ProtocolState:
    """Everything the console derives from one replay of the log."""
    permission: PermissionRequest | None
    transcript: tuple[str, ...]


# -- Payload extraction ------------------------------------------------------


def _update(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("update"), dict):
        return payload["update"]
    return {}


def agent_message_text(payload: Any) -> str:
    content = _update(payload).get("content")
    if isinstance(content, dict) and isinstance(content.get("text"), str):
        return content["text"]
    return ""


def tool_call_title(payload: Any) -> str:
    title = _update(payload).get("title")
    return title if isinstance(title, str) else ""


def prompt_text(payload: Any) -> str:
    if isinstance(payload, dict) and isinstance(payload.get("text"), str):
        return payload["text"]
    return ""


def parse_permission_request(payload: Any) -> PermissionRequest:
    """Decode a permission request, falling back to a bare Allow/Deny pair."""
    if not isinstance(payload, dict):
        return PermissionRequest(DEFAULT_PERMISSION_MESSAGE, FALLBACK_OPTIONS)

    message = DEFAULT_PERMISSION_MESSAGE
    tool_call = payload.get("toolCall")
    if isinstance(tool_call, dict) and isinstance(tool_call.get("title"), str):
        message = tool_call["title"]

    options: list[PermissionOption] = []
    raw_options = payload.get("options")
    if isinstance(raw_options, list):
        for raw in raw_options:
            if not isinstance(raw, dict) or raw.get("optionId") in (None, ""):
                continue
            option_id = str(raw["optionId"])
            options.append(PermissionOption(option_id, str(raw.get("name") or option_id)))

    return PermissionRequest(message, tuple(options) or FALLBACK_OPTIONS)


# -- Derivations -------------------------------------------------------------


def active_permission_request(events: list[AgentEvent]) -> PermissionRequest | None:
    """Latest permission request that has not been answered yet."""
    for event in reversed(events):
        if event.type is AgentEventType.PERMISSION_RESPONSE:
            return None
        if event.type is AgentEventType.REQUEST_PERMISSION:
            return parse_permission_request(event.payload)
    return None


def format_event(event: AgentEvent) -> str:
    """One transcript line for a non-streaming event, or "" to skip it."""
    ts = event.timestamp.strftime(TIME_FORMAT)
    if event.type is AgentEventType.TOOL_CALL:
        return f"[{ts}] TOOL: {tool_call_title(event.payload) or '(tool call)'}"
    if event.type is AgentEventType.REQUEST_PERMISSION:
        return f"[{ts}] PERM: Permission requested"
    if event.type is AgentEventType.PERMISSION_RESPONSE:
        return f"[{ts}] PERM: Permission responded"
    if event.type is AgentEventType.PROMPT_SENT:
        return f"[{ts}] USER: {prompt_text(event.payload) or 'Prompt sent'}"
    if event.type is AgentEventType.SESSION_END:
        return f"[{ts}] END: Session ended"
    return ""


def transcript_lines(events: Iterable[AgentEvent], viewport_width: int = 80) -> list[str]:
    """Render the log, merging consecutive agent message chunks.

    A merged message is stamped with its first chunk's time and wrapped so
    continuation lines sit under the text, not under the timestamp.
    """
    wrap_width = max(viewport_width - 4, MIN_WRAP_WIDTH)
    lines: list[str] = []
    buffer: list[str] = []
    first_chunk_at = None

    def flush() -> None:
        nonlocal first_chunk_at
        if not buffer:
            return
        prefix = f"[{first_chunk_at.strftime(TIME_FORMAT)}] AGENT: "
        wrapped = wrap_text("".join(buffer), wrap_width - len(prefix)).split("\n")
        lines.append(prefix + wrapped[0])
        indent = " " * len(prefix)
        lines.extend(indent + line for line in wrapped[1:])
        buffer.clear()
        first_chunk_at = None

    for event in events:
        if event.type is AgentEventType.AGENT_MESSAGE_CHUNK:
            text = agent_message_text(event.payload)
            if text:
                if not buffer:
                    first_chunk_at = event.timestamp
                buffer.append(text)
            continue
        flush()
        line = format_event(event)
        if line:
            lines.append(line)
    flush()
    return lines


def derive_protocol_state(events: list[AgentEvent], viewport_width: int = 80) -> ProtocolState:
    return ProtocolState(
        permission=active_permission_request(events),
        transcript=tuple(transcript_lines(events, viewport_width)),
    )


def substate_label(state: ExecutionState | None) -> str:
    if state is None:
        return "unknown"
    return state.substate.value

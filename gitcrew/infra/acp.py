"""On-disk agent protocol files for one task.

Layout under ``.crew/acp/<namespace>/<task-id>/``:

    events.jsonl   append-only event log written by the agent runner
    state.json     execution substate side channel
    commands/      queued control commands (see ipc.py)
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gitcrew.domain.errors import EventLogError
from gitcrew.domain.models import (
    AgentEvent,
    AgentEventType,
    ExecutionState,
    ExecutionSubstate,
    utc_now,
)
from gitcrew.domain.naming import DEFAULT_NAMESPACE, acp_dir
from gitcrew.domain.ports import EventLogReader, ExecutionStateReader
from gitcrew.infra.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

EVENTS_FILE = "events.jsonl"
STATE_FILE = "state.json"
COMMANDS_DIR = "commands"


class AcpPaths:
    """Locations of one task's protocol files."""

    def __init__(self, crew: Path, task_id: int, namespace: str = DEFAULT_NAMESPACE):
        self.task_id = task_id
        self.namespace = namespace or DEFAULT_NAMESPACE
        self.base = acp_dir(crew, self.namespace, task_id)

    @property
    def events(self) -> Path:
        return self.base / EVENTS_FILE

    @property
    def state(self) -> Path:
        return self.base / STATE_FILE

    @property
    def commands(self) -> Path:
        return self.base / COMMANDS_DIR


def _parse_timestamp(value: Any) -> datetime:
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def event_from_dict(data: dict[str, Any]) -> AgentEvent:
    """Decode one JSONL record; raises ValueError/KeyError on bad input."""
    return AgentEvent(
        type=AgentEventType(data["type"]),
        timestamp=_parse_timestamp(data["ts"]),
        payload=data.get("payload"),
        session_id=str(data.get("session_id") or ""),
    )


class JsonlEventLog(EventLogReader):
    """Event log stored as one JSON object per line."""

    def __init__(self, path: Path):
        self.path = path

    def read_all(self) -> list[AgentEvent]:
        """Replay the whole log.

        Malformed lines are skipped; if any were, a synthetic ``_warning``
        event reporting the count is appended at the end.
        """
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise EventLogError(self.path, str(exc)) from exc

        events: list[AgentEvent] = []
        skipped = 0
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                data = json.loads(line)
                events.append(event_from_dict(data))
            except (ValueError, KeyError, TypeError):
                skipped += 1

        if skipped:
            logger.warning("Skipped %d malformed line(s) in %s", skipped, self.path)
            events.append(
                AgentEvent(
                    type=AgentEventType.WARNING,
                    timestamp=utc_now(),
                    payload={"message": f"skipped {skipped} malformed lines"},
                )
            )
        return events

    def append(self, event: AgentEvent) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), ensure_ascii=False) + "\n")


class ExecutionStateStore(ExecutionStateReader):
    """Reads and writes ``state.json``."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> ExecutionState | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise EventLogError(self.path, str(exc)) from exc
        if not raw.strip():
            return None
        try:
            data = json.loads(raw)
            substate = ExecutionSubstate(data["execution_substate"])
        except (ValueError, KeyError, TypeError) as exc:
            raise EventLogError(self.path, f"invalid execution state: {exc}") from exc
        return ExecutionState(substate=substate, session_id=str(data.get("session_id") or ""))

    def save(self, state: ExecutionState) -> None:
        payload: dict[str, Any] = {"execution_substate": state.substate.value}
        if state.session_id:
            payload["session_id"] = state.session_id
        atomic_write_json(self.path, payload, mode=0o644)

"""File-based command queue between the UI and an agent runner.

Each command is one JSON file in the task's ``commands/`` directory,
named by a time-ordered id so a directory listing sorted by name is the
delivery order. Files are staged under a dot-prefixed temp name and
renamed into place, so the runner never sees a partial command.
"""
from __future__ import annotations

import json
import logging
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from gitcrew.domain.errors import CommandRejectedError
from gitcrew.domain.models import AgentCommand, AgentCommandType
from gitcrew.domain.ports import AgentControl
from gitcrew.infra.durable_write import atomic_write_json

logger = logging.getLogger(__name__)


def new_command_id() -> str:
    return f"{time.time_ns():020d}-{secrets.token_hex(4)}"


def validate_command(command: AgentCommand) -> None:
    if command.type is AgentCommandType.PROMPT and not command.text:
        raise CommandRejectedError(command.type.value, "prompt text is required")
    if command.type is AgentCommandType.PERMISSION and not command.option_id:
        raise CommandRejectedError(command.type.value, "permission option_id is required")


def command_to_dict(command: AgentCommand) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": command.id,
        "type": command.type.value,
        "created_at": command.created_at.isoformat(),
    }
    if command.text:
        data["text"] = command.text
    if command.option_id:
        data["option_id"] = command.option_id
    return data


def command_from_dict(data: dict[str, Any]) -> AgentCommand:
    created = datetime.fromisoformat(str(data["created_at"]))
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return AgentCommand(
        type=AgentCommandType(data["type"]),
        text=str(data.get("text") or ""),
        option_id=str(data.get("option_id") or ""),
        id=str(data["id"]),
        created_at=created,
    )


class FileCommandQueue(AgentControl):
    """Command channel backed by a directory of JSON files."""

    def __init__(self, commands_dir: Path):
        self.commands_dir = commands_dir

    def send(self, command: AgentCommand) -> None:
        if not command.id:
            command.id = new_command_id()
        validate_command(command)
        atomic_write_json(
            self.commands_dir / f"{command.id}.json",
            command_to_dict(command),
            mode=0o600,
            dir_mode=0o750,
        )
        logger.debug("Queued %s command %s", command.type.value, command.id)

    def pending(self) -> list[AgentCommand]:
        """Commands not yet picked up by the runner, in delivery order.

        Unreadable files are logged and skipped; the runner owns them.
        """
        if not self.commands_dir.is_dir():
            return []
        commands = []
        for path in sorted(self.commands_dir.glob("[!.]*.json")):
            try:
                command = command_from_dict(json.loads(path.read_text(encoding="utf-8")))
                validate_command(command)
            except FileNotFoundError:
                continue
            except (OSError, ValueError, KeyError, TypeError, CommandRejectedError) as exc:
                logger.warning("Skipping unreadable command %s: %s", path.name, exc)
                continue
            commands.append(command)
        return commands

"""JSON task store at ``.crew/tasks.json``.

File format::

    {"version": 1, "next_id": 4, "tasks": [{"id": 1, ...}, ...]}

``next_id`` only ever grows, so ids of deleted tasks are never reused.

The UI and the ``session-ended`` callback run in different processes and
both write the file. Every access holds an ``flock`` on the sibling
``tasks.json.lock`` (shared for reads, exclusive for writes), and
read-modify-write goes through :meth:`JsonTaskStore.update` so the read
and the write happen under one exclusive lock.
"""
from __future__ import annotations

import fcntl
import json
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from gitcrew.domain.errors import TaskNotFoundError, TaskStoreCorruptedError
from gitcrew.domain.models import Task
from gitcrew.infra.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

STORE_VERSION = 1

T = TypeVar("T")


class JsonTaskStore:
    """Task persistence for one repository."""

    def __init__(self, path: Path):
        self.path = path
        self.lock_path = path.with_name(path.name + ".lock")
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self, *, exclusive: bool) -> Iterator[None]:
        with self._lock:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.lock_path, "a", encoding="utf-8") as handle:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                try:
                    yield
                finally:
                    fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read(self) -> tuple[int, list[Task]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return 1, []
        try:
            data: dict[str, Any] = json.loads(raw) if raw.strip() else {}
            if not isinstance(data, dict):
                raise ValueError("top level must be an object")
            tasks = [Task.from_dict(item) for item in data.get("tasks", [])]
            next_id = int(data.get("next_id", 1))
        except (ValueError, KeyError, TypeError) as exc:
            raise TaskStoreCorruptedError(self.path, str(exc)) from exc
        highest = max((task.id for task in tasks), default=0)
        return max(next_id, highest + 1), tasks

    def _write(self, next_id: int, tasks: list[Task]) -> None:
        payload = {
            "version": STORE_VERSION,
            "next_id": next_id,
            "tasks": [task.to_dict() for task in sorted(tasks, key=lambda t: t.id)],
        }
        atomic_write_json(self.path, payload)

    def initialize(self) -> bool:
        """Create an empty store; returns False if one already exists."""
        with self._locked(exclusive=True):
            if self.path.exists():
                return False
            self._write(1, [])
            return True

    def list(self, *, include_terminal: bool = True) -> list[Task]:
        with self._locked(exclusive=False):
            _, tasks = self._read()
        if include_terminal:
            return tasks
        return [task for task in tasks if not task.status.is_terminal]

    def get(self, task_id: int) -> Task:
        for task in self.list():
            if task.id == task_id:
                return task
        raise TaskNotFoundError(task_id)

    def create(self, task: Task) -> Task:
        """Assign the next id to ``task`` and persist it."""
        with self._locked(exclusive=True):
            next_id, tasks = self._read()
            task.id = next_id
            tasks.append(task)
            self._write(next_id + 1, tasks)
        logger.info("Created task #%d: %s", task.id, task.title)
        return task

    def update(self, task_id: int, fn: Callable[[Task], T]) -> T:
        """Apply ``fn`` to the stored task and save it, all under one lock.

        ``fn`` mutates the task in place; its return value is passed
        through. Nothing is written when ``fn`` raises.
        """
        with self._locked(exclusive=True):
            next_id, tasks = self._read()
            for task in tasks:
                if task.id == task_id:
                    break
            else:
                raise TaskNotFoundError(task_id)
            result = fn(task)
            self._write(next_id, tasks)
        return result

    def save(self, task: Task) -> None:
        """Overwrite the stored copy of ``task`` with every field of ``task``."""
        with self._locked(exclusive=True):
            next_id, tasks = self._read()
            for i, existing in enumerate(tasks):
                if existing.id == task.id:
                    tasks[i] = task
                    break
            else:
                raise TaskNotFoundError(task.id)
            self._write(next_id, tasks)

    def delete(self, task_id: int) -> None:
        with self._locked(exclusive=True):
            next_id, tasks = self._read()
            remaining = [task for task in tasks if task.id != task_id]
            if len(remaining) == len(tasks):
                raise TaskNotFoundError(task_id)
            self._write(next_id, remaining)
        logger.info("Deleted task #%d", task_id)

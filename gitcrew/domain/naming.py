"""Names and paths derived from task ids.

Everything here is a pure function: the same task id always maps to the
same session, branch and on-disk locations under ``.crew/``.
"""
from __future__ import annotations

from pathlib import Path

CREW_DIR_NAME = ".crew"
DEFAULT_NAMESPACE = "default"


def session_name(task_id: int) -> str:
    return f"crew-{task_id}"


def review_session_name(task_id: int) -> str:
    return f"crew-{task_id}-review"


def branch_name(task_id: int, issue: int = 0) -> str:
    if issue > 0:
        return f"crew-{task_id}-gh-{issue}"
    return f"crew-{task_id}"


def task_id_from_session(name: str) -> int | None:
    """Inverse of session_name; None for review and foreign sessions."""
    prefix = "crew-"
    if not name.startswith(prefix):
        return None
    rest = name[len(prefix):]
    return int(rest) if rest.isdigit() else None


def crew_dir(repo_root: Path) -> Path:
    return repo_root / CREW_DIR_NAME


def tasks_path(crew: Path) -> Path:
    return crew / "tasks.json"


def config_path(crew: Path) -> Path:
    return crew / "config.yaml"


def worktree_path(crew: Path, task_id: int) -> Path:
    return crew / "worktrees" / str(task_id)


def task_log_path(crew: Path, task_id: int) -> Path:
    return crew / "logs" / f"task-{task_id}.log"


def review_log_path(crew: Path, task_id: int) -> Path:
    return crew / "logs" / f"task-{task_id}-review.log"


def prompt_path(crew: Path, task_id: int) -> Path:
    return crew / "scripts" / f"task-{task_id}-prompt.txt"


def review_prompt_path(crew: Path, task_id: int) -> Path:
    return crew / "scripts" / f"task-{task_id}-review-prompt.txt"


def description_path(crew: Path, task_id: int) -> Path:
    return crew / "scripts" / f"task-{task_id}-description.md"


def tmux_socket_path(crew: Path) -> Path:
    return crew / "tmux.sock"


def acp_dir(crew: Path, namespace: str, task_id: int) -> Path:
    return crew / "acp" / namespace / str(task_id)

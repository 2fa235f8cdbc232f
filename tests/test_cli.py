"""Command line entry point (non-interactive subcommands only)."""
from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gitcrew.app import build_parser, run
from gitcrew.domain.models import ExecutionSubstate, TaskStatus
from gitcrew.infra.acp import AcpPaths, ExecutionStateStore
from gitcrew.infra.task_store import JsonTaskStore


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("GITCREW_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("GITCREW_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("GITCREW_DEFAULT_AGENT", raising=False)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    (path / ".git").mkdir(parents=True)
    assert run(["--repo", str(path), "init"]) == 0
    return path


def _tasks(repo: Path):
    return JsonTaskStore(repo / ".crew" / "tasks.json").list()


def test_init_twice(tmp_path: Path, capsys) -> None:
    path = tmp_path / "project"
    (path / ".git").mkdir(parents=True)
    assert run(["--repo", str(path), "init"]) == 0
    assert run(["--repo", str(path), "init"]) == 0
    out = capsys.readouterr().out
    assert f"Initialized gitcrew in {path}" in out
    assert "already initialized" in out
    assert (tmp_path / "logs" / "gitcrew.log").exists()


def test_new_and_list(repo: Path, capsys) -> None:
    assert run(["--repo", str(repo), "new", "Fix login", "--base", "main", "--label", "bug"]) == 0
    assert run(["--repo", str(repo), "list"]) == 0
    out = capsys.readouterr().out
    assert "Created task #1: Fix login" in out
    assert "#1" in out and "todo" in out
    assert _tasks(repo)[0].labels == ["bug"]


def test_list_hides_terminal_tasks_unless_all(repo: Path, capsys) -> None:
    run(["--repo", str(repo), "new", "Old", "--base", "main"])
    run(["--repo", str(repo), "close", "1"])
    capsys.readouterr()

    run(["--repo", str(repo), "list"])
    assert "No tasks." in capsys.readouterr().out
    run(["--repo", str(repo), "list", "--all"])
    assert "closed" in capsys.readouterr().out


def test_status_guard_and_force(repo: Path, capsys) -> None:
    run(["--repo", str(repo), "new", "Fix login", "--base", "main"])
    assert run(["--repo", str(repo), "status", "1", "done"]) == 1
    assert "error:" in capsys.readouterr().err
    assert run(["--repo", str(repo), "status", "1", "done", "--force"]) == 0
    assert _tasks(repo)[0].status is TaskStatus.DONE


def test_session_callbacks(repo: Path) -> None:
    run(["--repo", str(repo), "new", "Fix login", "--base", "main"])
    assert run(["--repo", str(repo), "status", "1", "in_progress"]) == 1
    assert run(["--repo", str(repo), "status", "1", "in_progress", "--force"]) == 0

    assert run(["--repo", str(repo), "substate", "1", "awaiting_permission", "--session-id", "s-9"]) == 0
    state = ExecutionStateStore(AcpPaths(repo / ".crew", 1).state).load()
    assert state.substate is ExecutionSubstate.AWAITING_PERMISSION
    assert state.session_id == "s-9"

    assert run(["--repo", str(repo), "session-ended", "1", "--exit-code", "0"]) == 0
    assert _tasks(repo)[0].status is TaskStatus.FOR_REVIEW


def test_errors_exit_with_one(tmp_path: Path, repo: Path, capsys) -> None:
    assert run(["--repo", str(repo), "stop", "42"]) == 1
    assert "error:" in capsys.readouterr().err

    plain = tmp_path / "plain"
    plain.mkdir()
    assert run(["--repo", str(plain), "list"]) == 1


def test_uninitialized_repository(tmp_path: Path, capsys) -> None:
    path = tmp_path / "fresh"
    (path / ".git").mkdir(parents=True)
    assert run(["--repo", str(path), "list"]) == 1
    assert "error:" in capsys.readouterr().err


def test_workspace_commands(repo: Path, tmp_path: Path, capsys) -> None:
    assert run(["workspace", "list"]) == 0
    assert "No repositories" in capsys.readouterr().out

    assert run(["workspace", "add", str(repo)]) == 0
    assert run(["workspace", "add", str(repo)]) == 1
    assert run(["workspace", "list"]) == 0
    out = capsys.readouterr().out
    assert f"Added {repo}" in out
    assert "project" in out
    assert (tmp_path / "home" / "workspaces.yaml").exists()

    assert run(["workspace", "remove", str(repo)]) == 0
    assert run(["workspace", "remove", str(repo)]) == 1


def test_parser_rejects_unknown_status() -> None:
    with pytest.raises(SystemExit):
        build_parser().parse_args(["status", "1", "sideways"])


def test_show_edit_and_comment(repo: Path, capsys) -> None:
    run(["--repo", str(repo), "new", "Fix login", "--base", "main", "-d", "Form crashes"])
    assert run(["--repo", str(repo), "edit", "1", "--title", "Fix sign-in", "--label", "auth"]) == 0
    assert run(["--repo", str(repo), "comment", "1", "Reproduced on Safari"]) == 0
    assert run(["--repo", str(repo), "comment", "1", "  "]) == 1
    capsys.readouterr()

    assert run(["--repo", str(repo), "show", "1"]) == 0
    out = capsys.readouterr().out
    assert "Task #1: Fix sign-in" in out
    assert "Status: To Do" in out
    assert "Labels: auth" in out
    assert "Form crashes" in out
    assert "Reproduced on Safari" in out

    assert run(["--repo", str(repo), "show", "1", "--last-review"]) == 1
    assert "no review yet" in capsys.readouterr().err


def test_session_commands_need_a_live_session(repo: Path, capsys) -> None:
    run(["--repo", str(repo), "new", "Fix login", "--base", "main"])
    assert run(["--repo", str(repo), "peek", "1"]) == 1
    assert run(["--repo", str(repo), "send", "1", "yes"]) == 1
    assert run(["--repo", str(repo), "review", "1"]) == 1
    assert capsys.readouterr().err.count("error:") == 3


def test_review_callback_ignored_unless_reviewing(repo: Path) -> None:
    run(["--repo", str(repo), "new", "Fix login", "--base", "main"])
    assert run(["--repo", str(repo), "review-session-ended", "1", "--exit-code", "0"]) == 0
    assert _tasks(repo)[0].status is TaskStatus.TODO


def test_parser_knows_peek_defaults() -> None:
    args = build_parser().parse_args(["peek", "3"])
    assert (args.id, args.lines, args.escape) == (3, 30, False)

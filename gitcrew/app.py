"""Command line entry point."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from gitcrew.domain.errors import CrewError
from gitcrew.domain.models import ExecutionSubstate, Task, TaskStatus
from gitcrew.domain.review import REVIEWER_AUTHOR
from gitcrew.infra.git import find_git_root
from gitcrew.infra.workspace_store import WorkspaceStore
from gitcrew.usecase.tasks import DEFAULT_PEEK_LINES, StartRequest, TaskService, init_repository

logger = logging.getLogger(__name__)

TUI_COMMANDS = {None, "tui", "console"}


def _log_dir() -> Path:
    override = os.getenv("GITCREW_LOG_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".gitcrew" / "logs"


def configure_logging(*, stderr: bool) -> None:
    """Rotating file log; stderr only when no TUI owns the terminal."""
    log_level = os.getenv("GITCREW_LOG_LEVEL", "INFO").upper()
    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_dir / "gitcrew.log", maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    if stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
        stream_handler.setLevel(logging.WARNING)
        root.addHandler(stream_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitcrew",
        description="Run coding agents in parallel git worktrees",
    )
    parser.add_argument(
        "--repo", metavar="PATH",
        help="Repository to operate on (default: the one containing the cwd)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("tui", help="Open the task board for the repository (default)")
    sub.add_parser("init", help="Create .crew/ with an empty task store")

    workspace = sub.add_parser("workspace", help="Multi-repository workspace")
    workspace_sub = workspace.add_subparsers(dest="workspace_command", metavar="ACTION")
    workspace_sub.add_parser("list", help="List workspace repositories")
    add = workspace_sub.add_parser("add", help="Add a repository")
    add.add_argument("path")
    remove = workspace_sub.add_parser("remove", help="Remove a repository")
    remove.add_argument("path")

    new = sub.add_parser("new", help="Create a task")
    new.add_argument("title")
    new.add_argument("-d", "--description", default="")
    new.add_argument("--parent", type=int, metavar="ID")
    new.add_argument("--label", action="append", default=[], metavar="LABEL")
    new.add_argument("--base", default="", metavar="BRANCH", help="Base branch (default: current)")
    new.add_argument("--issue", type=int, default=0, metavar="N")

    list_parser = sub.add_parser("list", help="List tasks")
    list_parser.add_argument("--all", action="store_true", help="Include closed and merged tasks")

    start = sub.add_parser("start", help="Start a task's agent session")
    start.add_argument("id", type=int)
    start.add_argument("agent", nargs="?", default="", help="Configured agent (default: config default)")
    start.add_argument("--command", dest="agent_command", default="", help="Ad hoc command instead of an agent")

    for name, text in (("stop", "Stop a task's session"),
                       ("close", "Close a task"),
                       ("merge", "Merge a task's branch")):
        action = sub.add_parser(name, help=text)
        action.add_argument("id", type=int)

    status = sub.add_parser("status", help="Change a task's status")
    status.add_argument("id", type=int)
    status.add_argument("status", choices=[s.value for s in TaskStatus])
    status.add_argument("--force", action="store_true", help="Allow an unguarded transition")

    show = sub.add_parser("show", help="Show a task with its comments")
    show.add_argument("id", type=int)
    show.add_argument("--last-review", action="store_true", help="Only the latest reviewer comment")

    edit = sub.add_parser("edit", help="Change a task's title, description or labels")
    edit.add_argument("id", type=int)
    edit.add_argument("--title")
    edit.add_argument("-d", "--description")
    edit.add_argument("--label", action="append", dest="labels", metavar="LABEL",
                      help="Replace the labels (repeatable)")

    comment = sub.add_parser("comment", help="Add a comment to a task")
    comment.add_argument("id", type=int)
    comment.add_argument("text")

    review = sub.add_parser("review", help="Start a reviewer session for a task")
    review.add_argument("id", type=int)
    review.add_argument("agent", nargs="?", default="", help="Reviewer agent (default: config default_reviewer)")
    review.add_argument("-m", "--message", default="", help="Extra instructions for the reviewer")

    peek = sub.add_parser("peek", help="Print the last lines of a task's session")
    peek.add_argument("id", type=int)
    peek.add_argument("-n", "--lines", type=int, default=DEFAULT_PEEK_LINES)
    peek.add_argument("-e", "--escape", action="store_true", help="Keep terminal colour codes")

    send = sub.add_parser("send", help="Type text into a task's session, then Enter")
    send.add_argument("id", type=int)
    send.add_argument("keys")

    console = sub.add_parser("console", help="Open the agent console of a task")
    console.add_argument("id", type=int)

    ended = sub.add_parser("session-ended", help="Record that a task's session exited")
    ended.add_argument("id", type=int)
    ended.add_argument("--exit-code", type=int, default=None)

    review_ended = sub.add_parser("review-session-ended", help="Record that a reviewer session exited")
    review_ended.add_argument("id", type=int)
    review_ended.add_argument("--exit-code", type=int, default=None)

    substate = sub.add_parser("substate", help="Report a task's execution substate")
    substate.add_argument("id", type=int)
    substate.add_argument("state", choices=[s.value for s in ExecutionSubstate])
    substate.add_argument("--session-id", default="")
    return parser


def _repo_root(args: argparse.Namespace) -> Path:
    return find_git_root(Path(args.repo or Path.cwd()))


def _service(args: argparse.Namespace) -> TaskService:
    return TaskService.for_repo(_repo_root(args))


def _print_task_row(task, substate: ExecutionSubstate | None = None) -> None:
    parts = [f"#{task.id:<4}", f"{task.status.value:<12}"]
    if task.is_blocked:
        parts.append("[blocked]")
    if substate is not None and substate.compact_label:
        parts.append(f"[{substate.compact_label}]")
    parts.append(task.title)
    if task.agent:
        parts.append(f"({task.agent})")
    print("  ".join(parts))


def _print_task(task: Task, *, last_review: bool = False) -> None:
    if last_review:
        reviews = [c for c in task.comments if c.author == REVIEWER_AUTHOR]
        if not reviews:
            raise CrewError(f"Task #{task.id} has no review yet")
        print(reviews[-1].text)
        return
    print(f"Task #{task.id}: {task.title}")
    print(f"Status: {task.status.display}" + (f" (blocked: {task.block_reason})" if task.is_blocked else ""))
    if task.agent:
        print(f"Agent: {task.agent}  Session: {task.session}")
    print(f"Base: {task.base_branch}")
    if task.labels:
        print(f"Labels: {', '.join(task.labels)}")
    if task.parent_id is not None:
        print(f"Parent: #{task.parent_id}")
    if task.description:
        print()
        print(task.description)
    if task.comments:
        print()
        print("Comments:")
        for comment in task.comments:
            stamp = comment.time.astimezone().strftime("%Y-%m-%d %H:%M")
            print(f"  [{stamp}] {comment.author or 'user'}:")
            for line in comment.text.splitlines():
                print(f"    {line}")


def _run_workspace(args: argparse.Namespace) -> int:
    store = WorkspaceStore()
    if args.workspace_command == "add":
        print(f"Added {store.add_repo(args.path)}")
        return 0
    if args.workspace_command == "remove":
        print(f"Removed {store.remove_repo(args.path)}")
        return 0
    if args.workspace_command == "list":
        repos = store.load().repos
        if not repos:
            print("No repositories in the workspace.")
        for repo in repos:
            pin = "*" if repo.pinned else " "
            print(f"{pin} {repo.display_name:<24} {repo.path}")
        return 0

    from gitcrew.tui.host import ModelHost
    from gitcrew.tui.workspace.router import WorkspaceRouter

    ModelHost(WorkspaceRouter(store)).run()
    return 0


def _run_command(args: argparse.Namespace) -> int:
    command = args.command
    if command == "workspace":
        return _run_workspace(args)

    if command == "init":
        root = _repo_root(args)
        if init_repository(root):
            print(f"Initialized gitcrew in {root}")
        else:
            print(f"gitcrew is already initialized in {root}")
        return 0

    service = _service(args)

    if command in (None, "tui"):
        from gitcrew.tui.board import RepoBoard
        from gitcrew.tui.host import ModelHost

        ModelHost(RepoBoard(service)).run()
        return 0

    if command == "console":
        from gitcrew.tui.console import AgentConsole
        from gitcrew.tui.host import ModelHost

        ModelHost(AgentConsole.for_task(service, args.id)).run()
        return 0

    if command == "new":
        task = service.create(
            args.title,
            args.description,
            parent_id=args.parent,
            labels=args.label,
            base_branch=args.base,
            issue=args.issue,
        )
        print(f"Created task #{task.id}: {task.title}")
    elif command == "list":
        tasks = service.list(include_terminal=args.all)
        if not tasks:
            print("No tasks.")
        substates = service.substates(tasks)
        for task in tasks:
            _print_task_row(task, substates.get(task.id))
    elif command == "start":
        if args.agent_command:
            request = StartRequest(command=args.agent_command)
        else:
            request = StartRequest(agent=args.agent or service.config.default_agent)
        task = service.start(args.id, request)
        print(f"Started task #{task.id} in session {task.session}")
    elif command == "stop":
        service.stop(args.id)
        print(f"Stopped task #{args.id}")
    elif command == "close":
        service.close(args.id)
        print(f"Closed task #{args.id}")
    elif command == "merge":
        service.merge(args.id)
        print(f"Merged task #{args.id}")
    elif command == "status":
        task = service.set_status(args.id, TaskStatus(args.status), force=args.force)
        print(f"Task #{task.id} is now {task.status.value}")
    elif command == "show":
        _print_task(service.get(args.id), last_review=args.last_review)
    elif command == "edit":
        task = service.edit(args.id, title=args.title, description=args.description, labels=args.labels)
        print(f"Updated task #{task.id}")
    elif command == "comment":
        service.add_comment(args.id, args.text)
        print(f"Commented on task #{args.id}")
    elif command == "review":
        task = service.review(args.id, args.agent, request=args.message)
        print(f"Reviewing task #{task.id} with {task.agent} in session {task.session}")
    elif command == "peek":
        print(service.peek(args.id, args.lines, escape=args.escape))
    elif command == "send":
        service.send_keys(args.id, args.keys)
    elif command == "review-session-ended":
        service.review_session_ended(args.id, args.exit_code)
    elif command == "session-ended":
        service.session_ended(args.id, args.exit_code)
    elif command == "substate":
        service.set_substate(args.id, ExecutionSubstate(args.state), args.session_id)
    return 0


def run(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(stderr=args.command not in TUI_COMMANDS and not (
        args.command == "workspace" and args.workspace_command is None
    ))
    logger.debug("gitcrew %s", " ".join(argv if argv is not None else sys.argv[1:]))
    try:
        return _run_command(args)
    except CrewError as exc:
        logger.info("Command %s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()

"""Task use cases for one repository.

TaskService is the only place task state changes. Every operation
re-checks the lifecycle guards and raises InvalidTransitionError when
called with an illegal action; the board never offers those actions, so
the error only reaches callers that bypass the UI (CLI, tests).
"""
from __future__ import annotations

import logging
import shlex
import sys
from dataclasses import dataclass
from pathlib import Path

from gitcrew.domain import lifecycle
from gitcrew.domain.errors import (
    CrewError,
    EmptyMessageError,
    EmptyTitleError,
    InvalidTransitionError,
    NoAgentError,
    NoSessionError,
    NotInitializedError,
    NoWorktreeError,
    SessionRunningError,
)
from gitcrew.domain.lifecycle import TaskAction
from gitcrew.domain.models import (
    Comment,
    ExecutionState,
    ExecutionSubstate,
    Task,
    TaskStatus,
    utc_now,
)
from gitcrew.domain.naming import (
    crew_dir,
    prompt_path,
    review_log_path,
    review_prompt_path,
    review_session_name,
    session_name,
    task_log_path,
    tasks_path,
)
from gitcrew.domain.ports import SessionBackend
from gitcrew.domain.review import REVIEWER_AUTHOR, extract_review_result, review_prompt
from gitcrew.infra.acp import AcpPaths, ExecutionStateStore, JsonlEventLog
from gitcrew.infra.config import (
    SAMPLE_CONFIG,
    CrewConfig,
    ReviewMode,
    load_config,
    render_agent_command,
)
from gitcrew.infra.durable_write import atomic_write_text
from gitcrew.infra.git import GitRepo, WorktreeManager
from gitcrew.infra.ipc import FileCommandQueue
from gitcrew.infra.task_store import JsonTaskStore
from gitcrew.infra.tmux import TmuxBackend

logger = logging.getLogger(__name__)

DEFAULT_PEEK_LINES = 30

# Forced moves to these statuses end the live session.
SESSION_ENDING = frozenset({TaskStatus.STOPPED, TaskStatus.CLOSED, TaskStatus.MERGED})


@dataclass
class StartRequest:
    """Agent selection for Start: a configured name or an ad hoc command."""
    agent: str = ""
    command: str = ""


def _require(task: Task, action: TaskAction) -> None:
    if not lifecycle.is_allowed(task, action):
        raise InvalidTransitionError(task.id, task.status.value, action.value)


def init_repository(repo_root: Path) -> bool:
    """Create ``.crew`` with an empty task store; False if already present."""
    crew = crew_dir(repo_root)
    created = not crew.exists()
    crew.mkdir(parents=True, exist_ok=True)
    gitignore = crew / ".gitignore"
    if not gitignore.exists():
        gitignore.write_text("*\n", encoding="utf-8")
    config_file = crew / "config.yaml"
    if not config_file.exists():
        config_file.write_text(SAMPLE_CONFIG, encoding="utf-8")
    JsonTaskStore(tasks_path(crew)).initialize()
    if created:
        logger.info("Initialized gitcrew in %s", repo_root)
    return created


class TaskService:
    """Task lifecycle operations bound to one repository."""

    def __init__(
        self,
        repo_root: Path,
        store: JsonTaskStore,
        backend: SessionBackend,
        worktrees: WorktreeManager,
        *,
        config: CrewConfig | None = None,
        config_warnings: list[str] | None = None,
        executable: str | None = None,
    ):
        self.repo_root = repo_root
        self.crew = crew_dir(repo_root)
        self.store = store
        self.backend = backend
        self.worktrees = worktrees
        self.config = config or CrewConfig()
        self.config_warnings = list(config_warnings or [])
        self.executable = executable or sys.executable

    @classmethod
    def for_repo(cls, repo_root: Path, *, global_config: Path | None = None) -> TaskService:
        """Wire the default infrastructure for ``repo_root``."""
        crew = crew_dir(repo_root)
        if not crew.is_dir():
            raise NotInitializedError(repo_root)
        config, warnings = load_config(repo_root, global_path=global_config)
        return cls(
            repo_root,
            JsonTaskStore(tasks_path(crew)),
            TmuxBackend(crew),
            WorktreeManager(GitRepo(repo_root), crew),
            config=config,
            config_warnings=warnings,
        )

    # -- Queries -------------------------------------------------------------

    def get(self, task_id: int) -> Task:
        return self.store.get(task_id)

    def list(self, *, include_terminal: bool = True) -> list[Task]:
        return sorted(self.store.list(include_terminal=include_terminal), key=lifecycle.sort_key)

    def acp_paths(self, task_id: int) -> AcpPaths:
        return AcpPaths(self.crew, task_id, self.config.namespace)

    def event_log(self, task_id: int) -> JsonlEventLog:
        return JsonlEventLog(self.acp_paths(task_id).events)

    def state_store(self, task_id: int) -> ExecutionStateStore:
        return ExecutionStateStore(self.acp_paths(task_id).state)

    def control(self, task_id: int) -> FileCommandQueue:
        return FileCommandQueue(self.acp_paths(task_id).commands)

    def substates(self, tasks: list[Task]) -> dict[int, ExecutionSubstate]:
        """Side-channel substates of tasks with a live session.

        Unreadable state files are logged and left out; a missing entry
        means unknown.
        """
        result: dict[int, ExecutionSubstate] = {}
        for task in tasks:
            if not task.has_session:
                continue
            try:
                state = self.state_store(task.id).load()
            except CrewError as exc:
                logger.warning("Ignoring execution state of task #%d: %s", task.id, exc)
                continue
            if state is not None:
                result[task.id] = state.substate
        return result

    def log_path(self, task_id: int) -> Path:
        return task_log_path(self.crew, task_id)

    # -- Creation and editing ------------------------------------------------

    def create(
        self,
        title: str,
        description: str = "",
        *,
        parent_id: int | None = None,
        labels: list[str] | tuple[str, ...] = (),
        base_branch: str = "",
        issue: int = 0,
    ) -> Task:
        title = title.strip()
        if not title:
            raise EmptyTitleError()
        if parent_id is not None:
            self.store.get(parent_id)
        task = Task(
            id=0,
            title=title,
            description=description.strip(),
            base_branch=base_branch or self.worktrees.repo.current_branch(),
            parent_id=parent_id,
            issue=issue,
        )
        for label in labels:
            task.add_label(label)
        return self.store.create(task)

    def edit(
        self,
        task_id: int,
        *,
        title: str | None = None,
        description: str | None = None,
        labels: list[str] | None = None,
    ) -> Task:
        """Change the given fields; None leaves a field as it is."""
        if title is not None and not title.strip():
            raise EmptyTitleError()

        def apply(task: Task) -> Task:
            if title is not None:
                task.title = title.strip()
            if description is not None:
                task.description = description.strip()
            if labels is not None:
                task.labels = []
                for label in labels:
                    task.add_label(label)
            return task

        return self.store.update(task_id, apply)

    def update_description(self, task_id: int, description: str) -> Task:
        return self.edit(task_id, description=description)

    def add_comment(self, task_id: int, text: str, *, author: str = "") -> Comment:
        text = text.strip()
        if not text:
            raise EmptyMessageError()
        comment = Comment(text, author=author)

        def apply(task: Task) -> Comment:
            task.comments.append(comment)
            return comment

        self.store.update(task_id, apply)
        logger.info("Added comment to task #%d (%s)", task_id, author or "user")
        return comment

    def delete(self, task_id: int) -> None:
        task = self.store.get(task_id)
        self.worktrees.remove(task, force=True)
        self._stop_backend_session(task)
        self.store.delete(task_id)

    # -- Lifecycle -----------------------------------------------------------

    def start(self, task_id: int, request: StartRequest) -> Task:
        task = self.store.get(task_id)
        _require(task, TaskAction.START)
        if not request.agent and not request.command.strip():
            raise NoAgentError(task_id)

        name = session_name(task.id)
        if self.backend.is_running(name):
            raise SessionRunningError(name)

        if request.command.strip():
            template = request.command.strip()
            agent_label = template
        else:
            template = self.config.resolve_agent(request.agent).command
            agent_label = request.agent

        had_worktree = self.worktrees.exists(task)
        worktree = self.worktrees.create(task)
        try:
            prompt_file = prompt_path(self.crew, task.id)
            atomic_write_text(prompt_file, self._prompt_text(task))
            command = self._render(template, task, worktree, prompt_file)
            self.backend.start(
                name,
                self._session_command(task, command, setup=not had_worktree),
                cwd=worktree,
                log_path=self.log_path(task.id),
            )
        except Exception:
            if not had_worktree:
                logger.info("Rolling back worktree of task #%d after failed start", task.id)
                self.worktrees.remove(task, force=True)
            raise

        def apply(stored: Task) -> Task:
            stored.status = TaskStatus.IN_PROGRESS
            stored.agent = agent_label
            stored.session = name
            stored.started_at = utc_now()
            return stored

        task = self.store.update(task_id, apply)
        logger.info("Started task #%d with agent %s in session %s", task.id, agent_label, name)
        return task

    def _prompt_text(self, task: Task) -> str:
        parts = [f"# Task #{task.id}: {task.title}"]
        if task.description:
            parts.append(task.description)
        return "\n\n".join(parts) + "\n"

    def _render(self, template: str, task: Task, worktree: Path, prompt_file: Path) -> str:
        return render_agent_command(
            template,
            task_id=task.id,
            title=task.title,
            description=task.description,
            branch=self.worktrees.branch_for(task),
            worktree=worktree,
            prompt_file=prompt_file,
        )

    def _session_command(
        self,
        task: Task,
        command: str,
        *,
        setup: bool = False,
        callback: str = "session-ended",
    ) -> str:
        """Wrap the agent command so the session reports its own exit."""
        if setup and self.config.worktree.setup_command:
            command = f"{self.config.worktree.setup_command} && {command}"
        report = " ".join([
            shlex.quote(self.executable), "-m", "gitcrew",
            "--repo", shlex.quote(str(self.repo_root)),
            callback, str(task.id), "--exit-code", "$?",
        ])
        return f"{command}; {report}"

    def _stop_backend_session(self, task: Task) -> None:
        if task.has_session:
            self.backend.stop(task.session)

    def stop(self, task_id: int) -> Task:
        """Tear down the live session; a running review goes back to for_review."""
        task = self.store.get(task_id)
        if not task.has_session:
            raise NoSessionError(task_id)
        _require(task, TaskAction.STOP)
        self._stop_backend_session(task)

        def apply(stored: Task) -> Task:
            _clear_session(stored)
            if stored.status is TaskStatus.REVIEWING:
                stored.status = TaskStatus.FOR_REVIEW
            else:
                stored.status = TaskStatus.STOPPED
            return stored

        task = self.store.update(task_id, apply)
        logger.info("Stopped task #%d; status now %s", task.id, task.status.value)
        return task

    def _live_session(self, task_id: int) -> str:
        task = self.store.get(task_id)
        if not task.has_session:
            raise NoSessionError(task_id)
        _require(task, TaskAction.ATTACH)
        return task.session

    def attach_command(self, task_id: int) -> list[str]:
        return self.backend.attach_command(self._live_session(task_id))

    def peek(self, task_id: int, lines: int = DEFAULT_PEEK_LINES, *, escape: bool = False) -> str:
        """Last ``lines`` lines of the task's session screen."""
        return self.backend.peek(self._live_session(task_id), max(1, lines), escape)

    def send_keys(self, task_id: int, keys: str) -> None:
        """Type ``keys`` into the task's session followed by Enter."""
        session = self._live_session(task_id)
        self.backend.send(session, keys)
        logger.info("Sent keys to task #%d", task_id)

    def diff_command(self, task_id: int) -> tuple[list[str], Path]:
        task = self.store.get(task_id)
        _require(task, TaskAction.DIFF)
        return self.worktrees.diff_command(task), self.repo_root

    def close(self, task_id: int) -> Task:
        task = self.store.get(task_id)
        _require(task, TaskAction.CLOSE)
        self.worktrees.remove(task, force=True)
        self._stop_backend_session(task)
        task = self.store.update(task_id, _finish(TaskStatus.CLOSED))
        logger.info("Closed task #%d", task.id)
        return task

    def merge(self, task_id: int) -> Task:
        """Merge the task branch; nothing else changes if git refuses."""
        task = self.store.get(task_id)
        _require(task, TaskAction.MERGE)
        self.worktrees.merge(task)
        self._stop_backend_session(task)
        self.worktrees.remove(task, force=True)
        task = self.store.update(task_id, _finish(TaskStatus.MERGED))
        logger.info("Merged task #%d", task.id)
        return task

    def block(self, task_id: int, reason: str) -> Task:
        def apply(task: Task) -> Task:
            _require(task, TaskAction.BLOCK)
            task.block_reason = reason.strip() or "blocked"
            return task

        return self.store.update(task_id, apply)

    def unblock(self, task_id: int) -> Task:
        def apply(task: Task) -> Task:
            _require(task, TaskAction.UNBLOCK)
            task.block_reason = ""
            return task

        return self.store.update(task_id, apply)

    def set_status(self, task_id: int, status: TaskStatus, *, force: bool = False) -> Task:
        """Change status directly.

        Guarded destinations never carry side effects. A forced move to
        stopped, closed or merged still ends the live session, and a forced
        close removes the worktree like Close does; a forced merge never
        merges anything.
        """
        task = self.store.get(task_id)
        lifecycle.validate_transition(task, status, force=force)
        if not lifecycle.can_transition(task.status, status):
            logger.warning(
                "Forced status change on task #%d: %s -> %s",
                task.id, task.status.value, status.value,
            )
        ends_session = status in SESSION_ENDING
        if ends_session:
            self._stop_backend_session(task)
        if status is TaskStatus.CLOSED:
            self.worktrees.remove(task, force=True)
        elif status is TaskStatus.MERGED:
            logger.warning("Task #%d marked merged without merging its branch", task.id)

        def apply(stored: Task) -> Task:
            lifecycle.validate_transition(stored, status, force=force)
            if ends_session:
                _clear_session(stored)
            stored.status = status
            return stored

        return self.store.update(task_id, apply)

    def session_ended(self, task_id: int, exit_code: int | None) -> Task:
        """Record that the task's agent session exited.

        ``exit_code`` None means the session vanished without reporting.
        Only in_progress and needs_input move; a status the user set while
        the agent ran is kept.
        """
        name = session_name(task_id)
        review_mode = self.config.review_mode

        def apply(task: Task) -> Task:
            if task.session == name:
                _clear_session(task)
            if task.status in (TaskStatus.IN_PROGRESS, TaskStatus.NEEDS_INPUT):
                if exit_code != 0:
                    task.status = TaskStatus.ERROR
                elif review_mode is ReviewMode.SKIP:
                    task.status = TaskStatus.DONE
                else:
                    task.status = TaskStatus.FOR_REVIEW
            return task

        task = self.store.update(task_id, apply)
        try:
            self.state_store(task_id).save(ExecutionState(ExecutionSubstate.IDLE))
        except OSError:
            logger.warning("Could not reset execution state of task #%d", task_id, exc_info=True)
        logger.info(
            "Session of task #%d ended (exit=%s); status now %s",
            task.id, exit_code, task.status.value,
        )
        return task

    # -- Review --------------------------------------------------------------

    def review_log_path(self, task_id: int) -> Path:
        return review_log_path(self.crew, task_id)

    def review(self, task_id: int, agent: str = "", *, request: str = "") -> Task:
        """Start a reviewer session in the task's worktree.

        ``agent`` defaults to the configured reviewer, ``request`` to the
        configured reviewer prompt.
        """
        task = self.store.get(task_id)
        _require(task, TaskAction.REVIEW)
        if not self.worktrees.exists(task):
            raise NoWorktreeError(task_id)
        agent = agent or self.config.reviewer
        template = self.config.resolve_agent(agent).command

        name = review_session_name(task.id)
        if self.backend.is_running(name):
            raise SessionRunningError(name)

        worktree = self.worktrees.path_for(task)
        prompt_file = review_prompt_path(self.crew, task.id)
        atomic_write_text(prompt_file, review_prompt(
            task.id,
            task.title,
            task.description,
            branch=self.worktrees.branch_for(task),
            base_branch=task.base_branch,
            request=request or self.config.reviewer_prompt,
        ))
        log_path = self.review_log_path(task.id)
        log_path.unlink(missing_ok=True)
        self.backend.start(
            name,
            self._session_command(
                task,
                self._render(template, task, worktree, prompt_file),
                callback="review-session-ended",
            ),
            cwd=worktree,
            log_path=log_path,
        )

        def apply(stored: Task) -> Task:
            stored.status = TaskStatus.REVIEWING
            stored.session = name
            stored.agent = agent
            return stored

        task = self.store.update(task_id, apply)
        logger.info("Started review of task #%d with %s in session %s", task.id, agent, name)
        return task

    def review_session_ended(self, task_id: int, exit_code: int | None) -> Task:
        """Record the reviewer's verdict; ignored unless the task is reviewing.

        The review output becomes a comment by ``reviewer``. A clean exit
        moves the task to reviewed, anything else back to for_review.
        """
        try:
            output = self.review_log_path(task_id).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            output = ""
        result = extract_review_result(output)
        name = review_session_name(task_id)

        def apply(task: Task) -> bool:
            if task.session == name:
                _clear_session(task)
            if task.status is not TaskStatus.REVIEWING:
                return False
            if result:
                task.comments.append(Comment(result, author=REVIEWER_AUTHOR))
            task.status = TaskStatus.REVIEWED if exit_code == 0 else TaskStatus.FOR_REVIEW
            return True

        if not self.store.update(task_id, apply):
            logger.info("Ignoring review end of task #%d; it is not reviewing", task_id)
        else:
            logger.info("Review of task #%d ended (exit=%s)", task_id, exit_code)
        return self.store.get(task_id)

    # -- Sessions ------------------------------------------------------------

    def reconcile_sessions(self) -> list[int]:
        """Treat tasks whose recorded session is gone as ended with an error.

        A vanished reviewer sends the task back to for_review.
        """
        changed = []
        for task in self.store.list(include_terminal=False):
            if task.has_session and not self.backend.is_running(task.session):
                logger.warning("Session %s of task #%d is gone", task.session, task.id)
                if task.session == review_session_name(task.id):
                    self.review_session_ended(task.id, None)
                else:
                    self.session_ended(task.id, None)
                changed.append(task.id)
        return changed

    def set_substate(self, task_id: int, substate: ExecutionSubstate, session_id: str = "") -> None:
        self.store.get(task_id)
        self.state_store(task_id).save(ExecutionState(substate, session_id=session_id))


def _clear_session(task: Task) -> None:
    task.session = ""
    task.agent = ""


def _finish(status: TaskStatus):
    def apply(task: Task) -> Task:
        _clear_session(task)
        task.status = status
        return task
    return apply

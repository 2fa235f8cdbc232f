"""tmux session backend.

All sessions of one repository live on a private tmux server reached
through ``.crew/tmux.sock``, so they never mix with the user's own tmux
sessions and ``kill-server`` style cleanup stays local.
"""
from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import time
from pathlib import Path

from gitcrew.domain.errors import NoSessionError, SessionBackendError, SessionRunningError
from gitcrew.domain.naming import task_id_from_session, tmux_socket_path
from gitcrew.domain.ports import SessionBackend

logger = logging.getLogger(__name__)

DETACH_KEY = "C-g"
_STOP_POLL_SECONDS = 0.1
_STOP_POLL_ATTEMPTS = 50


class TmuxBackend(SessionBackend):
    """SessionBackend on a per-repository tmux socket."""

    def __init__(self, crew: Path, *, tmux: str = "tmux", timeout: float = 10.0):
        self.crew = crew
        self.socket_path = tmux_socket_path(crew)
        self.config_path = crew / "tmux.conf"
        self.tmux = tmux
        self.timeout = timeout

    def _base(self) -> list[str]:
        args = [self.tmux, "-S", str(self.socket_path)]
        if self.config_path.exists():
            args += ["-f", str(self.config_path)]
        return args

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        cmd = self._base() + list(args)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise SessionBackendError(args[0], "command timed out") from exc
        except FileNotFoundError as exc:
            raise SessionBackendError(args[0], f"{self.tmux} not found") from exc
        if check and result.returncode != 0:
            raise SessionBackendError(args[0], result.stderr.strip() or f"exit {result.returncode}")
        return result

    def is_running(self, session_name: str) -> bool:
        try:
            result = self._run("has-session", "-t", session_name, check=False)
        except SessionBackendError:
            logger.debug("has-session failed for %s", session_name, exc_info=True)
            return False
        return result.returncode == 0

    def start(
        self,
        session_name: str,
        command: str,
        *,
        cwd: Path,
        log_path: Path | None = None,
    ) -> None:
        if self.is_running(session_name):
            raise SessionRunningError(session_name)
        args = ["new-session", "-d", "-s", session_name, "-c", str(cwd)]
        if command:
            args.append(command)
        self._run(*args)
        logger.info("Started session %s in %s", session_name, cwd)

        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            self._run(
                "pipe-pane", "-o", "-t", session_name,
                "cat >> " + shlex.quote(str(log_path)),
            )
        self._configure_status_bar(session_name)

    def _configure_status_bar(self, session_name: str) -> None:
        task_id = task_id_from_session(session_name)
        label = f"#{task_id}" if task_id is not None else session_name
        options = [
            ("status", "on"),
            ("status-position", "bottom"),
            ("status-style", "bg=#89b4fa,fg=#ffffff"),
            ("status-left", f" [{DETACH_KEY}] detach "),
            ("status-left-length", "30"),
            ("status-right", f" {label} "),
            ("window-status-format", ""),
            ("window-status-current-format", ""),
        ]
        for name, value in options:
            self._run("set-option", "-t", session_name, name, value, check=False)
        self._run("bind-key", "-T", "root", DETACH_KEY, "detach-client", check=False)

    def list_pane_processes(self, session_name: str) -> list[int]:
        result = self._run(
            "list-panes", "-t", session_name, "-F", "#{pane_pid}", check=False,
        )
        if result.returncode != 0:
            return []
        pids = []
        for line in result.stdout.split():
            if line.isdigit() and int(line) > 0:
                pids.append(int(line))
        return pids

    def stop(self, session_name: str) -> None:
        """SIGTERM each pane's process group, then kill the session."""
        if not self.is_running(session_name):
            return
        for pid in self.list_pane_processes(session_name):
            _terminate_group(pid)

        result = self._run("kill-session", "-t", session_name, check=False)
        if result.returncode != 0 and self.is_running(session_name):
            raise SessionBackendError("kill-session", result.stderr.strip())
        logger.info("Stopped session %s", session_name)

    def attach_command(self, session_name: str) -> list[str]:
        if not self.is_running(session_name):
            raise NoSessionError(task_id_from_session(session_name) or 0)
        return self._base() + ["attach", "-t", session_name]

    def send(self, session_name: str, text: str) -> None:
        if not self.is_running(session_name):
            raise NoSessionError(task_id_from_session(session_name) or 0)
        self._run("send-keys", "-t", session_name, text, "Enter")

    def peek(self, session_name: str, lines: int, escape: bool = False) -> str:
        if not self.is_running(session_name):
            raise NoSessionError(task_id_from_session(session_name) or 0)
        args = ["capture-pane", "-t", session_name, "-p", "-S", f"-{lines}"]
        if escape:
            args.append("-e")
        return self._run(*args).stdout.rstrip("\n")

    def list_sessions(self) -> list[str]:
        result = self._run("list-sessions", "-F", "#{session_name}", check=False)
        if result.returncode != 0:
            return []
        return [line for line in result.stdout.splitlines() if line]


def _terminate_group(pid: int) -> None:
    try:
        os.killpg(pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    except PermissionError:
        logger.warning("Not allowed to signal process group %d", pid)
        return
    for attempt in range(_STOP_POLL_ATTEMPTS):
        time.sleep(_STOP_POLL_SECONDS)
        if attempt == 5:
            # Shells sometimes ignore the first TERM while a child is exiting.
            try:
                os.killpg(pid, signal.SIGTERM)
            except ProcessLookupError:
                return
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return
        except PermissionError:
            return

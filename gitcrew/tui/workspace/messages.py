"""Messages handled by the workspace router itself."""
from __future__ import annotations

from dataclasses import dataclass

from gitcrew.domain.models import RepoInfo, RepositoryEntry
from gitcrew.tui.runtime import Msg


@dataclass
class RepoMsg(Msg):
    """A board message tagged with the repository it came from."""
    path: str
    msg: Msg


@dataclass
class ReposLoaded(Msg):
    repos: list[RepositoryEntry]
    # Set when the workspace file is corrupted; repos is then empty.
    error: BaseException | None = None


@dataclass
class SummaryLoaded(Msg):
    path: str
    info: RepoInfo


@dataclass
class RepoAdded(Msg):
    path: str


@dataclass
class RepoRemoved(Msg):
    path: str


@dataclass
class WorkspaceTick(Msg):
    pass


@dataclass
class WorkspaceError(Msg):
    error: BaseException


@dataclass
class AddRepoEntered(Msg):
    """Path typed into the add-repository prompt."""
    path: str


@dataclass
class RemoveRepoConfirmed(Msg):
    path: str

"""YAML configuration loader.

Sources, lowest precedence first:

1. Built-in defaults (claude, codex and opencode agents)
2. Global ``~/.config/gitcrew/config.yaml`` (directory overridable with GITCREW_HOME)
3. Repository ``.crew/config.yaml``
4. GITCREW_* environment variables

Example YAML:
    default_agent: claude
    default_reviewer: claude   # agent used by `gitcrew review`
    reviewer_prompt: Focus on error handling.
    review_mode: manual        # manual -> for_review, skip -> done

    agents:
      claude:
        command: claude "$(cat $prompt_file)"
        description: Claude Code
      aider:
        command: aider --message-file $prompt_file

    tui:
      auto_refresh_seconds: 2

    worktree:
      setup_command: npm install

Agent commands are ``string.Template`` strings. Available placeholders:
$task_id, $title, $description, $branch, $worktree, $prompt_file. Values
are shell-quoted before substitution.

The UI loads leniently: a broken file is reported as a warning and the
remaining sources still apply. The workspace health check loads strictly
so a broken file shows up as a config error on the repository.
"""
from __future__ import annotations

import logging
import os
import shlex
import string
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from gitcrew.domain.errors import AgentNotFoundError, ConfigError
from gitcrew.domain.naming import DEFAULT_NAMESPACE, config_path, crew_dir

logger = logging.getLogger(__name__)


class ReviewMode(str, Enum):
    """Where a task goes when its agent exits cleanly."""
    MANUAL = "manual"
    SKIP = "skip"


@dataclass
class AgentConfig:
    name: str
    command: str
    description: str = ""


@dataclass
class TuiConfig:
    auto_refresh_seconds: float = 2.0


@dataclass
class WorktreeConfig:
    setup_command: str = ""


BUILTIN_AGENTS: dict[str, AgentConfig] = {
    "claude": AgentConfig("claude", 'claude "$(cat $prompt_file)"', "Claude Code"),
    "codex": AgentConfig("codex", 'codex "$(cat $prompt_file)"', "OpenAI Codex CLI"),
    "opencode": AgentConfig("opencode", 'opencode --prompt "$(cat $prompt_file)"', "opencode"),
}


@dataclass
class CrewConfig:
    """Resolved configuration for one repository."""
    agents: dict[str, AgentConfig] = field(
        default_factory=lambda: {name: AgentConfig(a.name, a.command, a.description)
                                 for name, a in BUILTIN_AGENTS.items()}
    )
    default_agent: str = "claude"
    default_reviewer: str = ""
    reviewer_prompt: str = ""
    review_mode: ReviewMode = ReviewMode.MANUAL
    namespace: str = DEFAULT_NAMESPACE
    tui: TuiConfig = field(default_factory=TuiConfig)
    worktree: WorktreeConfig = field(default_factory=WorktreeConfig)

    def agent_names(self) -> list[str]:
        """Configured agents, default first."""
        names = sorted(self.agents)
        if self.default_agent in self.agents:
            names.remove(self.default_agent)
            names.insert(0, self.default_agent)
        return names

    @property
    def reviewer(self) -> str:
        return self.default_reviewer or self.default_agent

    def resolve_agent(self, name: str) -> AgentConfig:
        try:
            return self.agents[name]
        except KeyError:
            raise AgentNotFoundError(name) from None


def gitcrew_home() -> Path:
    """Directory for user-level files (global config, workspace list)."""
    override = os.getenv("GITCREW_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "gitcrew"


def global_config_path() -> Path:
    return gitcrew_home() / "config.yaml"


def render_agent_command(template: str, **values: Any) -> str:
    quoted = {key: shlex.quote(str(value)) for key, value in values.items()}
    return string.Template(template).safe_substitute(quoted)


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(path, "top level must be a mapping")
    return raw


def _apply(config: CrewConfig, raw: dict[str, Any], path: Path) -> None:
    """Merge one parsed file into ``config``; raises ConfigError on bad values."""
    agents = raw.get("agents") or {}
    if not isinstance(agents, dict):
        raise ConfigError(path, "'agents' must be a mapping")
    for name, spec in agents.items():
        if isinstance(spec, str):
            spec = {"command": spec}
        if not isinstance(spec, dict) or not isinstance(spec.get("command"), str):
            raise ConfigError(path, f"agent '{name}' needs a 'command' string")
        config.agents[str(name)] = AgentConfig(
            name=str(name),
            command=spec["command"],
            description=str(spec.get("description") or ""),
        )

    if "default_agent" in raw:
        config.default_agent = str(raw["default_agent"])
    if "default_reviewer" in raw:
        config.default_reviewer = str(raw["default_reviewer"] or "")
    if "reviewer_prompt" in raw:
        config.reviewer_prompt = str(raw["reviewer_prompt"] or "")
    if "namespace" in raw:
        config.namespace = str(raw["namespace"]) or DEFAULT_NAMESPACE
    if "review_mode" in raw:
        try:
            config.review_mode = ReviewMode(str(raw["review_mode"]))
        except ValueError:
            raise ConfigError(path, f"unknown review_mode {raw['review_mode']!r}") from None

    tui = raw.get("tui") or {}
    if not isinstance(tui, dict):
        raise ConfigError(path, "'tui' must be a mapping")
    if "auto_refresh_seconds" in tui:
        try:
            config.tui.auto_refresh_seconds = max(0.5, float(tui["auto_refresh_seconds"]))
        except (TypeError, ValueError):
            raise ConfigError(path, "tui.auto_refresh_seconds must be a number") from None

    worktree = raw.get("worktree") or {}
    if not isinstance(worktree, dict):
        raise ConfigError(path, "'worktree' must be a mapping")
    if "setup_command" in worktree:
        config.worktree.setup_command = str(worktree["setup_command"] or "")


def _apply_env(config: CrewConfig) -> None:
    default_agent = os.getenv("GITCREW_DEFAULT_AGENT")
    if default_agent:
        logger.info("GITCREW_DEFAULT_AGENT override: %s", default_agent)
        config.default_agent = default_agent


def load_config(
    repo_root: Path,
    *,
    strict: bool = False,
    global_path: Path | None = None,
) -> tuple[CrewConfig, list[str]]:
    """Load the merged configuration for ``repo_root``.

    Returns the config and a list of human-readable warnings. In strict
    mode the first unreadable or invalid file raises ConfigError instead.
    """
    config = CrewConfig()
    warnings: list[str] = []
    sources = [global_path or global_config_path(), config_path(crew_dir(repo_root))]

    for path in sources:
        if not path.is_file():
            logger.debug("load_config: %s not found", path)
            continue
        try:
            _apply(config, _read_yaml(path), path)
            logger.debug("load_config: applied %s", path)
        except yaml.YAMLError as exc:
            error = ConfigError(path, f"YAML parse error: {exc}")
            if strict:
                raise error from exc
            logger.warning("load_config: %s", error)
            warnings.append(str(error))
        except ConfigError as exc:
            if strict:
                raise
            logger.warning("load_config: %s", exc)
            warnings.append(str(exc))
        except OSError as exc:
            error = ConfigError(path, str(exc))
            if strict:
                raise error from exc
            logger.warning("load_config: %s", error)
            warnings.append(str(error))

    _apply_env(config)
    if config.default_agent not in config.agents:
        message = f"default_agent '{config.default_agent}' is not a configured agent"
        logger.warning("load_config: %s", message)
        warnings.append(message)
    return config, warnings


SAMPLE_CONFIG = """\
# gitcrew repository configuration
default_agent: claude
# default_reviewer: claude
# reviewer_prompt: Please review this task.
review_mode: manual

agents: {}
  # aider:
  #   command: aider --message-file $prompt_file
  #   description: aider

tui:
  auto_refresh_seconds: 2

worktree:
  setup_command: ""
"""

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import APP_NAME, CONFIG_ENV_VAR, CONFIG_FILE

logger = logging.getLogger(APP_NAME)


class ConfigError(Exception):
    """Raised when a configuration cannot be used to start the daemon."""


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]?b?)$", str(value).strip().lower())
    if not match or not match.group(2):
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "b": 1,
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '500ms', '30m') to seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class GitHubConfig:
    """GitHub credentials and commit authorship.

    Attributes:
        token (str | None): Personal access token used for the API and for pushes.
        author_name (str | None): Commit author name. Fetched from GitHub if unset.
        author_email (str | None): Commit author email. Fetched from GitHub if unset.
        login (str | None): GitHub login. Defaults to the author name when the
            author is configured locally.
    """

    token: str | None = None
    author_name: str | None = None
    author_email: str | None = None
    login: str | None = None


@dataclass
class DaemonConfig:
    """Daemon timing settings.

    Attributes:
        sync_interval (float): Seconds between push sweeps.
        commit_debounce (float): Quiet period in seconds before a commit fires.
        watch_stabilization (float): Seconds a burst of writes is coalesced for
            before the watcher reports it.
    """

    sync_interval: float = 3600.0
    commit_debounce: float = 3.0
    watch_stabilization: float = 0.5


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        git_timeout (float): Seconds before a local git command is killed.
        push_timeout (float): Seconds before a network git command is killed.
        http_timeout (float): Seconds before a GitHub API request is abandoned.
        max_output_size (int): Max bytes of stdout captured from a git command.
    """

    max_log_size: int = 5 * 1024 * 1024
    git_timeout: float = 300.0
    push_timeout: float = 120.0
    http_timeout: float = 30.0
    max_output_size: int = 1024


@dataclass(frozen=True)
class ProjectConfig:
    """A local directory mirrored to a GitHub repository.

    Attributes:
        remote_url (str): The GitHub repository URL (https or SSH form).
        path (Path): The local working directory.
    """

    remote_url: str
    path: Path

    @property
    def key(self) -> Path:
        """The resolved path that identifies this project."""
        return self.path.expanduser().resolve()

    @property
    def name(self) -> str:
        return self.key.name


_SIZE_KEYS = {"max_log_size", "max_output_size"}
_TIME_KEYS = {
    "sync_interval",
    "commit_debounce",
    "watch_stabilization",
    "git_timeout",
    "push_timeout",
    "http_timeout",
}


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        github (GitHubConfig): Credentials and authorship.
        daemon (DaemonConfig): Timing settings.
        limits (LimitsConfig): Resource limits.
        projects (list[ProjectConfig]): The projects to keep in sync.
    """

    github: GitHubConfig = field(default_factory=GitHubConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    projects: list[ProjectConfig] = field(default_factory=list)

    @staticmethod
    def default_path() -> Path:
        """Returns the configuration path, honouring the environment override."""
        override = os.environ.get(CONFIG_ENV_VAR)
        return Path(override).expanduser() if override else CONFIG_FILE

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from a TOML file, applying defaults where necessary.

        Every call reads the file afresh so that edits are picked up on reload.

        Args:
            path (Path | None): The file to read. Defaults to `default_path()`.

        Returns:
            Config: The populated configuration object.

        Raises:
            ConfigError: If the file is missing or is not valid TOML.
        """
        path = path or cls.default_path()
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Config syntax error in {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read config {path}: {e}") from e

        instance = cls()
        if "github" in data:
            instance.github = instance._update_dataclass(
                "github", instance.github, data["github"]
            )
        if "daemon" in data:
            instance.daemon = instance._update_dataclass(
                "daemon", instance.daemon, data["daemon"]
            )
        if "limits" in data:
            instance.limits = instance._update_dataclass(
                "limits", instance.limits, data["limits"]
            )
        instance.projects = instance._parse_projects(data.get("projects", []))
        return instance

    @staticmethod
    def _parse_projects(entries: Any) -> list[ProjectConfig]:
        """Builds project entries, skipping incomplete ones with a warning."""
        if not isinstance(entries, list):
            logger.warning("Config error in [[projects]]: expected an array of tables.")
            return []

        projects = []
        for index, entry in enumerate(entries):
            remote_url = entry.get("remote_url") if isinstance(entry, dict) else None
            local_path = entry.get("path") if isinstance(entry, dict) else None
            if not remote_url or not local_path:
                logger.warning(
                    f"Config error in [[projects]] #{index + 1}: "
                    "both 'remote_url' and 'path' are required. Ignoring."
                )
                continue
            projects.append(
                ProjectConfig(remote_url=str(remote_url).strip(), path=Path(local_path))
            )
        return projects

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k in _SIZE_KEYS:
                    filtered_updates[k] = parse_size(v)
                elif k in _TIME_KEYS:
                    seconds = parse_time(v)
                    if seconds <= 0:
                        raise ValueError(f"Duration must be positive, got '{v}'")
                    filtered_updates[k] = seconds
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)

    def validate(self) -> list[str]:
        """Lists the problems that prevent this configuration from being used.

        Returns:
            list[str]: Human-readable problems. Empty if the configuration is usable.
        """
        from .github import parse_github_url

        problems = []
        if not self.github.token:
            problems.append("GitHub token not found in [github].token")
        if not self.projects:
            problems.append("No projects configured in [[projects]]")

        seen: set[Path] = set()
        for project in self.projects:
            if parse_github_url(project.remote_url) is None:
                problems.append(f"Unparseable GitHub URL: {project.remote_url}")
            if project.key in seen:
                problems.append(f"Duplicate project path: {project.key}")
            seen.add(project.key)
        return problems

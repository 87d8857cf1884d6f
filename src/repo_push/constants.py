import os
from pathlib import Path

"""Global constants and path definitions for repo-push.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the fixed Git naming conventions used when pushing
projects to GitHub.
"""

# --- Identity ---
APP_NAME = "repo-push"
"""str: The human-readable application name."""

COMMIT_PREFIX = "Auto backup"
"""str: Prefix of every automatic commit message."""

REPO_DESCRIPTION = "Auto-synced repository managed by repo-push"
"""str: Description attached to repositories created on GitHub."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "repo-push"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

# --- Configuration Paths ---
CONFIG_ENV_VAR = "REPO_PUSH_CONFIG"
"""str: Environment variable that overrides the configuration file location."""

CONFIG_DIR: Path = Path.home() / ".config/repo-push"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The default configuration file path."""

# --- Git / GitHub Conventions ---
REMOTE_NAME = "github"
"""str: The git remote every project is pushed to."""

TARGET_BRANCH = "main"
"""str: The remote branch that receives the local branch, whatever its local name."""

GITHUB_API_URL = "https://api.github.com"
"""str: Base URL of the GitHub REST API."""

DEFAULT_IGNORES = [
    ".git",
    ".git/**",
    "node_modules",
    "node_modules/**",
]
"""list[str]: Ignore rules applied to every project before its .gitignore."""

WATCH_IGNORE_DIRS = (
    "node_modules",
    "dist",
    "build",
    "logs",
    "tmp",
    "cache",
    "coverage",
)
"""tuple[str, ...]: Directory names never watched for changes."""

WATCH_IGNORE_PATTERNS = (
    r"^\.",
    r"\.log$",
    r"\.tmp$",
)
"""tuple[str, ...]: Entity name patterns never watched for changes."""

WATCH_RESTART_DELAY = 5.0
"""float: Seconds to wait before restarting a watcher that failed."""

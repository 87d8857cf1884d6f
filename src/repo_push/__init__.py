"""repo-push: Continuous GitHub backup for local working directories.

This package provides the command-line interface, the background daemon, and
the per-project sync engine that commits local changes shortly after they
happen and force-pushes them to GitHub on a slower periodic sweep.
"""

from . import (
    cli,
    config,
    constants,
    context,
    daemon,
    git_wrapper,
    github,
    ignore,
    ops,
    supervisor,
    sync_state,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "context",
    "daemon",
    "git_wrapper",
    "github",
    "ignore",
    "ops",
    "supervisor",
    "sync_state",
]

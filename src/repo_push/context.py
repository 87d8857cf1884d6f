"""Shared, read-only state handed to every sync operation."""

from dataclasses import dataclass, field

from .config import DaemonConfig, LimitsConfig


@dataclass(frozen=True)
class Identity:
    """The author that automatic commits are attributed to.

    Attributes:
        name (str): Commit author name.
        email (str): Commit author email.
        login (str): GitHub login, used to choose between user and org endpoints.
    """

    name: str
    email: str
    login: str


@dataclass(frozen=True)
class SyncContext:
    """Credentials, authorship, and limits for one engine generation.

    Instances are never mutated. A reload builds a new context and swaps it in
    wholesale, so an operation that already holds one keeps a consistent view.
    """

    token: str
    identity: Identity
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

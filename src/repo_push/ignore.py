"""Per-project ignore rules.

Two layers keep noise away from the commit debounce. `ProjectWatchFilter` drops
build output and ephemeral files before the watcher reports them at all, and
`IgnoreMatcher` applies the project's own `.gitignore` to whatever gets through.
"""

import logging
from pathlib import Path

import pathspec
from watchfiles import Change, DefaultFilter

from .constants import (
    APP_NAME,
    DEFAULT_IGNORES,
    WATCH_IGNORE_DIRS,
    WATCH_IGNORE_PATTERNS,
)

logger = logging.getLogger(APP_NAME)


class ProjectWatchFilter(DefaultFilter):
    """Watch-level filter ignoring dot entries, build directories, and logs.

    Paths are matched relative to the project root, so a project that itself
    lives under a directory such as `tmp` or `build` is still watched.
    """

    ignore_dirs = (*DefaultFilter.ignore_dirs, *WATCH_IGNORE_DIRS)
    ignore_entity_patterns = (
        *DefaultFilter.ignore_entity_patterns,
        *WATCH_IGNORE_PATTERNS,
    )

    def __init__(self, root: Path):
        super().__init__()
        self.root = root

    def __call__(self, change: Change, path: str) -> bool:
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return False
        return super().__call__(change, str(relative))


class IgnoreMatcher:
    """Classifies absolute paths inside a project as ignorable or not.

    Attributes:
        root (Path): The project root that relative paths are computed against.
        spec (pathspec.GitIgnoreSpec): The compiled default and .gitignore rules.
    """

    def __init__(self, root: Path, patterns: list[str]):
        self.root = root
        self.spec = pathspec.GitIgnoreSpec.from_lines(patterns)

    @classmethod
    def load(cls, root: Path) -> "IgnoreMatcher":
        """Builds a matcher from the default rules plus the project's .gitignore.

        Args:
            root (Path): The project root.

        Returns:
            IgnoreMatcher: The matcher. An unreadable .gitignore is logged and
            only the default rules apply.
        """
        patterns = list(DEFAULT_IGNORES)
        gitignore = root / ".gitignore"
        if gitignore.exists():
            try:
                patterns.extend(gitignore.read_text(encoding="utf-8").splitlines())
            except (OSError, UnicodeDecodeError) as e:
                logger.error(f"IGNORE ERROR {root.name}: Failed to read .gitignore: {e}")
        return cls(root, patterns)

    def is_ignored(self, path: Path | str) -> bool:
        """Checks whether a change to `path` should be ignored.

        Paths outside the project, and the project root itself, are always ignored.
        """
        try:
            relative = Path(path).relative_to(self.root)
        except ValueError:
            return True
        if relative == Path("."):
            return True
        return self.spec.match_file(relative.as_posix())

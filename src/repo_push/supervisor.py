import asyncio
import contextlib
import enum
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from watchfiles import Change, awatch

from . import ops
from .config import ProjectConfig
from .constants import APP_NAME, WATCH_RESTART_DELAY
from .context import SyncContext
from .git_wrapper import GitRepo
from .github import GitHubClient
from .ignore import IgnoreMatcher, ProjectWatchFilter

logger = logging.getLogger(APP_NAME)

WatchSource = Callable[[Path, asyncio.Event], AsyncIterator[set[tuple[Change, str]]]]
"""Callable producing batches of `(change, absolute_path)` until the event is set."""


class SupervisorState(enum.Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    CLOSED = "closed"


class ProjectError(Exception):
    """Raised when a project cannot be supervised (missing or not a repository)."""


def default_watch_source(stabilization: float) -> WatchSource:
    """Builds a watch source backed by `watchfiles.awatch`.

    Args:
        stabilization (float): Seconds rapid writes are coalesced for before a
            batch is reported.
    """

    def source(
        path: Path, stop: asyncio.Event
    ) -> AsyncIterator[set[tuple[Change, str]]]:
        return awatch(
            path,
            watch_filter=ProjectWatchFilter(path),
            debounce=max(1, int(stabilization * 1000)),
            stop_event=stop,
            recursive=True,
        )

    return source


class ProjectSupervisor:
    """Owns one project's watcher, debounce timer, and ignore matcher.

    A qualifying change arms the debounce timer; further qualifying changes
    re-arm it from zero, so a burst of edits yields exactly one commit attempt
    once the project has been quiet for `commit_debounce` seconds. Ignored
    paths never touch the timer.

    Commits and pushes of the same project are serialized by `_busy`.

    Attributes:
        project (ProjectConfig): The configured project.
        path (Path): The resolved project directory (the project's key).
        state (SupervisorState): The current debounce state.
    """

    def __init__(
        self,
        project: ProjectConfig,
        get_context: Callable[[], SyncContext],
        watch_source: WatchSource | None = None,
    ):
        self.project = project
        self.path = project.key
        self.state = SupervisorState.IDLE
        self.matcher: IgnoreMatcher | None = None
        self.last_change: Path | None = None
        self._get_context = get_context
        self._watch_source = watch_source
        self._timer: asyncio.TimerHandle | None = None
        self._stop = asyncio.Event()
        self._watch_task: asyncio.Task | None = None
        self._commit_task: asyncio.Task | None = None
        self._busy = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.path.name

    async def start(self) -> None:
        """Validates the project and starts watching it.

        Raises:
            ProjectError: If the directory is missing or is not a git repository.
        """
        if not self.path.is_dir():
            raise ProjectError(f"Directory does not exist: {self.path}")
        try:
            repo = GitRepo(self.path)
        except ValueError as e:
            raise ProjectError(str(e)) from e
        if not await repo.is_repo():
            raise ProjectError(f"Not a git repository: {self.path}")

        self.matcher = IgnoreMatcher.load(self.path)

        source = self._watch_source or default_watch_source(
            self._get_context().daemon.watch_stabilization
        )
        self._watch_task = asyncio.create_task(
            self._watch(source), name=f"watch:{self.name}"
        )
        logger.info(f"WATCHING {self.name}: Started watching for changes.")

    async def _watch(self, source: WatchSource) -> None:
        """Feeds watcher batches into `handle_change`, restarting failed watchers.

        The watcher is restarted after `WATCH_RESTART_DELAY` seconds for as long
        as the supervisor is open, so an active project is never left unwatched.
        """
        while not self._stop.is_set():
            try:
                async for changes in source(self.path, self._stop):
                    for change, raw_path in changes:
                        self.handle_change(change, Path(raw_path))
            except Exception as e:
                logger.error(
                    f"WATCHER ERROR {self.name}: {e}. "
                    f"Restarting in {WATCH_RESTART_DELAY:g}s."
                )
            else:
                if self._stop.is_set():
                    return
                logger.warning(
                    f"WATCHER {self.name}: Watcher ended unexpectedly. "
                    f"Restarting in {WATCH_RESTART_DELAY:g}s."
                )

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._stop.wait(), timeout=WATCH_RESTART_DELAY)

    def handle_change(self, change: Change, path: Path) -> None:
        """Reacts to one path-changed event by (re)arming the debounce timer."""
        if self.state is SupervisorState.CLOSED or self.matcher is None:
            return
        if self.matcher.is_ignored(path):
            return

        logger.debug(f"{change.name} {self.name}: {path}")
        self.last_change = path
        self._arm()

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(
            self._get_context().daemon.commit_debounce, self._fire
        )
        self.state = SupervisorState.DEBOUNCING

    def _fire(self) -> None:
        self._timer = None
        if self.state is SupervisorState.CLOSED:
            return
        self.state = SupervisorState.IDLE
        changed = self.last_change.relative_to(self.path) if self.last_change else "?"
        logger.info(f"CHANGE {self.name}: Change detected: {changed}")
        self._commit_task = asyncio.create_task(
            self.commit_now(), name=f"commit:{self.name}"
        )

    async def commit_now(self) -> bool:
        """Runs the commit engine once.

        Returns:
            bool: True if a commit was created.
        """
        async with self._busy:
            return await ops.commit_changes(self.path, self._get_context())

    async def push_now(self, client: GitHubClient) -> bool:
        """Commits pending changes, then runs the provision, detect, and push
        pipeline once.

        Committing first picks up changes whose debounced commit failed, so
        they reach GitHub on this sweep rather than after the next edit.

        Returns:
            bool: True if a push was performed and succeeded.
        """
        async with self._busy:
            ctx = self._get_context()
            if not await ops.commit_changes(self.path, ctx):
                logger.debug(f"CLEAN {self.name}: Nothing committed before push.")
            return await ops.push_project(
                self.path, self.project.remote_url, ctx, client
            )

    async def close(self) -> None:
        """Tears the supervisor down.

        The pending timer is cancelled before anything is awaited, so it can
        never fire afterwards. The watcher is stopped and any in-flight commit or
        push is allowed to finish.
        """
        if self.state is SupervisorState.CLOSED:
            return
        self.state = SupervisorState.CLOSED
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        self._stop.set()
        if self._watch_task is not None:
            self._watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._watch_task
        if self._commit_task is not None:
            await self._commit_task
        async with self._busy:
            pass  # Waits out an in-flight push.
        logger.info(f"STOPPED {self.name}: Stopped watching.")

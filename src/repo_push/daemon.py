import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from watchfiles import awatch

from . import ops
from .config import Config, ConfigError, ProjectConfig
from .constants import APP_NAME, LOG_FILE
from .context import Identity, SyncContext
from .github import GitHubClient, fetch_identity, parse_github_url
from .supervisor import ProjectError, ProjectSupervisor, WatchSource

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

console = Console()
err_console = Console(stderr=True)


async def resolve_context(config: Config) -> SyncContext:
    """Builds the sync context for a configuration.

    The commit identity comes from the configured author if both name and email
    are set, otherwise from the GitHub account that owns the token.

    Args:
        config (Config): The loaded configuration.

    Returns:
        SyncContext: The context for this configuration generation.

    Raises:
        ConfigError: If the token is missing or no identity can be resolved.
    """
    gh = config.github
    if not gh.token:
        raise ConfigError("GitHub token not found in [github].token")

    if gh.author_name and gh.author_email:
        identity = Identity(
            name=gh.author_name,
            email=gh.author_email,
            login=gh.login or gh.author_name,
        )
    else:
        async with GitHubClient(gh.token, timeout=config.limits.http_timeout) as client:
            identity = await fetch_identity(client)
        if identity is None:
            raise ConfigError(
                "Failed to fetch GitHub user information. "
                "Set author_name and author_email in [github]."
            )

    return SyncContext(
        token=gh.token, identity=identity, daemon=config.daemon, limits=config.limits
    )


class SyncManager:
    """Holds the active project supervisors and drives sweeps and reconciliation.

    The manager is the only owner of cross-project state: the project map and
    the current `SyncContext`. Both are replaced, never mutated in place, while
    a sweep or commit may be reading them.

    Attributes:
        context (SyncContext): The current credentials, identity, and limits.
        projects (dict[Path, ProjectSupervisor]): Active supervisors by path.
    """

    def __init__(self, context: SyncContext, watch_source: WatchSource | None = None):
        self.context = context
        self.projects: dict[Path, ProjectSupervisor] = {}
        self._watch_source = watch_source

    def get_context(self) -> SyncContext:
        return self.context

    def client(self) -> GitHubClient:
        """Creates an API client for the current context."""
        return GitHubClient(self.context.token, timeout=self.context.limits.http_timeout)

    async def add_project(self, project: ProjectConfig) -> ProjectSupervisor | None:
        """Starts supervising a project.

        Returns:
            ProjectSupervisor | None: The new supervisor, or None if the project
            is already active or cannot be supervised.
        """
        if project.key in self.projects:
            return None

        supervisor = ProjectSupervisor(project, self.get_context, self._watch_source)
        try:
            await supervisor.start()
        except ProjectError as e:
            logger.error(f"ERROR {project.name}: {e}")
            return None

        self.projects[project.key] = supervisor
        return supervisor

    async def remove_project(self, key: Path) -> None:
        """Stops supervising a project. Completes only once it is fully torn down."""
        supervisor = self.projects.get(key)
        if supervisor is None:
            return
        await supervisor.close()
        del self.projects[key]

    async def sweep(self) -> dict[Path, bool]:
        """Commits and pushes every active project that needs it, one at a time.

        Returns:
            dict[Path, bool]: Whether each swept project was pushed.
        """
        logger.info("SWEEP: Pushing all projects to GitHub...")
        results: dict[Path, bool] = {}
        async with self.client() as client:
            for key, supervisor in list(self.projects.items()):
                # Removed by a reconcile while an earlier project was pushing.
                if self.projects.get(key) is not supervisor:
                    continue
                try:
                    results[key] = await supervisor.push_now(client)
                except Exception:
                    logger.exception(f"LOOP ERROR {supervisor.name}")
                    results[key] = False
        logger.info(f"SWEEP: Complete ({sum(results.values())}/{len(results)} pushed).")
        return results

    async def reconcile(
        self, projects: list[ProjectConfig], context: SyncContext | None = None
    ) -> list[Path]:
        """Brings the active set in line with a configuration snapshot.

        Removed projects are torn down before anything is added. Projects in
        both sets keep their supervisor, timer, and ignore matcher. New projects
        are started, then committed and pushed once straight away.

        Args:
            projects (list[ProjectConfig]): The desired projects.
            context (SyncContext | None): A replacement context, swapped in first.

        Returns:
            list[Path]: The keys of the projects that were added.
        """
        if context is not None:
            self.context = context

        wanted: dict[Path, ProjectConfig] = {}
        for project in projects:
            if parse_github_url(project.remote_url) is None:
                logger.error(
                    f"CONFIG ERROR {project.name}: Unparseable GitHub URL "
                    f"'{project.remote_url}'. Skipping."
                )
                continue
            wanted.setdefault(project.key, project)

        for key in [k for k in self.projects if k not in wanted]:
            logger.info(f"REMOVED {key.name}: No longer configured.")
            await self.remove_project(key)

        added = []
        for key, project in wanted.items():
            if key in self.projects:
                self.projects[key].project = project
                continue
            if supervisor := await self.add_project(project):
                added.append(supervisor)

        if added:
            async with self.client() as client:
                for supervisor in added:
                    if self.projects.get(supervisor.path) is not supervisor:
                        continue
                    try:
                        await supervisor.push_now(client)
                    except Exception:
                        logger.exception(f"LOOP ERROR {supervisor.name}")

        return [supervisor.path for supervisor in added]

    async def close(self) -> None:
        """Tears down every supervisor."""
        for key in list(self.projects):
            await self.remove_project(key)


async def reload_config(manager: SyncManager, config_path: Path) -> None:
    """Re-reads the configuration and reconciles the manager against it.

    Failures keep the previous configuration running.
    """
    try:
        config = Config.load(config_path)
        context = await resolve_context(config)
    except ConfigError as e:
        logger.error(f"RELOAD ERROR: {e}. Keeping previous configuration.")
        return

    logger.info(f"RELOAD: {len(config.projects)} project(s) configured.")
    await manager.reconcile(config.projects, context)


async def _sweep_loop(manager: SyncManager, stop: asyncio.Event) -> None:
    while not stop.is_set():
        try:
            await asyncio.wait_for(
                stop.wait(), timeout=manager.context.daemon.sync_interval
            )
        except TimeoutError:
            await manager.sweep()


async def _config_loop(
    manager: SyncManager, config_path: Path, stop: asyncio.Event
) -> None:
    target = config_path.resolve()
    # Watch the directory so editors that replace the file are noticed too.
    async for _ in awatch(
        target.parent,
        watch_filter=lambda _change, path: Path(path) == target,
        stop_event=stop,
        recursive=False,
    ):
        await reload_config(manager, config_path)


async def serve(config: Config, config_path: Path) -> None:
    """Runs the daemon until SIGINT or SIGTERM.

    Args:
        config (Config): The validated startup configuration.
        config_path (Path): The file watched for hot reloads.

    Raises:
        ConfigError: If no sync context can be built at startup.
    """
    context = await resolve_context(config)
    logger.info(f"Git Author: {context.identity.name} <{context.identity.email}>")
    logger.info(
        f"Projects: {len(config.projects)} | "
        f"Commit debounce: {config.daemon.commit_debounce:g}s | "
        f"Push interval: {config.daemon.sync_interval:g}s"
    )

    manager = SyncManager(context)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await manager.reconcile(config.projects)
        tasks = [
            asyncio.create_task(_sweep_loop(manager, stop), name="sweep"),
            asyncio.create_task(_config_loop(manager, config_path, stop), name="config"),
        ]
        await stop.wait()
        logger.info("Shutting down...")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        await manager.close()


async def run_once(config: Config) -> dict[Path, bool]:
    """Commits and pushes every configured project once, without watching.

    Returns:
        dict[Path, bool]: Whether each project was pushed.
    """
    context = await resolve_context(config)
    results: dict[Path, bool] = {}
    async with GitHubClient(context.token, timeout=context.limits.http_timeout) as client:
        for project in config.projects:
            if not project.key.is_dir():
                logger.warning(f"SKIPPED {project.name}: Directory does not exist.")
                results[project.key] = False
                continue
            await ops.commit_changes(project.key, context)
            results[project.key] = await ops.push_project(
                project.key, project.remote_url, context, client
            )
    return results


def setup_logging(interactive: bool, max_log_size: int = 5 * 1024 * 1024) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr and
                            a rotating log file.
        max_log_size (int): Bytes before the log file is rotated.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(sys.stdout if interactive else sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        try:
            LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                LOG_FILE, maxBytes=max_log_size, backupCount=5
            )
        except OSError as e:
            logger.warning(f"Could not open log file {LOG_FILE}: {e}")
            return
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def load_or_exit(config_path: Path) -> Config:
    """Loads and validates the configuration, exiting on any problem."""
    try:
        config = Config.load(config_path)
    except ConfigError as e:
        err_console.print(f"[bold red]FATAL:[/bold red] {e}")
        sys.exit(1)

    problems = config.validate()
    if problems:
        for problem in problems:
            err_console.print(f"[bold red]FATAL:[/bold red] {problem}")
        sys.exit(1)
    return config


def main(config_path: Path | None = None) -> None:
    """The daemon entry point.

    Args:
        config_path (Path | None): Configuration file. Defaults to the
            `REPO_PUSH_CONFIG` environment variable or the XDG config path.
    """
    config_path = config_path or Config.default_path()
    config = load_or_exit(config_path)
    setup_logging(interactive=False, max_log_size=config.limits.max_log_size)

    try:
        asyncio.run(serve(config, config_path))
    except ConfigError as e:
        logger.critical(f"FATAL: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

import argparse
import asyncio
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import daemon, sync_state
from .config import Config, ConfigError, ProjectConfig
from .constants import LOG_FILE, REMOTE_NAME, TARGET_BRANCH
from .context import SyncContext
from .git_wrapper import GitError
from .ops import open_repo

console = Console()

CONFIG_TEMPLATE = """\
# repo-push configuration

[github]
token = ""
# author_name = "Your Name"
# author_email = "you@example.com"

[daemon]
sync_interval = "60m"
commit_debounce = "3s"

# [[projects]]
# remote_url = "https://github.com/you/notes"
# path = "~/notes"
"""


@dataclass
class ProjectReport:
    """A point-in-time view of one project for the status table.

    Attributes:
        project (ProjectConfig): The configured project.
        branch (str | None): The checked-out branch, or None if unreadable.
        pending_files (int): Number of uncommitted paths.
        decision (sync_state.SyncDecision | None): What a sweep would push, or
            None if the push remote is not configured yet.
        error (str | None): Why the project could not be inspected.
    """

    project: ProjectConfig
    branch: str | None = None
    pending_files: int = 0
    decision: sync_state.SyncDecision | None = None
    error: str | None = None


async def inspect_project(project: ProjectConfig, ctx: SyncContext) -> ProjectReport:
    """Collects the status of a project without changing anything."""
    report = ProjectReport(project=project)
    if not project.key.is_dir():
        report.error = "Directory does not exist"
        return report
    try:
        repo = open_repo(project.key, ctx)
        report.branch = await repo.current_branch()
        report.pending_files = len(await repo.status_porcelain())
        if await repo.get_remote_url(REMOTE_NAME) is not None:
            report.decision = await sync_state.detect(repo, report.branch, ctx)
    except (GitError, ValueError) as e:
        report.error = str(e)
    return report


async def _collect_reports(config: Config) -> list[ProjectReport]:
    ctx = await daemon.resolve_context(config)
    return [await inspect_project(p, ctx) for p in config.projects]


def show_status(config: Config) -> None:
    """Displays a table with the commit and push state of every project."""
    with console.status("Inspecting projects...", spinner="dots"):
        try:
            reports = asyncio.run(_collect_reports(config))
        except ConfigError as e:
            console.print(f"[bold red]ERROR:[/bold red] {e}")
            sys.exit(1)

    table = Table(title="repo-push Projects")
    table.add_column("Project", style="cyan")
    table.add_column("Branch")
    table.add_column("Uncommitted", justify="right")
    table.add_column("Push State")
    table.add_column("Remote", style="dim")

    for report in reports:
        if report.error:
            state = f"[bold red]{report.error}[/bold red]"
        elif report.decision is None:
            state = "[yellow]Never pushed[/yellow]"
        elif report.decision.needs_push:
            parts = []
            if report.decision.branch_needs_push:
                parts.append(f"branch -> {TARGET_BRANCH}")
            if report.decision.tags_need_push:
                parts.append("tags")
            state = f"[yellow]Pending ({', '.join(parts)})[/yellow]"
        else:
            state = "[green]In sync[/green]"

        table.add_row(
            report.project.name,
            report.branch or "-",
            str(report.pending_files),
            state,
            report.project.remote_url,
        )

    console.print(table)


def run_now(config: Config) -> None:
    """Commits and pushes every project once, then exits."""
    daemon.setup_logging(interactive=True)
    try:
        results = asyncio.run(daemon.run_once(config))
    except ConfigError as e:
        console.print(f"[bold red]ERROR:[/bold red] {e}")
        sys.exit(1)

    pushed = sum(results.values())
    console.print(
        f"[bold green]✔ Done.[/bold green] {pushed}/{len(results)} project(s) pushed."
    )


def open_config(config_path: Path) -> None:
    """Opens the configuration file in the user's editor, creating it if needed."""
    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(CONFIG_TEMPLATE)
        config_path.chmod(0o600)

    editor = os.environ.get("EDITOR") or "nano"
    console.print(f"Opening [cyan]{config_path}[/cyan]...")
    try:
        subprocess.run([editor, str(config_path)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="repo-push Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row("github", "token", "str", "required", "GitHub personal access token.")
    table.add_row("", "author_name", "str", "from GitHub", "Commit author name.")
    table.add_row("", "author_email", "str", "from GitHub", "Commit author email.")
    table.add_row(
        "", "login", "str", "author_name", "GitHub login (selects user vs org repos)."
    )

    table.add_row(
        "daemon",
        "sync_interval",
        "int | str",
        '"60m"',
        "Time between push sweeps (e.g., '60m', '1hr', 3600).",
    )
    table.add_row(
        "",
        "commit_debounce",
        "int | str",
        '"3s"',
        "Quiet period after the last change before committing (e.g., '3s', '500ms').",
    )
    table.add_row(
        "",
        "watch_stabilization",
        "int | str",
        '"500ms"',
        "Window in which rapid writes are coalesced into one event.",
    )

    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation.",
    )
    table.add_row("", "git_timeout", "int | str", '"5m"', "Timeout for local git commands.")
    table.add_row(
        "", "push_timeout", "int | str", '"2m"', "Timeout for network git commands."
    )
    table.add_row("", "http_timeout", "int | str", '"30s"', "Timeout for GitHub API calls.")
    table.add_row(
        "", "max_output_size", "int | str", '"1kb"', "Captured stdout per git command."
    )

    table.add_row(
        "projects", "remote_url", "str", "required", "GitHub repository URL."
    )
    table.add_row("", "path", "str", "required", "Local working directory.")

    console.print(table)


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the repo-push CLI."""
    parser = argparse.ArgumentParser(
        prog="repo-push",
        description="Commit local changes and keep them pushed to GitHub.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.toml (default: $REPO_PUSH_CONFIG or ~/.config/repo-push)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Run the sync daemon in the foreground")
    subparsers.add_parser("now", help="Commit and push every project once")
    subparsers.add_parser("status", help="Show commit and push state of projects")
    subparsers.add_parser("log", help="Tail the daemon log file")
    config_parser = subparsers.add_parser(
        "config", help="Open the config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    args = parser.parse_args(argv)
    config_path = args.config or Config.default_path()

    if args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config(config_path)
        return
    elif args.command == "log":
        tail_log()
        return
    elif args.command == "now":
        run_now(daemon.load_or_exit(config_path))
        return
    elif args.command == "status":
        show_status(daemon.load_or_exit(config_path))
        return

    # Default action: run the daemon.
    if not config_path.exists():
        console.print(
            Panel(
                f"No configuration found at [cyan]{config_path}[/cyan].\n"
                "Run [bold cyan]repo-push config[/bold cyan] to create one.",
                title="repo-push",
                expand=False,
                border_style="yellow",
            )
        )
        sys.exit(1)
    daemon.main(config_path)


if __name__ == "__main__":
    main()

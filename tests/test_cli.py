"""Tests for the Command Line Interface (CLI) module."""

import io
import stat
from pathlib import Path
from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import requires_git
from rich.console import Console

from repo_push import cli
from repo_push.config import Config, ConfigError, GitHubConfig, ProjectConfig


@pytest.fixture
def output(mocker: MagicMock) -> io.StringIO:
    """Redirects the CLI console into a wide in-memory buffer."""
    buffer = io.StringIO()
    mocker.patch.object(cli, "console", Console(file=buffer, width=200))
    return buffer


async def test_inspect_missing_directory(tmp_path: Path, ctx) -> None:
    project = ProjectConfig("https://github.com/robo/gone", tmp_path / "gone")

    report = await cli.inspect_project(project, ctx)

    assert report.error == "Directory does not exist"


@requires_git
async def test_inspect_never_pushed_project(
    make_repo: Callable[..., Path], ctx
) -> None:
    """Verifies that inspection counts changes and never touches the network."""
    path = make_repo(commits=1)
    (path / "draft.md").write_text("draft\n")
    project = ProjectConfig("https://github.com/robo/project", path)

    report = await cli.inspect_project(project, ctx)

    assert report.error is None
    assert report.pending_files == 1
    assert report.decision is None


def test_show_status_renders_table(
    tmp_path: Path, output: io.StringIO, mocker: MagicMock, ctx
) -> None:
    mocker.patch("repo_push.cli.daemon.resolve_context", new=AsyncMock(return_value=ctx))
    config = Config(
        github=GitHubConfig(token="t"),
        projects=[ProjectConfig("https://github.com/robo/gone", tmp_path / "gone")],
    )

    cli.show_status(config)

    text = output.getvalue()
    assert "gone" in text
    assert "Directory does not exist" in text


def test_show_status_exits_without_identity(
    output: io.StringIO, mocker: MagicMock
) -> None:
    mocker.patch(
        "repo_push.cli.daemon.resolve_context",
        new=AsyncMock(side_effect=ConfigError("no identity")),
    )

    with pytest.raises(SystemExit) as excinfo:
        cli.show_status(Config())

    assert excinfo.value.code == 1
    assert "no identity" in output.getvalue()


def test_run_now_reports_summary(
    tmp_path: Path, output: io.StringIO, mocker: MagicMock
) -> None:
    mocker.patch("repo_push.cli.daemon.setup_logging")
    mocker.patch(
        "repo_push.cli.daemon.run_once",
        new=AsyncMock(return_value={tmp_path / "a": True, tmp_path / "b": False}),
    )

    cli.run_now(Config())

    assert "1/2 project(s) pushed" in output.getvalue()


def test_open_config_creates_private_template(
    tmp_path: Path, output: io.StringIO, mocker: MagicMock
) -> None:
    run = mocker.patch("repo_push.cli.subprocess.run")
    mocker.patch.dict("os.environ", {"EDITOR": "vi"})
    config_path = tmp_path / "conf" / "config.toml"

    cli.open_config(config_path)

    assert "[github]" in config_path.read_text()
    assert stat.S_IMODE(config_path.stat().st_mode) == 0o600
    run.assert_called_once_with(["vi", str(config_path)])


def test_config_list_prints_reference(output: io.StringIO) -> None:
    cli.main(["config", "--list"])

    text = output.getvalue()
    for key in ("token", "sync_interval", "commit_debounce", "remote_url"):
        assert key in text


def test_default_command_without_config_exits(
    tmp_path: Path, output: io.StringIO, mocker: MagicMock
) -> None:
    serve = mocker.patch("repo_push.cli.daemon.main")

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(tmp_path / "missing.toml")])

    assert excinfo.value.code == 1
    serve.assert_not_called()
    assert "repo-push config" in output.getvalue()


def test_now_command_rejects_invalid_config(tmp_path: Path) -> None:
    """Verifies that startup validation problems are fatal."""
    config_path = tmp_path / "config.toml"
    config_path.write_text('[github]\ntoken = ""\n')

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(config_path), "now"])

    assert excinfo.value.code == 1

import asyncio
from pathlib import Path
from typing import Callable
from unittest.mock import MagicMock

import pytest
from conftest import git, requires_git

from repo_push.git_wrapper import GitError, GitRepo, GitTimeoutError


def test_rejects_non_repository(tmp_path: Path) -> None:
    """Verifies that a directory without .git is refused up front."""
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_accepts_directory_inside_work_tree(tmp_path: Path) -> None:
    """Verifies that a project nested in a larger work tree is accepted."""
    (tmp_path / ".git").mkdir()
    nested = tmp_path / "docs" / "guides"
    nested.mkdir(parents=True)

    assert GitRepo(nested).path == nested


@requires_git
async def test_run_returns_trimmed_output(make_repo: Callable[..., Path]) -> None:
    """Verifies stdout capture, trimming, and the stdout byte limit."""
    repo = GitRepo(make_repo(commits=1))

    result = await repo.run(["log", "--format=%s"])
    assert result.stdout == "commit 0"
    assert not result.truncated

    bounded = await repo.run(["log", "--format=%H"], max_output=8)
    assert len(bounded.stdout) == 8
    assert bounded.truncated

    discarded = await repo.run(["log", "--format=%H"], discard_stdout=True)
    assert discarded.stdout == ""


@requires_git
async def test_run_raises_with_stderr(make_repo: Callable[..., Path]) -> None:
    """Verifies that a non-zero exit surfaces git's stderr as the message."""
    repo = GitRepo(make_repo())

    with pytest.raises(GitError) as excinfo:
        await repo.run(["rev-parse", "--verify", "no-such-branch"])

    assert not isinstance(excinfo.value, GitTimeoutError)
    assert str(excinfo.value)


@requires_git
async def test_wrappers_on_real_repository(make_repo: Callable[..., Path]) -> None:
    """Verifies the convenience wrappers against a real repository."""
    path = make_repo(commits=2)
    git(path, "tag", "v1")
    repo = GitRepo(path)

    assert await repo.is_repo()
    assert await repo.current_branch() == git(path, "rev-parse", "--abbrev-ref", "HEAD")
    assert await repo.status_porcelain() == []
    assert await repo.rev_parse("HEAD") == git(path, "rev-parse", "HEAD")
    assert await repo.rev_parse("missing") is None
    assert await repo.ahead_count("HEAD~1", "HEAD") == 1
    assert await repo.list_tags() == ["v1"]
    assert await repo.get_remote_url("github") is None

    (path / "new.txt").write_text("x")
    assert await repo.status_porcelain() == ["?? new.txt"]


@requires_git
async def test_ls_remote_against_bare_repository(
    make_repo: Callable[..., Path], bare_remote: Path
) -> None:
    """Verifies remote branch and tag listing without a fetch."""
    path = make_repo(commits=1)
    git(path, "tag", "v1")
    git(path, "tag", "-a", "v2", "-m", "annotated")
    repo = GitRepo(path)
    await repo.add_remote("github", str(bare_remote))

    assert await repo.ls_remote_head("github", "main") is None

    await repo.push("github", "HEAD:main", "refs/tags/v1", "refs/tags/v2", force=True)

    assert await repo.ls_remote_head("github", "main") == git(path, "rev-parse", "HEAD")
    assert await repo.ls_remote_tags("github") == {"v1", "v2"}


async def test_timeout_kills_process(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that a hung command is killed and reported as a timeout."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path)

    exited = asyncio.Event()
    proc = MagicMock()
    proc.stdout = None
    proc.stderr = None
    proc.returncode = None

    async def wait() -> int:
        await exited.wait()
        return -9

    proc.wait = wait
    proc.kill = MagicMock(side_effect=exited.set)
    mocker.patch("asyncio.create_subprocess_exec", return_value=proc)

    with pytest.raises(GitTimeoutError, match="timed out after 0.05s: git fetch"):
        await repo.run(["fetch"], timeout=0.05)

    proc.kill.assert_called_once()


async def test_missing_git_executable(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that a spawn failure becomes a GitError."""
    (tmp_path / ".git").mkdir()
    repo = GitRepo(tmp_path)
    mocker.patch(
        "asyncio.create_subprocess_exec", side_effect=FileNotFoundError("git")
    )

    with pytest.raises(GitError, match="Could not start git"):
        await repo.run(["status"])
    assert await repo.is_repo() is False


@requires_git
async def test_list_tags_refuses_truncated_listing(
    make_repo: Callable[..., Path], mocker: MagicMock
) -> None:
    """Verifies that an oversized tag list is an error, never a partial list."""
    path = make_repo(commits=1)
    for name in ("v1.0.0", "v1.0.1", "v1.0.2"):
        git(path, "tag", name)
    repo = GitRepo(path)

    assert await repo.list_tags() == ["v1.0.0", "v1.0.1", "v1.0.2"]

    mocker.patch("repo_push.git_wrapper.TAG_LIST_LIMIT", 10)
    with pytest.raises(GitError, match="Tag list exceeds 10 bytes"):
        await repo.list_tags()

"""Shared fixtures: real git repositories and a scripted watch source."""

import asyncio
import shutil
import subprocess
from pathlib import Path
from typing import Callable

import pytest
from watchfiles import Change

from repo_push.config import DaemonConfig, LimitsConfig
from repo_push.context import Identity, SyncContext

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def git(path: Path, *args: str) -> str:
    """Runs a git command synchronously and returns its stripped stdout."""
    res = subprocess.run(
        [
            "git",
            "-c",
            "user.name=Test",
            "-c",
            "user.email=test@example.com",
            "-c",
            "commit.gpgsign=false",
            *args,
        ],
        cwd=path,
        capture_output=True,
        text=True,
        check=True,
    )
    return res.stdout.strip()


@pytest.fixture
def ctx() -> SyncContext:
    """A context with short timings suitable for tests."""
    return SyncContext(
        token="ghp_testtoken",
        identity=Identity(name="Robo Tester", email="robo@example.com", login="robo"),
        daemon=DaemonConfig(
            sync_interval=3600, commit_debounce=0.2, watch_stabilization=0.05
        ),
        limits=LimitsConfig(git_timeout=30, push_timeout=30, http_timeout=5),
    )


@pytest.fixture
def make_repo(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating a git working directory, optionally with initial commits."""

    def factory(name: str = "project", commits: int = 0) -> Path:
        path = tmp_path / name
        path.mkdir()
        git(path, "init", "-q")
        for i in range(commits):
            (path / f"file{i}.txt").write_text(f"content {i}\n")
            git(path, "add", "-A")
            git(path, "commit", "-q", "-m", f"commit {i}")
        return path

    return factory


@pytest.fixture
def bare_remote(tmp_path: Path) -> Path:
    """An empty bare repository standing in for the GitHub remote."""
    path = tmp_path / "remote.git"
    path.mkdir()
    git(path, "init", "-q", "--bare")
    return path


class FakeWatch:
    """A watch source fed by the test instead of the file system."""

    def __init__(self):
        self.queue: asyncio.Queue = asyncio.Queue()

    def __call__(self, path: Path, stop: asyncio.Event):
        return self._iterate(stop)

    async def _iterate(self, stop: asyncio.Event):
        while not stop.is_set():
            yield await self.queue.get()

    async def emit(self, *paths: Path, change: Change = Change.modified) -> None:
        self.queue.put_nowait({(change, str(p)) for p in paths})
        await asyncio.sleep(0.01)

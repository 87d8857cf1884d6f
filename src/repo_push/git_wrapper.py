import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)

STDERR_LIMIT = 1024
"""int: Max bytes of stderr kept for error messages."""

TAG_LIST_LIMIT = 1024 * 1024
"""int: Max bytes of `git tag --list` output read before giving up."""

_CHUNK_SIZE = 4096


class GitError(RuntimeError):
    """Raised when a git command exits non-zero or cannot be started."""


class GitTimeoutError(GitError):
    """Raised when a git command exceeds its timeout and is killed."""


@dataclass(frozen=True)
class GitResult:
    """The trimmed output of a successful git command.

    Attributes:
        stdout (str): Captured stdout, cut at the capture limit.
        stderr (str): Captured stderr.
        truncated (bool): Whether stdout exceeded the capture limit.
    """

    stdout: str
    stderr: str
    truncated: bool = False


async def _drain(
    stream: asyncio.StreamReader | None, limit: int
) -> tuple[bytes, bool]:
    """Reads a stream to EOF, keeping at most `limit` bytes.

    Returns:
        tuple[bytes, bool]: The kept bytes and whether anything was dropped.
    """
    if stream is None:
        return b"", False
    kept = bytearray()
    dropped = False
    while chunk := await stream.read(_CHUNK_SIZE):
        room = limit - len(kept)
        kept.extend(chunk[:room])
        dropped = dropped or len(chunk) > room
    return bytes(kept), dropped


class GitRepo:
    """An asynchronous wrapper around the Git command-line interface.

    Every command runs as a subprocess of the event loop with an explicit
    timeout; on expiry the process is killed. Output capture is bounded so a
    chatty command can never grow memory without limit.

    Attributes:
        path (Path): The project directory: a work tree root or a directory
            inside one.
        timeout (float): Default timeout in seconds for commands.
        max_output (int): Default number of stdout bytes captured.
    """

    def __init__(self, path: Path, timeout: float = 300.0, max_output: int = 1024):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The work tree root, or a directory inside it.
            timeout (float): Default command timeout in seconds.
            max_output (int): Default stdout capture limit in bytes.

        Raises:
            ValueError: If neither the path nor any parent has a .git entry.
        """
        self.path = path
        self.timeout = timeout
        self.max_output = max_output
        if not any((p / ".git").exists() for p in (path, *path.parents)):
            raise ValueError(f"Not a git repository: {self.path}")

    @property
    def name(self) -> str:
        return self.path.name

    async def run(
        self,
        args: list[str],
        *,
        timeout: float | None = None,
        discard_stdout: bool = False,
        max_output: int | None = None,
        env: dict[str, str] | None = None,
    ) -> GitResult:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): Arguments passed to the git executable.
            timeout (float | None): Seconds before the process is killed.
                Defaults to the instance timeout.
            discard_stdout (bool): Whether to drop stdout entirely. Useful for
                high-volume commands whose output is irrelevant.
            max_output (int | None): Max stdout bytes to keep.
            env (dict[str, str] | None): Extra environment variables.

        Returns:
            GitResult: The trimmed stdout and stderr.

        Raises:
            GitTimeoutError: If the command did not finish in time.
            GitError: If the command could not start or exited non-zero.
        """
        timeout = self.timeout if timeout is None else timeout
        limit = self.max_output if max_output is None else max_output
        full_env = {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})}

        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self.path,
                env=full_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=(
                    asyncio.subprocess.DEVNULL
                    if discard_stdout
                    else asyncio.subprocess.PIPE
                ),
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise GitError(f"Could not start git: {e}") from e

        try:
            (stdout, truncated), (stderr, _), _ = await asyncio.wait_for(
                asyncio.gather(
                    _drain(proc.stdout, limit),
                    _drain(proc.stderr, STDERR_LIMIT),
                    proc.wait(),
                ),
                timeout=timeout,
            )
        except TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                pass  # Exited between the timeout and the kill.
            await proc.wait()
            raise GitTimeoutError(
                f"Git command timed out after {timeout:g}s: git {' '.join(args)}"
            ) from None

        out = stdout.decode(errors="replace").strip()
        err = stderr.decode(errors="replace").strip()
        if proc.returncode != 0:
            raise GitError(err or f"Git command failed with code {proc.returncode}")
        return GitResult(stdout=out, stderr=err, truncated=truncated)

    async def _output(self, args: list[str], **kwargs) -> str:
        return (await self.run(args, **kwargs)).stdout

    async def is_repo(self) -> bool:
        """Checks that git itself recognizes the working directory."""
        try:
            await self.run(["rev-parse", "--git-dir"], discard_stdout=True)
            return True
        except GitError:
            return False

    async def current_branch(self) -> str:
        """Retrieves the checked-out branch name, defaulting to 'main'.

        Returns:
            str: The branch name, or 'main' if it cannot be determined.
        """
        try:
            branch = await self._output(
                ["rev-parse", "--abbrev-ref", "HEAD"], max_output=256
            )
        except GitError as e:
            logger.debug(f"Could not read branch of {self.name}: {e}")
            return "main"
        return branch or "main"

    async def status_porcelain(self) -> list[str]:
        """Returns the porcelain status lines (possibly truncated).

        Only emptiness is meaningful to callers, so the capture limit applies.
        """
        output = await self._output(["status", "--porcelain"])
        return output.splitlines() if output else []

    async def add_all(self) -> None:
        """Stages all changes, including deletions and untracked files."""
        await self.run(["add", "-A"], discard_stdout=True)

    async def set_config(self, key: str, value: str) -> None:
        """Sets a repository-local configuration value."""
        await self.run(["config", key, value], discard_stdout=True)

    async def commit(self, message: str) -> None:
        """Creates a new commit from the index with the provided message."""
        await self.run(["commit", "-m", message], discard_stdout=True)

    async def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash.

        Returns:
            str | None: The hash, or None if the revision could not be resolved.
        """
        try:
            return await self._output(["rev-parse", "--verify", "--quiet", rev])
        except GitError as e:
            logger.debug(f"rev-parse failed for '{rev}' in {self.name}: {e}")
            return None

    async def ls_remote_head(
        self, remote: str, branch: str, timeout: float | None = None
    ) -> str | None:
        """Looks up a branch hash on the remote without fetching.

        Returns:
            str | None: The remote hash, or None if the branch does not exist.

        Raises:
            GitError: If the remote could not be queried.
        """
        output = await self._output(
            ["ls-remote", "--heads", remote, f"refs/heads/{branch}"], timeout=timeout
        )
        for line in output.splitlines():
            sha, _, ref = line.partition("\t")
            if ref.strip() == f"refs/heads/{branch}":
                return sha.strip()
        return None

    async def ahead_count(self, base: str, head: str) -> int:
        """Counts commits reachable from `head` but not from `base`.

        Raises:
            GitError: If either revision is unknown locally.
        """
        output = await self._output(["rev-list", "--count", f"{base}..{head}"])
        return int(output or "0")

    async def list_tags(self) -> list[str]:
        """Lists local tag names.

        Raises:
            GitError: If the listing fails or exceeds `TAG_LIST_LIMIT` bytes, so
                that no tag is ever silently left out of a comparison.
        """
        result = await self.run(["tag", "--list"], max_output=TAG_LIST_LIMIT)
        if result.truncated:
            raise GitError(f"Tag list exceeds {TAG_LIST_LIMIT} bytes")
        return result.stdout.splitlines() if result.stdout else []

    async def ls_remote_tags(self, remote: str, timeout: float | None = None) -> set[str]:
        """Lists tag names present on the remote.

        Raises:
            GitError: If the remote could not be queried.
        """
        output = await self._output(
            ["ls-remote", "--tags", remote], timeout=timeout, max_output=256 * 1024
        )
        tags = set()
        for line in output.splitlines():
            _, _, ref = line.partition("\t")
            ref = ref.strip()
            if ref.startswith("refs/tags/"):
                tags.add(ref.removeprefix("refs/tags/").removesuffix("^{}"))
        return tags

    async def get_remote_url(self, remote: str) -> str | None:
        """Returns the URL of a remote, or None if it is not configured."""
        try:
            return await self._output(["remote", "get-url", remote])
        except GitError:
            return None

    async def add_remote(self, remote: str, url: str) -> None:
        await self.run(["remote", "add", remote, url], discard_stdout=True)

    async def set_remote_url(self, remote: str, url: str) -> None:
        await self.run(["remote", "set-url", remote, url], discard_stdout=True)

    async def push(
        self,
        remote: str,
        *refs: str,
        force: bool = False,
        set_upstream: bool = False,
        tags: bool = False,
        timeout: float | None = None,
    ) -> None:
        """Pushes refs (or all tags) to a remote.

        Args:
            remote (str): The remote name.
            *refs (str): Refspecs to push.
            force (bool): Whether to overwrite remote refs unconditionally.
            set_upstream (bool): Whether to record the upstream tracking branch.
            tags (bool): Whether to push all local tags.
            timeout (float | None): Seconds before the push is killed.
        """
        cmd = ["push"]
        if set_upstream:
            cmd.append("--set-upstream")
        cmd.append(remote)
        cmd.extend(refs)
        if tags:
            cmd.append("--tags")
        if force:
            cmd.append("--force")
        await self.run(cmd, discard_stdout=True, timeout=timeout)

import logging
import re
from dataclasses import dataclass

import httpx

from .constants import APP_NAME, GITHUB_API_URL, REPO_DESCRIPTION
from .context import Identity, SyncContext

logger = logging.getLogger(APP_NAME)

_GITHUB_URL = re.compile(
    r"github\.com[/:](?P<owner>[^/:\s]+)/(?P<repo>[^/\s]+?)(?:\.git)?/?$"
)


@dataclass(frozen=True)
class RepoStatus:
    """Outcome of ensuring a GitHub repository exists.

    Attributes:
        exists (bool): Whether the repository is known to exist now.
        can_retry (bool): Whether a failed attempt should be repeated on the
            next sweep without human intervention.
    """

    exists: bool
    can_retry: bool


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Extracts the owner and repository name from a GitHub URL.

    Supports `https://github.com/owner/repo`, `git@github.com:owner/repo` and
    `ssh://git@github.com/owner/repo`, each with or without a `.git` suffix.

    Args:
        url (str): The remote URL.

    Returns:
        tuple[str, str] | None: `(owner, repo)`, or None if the URL is not a
        recognizable GitHub repository URL.
    """
    match = _GITHUB_URL.search(url.strip())
    if not match:
        return None
    return match.group("owner"), match.group("repo")


class GitHubClient:
    """A minimal asynchronous client for the GitHub REST API.

    Usable as an async context manager; the underlying connection pool is closed
    on exit.
    """

    def __init__(
        self,
        token: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=GITHUB_API_URL,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_user(self) -> dict:
        """Fetches the authenticated user.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        response = await self._client.get("/user")
        response.raise_for_status()
        return response.json()

    async def get_repo(self, owner: str, repo: str) -> dict:
        """Fetches a repository.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        response = await self._client.get(f"/repos/{owner}/{repo}")
        response.raise_for_status()
        return response.json()

    async def create_repo(self, name: str, org: str | None = None) -> dict:
        """Creates a private, empty repository for the user or an organization.

        Raises:
            httpx.HTTPError: On network failure or a non-2xx response.
        """
        endpoint = f"/orgs/{org}/repos" if org else "/user/repos"
        response = await self._client.post(
            endpoint,
            json={
                "name": name,
                "private": True,
                "auto_init": False,
                "description": REPO_DESCRIPTION,
            },
        )
        response.raise_for_status()
        return response.json()


async def fetch_identity(client: GitHubClient) -> Identity | None:
    """Builds a commit identity from the authenticated GitHub user.

    The name falls back to the login and the email to the user's noreply address.

    Returns:
        Identity | None: The identity, or None if the lookup failed.
    """
    try:
        data = await client.get_user()
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch GitHub user info: {e}")
        return None

    login = data["login"]
    return Identity(
        name=data.get("name") or login,
        email=data.get("email") or f"{data['id']}+{login}@users.noreply.github.com",
        login=login,
    )


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", response.reason_phrase)
    except ValueError:
        return response.reason_phrase


async def _create(
    owner: str, repo: str, ctx: SyncContext, client: GitHubClient
) -> RepoStatus:
    org = None if owner == ctx.identity.login else owner
    try:
        await client.create_repo(repo, org=org)
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        if status in (401, 403):
            logger.warning(
                f"PERMISSION {repo}: Cannot auto-create repository "
                "(missing Administration permission).\n"
                "   Option 1: Add 'Administration: Read and write' permission "
                "to your token.\n"
                f"   Option 2: Manually create the repository at "
                f"https://github.com/{owner}/{repo}\n"
                "   Will retry on next sync interval..."
            )
        else:
            logger.error(
                f"CREATE ERROR {repo}: Failed to create repository "
                f"({status}): {_error_message(e.response)}"
            )
        return RepoStatus(exists=False, can_retry=True)
    except httpx.HTTPError as e:
        logger.error(f"CREATE ERROR {repo}: Failed to create repository: {e}")
        return RepoStatus(exists=False, can_retry=True)

    logger.info(f"CREATED {repo}: Private repository created on GitHub.")
    return RepoStatus(exists=True, can_retry=False)


async def ensure_github_repo(
    remote_url: str, ctx: SyncContext, client: GitHubClient
) -> RepoStatus:
    """Verifies a GitHub repository exists, creating it privately if absent.

    Classification:
    - Malformed URL: not retryable, there is no automatic recovery path.
    - Present, or created now: exists.
    - Creation refused (401/403) or failed otherwise: retryable, a human may
      grant the permission or create the repository by hand.
    - Lookup failed with anything but 404 (network, rate limit): retryable.

    Args:
        remote_url (str): The configured GitHub URL.
        ctx (SyncContext): Supplies the identity that decides user vs org creation.
        client (GitHubClient): An authenticated API client.

    Returns:
        RepoStatus: Whether the repository exists and whether to retry later.
    """
    parsed = parse_github_url(remote_url)
    if parsed is None:
        logger.error(f"CONFIG ERROR: Failed to parse GitHub URL: {remote_url}")
        return RepoStatus(exists=False, can_retry=False)

    owner, repo = parsed
    try:
        await client.get_repo(owner, repo)
        return RepoStatus(exists=True, can_retry=False)
    except httpx.HTTPStatusError as e:
        if e.response.status_code != 404:
            logger.error(
                f"LOOKUP ERROR {repo}: Failed to check repository "
                f"({e.response.status_code}): {_error_message(e.response)}"
            )
            return RepoStatus(exists=False, can_retry=True)
    except httpx.HTTPError as e:
        logger.error(f"LOOKUP ERROR {repo}: Failed to check repository: {e}")
        return RepoStatus(exists=False, can_retry=True)

    logger.info(f"MISSING {repo}: Repository doesn't exist, attempting to create...")
    return await _create(owner, repo, ctx, client)

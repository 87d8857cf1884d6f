"""Decides whether a project actually needs a push.

Pushing is forced and idempotent, so the only cost of a spurious push is
bandwidth, while a skipped push silently leaves the backup stale. Every lookup
that cannot complete therefore resolves to "needs sync".
"""

import logging
from dataclasses import dataclass

from .constants import APP_NAME, REMOTE_NAME, TARGET_BRANCH
from .context import SyncContext
from .git_wrapper import GitError, GitRepo

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class SyncDecision:
    """What a sweep has to push for one project."""

    branch_needs_push: bool
    tags_need_push: bool

    @property
    def needs_push(self) -> bool:
        return self.branch_needs_push or self.tags_need_push


async def branch_needs_sync(repo: GitRepo, branch: str, ctx: SyncContext) -> bool:
    """Checks whether the remote target branch lags behind local `branch`.

    Policy, in order:
    1. Remote branch missing: sync needed.
    2. Local and remote hashes equal: no sync needed.
    3. Otherwise sync is needed iff `remote..local` counts at least one commit.

    A remote hash that is unknown locally (the remote has history we never
    fetched) makes the count fail, which resolves to a sync: local history is
    authoritative and will be force-pushed over it.

    Args:
        repo (GitRepo): The local repository.
        branch (str): The local branch pushed to the fixed remote target branch.
        ctx (SyncContext): Supplies the network timeout.

    Returns:
        bool: True if a push is needed or the answer is uncertain.
    """
    try:
        remote_sha = await repo.ls_remote_head(
            REMOTE_NAME, TARGET_BRANCH, timeout=ctx.limits.push_timeout
        )
    except GitError as e:
        logger.warning(
            f"SYNC CHECK {repo.name}: Remote lookup failed ({e}). Assuming push needed."
        )
        return True

    if remote_sha is None:
        return True

    local_sha = await repo.rev_parse(branch)
    if local_sha is None:
        logger.warning(
            f"SYNC CHECK {repo.name}: Cannot resolve '{branch}'. Assuming push needed."
        )
        return True
    if local_sha == remote_sha:
        return False

    try:
        return await repo.ahead_count(remote_sha, local_sha) > 0
    except (GitError, ValueError) as e:
        logger.debug(f"Ahead count failed for {repo.name}: {e}")
        return True


async def tags_need_sync(repo: GitRepo, ctx: SyncContext) -> bool:
    """Checks whether any local tag is missing on the remote.

    Returns:
        bool: False when there are no local tags, True when a tag is missing
        remotely or the remote listing fails.
    """
    try:
        local_tags = await repo.list_tags()
    except GitError as e:
        logger.warning(
            f"SYNC CHECK {repo.name}: Cannot list local tags ({e}). Assuming push needed."
        )
        return True
    if not local_tags:
        return False

    try:
        remote_tags = await repo.ls_remote_tags(
            REMOTE_NAME, timeout=ctx.limits.push_timeout
        )
    except GitError as e:
        logger.warning(
            f"SYNC CHECK {repo.name}: Remote tag lookup failed ({e}). Assuming push needed."
        )
        return True

    return any(tag not in remote_tags for tag in local_tags)


async def detect(repo: GitRepo, branch: str, ctx: SyncContext) -> SyncDecision:
    """Computes the full sync decision for one project."""
    return SyncDecision(
        branch_needs_push=await branch_needs_sync(repo, branch, ctx),
        tags_need_push=await tags_need_sync(repo, ctx),
    )

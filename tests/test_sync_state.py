from unittest.mock import AsyncMock, MagicMock

import pytest

from repo_push import sync_state
from repo_push.git_wrapper import GitError


@pytest.fixture
def repo() -> MagicMock:
    """A GitRepo double whose remote and local state is set per test."""
    mock = MagicMock()
    mock.name = "project"
    mock.ls_remote_head = AsyncMock(return_value="a" * 40)
    mock.rev_parse = AsyncMock(return_value="a" * 40)
    mock.ahead_count = AsyncMock(return_value=0)
    mock.list_tags = AsyncMock(return_value=[])
    mock.ls_remote_tags = AsyncMock(return_value=set())
    return mock


async def test_equal_hashes_need_no_push(repo, ctx) -> None:
    assert await sync_state.branch_needs_sync(repo, "main", ctx) is False
    repo.ahead_count.assert_not_called()
    repo.ls_remote_head.assert_awaited_once_with("github", "main", timeout=30)


async def test_missing_remote_branch_needs_push(repo, ctx) -> None:
    repo.ls_remote_head.return_value = None

    assert await sync_state.branch_needs_sync(repo, "main", ctx) is True
    repo.rev_parse.assert_not_called()


async def test_local_ahead_needs_push(repo, ctx) -> None:
    repo.rev_parse.return_value = "b" * 40
    repo.ahead_count.return_value = 2

    assert await sync_state.branch_needs_sync(repo, "work", ctx) is True
    repo.rev_parse.assert_awaited_once_with("work")
    repo.ahead_count.assert_awaited_once_with("a" * 40, "b" * 40)


async def test_local_behind_needs_no_push(repo, ctx) -> None:
    repo.rev_parse.return_value = "b" * 40
    repo.ahead_count.return_value = 0

    assert await sync_state.branch_needs_sync(repo, "main", ctx) is False


@pytest.mark.parametrize(
    "failure",
    ["ls_remote_head", "ahead_count"],
)
async def test_lookup_failures_resolve_to_push(repo, ctx, failure: str) -> None:
    """Verifies that uncertainty always means a push."""
    repo.rev_parse.return_value = "b" * 40
    getattr(repo, failure).side_effect = GitError("unreachable")

    assert await sync_state.branch_needs_sync(repo, "main", ctx) is True


async def test_unresolvable_local_branch_needs_push(repo, ctx) -> None:
    repo.rev_parse.return_value = None

    assert await sync_state.branch_needs_sync(repo, "main", ctx) is True


async def test_no_local_tags_need_no_push(repo, ctx) -> None:
    assert await sync_state.tags_need_sync(repo, ctx) is False
    repo.ls_remote_tags.assert_not_called()


async def test_tags_all_present_need_no_push(repo, ctx) -> None:
    repo.list_tags.return_value = ["v1", "v2"]
    repo.ls_remote_tags.return_value = {"v1", "v2", "v0"}

    assert await sync_state.tags_need_sync(repo, ctx) is False


async def test_missing_remote_tag_needs_push(repo, ctx) -> None:
    repo.list_tags.return_value = ["v1", "v2"]
    repo.ls_remote_tags.return_value = {"v1"}

    assert await sync_state.tags_need_sync(repo, ctx) is True


@pytest.mark.parametrize("failure", ["list_tags", "ls_remote_tags"])
async def test_tag_lookup_failures_resolve_to_push(repo, ctx, failure: str) -> None:
    repo.list_tags.return_value = ["v1"]
    getattr(repo, failure).side_effect = GitError("unreachable")

    assert await sync_state.tags_need_sync(repo, ctx) is True


async def test_detect_combines_branch_and_tags(repo, ctx) -> None:
    repo.list_tags.return_value = ["v1"]

    decision = await sync_state.detect(repo, "main", ctx)

    assert decision == sync_state.SyncDecision(
        branch_needs_push=False, tags_need_push=True
    )
    assert decision.needs_push
    assert not sync_state.SyncDecision(False, False).needs_push

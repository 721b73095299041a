from unittest.mock import AsyncMock

import pytest

from app.modules.identity_sync.domain.membership import (
    GitHubMembershipReconciler,
    linked_usernames,
    plan_membership_changes,
)
from app.modules.identity_sync.domain.types import DirectoryUser, InvitedUser, TargetMembership
from app.shared.core.exceptions import ExternalAPIError, SyncAlreadyRunningError


def _directory(*users: DirectoryUser) -> AsyncMock:
    directory = AsyncMock()
    directory.list_users.return_value = list(users)
    return directory


def _github(members=(), pending=(), ids=None) -> AsyncMock:
    github = AsyncMock()
    github.list_members.return_value = set(members)
    github.list_pending_invitations.return_value = set(pending)
    ids = ids or {}
    github.get_user_id.side_effect = lambda username: ids.get(username)
    return github


def test_linked_usernames_normalizes_and_skips_unlinked():
    linked = linked_usernames(
        [
            DirectoryUser("alice@example.com", "Alice"),
            DirectoryUser("nolink@example.com", None),
            DirectoryUser("blank@example.com", "  "),
        ]
    )
    assert linked == {"alice": "alice@example.com"}


def test_plan_is_disjoint_and_honours_stop_list():
    membership = TargetMembership(
        members=frozenset({"bob", "admin-bot", "dave"}), pending_invites=frozenset({"erin"})
    )
    to_invite, to_remove = plan_membership_changes(
        ["Alice", "dave", "erin"], membership, frozenset({"admin-bot"})
    )
    assert to_invite == ["alice"]
    assert to_remove == ["bob"]
    assert not set(to_invite) & set(to_remove)


@pytest.mark.asyncio
async def test_invites_missing_and_removes_unlinked():
    directory = _directory(DirectoryUser("alice@example.com", "alice"))
    github = _github(members={"bob"}, ids={"alice": 101})
    reconciler = GitHubMembershipReconciler(directory, github)

    result = await reconciler.sync_members()

    github.invite.assert_awaited_once_with(101)
    github.remove_member.assert_awaited_once_with("bob")
    assert result.invited == [InvitedUser(username="alice", email="alice@example.com")]
    assert result.removed == ["bob"]
    assert result.errors == []
    assert result.has_changes


@pytest.mark.asyncio
async def test_pending_invitation_not_reinvited():
    directory = _directory(DirectoryUser("carol@example.com", "Carol"))
    github = _github(pending={"carol"})
    reconciler = GitHubMembershipReconciler(directory, github)

    result = await reconciler.sync_members()

    github.get_user_id.assert_not_called()
    github.invite.assert_not_awaited()
    assert not result.has_changes


@pytest.mark.asyncio
async def test_stop_list_protects_members():
    github = _github(members={"ci-bot", "bob"})
    reconciler = GitHubMembershipReconciler(_directory(), github, remove_stop_list=["CI-Bot"])

    result = await reconciler.sync_members()

    github.remove_member.assert_awaited_once_with("bob")
    assert result.removed == ["bob"]


@pytest.mark.asyncio
async def test_unknown_github_user_recorded():
    directory = _directory(DirectoryUser("ghost@example.com", "ghost"))
    reconciler = GitHubMembershipReconciler(directory, _github())

    result = await reconciler.sync_members()

    assert result.invited == []
    assert result.errors == ["User ghost with email ghost@example.com not found on GitHub"]


@pytest.mark.asyncio
async def test_per_user_failures_do_not_stop_the_run():
    directory = _directory(
        DirectoryUser("alice@example.com", "alice"),
        DirectoryUser("zed@example.com", "zed"),
    )
    github = _github(members={"bob", "carl"}, ids={"alice": 1, "zed": 2})
    github.invite.side_effect = [ExternalAPIError("boom"), None]
    github.remove_member.side_effect = [None, ExternalAPIError("forbidden")]
    reconciler = GitHubMembershipReconciler(directory, github)

    result = await reconciler.sync_members()

    assert [u.username for u in result.invited] == ["zed"]
    assert result.removed == ["bob"]
    assert result.errors == ["Error inviting alice: boom", "Error removing carl: forbidden"]


@pytest.mark.asyncio
async def test_dry_run_reports_without_mutating():
    directory = _directory(DirectoryUser("alice@example.com", "alice"))
    github = _github(members={"bob"}, ids={"alice": 101})
    reconciler = GitHubMembershipReconciler(directory, github, dry_run=True)

    result = await reconciler.sync_members()

    github.invite.assert_not_awaited()
    github.remove_member.assert_not_awaited()
    assert result.dry_run
    assert [u.username for u in result.invited] == ["alice"]
    assert result.removed == ["bob"]


@pytest.mark.asyncio
async def test_snapshot_failure_propagates():
    github = _github()
    github.list_members.side_effect = ExternalAPIError("GitHub down")
    reconciler = GitHubMembershipReconciler(_directory(), github)

    with pytest.raises(ExternalAPIError):
        await reconciler.sync_members()
    github.remove_member.assert_not_awaited()


@pytest.mark.asyncio
async def test_overlapping_run_rejected():
    reconciler = GitHubMembershipReconciler(_directory(), _github())

    async with reconciler.run_guard.hold("sync_members"):
        with pytest.raises(SyncAlreadyRunningError):
            await reconciler.sync_members()


@pytest.mark.asyncio
async def test_missing_directory_email_recorded():
    directory = _directory(DirectoryUser("", "orphan"))
    github = _github(ids={"orphan": 7})
    reconciler = GitHubMembershipReconciler(directory, github)

    result = await reconciler.sync_members()

    github.invite.assert_not_awaited()
    assert result.errors == ["No directory email found for GitHub user orphan"]

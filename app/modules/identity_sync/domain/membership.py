from collections.abc import Iterable
from typing import Optional, Protocol

import structlog

from app.modules.identity_sync.domain.types import (
    DirectoryUser,
    InvitedUser,
    ReconciliationResult,
    TargetMembership,
)
from app.shared.core.identity import normalize_username
from app.shared.core.run_guard import RunGuard

logger = structlog.get_logger()


class DirectorySource(Protocol):
    async def list_users(self) -> list[DirectoryUser]: ...


class SourceControlOrg(Protocol):
    async def list_members(self) -> set[str]: ...

    async def list_pending_invitations(self) -> set[str]: ...

    async def get_user_id(self, username: str) -> Optional[int]: ...

    async def invite(self, user_id: int) -> None: ...

    async def remove_member(self, username: str) -> None: ...


def linked_usernames(users: Iterable[DirectoryUser]) -> dict[str, str]:
    """Map each normalized linked GitHub username to the email of the directory user owning it."""
    linked: dict[str, str] = {}
    for user in users:
        username = normalize_username(user.github_username)
        if username and username not in linked:
            linked[username] = user.primary_email
    return linked


def plan_membership_changes(
    wanted: Iterable[str],
    membership: TargetMembership,
    remove_stop_list: frozenset[str],
) -> tuple[list[str], list[str]]:
    """
    Compute the invite and remove sets.

    Invite: wanted users who are neither members nor already invited.
    Remove: members nobody in the directory links to, minus the stop list.
    The two sets are disjoint: one is a subset of `wanted`, the other excludes it.
    """
    wanted_set = {normalize_username(u) for u in wanted if normalize_username(u)}
    members = {normalize_username(m) for m in membership.members}
    pending = {normalize_username(p) for p in membership.pending_invites}
    to_invite = wanted_set - (members | pending)
    to_remove = members - wanted_set - remove_stop_list
    return sorted(to_invite), sorted(to_remove)


class GitHubMembershipReconciler:
    """
    Keeps GitHub org membership in line with the GitHub usernames linked in
    Google Workspace.

    State is always fetched fresh: invite/remove decisions must not be made
    from a cached snapshot.
    """

    def __init__(
        self,
        directory: DirectorySource,
        github: SourceControlOrg,
        *,
        remove_stop_list: Iterable[str] = (),
        dry_run: bool = False,
    ):
        self.directory = directory
        self.github = github
        self.remove_stop_list = frozenset(
            normalize_username(u) for u in remove_stop_list if normalize_username(u)
        )
        self.dry_run = dry_run
        self.run_guard = RunGuard("github_membership")

    async def _fetch_membership(self) -> TargetMembership:
        members = await self.github.list_members()
        pending = await self.github.list_pending_invitations()
        return TargetMembership(members=frozenset(members), pending_invites=frozenset(pending))

    async def sync_members(self) -> ReconciliationResult:
        async with self.run_guard.hold("sync_members"):
            try:
                directory_users = await self.directory.list_users()
                membership = await self._fetch_membership()
            except Exception as e:
                logger.error("github_sync_snapshot_failed", error=str(e))
                raise

            result = ReconciliationResult(dry_run=self.dry_run)
            linked = linked_usernames(directory_users)
            to_invite, to_remove = plan_membership_changes(
                linked.keys(), membership, self.remove_stop_list
            )
            logger.info(
                "github_sync_planned",
                wanted=len(linked),
                members=len(membership.members),
                pending_invites=len(membership.pending_invites),
                to_invite=len(to_invite),
                to_remove=len(to_remove),
                dry_run=self.dry_run,
            )

            for username in to_invite:
                await self._invite(username, linked.get(username), result)
            for username in to_remove:
                await self._remove(username, result)

            logger.info(
                "github_sync_completed",
                invited=len(result.invited),
                removed=len(result.removed),
                errors=len(result.errors),
            )
            return result

    async def _invite(
        self, username: str, email: Optional[str], result: ReconciliationResult
    ) -> None:
        try:
            user_id = await self.github.get_user_id(username)
            if user_id is None:
                result.errors.append(f"User {username} with email {email} not found on GitHub")
                return
            if not email:
                result.errors.append(f"No directory email found for GitHub user {username}")
                return
            if not self.dry_run:
                await self.github.invite(user_id)
            result.invited.append(InvitedUser(username=username, email=email))
        except Exception as e:
            result.errors.append(f"Error inviting {username}: {e}")
            logger.error("github_invite_failed", username=username, error=str(e))

    async def _remove(self, username: str, result: ReconciliationResult) -> None:
        try:
            if not self.dry_run:
                await self.github.remove_member(username)
            result.removed.append(username)
        except Exception as e:
            result.errors.append(f"Error removing {username}: {e}")
            logger.error("github_remove_failed", username=username, error=str(e))

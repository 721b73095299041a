"""
Atlassian user lifecycle driven by Google Workspace.

Three independent checks, each re-deriving state from the current
Atlassian membership status:

- directory absence: active accounts missing from Workspace are suspended
  (after a grace period for newly added accounts)
- 90-day inactivity: active accounts missing from Workspace with no product
  activity for more than 90 days are suspended
- 180-day inactivity: already suspended accounts missing from Workspace with
  no activity for more than 180 days are deleted

Typical scheduled use:

    reconciler.clear_cache()
    await reconciler.sync_suspensions()
    await reconciler.check_3_month_inactivity()
    await reconciler.check_6_month_inactivity()

Snapshots are cached per reconciler for 10 minutes so the three checks of
one run share a single directory and tenant fetch.
"""

import math
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import structlog

from app.modules.identity_sync.domain.types import (
    ActivityRecord,
    DirectoryUser,
    LifecycleAction,
    LifecycleResult,
    LifecycleUser,
    ProductActivity,
    TenantAccountStatus,
    TenantUser,
)
from app.shared.core.cache import SnapshotCache
from app.shared.core.identity import normalize_email, parse_timestamp
from app.shared.core.rate_limit import FixedIntervalRateLimiter
from app.shared.core.run_guard import RunGuard

logger = structlog.get_logger()

INACTIVITY_SUSPENSION_DAYS = 90
INACTIVITY_DELETION_DAYS = 180
ACTIVITY_LOOKUP_INTERVAL_SECONDS = 2.0
DEFAULT_GRACE_PERIOD_DAYS = 7

DIRECTORY_CACHE_KEY = "directory_users"
TENANT_CACHE_KEY = "tenant_users"


class DirectorySource(Protocol):
    async def list_users(self) -> list[DirectoryUser]: ...


class TenantAdmin(Protocol):
    async def list_tenant_users(self) -> list[TenantUser]: ...

    async def get_last_active(self, account_id: str) -> ActivityRecord: ...

    async def suspend(self, account_id: str) -> None: ...

    async def delete(self, account_id: str) -> None: ...


def get_most_recent_activity(products: Iterable[ProductActivity]) -> Optional[datetime]:
    """Latest valid activity timestamp across all products, or None."""
    timestamps = [
        ts
        for ts in (parse_timestamp(product.last_active) for product in products)
        if ts is not None
    ]
    if not timestamps:
        return None
    return max(timestamps)


def days_since(timestamp: datetime, now: datetime) -> int:
    return math.floor((now - timestamp).total_seconds() / 86400)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AtlassianLifecycleReconciler:
    def __init__(
        self,
        directory: DirectorySource,
        atlassian: TenantAdmin,
        *,
        suspend_stop_list: Iterable[str] = (),
        dry_run: bool = False,
        grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
        managed_email_domain: Optional[str] = None,
        cache: Optional[SnapshotCache] = None,
        rate_limiter: Optional[FixedIntervalRateLimiter] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.directory = directory
        self.atlassian = atlassian
        self.suspend_stop_list = frozenset(
            normalize_email(e) for e in suspend_stop_list if normalize_email(e)
        )
        self.dry_run = dry_run
        self.grace_period_days = grace_period_days
        domain = normalize_email(managed_email_domain).lstrip("@")
        self.managed_email_domain = domain or None
        self.cache = cache or SnapshotCache()
        self.rate_limiter = rate_limiter or FixedIntervalRateLimiter(
            ACTIVITY_LOOKUP_INTERVAL_SECONDS
        )
        self._now = now
        self.run_guard = RunGuard("atlassian_lifecycle")

    def clear_cache(self) -> None:
        """Drop cached snapshots; call between independent runs."""
        self.cache.invalidate()

    async def _directory_emails(self) -> set[str]:
        users = await self.cache.get_or_fetch(DIRECTORY_CACHE_KEY, self.directory.list_users)
        return {user.normalized_email for user in users if user.normalized_email}

    async def _tenant_users(self) -> list[TenantUser]:
        return await self.cache.get_or_fetch(TENANT_CACHE_KEY, self.atlassian.list_tenant_users)

    def _is_managed(self, email: str) -> bool:
        if self.managed_email_domain is None:
            return True
        return email.endswith(f"@{self.managed_email_domain}")

    def _within_grace_period(self, user: TenantUser, now: datetime) -> bool:
        if self.grace_period_days <= 0 or user.added_to_org is None:
            return False
        return now - user.added_to_org < timedelta(days=self.grace_period_days)

    async def sync_suspensions(self) -> LifecycleResult:
        """Suspend active accounts whose owner is no longer in Google Workspace."""
        async with self.run_guard.hold("sync_suspensions"):
            try:
                workspace_emails = await self._directory_emails()
                tenant_users = await self._tenant_users()
            except Exception as e:
                logger.error("atlassian_suspension_sync_snapshot_failed", error=str(e))
                raise

            now = self._now()
            candidates: list[LifecycleUser] = []
            for user in tenant_users:
                email = user.normalized_email
                if user.status != TenantAccountStatus.ACTIVE or email in workspace_emails:
                    continue
                if not self._is_managed(email) or email in self.suspend_stop_list:
                    continue
                if self._within_grace_period(user, now):
                    logger.info(
                        "atlassian_suspension_skipped_grace_period",
                        email=user.email,
                        added_to_org=user.added_to_org.isoformat() if user.added_to_org else None,
                    )
                    continue
                candidates.append(LifecycleUser(email=user.email, account_id=user.account_id))

            result = LifecycleResult(reason="directory_absence", dry_run=self.dry_run)
            await self._apply(LifecycleAction.SUSPEND, candidates, result)
            logger.info(
                "atlassian_suspension_sync_completed",
                suspended=len(result.suspended),
                errors=len(result.errors),
                dry_run=self.dry_run,
            )
            return result

    async def check_3_month_inactivity(self) -> LifecycleResult:
        """Suspend active accounts outside Workspace idle for more than 90 days."""
        async with self.run_guard.hold("check_3_month_inactivity"):
            result = LifecycleResult(reason="inactivity_90d", dry_run=self.dry_run)
            inactive = await self._find_inactive_users(
                INACTIVITY_SUSPENSION_DAYS, active=True, result=result
            )
            await self._apply(LifecycleAction.SUSPEND, inactive, result)
            logger.info(
                "atlassian_3_month_inactivity_completed",
                suspended=len(result.suspended),
                errors=len(result.errors),
                dry_run=self.dry_run,
            )
            return result

    async def check_6_month_inactivity(self) -> LifecycleResult:
        """Delete suspended accounts outside Workspace idle for more than 180 days."""
        async with self.run_guard.hold("check_6_month_inactivity"):
            result = LifecycleResult(reason="inactivity_180d", dry_run=self.dry_run)
            inactive = await self._find_inactive_users(
                INACTIVITY_DELETION_DAYS, active=False, result=result
            )
            await self._apply(LifecycleAction.DELETE, inactive, result)
            logger.info(
                "atlassian_6_month_inactivity_completed",
                deleted=len(result.deleted),
                errors=len(result.errors),
                dry_run=self.dry_run,
            )
            return result

    async def _find_inactive_users(
        self,
        threshold_days: int,
        *,
        active: bool,
        result: LifecycleResult,
    ) -> list[LifecycleUser]:
        """
        Accounts past the inactivity threshold, filtered to active or non-active
        status. Lookup failures are recorded on `result` and skipped.
        """
        try:
            workspace_emails = await self._directory_emails()
            tenant_users = await self._tenant_users()
        except Exception as e:
            logger.error("atlassian_inactivity_snapshot_failed", error=str(e))
            raise

        to_check = [
            user
            for user in tenant_users
            if (user.status == TenantAccountStatus.ACTIVE) == active
            and user.normalized_email not in self.suspend_stop_list
            and user.normalized_email not in workspace_emails
        ]
        logger.info(
            "atlassian_inactivity_check_started",
            threshold_days=threshold_days,
            candidates=len(to_check),
        )

        inactive: list[LifecycleUser] = []
        for user in to_check:
            try:
                await self.rate_limiter.acquire()
                record = await self.atlassian.get_last_active(user.account_id)
            except Exception as e:
                result.errors.append(
                    f"Failed to check activity for {user.email} ({user.account_id}): {e}"
                )
                logger.error(
                    "atlassian_activity_lookup_failed",
                    email=user.email,
                    account_id=user.account_id,
                    error=str(e),
                )
                continue

            most_recent = get_most_recent_activity(record.products)
            if most_recent is None:
                logger.debug("atlassian_activity_missing_skipped", email=user.email)
                continue

            inactive_days = days_since(most_recent, self._now())
            if inactive_days > threshold_days:
                inactive.append(
                    LifecycleUser(
                        email=user.email,
                        account_id=user.account_id,
                        last_active=most_recent,
                        inactive_days=inactive_days,
                    )
                )
        return inactive

    async def _apply(
        self,
        action: LifecycleAction,
        users: list[LifecycleUser],
        result: LifecycleResult,
    ) -> None:
        """Suspend or delete each user; dry runs report without calling the API."""
        for user in users:
            try:
                if not self.dry_run:
                    if action == LifecycleAction.SUSPEND:
                        await self.atlassian.suspend(user.account_id)
                    else:
                        await self.atlassian.delete(user.account_id)
                if action == LifecycleAction.SUSPEND:
                    result.suspended.append(user)
                else:
                    result.deleted.append(user)
            except Exception as e:
                verb = "suspend" if action == LifecycleAction.SUSPEND else "delete"
                result.errors.append(f"Failed to {verb} {user.email} ({user.account_id}): {e}")
                logger.error(
                    f"atlassian_{verb}_failed",
                    email=user.email,
                    account_id=user.account_id,
                    error=str(e),
                )

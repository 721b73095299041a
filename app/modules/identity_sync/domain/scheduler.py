from collections.abc import Awaitable, Callable
from typing import Any, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.modules.identity_sync.domain.lifecycle import AtlassianLifecycleReconciler
from app.modules.identity_sync.domain.membership import GitHubMembershipReconciler
from app.modules.notifications.domain.formatting import (
    format_github_sync,
    format_lifecycle_result,
)
from app.modules.notifications.domain.slack import SlackService
from app.shared.core.exceptions import SyncAlreadyRunningError

logger = structlog.get_logger()


class SyncScheduler:
    """Runs the reconcilers on cron schedules and reports results to Slack."""

    def __init__(
        self,
        github_sync: GitHubMembershipReconciler,
        atlassian_sync: AtlassianLifecycleReconciler,
        slack: Optional[SlackService],
        *,
        github_org_name: str,
        sync_schedule: str,
        inactivity_3m_schedule: str,
        inactivity_6m_schedule: str,
        timezone: str = "UTC",
    ):
        self.scheduler = AsyncIOScheduler(timezone=timezone)
        self.github_sync = github_sync
        self.atlassian_sync = atlassian_sync
        self.slack = slack
        self.github_org_name = github_org_name
        self.sync_schedule = sync_schedule
        self.inactivity_3m_schedule = inactivity_3m_schedule
        self.inactivity_6m_schedule = inactivity_6m_schedule

    def start(self) -> None:
        jobs = {
            "github_sync": (self.github_sync_job, self.sync_schedule),
            "atlassian_sync": (self.atlassian_sync_job, self.sync_schedule),
            "atlassian_inactivity_3m": (self.inactivity_3m_job, self.inactivity_3m_schedule),
            "atlassian_inactivity_6m": (self.inactivity_6m_job, self.inactivity_6m_schedule),
        }
        for job_id, (func, schedule) in jobs.items():
            self.scheduler.add_job(
                func,
                CronTrigger.from_crontab(schedule, timezone=self.scheduler.timezone),
                id=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.info("scheduler_job_registered", job=job_id, schedule=schedule)
        self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def _run(
        self,
        job_name: str,
        run: Callable[[], Awaitable[Any]],
        render: Callable[[Any], dict[str, Any]],
    ) -> Any:
        logger.info("scheduler_job_started", job=job_name)
        try:
            result = await run()
        except SyncAlreadyRunningError as e:
            logger.warning("scheduler_job_skipped_run_in_progress", job=job_name, active_run=e.active_run)
            return None
        except Exception as e:
            logger.error("scheduler_job_failed", job=job_name, error=str(e), exc_info=True)
            return None

        if result.has_changes and self.slack is not None:
            await self.slack.notify(render(result))
        logger.info("scheduler_job_completed", job=job_name, has_changes=result.has_changes)
        return result

    async def github_sync_job(self) -> Any:
        return await self._run(
            "github_sync",
            self.github_sync.sync_members,
            lambda result: format_github_sync(result, self.github_org_name),
        )

    async def atlassian_sync_job(self) -> Any:
        self.atlassian_sync.clear_cache()
        return await self._run(
            "atlassian_sync", self.atlassian_sync.sync_suspensions, format_lifecycle_result
        )

    async def inactivity_3m_job(self) -> Any:
        self.atlassian_sync.clear_cache()
        return await self._run(
            "atlassian_inactivity_3m",
            self.atlassian_sync.check_3_month_inactivity,
            format_lifecycle_result,
        )

    async def inactivity_6m_job(self) -> Any:
        self.atlassian_sync.clear_cache()
        return await self._run(
            "atlassian_inactivity_6m",
            self.atlassian_sync.check_6_month_inactivity,
            format_lifecycle_result,
        )

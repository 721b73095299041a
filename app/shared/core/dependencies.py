"""
Wiring: turns Settings into explicit constructor arguments.

Reconcilers and adapters never read settings themselves; everything they
need is passed in here, so tests can build them with synthetic values.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from app.modules.identity_sync.domain.lifecycle import AtlassianLifecycleReconciler
from app.modules.identity_sync.domain.membership import GitHubMembershipReconciler
from app.modules.notifications.domain.slack import SlackService
from app.shared.adapters.atlassian import AtlassianAdminClient
from app.shared.adapters.github import GitHubOrgClient
from app.shared.adapters.google_directory import (
    GoogleDirectoryClient,
    load_service_account_credentials,
)
from app.shared.core.config import Settings, get_settings
from app.shared.core.exceptions import ConfigurationError


@dataclass
class SyncContainer:
    settings: Settings
    github_sync: GitHubMembershipReconciler
    atlassian_sync: AtlassianLifecycleReconciler
    slack: Optional[SlackService]


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise ConfigurationError(f"{name} must be configured")
    return value


def build_container(settings: Settings) -> SyncContainer:
    credentials = load_service_account_credentials(
        _require(settings.GOOGLE_APPLICATION_CREDENTIALS, "GOOGLE_APPLICATION_CREDENTIALS"),
        _require(settings.GOOGLE_ADMIN_EMAIL, "GOOGLE_ADMIN_EMAIL"),
    )
    directory = GoogleDirectoryClient(credentials)
    github = GitHubOrgClient(
        token=_require(settings.GITHUB_TOKEN, "GITHUB_TOKEN"),
        org=_require(settings.GITHUB_ORG_NAME, "GITHUB_ORG_NAME"),
    )
    atlassian = AtlassianAdminClient(
        org_id=_require(settings.ATLASSIAN_ORG_ID, "ATLASSIAN_ORG_ID"),
        admin_email=_require(settings.ATLASSIAN_ADMIN_EMAIL, "ATLASSIAN_ADMIN_EMAIL"),
        api_key=_require(settings.ATLASSIAN_API_KEY, "ATLASSIAN_API_KEY"),
    )

    slack = None
    if settings.SLACK_BOT_TOKEN:
        slack = SlackService(
            bot_token=settings.SLACK_BOT_TOKEN,
            channel_id=settings.SLACK_NOTIFY_CHANNEL,
            notify_user_ids=settings.slack_notify_user_ids,
        )

    return SyncContainer(
        settings=settings,
        github_sync=GitHubMembershipReconciler(
            directory,
            github,
            remove_stop_list=settings.remove_stop_list,
            dry_run=settings.SYNC_DRY_RUN,
        ),
        atlassian_sync=AtlassianLifecycleReconciler(
            directory,
            atlassian,
            suspend_stop_list=settings.suspend_stop_list,
            dry_run=settings.ATLASSIAN_DRY_RUN,
            grace_period_days=settings.ATLASSIAN_GRACE_PERIOD_DAYS,
            managed_email_domain=settings.ATLASSIAN_MANAGED_EMAIL_DOMAIN,
        ),
        slack=slack,
    )


@lru_cache
def get_sync_container() -> SyncContainer:
    """One container per process: one reconciler instance per target system."""
    return build_container(get_settings())

from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


def parse_identity_list(raw: Optional[str]) -> frozenset[str]:
    """Split a comma-separated list of usernames/emails into a normalized set."""
    if not raw:
        return frozenset()
    return frozenset(
        item.strip().lower() for item in raw.split(",") if item.strip()
    )


class Settings(BaseSettings):
    """
    Main configuration for access-sync.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    APP_NAME: str = "access-sync"
    DEBUG: bool = False
    TESTING: bool = False

    # Google Workspace (source of truth)
    GOOGLE_APPLICATION_CREDENTIALS: Optional[str] = None  # service account JSON
    GOOGLE_ADMIN_EMAIL: Optional[str] = None  # impersonated admin

    # GitHub organization
    GITHUB_TOKEN: Optional[str] = None
    GITHUB_ORG_NAME: Optional[str] = None
    REMOVE_STOP_LIST: str = ""
    SYNC_DRY_RUN: bool = False

    # Slack
    SLACK_BOT_TOKEN: Optional[str] = None
    SLACK_SIGNING_SECRET: Optional[str] = None
    SLACK_NOTIFY_CHANNEL: Optional[str] = None
    SLACK_NOTIFY_USER_IDS: str = ""

    # Schedules (crontab syntax)
    CRON_SCHEDULE: str = "0 0 * * *"
    ATLASSIAN_INACTIVITY_3M_SCHEDULE: str = "0 2 * * sun"
    ATLASSIAN_INACTIVITY_6M_SCHEDULE: str = "0 3 * * sun"

    # Atlassian organization
    ATLASSIAN_API_KEY: Optional[str] = None
    ATLASSIAN_ORG_ID: Optional[str] = None
    ATLASSIAN_ADMIN_EMAIL: Optional[str] = None
    ATLASSIAN_SUSPEND_STOP_LIST: str = ""
    ATLASSIAN_DRY_RUN: bool = False
    ATLASSIAN_GRACE_PERIOD_DAYS: int = 7
    # Only accounts in this domain are suspended for directory absence.
    ATLASSIAN_MANAGED_EMAIL_DOMAIN: Optional[str] = None

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        if self.TESTING:
            return self

        required = {
            "GOOGLE_APPLICATION_CREDENTIALS": self.GOOGLE_APPLICATION_CREDENTIALS,
            "GOOGLE_ADMIN_EMAIL": self.GOOGLE_ADMIN_EMAIL,
            "GITHUB_TOKEN": self.GITHUB_TOKEN,
            "GITHUB_ORG_NAME": self.GITHUB_ORG_NAME,
            "SLACK_BOT_TOKEN": self.SLACK_BOT_TOKEN,
            "SLACK_SIGNING_SECRET": self.SLACK_SIGNING_SECRET,
            "ATLASSIAN_API_KEY": self.ATLASSIAN_API_KEY,
            "ATLASSIAN_ORG_ID": self.ATLASSIAN_ORG_ID,
            "ATLASSIAN_ADMIN_EMAIL": self.ATLASSIAN_ADMIN_EMAIL,
        }
        missing = sorted(name for name, value in required.items() if not value)
        if missing:
            raise ValueError(f"Missing required settings: {', '.join(missing)}")

        if self.ATLASSIAN_GRACE_PERIOD_DAYS < 0:
            raise ValueError("ATLASSIAN_GRACE_PERIOD_DAYS must be >= 0")
        return self

    @property
    def remove_stop_list(self) -> frozenset[str]:
        return parse_identity_list(self.REMOVE_STOP_LIST)

    @property
    def suspend_stop_list(self) -> frozenset[str]:
        return parse_identity_list(self.ATLASSIAN_SUSPEND_STOP_LIST)

    @property
    def slack_notify_user_ids(self) -> list[str]:
        # Slack user ids are case-sensitive; keep them as given.
        return [
            item.strip() for item in self.SLACK_NOTIFY_USER_IDS.split(",") if item.strip()
        ]

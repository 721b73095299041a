"""Slack Block Kit rendering of sync results."""

from datetime import datetime
from typing import Any, Optional

from app.modules.identity_sync.domain.types import (
    LifecycleResult,
    LifecycleUser,
    ReconciliationResult,
)

_MAX_SECTION_CHARS = 2900  # Slack caps section text at 3000 chars
_TRUNCATION_SUFFIX = "… (truncated)"
NO_CHANGES_TEXT = "No changes detected."

_LIFECYCLE_HEADERS = {
    "directory_absence": "Atlassian Sync Results",
    "inactivity_90d": "Atlassian 3-Month Inactivity Check",
    "inactivity_180d": "Atlassian 6-Month Inactivity Check",
}


def _truncate(text: str, max_chars: int = _MAX_SECTION_CHARS) -> str:
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - len(_TRUNCATION_SUFFIX))] + _TRUNCATION_SUFFIX


def _section(title: str, lines: list[str]) -> dict[str, Any]:
    return {
        "type": "section",
        "text": {"type": "mrkdwn", "text": _truncate(f"*{title}:*\n" + "\n".join(lines))},
    }


def _header(text: str) -> dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def _message(text: str, header: str, sections: list[dict[str, Any]]) -> dict[str, Any]:
    if not sections:
        sections = [{"type": "section", "text": {"type": "mrkdwn", "text": NO_CHANGES_TEXT}}]
    return {
        "text": text,
        "blocks": [_header(header), *sections, {"type": "divider"}],
    }


def _with_dry_run(text: str, dry_run: bool) -> str:
    return f"{text} [DRY RUN]" if dry_run else text


def _github_profile_link(org_name: str, username: str) -> str:
    return f"<https://github.com/orgs/{org_name}/people/{username}|{username}>"


def format_github_sync(result: ReconciliationResult, org_name: str) -> dict[str, Any]:
    sections = []
    if result.invited:
        sections.append(
            _section(
                "Invited users",
                [f"• {_github_profile_link(org_name, u.username)} – {u.email}" for u in result.invited],
            )
        )
    if result.removed:
        sections.append(
            _section(
                "Removed users",
                [f"• {_github_profile_link(org_name, username)}" for username in result.removed],
            )
        )
    if result.errors:
        sections.append(_section("Errors", [f"• {msg}" for msg in result.errors]))

    text = "Sync completed! Here are the results:"
    if result.dry_run:
        text = f"[DRY RUN] {text}"
    return _message(text, _with_dry_run("Sync results", result.dry_run), sections)


def _format_date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else "unknown"


def _inactive_line(user: LifecycleUser, *, bold: bool = False, suffix: str = "") -> str:
    email = f"*{user.email}*" if bold else user.email
    return (
        f"• {email} - Last active: {_format_date(user.last_active)} "
        f"({user.inactive_days} days ago){suffix}"
    )


def format_lifecycle_result(result: LifecycleResult) -> dict[str, Any]:
    sections = []
    if result.reason == "directory_absence":
        if result.suspended:
            sections.append(
                _section(
                    "Suspended users (removed from Workspace)",
                    [f"• {u.email} (account: {u.account_id[:8]}...)" for u in result.suspended],
                )
            )
    else:
        if result.suspended:
            sections.append(
                _section(
                    "Suspended users (inactive >90 days)",
                    [_inactive_line(u) for u in result.suspended],
                )
            )
        if result.deleted:
            sections.append(
                _section(
                    "Deleted users (inactive >180 days)",
                    [_inactive_line(u, bold=True, suffix=" [14-day grace period]") for u in result.deleted],
                )
            )
    if result.errors:
        sections.append(_section("Errors", [f"• {msg}" for msg in result.errors]))

    header = _LIFECYCLE_HEADERS.get(result.reason, "Atlassian Sync Results")
    if result.reason == "directory_absence":
        text = "Atlassian sync completed! Here are the results:"
    else:
        text = "Atlassian inactivity check completed!"
    if result.dry_run:
        text = f"[DRY RUN] {text}"
    return _message(text, _with_dry_run(header, result.dry_run), sections)


def format_error(message: str = "Error during sync") -> dict[str, Any]:
    return {"text": message, "response_type": "ephemeral"}

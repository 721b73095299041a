"""
Slack slash-command endpoint.

Slack expects an acknowledgement within three seconds, so the endpoint
verifies the request signature, answers immediately, and runs the sync in a
background task that replies through the command's response_url.
"""

from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import parse_qs

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from slack_sdk.signature import SignatureVerifier

from app.modules.notifications.domain.formatting import (
    format_error,
    format_github_sync,
    format_lifecycle_result,
)
from app.shared.core.dependencies import SyncContainer, get_sync_container
from app.shared.core.exceptions import SyncAlreadyRunningError

logger = structlog.get_logger()

router = APIRouter(prefix="/slack", tags=["slack"])

CommandHandler = Callable[[SyncContainer], Awaitable[dict[str, Any]]]


async def _sync_github(container: SyncContainer) -> dict[str, Any]:
    result = await container.github_sync.sync_members()
    return format_github_sync(result, container.settings.GITHUB_ORG_NAME or "")


async def _sync_atlassian(container: SyncContainer) -> dict[str, Any]:
    return format_lifecycle_result(await container.atlassian_sync.sync_suspensions())


async def _inactivity_3m(container: SyncContainer) -> dict[str, Any]:
    return format_lifecycle_result(await container.atlassian_sync.check_3_month_inactivity())


async def _inactivity_6m(container: SyncContainer) -> dict[str, Any]:
    return format_lifecycle_result(await container.atlassian_sync.check_6_month_inactivity())


COMMAND_HANDLERS: dict[str, CommandHandler] = {
    "/sync-github": _sync_github,
    "/sync-atlassian": _sync_atlassian,
    "/atlassian-inactivity-3m": _inactivity_3m,
    "/atlassian-inactivity-6m": _inactivity_6m,
}


def _usage_text() -> str:
    return "Available commands: " + ", ".join(sorted(COMMAND_HANDLERS))


async def run_command(container: SyncContainer, command: str, response_url: str) -> None:
    handler = COMMAND_HANDLERS[command]
    logger.info("slack_command_started", command=command)
    try:
        message = await handler(container)
    except SyncAlreadyRunningError as e:
        message = format_error(f"{e.active_run} is already running, try again later.")
    except Exception as e:
        logger.error("slack_command_failed", command=command, error=str(e), exc_info=True)
        message = format_error()

    if container.slack is None:
        logger.warning("slack_command_response_skipped_no_client", command=command)
        return
    await container.slack.respond(response_url, message)


@router.post("/commands")
async def handle_command(
    request: Request,
    background_tasks: BackgroundTasks,
    container: SyncContainer = Depends(get_sync_container),
) -> dict[str, Any]:
    body = await request.body()
    verifier = SignatureVerifier(container.settings.SLACK_SIGNING_SECRET or "")
    if not verifier.is_valid_request(body, dict(request.headers)):
        logger.warning("slack_command_signature_invalid")
        raise HTTPException(status_code=401, detail="Invalid Slack signature")

    form = parse_qs(body.decode("utf-8"))
    command = form.get("command", [""])[0]
    response_url = form.get("response_url", [""])[0]

    if command not in COMMAND_HANDLERS or not response_url:
        return {"response_type": "ephemeral", "text": _usage_text()}

    background_tasks.add_task(run_command, container, command, response_url)
    return {"response_type": "ephemeral", "text": f"Running {command}..."}

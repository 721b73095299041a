"""
Slack delivery for sync reports.

Scheduled runs post into a configured channel, or into a group DM opened
with the configured users. Slash-command replies go to the command's
response_url. Delivery failures are logged and reported as False; they
never propagate into the reconcilers.
"""

import asyncio
from collections.abc import Sequence
from typing import Any, Optional

import structlog
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.webhook.async_client import AsyncWebhookClient

logger = structlog.get_logger()

_MAX_RATE_LIMIT_RETRIES = 3


class SlackService:
    def __init__(
        self,
        bot_token: str,
        channel_id: Optional[str] = None,
        notify_user_ids: Sequence[str] = (),
        client: Optional[AsyncWebClient] = None,
    ):
        self.client = client or AsyncWebClient(token=bot_token)
        self.channel_id = channel_id
        self.notify_user_ids = list(notify_user_ids)
        self._group_channel_id: Optional[str] = None

    async def open_group_conversation(self, user_ids: Sequence[str]) -> str:
        """Open (or reuse) a multi-person DM with the given users."""
        response = await self.client.conversations_open(users=",".join(user_ids))
        channel_id = response["channel"]["id"]
        logger.info("slack_group_conversation_opened", channel_id=channel_id, users=len(user_ids))
        return str(channel_id)

    async def _resolve_channel(self) -> Optional[str]:
        if self.channel_id:
            return self.channel_id
        if not self.notify_user_ids:
            return None
        if self._group_channel_id is None:
            self._group_channel_id = await self.open_group_conversation(self.notify_user_ids)
        return self._group_channel_id

    async def post_message(self, channel: str, message: dict[str, Any]) -> bool:
        for attempt in range(_MAX_RATE_LIMIT_RETRIES + 1):
            try:
                await self.client.chat_postMessage(
                    channel=channel,
                    text=message.get("text", ""),
                    blocks=message.get("blocks"),
                )
                return True
            except SlackApiError as e:
                if e.response.get("error") == "ratelimited" and attempt < _MAX_RATE_LIMIT_RETRIES:
                    retry_after = int(e.response.headers.get("Retry-After", 1))
                    logger.warning("slack_rate_limited", retry_after=retry_after, attempt=attempt + 1)
                    await asyncio.sleep(retry_after)
                    continue
                logger.error("slack_post_failed", channel=channel, error=str(e))
                return False
        return False

    async def notify(self, message: dict[str, Any]) -> bool:
        """Post a report to the configured channel or group conversation."""
        try:
            channel = await self._resolve_channel()
        except SlackApiError as e:
            logger.error("slack_conversation_open_failed", error=str(e))
            return False
        if channel is None:
            logger.warning("slack_notify_skipped_no_destination")
            return False
        return await self.post_message(channel, message)

    async def respond(self, response_url: str, message: dict[str, Any]) -> bool:
        """Reply to a slash command through its response_url."""
        webhook = AsyncWebhookClient(response_url)
        try:
            response = await webhook.send_dict(message)
        except Exception as e:
            logger.error("slack_command_response_failed", error=str(e))
            return False
        if response.status_code != 200:
            logger.error("slack_command_response_rejected", status=response.status_code, body=response.body)
            return False
        return True


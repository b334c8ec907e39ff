"""
Slack notification service for costguard.
Posts the cost hygiene digest to the configured Slack channel.
"""
import asyncio
from typing import Optional

import structlog
from slack_sdk.web.async_client import AsyncWebClient
from slack_sdk.errors import SlackApiError

from costguard.modules.reporting.domain.ports import Notifier
from costguard.shared.core.exceptions import NotificationError

logger = structlog.get_logger()

# chat.postMessage truncates text beyond 40,000 characters
MAX_TEXT_LENGTH = 39000


class SlackService(Notifier):
    """Service for sending notifications to Slack."""

    @staticmethod
    def escape_mrkdwn(text: str) -> str:
        """
        Escape Slack control characters to prevent mrkdwn injection.
        References: https://api.slack.com/reference/surfaces/formatting#escaping
        """
        if not text:
            return ""
        return (
            str(text)
            .replace("&", "&amp;")
            .replace("<", "&lt;")
            .replace(">", "&gt;")
        )

    def __init__(self, bot_token: str, channel_id: str, max_retries: int = 3):
        """Initialize with bot token and target channel."""
        self.client = AsyncWebClient(token=bot_token)
        self.channel_id = channel_id
        self.max_retries = max_retries

    async def _send_with_retry(self, method: str, **kwargs):
        """
        Generic Slack API call with backoff on rate limiting.
        Raises NotificationError once the call cannot succeed.
        """
        for attempt in range(self.max_retries + 1):
            try:
                func = getattr(self.client, method)
                response = await func(**kwargs)
                logger.info("slack_message_posted", method=method, ts=_response_field(response, "ts"))
                return response
            except SlackApiError as e:
                error_code = e.response.get("error", "")
                if error_code == "ratelimited" and attempt < self.max_retries:
                    retry_after = int(e.response.headers.get("Retry-After", 2 ** attempt))
                    logger.warning("slack_rate_limited", retry_after=retry_after, attempt=attempt)
                    await asyncio.sleep(retry_after)
                    continue
                raise NotificationError(
                    f"Slack {method} failed: {error_code or 'unknown_error'}",
                    code=error_code or "notification_error",
                    details={"method": method, "attempts": attempt + 1},
                ) from e
            except Exception as e:
                raise NotificationError(
                    f"Slack {method} failed: {e}",
                    details={"method": method, "attempts": attempt + 1},
                ) from e
        raise NotificationError(f"Slack {method} failed: retries exhausted", details={"method": method})

    async def notify(self, text: str) -> bool:
        """Post the report narrative. Failures are logged and reported as False."""
        if len(text) > MAX_TEXT_LENGTH:
            logger.warning("slack_text_truncated", length=len(text), limit=MAX_TEXT_LENGTH)
            text = text[:MAX_TEXT_LENGTH] + "\n_(truncated)_"

        try:
            await self._send_with_retry(
                "chat_postMessage",
                channel=self.channel_id,
                text=text,
                mrkdwn=True,
                unfurl_links=False,
            )
        except NotificationError as e:
            logger.error("slack_send_failed", code=e.code, error=e.message, **e.details)
            return False
        return True


def _response_field(response, key: str):
    try:
        return response.get(key)
    except AttributeError:
        return None


def get_slack_service(settings=None) -> Optional[SlackService]:
    """
    Factory function to get a configured SlackService instance.
    Returns None if Slack is not configured.
    """
    if settings is None:
        from costguard.shared.core.config import get_settings
        settings = get_settings()

    if settings.SLACK_BOT_TOKEN and settings.SLACK_CHANNEL_ID:
        return SlackService(settings.SLACK_BOT_TOKEN, settings.SLACK_CHANNEL_ID)
    return None

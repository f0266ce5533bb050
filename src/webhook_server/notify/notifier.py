"""Notifiers for pipeline and rate-limit events.

Notifications are best effort. The orchestrator dispatches them as detached
tasks and only logs their failures, so a notifier may raise freely:

- Notifier: Abstract base class
- DiscordNotifier: Posts an embed to a Discord webhook
- NullNotifier: Discards notifications (no webhook configured, tests)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from src.webhook_server.errors import NotificationError
from src.webhook_server.notify.models import PipelineNotification, RateLimitNotification

logger = logging.getLogger(__name__)

# Discord rejects embed field values longer than this
MAX_FIELD_LENGTH = 1024

COLOR_STARTED = 0x2ECC71
COLOR_RATE_LIMITED = 0xE67E22


class Notifier(ABC):
    """Abstract base class for notifiers."""

    @abstractmethod
    async def notify_pipeline_started(self, details: PipelineNotification) -> None:
        """Announce a pipeline started from a comment."""

    @abstractmethod
    async def notify_rate_limited(self, details: RateLimitNotification) -> None:
        """Announce a trigger rejected by the rate limiter."""

    async def close(self) -> None:
        """Release resources held by the notifier."""


class NullNotifier(Notifier):
    """Notifier that discards all notifications."""

    async def notify_pipeline_started(self, details: PipelineNotification) -> None:
        pass

    async def notify_rate_limited(self, details: RateLimitNotification) -> None:
        pass


def _field(name: str, value: str, inline: bool = True) -> Dict[str, Any]:
    if len(value) > MAX_FIELD_LENGTH:
        value = value[: MAX_FIELD_LENGTH - 3] + "..."
    return {"name": name, "value": value or "-", "inline": inline}


class DiscordNotifier(Notifier):
    """Posts notifications to a Discord channel webhook.

    Attributes:
        webhook_url: The Discord webhook URL.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def notify_pipeline_started(self, details: PipelineNotification) -> None:
        title = f"{details.trigger_phrase} pipeline started"
        if details.issue_title:
            title = f"{title}: {details.issue_title}"

        fields = [
            _field("Project", details.project_path),
            _field("Author", details.author),
            _field(
                details.resource_type.replace("_", " ").title(),
                f"#{details.resource_id}" if details.resource_id else "-",
            ),
            _field("Branch", details.branch),
            _field("Pipeline", f"[#{details.pipeline_id}]({details.pipeline_url})"),
        ]
        if details.instruction:
            fields.append(_field("Instruction", details.instruction, inline=False))

        await self._post(
            {
                "title": title[:256],
                "url": details.pipeline_url,
                "color": COLOR_STARTED,
                "fields": fields,
                "timestamp": details.timestamp.isoformat(),
            }
        )

    async def notify_rate_limited(self, details: RateLimitNotification) -> None:
        await self._post(
            {
                "title": "Rate limit exceeded",
                "color": COLOR_RATE_LIMITED,
                "fields": [
                    _field("Project", details.project_path),
                    _field("Author", details.author),
                    _field(
                        details.resource_type.replace("_", " ").title(),
                        f"#{details.resource_id}" if details.resource_id else "-",
                    ),
                ],
                "timestamp": details.timestamp.isoformat(),
            }
        )

    async def _post(self, embed: Dict[str, Any]) -> None:
        try:
            response = await self._client.post(self.webhook_url, json={"embeds": [embed]})
        except httpx.HTTPError as e:
            raise NotificationError(f"Discord request failed: {e}") from e

        if response.status_code >= 400:
            raise NotificationError(
                f"Discord webhook returned {response.status_code}: {response.text[:200]}"
            )

    async def close(self) -> None:
        await self._client.aclose()


def create_notifier(
    discord_webhook_url: Optional[str] = None,
    timeout: float = 10.0,
) -> Notifier:
    """Create a notifier for the configured sink.

    Returns a DiscordNotifier when a webhook URL is configured, otherwise a
    NullNotifier.
    """
    if not discord_webhook_url:
        logger.info("No Discord webhook configured, notifications disabled")
        return NullNotifier()
    return DiscordNotifier(discord_webhook_url, timeout=timeout)

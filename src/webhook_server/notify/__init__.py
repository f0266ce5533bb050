"""Best-effort notifications for started and rate-limited triggers."""

from src.webhook_server.notify.models import PipelineNotification, RateLimitNotification
from src.webhook_server.notify.notifier import (
    DiscordNotifier,
    Notifier,
    NullNotifier,
    create_notifier,
)

__all__ = [
    "DiscordNotifier",
    "Notifier",
    "NullNotifier",
    "PipelineNotification",
    "RateLimitNotification",
    "create_notifier",
]

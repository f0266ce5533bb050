"""GitLab webhook handling.

This module authenticates and parses GitLab webhook requests. Only
"Note Hook" events (comments) can trigger an assistant pipeline; all
other hooks are acknowledged and ignored.
"""

from src.webhook_server.webhook.handler import (
    NOTE_HOOK,
    WebhookHandler,
    create_webhook_handler,
)
from src.webhook_server.webhook.models import (
    GitLabEvent,
    InboundEvent,
    IssueEvent,
    IssueRef,
    MergeRequestEvent,
    MergeRequestRef,
    NoteEvent,
    ProjectRef,
    ResourceType,
)

__all__ = [
    "NOTE_HOOK",
    "GitLabEvent",
    "InboundEvent",
    "IssueEvent",
    "IssueRef",
    "MergeRequestEvent",
    "MergeRequestRef",
    "NoteEvent",
    "ProjectRef",
    "ResourceType",
    "WebhookHandler",
    "create_webhook_handler",
]

"""GitLab webhook handler.

This module provides the WebhookHandler class that authenticates and parses
GitLab webhook requests:
- The X-Gitlab-Token header is compared with the configured shared secret
  in constant time.
- The X-Gitlab-Event header selects which hooks are processed; only
  "Note Hook" events can trigger a pipeline.
- The JSON body is validated into the GitLabEvent union and, for notes,
  flattened into an InboundEvent.

Invalid payloads are logged and reported as None rather than raised, so the
caller can answer GitLab quickly without treating them as server errors.
"""

import hmac
import logging
from typing import Any, Optional

from pydantic import TypeAdapter, ValidationError

from src.webhook_server.masking import mask_sensitive
from src.webhook_server.webhook.models import GitLabEvent, InboundEvent, NoteEvent

logger = logging.getLogger(__name__)

NOTE_HOOK = "Note Hook"

_event_adapter: TypeAdapter = TypeAdapter(GitLabEvent)


class WebhookHandler:
    """Authenticates and parses GitLab webhook requests.

    Attributes:
        secret: The shared secret GitLab is configured to send.
    """

    def __init__(self, secret: str) -> None:
        self.secret = secret

    def verify_token(self, token: Optional[str]) -> bool:
        """Check the X-Gitlab-Token header against the shared secret.

        Args:
            token: The header value, or None if the header was absent.

        Returns:
            True if the token matches the configured secret.
        """
        if token is None:
            return False
        return hmac.compare_digest(
            token.encode("utf-8"),
            self.secret.encode("utf-8"),
        )

    @staticmethod
    def is_note_hook(event_kind: Optional[str]) -> bool:
        """Return True if the X-Gitlab-Event header names a Note Hook."""
        return event_kind == NOTE_HOOK

    def parse_event(self, payload: Any) -> Optional[GitLabEvent]:
        """Validate a raw webhook body into a typed GitLab event.

        Args:
            payload: The decoded JSON body.

        Returns:
            NoteEvent, IssueEvent or MergeRequestEvent, or None when the
            body is not a dict or does not match any known event shape.
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        try:
            return _event_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning(
                "Webhook payload failed validation",
                extra={
                    "object_kind": payload.get("object_kind"),
                    "errors": e.error_count(),
                },
            )
            return None

    def parse_note_event(
        self,
        payload: Any,
        event_kind: str,
        secret_token: str = "",
    ) -> Optional[InboundEvent]:
        """Parse a Note Hook body into an InboundEvent.

        Args:
            payload: The decoded JSON body.
            event_kind: The X-Gitlab-Event header value.
            secret_token: The X-Gitlab-Token header value.

        Returns:
            InboundEvent if the body is a valid note event, None otherwise.
        """
        event = self.parse_event(payload)
        if event is None:
            return None

        if not isinstance(event, NoteEvent):
            logger.debug(
                "Ignoring non-note payload on a Note Hook",
                extra={"object_kind": event.object_kind},
            )
            return None

        logger.debug(
            "Webhook payload received",
            extra={"payload": mask_sensitive(payload)},
        )

        return InboundEvent.from_note_event(
            event,
            event_kind=event_kind,
            secret_token=secret_token,
        )


def create_webhook_handler(secret: str) -> WebhookHandler:
    """Factory function to create a WebhookHandler instance.

    Args:
        secret: The shared webhook secret.

    Returns:
        A configured WebhookHandler instance.
    """
    return WebhookHandler(secret=secret)

"""Error kinds raised while processing a webhook.

Each error carries the HTTP status the transport layer should answer with.
The orchestrator maps them to a WebhookResult; only the generic message of
an error ever reaches the caller, the underlying cause stays in the logs.
"""

from typing import Optional


class WebhookError(Exception):
    """Base class for webhook processing errors.

    Attributes:
        message: Human-readable error description (logged, not returned).
        http_status: Status code the transport should answer with.
    """

    http_status: int = 500

    def __init__(self, message: str, http_status: Optional[int] = None):
        self.message = message
        if http_status is not None:
            self.http_status = http_status
        super().__init__(message)


class AuthenticationError(WebhookError):
    """The X-Gitlab-Token header did not match the configured secret."""

    http_status = 401


class UnsupportedEvent(WebhookError):
    """The event was filtered out. Not a failure, answered with 200."""

    http_status = 200


class RateLimited(WebhookError):
    """The author exceeded the admission budget for this resource."""

    http_status = 429


class BranchResolutionError(WebhookError):
    """No branch could be determined or created for the pipeline."""


class PipelineTriggerError(WebhookError):
    """The CI trigger endpoint failed or returned an unusable response.

    Attributes:
        status_code: HTTP status returned by GitLab, when one was received.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message, http_status=http_status)
        self.status_code = status_code


class NotificationError(WebhookError):
    """A notification could not be delivered. Always logged and swallowed."""

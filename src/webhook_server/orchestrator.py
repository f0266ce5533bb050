"""Webhook orchestrator connecting the trigger stages.

Receives an authenticated-or-not webhook request and drives it through:
auth → event filter → kill switch → trigger detection → rate limit →
branch resolution → variable construction → pipeline trigger →
supersession cancellation → notification.

Stages short-circuit by returning a terminal WebhookResult or by raising a
WebhookError subclass, which process_webhook maps to a result. The
orchestrator never raises: failures after admission become an ``error``
result with a generic message while the cause is logged. Notifications are detached
tasks and never delay or change the result.

Source:
- src/webhook_server/webhook/handler.py (WebhookHandler)
- src/webhook_server/trigger/detector.py (detect)
- src/webhook_server/ratelimit/limiter.py (RateLimiter)
- src/webhook_server/branch/resolver.py (BranchResolver)
- src/webhook_server/pipeline/trigger.py (PipelineTrigger)
- src/webhook_server/notify/notifier.py (Notifier)
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Optional, Set

from pydantic import BaseModel

from src.webhook_server.branch.resolver import BranchResolver
from src.webhook_server.errors import (
    AuthenticationError,
    RateLimited,
    UnsupportedEvent,
    WebhookError,
)
from src.webhook_server.metrics import WebhookMetrics
from src.webhook_server.notify.models import PipelineNotification, RateLimitNotification
from src.webhook_server.notify.notifier import Notifier, NullNotifier
from src.webhook_server.pipeline.trigger import (
    PipelineTrigger,
    build_variables,
    pipeline_url,
)
from src.webhook_server.ratelimit.limiter import RateLimiter
from src.webhook_server.trigger.detector import detect
from src.webhook_server.webhook.handler import WebhookHandler
from src.webhook_server.webhook.models import InboundEvent

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Failed to trigger pipeline"


class WebhookStatus(str, Enum):
    """Terminal outcome of one webhook request."""

    IGNORED = "ignored"
    DISABLED = "disabled"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate-limited"
    STARTED = "started"
    ERROR = "error"


class WebhookResult(BaseModel):
    """Outcome handed to the transport layer.

    Attributes:
        status: The terminal outcome.
        http_status: Status code the transport answers with.
        message: Short, caller-safe description.
        pipeline_id: Id of the started pipeline (``started`` only).
        branch: Branch the pipeline runs on (``started`` only).
    """

    status: WebhookStatus
    http_status: int = 200
    message: str = ""
    pipeline_id: Optional[int] = None
    branch: Optional[str] = None


class BotSwitch:
    """Global on/off switch for the assistant.

    One instance is created per application and shared by reference between
    the orchestrator and the admin endpoints.
    """

    def __init__(self, enabled: bool = True):
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Assistant enabled")

    def disable(self) -> None:
        self._enabled = False
        logger.info("Assistant disabled")


class WebhookOrchestrator:
    """Orchestrates one comment webhook into a CI pipeline run.

    Accepts all dependencies via constructor injection.

    Attributes:
        webhook_handler: Authenticates and parses requests.
        rate_limiter: Sliding-window admission control.
        branch_resolver: Resolves or creates the pipeline branch.
        pipeline_trigger: Starts and cancels pipelines.
        notifier: Best-effort notification sink.
        bot_switch: Global kill switch.
        trigger_phrase: Mention phrase that gates the assistant.
        gitlab_url: GitLab base URL, used for pipeline links.
        cancel_old_pipelines: Cancel pending pipelines on the same ref.
        metrics: Optional Prometheus metrics.
    """

    def __init__(
        self,
        webhook_handler: WebhookHandler,
        rate_limiter: RateLimiter,
        branch_resolver: BranchResolver,
        pipeline_trigger: PipelineTrigger,
        notifier: Optional[Notifier] = None,
        bot_switch: Optional[BotSwitch] = None,
        trigger_phrase: str = "@claude",
        gitlab_url: str = "https://gitlab.com",
        cancel_old_pipelines: bool = False,
        metrics: Optional[WebhookMetrics] = None,
    ):
        self.webhook_handler = webhook_handler
        self.rate_limiter = rate_limiter
        self.branch_resolver = branch_resolver
        self.pipeline_trigger = pipeline_trigger
        self.notifier = notifier or NullNotifier()
        self.bot_switch = bot_switch or BotSwitch()
        self.trigger_phrase = trigger_phrase
        self.gitlab_url = gitlab_url
        self.cancel_old_pipelines = cancel_old_pipelines
        self.metrics = metrics
        self._background_tasks: Set["asyncio.Task[None]"] = set()

    async def process_webhook(
        self,
        event_kind: Optional[str],
        token: Optional[str],
        payload: Any,
    ) -> WebhookResult:
        """Process one webhook request.

        Args:
            event_kind: The X-Gitlab-Event header value.
            token: The X-Gitlab-Token header value.
            payload: The decoded JSON body.

        Returns:
            The terminal WebhookResult. Never raises.
        """
        started_at = time.perf_counter()
        try:
            result = await self._process(event_kind, token, payload)
        except AuthenticationError as exc:
            logger.warning(
                "Webhook rejected: invalid token",
                extra={"event_kind": event_kind},
            )
            result = WebhookResult(
                status=WebhookStatus.UNAUTHORIZED,
                http_status=exc.http_status,
                message="unauthorized",
            )
        except UnsupportedEvent as exc:
            logger.debug("Ignoring webhook", extra={"reason": exc.message})
            result = WebhookResult(
                status=WebhookStatus.IGNORED,
                http_status=exc.http_status,
                message="ignored",
            )
        except RateLimited as exc:
            logger.warning("Rate limit exceeded", extra={"key": exc.message})
            result = WebhookResult(
                status=WebhookStatus.RATE_LIMITED,
                http_status=exc.http_status,
                message="rate limited",
            )
        except WebhookError as exc:
            logger.error(
                "Webhook processing failed",
                extra={"error_type": type(exc).__name__, "error": exc.message},
            )
            result = WebhookResult(
                status=WebhookStatus.ERROR,
                http_status=exc.http_status,
                message=GENERIC_ERROR_MESSAGE,
            )
        except Exception:
            logger.exception("Unexpected error processing webhook")
            result = WebhookResult(
                status=WebhookStatus.ERROR,
                http_status=500,
                message=GENERIC_ERROR_MESSAGE,
            )

        if self.metrics is not None:
            self.metrics.record_outcome(result.status.value)
            self.metrics.processing_duration_seconds.observe(
                time.perf_counter() - started_at
            )
        return result

    async def _process(
        self,
        event_kind: Optional[str],
        token: Optional[str],
        payload: Any,
    ) -> WebhookResult:
        """Run the stages in order.

        Raises:
            AuthenticationError: The token does not match the secret.
            UnsupportedEvent: Not a Note Hook, or an invalid note payload.
            RateLimited: The author's bucket for this resource is full.
            WebhookError: Branch resolution or pipeline trigger failed.
        """
        if not self.webhook_handler.verify_token(token):
            raise AuthenticationError("Invalid webhook token")

        if not self.webhook_handler.is_note_hook(event_kind):
            raise UnsupportedEvent(f"Unsupported event kind: {event_kind}")

        event = self.webhook_handler.parse_note_event(
            payload, event_kind=event_kind, secret_token=token or ""
        )
        if event is None:
            raise UnsupportedEvent("Invalid note payload")

        if not self.bot_switch.enabled:
            logger.info(
                "Assistant disabled, ignoring comment",
                extra={"project_id": event.project.id, "author": event.author},
            )
            return WebhookResult(status=WebhookStatus.DISABLED, message="disabled")

        match = detect(event.note, self.trigger_phrase)
        if not match.matched:
            return WebhookResult(status=WebhookStatus.IGNORED, message="skipped")

        logger.info(
            "Trigger phrase detected",
            extra={
                "project": event.project.path_with_namespace,
                "author": event.author,
                "resource_type": event.resource_type.value,
                "resource_id": event.resource_id,
            },
        )

        if not await self.rate_limiter.try_admit(event.rate_limit_key):
            self._notify_rate_limited(event)
            raise RateLimited(event.rate_limit_key)

        ref = await self.branch_resolver.resolve(event)
        variables = build_variables(event, match, ref, self.trigger_phrase)
        pipeline_id = await self.pipeline_trigger.trigger(
            event.project.id, ref, variables
        )

        if self.metrics is not None:
            self.metrics.record_pipeline(event.resource_type.value)

        if self.cancel_old_pipelines:
            await self.pipeline_trigger.cancel_superseded(
                event.project.id, pipeline_id, ref
            )

        self._notify_pipeline_started(event, match.instruction, ref, pipeline_id)

        return WebhookResult(
            status=WebhookStatus.STARTED,
            message="started",
            pipeline_id=pipeline_id,
            branch=ref,
        )

    def _notify_pipeline_started(
        self,
        event: InboundEvent,
        instruction: str,
        ref: str,
        pipeline_id: int,
    ) -> None:
        details = PipelineNotification(
            project_path=event.project.path_with_namespace,
            author=event.author,
            resource_type=event.resource_type.value,
            resource_id=event.resource_id,
            branch=ref,
            pipeline_id=pipeline_id,
            pipeline_url=pipeline_url(
                self.gitlab_url, event.project.path_with_namespace, pipeline_id
            ),
            trigger_phrase=self.trigger_phrase,
            instruction=instruction,
            issue_title=event.issue.title if event.issue is not None else None,
        )
        self._dispatch(
            self.notifier.notify_pipeline_started(details), "pipeline_started"
        )

    def _notify_rate_limited(self, event: InboundEvent) -> None:
        details = RateLimitNotification(
            project_path=event.project.path_with_namespace,
            author=event.author,
            resource_type=event.resource_type.value,
            resource_id=event.resource_id,
        )
        self._dispatch(self.notifier.notify_rate_limited(details), "rate_limited")

    def _dispatch(self, notification: Awaitable[None], kind: str) -> None:
        """Run a notification as a detached task."""
        task = asyncio.create_task(self._safe_notify(notification, kind))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _safe_notify(self, notification: Awaitable[None], kind: str) -> None:
        try:
            await notification
        except Exception as exc:
            logger.warning(
                "Notification failed",
                extra={"kind": kind, "error_type": type(exc).__name__, "error": str(exc)},
            )

    async def drain(self) -> None:
        """Wait for in-flight notifications to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

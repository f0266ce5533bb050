"""Pipeline triggering for assistant runs.

Builds the CI/CD variable set for a triggering comment, starts the pipeline
through the GitLab API, and optionally cancels older pending pipelines on
the same ref.

GitLab caps the size of a single pipeline variable, so the webhook payload
handed to the job is a minimised copy of the original (event kind, project
identity, author, note and the MR/issue identity, state and title), and
every free-text variable is bounded to MAX_VARIABLE_BYTES.

Source:
- src/webhook_server/gitlab/client.py (GitLabClient)
- src/webhook_server/trigger/detector.py (TriggerMatch)
"""

import asyncio
import json
import logging
from typing import Any, Dict, List

from src.webhook_server.errors import PipelineTriggerError
from src.webhook_server.gitlab.client import (
    GitLabAPIError,
    GitLabClient,
    GitLabTimeoutError,
    ProjectId,
)
from src.webhook_server.masking import mask_sensitive
from src.webhook_server.trigger.detector import TriggerMatch
from src.webhook_server.webhook.models import InboundEvent, ResourceType

logger = logging.getLogger(__name__)

# GitLab rejects larger variable values for the webhook payload
MAX_VARIABLE_BYTES = 10 * 1024

TRUNCATION_MARKER = "...[truncated]"

PIPELINE_VARIABLE_NAMES = (
    "CLAUDE_TRIGGER",
    "CLAUDE_AUTHOR",
    "CLAUDE_RESOURCE_TYPE",
    "CLAUDE_RESOURCE_ID",
    "CLAUDE_NOTE",
    "CLAUDE_PROJECT_PATH",
    "CLAUDE_BRANCH",
    "TRIGGER_PHRASE",
    "DIRECT_PROMPT",
    "GITLAB_WEBHOOK_PAYLOAD",
)


def _byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


def truncate_utf8(text: str, max_bytes: int) -> str:
    """Cut ``text`` so its UTF-8 encoding fits in ``max_bytes``.

    A TRUNCATION_MARKER is appended when anything was cut. Multi-byte
    characters are never split.
    """
    if _byte_length(text) <= max_bytes:
        return text
    budget = max(0, max_bytes - _byte_length(TRUNCATION_MARKER))
    cut = text.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
    return cut + TRUNCATION_MARKER


def _serialize(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def minimal_payload(event: InboundEvent) -> Dict[str, Any]:
    """Reduce an event to the fields the CI job reads from the payload."""
    payload: Dict[str, Any] = {
        "object_kind": event.object_kind,
        "project": {
            "id": event.project.id,
            "path_with_namespace": event.project.path_with_namespace,
        },
        "user": {"username": event.author},
        "object_attributes": {
            "note": event.note,
            "noteable_type": event.noteable_type,
        },
    }
    if event.merge_request is not None:
        payload["merge_request"] = {
            "iid": event.merge_request.iid,
            "title": event.merge_request.title,
            "state": event.merge_request.state,
        }
    if event.issue is not None:
        payload["issue"] = {
            "iid": event.issue.iid,
            "title": event.issue.title,
            "state": event.issue.state,
        }
    return payload


def serialize_payload(
    payload: Dict[str, Any],
    max_bytes: int = MAX_VARIABLE_BYTES,
) -> str:
    """Serialise a minimal payload, shrinking free text until it fits.

    Only the note and the issue and merge request titles are shortened,
    largest first. Cutting N bytes from a field removes at least N bytes
    from the JSON text, so each step cuts the current overflow.

    Raises:
        PipelineTriggerError: If the payload cannot be made to fit.
    """
    text = _serialize(payload)
    if _byte_length(text) <= max_bytes:
        return text

    payload = json.loads(text)
    shrinkable = [
        (section, field)
        for section, field in (
            ("object_attributes", "note"),
            ("issue", "title"),
            ("merge_request", "title"),
        )
        if (payload.get(section) or {}).get(field)
    ]
    shrinkable.sort(key=lambda f: _byte_length(payload[f[0]][f[1]]), reverse=True)

    for section, field in shrinkable:
        value = payload[section][field]
        overflow = _byte_length(text) - max_bytes
        payload[section][field] = truncate_utf8(
            value, max(0, _byte_length(value) - overflow)
        )
        text = _serialize(payload)
        if _byte_length(text) <= max_bytes:
            logger.warning(
                "Webhook payload truncated to fit pipeline variable limit",
                extra={"field": f"{section}.{field}", "max_bytes": max_bytes},
            )
            return text

    raise PipelineTriggerError(
        f"Webhook payload exceeds {max_bytes} bytes after truncation"
    )


def build_variables(
    event: InboundEvent,
    match: TriggerMatch,
    ref: str,
    trigger_phrase: str,
) -> Dict[str, str]:
    """Build the pipeline variables for a triggering comment.

    Args:
        event: The authenticated comment event.
        match: Trigger detection result for the comment.
        ref: The resolved branch.
        trigger_phrase: The configured trigger phrase.

    Returns:
        Ordered mapping of variable name → value, in PIPELINE_VARIABLE_NAMES
        order. Every value fits in MAX_VARIABLE_BYTES.
    """
    resource_type = (
        ResourceType.MERGE_REQUEST
        if event.resource_type == ResourceType.MERGE_REQUEST
        else ResourceType.ISSUE
    )

    variables = {
        "CLAUDE_TRIGGER": "true",
        "CLAUDE_AUTHOR": event.author,
        "CLAUDE_RESOURCE_TYPE": resource_type.value,
        "CLAUDE_RESOURCE_ID": event.resource_id,
        "CLAUDE_NOTE": event.note,
        "CLAUDE_PROJECT_PATH": event.project.path_with_namespace,
        "CLAUDE_BRANCH": ref,
        "TRIGGER_PHRASE": trigger_phrase,
        "DIRECT_PROMPT": match.instruction,
        "GITLAB_WEBHOOK_PAYLOAD": serialize_payload(minimal_payload(event)),
    }

    for name in ("CLAUDE_NOTE", "DIRECT_PROMPT"):
        if _byte_length(variables[name]) > MAX_VARIABLE_BYTES:
            logger.warning(
                "Pipeline variable truncated",
                extra={"variable": name, "max_bytes": MAX_VARIABLE_BYTES},
            )
            variables[name] = truncate_utf8(variables[name], MAX_VARIABLE_BYTES)

    return variables


class PipelineTrigger:
    """Starts assistant pipelines and cancels superseded ones.

    Attributes:
        gitlab_client: GitLab API client.
    """

    def __init__(self, gitlab_client: GitLabClient):
        self.gitlab_client = gitlab_client

    async def trigger(
        self,
        project_id: ProjectId,
        ref: str,
        variables: Dict[str, str],
    ) -> int:
        """Create a pipeline on ``ref`` and return its id.

        Raises:
            PipelineTriggerError: On a non-2xx response, a response that is
                not JSON or has no pipeline id, or a timeout (504).
        """
        logger.info(
            "Triggering pipeline",
            extra={
                "project_id": project_id,
                "ref": ref,
                "variables": mask_sensitive(variables),
            },
        )

        try:
            result = await self.gitlab_client.trigger_pipeline(project_id, ref, variables)
        except GitLabTimeoutError as e:
            raise PipelineTriggerError(
                "Pipeline API request timed out",
                http_status=504,
            ) from e
        except GitLabAPIError as e:
            logger.error(
                "Pipeline creation failed",
                extra={
                    "status_code": e.status_code,
                    "error": e.message,
                    "project_id": project_id,
                    "ref": ref,
                },
            )
            raise PipelineTriggerError(e.message, status_code=e.status_code) from e

        pipeline_id = result.get("id") if isinstance(result, dict) else None
        if not isinstance(pipeline_id, int):
            raise PipelineTriggerError("Pipeline API response has no pipeline id")

        logger.info(
            "Pipeline created successfully",
            extra={
                "pipeline_id": pipeline_id,
                "web_url": result.get("web_url"),
                "status": result.get("status"),
            },
        )
        return pipeline_id

    async def cancel_superseded(
        self,
        project_id: ProjectId,
        keep_id: int,
        ref: str,
    ) -> int:
        """Cancel pending pipelines on ``ref`` other than ``keep_id``.

        Best effort: listing or cancellation failures are logged and never
        raised. Cancellations run concurrently and fail independently.

        Returns:
            The number of pipelines successfully cancelled.
        """
        try:
            pipelines = await self.gitlab_client.list_pipelines(
                project_id, ref, status="pending"
            )
        except Exception as e:
            logger.error(
                "Error listing pipelines for cancellation",
                extra={"project_id": project_id, "ref": ref, "error": str(e)},
            )
            return 0

        stale_ids: List[int] = [
            p["id"]
            for p in pipelines
            if isinstance(p, dict) and p.get("id") is not None and p["id"] != keep_id
        ]
        if not stale_ids:
            return 0

        results = await asyncio.gather(
            *(self._cancel_one(project_id, pipeline_id) for pipeline_id in stale_ids)
        )
        cancelled = sum(1 for ok in results if ok)

        logger.info(
            "Old pipelines cancelled",
            extra={"count": cancelled, "attempted": len(stale_ids), "ref": ref},
        )
        return cancelled

    async def _cancel_one(self, project_id: ProjectId, pipeline_id: int) -> bool:
        try:
            await self.gitlab_client.cancel_pipeline(project_id, pipeline_id)
            return True
        except Exception as e:
            logger.warning(
                "Failed to cancel pipeline %s",
                pipeline_id,
                extra={"pipeline_id": pipeline_id, "error": str(e)},
            )
            return False


def pipeline_url(gitlab_url: str, project_path: str, pipeline_id: int) -> str:
    """Web URL of a pipeline, e.g. https://gitlab.com/group/app/-/pipelines/1."""
    return f"{gitlab_url.rstrip('/')}/{project_path}/-/pipelines/{pipeline_id}"


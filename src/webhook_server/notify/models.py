"""Notification payload models."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class PipelineNotification(BaseModel):
    """Details of a pipeline started from a comment.

    Attributes:
        project_path: Project path in format "{group}/{project}".
        author: Username of the comment author.
        resource_type: "merge_request", "issue" or "unknown".
        resource_id: IID of the merge request or issue.
        branch: Branch the pipeline runs on.
        pipeline_id: Id of the created pipeline.
        pipeline_url: Web URL of the created pipeline.
        trigger_phrase: The configured trigger phrase.
        instruction: Text that followed the trigger phrase.
        issue_title: Title of the issue, for issue-triggered runs.
    """

    project_path: str
    author: str
    resource_type: str
    resource_id: str
    branch: str
    pipeline_id: int
    pipeline_url: str
    trigger_phrase: str
    instruction: str = ""
    issue_title: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RateLimitNotification(BaseModel):
    """Details of a rejected trigger."""

    project_path: str
    author: str
    resource_type: str
    resource_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

"""GitLab webhook event models.

GitLab sends a different body for every hook type, distinguished by the
``object_kind`` field. The raw body is validated into a discriminated union
(NoteEvent | IssueEvent | MergeRequestEvent) carrying only the fields this
service reads; everything else in the payload is ignored.

A NoteEvent that passes authentication and filtering is then flattened into
an immutable InboundEvent, which is what the rest of the pipeline consumes.

GitLab Note Hook Payload Structure (abridged):
{
  "object_kind": "note",
  "user": {"username": "jdoe", "name": "Jane Doe"},
  "project": {"id": 42, "path_with_namespace": "group/app", "default_branch": "main"},
  "object_attributes": {"note": "@claude fix this", "noteable_type": "Issue"},
  "issue": {"iid": 7, "title": "Fix bug", "state": "opened"},
  "merge_request": {"iid": 3, "source_branch": "feature", "state": "opened"}
}
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ResourceType(str, Enum):
    """The kind of GitLab resource a comment was left on."""

    MERGE_REQUEST = "merge_request"
    ISSUE = "issue"
    UNKNOWN = "unknown"


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class ProjectRef(_Payload):
    """Project identity as sent in webhook payloads."""

    id: int
    path_with_namespace: str = ""
    default_branch: Optional[str] = None
    name: Optional[str] = None
    web_url: Optional[str] = None


class UserRef(_Payload):
    """The user who triggered the event."""

    username: str = ""
    name: Optional[str] = None


class NoteAttributes(_Payload):
    """The ``object_attributes`` of a Note Hook."""

    note: str = ""
    noteable_type: Optional[str] = None


class MergeRequestRef(_Payload):
    """Merge request context attached to a note."""

    iid: int
    title: Optional[str] = None
    state: Optional[str] = None
    source_branch: Optional[str] = None
    target_branch: Optional[str] = None


class IssueRef(_Payload):
    """Issue context attached to a note."""

    iid: int
    title: Optional[str] = None
    state: Optional[str] = None


class NoteEvent(_Payload):
    """A comment left on a merge request, issue, commit or snippet."""

    object_kind: Literal["note"]
    project: ProjectRef
    user: UserRef = Field(default_factory=UserRef)
    object_attributes: NoteAttributes = Field(default_factory=NoteAttributes)
    merge_request: Optional[MergeRequestRef] = None
    issue: Optional[IssueRef] = None


class IssueEvent(_Payload):
    """An issue was opened, updated or closed."""

    object_kind: Literal["issue"]
    project: ProjectRef
    user: UserRef = Field(default_factory=UserRef)
    object_attributes: IssueRef


class MergeRequestEvent(_Payload):
    """A merge request was opened, updated, merged or closed."""

    object_kind: Literal["merge_request"]
    project: ProjectRef
    user: UserRef = Field(default_factory=UserRef)
    object_attributes: MergeRequestRef


GitLabEvent = Annotated[
    Union[NoteEvent, IssueEvent, MergeRequestEvent],
    Field(discriminator="object_kind"),
]


class InboundEvent(_Payload):
    """One authenticated comment event, constructed once per request.

    Attributes:
        event_kind: Value of the X-Gitlab-Event header (e.g. "Note Hook").
        secret_token: Value of the X-Gitlab-Token header. Excluded from repr.
        note: The raw comment text.
        project: Project the comment belongs to.
        author: Username of the comment author.
        merge_request: Merge request context, if the note is on an MR.
        issue: Issue context, if the note is on an issue.
        object_kind: The ``object_kind`` of the original payload.
        noteable_type: GitLab's noteable type ("MergeRequest", "Issue", ...).
    """

    event_kind: str
    secret_token: str = Field(default="", repr=False)
    note: str
    project: ProjectRef
    author: str
    merge_request: Optional[MergeRequestRef] = None
    issue: Optional[IssueRef] = None
    object_kind: str = "note"
    noteable_type: Optional[str] = None

    @classmethod
    def from_note_event(
        cls,
        event: NoteEvent,
        event_kind: str,
        secret_token: str = "",
    ) -> "InboundEvent":
        """Flatten a validated NoteEvent into an InboundEvent."""
        return cls(
            event_kind=event_kind,
            secret_token=secret_token,
            note=event.object_attributes.note or "",
            project=event.project,
            author=event.user.username,
            merge_request=event.merge_request,
            issue=event.issue,
            object_kind=event.object_kind,
            noteable_type=event.object_attributes.noteable_type,
        )

    @property
    def resource_type(self) -> ResourceType:
        """The resource the comment was left on, merge requests first."""
        if self.merge_request is not None:
            return ResourceType.MERGE_REQUEST
        if self.issue is not None:
            return ResourceType.ISSUE
        return ResourceType.UNKNOWN

    @property
    def resource_id(self) -> str:
        """IID of the merge request or issue, or "" when there is neither."""
        if self.merge_request is not None:
            return str(self.merge_request.iid)
        if self.issue is not None:
            return str(self.issue.iid)
        return ""

    @property
    def rate_limit_key(self) -> str:
        """Admission bucket key in format "{author}:{project_id}:{resource}"."""
        resource = self.resource_id or "general"
        return f"{self.author}:{self.project.id}:{resource}"

"""Branch resolution for assistant pipelines.

Determines the git ref a pipeline runs against:
- Comments on a merge request run on the MR's source branch.
- Comments on an issue get a brand-new branch every time, created from the
  project's default branch and named
  ``{prefix}/issue-{iid}-{slug}-{timestamp_ms}``.

Branch creation is delegated to the GitLab API and is not retried here. A
branch created before a later failure is left in place; the timestamp
suffix keeps the next attempt from colliding with it.

Source:
- src/webhook_server/gitlab/client.py (GitLabClient)
- src/webhook_server/webhook/models.py (InboundEvent)
"""

import logging
import re
import time
from typing import Callable, Optional

from src.webhook_server.errors import BranchResolutionError
from src.webhook_server.gitlab.client import GitLabAPIError, GitLabClient
from src.webhook_server.webhook.models import InboundEvent

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 50
DEFAULT_BASE_BRANCH = "main"

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def sanitize_title(title: str) -> str:
    """Turn an issue title into a branch-name slug.

    Lower-cases the title, replaces every run of characters outside
    ``[a-z0-9]`` with a single dash, strips leading and trailing dashes and
    truncates the result to MAX_SLUG_LENGTH characters.

    Example:
        >>> sanitize_title("Fix Bug!! In Parser")
        'fix-bug-in-parser'
    """
    slug = _NON_SLUG_CHARS.sub("-", title.lower()).strip("-")
    return slug[:MAX_SLUG_LENGTH]


def issue_branch_name(
    issue_iid: int,
    title: Optional[str],
    timestamp_ms: int,
    prefix: str = "claude",
) -> str:
    """Build the branch name for an issue-triggered run.

    An empty slug still yields a well-formed name, e.g.
    ``claude/issue-7--1700000000000``.
    """
    return f"{prefix}/issue-{issue_iid}-{sanitize_title(title or '')}-{timestamp_ms}"


class UniqueMillisClock:
    """Millisecond clock that never returns the same value twice.

    Two issue branches requested within the same millisecond would
    otherwise get identical names; the second call is bumped forward by
    one millisecond instead.
    """

    def __init__(self, source: Callable[[], int] = time.time_ns):
        self._source = source
        self._last = 0

    def now_ms(self) -> int:
        current = self._source() // 1_000_000
        if current <= self._last:
            current = self._last + 1
        self._last = current
        return current


class BranchResolver:
    """Resolves (and for issues, creates) the branch a pipeline runs on.

    Attributes:
        gitlab_client: GitLab API client used for project lookup and
            branch creation.
        branch_prefix: First path segment of created branches.
    """

    def __init__(
        self,
        gitlab_client: GitLabClient,
        branch_prefix: str = "claude",
        clock: Optional[UniqueMillisClock] = None,
    ):
        self.gitlab_client = gitlab_client
        self.branch_prefix = branch_prefix
        self._clock = clock or UniqueMillisClock()

    async def resolve(self, event: InboundEvent) -> str:
        """Determine the ref for a triggering comment.

        Args:
            event: The authenticated comment event.

        Returns:
            The branch name the pipeline should run on.

        Raises:
            BranchResolutionError: If an MR has no source branch, the note
                is on neither an MR nor an issue, or branch creation fails.
        """
        if event.merge_request is not None:
            ref = event.merge_request.source_branch
            if not ref:
                logger.error(
                    "No branch ref determined for merge request",
                    extra={"mr_iid": event.merge_request.iid},
                )
                raise BranchResolutionError(
                    "No branch ref determined for merge request"
                )
            return ref

        if event.issue is not None:
            return await self._create_issue_branch(event)

        raise BranchResolutionError(
            "Note is attached to neither a merge request nor an issue"
        )

    async def _create_issue_branch(self, event: InboundEvent) -> str:
        """Create a fresh branch for an issue from the default branch."""
        issue = event.issue
        project_id = event.project.id
        base_branch = await self._default_branch(event)

        branch_name = issue_branch_name(
            issue.iid,
            issue.title,
            self._clock.now_ms(),
            prefix=self.branch_prefix,
        )

        logger.info(
            "Creating branch for issue",
            extra={
                "issue_iid": issue.iid,
                "branch_name": branch_name,
                "from_branch": base_branch,
            },
        )

        try:
            await self.gitlab_client.create_branch(project_id, branch_name, base_branch)
        except GitLabAPIError as e:
            logger.error(
                "Failed to create branch",
                extra={
                    "project_id": project_id,
                    "branch_name": branch_name,
                    "ref": base_branch,
                    "status_code": e.status_code,
                    "error": e.message,
                },
            )
            raise BranchResolutionError(f"Branch creation failed: {e.message}") from e

        return branch_name

    async def _default_branch(self, event: InboundEvent) -> str:
        """Default branch from the payload, or from the API when absent."""
        if event.project.default_branch:
            return event.project.default_branch

        try:
            project = await self.gitlab_client.show_project(event.project.id)
        except GitLabAPIError as e:
            logger.error(
                "Failed to fetch project",
                extra={"project_id": event.project.id, "error": e.message},
            )
            raise BranchResolutionError(
                f"Could not read project {event.project.id}: {e.message}"
            ) from e

        return project.get("default_branch") or DEFAULT_BASE_BRANCH

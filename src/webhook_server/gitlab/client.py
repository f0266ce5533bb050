"""GitLab API client for project, branch and pipeline operations.

This module provides an async wrapper around the GitLab REST API (v4) for:
- Reading project details (default branch, path)
- Creating branches
- Creating pipelines with variables
- Listing and cancelling pipelines

Read-only GET requests retry transient failures with exponential backoff.
Requests that change state (POST) are sent exactly once: a timed-out
pipeline trigger may still have created the pipeline, so repeating it is
left to the caller.
"""

import asyncio
import logging
import random
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

ProjectId = Union[int, str]


class GitLabAPIError(Exception):
    """Raised when a GitLab API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        response_body: Response body from GitLab API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class GitLabTimeoutError(GitLabAPIError):
    """Raised when a GitLab API request times out."""


def extract_error_message(response: httpx.Response) -> str:
    """Pull a readable error message out of a failed GitLab response.

    GitLab answers errors with ``{"message": ...}`` or ``{"error": ...}``;
    ``message`` may itself be a dict of field errors. Bodies that are not
    JSON are returned as raw text.

    Args:
        response: The non-2xx response.

    Returns:
        The best available description of the failure.
    """
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code} {response.reason_phrase}"

    if isinstance(data, dict):
        for field in ("message", "error"):
            value = data.get(field)
            if value:
                return value if isinstance(value, str) else str(value)
    return response.text or f"HTTP {response.status_code} {response.reason_phrase}"


class GitLabClient:
    """Async GitLab API client.

    Attributes:
        token: GitLab API token, sent as the PRIVATE-TOKEN header.
        base_url: Base URL of the GitLab instance (without /api/v4).
        max_retries: Maximum number of retry attempts for GET requests.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay in seconds between retries.
        timeout: Request timeout in seconds.

    Example:
        >>> client = GitLabClient(token="glpat-xxx")
        >>> async with client:
        ...     project = await client.show_project(42)
    """

    # HTTP status codes that should trigger a retry of a GET request
    RETRYABLE_STATUS_CODES = {502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://gitlab.com",
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 5.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/api/v4",
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "PRIVATE-TOKEN": self.token,
            "Content-Type": "application/json",
            "User-Agent": "gitlab-webhook-server/1.0",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @staticmethod
    def _project_path(project_id: ProjectId) -> str:
        # Numeric ids pass through; "group/app" paths must be URL-encoded
        return f"/projects/{quote(str(project_id), safe='')}"

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter."""
        exponential_delay = self.base_delay * (2 ** attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an HTTP request, retrying transient failures of GET requests.

        Raises:
            GitLabTimeoutError: If the request timed out.
            GitLabAPIError: On any other failure or non-2xx response.
        """
        retries = self.max_retries if method == "GET" else 0
        last_exception: Optional[Exception] = None

        for attempt in range(retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=path,
                    json=json_data,
                    params=params,
                )
            except httpx.TimeoutException as e:
                last_exception = e
                if attempt < retries:
                    await self._sleep_before_retry(attempt, path, str(e))
                    continue
                logger.error(
                    "GitLab API request timed out",
                    extra={"path": path, "method": method},
                )
                raise GitLabTimeoutError(
                    message=f"GitLab API request timed out: {method} {path}",
                    request_url=f"{self.base_url}/api/v4{path}",
                ) from e
            except httpx.RequestError as e:
                last_exception = e
                if attempt < retries:
                    await self._sleep_before_retry(attempt, path, str(e))
                    continue
                break

            if response.status_code in self.RETRYABLE_STATUS_CODES and attempt < retries:
                await self._sleep_before_retry(
                    attempt, path, f"HTTP {response.status_code}"
                )
                continue

            if response.status_code >= 400:
                message = extract_error_message(response)
                logger.error(
                    "GitLab API error",
                    extra={
                        "status_code": response.status_code,
                        "path": path,
                        "method": method,
                        "response_body": response.text[:500],
                    },
                )
                raise GitLabAPIError(
                    message=message,
                    status_code=response.status_code,
                    response_body=response.text,
                    request_url=str(response.url),
                )

            return response

        logger.error(
            "GitLab API request failed",
            extra={
                "path": path,
                "method": method,
                "attempts": retries + 1,
                "last_error": str(last_exception),
            },
        )
        raise GitLabAPIError(
            message=f"GitLab API request failed: {last_exception}",
            request_url=f"{self.base_url}/api/v4{path}",
        )

    async def _sleep_before_retry(self, attempt: int, path: str, reason: str) -> None:
        delay = self._calculate_backoff(attempt)
        logger.warning(
            "Retryable error from GitLab API",
            extra={
                "reason": reason,
                "attempt": attempt + 1,
                "max_retries": self.max_retries,
                "delay": delay,
                "path": path,
            },
        )
        await asyncio.sleep(delay)

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        """Decode a 2xx response body; a non-JSON body is a failure."""
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                "GitLab API returned invalid JSON",
                extra={
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise GitLabAPIError(
                message=f"GitLab API returned invalid JSON: {response.reason_phrase}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            ) from e

    async def show_project(self, project_id: ProjectId) -> Dict[str, Any]:
        """Get project details.

        Args:
            project_id: Numeric project id or "group/project" path.

        Returns:
            Project data, including ``default_branch`` and
            ``path_with_namespace``.
        """
        logger.debug("Fetching project details", extra={"project_id": project_id})
        response = await self._request("GET", self._project_path(project_id))
        return self._json(response)

    async def create_branch(
        self,
        project_id: ProjectId,
        branch: str,
        ref: str,
    ) -> Dict[str, Any]:
        """Create a branch from ``ref``.

        Args:
            project_id: Numeric project id or "group/project" path.
            branch: Name of the branch to create.
            ref: Branch name or commit SHA to branch from.

        Returns:
            The created branch data from GitLab API.
        """
        logger.info(
            "Creating branch",
            extra={"project_id": project_id, "branch": branch, "ref": ref},
        )
        response = await self._request(
            "POST",
            f"{self._project_path(project_id)}/repository/branches",
            json_data={"branch": branch, "ref": ref},
        )
        return self._json(response)

    async def trigger_pipeline(
        self,
        project_id: ProjectId,
        ref: str,
        variables: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Create a pipeline on ``ref`` with the given variables.

        Args:
            project_id: Numeric project id or "group/project" path.
            ref: Branch to run the pipeline on.
            variables: Pipeline variables as a name → value mapping.

        Returns:
            The created pipeline data (``id``, ``status``, ``web_url``, ...).
        """
        pipeline_variables = [
            {"key": key, "value": value}
            for key, value in (variables or {}).items()
        ]
        response = await self._request(
            "POST",
            f"{self._project_path(project_id)}/pipeline",
            json_data={"ref": ref, "variables": pipeline_variables},
        )
        return self._json(response)

    async def list_pipelines(
        self,
        project_id: ProjectId,
        ref: str,
        status: str = "pending",
    ) -> List[Dict[str, Any]]:
        """List pipelines for ``ref`` in the given status."""
        response = await self._request(
            "GET",
            f"{self._project_path(project_id)}/pipelines",
            params={"ref": ref, "status": status},
        )
        result = self._json(response)
        if not isinstance(result, list):
            raise GitLabAPIError(
                message="Unexpected pipeline list response",
                status_code=response.status_code,
                response_body=response.text,
            )
        return result

    async def cancel_pipeline(
        self,
        project_id: ProjectId,
        pipeline_id: int,
    ) -> Dict[str, Any]:
        """Cancel a pipeline's jobs."""
        response = await self._request(
            "POST",
            f"{self._project_path(project_id)}/pipelines/{pipeline_id}/cancel",
        )
        return self._json(response)

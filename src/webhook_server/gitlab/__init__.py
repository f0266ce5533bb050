"""GitLab API client for project, branch and pipeline operations."""

from src.webhook_server.gitlab.client import (
    GitLabAPIError,
    GitLabClient,
    GitLabTimeoutError,
    extract_error_message,
)

__all__ = [
    "GitLabAPIError",
    "GitLabClient",
    "GitLabTimeoutError",
    "extract_error_message",
]

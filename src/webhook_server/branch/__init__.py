"""Branch resolution for assistant pipelines."""

from src.webhook_server.branch.resolver import (
    MAX_SLUG_LENGTH,
    BranchResolver,
    UniqueMillisClock,
    issue_branch_name,
    sanitize_title,
)

__all__ = [
    "MAX_SLUG_LENGTH",
    "BranchResolver",
    "UniqueMillisClock",
    "issue_branch_name",
    "sanitize_title",
]

"""Shared fixtures for webhook server tests."""

from typing import Any, Dict, Optional

import pytest


def make_note_payload(
    note: str = "@claude fix this",
    username: str = "u1",
    project_id: int = 42,
    project_path: str = "group/app",
    default_branch: Optional[str] = "main",
    issue_iid: Optional[int] = 7,
    issue_title: str = "Fix Bug!! In Parser",
    mr_iid: Optional[int] = None,
    source_branch: Optional[str] = "feature/login",
) -> Dict[str, Any]:
    """Build a GitLab Note Hook body."""
    payload: Dict[str, Any] = {
        "object_kind": "note",
        "event_type": "note",
        "user": {"id": 1, "username": username, "name": "User One"},
        "project": {
            "id": project_id,
            "name": "app",
            "path_with_namespace": project_path,
            "default_branch": default_branch,
            "web_url": f"https://gitlab.com/{project_path}",
        },
        "object_attributes": {
            "id": 1234,
            "note": note,
            "noteable_type": "MergeRequest" if mr_iid is not None else "Issue",
        },
    }
    if mr_iid is not None:
        payload["merge_request"] = {
            "iid": mr_iid,
            "title": "Add login",
            "state": "opened",
            "source_branch": source_branch,
            "target_branch": "main",
        }
    elif issue_iid is not None:
        payload["issue"] = {
            "iid": issue_iid,
            "title": issue_title,
            "state": "opened",
            "description": "x" * 200,
        }
    return payload


@pytest.fixture
def note_payload():
    """Factory fixture for Note Hook bodies."""
    return make_note_payload

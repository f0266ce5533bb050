"""Tests for webhook authentication and payload parsing."""

import pytest

from src.webhook_server.webhook import (
    InboundEvent,
    IssueEvent,
    MergeRequestEvent,
    NoteEvent,
    ResourceType,
    WebhookHandler,
    create_webhook_handler,
)


@pytest.fixture
def handler() -> WebhookHandler:
    return create_webhook_handler("s3cret")


class TestVerifyToken:
    def test_matching_token(self, handler):
        assert handler.verify_token("s3cret") is True

    @pytest.mark.parametrize("token", [None, "", "wrong", "s3cret ", "S3CRET"])
    def test_rejected_tokens(self, handler, token):
        assert handler.verify_token(token) is False

    def test_non_ascii_token(self, handler):
        assert handler.verify_token("sécret") is False


class TestIsNoteHook:
    def test_note_hook(self):
        assert WebhookHandler.is_note_hook("Note Hook") is True

    @pytest.mark.parametrize("kind", [None, "Push Hook", "Issue Hook", "note hook"])
    def test_other_hooks(self, kind):
        assert WebhookHandler.is_note_hook(kind) is False


class TestParseEvent:
    def test_note_event(self, handler, note_payload):
        assert isinstance(handler.parse_event(note_payload()), NoteEvent)

    def test_issue_event(self, handler):
        event = handler.parse_event(
            {
                "object_kind": "issue",
                "project": {"id": 1},
                "object_attributes": {"iid": 7, "title": "Bug", "state": "opened"},
            }
        )
        assert isinstance(event, IssueEvent)

    def test_merge_request_event(self, handler):
        event = handler.parse_event(
            {
                "object_kind": "merge_request",
                "project": {"id": 1},
                "object_attributes": {"iid": 3, "source_branch": "feature"},
            }
        )
        assert isinstance(event, MergeRequestEvent)

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "note",
            {},
            {"object_kind": "push", "project": {"id": 1}},
            {"object_kind": "note"},
            {"object_kind": "note", "project": {"id": "not-a-number"}},
        ],
    )
    def test_invalid_payloads(self, handler, payload):
        assert handler.parse_event(payload) is None


class TestParseNoteEvent:
    def test_issue_note(self, handler, note_payload):
        event = handler.parse_note_event(
            note_payload(), event_kind="Note Hook", secret_token="s3cret"
        )

        assert isinstance(event, InboundEvent)
        assert event.note == "@claude fix this"
        assert event.author == "u1"
        assert event.project.id == 42
        assert event.project.default_branch == "main"
        assert event.issue.iid == 7
        assert event.merge_request is None
        assert event.resource_type == ResourceType.ISSUE
        assert event.resource_id == "7"
        assert event.rate_limit_key == "u1:42:7"

    def test_merge_request_note(self, handler, note_payload):
        event = handler.parse_note_event(note_payload(mr_iid=3), event_kind="Note Hook")

        assert event.resource_type == ResourceType.MERGE_REQUEST
        assert event.merge_request.source_branch == "feature/login"
        assert event.rate_limit_key == "u1:42:3"

    def test_note_without_resource(self, handler, note_payload):
        event = handler.parse_note_event(note_payload(issue_iid=None), event_kind="Note Hook")

        assert event.resource_type == ResourceType.UNKNOWN
        assert event.rate_limit_key == "u1:42:general"

    def test_non_note_payload_is_ignored(self, handler):
        payload = {
            "object_kind": "issue",
            "project": {"id": 1},
            "object_attributes": {"iid": 7},
        }
        assert handler.parse_note_event(payload, event_kind="Note Hook") is None

    def test_secret_not_in_repr(self, handler, note_payload):
        event = handler.parse_note_event(
            note_payload(), event_kind="Note Hook", secret_token="s3cret"
        )
        assert "s3cret" not in repr(event)

    def test_event_is_immutable(self, handler, note_payload):
        event = handler.parse_note_event(note_payload(), event_kind="Note Hook")
        with pytest.raises(Exception):
            event.note = "changed"

"""GitLab webhook server that starts AI assistant pipelines from comments.

This package receives GitLab "Note Hook" events and, when a comment mentions
the configured trigger phrase, starts a CI/CD pipeline for the assistant:
- Shared-secret authentication and event-kind filtering
- Trigger phrase detection and instruction extraction
- Sliding-window rate limiting per user and resource
- Branch resolution (MR source branch, or a fresh branch for issues)
- Pipeline triggering with a size-bounded variable payload
- Optional cancellation of superseded pending pipelines
- Fire-and-forget Discord notifications
"""

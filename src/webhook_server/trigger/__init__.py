"""Trigger phrase detection."""

from src.webhook_server.trigger.detector import (
    NO_MATCH,
    TriggerMatch,
    compile_trigger,
    detect,
)

__all__ = ["NO_MATCH", "TriggerMatch", "compile_trigger", "detect"]

"""Pipeline triggering: variable construction, size bounding, supersession."""

from src.webhook_server.pipeline.trigger import (
    MAX_VARIABLE_BYTES,
    PIPELINE_VARIABLE_NAMES,
    PipelineTrigger,
    build_variables,
    minimal_payload,
    pipeline_url,
    serialize_payload,
    truncate_utf8,
)

__all__ = [
    "MAX_VARIABLE_BYTES",
    "PIPELINE_VARIABLE_NAMES",
    "PipelineTrigger",
    "build_variables",
    "minimal_payload",
    "pipeline_url",
    "serialize_payload",
    "truncate_utf8",
]

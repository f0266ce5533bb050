"""Prometheus metrics for webhook observability.

Metrics Defined:
- webhook_requests_total: Counter of processed webhooks by outcome status
- webhook_pipelines_triggered_total: Counter of started pipelines
- webhook_rate_limit_store_errors_total: Counter of fail-open admissions
- webhook_processing_duration_seconds: Histogram of processing time

Metrics are exposed at the `/metrics` endpoint in Prometheus format.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


# Webhook processing is dominated by one or two GitLab API calls
DEFAULT_DURATION_BUCKETS = (
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
)


class WebhookMetrics:
    """Container for all webhook Prometheus metrics.

    Supports custom registries so tests can create isolated instances
    without colliding on metric names in the default REGISTRY.

    Example:
        >>> metrics = WebhookMetrics(registry=CollectorRegistry())
        >>> metrics.record_outcome("started")
        >>> metrics.pipelines_triggered_total.labels(resource_type="issue").inc()
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize webhook metrics.

        Args:
            registry: Optional Prometheus registry. If None, uses the
                      default REGISTRY. Pass a custom registry for testing.
        """
        self.registry = registry or REGISTRY

        self.requests_total = Counter(
            "webhook_requests_total",
            "Total number of webhooks processed, by outcome",
            labelnames=["status"],
            registry=self.registry,
        )

        self.pipelines_triggered_total = Counter(
            "webhook_pipelines_triggered_total",
            "Total number of pipelines started from comments",
            labelnames=["resource_type"],
            registry=self.registry,
        )

        self.rate_limit_store_errors_total = Counter(
            "webhook_rate_limit_store_errors_total",
            "Admissions granted because the counter store was unavailable",
            registry=self.registry,
        )

        self.processing_duration_seconds = Histogram(
            "webhook_processing_duration_seconds",
            "Time spent processing a webhook",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_outcome(self, status: str) -> None:
        self.requests_total.labels(status=status).inc()

    def record_pipeline(self, resource_type: str) -> None:
        self.pipelines_triggered_total.labels(resource_type=resource_type).inc()

    def record_store_error(self) -> None:
        self.rate_limit_store_errors_total.inc()

    def generate(self) -> bytes:
        """Render all metrics in this registry in Prometheus text format."""
        return generate_latest(self.registry)


_metrics: Optional[WebhookMetrics] = None


def get_metrics() -> WebhookMetrics:
    """Get the process-wide metrics instance backed by the default REGISTRY.

    Prometheus collectors can only be registered once per registry, so the
    default-registry instance is created lazily and reused.
    """
    global _metrics
    if _metrics is None:
        _metrics = WebhookMetrics()
    return _metrics

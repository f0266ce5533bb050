"""Tests for build_services, the production dependency wiring."""

import asyncio

from prometheus_client import CollectorRegistry

from src.webhook_server.config import WebhookSettings
from src.webhook_server.main import build_services
from src.webhook_server.metrics import WebhookMetrics
from src.webhook_server.notify import NullNotifier
from src.webhook_server.ratelimit import InMemoryCounterStore, RedisCounterStore


def run_async(coro):
    return asyncio.run(coro)


def make_services(**overrides):
    fields = dict(
        webhook_secret="s3cret",
        gitlab_token="glpat-test",
        redis_url=None,
        discord_webhook_url=None,
    )
    fields.update(overrides)
    metrics = WebhookMetrics(registry=CollectorRegistry())
    return build_services(WebhookSettings(**fields), metrics)


def close(services):
    async def shutdown():
        await services.orchestrator.drain()
        await services.notifier.close()
        await services.gitlab_client.close()
        await services.store.close()

    run_async(shutdown())


class TestBuildServices:
    def test_settings_reach_the_stages(self):
        services = make_services(
            rate_limit_max=5,
            rate_limit_window=120,
            redis_timeout_seconds=0.5,
            branch_prefix="assistant",
            cancel_old_pipelines=True,
            trigger_phrase="@bot",
            gitlab_url="https://gitlab.example.com",
            claude_disabled=True,
        )
        try:
            orchestrator = services.orchestrator
            assert orchestrator.rate_limiter.max_requests == 5
            assert orchestrator.rate_limiter.window_seconds == 120
            assert orchestrator.rate_limiter.timeout_seconds == 0.5
            assert orchestrator.branch_resolver.branch_prefix == "assistant"
            assert orchestrator.cancel_old_pipelines is True
            assert orchestrator.trigger_phrase == "@bot"
            assert orchestrator.gitlab_url == "https://gitlab.example.com"
            assert orchestrator.bot_switch is services.bot_switch
            assert services.bot_switch.enabled is False
            assert orchestrator.branch_resolver.gitlab_client is services.gitlab_client
            assert orchestrator.metrics is services.metrics
        finally:
            close(services)

    def test_in_memory_store_without_redis_url(self, caplog):
        with caplog.at_level("WARNING", logger="src.webhook_server.main"):
            services = make_services()
        try:
            assert isinstance(services.store, InMemoryCounterStore)
            assert services.orchestrator.rate_limiter.store is services.store
            assert "in-memory rate limit store" in caplog.text
        finally:
            close(services)

    def test_redis_store_with_redis_url(self):
        services = make_services(redis_url="redis://localhost:6379/0")
        try:
            assert isinstance(services.store, RedisCounterStore)
            assert services.orchestrator.rate_limiter.store is services.store
        finally:
            close(services)

    def test_null_notifier_without_discord_url(self):
        services = make_services()
        try:
            assert isinstance(services.notifier, NullNotifier)
            assert services.orchestrator.notifier is services.notifier
        finally:
            close(services)

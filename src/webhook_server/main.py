"""FastAPI application entry point for the GitLab webhook server.

This module provides the HTTP surface of the webhook server. It receives
GitLab comment webhooks, hands them to the WebhookOrchestrator and maps the
outcome to an HTTP response.

Endpoints:
- POST /webhook: GitLab webhook receiver
- GET /health: Liveness check
- GET /ready: Readiness check (counter store reachability)
- GET /metrics: Prometheus metrics
- GET /admin/disable, GET /admin/enable: Global kill switch
"""

import hmac
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST

from src.webhook_server.branch.resolver import BranchResolver
from src.webhook_server.config import WebhookSettings, get_settings
from src.webhook_server.gitlab.client import GitLabClient
from src.webhook_server.masking import mask_sensitive, redact_secret
from src.webhook_server.metrics import WebhookMetrics, get_metrics
from src.webhook_server.notify.notifier import Notifier, create_notifier
from src.webhook_server.orchestrator import (
    BotSwitch,
    WebhookOrchestrator,
    WebhookResult,
    WebhookStatus,
)
from src.webhook_server.pipeline.trigger import PipelineTrigger
from src.webhook_server.ratelimit.limiter import RateLimiter
from src.webhook_server.ratelimit.store import (
    CounterStore,
    InMemoryCounterStore,
    RedisCounterStore,
)
from src.webhook_server.webhook.handler import create_webhook_handler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass
class Services:
    """Service-scoped objects shared by all requests of one application."""

    settings: WebhookSettings
    orchestrator: WebhookOrchestrator
    store: CounterStore
    gitlab_client: GitLabClient
    notifier: Notifier
    bot_switch: BotSwitch
    metrics: WebhookMetrics


def _log_configuration(settings: WebhookSettings) -> None:
    """Log configuration values with secrets redacted."""
    redis_url = (
        redact_secret(settings.redis_url) if settings.redis_url else "(in-memory)"
    )
    discord_webhook = (
        redact_secret(settings.discord_webhook_url)
        if settings.discord_webhook_url
        else "(disabled)"
    )
    admin_token = (
        redact_secret(settings.admin_token) if settings.admin_token else "(disabled)"
    )

    logger.info("Webhook server configuration:")
    logger.info(f"  GitLab URL: {settings.gitlab_url}")
    logger.info(f"  GitLab Token: {redact_secret(settings.gitlab_token)}")
    logger.info(f"  Webhook Secret: {redact_secret(settings.webhook_secret)}")
    logger.info(f"  Trigger Phrase: {settings.trigger_phrase}")
    logger.info(f"  Disabled: {settings.claude_disabled}")
    logger.info(f"  Cancel Old Pipelines: {settings.cancel_old_pipelines}")
    logger.info(f"  Branch Prefix: {settings.branch_prefix}")
    logger.info(
        f"  Rate Limit: {settings.rate_limit_max} per {settings.rate_limit_window}s"
    )
    logger.info(f"  Redis URL: {redis_url}")
    logger.info(f"  Discord Webhook: {discord_webhook}")
    logger.info(f"  Admin Token: {admin_token}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def _create_store(settings: WebhookSettings) -> CounterStore:
    if settings.redis_url:
        return RedisCounterStore.from_url(
            settings.redis_url,
            timeout_seconds=settings.redis_timeout_seconds,
        )
    logger.warning(
        "REDIS_URL not set, using in-memory rate limit store "
        "(limits are not shared between replicas)"
    )
    return InMemoryCounterStore()


def build_services(settings: WebhookSettings, metrics: WebhookMetrics) -> Services:
    """Wire all dependencies into a WebhookOrchestrator.

    Args:
        settings: Validated settings.
        metrics: Metrics container shared by the limiter and orchestrator.

    Returns:
        The service container for one application.
    """
    store = _create_store(settings)
    gitlab_client = GitLabClient(
        token=settings.gitlab_token,
        base_url=settings.gitlab_url,
        timeout=settings.http_timeout_seconds,
    )
    notifier = create_notifier(
        settings.discord_webhook_url,
        timeout=settings.http_timeout_seconds,
    )
    bot_switch = BotSwitch(enabled=not settings.claude_disabled)

    orchestrator = WebhookOrchestrator(
        webhook_handler=create_webhook_handler(settings.webhook_secret),
        rate_limiter=RateLimiter(
            store,
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window,
            timeout_seconds=settings.redis_timeout_seconds,
            metrics=metrics,
        ),
        branch_resolver=BranchResolver(
            gitlab_client, branch_prefix=settings.branch_prefix
        ),
        pipeline_trigger=PipelineTrigger(gitlab_client),
        notifier=notifier,
        bot_switch=bot_switch,
        trigger_phrase=settings.trigger_phrase,
        gitlab_url=settings.gitlab_url,
        cancel_old_pipelines=settings.cancel_old_pipelines,
        metrics=metrics,
    )

    return Services(
        settings=settings,
        orchestrator=orchestrator,
        store=store,
        gitlab_client=gitlab_client,
        notifier=notifier,
        bot_switch=bot_switch,
        metrics=metrics,
    )


def _result_response(result: WebhookResult) -> Response:
    """Map an orchestrator outcome to the HTTP response GitLab receives."""
    if result.status == WebhookStatus.STARTED:
        return JSONResponse(
            {
                "status": result.status.value,
                "pipelineId": result.pipeline_id,
                "branch": result.branch,
            }
        )
    return PlainTextResponse(
        result.message or result.status.value,
        status_code=result.http_status,
    )


def create_app(
    settings: Optional[WebhookSettings] = None,
    services_factory: Callable[[WebhookSettings, WebhookMetrics], Services] = build_services,
    metrics: Optional[WebhookMetrics] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Settings to use; read from the environment on startup
            when None.
        services_factory: Builds the service container on startup.
        metrics: Metrics container; the default-registry instance when None.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup and shutdown.

        Handles:
        - Configuration loading and validation
        - Logging configuration (with secrets redacted)
        - Dependency wiring for the webhook orchestrator
        - Draining notifications and closing clients on shutdown
        """
        cfg = settings or get_settings()
        logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT)

        logger.info("Webhook server starting up...")
        _log_configuration(cfg)

        services = services_factory(cfg, metrics or get_metrics())
        app.state.services = services

        logger.info("Webhook server started successfully")

        yield

        logger.info("Webhook server shutting down...")

        await services.orchestrator.drain()
        await services.notifier.close()
        await services.gitlab_client.close()
        await services.store.close()

        logger.info("Webhook server shutdown complete")

    app = FastAPI(
        title="GitLab Webhook Server",
        description="Starts CI pipelines from GitLab comments that mention the assistant",
        version="1.0.0",
        lifespan=lifespan,
    )

    def get_services(request: Request) -> Services:
        return request.app.state.services

    def require_admin(
        services: Services = Depends(get_services),
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    ) -> Optional[Response]:
        """Check the admin bearer token; returns an error response on failure."""
        admin_token = services.settings.admin_token
        if admin_token is None:
            return PlainTextResponse("admin endpoints disabled", status_code=503)
        if credentials is None or not hmac.compare_digest(
            credentials.credentials.encode("utf-8"),
            admin_token.encode("utf-8"),
        ):
            logger.warning("Admin request rejected: invalid token")
            return PlainTextResponse("unauthorized", status_code=401)
        return None

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started_at = time.perf_counter()
        logger.info(
            "Request received",
            extra={
                "method": request.method,
                "path": request.url.path,
                "headers": mask_sensitive(dict(request.headers)),
            },
        )
        response = await call_next(request)
        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
            },
        )
        return response

    @app.get("/health", response_class=PlainTextResponse)
    async def health():
        """Liveness check endpoint.

        Returns 200 OK if the application is running.
        """
        return "ok"

    @app.get("/ready")
    async def ready(services: Services = Depends(get_services)):
        """Readiness check endpoint.

        Checks that the rate-limit counter store is reachable.

        Returns:
            dict: Status and dependency health information; 503 when the
            counter store cannot be reached.
        """
        try:
            store_status = "healthy" if await services.store.ping() else "unhealthy"
        except Exception as e:
            logger.warning("Counter store ping failed", extra={"error": str(e)})
            store_status = "unhealthy"

        body = {
            "status": "ready" if store_status == "healthy" else "not_ready",
            "dependencies": {"counter_store": store_status},
        }
        return JSONResponse(body, status_code=200 if store_status == "healthy" else 503)

    @app.get("/metrics")
    async def metrics_endpoint(services: Services = Depends(get_services)):
        """Prometheus metrics endpoint."""
        return Response(services.metrics.generate(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/webhook")
    async def gitlab_webhook(
        request: Request,
        services: Services = Depends(get_services),
    ):
        """GitLab webhook receiver endpoint.

        Reads the X-Gitlab-Event and X-Gitlab-Token headers and the JSON
        body, and answers with the orchestrator's outcome. The body of an
        unauthenticated request is never decoded.
        """
        token = request.headers.get("x-gitlab-token")
        payload = None
        if services.orchestrator.webhook_handler.verify_token(token):
            try:
                payload = await request.json()
            except ValueError:
                logger.warning("Webhook body is not valid JSON")
                return PlainTextResponse("invalid json", status_code=400)

        result = await services.orchestrator.process_webhook(
            event_kind=request.headers.get("x-gitlab-event"),
            token=token,
            payload=payload,
        )
        return _result_response(result)

    @app.get("/admin/disable", response_class=PlainTextResponse)
    async def admin_disable(
        services: Services = Depends(get_services),
        denied: Optional[Response] = Depends(require_admin),
    ):
        """Turn the assistant off for every project."""
        if denied is not None:
            return denied
        services.bot_switch.disable()
        return "disabled"

    @app.get("/admin/enable", response_class=PlainTextResponse)
    async def admin_enable(
        services: Services = Depends(get_services),
        denied: Optional[Response] = Depends(require_admin),
    ):
        """Turn the assistant back on."""
        if denied is not None:
            return denied
        services.bot_switch.enable()
        return "enabled"

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.webhook_server.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )

"""FastAPI application factory for Deploybot.

Creates the webhook receiver: request logging middleware, health endpoints,
the GitHub and GitLab webhook endpoints, and a lifespan that wires the
database, the Discord notifier, the deployment pipeline, the dispatcher
and the pull request announcer into ``app.state``.

Example usage:
    >>> from deploybot.config import DeploybotConfig
    >>> from deploybot.web.app import create_app
    >>>
    >>> app = create_app(DeploybotConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="0.0.0.0", port=3000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from deploybot import __version__
from deploybot.config import DeploybotConfig
from deploybot.database.connection import get_engine, get_session_factory
from deploybot.integrations.discord import DiscordNotifier
from deploybot.logging import get_logger
from deploybot.orchestrator.announcer import PullRequestAnnouncer
from deploybot.orchestrator.dispatcher import DeploymentDispatcher
from deploybot.orchestrator.pipeline import DeploymentPipeline
from deploybot.orchestrator.store import SqlDeploymentStore
from deploybot.web.middleware import RequestLoggingMiddleware
from deploybot.web.routes.health import create_health_router
from deploybot.web.routes.webhooks import create_webhooks_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the runtime object graph on startup and tear it down on shutdown.

    Shutdown waits for in-flight deployments (bounded by
    ``pipeline.shutdown_grace_seconds``) before closing the notifier and the
    database pool.
    """
    config: DeploybotConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = get_engine(config.database)
    session_factory = get_session_factory(engine)
    store = SqlDeploymentStore(session_factory)
    notifier = DiscordNotifier(config.discord)
    pipeline = DeploymentPipeline(store, notifier, config.pipeline, config.git)
    dispatcher = DeploymentDispatcher(session_factory, store, pipeline)
    announcer = PullRequestAnnouncer(session_factory, notifier)

    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.notifier = notifier
    app.state.dispatcher = dispatcher
    app.state.announcer = announcer

    logger.info(
        "app_started",
        deploy_base_path=str(config.pipeline.deploy_base_path),
        discord_enabled=config.discord.bot_token is not None,
    )

    yield

    logger.info("app_shutdown_begin", active_deployments=dispatcher.active_runs)
    await dispatcher.shutdown(config.pipeline.shutdown_grace_seconds)
    await notifier.close()
    await engine.dispose()
    logger.info("app_shutdown_complete")


def create_app(config: DeploybotConfig | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Optional DeploybotConfig. If None, creates default config.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = DeploybotConfig()

    app = FastAPI(
        title="Deploybot",
        version=__version__,
        description="Webhook-driven deployment bot",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_webhooks_router())

    logger.info("app_created", version=__version__)

    return app

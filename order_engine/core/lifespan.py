"""
Application lifespan handler.
Builds the long-lived collaborators on startup and releases them on shutdown.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from shared.config.logging import engine_logger as logger, setup_logging
from shared.config.settings import settings
from shared.infrastructure.db import AsyncSessionLocal, engine
from shared.infrastructure.events import close_redis_pool
from order_engine.models import Base
from order_engine.services.chat import (
    ConversationStateRegistry,
    OllamaReasoningClient,
    RedisConversationHistory,
    ToolCallingOrchestrator,
    build_tool_registry,
)
from order_engine.services.jobs import AbandonmentReaper
from order_engine.services.notifications import RedisNotificationSink


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.
    Runs on startup and shutdown.
    """
    setup_logging()

    config_errors = settings.validate_production_settings()
    if config_errors:
        for error in config_errors:
            logger.error("Configuration error", error=error)
        if settings.environment == "production":
            raise RuntimeError(
                f"Production configuration errors: {'; '.join(config_errors)}. "
                "Server will not start with unsafe configuration."
            )
        logger.warning("Running with development defaults")

    logger.info("Starting order engine", port=settings.rest_api_port, env=settings.environment)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified")

    notifier = RedisNotificationSink()
    reasoning_client = OllamaReasoningClient()
    app.state.notifier = notifier
    app.state.reasoning_client = reasoning_client
    app.state.orchestrator = ToolCallingOrchestrator(
        engine=reasoning_client,
        registry=build_tool_registry(),
        history=RedisConversationHistory(),
        states=ConversationStateRegistry(),
        session_factory=AsyncSessionLocal,
        notifier=notifier,
    )

    reaper = AbandonmentReaper(session_factory=AsyncSessionLocal, notifier=notifier)
    reaper.start()
    app.state.reaper = reaper
    logger.info("Abandonment reaper started", idle_minutes=settings.cart_idle_minutes)

    yield

    logger.info("Shutting down order engine")

    await reaper.stop()
    logger.info("Abandonment reaper stopped")

    await reasoning_client.close()
    logger.info("Reasoning client closed")

    await close_redis_pool()
    logger.info("Redis connection pool closed")

    await engine.dispose()

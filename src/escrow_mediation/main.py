"""ASGI entry point: REST API and the /ws socket served from one process.

On startup logging is configured, the schema is created in development,
and with PRESENCE_BACKEND=redis the in-process hub is replaced by one that
shares presence through Redis and listens on this node's relay channel.

    uvicorn escrow_mediation.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from escrow_mediation.api.middleware import setup_middleware
from escrow_mediation.api.routes import account, chat, disputes, health, mediations, ws
from escrow_mediation.config import Settings, get_settings
from escrow_mediation.infrastructure.database.engine import close_db, init_db
from escrow_mediation.infrastructure.redis_client import close_redis, init_redis
from escrow_mediation.logging_config import get_logger, setup_logging
from escrow_mediation.realtime import InMemoryPresenceRegistry, RealtimeHub, RedisPresenceRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

API_VERSION = "0.1.0"


async def _distributed_hub(settings: Settings) -> RealtimeHub:
    redis = await init_redis(settings.redis_url)
    hub = RealtimeHub(
        RedisPresenceRegistry(redis, ttl_seconds=settings.presence_ttl_seconds),
        node_id=settings.realtime_node_id,
        redis=redis,
    )
    await hub.start_relay()
    return hub


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(log_level=settings.app_log_level, json_logs=not settings.is_development)
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        node_id=settings.realtime_node_id,
        presence_backend=settings.presence_backend,
    )

    await init_db()
    if settings.presence_backend == "redis":
        app.state.hub = await _distributed_hub(settings)

    logger.info("app.started", host=settings.app_host, port=settings.app_port)
    try:
        yield
    finally:
        logger.info("app.shutting_down")
        await app.state.hub.stop_relay()
        await close_redis()
        await close_db()
        logger.info("app.stopped")


def create_app() -> FastAPI:
    settings = get_settings()
    docs_enabled = settings.is_development

    app = FastAPI(
        title="Escrow Mediation",
        description=(
            "Escrow-backed mediation lifecycle, dispute resolution "
            "and realtime chat for marketplace transactions."
        ),
        version=API_VERSION,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
    )
    # Single-node presence until the lifespan decides otherwise.
    app.state.hub = RealtimeHub(InMemoryPresenceRegistry(), node_id=settings.realtime_node_id)

    setup_middleware(app)
    for module in (health, mediations, disputes, chat, account, ws):
        app.include_router(module.router)
    return app


app = create_app()

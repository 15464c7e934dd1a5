# src/parley/main.py
"""Main entry point for the Parley application."""

from __future__ import annotations

import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from parley.api.v1 import chat_router, relay_router
from parley.core.settings import settings
from parley.db.session import SessionLocal
from parley.services.message_store import MessageStore
from parley.services.presence import build_presence_registry
from parley.services.relay import RelayHub

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Apply the configured level to the application's loggers."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("parley").setLevel(level)


def build_relay_hub() -> RelayHub:
    """Wire the relay's presence registry and message store."""
    return RelayHub(build_presence_registry(), MessageStore(SessionLocal))


# Initialize FastAPI app
app = FastAPI(
    title="Parley API",
    description="Real-time chat relay with persisted conversations",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(chat_router, prefix="/api/v1")
app.include_router(relay_router)

app.state.relay_hub = None
app.state.presence_heartbeat = None


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    if app.state.relay_hub is None:
        app.state.relay_hub = build_relay_hub()
    if settings.presence_mirror_enabled and app.state.presence_heartbeat is None:
        app.state.presence_heartbeat = asyncio.create_task(
            app.state.relay_hub.keep_presence_alive()
        )
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    heartbeat: asyncio.Task[None] | None = getattr(app.state, "presence_heartbeat", None)
    if heartbeat is not None:
        heartbeat.cancel()
        app.state.presence_heartbeat = None
    hub: RelayHub | None = getattr(app.state, "relay_hub", None)
    if hub is not None:
        await hub.close_all()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "Parley API",
        "version": settings.app_version,
        "description": "Real-time chat relay with persisted conversations",
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("parley.main:app", host="0.0.0.0", port=8000, reload=settings.debug)

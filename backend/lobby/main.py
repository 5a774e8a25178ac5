"""Lobby Backend Application.

This is the main entry point for the Lobby chat service: a minimal
real-time group chat that tracks who is online, relays messages to everyone
connected and announces joins and leaves.

Modules:
    - chat: connection registry, event broadcaster and WebSocket endpoint
    - config: YAML + pydantic settings
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from lobby.chat.broadcaster import EventBroadcaster
from lobby.chat.router import router as chat_router
from lobby.config import get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence per-request access lines; connection events are logged by the chat router.
for _noisy in (
    "uvicorn.access",
    "websockets",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in lobby.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # One broadcaster (and registry) per process, reachable only via app.state
    broadcaster = EventBroadcaster()
    await broadcaster.start()
    app.state.broadcaster = broadcaster
    logger.info(
        f"Chat server ready on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    await broadcaster.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Lobby API",
    description="Real-time group chat with presence and broadcast",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["GET", "POST"],
)

app.include_router(chat_router)


@app.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of live WebSocket connections.
    """
    broadcaster = getattr(request.app.state, "broadcaster", None)
    connections = broadcaster.connection_count() if broadcaster else 0
    return {"status": "ok", "connections": connections}


if __name__ == "__main__":
    config = get_config()
    uvicorn.run(
        "lobby.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )

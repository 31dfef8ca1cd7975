"""Courier Relay Backend Application.

This is the main entry point for the relay service. The relay delivers
one-to-one messages in real time, stores them for offline recipients and
replays them when the recipient reconnects, and runs a global broadcast
channel alongside.

Modules:
    - chat: WebSocket session protocol (/ws/relay)
    - delivery: Delivery engine, history pages, broadcast, retention job
    - presence: Which users are online and their delivery channels
    - storage: DuckDB persistence for messages and registered users
    - users: Registered user HTTP endpoints
"""
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.router import router as chat_router
from app.config import get_config
from app.delivery import get_relay
from app.users.router import router as users_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn's access log records every WebSocket upgrade; not useful here.
for _noisy in ("uvicorn.access",):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    # Opening the relay runs schema migrations once, before any session.
    relay = get_relay()
    logger.info("Storage ready: %s (schema v%d)", relay.db.path, relay.db.schema_version())

    if config.retention.enabled:
        relay.retention.start()
    else:
        logger.info("Retention job disabled in config.")

    yield  # Application runs here

    # Shutdown
    await relay.retention.stop()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Courier Relay API",
    description="Real-time direct messaging relay with store-and-forward delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(users_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object with the number of users currently online.
    """
    return {"status": "ok", "online": len(get_relay().presence)}


@app.get("/health/failures")
async def health_failures(limit: int = 50) -> dict:
    """Recent relay failures recorded by the failure reporter.

    Returns:
        dict: Recent failures (newest last) and per-operation counts.
    """
    reporter = get_relay().reporter
    return {
        "failures": [f.model_dump(mode="json") for f in reporter.recent(limit)],
        "counts": reporter.counts(),
    }


if __name__ == "__main__":
    server = get_config().server
    uvicorn.run("app.main:app", host=server.host, port=server.port)

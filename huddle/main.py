"""Huddle Backend Application.

This is the main entry point for the Huddle chat server.

Modules:
    - chat: WebSocket real-time chat (presence, rooms, typing, receipts)
    - storage: DuckDB or in-memory persistence, picked once at startup
    - files: File uploads attached to chat messages
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from huddle import __version__
from huddle.chat.coordinator import ChatCoordinator
from huddle.chat.router import router as chat_router
from huddle.chat.transport import WebSocketTransport
from huddle.config import get_config
from huddle.files.router import router as files_router
from huddle.files.service import FileStorageService
from huddle.storage import open_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "multipart",
    "python_multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    store = open_store(config)
    app.state.config = config
    app.state.chat = ChatCoordinator(WebSocketTransport(), store, config.chat)
    app.state.files = FileStorageService(
        config.uploads.dir, max_size_bytes=config.uploads.max_size_bytes
    )

    if store.durable:
        logger.info(f"Database: {store.kind} (persistent storage)")
    else:
        logger.warning("Database: in-memory (data will be lost on restart)")

    yield  # Application runs here

    # Shutdown
    app.state.chat.close()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Huddle API",
    description="Real-time group and private chat server",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(chat_router)
app.include_router(files_router)


@app.get("/health")
async def health(request: Request) -> dict:
    """Health check endpoint.

    Returns:
        dict: Status, connected user count and active storage kind.
    """
    return await request.app.state.chat.health()


@app.get("/stats")
async def stats(request: Request) -> dict:
    """Server statistics: connections, users, messages, rooms and uptime."""
    return await request.app.state.chat.stats()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    config = get_config()
    uvicorn.run("huddle.main:app", host=config.server.host, port=config.server.port)

"""Chat storage backends and startup selection."""
import logging

from huddle.config import AppConfig

from .base import ChatStore, StorageError, StorageQueryError, StorageUnavailable
from .duckdb_store import DuckDBStore
from .volatile import VolatileStore

logger = logging.getLogger(__name__)


def open_store(config: AppConfig) -> ChatStore:
    """Pick the chat store once at startup.

    Falls back to a VolatileStore when the memory backend is configured or the
    DuckDB file cannot be opened.
    """
    if config.storage.backend == "memory":
        logger.info("[Store] Memory backend configured; data will be lost on restart")
        return VolatileStore(cap=config.chat.memory_cap)

    try:
        return DuckDBStore(config.storage.path)
    except StorageUnavailable as exc:
        logger.warning(f"[Store] {exc}. Continuing with in-memory storage")
        return VolatileStore(cap=config.chat.memory_cap)


__all__ = [
    "ChatStore",
    "DuckDBStore",
    "StorageError",
    "StorageQueryError",
    "StorageUnavailable",
    "VolatileStore",
    "open_store",
]

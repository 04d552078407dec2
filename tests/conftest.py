"""Shared test fixtures and helpers for Huddle tests."""
from typing import Any, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from huddle.chat.coordinator import ChatCoordinator
from huddle.chat.transport import Transport
from huddle.config import AppConfig, ChatSettings, StorageSettings, UploadSettings, set_config
from huddle.storage import ChatStore, StorageUnavailable, VolatileStore


class RecordingTransport(Transport):
    """Transport that records every delivered event instead of sending it."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, Any]] = []

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        self.sent.append((connection_id, event, data))
        return True

    def events(self, connection_id: str, event: Optional[str] = None) -> List[Any]:
        """Payloads delivered to one connection, optionally filtered by event."""
        return [
            data for conn, ev, data in self.sent
            if conn == connection_id and (event is None or ev == event)
        ]

    def recipients(self, event: str) -> List[str]:
        return [conn for conn, ev, _ in self.sent if ev == event]

    def clear(self) -> None:
        self.sent.clear()


class FailingStore(ChatStore):
    """Durable-looking store whose every call fails."""

    kind = "failing"
    durable = True

    def __init__(self) -> None:
        self.closed = False

    async def _fail(self, *args, **kwargs):
        raise StorageUnavailable("database went away")

    find_or_create_user = _fail
    mark_user_offline = _fail
    append_message = _fail
    get_message = _fail
    set_reaction = _fail
    mark_read = _fail
    update_status = _fail
    recent_messages = _fail
    room_history = _fail
    list_users = _fail
    stats = _fail

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def coordinator(transport):
    """Coordinator over an in-memory store and a recording transport."""
    return ChatCoordinator(transport, VolatileStore(), ChatSettings())


async def join(coordinator: ChatCoordinator, username: str, connection_id: Optional[str] = None) -> str:
    """Attach a connection and register it under ``username``."""
    connection_id = connection_id or f"conn-{username.lower()}"
    coordinator.connect(connection_id)
    await coordinator.dispatch(connection_id, "user_join", {"username": username})
    return connection_id


@pytest.fixture
def app_config(tmp_path):
    config = AppConfig(
        storage=StorageSettings(backend="memory"),
        uploads=UploadSettings(dir=str(tmp_path / "uploads"), max_size_bytes=1024),
    )
    set_config(config)
    return config


@pytest.fixture
def api_client(app_config):
    """TestClient with the lifespan running against an in-memory store."""
    from huddle.main import app

    with TestClient(app) as client:
        yield client

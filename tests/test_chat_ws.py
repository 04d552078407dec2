"""End-to-end tests for the /ws chat protocol and the HTTP chat endpoints.

Protocol:
1. On connect, the server sends {type: "connected", data: {connectionId}}
2. user_join registers the connection and replays recent general history
3. Every frame in both directions is {type, data}
"""
import asyncio
import json
from types import SimpleNamespace

import anyio
import pytest
from fastapi.testclient import TestClient

from huddle.chat.router import websocket_chat_endpoint
from huddle.config import AppConfig, StorageSettings, UploadSettings, set_config

from conftest import join


def receive_until(ws, event):
    """Read frames until one of type ``event`` arrives; return its data."""
    while True:
        frame = ws.receive_json()
        if frame["type"] == event:
            return frame["data"]


def connect_and_join(ws, username):
    connected = ws.receive_json()
    assert connected["type"] == "connected"
    ws.send_json({"type": "user_join", "data": {"username": username}})
    history = receive_until(ws, "message_history")
    return connected["data"]["connectionId"], history


def test_connect_sends_connection_id(api_client):
    with api_client.websocket_connect("/ws") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "connected"
        assert len(frame["data"]["connectionId"]) == 32


def test_join_announces_user(api_client):
    with api_client.websocket_connect("/ws") as ws:
        connected = ws.receive_json()
        ws.send_json({"type": "user_join", "data": {"username": "Alice"}})

        user_list = ws.receive_json()
        assert user_list["type"] == "user_list"
        assert [u["displayName"] for u in user_list["data"]] == ["Alice"]

        joined = ws.receive_json()
        assert joined == {
            "type": "user_joined",
            "data": {
                "username": "Alice",
                "id": connected["data"]["connectionId"],
                "userId": connected["data"]["connectionId"],
            },
        }

        history = ws.receive_json()
        assert history == {"type": "message_history", "data": []}


def test_two_clients_exchange_messages(api_client):
    with api_client.websocket_connect("/ws") as alice, \
         api_client.websocket_connect("/ws") as bob:
        connect_and_join(alice, "Alice")
        connect_and_join(bob, "Bob")

        alice.send_json({"type": "send_message", "data": {"message": "Hello Bob", "room": "general"}})

        received = receive_until(bob, "receive_message")
        assert received["text"] == "Hello Bob"
        assert received["sender"] == "Alice"
        assert received["status"] == "sent"

        echoed = receive_until(alice, "receive_message")
        assert echoed["id"] == received["id"]
        delivered = receive_until(alice, "message_delivered")
        assert delivered == {"messageId": received["id"]}

        bob.send_json({"type": "message_read", "data": {"messageId": received["id"]}})
        read = receive_until(alice, "message_read")
        assert read == {"messageId": received["id"], "readBy": "Bob"}


def test_private_message_between_clients(api_client):
    with api_client.websocket_connect("/ws") as alice, \
         api_client.websocket_connect("/ws") as bob:
        connect_and_join(alice, "Alice")
        bob_id, _ = connect_and_join(bob, "Bob")

        alice.send_json({"type": "private_message", "data": {"to": bob_id, "message": "psst"}})

        received = receive_until(bob, "private_message")
        assert received["text"] == "psst"
        assert received["private"] is True
        assert receive_until(alice, "private_message")["id"] == received["id"]


def test_late_joiner_receives_history(api_client):
    with api_client.websocket_connect("/ws") as alice:
        connect_and_join(alice, "Alice")
        for text in ("one", "two"):
            alice.send_json({"type": "send_message", "data": {"message": text}})
            receive_until(alice, "message_delivered")

    with api_client.websocket_connect("/ws") as bob:
        _, history = connect_and_join(bob, "Bob")
        assert [m["text"] for m in history] == ["one", "two"]


def test_disconnect_broadcasts_user_left(api_client):
    with api_client.websocket_connect("/ws") as alice:
        connect_and_join(alice, "Alice")
        with api_client.websocket_connect("/ws") as bob:
            connect_and_join(bob, "Bob")

        left = receive_until(alice, "user_left")
        assert left["displayName"] == "Bob"
        user_list = receive_until(alice, "user_list")
        assert [u["displayName"] for u in user_list] == ["Alice"]


def test_invalid_frames_report_errors(api_client):
    with api_client.websocket_connect("/ws") as ws:
        ws.receive_json()

        ws.send_text("not json")
        assert ws.receive_json() == {"type": "error", "data": "Invalid frame"}

        ws.send_json(["not", "an", "object"])
        assert ws.receive_json() == {"type": "error", "data": "Invalid frame"}

        ws.send_json({"type": "dance", "data": {}})
        assert ws.receive_json() == {"type": "error", "data": "Unknown event: dance"}

        # The connection is still usable afterwards.
        ws.send_json({"type": "user_join", "data": {"username": "Alice"}})
        assert ws.receive_json()["type"] == "user_list"


class TestHttpEndpoints:

    def test_health(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "OK"
        assert body["database"] == "memory"
        assert body["connectedUsers"] == 0

    def test_stats(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            connect_and_join(ws, "Alice")
            body = api_client.get("/stats").json()

        assert body["connectedUsers"] == 1
        assert body["database"] == "memory"
        assert body["dbConnected"] is False
        assert "uptime" in body

    def test_room_messages_paginated(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            connect_and_join(ws, "Alice")
            for i in range(5):
                ws.send_json({"type": "send_message", "data": {"message": f"m{i}"}})
                receive_until(ws, "message_delivered")

        page1 = api_client.get("/api/messages/general", params={"limit": 2}).json()
        page3 = api_client.get("/api/messages/general", params={"page": 3, "limit": 2}).json()

        assert [m["text"] for m in page1] == ["m3", "m4"]
        assert [m["text"] for m in page3] == ["m0"]

    def test_room_messages_rejects_bad_page(self, api_client):
        response = api_client.get("/api/messages/general", params={"page": 0})
        assert response.status_code == 422

    def test_huge_page_keeps_durable_store(self, tmp_path):
        """An out-of-range page is rejected without touching the database."""
        set_config(AppConfig(
            storage=StorageSettings(path=str(tmp_path / "chat.duckdb")),
            uploads=UploadSettings(dir=str(tmp_path / "uploads")),
        ))
        from huddle.main import app

        with TestClient(app) as client:
            response = client.get(
                "/api/messages/general", params={"page": 100000000000000000000}
            )
            assert response.status_code == 422
            assert client.get("/api/messages/general").json() == []
            assert client.get("/health").json()["database"] == "duckdb"

    def test_users_lists_live_sessions(self, api_client):
        with api_client.websocket_connect("/ws") as ws:
            connect_and_join(ws, "Alice")
            users = api_client.get("/api/users").json()

        assert [u["displayName"] for u in users] == ["Alice"]


class QueuedWebSocket:
    """Minimal stand-in for a server-side WebSocket fed from a queue."""

    def __init__(self, coordinator):
        self.app = SimpleNamespace(state=SimpleNamespace(chat=coordinator))
        self.inbox = asyncio.Queue()
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, data):
        self.sent.append(data)

    async def receive_text(self):
        return await self.inbox.get()


class TestHandlerCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_handler_still_announces_departure(self, coordinator, transport):
        """Cancelling the connection task still runs the disconnect cascade."""
        bob = await join(coordinator, "Bob")
        ws = QueuedWebSocket(coordinator)
        ws.inbox.put_nowait(json.dumps({"type": "user_join", "data": {"username": "Alice"}}))

        async with anyio.create_task_group() as tg:
            tg.start_soon(websocket_chat_endpoint, ws)
            for _ in range(100):
                if len(transport.recipients("message_history")) == 2:
                    break
                await anyio.sleep(0)
            await anyio.sleep(0)
            assert len(coordinator.presence.sessions) == 2
            transport.clear()
            tg.cancel_scope.cancel()

        assert [s["displayName"] for s in transport.events(bob, "user_left")] == ["Alice"]
        assert [u["displayName"] for u in transport.events(bob, "user_list")[-1]] == ["Bob"]
        assert len(coordinator.presence.sessions) == 1
        assert ws.sent[0]["type"] == "connected"

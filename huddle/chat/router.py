"""Chat router providing WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws: Real-time chat channel
    - GET /api/messages/{room}: Paginated room history
    - GET /api/users: User directory

Frames in both directions are ``{"type": <event>, "data": <payload>}``. The
first frame a client receives is ``connected`` carrying its server-assigned
connection id, which other clients use to address private messages.
"""
import json
import logging
import uuid
from typing import Optional

import anyio
from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from huddle.storage import StorageQueryError

from .coordinator import ChatCoordinator
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_PAGE = 100_000


def get_coordinator(app) -> ChatCoordinator:
    return app.state.chat


@router.get("/api/messages/{room}")
async def get_room_messages(
    request: Request,
    room: str,
    page: int = Query(1, ge=1, le=MAX_PAGE, description="Page number, 1 = most recent"),
    limit: Optional[int] = Query(None, ge=1, description="Messages per page"),
) -> JSONResponse:
    """Get one page of a room's history, oldest message first.

    Example:
        GET /api/messages/general?page=2&limit=50
    """
    coordinator = get_coordinator(request.app)
    chat_settings = coordinator.settings
    limit = min(limit or chat_settings.page_size, chat_settings.max_page_size)
    try:
        messages = await coordinator.durability.room_history(room, page, limit)
    except StorageQueryError as e:
        logger.error(f"[Store] History query for {room} failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to load messages")
    return JSONResponse([m.to_event() for m in messages])


@router.get("/api/users")
async def get_users(request: Request) -> JSONResponse:
    """List known users; live sessions only when no durable store is active."""
    coordinator = get_coordinator(request.app)
    if coordinator.durability.durable:
        users = await coordinator.durability.list_users()
        return JSONResponse([u.model_dump(mode="json", exclude={"created"}) for u in users])
    return JSONResponse([s.model_dump(mode="json") for s in coordinator.presence.list()])


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket endpoint for one chat client.

    Protocol Flow:
        1. Client connects -> Server sends {type: "connected", data: {connectionId}}
        2. Client sends {type: "user_join", data: {username}}
           -> Server broadcasts user_list / user_joined
           -> Server sends message_history (last 50 of the default room)
        3. Client sends send_message, typing, add_reaction, ...
        4. On disconnect -> Server broadcasts user_left and user_list
    """
    coordinator = get_coordinator(websocket.app)
    transport = coordinator.transport
    connection_id = uuid.uuid4().hex

    await websocket.accept()
    if isinstance(transport, WebSocketTransport):
        transport.add(connection_id, websocket)
    coordinator.connect(connection_id)
    logger.info(f"[WS] Connection {connection_id} accepted")

    try:
        await websocket.send_json({"type": "connected", "data": {"connectionId": connection_id}})

        while True:
            text = await websocket.receive_text()
            try:
                frame = json.loads(text)
            except json.JSONDecodeError:
                frame = None
            if not isinstance(frame, dict):
                await websocket.send_json({"type": "error", "data": "Invalid frame"})
                continue
            event = frame.get("type")
            logger.debug("[WS] %s received: type=%s", connection_id, event)
            await coordinator.dispatch(connection_id, event, frame.get("data"))

    except WebSocketDisconnect:
        logger.info(f"[WS] Connection {connection_id} closed")
    finally:
        # The handler may be cancelled on close or shutdown; the cascade still runs.
        with anyio.CancelScope(shield=True):
            await coordinator.disconnect(connection_id)
        if isinstance(transport, WebSocketTransport):
            transport.discard(connection_id)

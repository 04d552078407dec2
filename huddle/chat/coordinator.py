"""Chat coordinator: owns all real-time state and dispatches client events.

One ChatCoordinator is created per process at startup and stored on
``app.state``. Every component receives its collaborators explicitly; there is
no module-level registry.

Protocol Message Types (client -> server):
    - user_join: {username, avatar?}
    - join_room / leave_room: room id string
    - send_message: {message, room, type, fileUrl?, fileName?}
    - private_message: {to, message, type, fileUrl?, fileName?}
    - typing: {isTyping, room}
    - add_reaction: {messageId, reaction}
    - message_read: {messageId}
    - update_status: status string
    - reconnect_user: {}

Thread Safety:
    Designed for a single asyncio event loop. It is NOT thread-safe.
"""
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import ValidationError

from huddle.config import ChatSettings
from huddle.storage import ChatStore, StorageError

from .durability import DurabilityAdapter
from .errors import MessageNotFound, UnknownSession
from .messaging import MessageRouter
from .presence import PresenceRegistry
from .receipts import ReceiptCoordinator
from .rooms import RoomMembershipTracker
from .schemas import (
    MessageReadPayload,
    PrivateMessagePayload,
    ReactionPayload,
    RoomPayload,
    SendMessagePayload,
    TypingPayload,
    UserJoinPayload,
)
from .transport import Transport
from .typing_indicator import TypingIndicatorAggregator

logger = logging.getLogger(__name__)

# Events whose storage failures are reported to the client.
_FAILURE_NOTICES = {
    "user_join": "Failed to join chat",
    "send_message": "Failed to send message",
}


class ChatCoordinator:
    """Wires the chat components together and routes inbound events.

    Args:
        transport: Delivery to connections.
        store: Chat store selected at startup.
        settings: Chat limits and the default room name.
    """

    def __init__(
        self,
        transport: Transport,
        store: ChatStore,
        settings: Optional[ChatSettings] = None,
    ) -> None:
        settings = settings or ChatSettings()
        self.settings = settings
        self.started_at = time.time()

        self.transport = transport
        self.durability = DurabilityAdapter(store, memory_cap=settings.memory_cap)
        self.tracker = RoomMembershipTracker(transport, default_room=settings.default_room)
        self.typing = TypingIndicatorAggregator()
        self.presence = PresenceRegistry(self.durability, self.tracker, self.typing)
        self.router = MessageRouter(
            self.presence, self.tracker, self.durability, history_limit=settings.history_limit
        )
        self.receipts = ReceiptCoordinator(self.presence, self.tracker, self.durability)

        self._handlers: Dict[str, Callable[[str, Any], Awaitable[None]]] = {
            "user_join": self.on_user_join,
            "join_room": self.on_join_room,
            "leave_room": self.on_leave_room,
            "send_message": self.on_send_message,
            "private_message": self.on_private_message,
            "typing": self.on_typing,
            "add_reaction": self.on_add_reaction,
            "message_read": self.on_message_read,
            "update_status": self.on_update_status,
            "reconnect_user": self.on_reconnect_user,
        }

    # -------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------

    def connect(self, connection_id: str) -> None:
        self.tracker.attach(connection_id)

    async def disconnect(self, connection_id: str) -> None:
        await self.presence.unregister(connection_id)

    # -------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------

    async def dispatch(self, connection_id: str, event: Optional[str], data: Any) -> None:
        """Handle one inbound event from a connection.

        Internal errors are logged and never propagate to the transport loop.
        """
        handler = self._handlers.get(event or "")
        if handler is None:
            logger.warning(f"[Chat] Unknown event {event!r} from {connection_id}")
            await self.tracker.emit_to(connection_id, "error", f"Unknown event: {event}")
            return

        try:
            await handler(connection_id, data)
        except ValidationError as e:
            logger.warning(f"[Chat] Invalid {event} payload from {connection_id}: {e}")
            await self.tracker.emit_to(connection_id, "error", f"Invalid {event} payload")
        except UnknownSession as e:
            logger.debug(f"[Chat] {event} ignored: {e}")
        except MessageNotFound as e:
            logger.info(f"[Chat] {event} ignored: {e}")
        except StorageError as e:
            logger.error(f"[Chat] {event} from {connection_id} failed: {e}")
            notice = _FAILURE_NOTICES.get(event)
            if notice:
                await self.tracker.emit_to(connection_id, "error", notice)

    # -------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------

    async def on_user_join(self, connection_id: str, data: Any) -> None:
        payload = UserJoinPayload.model_validate(data)
        await self.presence.register(connection_id, payload.username, payload.avatar)
        await self.router.replay_history(connection_id, self.tracker.default_room)

    async def on_join_room(self, connection_id: str, data: Any) -> None:
        room_id = _room_id(data)
        self.tracker.join(connection_id, room_id)
        await self.router.replay_history(connection_id, room_id, event="room_messages")

    async def on_leave_room(self, connection_id: str, data: Any) -> None:
        self.tracker.leave(connection_id, _room_id(data))

    async def on_send_message(self, connection_id: str, data: Any) -> None:
        payload = SendMessagePayload.model_validate(data)
        await self.router.send_to_room(connection_id, payload)

    async def on_private_message(self, connection_id: str, data: Any) -> None:
        payload = PrivateMessagePayload.model_validate(data)
        await self.router.send_private(connection_id, payload)

    async def on_typing(self, connection_id: str, data: Any) -> None:
        payload = TypingPayload.model_validate(data)
        session = self.presence.require(connection_id)
        room_id = payload.room or self.tracker.default_room
        names = self.typing.set_typing(
            connection_id, room_id, session.displayName, payload.isTyping
        )
        await self.tracker.emit_to_room(
            room_id, "typing_users", {"room": room_id, "users": names}, exclude=connection_id
        )

    async def on_add_reaction(self, connection_id: str, data: Any) -> None:
        payload = ReactionPayload.model_validate(data)
        await self.receipts.react(connection_id, payload.messageId, payload.reaction)

    async def on_message_read(self, connection_id: str, data: Any) -> None:
        payload = MessageReadPayload.model_validate(data)
        await self.receipts.mark_read(connection_id, payload.messageId)

    async def on_update_status(self, connection_id: str, data: Any) -> None:
        status = data.get("status") if isinstance(data, dict) else data
        await self.presence.update_status(connection_id, str(status))

    async def on_reconnect_user(self, connection_id: str, data: Any) -> None:
        await self.presence.reconnect(connection_id)

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------

    async def health(self) -> dict:
        return {
            "status": "OK",
            "timestamp": time.time(),
            "connectedUsers": len(self.presence.sessions),
            "totalMessages": len(self.durability.volatile),
            "database": self.durability.kind,
        }

    async def stats(self) -> dict:
        stats = await self.durability.stats()
        stats.update({
            "connectedUsers": len(self.presence.sessions),
            "connections": len(self.tracker.attached),
            "activeRooms": len(self.tracker.rooms),
            "uptime": time.time() - self.started_at,
        })
        return stats

    def close(self) -> None:
        self.durability.close()


def _room_id(data: Any) -> str:
    if isinstance(data, str):
        data = {"room": data}
    return RoomPayload.model_validate(data).room

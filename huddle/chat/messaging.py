"""Message router: builds, stores and fans out room and private messages.

Room messages are persisted before anything is broadcast, so a message that
failed to store is never seen by other clients. Fan-outs are serialised by a
single lock: two messages to the same room never interleave their delivery,
and within a room messages go out in the order their sends complete.

The ``message_delivered`` acknowledgement only confirms that the server
accepted and fanned out the message. It says nothing about any recipient.
"""
import asyncio
import logging
from typing import List, Optional

from .durability import DurabilityAdapter
from .presence import PresenceRegistry
from .rooms import RoomMembershipTracker
from .schemas import (
    Message,
    MessageStatus,
    PrivateMessagePayload,
    SendMessagePayload,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class MessageRouter:
    """Creates messages and delivers them to rooms or single recipients."""

    def __init__(
        self,
        presence: PresenceRegistry,
        tracker: RoomMembershipTracker,
        durability: DurabilityAdapter,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.presence = presence
        self.tracker = tracker
        self.durability = durability
        self.history_limit = history_limit
        self._fanout_lock = asyncio.Lock()

    async def send_to_room(
        self, connection_id: str, content: SendMessagePayload
    ) -> Optional[Message]:
        """Store and broadcast a room message.

        Raises:
            UnknownSession: The connection never registered.
            StorageUnavailable: The durable write failed; nothing was sent.
        """
        session = self.presence.require(connection_id)
        room_id = content.room or self.tracker.default_room

        message = Message(
            text=content.message,
            senderId=session.userId,
            senderName=session.displayName,
            avatarUrl=session.avatarUrl,
            room=room_id,
            type=content.type,
            status=MessageStatus.SENT,
            fileUrl=content.fileUrl,
            fileName=content.fileName,
            fileSize=content.fileSize,
            mimeType=content.mimeType,
        )
        message = await self.durability.append_room_message(message)

        async with self._fanout_lock:
            await self.tracker.emit_to_room(room_id, "receive_message", message.to_event())

        await self.tracker.emit_to(connection_id, "message_delivered", {"messageId": message.id})
        if message.advance_status(MessageStatus.DELIVERED):
            await self.durability.save_status(message, MessageStatus.DELIVERED)

        logger.info(
            f"[Router] Message {message.id} from {session.displayName} to {room_id}: "
            f"{(message.text or message.fileName or '')[:50]}"
        )
        return message

    async def send_private(
        self, connection_id: str, content: PrivateMessagePayload
    ) -> Message:
        """Deliver a private message to one connection and echo it back.

        Private messages are only kept in the volatile sequence, never in the
        durable store. There is no offline queue: a disconnected recipient
        simply misses the message.

        Raises:
            UnknownSession: The sender never registered.
        """
        session = self.presence.require(connection_id)
        recipient = self.presence.get(content.to)

        message = Message(
            text=content.message,
            senderId=session.userId,
            senderName=session.displayName,
            avatarUrl=session.avatarUrl,
            room=None,
            recipientId=recipient.userId if recipient else content.to,
            type=content.type,
            status=MessageStatus.SENT,
            fileUrl=content.fileUrl,
            fileName=content.fileName,
            fileSize=content.fileSize,
            mimeType=content.mimeType,
        )
        self.durability.append_private_message(message)

        payload = message.to_event()
        targets = {connection_id}
        if content.to in self.tracker.attached:
            targets.add(content.to)
        else:
            logger.info(f"[Router] Private recipient {content.to} not connected")
        async with self._fanout_lock:
            await self.tracker.emit_to_many(targets, "private_message", payload)
        return message

    async def replay_history(
        self, connection_id: str, room_id: str, event: str = "message_history"
    ) -> List[Message]:
        """Send the most recent messages of a room to one connection, oldest first."""
        history = await self.durability.recent_messages(room_id, self.history_limit)
        await self.tracker.emit_to(connection_id, event, [m.to_event() for m in history])
        logger.debug(f"[Router] Replayed {len(history)} messages of {room_id} to {connection_id}")
        return history

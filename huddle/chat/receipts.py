"""Reaction and read-receipt coordinator.

Owns every change made to a message after it was created. Reactions are
broadcast to all connections (see ``RoomMembershipTracker.reaction_audience``).
Read receipts go only to the sender's live connections; nothing checks that
the reader was an intended recipient.
"""
import logging
from typing import Optional

from .durability import DurabilityAdapter
from .presence import PresenceRegistry
from .rooms import RoomMembershipTracker
from .schemas import Message, MessageStatus, ReactionUser, ReadReceipt

logger = logging.getLogger(__name__)


class ReceiptCoordinator:
    """Applies reactions and read receipts to stored messages."""

    def __init__(
        self,
        presence: PresenceRegistry,
        tracker: RoomMembershipTracker,
        durability: DurabilityAdapter,
    ) -> None:
        self.presence = presence
        self.tracker = tracker
        self.durability = durability

    async def react(self, connection_id: str, message_id: str, emoji: str) -> Message:
        """Set the caller's single reaction on a message and broadcast the result.

        Raises:
            UnknownSession: The connection never registered.
            MessageNotFound: No message has this id.
        """
        session = self.presence.require(connection_id)
        message = await self.durability.apply_reaction(
            message_id,
            ReactionUser(userId=session.userId, displayName=session.displayName),
            emoji,
        )

        await self.tracker.emit_to_many(
            self.tracker.reaction_audience(message.room),
            "message_reaction",
            {"messageId": message.id, "reactions": message.reactions_payload()},
        )
        return message

    async def mark_read(self, connection_id: str, message_id: str) -> Optional[Message]:
        """Record a read and notify the sender's connections.

        Reading your own message is a no-op.

        Raises:
            UnknownSession: The connection never registered.
            MessageNotFound: No message has this id.
        """
        session = self.presence.require(connection_id)
        message = await self.durability.locate(message_id)

        if message.senderId in (session.userId, connection_id):
            return None

        receipt = ReadReceipt(userId=session.userId, displayName=session.displayName)
        message.add_reader(receipt)
        message.advance_status(MessageStatus.READ)
        await self.durability.save_read(message, receipt)

        sender_connections = self.presence.connections_for_user(message.senderId)
        if sender_connections:
            await self.tracker.emit_to_many(
                sender_connections,
                "message_read",
                {"messageId": message.id, "readBy": session.displayName},
            )
        else:
            logger.debug(f"[Receipts] Sender of {message.id} is offline; read not delivered")
        return message

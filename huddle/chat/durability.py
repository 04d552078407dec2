"""Bridge between the chat core and the selected chat store.

The adapter holds the store picked at startup plus a volatile message
sequence that always exists. Private messages are kept only in that volatile
sequence, even when a durable store is active.

If the durable store becomes unavailable, the adapter switches to volatile
storage for the rest of the process lifetime. Nothing reconnects to the durable
store afterwards. A query the store rejects (``StorageQueryError``) propagates
unchanged and leaves the durable store in place.
"""
import logging
from typing import List, Optional

from huddle.storage import ChatStore, StorageUnavailable, VolatileStore

from .errors import MessageNotFound
from .schemas import Message, MessageStatus, ReactionUser, ReadReceipt, UserRecord

logger = logging.getLogger(__name__)


class DurabilityAdapter:
    """Routes storage calls to the active store with one-way fallback.

    Args:
        store: Store selected at startup (durable or volatile).
        memory_cap: Capacity of the volatile sequence.
    """

    def __init__(self, store: ChatStore, memory_cap: int = 1000) -> None:
        if isinstance(store, VolatileStore):
            self.volatile = store
        else:
            self.volatile = VolatileStore(cap=memory_cap)
        self.store = store

    @property
    def durable(self) -> bool:
        return self.store.durable

    @property
    def kind(self) -> str:
        return self.store.kind

    def degrade(self, exc: Exception) -> None:
        """Switch to volatile storage for the remainder of the process."""
        if self.store is self.volatile:
            return
        logger.error(
            f"[Store] {self.store.kind} store failed ({exc}); "
            "switching to in-memory storage"
        )
        failed = self.store
        self.store = self.volatile
        try:
            failed.close()
        except Exception as close_exc:
            logger.debug(f"[Store] Error closing failed store: {close_exc}")

    # -------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------

    async def find_or_create_user(
        self, connection_id: str, display_name: str, avatar_url: Optional[str]
    ) -> UserRecord:
        """Resolve an identity; a failing durable store degrades then retries."""
        try:
            return await self.store.find_or_create_user(connection_id, display_name, avatar_url)
        except StorageUnavailable as exc:
            self.degrade(exc)
            return await self.store.find_or_create_user(connection_id, display_name, avatar_url)

    async def mark_user_offline(self, user_id: str, last_seen: float) -> None:
        try:
            await self.store.mark_user_offline(user_id, last_seen)
        except StorageUnavailable as exc:
            self.degrade(exc)

    async def list_users(self) -> List[UserRecord]:
        try:
            return await self.store.list_users()
        except StorageUnavailable as exc:
            self.degrade(exc)
            return await self.store.list_users()

    # -------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------

    async def append_room_message(self, message: Message) -> Message:
        """Persist a room message.

        Raises:
            StorageUnavailable: The durable write failed. The adapter has
                already degraded; the caller must not broadcast the message.
        """
        try:
            return await self.store.append_message(message)
        except StorageUnavailable as exc:
            self.degrade(exc)
            raise

    def append_private_message(self, message: Message) -> Message:
        return self.volatile.append_nowait(message)

    async def locate(self, message_id: str) -> Message:
        """Find a message in the active store or the volatile sequence.

        Raises:
            MessageNotFound: Neither holds the id.
        """
        message = None
        if self.store is not self.volatile:
            try:
                message = await self.store.get_message(message_id)
            except StorageUnavailable as exc:
                self.degrade(exc)
        if message is None:
            message = self.volatile.find_nowait(message_id)
        if message is None:
            raise MessageNotFound(message_id)
        return message

    def _owner(self, message: Message) -> ChatStore:
        if self.volatile.find_nowait(message.id) is not None:
            return self.volatile
        return self.store

    async def apply_reaction(self, message_id: str, user: ReactionUser, emoji: str) -> Message:
        """Set ``user``'s single reaction inside the store that owns the message.

        Raises:
            MessageNotFound: Neither store holds the id.
            StorageUnavailable: The durable write failed; the adapter degraded.
        """
        owner = self.volatile
        if self.volatile.find_nowait(message_id) is None:
            owner = self.store
        try:
            message = await owner.set_reaction(message_id, user, emoji)
        except StorageUnavailable as exc:
            self.degrade(exc)
            raise
        if message is None:
            raise MessageNotFound(message_id)
        return message

    async def save_read(self, message: Message, receipt: ReadReceipt) -> None:
        owner = self._owner(message)
        try:
            await owner.mark_read(message, receipt)
        except StorageUnavailable as exc:
            self.degrade(exc)
            raise

    async def save_status(self, message: Message, status: MessageStatus) -> None:
        owner = self._owner(message)
        try:
            await owner.update_status(message.id, status)
        except StorageUnavailable as exc:
            self.degrade(exc)

    async def recent_messages(self, room: str, limit: int) -> List[Message]:
        try:
            return await self.store.recent_messages(room, limit)
        except StorageUnavailable as exc:
            self.degrade(exc)
            return await self.store.recent_messages(room, limit)

    async def room_history(self, room: str, page: int, limit: int) -> List[Message]:
        try:
            return await self.store.room_history(room, page, limit)
        except StorageUnavailable as exc:
            self.degrade(exc)
            return await self.store.room_history(room, page, limit)

    async def stats(self) -> dict:
        try:
            stats = await self.store.stats()
        except StorageUnavailable as exc:
            self.degrade(exc)
            stats = await self.store.stats()
        stats["bufferedMessages"] = len(self.volatile)
        stats["database"] = self.kind
        stats["dbConnected"] = self.durable
        return stats

    def close(self) -> None:
        self.store.close()
        if self.store is not self.volatile:
            self.volatile.close()
"""In-memory chat store used when no durable store is available.

Messages live in one ordered sequence shared by all rooms and by private
messages. Once the sequence grows past ``cap`` the oldest entries are evicted.
Identities are not reused: every registration gets the connection id as its
user id.
"""
import logging
import time
from collections import deque
from typing import Deque, Dict, List, Optional

from huddle.chat.schemas import (
    Message,
    MessageStatus,
    ReactionUser,
    ReadReceipt,
    UserRecord,
    default_avatar,
)

from .base import ChatStore

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_CAP = 1000


class VolatileStore(ChatStore):
    """Capped in-process message sequence plus a user table."""

    kind = "memory"
    durable = False

    def __init__(self, cap: int = DEFAULT_MEMORY_CAP) -> None:
        self.cap = cap
        self._messages: Deque[Message] = deque()
        self._users: Dict[str, UserRecord] = {}

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def messages(self) -> List[Message]:
        """Snapshot of the sequence, oldest first."""
        return list(self._messages)

    def append_nowait(self, message: Message) -> Message:
        self._messages.append(message)
        while len(self._messages) > self.cap:
            evicted = self._messages.popleft()
            logger.debug(f"[Store] Evicted message {evicted.id} from memory")
        return message

    def find_nowait(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    # -------------------------------------------------------------------
    # ChatStore
    # -------------------------------------------------------------------

    async def find_or_create_user(
        self, connection_id: str, display_name: str, avatar_url: Optional[str]
    ) -> UserRecord:
        user = UserRecord(
            userId=connection_id,
            displayName=display_name,
            avatarUrl=avatar_url or default_avatar(display_name),
        )
        self._users[connection_id] = user
        return user

    async def mark_user_offline(self, user_id: str, last_seen: float) -> None:
        # Volatile identities die with their connection.
        self._users.pop(user_id, None)

    async def append_message(self, message: Message) -> Message:
        return self.append_nowait(message)

    async def get_message(self, message_id: str) -> Optional[Message]:
        return self.find_nowait(message_id)

    async def set_reaction(
        self, message_id: str, user: ReactionUser, emoji: str
    ) -> Optional[Message]:
        stored = self.find_nowait(message_id)
        if stored is not None:
            stored.set_reaction(user, emoji)
        return stored

    async def mark_read(self, message: Message, receipt: ReadReceipt) -> None:
        stored = self.find_nowait(message.id)
        if stored is not None and stored is not message:
            stored.add_reader(receipt)
            stored.advance_status(message.status)

    async def update_status(self, message_id: str, status: MessageStatus) -> None:
        stored = self.find_nowait(message_id)
        if stored is not None:
            stored.advance_status(status)

    async def recent_messages(self, room: str, limit: int) -> List[Message]:
        in_room = [m for m in self._messages if m.room == room]
        return in_room[-limit:]

    async def room_history(self, room: str, page: int, limit: int) -> List[Message]:
        in_room = [m for m in self._messages if m.room == room]
        end = len(in_room) - (page - 1) * limit
        if end <= 0:
            return []
        return in_room[max(0, end - limit):end]

    async def list_users(self) -> List[UserRecord]:
        return list(self._users.values())

    async def stats(self) -> dict:
        return {
            "totalUsers": len(self._users),
            "totalMessages": len(self._messages),
            "rooms": len({m.room for m in self._messages if m.room}),
            "checkedAt": time.time(),
        }

"""ChatStore abstract interface for message and user persistence.

Two implementations exist:
    - VolatileStore: in-process, capped, lost on restart
    - DuckDBStore: embedded DuckDB file

Every method is a coroutine so callers never block the event loop, whichever
implementation is selected at startup.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from huddle.chat.schemas import (
    Message,
    MessageStatus,
    ReactionUser,
    ReadReceipt,
    UserRecord,
)


class StorageError(Exception):
    """Base class for chat store failures."""


class StorageUnavailable(StorageError):
    """The store could not be opened or lost its connection."""


class StorageQueryError(StorageError):
    """A single call was rejected; the store itself is still usable."""


class ChatStore(ABC):
    """Abstract base class for chat stores.

    Attributes:
        kind: Short name reported by /health and /stats.
        durable: Whether data survives a process restart.
    """

    kind: str = "abstract"
    durable: bool = False

    @abstractmethod
    async def find_or_create_user(
        self, connection_id: str, display_name: str, avatar_url: Optional[str]
    ) -> UserRecord:
        """Return the identity for ``display_name``, creating it if needed."""

    @abstractmethod
    async def mark_user_offline(self, user_id: str, last_seen: float) -> None:
        """Record that a user went offline."""

    @abstractmethod
    async def append_message(self, message: Message) -> Message:
        """Persist a new message and return it with its final id."""

    @abstractmethod
    async def get_message(self, message_id: str) -> Optional[Message]:
        """Look up a message by id."""

    @abstractmethod
    async def set_reaction(
        self, message_id: str, user: ReactionUser, emoji: str
    ) -> Optional[Message]:
        """Replace ``user``'s reaction on a message in one step.

        Returns:
            The updated message, or None if no message has this id.
        """

    @abstractmethod
    async def mark_read(self, message: Message, receipt: ReadReceipt) -> None:
        """Store a read receipt and the (already advanced) status."""

    @abstractmethod
    async def update_status(self, message_id: str, status: MessageStatus) -> None:
        """Advance a message's status; never moves it backwards."""

    @abstractmethod
    async def recent_messages(self, room: str, limit: int) -> List[Message]:
        """Return the last ``limit`` messages of a room, oldest first."""

    @abstractmethod
    async def room_history(self, room: str, page: int, limit: int) -> List[Message]:
        """Return one page of a room's history, pages counted from newest."""

    @abstractmethod
    async def list_users(self) -> List[UserRecord]:
        """Return every known user."""

    @abstractmethod
    async def stats(self) -> dict:
        """Return counters for the stats endpoint."""

    def close(self) -> None:
        """Release any held resources."""

"""Pydantic models for the real-time chat core.

Domain models:
    - Session: one live connection and the identity behind it
    - Message: a room or private message with reactions and read receipts
    - UserRecord: identity returned by a chat store

Inbound payload models validate the ``data`` part of client frames. Field
names are camelCase because they travel to and from the browser unchanged.
"""
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class OnlineState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class PresenceStatus(str, Enum):
    """User-selected presence status, separate from connection state."""
    ONLINE = "online"
    AWAY = "away"
    BUSY = "busy"
    OFFLINE = "offline"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    """Delivery status of a message.

    Transitions only move forward: sent -> delivered -> read. A message may
    jump from sent straight to read when the read event wins the race.
    """
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


def default_avatar(display_name: str) -> str:
    return (
        f"https://ui-avatars.com/api/?name={display_name}"
        "&background=random&color=fff"
    )


class UserRecord(BaseModel):
    """Identity handed back by a chat store.

    Attributes:
        userId: Stable id (durable store) or the connection id (volatile).
        displayName: Name the user registered with.
        avatarUrl: Avatar image URL.
        created: False when an existing identity was reused.
    """
    userId: str
    displayName: str
    avatarUrl: str = ""
    isOnline: bool = True
    status: PresenceStatus = PresenceStatus.ONLINE
    lastSeen: float = Field(default_factory=time.time)
    created: bool = True


class Session(BaseModel):
    """Ephemeral state for one live connection."""
    connectionId: str = Field(..., description="Transport-assigned connection id")
    userId: str = Field(..., description="Stable identity or the connection id")
    displayName: str
    avatarUrl: str = ""
    onlineState: OnlineState = OnlineState.ONLINE
    status: PresenceStatus = PresenceStatus.ONLINE
    lastSeen: float = Field(default_factory=time.time)


class ReactionUser(BaseModel):
    userId: str
    displayName: str


class ReadReceipt(BaseModel):
    userId: str
    displayName: str
    readAt: float = Field(default_factory=time.time)


class Message(BaseModel):
    """A chat message as stored and broadcast.

    ``room`` is None for private messages, which carry ``recipientId``
    instead. ``text`` and ``fileUrl`` may both be set.

    Attributes:
        id: Store-assigned id, or a generated token in volatile mode.
        senderName: Denormalised display name at send time.
        reactions: emoji -> users; a user appears under at most one emoji.
        readBy: users who reported reading the message.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    text: Optional[str] = None
    senderId: str
    senderName: str
    avatarUrl: str = ""
    room: Optional[str] = None
    recipientId: Optional[str] = None
    type: MessageType = MessageType.TEXT
    status: MessageStatus = MessageStatus.SENT
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    mimeType: Optional[str] = None
    reactions: Dict[str, List[ReactionUser]] = Field(default_factory=dict)
    readBy: List[ReadReceipt] = Field(default_factory=list)
    createdAt: float = Field(default_factory=time.time)

    @property
    def is_private(self) -> bool:
        return self.room is None

    def advance_status(self, status: MessageStatus) -> bool:
        """Move status forward; returns False if it would regress."""
        if status.rank <= self.status.rank:
            return False
        self.status = status
        return True

    def set_reaction(self, user: ReactionUser, emoji: str) -> None:
        """Replace any reaction by ``user`` with ``emoji``."""
        for key in list(self.reactions):
            remaining = [r for r in self.reactions[key] if r.userId != user.userId]
            if remaining:
                self.reactions[key] = remaining
            else:
                del self.reactions[key]
        self.reactions.setdefault(emoji, []).append(user)

    def add_reader(self, receipt: ReadReceipt) -> bool:
        if any(r.userId == receipt.userId for r in self.readBy):
            return False
        self.readBy.append(receipt)
        return True

    def reactions_payload(self) -> Dict[str, List[dict]]:
        return {
            emoji: [u.model_dump() for u in users]
            for emoji, users in self.reactions.items()
        }

    def to_event(self) -> dict:
        """Serialise for the wire, with the legacy ``sender``/``private`` keys."""
        data = self.model_dump(mode="json")
        data["sender"] = self.senderName
        data["timestamp"] = self.createdAt
        data["private"] = self.is_private
        return data


# =============================================================================
# Inbound payloads
# =============================================================================


class UserJoinPayload(BaseModel):
    username: str = Field(..., min_length=1)
    avatar: Optional[str] = None


class SendMessagePayload(BaseModel):
    message: Optional[str] = None
    room: Optional[str] = None
    type: MessageType = MessageType.TEXT
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    mimeType: Optional[str] = None


class PrivateMessagePayload(BaseModel):
    to: str = Field(..., description="Recipient connection id")
    message: Optional[str] = None
    type: MessageType = MessageType.TEXT
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileSize: Optional[int] = None
    mimeType: Optional[str] = None


class TypingPayload(BaseModel):
    isTyping: bool
    room: Optional[str] = None


class ReactionPayload(BaseModel):
    messageId: str
    reaction: str = Field(..., min_length=1)


class MessageReadPayload(BaseModel):
    messageId: str


class RoomPayload(BaseModel):
    room: str = Field(..., min_length=1)

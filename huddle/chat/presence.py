"""Presence registry: live connections and the identities behind them.

A session exists only while its connection is open. Disconnecting removes the
session outright; the durable identity (if any) survives in the store with
``isOnline`` cleared.

Identity reuse by display name is the only notion of "who you are". It is not
authentication and must not be treated as such.
"""
import logging
import time
from typing import Dict, List, Optional, Tuple

from .durability import DurabilityAdapter
from .errors import UnknownSession
from .rooms import RoomMembershipTracker
from .schemas import OnlineState, PresenceStatus, Session
from .typing_indicator import TypingIndicatorAggregator

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Owns connection id -> Session and broadcasts presence changes.

    Args:
        durability: Identity lookup and offline bookkeeping.
        tracker: Fan-out and default-room membership.
        typing: Typing state cleared on disconnect.
    """

    def __init__(
        self,
        durability: DurabilityAdapter,
        tracker: RoomMembershipTracker,
        typing: TypingIndicatorAggregator,
    ) -> None:
        self.durability = durability
        self.tracker = tracker
        self.typing = typing
        self.sessions: Dict[str, Session] = {}

    def get(self, connection_id: str) -> Optional[Session]:
        return self.sessions.get(connection_id)

    def require(self, connection_id: str) -> Session:
        session = self.sessions.get(connection_id)
        if session is None:
            raise UnknownSession(connection_id)
        return session

    def list(self) -> List[Session]:
        return list(self.sessions.values())

    def connections_for_user(self, user_id: str) -> List[str]:
        return [s.connectionId for s in self.sessions.values() if s.userId == user_id]

    def _user_list_payload(self) -> List[dict]:
        return [s.model_dump(mode="json") for s in self.sessions.values()]

    async def register(
        self, connection_id: str, display_name: str, avatar_url: Optional[str] = None
    ) -> Session:
        """Create or refresh the session for a connection and announce it.

        The ``user_joined`` notification is skipped when the resolved
        identity already has another live session (a second tab or a
        reconnect that raced the old disconnect).
        """
        previous = self.sessions.get(connection_id)
        if previous is not None and previous.displayName != display_name:
            # A rename on a live connection retires the old identity first.
            self.sessions.pop(connection_id)
            typing_rooms = self.typing.clear_connection(connection_id)
            _mark_offline(previous)
            logger.info(
                f"[Presence] {connection_id} re-registering as {display_name} "
                f"(was {previous.displayName})"
            )
            await self._announce_departure(previous, typing_rooms)

        user = await self.durability.find_or_create_user(connection_id, display_name, avatar_url)

        already_online = any(
            s.userId == user.userId and s.connectionId != connection_id
            for s in self.sessions.values()
        )
        session = Session(
            connectionId=connection_id,
            userId=user.userId,
            displayName=user.displayName,
            avatarUrl=user.avatarUrl,
            onlineState=OnlineState.ONLINE,
            status=PresenceStatus.ONLINE,
            lastSeen=time.time(),
        )
        self.sessions[connection_id] = session
        self.tracker.join(connection_id, self.tracker.default_room)

        logger.info(
            f"[Presence] {session.displayName} registered on {connection_id} "
            f"(userId={session.userId}, new={user.created})"
        )

        await self.tracker.emit_to_all("user_list", self._user_list_payload())
        if not already_online:
            await self.tracker.emit_to_all(
                "user_joined",
                {"username": session.displayName, "id": connection_id, "userId": session.userId},
            )
        return session

    def detach(self, connection_id: str) -> Tuple[Optional[Session], List[str]]:
        """Synchronously drop every trace of a connection.

        Returns:
            Tuple of (session, typing_rooms):
            - session: The removed session marked offline, or None.
            - typing_rooms: Rooms whose typing set changed.
        """
        self.tracker.detach(connection_id)
        typing_rooms = self.typing.clear_connection(connection_id)
        session = self.sessions.pop(connection_id, None)
        if session is not None:
            _mark_offline(session)
        return session, typing_rooms

    async def unregister(self, connection_id: str) -> Optional[Session]:
        """Remove a connection's session and announce the departure."""
        session, typing_rooms = self.detach(connection_id)
        await self._announce_departure(session, typing_rooms)
        if session is None:
            return None

        logger.info(f"[Presence] {session.displayName} disconnected ({connection_id})")
        await self.tracker.emit_to_all("user_list", self._user_list_payload())
        return session

    async def _announce_departure(
        self, session: Optional[Session], typing_rooms: List[str]
    ) -> None:
        """Re-broadcast cleared typing sets and announce a retired session."""
        for room_id in typing_rooms:
            await self.tracker.emit_to_room(
                room_id,
                "typing_users",
                {"room": room_id, "users": self.typing.typing_in(room_id)},
            )

        if session is None:
            return

        if not self.connections_for_user(session.userId):
            await self.durability.mark_user_offline(session.userId, session.lastSeen)
        await self.tracker.emit_to_all("user_left", session.model_dump(mode="json"))

    async def update_status(self, connection_id: str, status: str) -> bool:
        """Change a session's presence status; unknown connections are ignored."""
        session = self.sessions.get(connection_id)
        if session is None:
            logger.debug(f"[Presence] update_status for unknown connection {connection_id}")
            return False
        try:
            session.status = PresenceStatus(status)
        except ValueError:
            logger.warning(f"[Presence] Ignoring invalid status {status!r} from {connection_id}")
            return False
        await self.tracker.emit_to_all(
            "user_status_update",
            {"userId": connection_id, "status": session.status.value, "username": session.displayName},
        )
        return True

    async def reconnect(self, connection_id: str) -> bool:
        session = self.sessions.get(connection_id)
        if session is None:
            return False
        session.onlineState = OnlineState.ONLINE
        session.status = PresenceStatus.ONLINE
        session.lastSeen = time.time()
        await self.tracker.emit_to_all("user_reconnected", session.model_dump(mode="json"))
        return True


def _mark_offline(session: Session) -> None:
    session.onlineState = OnlineState.OFFLINE
    session.status = PresenceStatus.OFFLINE
    session.lastSeen = time.time()

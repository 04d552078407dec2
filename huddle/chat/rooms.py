"""Room membership and fan-out.

The tracker knows which connections are subscribed to which rooms and is the
single place that turns "send to room X" or "send to everyone" into a list of
connection ids. Two broadcast simplifications live here as policy:

    - the default room fans out to every attached connection, registered or
      not, regardless of membership records
    - reactions fan out to every attached connection, not just room members

Changing either is a matter of editing ``room_audience`` or
``reaction_audience``.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .transport import Transport

logger = logging.getLogger(__name__)


class RoomMembershipTracker:
    """Tracks room subscriptions per connection and fans events out.

    Attributes:
        default_room: Room every registered session is auto-joined to.
        rooms: room id -> connection ids currently subscribed.
        attached: every connection the transport currently holds.
    """

    def __init__(self, transport: Transport, default_room: str = "general") -> None:
        self.transport = transport
        self.default_room = default_room
        self.rooms: Dict[str, Set[str]] = {default_room: set()}
        self.attached: Set[str] = set()

    # -------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------

    def attach(self, connection_id: str) -> None:
        self.attached.add(connection_id)

    def detach(self, connection_id: str) -> List[str]:
        """Forget a connection everywhere; returns the rooms it was in."""
        self.attached.discard(connection_id)
        left = []
        for room_id, members in self.rooms.items():
            if connection_id in members:
                members.discard(connection_id)
                left.append(room_id)
        return left

    # -------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------

    def join(self, connection_id: str, room_id: str) -> bool:
        """Subscribe a connection; returns False if it was already a member."""
        members = self.rooms.setdefault(room_id, set())
        if connection_id in members:
            return False
        members.add(connection_id)
        logger.debug(f"[Rooms] {connection_id} joined {room_id}")
        return True

    def leave(self, connection_id: str, room_id: str) -> bool:
        """Unsubscribe a connection. The default room cannot be left."""
        if room_id == self.default_room:
            logger.debug(f"[Rooms] Ignoring leave of default room by {connection_id}")
            return False
        members = self.rooms.get(room_id)
        if not members or connection_id not in members:
            return False
        members.discard(connection_id)
        return True

    def members(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, ()))

    def rooms_of(self, connection_id: str) -> List[str]:
        return [r for r, members in self.rooms.items() if connection_id in members]

    # -------------------------------------------------------------------
    # Fan-out policy
    # -------------------------------------------------------------------

    def room_audience(self, room_id: str) -> Set[str]:
        if room_id == self.default_room:
            return set(self.attached)
        return self.members(room_id) & self.attached

    def reaction_audience(self, room_id: Optional[str] = None) -> Set[str]:
        return set(self.attached)

    # -------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------

    async def emit_to(self, connection_id: str, event: str, data: Any) -> bool:
        return await self.transport.send(connection_id, event, data)

    async def emit_to_many(self, connection_ids: Iterable[str], event: str, data: Any) -> None:
        failed = await self.transport.multicast(connection_ids, event, data)
        if failed:
            logger.debug(f"[Rooms] {event} not delivered to {len(failed)} connection(s)")

    async def emit_to_room(
        self, room_id: str, event: str, data: Any, exclude: Optional[str] = None
    ) -> None:
        audience = self.room_audience(room_id)
        audience.discard(exclude)
        await self.emit_to_many(audience, event, data)

    async def emit_to_all(self, event: str, data: Any) -> None:
        await self.emit_to_many(self.attached, event, data)

"""Per-room set of users currently typing.

Entries never time out on the server. Clients are expected to send
``isTyping=false`` after a quiet period; a client that drops without doing so
is cleared by the disconnect cascade through :meth:`clear_connection`.
"""
from typing import Dict, List


class TypingIndicatorAggregator:
    """Owns room -> {connection id -> display name} typing state."""

    def __init__(self) -> None:
        self._typing: Dict[str, Dict[str, str]] = {}

    def set_typing(
        self, connection_id: str, room_id: str, display_name: str, is_typing: bool
    ) -> List[str]:
        """Apply one typing signal and return the room's typing names."""
        if is_typing:
            self._typing.setdefault(room_id, {})[connection_id] = display_name
        else:
            room = self._typing.get(room_id)
            if room is not None:
                room.pop(connection_id, None)
                if not room:
                    del self._typing[room_id]
        return self.typing_in(room_id)

    def typing_in(self, room_id: str) -> List[str]:
        return list(self._typing.get(room_id, {}).values())

    def clear_connection(self, connection_id: str) -> List[str]:
        """Drop a connection from every room; returns the rooms that changed."""
        changed = []
        for room_id in list(self._typing):
            room = self._typing[room_id]
            if connection_id in room:
                del room[connection_id]
                changed.append(room_id)
                if not room:
                    del self._typing[room_id]
        return changed

"""Connection addressing and delivery for the chat core.

The core only needs two things from a transport: send one event to one
connection, and send one event to a set of connections. Frames on the wire
are ``{"type": <event>, "data": <payload>}``.

Performance Notes:
    - Multicast uses asyncio.gather() for concurrent delivery
    - A failed send is logged and reported, never raised
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Abstract per-connection delivery."""

    @abstractmethod
    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        """Deliver one event; returns False if the connection is gone."""

    async def multicast(
        self, connection_ids: Iterable[str], event: str, data: Any
    ) -> List[str]:
        """Deliver one event to many connections concurrently.

        Returns:
            Connection ids the event could not be delivered to.
        """
        targets = list(connection_ids)
        if not targets:
            return []
        results = await asyncio.gather(
            *[self.send(conn_id, event, data) for conn_id in targets],
            return_exceptions=True,
        )
        return [
            conn_id for conn_id, ok in zip(targets, results)
            if ok is not True
        ]


class WebSocketTransport(Transport):
    """Transport over FastAPI WebSocket connections keyed by connection id."""

    def __init__(self) -> None:
        self.connections: Dict[str, WebSocket] = {}

    def add(self, connection_id: str, websocket: WebSocket) -> None:
        self.connections[connection_id] = websocket

    def discard(self, connection_id: str) -> None:
        self.connections.pop(connection_id, None)

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self.connections

    async def send(self, connection_id: str, event: str, data: Any) -> bool:
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json({"type": event, "data": data})
            return True
        except Exception as e:
            logger.debug(f"Failed to send {event} to {connection_id}: {e}")
            return False

"""
Realtime Push Channel.

Route handlers publish events to an EventBus without awaiting delivery.
A background consumer drains the bus and fans events out to WebSocket
subscribers grouped into rooms (one per disaster, plus a general room).
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, NamedTuple, Optional, Set

from fastapi import WebSocket

from ..config import get_settings

logger = logging.getLogger(__name__)

GENERAL_ROOM = "general_updates"

DISASTER_UPDATED = "disaster_updated"
RESOURCES_UPDATED = "resources_updated"
SOCIAL_MEDIA_UPDATED = "social_media_updated"

# Events that are also mirrored to the general room
GENERAL_EVENTS = {DISASTER_UPDATED, RESOURCES_UPDATED}


def disaster_room(disaster_id: Any) -> str:
    return f"disaster_{disaster_id}"


class RealtimeEvent(NamedTuple):
    event: str
    payload: Dict[str, Any]
    disaster_id: Optional[str] = None


class ConnectionManager:
    """WebSocket connection manager with room membership."""

    def __init__(self):
        self.active: Set[WebSocket] = set()
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.active.add(ws)

    def disconnect(self, ws: WebSocket) -> None:
        self.active.discard(ws)
        for members in self.rooms.values():
            members.discard(ws)

    def join(self, ws: WebSocket, room: str) -> None:
        self.rooms[room].add(ws)

    def leave(self, ws: WebSocket, room: str) -> None:
        self.rooms.get(room, set()).discard(ws)

    async def send(self, ws: WebSocket, event: str, data: Dict[str, Any]) -> None:
        await ws.send_json({"event": event, "data": data})

    async def broadcast(self, room: str, event: str, data: Dict[str, Any]) -> int:
        """Send to every member of a room. Returns the number delivered."""
        dead: Set[WebSocket] = set()
        delivered = 0
        for ws in list(self.rooms.get(room, ())):
            try:
                await self.send(ws, event, data)
                delivered += 1
            except Exception:
                dead.add(ws)
        for ws in dead:
            self.disconnect(ws)
        return delivered

    async def dispatch(self, item: RealtimeEvent) -> None:
        """Route an event to its disaster room and, when applicable, the general room."""
        if item.disaster_id is not None:
            await self.broadcast(disaster_room(item.disaster_id), item.event, item.payload)
        if item.event in GENERAL_EVENTS:
            await self.broadcast(GENERAL_ROOM, item.event, item.payload)


class EventBus:
    """Bounded queue between request handlers and the push channel."""

    def __init__(self, manager: ConnectionManager, maxsize: int = 1000):
        self._manager = manager
        self._queue: "asyncio.Queue[RealtimeEvent]" = asyncio.Queue(maxsize=maxsize)

    @property
    def manager(self) -> ConnectionManager:
        return self._manager

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def publish(
        self,
        event: str,
        payload: Dict[str, Any],
        disaster_id: Optional[Any] = None,
    ) -> bool:
        """
        Queue an event for delivery. Never blocks or raises.

        Returns:
            True if queued, False if dropped
        """
        try:
            self._queue.put_nowait(RealtimeEvent(
                event,
                payload,
                str(disaster_id) if disaster_id is not None else None,
            ))
            return True
        except asyncio.QueueFull:
            logger.warning(f"Realtime queue full, dropping {event}")
            return False

    async def drain(self) -> int:
        """Deliver every queued event. Returns the number dispatched."""
        count = 0
        while not self._queue.empty():
            await self._deliver(self._queue.get_nowait())
            count += 1
        return count

    async def _deliver(self, item: RealtimeEvent) -> None:
        try:
            await self._manager.dispatch(item)
        except Exception as e:
            logger.error(f"Realtime dispatch of {item.event} failed: {e}")
        finally:
            self._queue.task_done()

    async def run(self) -> None:
        """Consume events until cancelled."""
        logger.info("Realtime event consumer started")
        while True:
            item = await self._queue.get()
            await self._deliver(item)


def connected_message(ws: WebSocket) -> Dict[str, Any]:
    return {
        "socket_id": str(id(ws)),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": "Connected to disaster response system",
    }


# Singleton instance
_event_bus_instance: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the singleton event bus instance."""
    global _event_bus_instance
    if _event_bus_instance is None:
        _event_bus_instance = EventBus(
            ConnectionManager(),
            maxsize=get_settings().realtime_queue_size,
        )
    return _event_bus_instance

"""
Realtime WebSocket Route.

After connecting, a client receives `connected` and may send:
  "ping"                                         -> pong
  {"action": "join_disaster", "disaster_id": id} -> joined_disaster
  {"action": "leave_disaster", "disaster_id": id}
  {"action": "join_general"}
"""

import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from starlette.websockets import WebSocketState

from ..services.realtime import (
    GENERAL_ROOM,
    ConnectionManager,
    EventBus,
    connected_message,
    disaster_room,
    get_event_bus,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def handle_message(manager: ConnectionManager, ws: WebSocket, message: Dict[str, Any]) -> None:
    """Apply one client action."""
    action = message.get("action")
    disaster_id = message.get("disaster_id")

    if action == "join_disaster" and disaster_id is not None:
        manager.join(ws, disaster_room(disaster_id))
        logger.info(f"Socket {id(ws)} joined disaster room: {disaster_id}")
        await manager.send(ws, "joined_disaster", {
            "disaster_id": disaster_id,
            "message": "Successfully joined disaster updates",
        })
    elif action == "leave_disaster" and disaster_id is not None:
        manager.leave(ws, disaster_room(disaster_id))
        logger.info(f"Socket {id(ws)} left disaster room: {disaster_id}")
    elif action == "join_general":
        manager.join(ws, GENERAL_ROOM)
        logger.info(f"Socket {id(ws)} joined general updates")
    else:
        await manager.send(ws, "error", {"message": f"Unsupported action: {action}"})


@router.websocket("/ws")
async def realtime_socket(ws: WebSocket, events: EventBus = Depends(get_event_bus)):
    manager = events.manager
    await manager.connect(ws)
    logger.info(f"Socket connected: {id(ws)}")
    await manager.send(ws, "connected", connected_message(ws))

    try:
        while True:
            data = await ws.receive_text()
            if data == "ping":
                await manager.send(ws, "pong", {})
                continue

            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await manager.send(ws, "error", {"message": "Messages must be JSON or 'ping'"})
                continue

            if not isinstance(message, dict):
                await manager.send(ws, "error", {"message": "Messages must be JSON objects"})
                continue

            await handle_message(manager, ws, message)
    except WebSocketDisconnect:
        logger.info(f"Socket disconnected: {id(ws)}")
    except Exception:
        logger.exception(f"Socket {id(ws)} failed, dropping connection")
        if ws.application_state == WebSocketState.CONNECTED:
            await ws.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        manager.disconnect(ws)

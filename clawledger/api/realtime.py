"""
Live feed over WebSocket.

Server frames: {"type": "connected"}, {"type": "subscribed", "agentId"},
{"type": "unsubscribed"}, {"type": "pong"} and hub events such as
{"type": "trade", "agentId", "data"}.
Client frames: {"type": "subscribe", "agentId"}, {"type": "unsubscribe"},
{"type": "ping"}. Anything else is ignored.
"""

import asyncio
import json
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from clawledger.services.broadcast import BroadcastHub, Subscriber, broadcast_hub
from clawledger.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/ws", tags=["live feed"])


def handle_control(hub: BroadcastHub, subscriber: Subscriber, raw: str) -> Optional[dict[str, Any]]:
    """Apply a client control frame. Returns the reply, or None to ignore it."""
    try:
        frame = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(frame, dict):
        return None

    frame_type = frame.get("type")
    if frame_type == "subscribe":
        agent_id = frame.get("agentId")
        if not isinstance(agent_id, str) or not agent_id:
            return None
        hub.set_filter(subscriber, agent_id)
        return {"type": "subscribed", "agentId": agent_id}
    if frame_type == "unsubscribe":
        hub.set_filter(subscriber, None)
        return {"type": "unsubscribed"}
    if frame_type == "ping":
        return {"type": "pong"}
    return None


async def _forward(websocket: WebSocket, subscriber: Subscriber) -> None:
    """Single writer: every outgoing frame goes through the subscriber queue."""
    while True:
        message = await subscriber.queue.get()
        await websocket.send_json(message)


async def serve_feed(websocket: WebSocket, agent_id: Optional[str] = None, hub: Optional[BroadcastHub] = None) -> None:
    hub = hub or broadcast_hub
    await websocket.accept()
    subscriber = hub.subscribe(agent_id)
    subscriber.queue.put_nowait({"type": "connected", "agentId": agent_id})
    forwarder = asyncio.create_task(_forward(websocket, subscriber))

    try:
        while True:
            raw = await websocket.receive_text()
            reply = handle_control(hub, subscriber, raw)
            if reply is None:
                continue
            try:
                subscriber.queue.put_nowait(reply)
            except asyncio.QueueFull:
                subscriber.dropped += 1
    except WebSocketDisconnect:
        logger.debug("Live feed client disconnected", subscriber=subscriber.id)
    finally:
        hub.unsubscribe(subscriber)
        forwarder.cancel()
        try:
            await forwarder
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError, OSError):
            pass


@router.websocket("/feed")
async def global_feed(websocket: WebSocket):
    """All trades; clients can narrow to one agent with a subscribe frame."""
    await serve_feed(websocket)


@router.websocket("/agent/{agent_id}")
async def agent_feed(websocket: WebSocket, agent_id: str):
    await serve_feed(websocket, agent_id)

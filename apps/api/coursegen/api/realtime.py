# apps/api/coursegen/api/realtime.py
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError
from starlette.websockets import WebSocketState

from coursegen.services.progress_broadcast import progress_channel

logger = logging.getLogger(__name__)

router = APIRouter()

# 1011: server hit an unexpected condition (progress feed lost)
CLOSE_FEED_LOST = 1011


async def _forward(websocket: WebSocket, pubsub) -> None:
    while True:
        msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
        if msg is None:
            await asyncio.sleep(0.05)
            continue
        if msg.get("type") == "message":
            await websocket.send_text(msg["data"])


async def _drain(websocket: WebSocket) -> None:
    # client messages are ignored; receiving is how a disconnect is noticed
    while True:
        await websocket.receive_text()


async def _close(websocket: WebSocket, code: int) -> None:
    if websocket.client_state == WebSocketState.CONNECTED:
        await websocket.close(code=code)


async def _release(pubsub, channel: str) -> None:
    try:
        await pubsub.unsubscribe(channel)
    except (RedisError, OSError) as e:
        logger.warning("unsubscribe from %s failed: %s", channel, e)
    finally:
        await pubsub.aclose()


@router.websocket("/ws/progress")
async def progress_socket(
    websocket: WebSocket,
    course_id: Optional[int] = None,
    session_id: Optional[str] = None,
    user_id: str = "anonymous",
):
    """
    Stream content-generation progress for one course (or pre-course session).
    Messages are the JSON published by the worker: {"event": ..., "payload": ...}.
    """
    try:
        channel = progress_channel(course_id, session_id)
    except ValueError:
        await websocket.close(code=1008)
        return

    await websocket.accept()

    registry = websocket.app.state.connections
    connection_id = uuid.uuid4().hex
    registry.register(connection_id, user_id)

    pubsub = None
    try:
        pubsub = websocket.app.state.pubsub_factory()
        await pubsub.subscribe(channel)
        await websocket.send_json({"event": "subscribed", "payload": {"channel": channel}})
        logger.info("ws %s (user=%s) subscribed to %s", connection_id, user_id, channel)

        forward = asyncio.create_task(_forward(websocket, pubsub))
        receive = asyncio.create_task(_drain(websocket))
        done, pending = await asyncio.wait({forward, receive}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if forward in done and forward.exception() is not None:
            logger.warning("ws %s: progress feed for %s failed: %s", connection_id, channel, forward.exception())
            await _close(websocket, CLOSE_FEED_LOST)
        if receive in done:
            exc = receive.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc

    except (RedisError, OSError) as e:
        logger.warning("ws %s: subscribe to %s failed: %s", connection_id, channel, e)
        await _close(websocket, CLOSE_FEED_LOST)
    finally:
        registry.unregister(connection_id)
        if pubsub is not None:
            await _release(pubsub, channel)
        logger.info("ws %s disconnected from %s", connection_id, channel)

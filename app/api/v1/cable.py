"""
Real-Time Cable WebSockets
==========================

Relays Redis pub/sub streams to browser and agent clients.

Connection URLs:
    ws://<host>/api/v1/cable/kanban/<board_id>?token=<credential>
    ws://<host>/api/v1/cable/agent_activity/<task_id>?token=<credential>
    ws://<host>/api/v1/cable/chat/<task_id>?token=<credential>

``token`` is a web access JWT or an API token. The socket is closed
with 4401 when it is missing or unknown, and with 4404 when the board
or task belongs to someone else.

Server → Client:
    JSON payloads published by the matching channel (see
    ``app.services.broadcast``).

Client → Server (chat only):
    ``{"message": "..."}`` is echoed to the stream with role "user",
    forwarded to the agent gateway, and followed by a status payload
    ("sent" or "error").
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.db.session import get_session_factory
from app.dependencies import resolve_token
from app.models.user import User
from app.services.board_service import BoardService
from app.services.broadcast import AgentActivityChannel, ChatChannel, KanbanChannel
from app.services.cache import get_redis
from app.services.gateway_client import GatewayClient, chat_session_key
from app.services.task_service import TaskService

logger = logging.getLogger(__name__)

router = APIRouter()

CLOSE_UNAUTHORIZED = 4401
CLOSE_NOT_FOUND = 4404
POLL_TIMEOUT = 1.0

Lookup = Callable[[AsyncSession, User], Awaitable[Any]]


async def authorize(token: Optional[str], lookup: Lookup) -> Optional[int]:
    """
    Check the credential and ownership of the subscribed resource.

    Returns:
        None when allowed, otherwise the close code to reject with
    """
    if not token:
        return CLOSE_UNAUTHORIZED

    async with get_session_factory()() as db:
        user, _ = await resolve_token(token, db)
        if user is None:
            return CLOSE_UNAUTHORIZED
        try:
            await lookup(db, user)
        except NotFoundError:
            return CLOSE_NOT_FOUND
        await db.commit()
    return None


async def relay(websocket: WebSocket, stream: str) -> None:
    """Forward every message published on ``stream`` to the socket."""
    client = await get_redis()
    pubsub = client.pubsub()
    await pubsub.subscribe(stream)
    try:
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=POLL_TIMEOUT)
            if message is not None:
                await websocket.send_text(message["data"])
    finally:
        await pubsub.unsubscribe(stream)
        await pubsub.aclose()


async def serve(
    websocket: WebSocket,
    token: Optional[str],
    stream: str,
    lookup: Lookup,
    on_message: Optional[Callable[[dict], Awaitable[None]]] = None,
) -> None:
    await websocket.accept()

    close_code = await authorize(token, lookup)
    if close_code is not None:
        logger.info("Rejected cable subscription to %s (%d)", stream, close_code)
        await websocket.close(code=close_code)
        return

    relay_task = asyncio.create_task(relay(websocket, stream))
    logger.info("Cable subscribed to %s", stream)

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            if on_message is None or not message.get("text"):
                continue
            try:
                data = json.loads(message["text"])
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame on %s", stream)
                continue
            if isinstance(data, dict):
                await on_message(data)

    except WebSocketDisconnect:
        pass

    finally:
        if not relay_task.done():
            relay_task.cancel()
        try:
            await relay_task
        except asyncio.CancelledError:
            pass
        except (RedisError, RuntimeError, WebSocketDisconnect) as e:
            logger.warning("Cable relay for %s ended with error: %s", stream, e)
        logger.info("Cable unsubscribed from %s", stream)


async def send_chat_message(task_id: uuid.UUID, data: dict) -> None:
    """Echo the user's message, then hand it to the agent session."""
    content = str(data.get("message") or "").strip()
    if not content:
        return

    await ChatChannel.broadcast_message(task_id, "user", content)

    result = await GatewayClient().send_message(chat_session_key(task_id), content)
    if result.get("ok"):
        logger.info("Chat message for task %s sent, runId=%s", task_id, result.get("runId"))
        await ChatChannel.broadcast_status(task_id, "sent", f"runId: {result.get('runId')}")
    else:
        await ChatChannel.broadcast_status(task_id, "error", str(result.get("error") or result))


# =============================================================================
# Channels
# =============================================================================

@router.websocket("/kanban/{board_id}")
async def kanban(websocket: WebSocket, board_id: uuid.UUID, token: Optional[str] = Query(default=None)):
    async def lookup(db: AsyncSession, user: User):
        return await BoardService(db).get_board(user.user_id, board_id)

    await serve(websocket, token, KanbanChannel.stream(board_id), lookup)


@router.websocket("/agent_activity/{task_id}")
async def agent_activity(websocket: WebSocket, task_id: uuid.UUID, token: Optional[str] = Query(default=None)):
    async def lookup(db: AsyncSession, user: User):
        return await TaskService(db).get_task(user.user_id, task_id)

    await serve(websocket, token, AgentActivityChannel.stream(task_id), lookup)


@router.websocket("/chat/{task_id}")
async def chat(websocket: WebSocket, task_id: uuid.UUID, token: Optional[str] = Query(default=None)):
    async def lookup(db: AsyncSession, user: User):
        return await TaskService(db).get_task(user.user_id, task_id)

    async def on_message(data: dict) -> None:
        await send_chat_message(task_id, data)

    await serve(websocket, token, ChatChannel.stream(task_id), lookup, on_message)

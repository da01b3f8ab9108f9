"""
Real-time Broadcasts
====================

Redis pub/sub streams consumed by the ``/api/v1/cable/*`` WebSockets.

Services publish to a named stream; each WebSocket subscribes to the
stream it is authorized for and relays payloads to the client.
Publishing is best-effort and never raises into the caller.
"""

import json
import logging
from typing import Any, Optional
import uuid

from app.services.cache import get_redis
from app.utils.helpers import utc_now

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return utc_now().isoformat()


async def publish(stream: str, payload: dict[str, Any]) -> bool:
    """
    Publish a JSON payload to a stream.

    Returns:
        True if Redis accepted the message, False on any failure
    """
    try:
        client = await get_redis()
        await client.publish(stream, json.dumps(payload, default=str))
        return True
    except Exception as e:
        logger.warning("Broadcast to %s failed: %s", stream, e)
        return False


class KanbanChannel:
    """Board-level refresh signals."""

    @staticmethod
    def stream(board_id: uuid.UUID | str) -> str:
        return f"kanban_board_{board_id}"

    @classmethod
    async def broadcast_refresh(
        cls,
        board_id: uuid.UUID | str,
        task_id: Optional[uuid.UUID | str] = None,
        action: str = "update",
        old_status: Optional[str] = None,
        new_status: Optional[str] = None,
    ) -> bool:
        payload: dict[str, Any] = {
            "type": "refresh",
            "board_id": str(board_id),
            "task_id": str(task_id) if task_id else None,
            "action": action,
            "timestamp": _timestamp(),
        }
        if old_status is not None:
            payload["old_status"] = old_status
        if new_status is not None:
            payload["new_status"] = new_status
        return await publish(cls.stream(board_id), payload)


class AgentActivityChannel:
    """Per-task agent status updates."""

    @staticmethod
    def stream(task_id: uuid.UUID | str) -> str:
        return f"agent_activity_task_{task_id}"

    @classmethod
    async def broadcast_status(
        cls,
        task_id: uuid.UUID | str,
        status: str,
        extra: Optional[dict[str, Any]] = None,
    ) -> bool:
        payload = {
            "type": "status",
            "task_id": str(task_id),
            "status": status,
            "timestamp": _timestamp(),
            **(extra or {}),
        }
        return await publish(cls.stream(task_id), payload)


class ChatChannel:
    """Per-task chat between the user and the agent."""

    @staticmethod
    def stream(task_id: uuid.UUID | str) -> str:
        return f"chat_task_{task_id}"

    @classmethod
    async def broadcast_message(cls, task_id: uuid.UUID | str, role: str, content: str) -> bool:
        return await publish(cls.stream(task_id), {
            "type": "message",
            "role": role,
            "content": content,
            "timestamp": _timestamp(),
        })

    @classmethod
    async def broadcast_status(
        cls,
        task_id: uuid.UUID | str,
        status: str,
        detail: Optional[str] = None,
    ) -> bool:
        return await publish(cls.stream(task_id), {
            "type": "status",
            "status": status,
            "detail": detail,
            "timestamp": _timestamp(),
        })

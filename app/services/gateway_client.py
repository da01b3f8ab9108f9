"""
Agent Gateway Client
====================

Forwards chat messages to the agent gateway's hook endpoint.
"""

import logging
from typing import Any

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

CHAT_HOOK_NAME = "ClawDeck Chat"


def chat_session_key(task_id) -> str:
    return f"hook:chat:task-{task_id}"


class GatewayClient:
    """HTTP client for ``POST {AGENT_GATEWAY_URL}/hooks/agent``."""

    def __init__(self, base_url: str | None = None, token: str | None = None):
        self.base_url = (base_url if base_url is not None else settings.AGENT_GATEWAY_URL).rstrip("/")
        self.token = token if token is not None else settings.AGENT_GATEWAY_TOKEN

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def send_message(self, session_key: str, message: str) -> dict[str, Any]:
        """
        Deliver a message to an agent session.

        Returns:
            The gateway's JSON reply, or ``{"ok": False, "error": ...}``
            when the gateway is unconfigured or unreachable
        """
        if not self.base_url:
            return {"ok": False, "error": "Agent gateway is not configured"}

        body = {
            "message": message,
            "sessionKey": session_key,
            "deliver": False,
            "name": CHAT_HOOK_NAME,
        }

        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    f"{self.base_url}/hooks/agent",
                    json=body,
                    headers=self._get_headers(),
                    timeout=httpx.Timeout(30.0, connect=5.0),
                )
                return response.json()
            except httpx.TimeoutException:
                logger.error("Agent gateway timeout for session %s", session_key)
                return {"ok": False, "error": "Agent gateway timed out"}
            except (httpx.HTTPError, ValueError) as e:
                logger.error("Agent gateway error for session %s: %s", session_key, e)
                return {"ok": False, "error": str(e)}

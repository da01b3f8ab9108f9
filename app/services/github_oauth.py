"""
GitHub OAuth
============

Authorization URL, code exchange and profile lookup for GitHub sign-in.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

import httpx

from app.config import settings
from app.core.errors import AuthenticationError, ErrorCodes, ServiceUnavailableError
from app.services.cache import CacheKeys, CacheManager

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
API_URL = "https://api.github.com"
SCOPES = "read:user user:email"


class GitHubOAuthService:
    """GitHub OAuth web flow."""

    def __init__(self):
        if not settings.github_oauth_enabled:
            raise ServiceUnavailableError(
                code=ErrorCodes.AUTH_OAUTH_DISABLED,
                message="GitHub sign-in is not configured",
            )
        self.client_id = settings.GITHUB_CLIENT_ID
        self.client_secret = settings.GITHUB_CLIENT_SECRET
        self.redirect_uri = settings.GITHUB_REDIRECT_URI

    async def authorize_url(self, invite_code: Optional[str] = None) -> str:
        """Build the authorize URL and remember its ``state`` for 10 minutes."""
        state = secrets.token_urlsafe(24)
        await CacheManager.set(
            CacheKeys.oauth_state(state),
            {"invite_code": invite_code},
            ttl=CacheManager.TTL_OAUTH_STATE,
        )
        query = urlencode({
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": SCOPES,
            "state": state,
            "allow_signup": "true",
        })
        return f"{AUTHORIZE_URL}?{query}"

    async def consume_state(self, state: Optional[str]) -> dict:
        """Return the data stored with ``state``; unknown states are rejected."""
        stored = await CacheManager.pop(CacheKeys.oauth_state(state)) if state else None
        if stored is None:
            raise AuthenticationError(
                code=ErrorCodes.AUTH_OAUTH_FAILED,
                message="Invalid OAuth state",
            )
        return stored

    async def fetch_profile(self, code: str) -> dict:
        """
        Exchange ``code`` and load the GitHub profile.

        Returns:
            Dict with ``uid``, ``email``, ``avatar_url`` and ``login``
        """
        async with httpx.AsyncClient(timeout=10.0) as client:
            try:
                token_response = await client.post(
                    TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                    },
                    headers={"Accept": "application/json"},
                )
                token_payload = token_response.json()
                access_token = token_payload.get("access_token") if isinstance(token_payload, dict) else None
                if not access_token:
                    raise AuthenticationError(
                        code=ErrorCodes.AUTH_OAUTH_FAILED,
                        message="GitHub authorization failed",
                    )

                headers = {
                    "Authorization": f"Bearer {access_token}",
                    "Accept": "application/vnd.github+json",
                }
                user_response = await client.get(f"{API_URL}/user", headers=headers)
                emails_response = await client.get(f"{API_URL}/user/emails", headers=headers)
                profile = user_response.json()
                emails = emails_response.json() if emails_response.status_code == 200 else []
            except (httpx.HTTPError, ValueError) as e:
                logger.error("GitHub OAuth request failed: %s", e)
                raise AuthenticationError(
                    code=ErrorCodes.AUTH_OAUTH_FAILED,
                    message="GitHub authorization failed",
                )

        if not isinstance(profile, dict):
            profile = {}
        email = self._primary_email(emails if isinstance(emails, list) else []) or profile.get("email")
        if not email or "id" not in profile:
            raise AuthenticationError(
                code=ErrorCodes.AUTH_OAUTH_FAILED,
                message="GitHub account has no verified email",
            )

        return {
            "uid": str(profile["id"]),
            "email": email,
            "avatar_url": profile.get("avatar_url"),
            "login": profile.get("login"),
        }

    @staticmethod
    def _primary_email(emails: list) -> Optional[str]:
        verified = [e for e in emails if isinstance(e, dict) and e.get("verified")]
        for entry in verified:
            if entry.get("primary"):
                return entry.get("email")
        return verified[0].get("email") if verified else None

"""
API Token Model
===============

Opaque bearer tokens used by agents and scripts to call the API.
Only the SHA-256 digest of a token is stored.
"""

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.security import digest_token, generate_api_token
from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.user import User


# last_used_at is written at most once per this interval
LAST_USED_DEBOUNCE = timedelta(seconds=60)
MASK = "••••••••"


class ApiToken(Base, TimestampMixin):
    """API token belonging to a user."""

    __tablename__ = "api_tokens"

    token_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="Default",
    )
    token_digest: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    token_prefix: Mapped[str] = mapped_column(
        String(8),
        nullable=False,
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="api_tokens",
        lazy="selectin",
    )

    # Set only on the instance that generated the token
    raw_token = None

    @classmethod
    def build(
        cls,
        user_id: uuid.UUID,
        name: str = "Default",
        expires_at: Optional[datetime] = None,
    ) -> "ApiToken":
        """Create an unsaved token with a fresh secret exposed as ``raw_token``."""
        raw = generate_api_token()
        token = cls(
            user_id=user_id,
            name=name,
            token_digest=digest_token(raw),
            token_prefix=raw[:8],
            expires_at=expires_at,
        )
        token.raw_token = raw
        return token

    @property
    def masked_token(self) -> str:
        return f"{self.token_prefix}{MASK}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))

    def needs_touch(self, now: Optional[datetime] = None) -> bool:
        """True when last_used_at is unset or older than the debounce interval."""
        now = now or datetime.now(timezone.utc)
        return self.last_used_at is None or now - self.last_used_at > LAST_USED_DEBOUNCE

    def __repr__(self) -> str:
        return f"<ApiToken(token_id={self.token_id}, name={self.name})>"

    def to_api_dict(self, include_raw: bool = False) -> dict:
        data = {
            "id": str(self.token_id),
            "name": self.name,
            "token": self.masked_token,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_raw and self.raw_token:
            data["token"] = self.raw_token
        return data

"""
Invite Code Model
=================

Single-use registration codes issued by admins.
"""

from datetime import datetime, timezone
import secrets
import string
from typing import Optional
import uuid

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import Base, TimestampMixin
from app.models.user import normalize_email

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8


def generate_invite_code() -> str:
    """8 characters from A-Z0-9."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


class InviteCode(Base, TimestampMixin):
    """Invite code; available while ``used_at`` is null."""

    __tablename__ = "invite_codes"

    invite_code_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    code: Mapped[str] = mapped_column(
        String(CODE_LENGTH),
        unique=True,
        nullable=False,
        default=generate_invite_code,
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.user_id", ondelete="SET NULL"),
        nullable=True,
    )
    used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True,
    )

    @validates("email")
    def _normalize_email(self, key: str, value: Optional[str]) -> Optional[str]:
        value = normalize_email(value)
        return value or None

    @property
    def available(self) -> bool:
        return self.used_at is None

    def usable_by(self, email: str) -> bool:
        """Available, and either unbound or bound to this email."""
        if not self.available:
            return False
        return self.email is None or self.email == normalize_email(email)

    def redeem(self, email: str) -> None:
        self.used_at = datetime.now(timezone.utc)
        self.email = email

    def __repr__(self) -> str:
        return f"<InviteCode(code={self.code}, used={self.used_at is not None})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.invite_code_id),
            "code": self.code,
            "email": self.email,
            "created_by_id": str(self.created_by_id) if self.created_by_id else None,
            "used": self.used_at is not None,
            "used_at": self.used_at.isoformat() if self.used_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

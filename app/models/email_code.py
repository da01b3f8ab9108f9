"""
Email Verification Code Model
=============================

One-time numeric sign-in codes delivered by email. Only the digest is stored.
"""

from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, TimestampMixin


class EmailVerificationCode(Base, TimestampMixin):
    """Pending sign-in code for an email address."""

    __tablename__ = "email_verification_codes"

    code_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    code_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    consumed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (
        Index("idx_email_code_email_created", "email", "created_at"),
    )

    def is_usable(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.consumed_at is None and self.expires_at > now

    def consume(self) -> None:
        self.consumed_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<EmailVerificationCode(email={self.email}, attempts={self.attempts})>"

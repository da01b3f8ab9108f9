"""
User Model
==========

SQLAlchemy model for user accounts.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional
import uuid

from sqlalchemy import Boolean, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from app.db.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.api_token import ApiToken
    from app.models.board import Board
    from app.models.notification import Notification
    from app.models.task import Task


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Strip and lower-case an email address."""
    if email is None:
        return None
    return email.strip().lower()


class User(Base, TimestampMixin):
    """
    User account model.

    Accounts are created by password registration, email sign-in codes,
    or GitHub OAuth. OAuth-only users have no password hash.
    """

    __tablename__ = "users"

    # Primary Key
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Account fields
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    password_hash: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,  # Nullable for OAuth / email-code users
    )
    admin: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        server_default=text("false"),
        nullable=False,
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Agent preferences
    agent_auto_mode: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default=text("true"),
        nullable=False,
    )
    agent_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    agent_emoji: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    agent_last_active_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # OAuth fields
    provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    uid: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
    )

    # Relationships
    boards: Mapped[list["Board"]] = relationship(
        "Board",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    tasks: Mapped[list["Task"]] = relationship(
        "Task",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    api_tokens: Mapped[list["ApiToken"]] = relationship(
        "ApiToken",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    notifications: Mapped[list["Notification"]] = relationship(
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    __table_args__ = (
        Index(
            "idx_users_provider_uid",
            "provider",
            "uid",
            unique=True,
            postgresql_where=text("provider IS NOT NULL"),
        ),
    )

    @validates("email")
    def _normalize_email(self, key: str, value: str) -> str:
        return normalize_email(value)

    @property
    def is_oauth(self) -> bool:
        return self.provider is not None

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, email={self.email})>"

    def to_api_dict(self) -> dict:
        return {
            "id": str(self.user_id),
            "email": self.email,
            "admin": self.admin,
            "agent_auto_mode": self.agent_auto_mode,
            "agent_name": self.agent_name,
            "agent_emoji": self.agent_emoji,
            "avatar_url": self.avatar_url,
            "provider": self.provider,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

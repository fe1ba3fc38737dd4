from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from accpublish.core.datetime_utils import get_expiry, is_expired
from accpublish.models.base import Base, TimestampMixin

TOKEN_REFRESH_LEEWAY_SECONDS = 60


class User(Base, TimestampMixin):
    """Autodesk account that owns publish jobs, with its 3-legged tokens."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), default="Autodesk User")
    autodesk_id: Mapped[str | None] = mapped_column(String(100), unique=True, default=None)

    # APS 3-legged tokens
    access_token: Mapped[str | None] = mapped_column(Text, default=None)
    refresh_token: Mapped[str | None] = mapped_column(Text, default=None)
    token_expires_at: Mapped[datetime | None] = mapped_column(default=None)
    last_login: Mapped[datetime | None] = mapped_column(default=None)

    # Relationships
    sessions: Mapped[list[Session]] = relationship(back_populates="user", lazy="selectin")

    def is_token_expired(self) -> bool:
        # Refresh slightly early so a token never expires mid-request
        return not self.access_token or is_expired(
            self.token_expires_at, leeway_seconds=TOKEN_REFRESH_LEEWAY_SECONDS
        )

    def update_tokens(self, access_token: str, refresh_token: str, expires_in: int) -> None:
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.token_expires_at = get_expiry(seconds=expires_in)

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Session(Base, TimestampMixin):
    """User session for cookie-based authentication."""

    __tablename__ = "sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    expires_at: Mapped[datetime] = mapped_column()

    # Relationships
    user: Mapped[User] = relationship(back_populates="sessions", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Session {self.id}>"

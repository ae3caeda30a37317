"""
User model for GitHub-backed identity and profile likes.
"""

from datetime import datetime
from urllib.parse import quote

from sqlalchemy import DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitchat.db import Base
from gitchat.models.base import TimestampMixin, utcnow


def default_avatar_url(username: str) -> str:
    return f"https://ui-avatars.com/api/?name={quote(username)}&background=random&color=fff"


class User(Base, TimestampMixin):
    """User account, created on first GitHub login."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    profile_url: Mapped[str] = mapped_column(Text, nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    github_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", lazy="noload", cascade="all, delete-orphan")

    def update_last_seen(self) -> None:
        """Update last seen timestamp."""
        self.last_seen_at = utcnow()

    @property
    def effective_avatar_url(self) -> str:
        return self.avatar_url or default_avatar_url(self.username)

    def public_profile(self) -> dict:
        """Fields other users are allowed to see."""
        return {
            "username": self.username,
            "name": self.display_name,
            "avatarUrl": self.effective_avatar_url,
        }

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class UserLike(Base):
    """A "like" from one user on another user's profile."""

    __tablename__ = "user_likes"

    id: Mapped[int] = mapped_column(primary_key=True)
    liker_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="CASCADE"), nullable=False, index=True
    )
    liked_username: Mapped[str] = mapped_column(
        ForeignKey("users.username", ondelete="CASCADE"), nullable=False, index=True
    )
    liked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    liker = relationship("User", foreign_keys=[liker_username], lazy="selectin")

    __table_args__ = (
        UniqueConstraint("liker_username", "liked_username", name="uq_user_like"),
    )

    def __repr__(self) -> str:
        return f"<UserLike {self.liker_username} -> {self.liked_username}>"

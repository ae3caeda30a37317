"""
User session model.

Each login creates its own session record, so a user can stay signed in on
several browsers at once.
"""

import secrets
from datetime import datetime, timedelta

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitchat.db import Base
from gitchat.models.base import TimestampMixin, as_utc, utcnow
from gitchat.settings import settings


class UserSession(Base, TimestampMixin):
    """Opaque cookie session for an authenticated user."""

    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    session_token: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)  # IPv4 or IPv6
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user = relationship("User", back_populates="sessions")

    @classmethod
    def create_session(cls, user_id: int, request=None) -> "UserSession":
        """
        Create a new session for a user.

        Args:
            user_id: The user's ID
            request: Optional request object used to record client details

        Returns:
            New UserSession instance (not yet added to DB)
        """
        user_agent = None
        ip_address = None
        if request is not None:
            user_agent = request.headers.get("User-Agent")
            ip_address = cls._get_client_ip(request)

        return cls(
            user_id=user_id,
            session_token=secrets.token_hex(32),
            expires_at=utcnow() + timedelta(hours=settings.session_expire_hours),
            user_agent=user_agent,
            ip_address=ip_address,
            last_used_at=utcnow(),
        )

    @staticmethod
    def _get_client_ip(request) -> str | None:
        """Extract client IP from request, handling proxies."""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

        if getattr(request, "client", None):
            return request.client.host

        return None

    def is_valid(self) -> bool:
        """Check if session is still valid (not expired)."""
        return utcnow() < as_utc(self.expires_at)

    def refresh(self) -> bool:
        """Update last_used_at and extend expiry once less than half remains.

        Returns True when the expiry was extended.
        """
        now = utcnow()
        self.last_used_at = now

        expire_hours = settings.session_expire_hours
        half_life = timedelta(hours=expire_hours / 2)
        if as_utc(self.expires_at) - now < half_life:
            self.expires_at = now + timedelta(hours=expire_hours)
            return True
        return False

    def __repr__(self) -> str:
        return f"<UserSession {self.id} user={self.user_id}>"

"""
Conversation model for two-party direct messaging.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitchat.db import Base
from gitchat.models.base import TimestampMixin, utcnow


def make_pair_key(user_a: str, user_b: str) -> str:
    """Canonical key for an unordered participant pair."""
    first, second = sorted((user_a, user_b))
    return f"{first}:{second}"


class Conversation(Base, TimestampMixin):
    """A messaging thread between exactly two users."""

    __tablename__ = "conversations"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Stored sorted so participant_a <= participant_b
    participant_a: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    participant_b: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    pair_key: Mapped[str] = mapped_column(String(201), unique=True, nullable=False)

    # Denormalized preview of the latest message
    last_message: Mapped[str] = mapped_column(Text, default="", nullable=False)
    last_message_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Linked GitHub repository
    repo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    repo_owner: Mapped[str | None] = mapped_column(String(255), nullable=True)
    repo_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    repo_added_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    repo_added_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    messages = relationship("Message", back_populates="conversation", lazy="noload", passive_deletes=True)

    @classmethod
    def between(cls, user_a: str, user_b: str) -> "Conversation":
        first, second = sorted((user_a, user_b))
        return cls(
            participant_a=first,
            participant_b=second,
            pair_key=make_pair_key(first, second),
            last_message="",
            last_message_time=utcnow(),
        )

    @property
    def participants(self) -> list[str]:
        return [self.participant_a, self.participant_b]

    def has_participant(self, username: str) -> bool:
        return username in (self.participant_a, self.participant_b)

    def other_participant(self, username: str) -> str:
        return self.participant_b if username == self.participant_a else self.participant_a

    @property
    def linked_repo(self) -> dict | None:
        if not self.repo_url:
            return None
        return {
            "url": self.repo_url,
            "owner": self.repo_owner,
            "repo": self.repo_name,
            "addedBy": self.repo_added_by,
            "addedAt": self.repo_added_at,
        }

    def link_repo(self, url: str, owner: str, repo: str, added_by: str) -> None:
        self.repo_url = url
        self.repo_owner = owner
        self.repo_name = repo
        self.repo_added_by = added_by
        self.repo_added_at = utcnow()

    def unlink_repo(self) -> None:
        self.repo_url = None
        self.repo_owner = None
        self.repo_name = None
        self.repo_added_by = None
        self.repo_added_at = None

    def __repr__(self) -> str:
        return f"<Conversation {self.id} {self.pair_key}>"

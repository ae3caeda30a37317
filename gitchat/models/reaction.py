"""
Message reaction model.
"""

from enum import Enum

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitchat.db import Base
from gitchat.models.base import TimestampMixin


class ReactionType(str, Enum):
    LIKE = "like"
    LOVE = "love"
    LAUGH = "laugh"
    WOW = "wow"
    SAD = "sad"
    ANGRY = "angry"

    @classmethod
    def values(cls) -> list[str]:
        return [r.value for r in cls]


class MessageReaction(Base, TimestampMixin):
    """A user's reaction to a message."""

    __tablename__ = "message_reactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    reaction: Mapped[str] = mapped_column(String(20), nullable=False)

    message = relationship("Message", back_populates="reactions")

    # At most one active reaction per user per message
    __table_args__ = (
        UniqueConstraint("message_id", "username", name="uq_message_reaction_user"),
    )

    def __repr__(self) -> str:
        return f"<MessageReaction {self.reaction} by {self.username} on message {self.message_id}>"

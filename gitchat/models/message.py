"""
Message model for direct messages.
"""

from enum import Enum

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gitchat.db import Base
from gitchat.models.base import TimestampMixin


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    EMOJI = "emoji"


class Message(Base, TimestampMixin):
    """A single direct message."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(primary_key=True)
    conversation_id: Mapped[int] = mapped_column(
        ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sender: Mapped[str] = mapped_column(String(100), nullable=False)
    receiver: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    body: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(10), default=MessageType.TEXT.value, nullable=False)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Reply snapshot; no FK so it survives a hard delete of the target
    reply_to_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reply_to_sender: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reply_to_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Forward provenance
    forwarded_from: Mapped[str | None] = mapped_column(String(100), nullable=True)
    forwarded_message_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # "#12 (title)" references resolved against the conversation's linked repo
    issue_references: Mapped[list | None] = mapped_column(JSON, nullable=True)

    # Relationships
    conversation = relationship("Conversation", back_populates="messages")
    reactions = relationship(
        "MessageReaction",
        back_populates="message",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    deletions = relationship(
        "MessageDeletion",
        back_populates="message",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_image(self) -> bool:
        return self.message_type == MessageType.IMAGE.value

    @property
    def deleted_for(self) -> set[str]:
        return {d.username for d in self.deletions}

    @property
    def display_body(self) -> str:
        """Text shown when this message is quoted by a reply."""
        return "Image" if self.is_image else self.body

    @property
    def reply_to(self) -> dict | None:
        if self.reply_to_id is None:
            return None
        return {
            "messageId": self.reply_to_id,
            "sender": self.reply_to_sender,
            "message": self.reply_to_body,
        }

    @property
    def forwarded(self) -> dict | None:
        if not self.forwarded_from:
            return None
        return {
            "sender": self.forwarded_from,
            "messageId": self.forwarded_message_id,
        }

    def __repr__(self) -> str:
        return f"<Message {self.id} {self.sender}->{self.receiver}>"


class MessageDeletion(Base, TimestampMixin):
    """Per-user soft delete ("delete for me")."""

    __tablename__ = "message_deletions"

    id: Mapped[int] = mapped_column(primary_key=True)
    message_id: Mapped[int] = mapped_column(
        ForeignKey("messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    username: Mapped[str] = mapped_column(String(100), nullable=False)

    message = relationship("Message", back_populates="deletions")

    __table_args__ = (
        UniqueConstraint("message_id", "username", name="uq_message_deletion_user"),
    )

    def __repr__(self) -> str:
        return f"<MessageDeletion message={self.message_id} for {self.username}>"

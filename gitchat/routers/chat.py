"""
Chat REST API: conversations, messages and message lifecycle.

Payloads keep the wire names the web client uses (``_id``, ``message``,
``conversationId``, ``messageType`` ...).
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, File, Form, Response, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gitchat.deps import CurrentUser, DBSession, Storage
from gitchat.models.conversation import Conversation
from gitchat.models.message import Message, MessageType
from gitchat.models.user import User
from gitchat.services import conversations as conversation_service
from gitchat.services import messages as message_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/chat", tags=["chat"])


# -------------------------------------------------------------------------
# Pydantic models
# -------------------------------------------------------------------------

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ParticipantOut(CamelModel):
    username: str
    name: str = ""
    avatar_url: str | None = None


class LinkedRepoOut(CamelModel):
    url: str
    owner: str | None = None
    repo: str | None = None
    added_by: str | None = None
    added_at: datetime | None = None


class ConversationOut(CamelModel):
    id: int = Field(alias="_id")
    participants: list[str]
    participant_details: list[ParticipantOut] = []
    last_message: str
    last_message_time: datetime
    linked_repo: LinkedRepoOut | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    unread_count: int = 0


class ReactionOut(CamelModel):
    username: str
    reaction: str


class ReplyOut(CamelModel):
    message_id: int
    sender: str | None = None
    message: str | None = None


class ForwardOut(CamelModel):
    sender: str
    message_id: int | None = None


class MessageOut(CamelModel):
    id: int = Field(alias="_id")
    conversation_id: int
    sender: str
    receiver: str
    message: str
    message_type: str
    image_url: str | None = None
    read: bool
    reactions: list[ReactionOut] = []
    reply_to: ReplyOut | None = None
    forwarded_from: ForwardOut | None = None
    issue_references: list[dict[str, Any]] | None = None
    created_at: datetime
    updated_at: datetime | None = None


class SendMessageRequest(CamelModel):
    receiver: str | None = None
    message: str | None = None
    conversation_id: int | None = None
    message_type: str = MessageType.TEXT.value


class ReplyRequest(CamelModel):
    receiver: str | None = None
    message: str | None = None
    conversation_id: int | None = None
    reply_to_id: int | None = None


class ForwardRequest(CamelModel):
    receiver: str | None = None
    conversation_id: int | None = None
    message_id: int | None = None


class ReactionRequest(CamelModel):
    reaction: str | None = None


class LinkRepoRequest(CamelModel):
    repo_url: str | None = None


class DeleteResult(CamelModel):
    success: bool = True
    message_id: int
    conversation_id: int


def serialize_message(message: Message) -> MessageOut:
    return MessageOut(
        id=message.id,
        conversation_id=message.conversation_id,
        sender=message.sender,
        receiver=message.receiver,
        message=message.body,
        message_type=message.message_type,
        image_url=message.image_url,
        read=message.read,
        reactions=[ReactionOut(username=r.username, reaction=r.reaction) for r in message.reactions],
        reply_to=message.reply_to,
        forwarded_from=message.forwarded,
        issue_references=message.issue_references,
        created_at=message.created_at,
        updated_at=message.updated_at,
    )


def serialize_conversation(
    conversation: Conversation,
    participant_details: list[dict] | None = None,
    unread_count: int = 0,
) -> ConversationOut:
    return ConversationOut(
        id=conversation.id,
        participants=conversation.participants,
        participant_details=participant_details or [],
        last_message=conversation.last_message,
        last_message_time=conversation.last_message_time,
        linked_repo=conversation.linked_repo,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
        unread_count=unread_count,
    )


def serialize_user(user: User) -> ParticipantOut:
    return ParticipantOut(**user.public_profile())


# -------------------------------------------------------------------------
# Conversations
# -------------------------------------------------------------------------

@router.get("/conversations", response_model=list[ConversationOut])
async def list_conversations(user: CurrentUser, db: DBSession):
    """All conversations of the current user, most recent activity first."""
    rows = await conversation_service.list_conversations(db, user.username)
    unread = await message_service.unread_counts(db, user.username)
    return [
        serialize_conversation(
            row["conversation"],
            row["participant_details"],
            unread.get(row["conversation"].id, 0),
        )
        for row in rows
    ]


@router.get("/conversation/{username}", response_model=ConversationOut)
async def get_or_create_conversation(
    username: str,
    response: Response,
    user: CurrentUser,
    db: DBSession,
):
    """Get the conversation with ``username``, creating it on first contact."""
    conversation, created = await conversation_service.get_or_create_conversation(
        db, user.username, username
    )
    await db.commit()
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return serialize_conversation(conversation)


@router.post("/conversations/{conversation_id}/repo", response_model=ConversationOut)
async def link_repo(
    conversation_id: int,
    payload: LinkRepoRequest,
    user: CurrentUser,
    db: DBSession,
):
    """Link a GitHub repository to a conversation."""
    conversation = await conversation_service.link_repo(db, conversation_id, user.username, payload.repo_url)
    await db.commit()
    return serialize_conversation(conversation)


@router.delete("/conversations/{conversation_id}/repo", response_model=ConversationOut)
async def unlink_repo(conversation_id: int, user: CurrentUser, db: DBSession):
    """Remove the repository link from a conversation."""
    conversation = await conversation_service.unlink_repo(db, conversation_id, user.username)
    await db.commit()
    return serialize_conversation(conversation)


@router.get("/users", response_model=list[ParticipantOut])
async def list_chat_users(user: CurrentUser, db: DBSession):
    """Users the current user can start a conversation with."""
    users = await conversation_service.list_chat_users(db, user.username)
    return [serialize_user(u) for u in users]


# -------------------------------------------------------------------------
# Messages
# -------------------------------------------------------------------------

@router.get("/messages/{conversation_id}", response_model=list[MessageOut])
async def get_messages(conversation_id: int, user: CurrentUser, db: DBSession):
    """Visible history for the current user; marks messages addressed to them as read."""
    messages = await message_service.list_messages(db, conversation_id, user.username)
    await message_service.mark_read(db, conversation_id, user.username)
    await db.commit()
    return [serialize_message(m) for m in messages]


@router.post("/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(payload: SendMessageRequest, user: CurrentUser, db: DBSession):
    """Send a text or emoji message."""
    message = await message_service.send_message(
        db,
        sender=user.username,
        receiver=payload.receiver,
        conversation_id=payload.conversation_id,
        body=payload.message,
        message_type=payload.message_type,
    )
    await db.commit()
    return serialize_message(message)


@router.post("/messages/image", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_image_message(
    user: CurrentUser,
    db: DBSession,
    storage: Storage,
    image: Annotated[UploadFile, File()],
    receiver: Annotated[str | None, Form()] = None,
    conversation_id: Annotated[int | None, Form(alias="conversationId")] = None,
):
    """Upload an image (≤ upload_max_size_mb, image/* only) and send it as a message."""
    contents = await image.read()
    size = len(contents)
    await image.seek(0)

    message = await message_service.send_image_message(
        db,
        sender=user.username,
        receiver=receiver,
        conversation_id=conversation_id,
        file=image.file,
        filename=image.filename or "image",
        content_type=image.content_type,
        size=size,
        storage=storage,
    )
    await db.commit()
    return serialize_message(message)


@router.post("/messages/reply", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def reply_to_message(payload: ReplyRequest, user: CurrentUser, db: DBSession):
    """Reply to a message in the same conversation."""
    message = await message_service.reply(
        db,
        sender=user.username,
        receiver=payload.receiver,
        conversation_id=payload.conversation_id,
        body=payload.message,
        target_message_id=payload.reply_to_id,
    )
    await db.commit()
    return serialize_message(message)


@router.post("/messages/forward", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def forward_message(payload: ForwardRequest, user: CurrentUser, db: DBSession):
    """Forward an existing message into another conversation."""
    message = await message_service.forward(
        db,
        sender=user.username,
        receiver=payload.receiver,
        target_conversation_id=payload.conversation_id,
        original_message_id=payload.message_id,
    )
    await db.commit()
    return serialize_message(message)


@router.post("/messages/{message_id}/react", response_model=MessageOut)
async def react_to_message(
    message_id: int,
    payload: ReactionRequest,
    user: CurrentUser,
    db: DBSession,
):
    """Toggle a reaction: same type removes it, a different type replaces it."""
    message = await message_service.react(db, user.username, message_id, payload.reaction)
    await db.commit()
    return serialize_message(message)


@router.delete("/messages/{message_id}/me", response_model=DeleteResult)
async def delete_message_for_me(message_id: int, user: CurrentUser, db: DBSession):
    """Hide a message from the current user's history."""
    message = await message_service.soft_delete(db, user.username, message_id)
    await db.commit()
    return DeleteResult(message_id=message.id, conversation_id=message.conversation_id)


@router.delete("/messages/{message_id}", response_model=DeleteResult)
async def delete_message_for_everyone(
    message_id: int,
    user: CurrentUser,
    db: DBSession,
    storage: Storage,
):
    """Permanently delete a message (sender only)."""
    message = await message_service.hard_delete(db, user.username, message_id, storage=storage)
    await db.commit()
    logger.info("Message %s deleted for everyone by %s", message_id, user.username)
    return DeleteResult(message_id=message_id, conversation_id=message.conversation_id)

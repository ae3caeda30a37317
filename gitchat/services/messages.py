"""
Message service: history, sending, replies, forwards, reactions and deletion.
"""

import logging
import re
from typing import BinaryIO

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gitchat.errors import BadRequest, Forbidden, Internal, NotFound, PayloadTooLarge, UnsupportedMediaType
from gitchat.models.base import utcnow
from gitchat.models.conversation import Conversation
from gitchat.models.message import Message, MessageDeletion, MessageType
from gitchat.models.reaction import MessageReaction, ReactionType
from gitchat.services.conversations import get_conversation, get_participant_conversation
from gitchat.services.storage import StorageError, StorageService, get_storage_service
from gitchat.settings import settings

logger = logging.getLogger(__name__)

ISSUE_REFERENCE_PATTERN = re.compile(r"#(\d+)\s\(([^)]+)\)")
IMAGE_PREVIEW = "📷 Image"
SENDABLE_TYPES = {MessageType.TEXT.value, MessageType.EMOJI.value}


def extract_issue_references(body: str, repo_url: str | None = None) -> list[dict]:
    """Find ``#123 (title)`` references; link them when the conversation has a repo."""
    references = []
    for match in ISSUE_REFERENCE_PATTERN.finditer(body):
        number = int(match.group(1))
        title = match.group(2)
        ref_type = "pr" if "pr" in title.lower() else "issue"

        url = None
        if repo_url:
            endpoint = "pull" if ref_type == "pr" else "issues"
            url = f"{repo_url.rstrip('/')}/{endpoint}/{number}"

        references.append({
            "issueNumber": number,
            "title": title,
            "type": ref_type,
            "url": url,
        })
    return references


def _require_pair(conversation: Conversation, sender: str, receiver: str) -> None:
    if not conversation.has_participant(sender) or not conversation.has_participant(receiver):
        raise Forbidden("Not authorized to send message in this conversation")
    if sender == receiver:
        raise BadRequest("Sender and receiver must differ")


async def _load_message(db: AsyncSession, message_id: int) -> Message:
    message = await db.get(Message, message_id)
    if not message:
        raise NotFound("Message not found")
    return message


async def _persist(db: AsyncSession, conversation: Conversation, message: Message) -> Message:
    """Insert the message and refresh the conversation's last-message preview."""
    message.issue_references = extract_issue_references(message.body, conversation.repo_url) or None
    db.add(message)

    conversation.last_message = IMAGE_PREVIEW if message.is_image else message.body
    conversation.last_message_time = utcnow()

    await db.flush()
    await db.refresh(message, attribute_names=["reactions", "deletions"])
    return message


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

async def list_messages(db: AsyncSession, conversation_id: int, username: str) -> list[Message]:
    """Visible history for ``username``: latest page, oldest first.

    Messages soft-deleted for ``username`` are excluded. Does not mark
    anything read; see :func:`mark_read`.
    """
    await get_participant_conversation(db, conversation_id, username)

    hidden = exists().where(
        and_(
            MessageDeletion.message_id == Message.id,
            MessageDeletion.username == username,
        )
    )
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id, ~hidden)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .limit(settings.message_page_size)
    )
    return list(reversed(result.scalars().all()))


async def mark_read(db: AsyncSession, conversation_id: int, username: str) -> int:
    """Mark every unread message addressed to ``username`` in the conversation as read."""
    await get_participant_conversation(db, conversation_id, username)

    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.receiver == username,
            Message.read.is_(False),
        )
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def unread_counts(db: AsyncSession, username: str) -> dict[int, int]:
    """Unread messages addressed to ``username``, keyed by conversation id."""
    result = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(Message.receiver == username, Message.read.is_(False))
        .group_by(Message.conversation_id)
    )
    return {conversation_id: count for conversation_id, count in result.all()}


# ---------------------------------------------------------------------------
# Sending
# ---------------------------------------------------------------------------

async def send_message(
    db: AsyncSession,
    sender: str,
    receiver: str | None,
    conversation_id: int | None,
    body: str | None,
    message_type: str = MessageType.TEXT.value,
) -> Message:
    """Persist a text or emoji message and return the canonical record."""
    if not receiver or not body or not body.strip() or conversation_id is None:
        raise BadRequest("Missing required fields")
    if message_type not in SENDABLE_TYPES:
        raise BadRequest(f"Invalid message type: {message_type}")

    conversation = await get_conversation(db, conversation_id)
    _require_pair(conversation, sender, receiver)

    message = Message(
        conversation_id=conversation.id,
        sender=sender,
        receiver=receiver,
        body=body,
        message_type=message_type,
    )
    return await _persist(db, conversation, message)


def validate_image(content_type: str | None, size: int | None) -> None:
    """Reject uploads that are not images or exceed the size cap."""
    if size is not None and size > settings.upload_max_size_bytes:
        raise PayloadTooLarge(f"Image exceeds maximum allowed size ({settings.upload_max_size_mb}MB)")
    if not content_type or not content_type.startswith("image/"):
        raise UnsupportedMediaType("Not an image! Please upload only images.")


async def send_image_message(
    db: AsyncSession,
    sender: str,
    receiver: str | None,
    conversation_id: int | None,
    file: BinaryIO,
    filename: str,
    content_type: str | None,
    size: int,
    storage: StorageService | None = None,
) -> Message:
    """Upload an image to the blob store and persist an image message pointing at it."""
    validate_image(content_type, size)
    if not receiver or conversation_id is None:
        raise BadRequest("Missing required fields")

    conversation = await get_conversation(db, conversation_id)
    _require_pair(conversation, sender, receiver)

    try:
        storage = storage or get_storage_service()
        storage_key, url, _ = await run_in_threadpool(
            storage.upload_image, file, filename, content_type, conversation.id
        )
    except StorageError as e:
        logger.error("Image upload failed for conversation %s: %s", conversation.id, e)
        raise Internal("Image upload failed")

    message = Message(
        conversation_id=conversation.id,
        sender=sender,
        receiver=receiver,
        body=IMAGE_PREVIEW,
        message_type=MessageType.IMAGE.value,
        image_url=url,
        image_storage_key=storage_key,
    )
    return await _persist(db, conversation, message)


async def reply(
    db: AsyncSession,
    sender: str,
    receiver: str | None,
    conversation_id: int | None,
    body: str | None,
    target_message_id: int | None,
) -> Message:
    """Send a reply carrying a snapshot of the target's sender and body."""
    if not receiver or not body or not body.strip() or conversation_id is None or target_message_id is None:
        raise BadRequest("Missing required fields")

    conversation = await get_conversation(db, conversation_id)
    _require_pair(conversation, sender, receiver)

    target = await db.get(Message, target_message_id)
    if not target or target.conversation_id != conversation.id:
        raise NotFound("Original message not found")

    message = Message(
        conversation_id=conversation.id,
        sender=sender,
        receiver=receiver,
        body=body,
        message_type=MessageType.TEXT.value,
        reply_to_id=target.id,
        reply_to_sender=target.sender,
        reply_to_body=target.display_body,
    )
    return await _persist(db, conversation, message)


async def forward(
    db: AsyncSession,
    sender: str,
    receiver: str | None,
    target_conversation_id: int | None,
    original_message_id: int | None,
) -> Message:
    """Copy an existing message into another conversation, tagged with its origin.

    Only membership of the destination conversation is checked.
    """
    if not receiver or target_conversation_id is None or original_message_id is None:
        raise BadRequest("Missing required fields")

    conversation = await get_conversation(db, target_conversation_id)
    _require_pair(conversation, sender, receiver)

    original = await db.get(Message, original_message_id)
    if not original:
        raise NotFound("Original message not found")

    message = Message(
        conversation_id=conversation.id,
        sender=sender,
        receiver=receiver,
        body=original.body,
        message_type=original.message_type,
        image_url=original.image_url,
        image_storage_key=original.image_storage_key,
        forwarded_from=original.forwarded_from or original.sender,
        forwarded_message_id=original.forwarded_message_id or original.id,
    )
    return await _persist(db, conversation, message)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def react(db: AsyncSession, username: str, message_id: int, reaction: str | None) -> Message:
    """Toggle ``reaction`` on a message for ``username``.

    Same reaction again removes it; a different one replaces it. A user
    never holds more than one reaction on a message.
    """
    if reaction not in ReactionType.values():
        raise BadRequest(f"Invalid reaction type. Allowed: {', '.join(ReactionType.values())}")

    message = await _load_message(db, message_id)
    await get_participant_conversation(db, message.conversation_id, username)

    existing = next((r for r in message.reactions if r.username == username), None)
    if existing is None:
        message.reactions.append(MessageReaction(username=username, reaction=reaction))
    elif existing.reaction == reaction:
        message.reactions.remove(existing)
    else:
        existing.reaction = reaction

    await db.flush()
    return message


async def soft_delete(db: AsyncSession, username: str, message_id: int) -> Message:
    """Hide a message from ``username``'s history only. Idempotent."""
    message = await _load_message(db, message_id)
    await get_participant_conversation(db, message.conversation_id, username)

    if username not in message.deleted_for:
        message.deletions.append(MessageDeletion(username=username))
        await db.flush()
    return message


async def hard_delete(
    db: AsyncSession,
    username: str,
    message_id: int,
    storage: StorageService | None = None,
) -> Message:
    """Physically remove a message; only its sender may do this.

    Removing the attached image blob is best-effort and happens after the
    row is gone, so a storage failure never keeps the message alive.
    """
    message = await _load_message(db, message_id)
    if message.sender != username:
        raise Forbidden("Only the sender can delete this message for everyone")

    storage_key = message.image_storage_key
    await db.delete(message)
    await db.flush()

    if storage_key:
        await _delete_blob_if_unreferenced(db, storage_key, storage)
    return message


async def _delete_blob_if_unreferenced(
    db: AsyncSession,
    storage_key: str,
    storage: StorageService | None,
) -> None:
    # Forwards share the original's blob
    result = await db.execute(
        select(func.count(Message.id)).where(Message.image_storage_key == storage_key)
    )
    if result.scalar_one():
        return

    try:
        storage = storage or get_storage_service()
        deleted = await run_in_threadpool(storage.delete_file, storage_key)
        if not deleted:
            logger.warning("Blob %s was not deleted", storage_key)
    except Exception as e:
        logger.warning("Best-effort blob delete failed for %s: %s", storage_key, e)

"""
Conversation service: lookup/creation, listing and repository links.
"""

import logging
import re

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from gitchat.errors import BadRequest, Forbidden, NotFound
from gitchat.models.conversation import Conversation, make_pair_key
from gitchat.models.user import User
from gitchat.settings import settings

logger = logging.getLogger(__name__)

REPO_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")


def extract_repo_info(url: str) -> tuple[str, str] | None:
    """Pull (owner, repo) out of a GitHub repository URL."""
    match = REPO_URL_PATTERN.search(url or "")
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return owner, repo


def clean_repo_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[:-4]
    return url


async def get_user_by_username(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    return result.scalar_one_or_none()


async def get_conversation(db: AsyncSession, conversation_id: int) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if not conversation:
        raise NotFound("Conversation not found")
    return conversation


async def get_participant_conversation(
    db: AsyncSession,
    conversation_id: int,
    username: str,
) -> Conversation:
    """Load a conversation and require ``username`` to be one of its two participants."""
    conversation = await get_conversation(db, conversation_id)
    if not conversation.has_participant(username):
        raise Forbidden("Access denied")
    return conversation


async def find_conversation(db: AsyncSession, user_a: str, user_b: str) -> Conversation | None:
    result = await db.execute(
        select(Conversation).where(Conversation.pair_key == make_pair_key(user_a, user_b))
    )
    return result.scalar_one_or_none()


async def get_or_create_conversation(
    db: AsyncSession,
    current_user: str,
    other_user: str,
) -> tuple[Conversation, bool]:
    """Return the conversation for the pair, creating it on first contact.

    The unique pair key makes concurrent creation safe: the loser of an
    insert race rolls back and reads the winner's row. Nothing else is
    pending in the session at that point, so the rollback loses no work.

    Returns:
        Tuple of (conversation, created)
    """
    if current_user == other_user:
        raise BadRequest("Cannot start a conversation with yourself")

    if not await get_user_by_username(db, other_user):
        raise NotFound("User not found")

    existing = await find_conversation(db, current_user, other_user)
    if existing:
        return existing, False

    conversation = Conversation.between(current_user, other_user)
    db.add(conversation)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("Conversation %s created concurrently, reusing it", conversation.pair_key)
        existing = await find_conversation(db, current_user, other_user)
        if existing is None:
            raise
        return existing, False

    logger.info("Created conversation %s", conversation.pair_key)
    return conversation, True


async def list_conversations(db: AsyncSession, username: str) -> list[dict]:
    """All conversations of ``username``, newest activity first, with the other participant's profile."""
    result = await db.execute(
        select(Conversation)
        .where(
            or_(
                Conversation.participant_a == username,
                Conversation.participant_b == username,
            )
        )
        .order_by(Conversation.last_message_time.desc(), Conversation.id.desc())
    )
    conversations = result.scalars().all()

    others = {c.other_participant(username) for c in conversations}
    profiles: dict[str, User] = {}
    if others:
        users = await db.execute(select(User).where(User.username.in_(others)))
        profiles = {u.username: u for u in users.scalars().all()}

    enriched = []
    for conversation in conversations:
        other = profiles.get(conversation.other_participant(username))
        enriched.append({
            "conversation": conversation,
            "participant_details": [other.public_profile()] if other else [],
        })
    return enriched


async def list_chat_users(db: AsyncSession, username: str) -> list[User]:
    """Potential chat partners: everyone but the caller."""
    result = await db.execute(
        select(User)
        .where(User.username != username)
        .order_by(User.username)
        .limit(settings.chat_users_limit)
    )
    return list(result.scalars().all())


async def link_repo(
    db: AsyncSession,
    conversation_id: int,
    username: str,
    repo_url: str | None,
) -> Conversation:
    if not repo_url:
        raise BadRequest("Repository URL is required")

    repo_info = extract_repo_info(repo_url)
    if not repo_info:
        raise BadRequest("Invalid GitHub repository URL")

    conversation = await get_conversation(db, conversation_id)
    if not conversation.has_participant(username):
        raise Forbidden("Not authorized to modify this conversation")

    owner, repo = repo_info
    conversation.link_repo(clean_repo_url(repo_url), owner, repo, username)
    await db.flush()
    return conversation


async def unlink_repo(db: AsyncSession, conversation_id: int, username: str) -> Conversation:
    conversation = await get_conversation(db, conversation_id)
    if not conversation.has_participant(username):
        raise Forbidden("Not authorized to modify this conversation")

    conversation.unlink_repo()
    await db.flush()
    return conversation

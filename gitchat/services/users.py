"""
User service: GitHub login upsert and profile likes.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gitchat.errors import BadRequest, NotFound
from gitchat.models.user import User, UserLike
from gitchat.services.auth_providers import OAuthUserInfo
from gitchat.services.conversations import get_user_by_username

logger = logging.getLogger(__name__)


async def upsert_github_user(db: AsyncSession, info: OAuthUserInfo) -> User:
    """Create the user on first login; backfill the avatar if it was missing."""
    user = await get_user_by_username(db, info.username)
    if user is None:
        user = User(
            username=info.username,
            display_name=info.name,
            profile_url=info.profile_url,
            avatar_url=info.picture,
            github_id=info.sub,
        )
        db.add(user)
        await db.flush()
        logger.info("Created user %s from GitHub login", info.username)
        return user

    if not user.avatar_url and info.picture:
        user.avatar_url = info.picture
    if not user.github_id:
        user.github_id = info.sub
    await db.flush()
    return user


async def like_profile(db: AsyncSession, liker: User, username: str) -> UserLike:
    if liker.username == username:
        raise BadRequest("You cannot like your own profile")

    if not await get_user_by_username(db, username):
        raise NotFound("User not found")

    result = await db.execute(
        select(UserLike).where(
            UserLike.liker_username == liker.username,
            UserLike.liked_username == username,
        )
    )
    if result.scalar_one_or_none():
        raise BadRequest("User already liked")

    like = UserLike(liker_username=liker.username, liked_username=username)
    db.add(like)
    await db.flush()
    return like


async def unlike_profile(db: AsyncSession, liker: User, username: str) -> None:
    result = await db.execute(
        select(UserLike).where(
            UserLike.liker_username == liker.username,
            UserLike.liked_username == username,
        )
    )
    like = result.scalar_one_or_none()
    if not like:
        raise NotFound("Like not found")
    await db.delete(like)
    await db.flush()


async def get_likes(db: AsyncSession, username: str) -> list[dict]:
    """Who liked a profile, newest first."""
    result = await db.execute(
        select(UserLike)
        .where(UserLike.liked_username == username)
        .order_by(UserLike.liked_at.desc())
    )
    return [
        {
            "username": like.liker_username,
            "avatarUrl": like.liker.effective_avatar_url if like.liker else None,
            "likedDate": like.liked_at,
        }
        for like in result.scalars().all()
    ]

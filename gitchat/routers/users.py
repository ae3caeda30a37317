"""
Profile likes.
"""

from datetime import datetime

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from gitchat.deps import CurrentUser, DBSession
from gitchat.services import users as user_service

router = APIRouter(prefix="/api/users", tags=["users"])


class LikeOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    username: str
    avatar_url: str | None = None
    liked_date: datetime


@router.post("/like/{username}", status_code=status.HTTP_201_CREATED)
async def like_profile(username: str, user: CurrentUser, db: DBSession):
    await user_service.like_profile(db, user, username)
    await db.commit()
    return {"success": True, "username": username}


@router.delete("/like/{username}")
async def unlike_profile(username: str, user: CurrentUser, db: DBSession):
    await user_service.unlike_profile(db, user, username)
    await db.commit()
    return {"success": True, "username": username}


@router.get("/likes", response_model=list[LikeOut])
async def get_my_likes(user: CurrentUser, db: DBSession):
    """Who liked the current user's profile, newest first."""
    return await user_service.get_likes(db, user.username)

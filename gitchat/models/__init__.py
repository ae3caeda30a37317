# Models package
from gitchat.db import Base
from gitchat.models.user import User, UserLike
from gitchat.models.user_session import UserSession
from gitchat.models.conversation import Conversation
from gitchat.models.message import Message, MessageDeletion, MessageType
from gitchat.models.reaction import MessageReaction, ReactionType

__all__ = [
    "Base",
    "User",
    "UserLike",
    "UserSession",
    "Conversation",
    "Message",
    "MessageDeletion",
    "MessageType",
    "MessageReaction",
    "ReactionType",
]

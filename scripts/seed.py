"""Seed script to populate database with sample data."""

import asyncio
import sys

sys.path.insert(0, ".")

from sqlalchemy import select

from gitchat.db import async_session_maker, init_db
from gitchat.models import User, UserSession
from gitchat.services import conversations as conversation_service
from gitchat.services import messages as message_service


async def seed_database():
    """Seed the database with sample data."""
    await init_db()

    async with async_session_maker() as session:
        # Check if already seeded
        existing = await session.execute(select(User).limit(1))
        if existing.scalar_one_or_none():
            print("Database already seeded. Skipping.")
            return

        print("Seeding database...")

        # Create demo users
        users = [
            User(username=login, display_name=name, profile_url=f"https://github.com/{login}")
            for login, name in [
                ("octocat", "The Octocat"),
                ("hubot", "Hubot"),
                ("monalisa", "Mona Lisa Octocat"),
            ]
        ]
        session.add_all(users)
        await session.flush()
        octocat, hubot, monalisa = users
        print(f"Created users: {[u.username for u in users]}")

        # Conversation with a linked repo and some history
        conversation, _ = await conversation_service.get_or_create_conversation(
            session, octocat.username, hubot.username
        )
        await conversation_service.link_repo(
            session, conversation.id, octocat.username, "https://github.com/octocat/Hello-World"
        )
        first = await message_service.send_message(
            session, octocat.username, hubot.username, conversation.id, "Hey! Can you look at #1 (Fix README)?"
        )
        await message_service.reply(
            session, hubot.username, octocat.username, conversation.id, "On it 👀", first.id
        )
        await message_service.react(session, octocat.username, first.id, "like")
        print(f"Created conversation {conversation.id} between octocat and hubot")

        other, _ = await conversation_service.get_or_create_conversation(
            session, octocat.username, monalisa.username
        )
        await message_service.send_message(
            session, monalisa.username, octocat.username, other.id, "👋", message_type="emoji"
        )
        print(f"Created conversation {other.id} between octocat and monalisa")

        # Dev sessions so the API can be exercised without GitHub OAuth
        tokens = {}
        for user in users:
            user_session = UserSession.create_session(user.id)
            session.add(user_session)
            tokens[user.username] = user_session.session_token

        await session.commit()
        print("\n✅ Database seeded successfully!")
        print("\nDev session cookies (session_token):")
        for username, token in tokens.items():
            print(f"  {username:<10} {token}")


if __name__ == "__main__":
    asyncio.run(seed_database())

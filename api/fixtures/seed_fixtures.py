"""Seed the default reward catalogue and an admin account.

Usage:
    cd api
    DATABASE_URL="postgresql+asyncpg://..." python -m fixtures.seed_fixtures

The script is idempotent. Rewards are matched by title and only missing ones
are inserted; the admin account is created once and its API key is printed
exactly that one time.
"""
import asyncio
import secrets

from sqlalchemy import select

from citypulse.database import async_session_factory
from citypulse.dependencies import hash_api_key
from citypulse.models.reward import Reward, RewardCategory
from citypulse.models.user import User

ADMIN_EMAIL = "admin@citypulse.com"

DEFAULT_REWARDS = [
    {
        "title": "$5 Coffee Shop Gift Card",
        "description": "Enjoy a free coffee at participating local cafes",
        "cost": 50,
        "category": RewardCategory.digital.value,
        "image_url": "/coffee-gift-card.png",
        "stock_quantity": 25,
    },
    {
        "title": "CityPulse T-Shirt",
        "description": "Show your civic pride with official CityPulse merchandise",
        "cost": 100,
        "category": RewardCategory.physical.value,
        "image_url": "/city-t-shirt.png",
        "stock_quantity": 10,
    },
    {
        "title": "Priority Support Badge",
        "description": "Get faster response times on your reports for 30 days",
        "cost": 75,
        "category": RewardCategory.digital.value,
        "image_url": "/priority-badge.png",
        "stock_quantity": 50,
    },
    {
        "title": "City Hall Tour",
        "description": "Exclusive behind-the-scenes tour of your local government",
        "cost": 200,
        "category": RewardCategory.experience.value,
        "image_url": "/classic-city-hall.png",
        "stock_quantity": 5,
    },
]


async def seed_rewards(session) -> int:
    """Insert any default reward not already present. Returns the count added."""
    result = await session.execute(select(Reward.title))
    existing = set(result.scalars().all())

    added = 0
    for data in DEFAULT_REWARDS:
        if data["title"] in existing:
            continue
        session.add(Reward(is_active=True, **data))
        added += 1
    return added


async def seed_admin(session) -> str | None:
    """Create the admin account if missing. Returns its raw API key when created."""
    result = await session.execute(select(User).where(User.email == ADMIN_EMAIL))
    if result.scalar_one_or_none() is not None:
        return None

    raw_key = secrets.token_urlsafe(32)
    session.add(
        User(
            email=ADMIN_EMAIL,
            display_name="CityPulse Admin",
            api_key_hash=hash_api_key(raw_key),
            is_admin=True,
        )
    )
    return raw_key


async def seed() -> None:
    async with async_session_factory() as session:
        added = await seed_rewards(session)
        admin_key = await seed_admin(session)
        await session.commit()

    print(f"Rewards added: {added} (catalogue has {len(DEFAULT_REWARDS)} defaults)")
    if admin_key:
        print(f"Admin account created: {ADMIN_EMAIL}")
        print(f"Admin API key (shown once): {admin_key}")
    else:
        print("Admin account already exists, skipping.")


if __name__ == "__main__":
    asyncio.run(seed())

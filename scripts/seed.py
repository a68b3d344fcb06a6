"""
Catalog Seed Script

Creates the tables and loads the menu into the configured database.
Existing items with the same id are left untouched.
Run from project root: python scripts/seed.py
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from order_desk.core.config import get_settings, setup_logging
from order_desk.database import build_engine, build_session_maker, init_db
from order_desk.models import Merchandise, MerchandiseType

MENU = [
    # Base items
    {"id": "0192d8ca-7580-0737-ae8f-4aa2f604155c", "name": "Ramen (Small)", "price": 700, "type": MerchandiseType.BASE_ITEM},
    {"id": "0192d8ca-7580-0cd7-a31f-e7ac2eb0c81f", "name": "Ramen (Regular)", "price": 800, "type": MerchandiseType.BASE_ITEM},
    {"id": "0192d8ca-7580-8147-af5a-b976c7081f81", "name": "Ramen (Large)", "price": 950, "type": MerchandiseType.BASE_ITEM},
    # Toppings
    {"id": "0192d8ca-7580-2a97-9324-2df8785b787f", "name": "Soft-boiled Egg", "price": 100, "type": MerchandiseType.TOPPING},
    {"id": "0192d8ca-7580-2f87-8e2e-9b04d2137e87", "name": "Chashu", "price": 200, "type": MerchandiseType.TOPPING},
    {"id": "0192d8ca-7580-b117-9da4-b484bffed39f", "name": "Extra Noodles", "price": 150, "type": MerchandiseType.TOPPING},
    {"id": "0192d8ca-7580-4c1e-8b7d-1f3a9e2c5d60", "name": "Nori", "price": 50, "type": MerchandiseType.TOPPING},
    # Discounts
    {"id": "0192d8ca-7580-9e61-a3c2-7d5b0f4e8a13", "name": "Student Discount", "price": -100, "type": MerchandiseType.DISCOUNT},
]


async def seed() -> int:
    settings = get_settings()
    engine = build_engine(settings.database_url, echo=settings.database_echo)
    session_maker = build_session_maker(engine)

    await init_db(engine)

    created = 0
    async with session_maker() as session:
        async with session.begin():
            for entry in MENU:
                if await session.get(Merchandise, entry["id"]) is not None:
                    continue
                session.add(Merchandise(is_available=True, **entry))
                created += 1

    await engine.dispose()
    return created


if __name__ == "__main__":
    logger = setup_logging()
    count = asyncio.run(seed())
    logger.info(f"Seeded {count} merchandise item(s) ({len(MENU) - count} already present)")

"""
Seed the candies table.

This script:
- Creates the tables if they do not exist yet.
- Upserts each candy from a JSON file (or the built-in menu) keyed by its
  explicit id or its name slug.
- Sets stock to the given quantity; existing reservations are kept unless
  CLEAR_RESERVATIONS=true.

Run inside docker (recommended):
  docker exec -i candy-api sh -lc "cd /app && PYTHONPATH=/app uv run python scripts/seed_candies.py [candies.json]"

JSON format: [{"name": "Gummy Bears", "stock": 10, "price": 4.5, "id": "optional"}, ...]

Optional env vars:
- DEFAULT_STOCK (default: 10) used when an entry has no stock
- CLEAR_RESERVATIONS (default: false)
"""

from __future__ import annotations

import asyncio
import json
import os
import sys

from core.keys import slug_from_name
from db.candy import Candy
from db.database import async_session_maker, create_db_and_tables

DEFAULT_MENU = [
    {"name": "Gummy Bears", "price": 5.0},
    {"name": "Freeze Dried Skittles", "price": 6.0},
    {"name": "Sour Worms", "price": 5.0},
    {"name": "Taffy Bites", "price": 4.0},
]


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except ValueError:
        return default


def _load_menu(argv: list[str]) -> list[dict]:
    if len(argv) > 1:
        with open(argv[1], encoding="utf-8") as fh:
            return json.load(fh)
    return DEFAULT_MENU


async def main() -> None:
    default_stock = _env_int("DEFAULT_STOCK", 10)
    clear = os.getenv("CLEAR_RESERVATIONS", "false").strip().lower() == "true"
    menu = _load_menu(sys.argv)

    await create_db_and_tables()

    created = 0
    updated = 0
    async with async_session_maker() as db:
        for entry in menu:
            name = str(entry.get("name") or "").strip()
            if not name:
                continue
            key = str(entry.get("id") or slug_from_name(name))
            stock = int(entry.get("stock", default_stock))

            candy = await db.get(Candy, key)
            if candy is None:
                db.add(Candy(id=key, name=name, stock=stock, price=entry.get("price"), reservations={}))
                created += 1
            else:
                candy.name = name
                candy.stock = stock
                if entry.get("price") is not None:
                    candy.price = entry["price"]
                if clear:
                    candy.reservations = {}
                updated += 1
        await db.commit()

    print(f"Candies seeded. Created: {created}. Updated: {updated}.")


if __name__ == "__main__":
    asyncio.run(main())

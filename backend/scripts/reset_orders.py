"""
Delete ALL orders from the database. Stock is not restored.

Run inside docker (recommended):
  docker exec -i candy-api sh -lc "cd /app && PYTHONPATH=/app uv run python scripts/reset_orders.py"
"""

from __future__ import annotations

import asyncio

from sqlalchemy import delete

from db.database import async_session_maker
from db.order import Order


async def main() -> None:
    async with async_session_maker() as db:
        res_orders = await db.execute(delete(Order))
        await db.commit()

        orders_n = int(getattr(res_orders, "rowcount", 0) or 0)
        print(f"Deleted orders: {orders_n}")


if __name__ == "__main__":
    asyncio.run(main())

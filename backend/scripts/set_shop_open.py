"""
Open or close the shop.

While closed, new holds, pay-at-table orders and checkout sessions are
refused. Payments that are already collected still settle.

Usage:
  PYTHONPATH=/app uv run python scripts/set_shop_open.py open|closed
"""

from __future__ import annotations

import asyncio
import sys

from db.database import async_session_maker, create_db_and_tables
from db.shop_config import SHOP_CONFIG_ID, ShopConfig


async def main(is_open: bool) -> None:
    await create_db_and_tables()
    async with async_session_maker() as db:
        row = await db.get(ShopConfig, SHOP_CONFIG_ID)
        if row is None:
            db.add(ShopConfig(id=SHOP_CONFIG_ID, is_open=is_open))
        else:
            row.is_open = is_open
        await db.commit()
    print(f"Shop is now {'open' if is_open else 'closed'}.")


if __name__ == "__main__":
    if len(sys.argv) != 2 or sys.argv[1] not in ("open", "closed"):
        print(__doc__)
        sys.exit(2)
    asyncio.run(main(sys.argv[1] == "open"))

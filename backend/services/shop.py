from typing import Awaitable, Callable, Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.errors import ShopClosedError
from db.database import get_session_maker
from db.shop_config import SHOP_CONFIG_ID, ShopConfig

# Returns the stored flag, or None when no shop config row exists
ShopFlagLoader = Callable[[], Awaitable[Optional[bool]]]


async def is_shop_open(load_flag: ShopFlagLoader) -> bool:
    flag = await load_flag()
    if flag is None:
        return True  # default open
    return bool(flag)


def db_shop_flag(session_maker: async_sessionmaker) -> ShopFlagLoader:
    async def _load() -> Optional[bool]:
        async with session_maker() as db:
            row = await db.get(ShopConfig, SHOP_CONFIG_ID)
            return None if row is None else bool(row.is_open)

    return _load


def get_shop_flag_loader(
    session_maker: async_sessionmaker = Depends(get_session_maker),
) -> ShopFlagLoader:
    return db_shop_flag(session_maker)


async def require_open(load_flag: ShopFlagLoader) -> None:
    """Hard stop for every flow that takes new orders."""
    if not await is_shop_open(load_flag):
        raise ShopClosedError()

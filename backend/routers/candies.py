from datetime import datetime, timedelta, timezone
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.keys import slug_from_name
from db.candy import Candy as CandyModel
from db.database import get_async_session
from schemas.candies import CandyAvailability, ShopStatus
from services.inventory import availability
from services.shop import ShopFlagLoader, get_shop_flag_loader, is_shop_open

router = APIRouter()


def _ttl() -> timedelta:
    return timedelta(seconds=settings.reservation_ttl_seconds)


@router.get("/candies", response_model=List[CandyAvailability])
async def list_candies(db: AsyncSession = Depends(get_async_session)):
    """Stock, live holds and what is left to sell, per candy. Read only."""
    now = datetime.now(timezone.utc)
    res = await db.execute(select(CandyModel).order_by(CandyModel.name))
    return [availability(c, now, _ttl()) for c in res.scalars().all()]


@router.get("/candies/{key}", response_model=CandyAvailability)
async def get_candy(key: str, db: AsyncSession = Depends(get_async_session)):
    candy = await db.get(CandyModel, key)
    if candy is None:
        # Accept a display name as well as the stored key
        candy = await db.get(CandyModel, slug_from_name(key))
    if candy is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Candy not found")
    return availability(candy, datetime.now(timezone.utc), _ttl())


@router.get("/shop/status", response_model=ShopStatus)
async def shop_status(load_flag: ShopFlagLoader = Depends(get_shop_flag_loader)) -> Dict:
    return {"is_open": await is_shop_open(load_flag)}

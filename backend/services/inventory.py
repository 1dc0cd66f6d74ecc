"""
Store transactions over candy records.

Every public coroutine here opens its own session per transaction, so
several of them can run concurrently against the same session factory.
Rows are locked with SELECT ... FOR UPDATE for the life of the
transaction; that lock is the only mutual exclusion in the system.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Literal, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core import reservations as holds
from core.errors import ItemNotFoundError
from core.reservations import RESERVATION_TTL
from db.candy import Candy
from schemas.orders import LineItem

logger = structlog.get_logger(__name__)


async def _lock_candy(db: AsyncSession, key: str) -> Optional[Candy]:
    if not key:
        return None
    res = await db.execute(select(Candy).where(Candy.id == key).with_for_update())
    return res.scalar_one_or_none()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Holds
# ---------------------------------------------------------------------------

async def reserve_item(
    session_maker: async_sessionmaker,
    item: LineItem,
    session_id: str,
    *,
    now: Optional[datetime] = None,
    ttl: timedelta = RESERVATION_TTL,
) -> dict:
    """Add to the session's hold on one candy. Returns the new hold."""
    now = now or _utcnow()
    async with session_maker() as db:
        async with db.begin():
            candy = await _lock_candy(db, item.key)
            if candy is None:
                raise ItemNotFoundError(item.label)
            candy.reservations = holds.reserve(
                item.label,
                candy.stock,
                candy.reservations,
                session_id,
                int(item.quantity),
                now,
                ttl,
            )
            return candy.reservations[session_id]


async def reserve_items(
    session_maker: async_sessionmaker,
    items: Sequence[LineItem],
    session_id: str,
    *,
    now: Optional[datetime] = None,
    ttl: timedelta = RESERVATION_TTL,
) -> None:
    """
    One independent transaction per item, run concurrently.

    There is no cross-item atomicity: holds written for items that succeeded
    stay in place when another item fails, until released or expired. All
    transactions finish before the first failure (in request order) is raised.
    """
    now = now or _utcnow()
    results = await asyncio.gather(
        *(reserve_item(session_maker, it, session_id, now=now, ttl=ttl) for it in items),
        return_exceptions=True,
    )
    for item, result in zip(items, results):
        if isinstance(result, BaseException):
            logger.warning("Reservation failed", item=item.label, session_id=session_id, error=str(result))
            raise result
    logger.info("Stock reserved", session_id=session_id, items=[it.key for it in items])


async def release_item(session_maker: async_sessionmaker, key: str, session_id: str) -> bool:
    """Drop the session's hold on one candy. Missing candy or hold is a no-op."""
    async with session_maker() as db:
        async with db.begin():
            candy = await _lock_candy(db, key)
            if candy is None:
                return False
            remaining, removed = holds.release(candy.reservations, session_id)
            if removed:
                candy.reservations = remaining
            return removed


async def release_items(
    session_maker: async_sessionmaker, items: Sequence[LineItem], session_id: str
) -> int:
    """Release the session's holds on every item concurrently. Returns how many were dropped."""
    removed = await asyncio.gather(*(release_item(session_maker, it.key, session_id) for it in items))
    return sum(1 for r in removed if r)


# ---------------------------------------------------------------------------
# Paid-order stock deduction (never aborts the settlement)
# ---------------------------------------------------------------------------

DeductionStatus = Literal["deducted", "missing", "insufficient", "failed"]


@dataclass
class DeductionResult:
    key: str
    name: str
    quantity: int
    status: DeductionStatus
    stock_after: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "deducted"


async def deduct_item(session_maker: async_sessionmaker, item: LineItem) -> DeductionResult:
    qty = int(item.quantity)
    try:
        async with session_maker() as db:
            async with db.begin():
                candy = await _lock_candy(db, item.key)
                if candy is None:
                    logger.warning("Candy not found, skipping stock update", item=item.label, key=item.key)
                    return DeductionResult(item.key, item.label, qty, "missing")
                new_stock = int(candy.stock or 0) - qty
                if new_stock < 0:
                    logger.warning(
                        "Not enough stock, skipping update",
                        item=item.label,
                        stock=candy.stock,
                        requested=qty,
                    )
                    return DeductionResult(item.key, item.label, qty, "insufficient", stock_after=candy.stock)
                candy.stock = new_stock
        return DeductionResult(item.key, item.label, qty, "deducted", stock_after=new_stock)
    except Exception as e:
        logger.exception("Stock deduction error", item=item.label)
        return DeductionResult(item.key, item.label, qty, "failed", error=str(e))


async def deduct_items(session_maker: async_sessionmaker, items: Sequence[LineItem]) -> List[DeductionResult]:
    """Sequential, one transaction per item, awaited in order."""
    out: List[DeductionResult] = []
    for item in items:
        out.append(await deduct_item(session_maker, item))
    return out


# ---------------------------------------------------------------------------
# Pay-at-table: all items in one transaction
# ---------------------------------------------------------------------------

def _merge_lines(items: Sequence[LineItem]) -> "OrderedDict[str, tuple[str, int]]":
    """key -> (label, total quantity), first-seen order kept."""
    merged: "OrderedDict[str, tuple[str, int]]" = OrderedDict()
    for it in items:
        label, qty = merged.get(it.key, (it.label, 0))
        merged[it.key] = (label, qty + int(it.quantity))
    return merged


async def deduct_all_or_nothing(
    session_maker: async_sessionmaker,
    items: Sequence[LineItem],
    *,
    now: Optional[datetime] = None,
    ttl: timedelta = RESERVATION_TTL,
) -> Dict[str, int]:
    """
    Check every item against stock minus live holds, then decrement all of
    them, inside a single transaction. Any missing item or shortfall raises
    before anything is written. Returns key -> stock after.
    """
    now = now or _utcnow()
    wanted = _merge_lines(items)

    async with session_maker() as db:
        async with db.begin():
            # Rows are always locked in key order
            keys = sorted(k for k in wanted if k)
            res = await db.execute(
                select(Candy).where(Candy.id.in_(keys)).order_by(Candy.id).with_for_update()
            )
            by_key = {c.id: c for c in res.scalars().all()}

            # First pass: verify everything
            cleaned: Dict[str, dict] = {}
            for key, (label, qty) in wanted.items():
                candy = by_key.get(key)
                if candy is None:
                    raise ItemNotFoundError(label)
                cleaned[key] = holds.check_available(
                    label, candy.stock, candy.reservations, qty, now, ttl
                )

            # Second pass: apply
            stock_after: Dict[str, int] = {}
            for key, (_, qty) in wanted.items():
                candy = by_key[key]
                candy.stock = int(candy.stock or 0) - qty
                candy.reservations = cleaned[key]
                stock_after[key] = candy.stock
    return stock_after


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def availability(candy: Candy, now: datetime, ttl: timedelta = RESERVATION_TTL) -> dict:
    _, reserved = holds.sweep(candy.reservations, now, ttl)
    stock = int(candy.stock or 0)
    return {
        "id": candy.id,
        "name": candy.name,
        "stock": stock,
        "reserved": reserved,
        "available": stock - reserved,
        "price": float(candy.price) if candy.price is not None else None,
    }

"""
Order settlement.

Two ways an order becomes final:

- settle_paid_order: Stripe has already taken the money. The order is
  saved first, then stock is deducted item by item; an item that cannot be
  deducted is logged and skipped, never failing the settlement.
- settle_table_order: pay at the lane, nothing collected yet. Stock for
  every item is checked and deducted in one transaction, or not at all.

Both end by appending a row to the order log and flagging the order as
logged. Steps are not rolled back when a later one fails; a redelivered
payment event for an order that was saved but never logged redoes the
hold release and the log append, without touching stock again.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import structlog
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.errors import PersistenceError
from core.reservations import RESERVATION_TTL
from db.order import Order
from schemas.orders import LineItem
from services import inventory
from services.inventory import DeductionResult

logger = structlog.get_logger(__name__)


class OrderLog(Protocol):
    async def append(self, row: List[Any], order_id: Optional[str] = None) -> None: ...


@dataclass
class SettlementOutcome:
    order_id: str
    is_paid: bool
    deductions: List[DeductionResult] = field(default_factory=list)
    released_holds: int = 0
    duplicate: bool = False

    @property
    def skipped(self) -> List[DeductionResult]:
        return [d for d in self.deductions if not d.ok]


def format_items(items: Sequence[LineItem]) -> str:
    return ", ".join(f"{it.label} x{it.quantity}" for it in items)


def build_log_row(
    *,
    now: datetime,
    order_id: str,
    lane_number: Optional[str],
    is_paid: bool,
    items: Sequence[LineItem],
    customer_details: Optional[Dict[str, Any]],
) -> List[str]:
    return [
        now.astimezone().strftime("%m/%d/%Y, %I:%M:%S %p"),
        order_id,
        lane_number or "",
        "Yes" if is_paid else "No",
        format_items(items),
        json.dumps(customer_details) if customer_details else "",
    ]


def new_order_id() -> str:
    return uuid.uuid4().hex


async def save_order(
    session_maker: async_sessionmaker,
    *,
    order_id: str,
    items: Sequence[LineItem],
    lane_number: Optional[str],
    is_paid: bool,
    customer_details: Optional[Dict[str, Any]],
    now: datetime,
) -> bool:
    """
    Insert the order record. Returns False if an order with this id already
    exists; the existing record is left alone.
    """
    try:
        async with session_maker() as db:
            async with db.begin():
                if await db.get(Order, order_id) is not None:
                    return False
                db.add(
                    Order(
                        id=order_id,
                        items=[it.snapshot() for it in items],
                        lane_number=lane_number,
                        is_paid=is_paid,
                        customer_details=customer_details,
                        created_at=now,
                    )
                )
    except SQLAlchemyError as e:
        logger.error("Order write error", order_id=order_id, error=str(e))
        raise PersistenceError("Failed to save order to database.") from e
    logger.info("Order saved", order_id=order_id, is_paid=is_paid)
    return True


async def is_order_logged(session_maker: async_sessionmaker, order_id: str) -> bool:
    async with session_maker() as db:
        order = await db.get(Order, order_id)
        return bool(order is not None and order.logged)


async def mark_order_logged(session_maker: async_sessionmaker, order_id: str) -> None:
    try:
        async with session_maker() as db:
            async with db.begin():
                await db.execute(update(Order).where(Order.id == order_id).values(logged=True))
    except SQLAlchemyError as e:
        logger.error("Order logged flag write error", order_id=order_id, error=str(e))
        raise PersistenceError("Failed to mark order as logged.") from e


async def _append_log_row(
    session_maker: async_sessionmaker,
    order_log: OrderLog,
    *,
    now: datetime,
    order_id: str,
    lane_number: Optional[str],
    is_paid: bool,
    items: Sequence[LineItem],
    customer_details: Optional[Dict[str, Any]],
) -> None:
    await order_log.append(
        build_log_row(
            now=now,
            order_id=order_id,
            lane_number=lane_number,
            is_paid=is_paid,
            items=items,
            customer_details=customer_details,
        ),
        order_id=order_id,
    )
    await mark_order_logged(session_maker, order_id)


async def settle_paid_order(
    session_maker: async_sessionmaker,
    order_log: OrderLog,
    *,
    session_id: str,
    items: Sequence[LineItem],
    lane_number: Optional[str],
    customer_details: Optional[Dict[str, Any]],
    now: Optional[datetime] = None,
) -> SettlementOutcome:
    now = now or datetime.now(timezone.utc)
    outcome = SettlementOutcome(order_id=session_id, is_paid=True)

    # 1) Save order; failure here stops everything
    saved = await save_order(
        session_maker,
        order_id=session_id,
        items=items,
        lane_number=lane_number,
        is_paid=True,
        customer_details=customer_details,
        now=now,
    )
    if saved:
        # 2) Deduct stock, one item at a time; shortfalls are skipped, not raised
        outcome.deductions = await inventory.deduct_items(session_maker, items)
        for skipped in outcome.skipped:
            logger.warning(
                "Paid order item not deducted",
                order_id=session_id,
                item=skipped.name,
                status=skipped.status,
            )
    else:
        # Redelivered event: stock was already deducted by the first delivery
        outcome.duplicate = True
        if await is_order_logged(session_maker, session_id):
            logger.warning("Order already recorded, ignoring redelivered payment event", order_id=session_id)
            return outcome
        logger.warning("Order recorded but not logged, finishing settlement", order_id=session_id)

    # 3) This session's holds are no longer needed
    outcome.released_holds = await inventory.release_items(session_maker, items, session_id)

    # 4) Log row
    await _append_log_row(
        session_maker,
        order_log,
        now=now,
        order_id=session_id,
        lane_number=lane_number,
        is_paid=True,
        items=items,
        customer_details=customer_details,
    )
    return outcome


async def settle_table_order(
    session_maker: async_sessionmaker,
    order_log: OrderLog,
    *,
    items: Sequence[LineItem],
    lane_number: str,
    now: Optional[datetime] = None,
    ttl: timedelta = RESERVATION_TTL,
) -> SettlementOutcome:
    now = now or datetime.now(timezone.utc)

    # Raises before any write if one item is missing or short
    await inventory.deduct_all_or_nothing(session_maker, items, now=now, ttl=ttl)

    # Stock is decremented; now record the order
    order_id = new_order_id()
    await save_order(
        session_maker,
        order_id=order_id,
        items=items,
        lane_number=lane_number,
        is_paid=False,
        customer_details=None,
        now=now,
    )
    await _append_log_row(
        session_maker,
        order_log,
        now=now,
        order_id=order_id,
        lane_number=lane_number,
        is_paid=False,
        items=items,
        customer_details=None,
    )
    return SettlementOutcome(order_id=order_id, is_paid=False)

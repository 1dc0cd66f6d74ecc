from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.errors import OrderError, ValidationError
from core.sheets_client import get_order_log
from db.database import get_session_maker
from routers.errors import as_http_error
from schemas.orders import (
    ReleaseReservationRequest,
    ReserveStockRequest,
    SendOrderRequest,
    SendOrderResponse,
    SuccessResponse,
)
from services import inventory, settlement
from services.settlement import OrderLog
from services.shop import ShopFlagLoader, get_shop_flag_loader, require_open

logger = structlog.get_logger(__name__)

router = APIRouter()


def _reservation_ttl() -> timedelta:
    return timedelta(seconds=settings.reservation_ttl_seconds)


@router.post("/reserve-stock", response_model=SuccessResponse)
async def reserve_stock(
    payload: ReserveStockRequest,
    session_maker: async_sessionmaker = Depends(get_session_maker),
    load_flag: ShopFlagLoader = Depends(get_shop_flag_loader),
):
    """
    Hold the requested quantities for a checkout session for 10 minutes.

    - Repeated calls from the same session add to its hold and refresh it.
    - Items are reserved independently; on failure, holds already placed for
      other items stay until released or expired.
    """
    try:
        await require_open(load_flag)
        if not payload.session_id:
            raise ValidationError("Missing sessionId")
        await inventory.reserve_items(
            session_maker, payload.items, payload.session_id, ttl=_reservation_ttl()
        )
        return SuccessResponse()
    except OrderError as e:
        logger.warning("Stock reservation error", session_id=payload.session_id, error=str(e))
        raise as_http_error(e)
    except Exception as e:
        logger.exception("Stock reservation failed", session_id=payload.session_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to reserve stock: {e}",
        )


@router.post("/release-reservation", response_model=SuccessResponse)
async def release_reservation(
    payload: ReleaseReservationRequest,
    session_maker: async_sessionmaker = Depends(get_session_maker),
):
    """Cancel/abandon path. Releasing holds that do not exist is fine."""
    if not payload.session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing sessionId")
    try:
        released = await inventory.release_items(session_maker, payload.items, payload.session_id)
        logger.info("Reservations released", session_id=payload.session_id, released=released)
        return SuccessResponse()
    except Exception:
        logger.exception("Release reservation error", session_id=payload.session_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to release reservations",
        )


@router.post("/send-order", response_model=SendOrderResponse)
async def send_order(
    payload: SendOrderRequest,
    session_maker: async_sessionmaker = Depends(get_session_maker),
    load_flag: ShopFlagLoader = Depends(get_shop_flag_loader),
    order_log: OrderLog = Depends(get_order_log),
):
    """Pay-at-table order: all items are deducted together or none are."""
    try:
        await require_open(load_flag)
        if not payload.lane_number:
            raise ValidationError("Missing items or laneNumber")
        outcome = await settlement.settle_table_order(
            session_maker,
            order_log,
            items=payload.items,
            lane_number=payload.lane_number,
            ttl=_reservation_ttl(),
        )
        return SendOrderResponse(message="Order received and saved", order_id=outcome.order_id)
    except OrderError as e:
        logger.warning("send-order rejected", lane_number=payload.lane_number, error=str(e))
        raise as_http_error(e)
    except Exception as e:
        logger.exception("send-order failed", lane_number=payload.lane_number)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to send order: {e}",
        )

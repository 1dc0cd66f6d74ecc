import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.errors import ShopClosedError, SignatureVerificationError
from core.sheets_client import get_order_log
from core.stripe_client import CHECKOUT_COMPLETED, StripeGateway, get_payment_gateway
from db.database import get_session_maker
from routers.errors import as_http_error
from schemas.orders import CheckoutSessionRequest, CheckoutSessionResponse, LineItem
from services import settlement
from services.settlement import OrderLog
from services.shop import ShopFlagLoader, get_shop_flag_loader, require_open

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/create-checkout-session", response_model=CheckoutSessionResponse)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    gateway: StripeGateway = Depends(get_payment_gateway),
    load_flag: ShopFlagLoader = Depends(get_shop_flag_loader),
):
    try:
        await require_open(load_flag)
        url = await gateway.create_checkout_session(payload.items, payload.lane)
        return CheckoutSessionResponse(url=url)
    except ShopClosedError as e:
        raise as_http_error(e)
    except Exception as e:
        logger.exception("Stripe checkout session error", lane=payload.lane)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/stripe-webhook")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_payment_gateway),
    session_maker: async_sessionmaker = Depends(get_session_maker),
    order_log: OrderLog = Depends(get_order_log),
):
    """
    Finalize a paid checkout.

    Not gated by the shop flag: the money is already collected, so the
    order must be recorded even after closing.
    """
    # Signature is computed over the exact bytes Stripe sent
    body = await request.body()
    try:
        event = gateway.construct_event(body, request.headers.get("stripe-signature"))
    except SignatureVerificationError as e:
        logger.warning("Webhook verification failed", error=str(e))
        raise as_http_error(e)

    if event.type != CHECKOUT_COMPLETED:
        logger.info("Unhandled Stripe event", event_type=event.type)
        return JSONResponse(status_code=status.HTTP_200_OK, content={"received": True})

    logger.info("Stripe checkout completed", session_id=event.session_id)
    try:
        lines = await gateway.list_line_items(event.session_id)
        items = [LineItem(**li) for li in lines]
        outcome = await settlement.settle_paid_order(
            session_maker,
            order_log,
            session_id=event.session_id,
            items=items,
            lane_number=event.lane_number,
            customer_details=event.customer_details,
        )
    except Exception:
        logger.exception("Stripe webhook handling error", session_id=event.session_id)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to process order"},
        )

    return {
        "received": True,
        "order_id": outcome.order_id,
        "duplicate": outcome.duplicate,
        "skipped": [d.name for d in outcome.skipped],
    }

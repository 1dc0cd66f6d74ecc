from fastapi import HTTPException, status

from core.errors import (
    InsufficientStockError,
    ItemNotFoundError,
    OrderError,
    OrderLogError,
    PersistenceError,
    ShopClosedError,
    SignatureVerificationError,
    ValidationError,
)

STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (SignatureVerificationError, status.HTTP_400_BAD_REQUEST),
    (ShopClosedError, status.HTTP_403_FORBIDDEN),
    (ItemNotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientStockError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (OrderLogError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def as_http_error(e: OrderError) -> HTTPException:
    """Map a domain error to the HTTPException the routers raise."""
    for error_type, code in STATUS_BY_ERROR:
        if isinstance(e, error_type):
            return HTTPException(status_code=code, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

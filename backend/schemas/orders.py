from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.keys import item_key, item_label


class LineItem(BaseModel):
    """One cart line as sent by the storefront."""
    id: Optional[str] = None
    name: Optional[str] = None
    quantity: int = Field(default=0, ge=0)
    price: Optional[float] = Field(default=None, ge=0)

    @field_validator("id", "name", mode="before")
    @classmethod
    def _strip_nullable(cls, v) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @property
    def key(self) -> str:
        return item_key(self)

    @property
    def label(self) -> str:
        return item_label(self)

    def snapshot(self) -> dict:
        """What gets stored on the order record."""
        out = {"name": self.name or self.id, "quantity": int(self.quantity)}
        if self.id:
            out["id"] = self.id
        return out


class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ReserveStockRequest(_CamelRequest):
    items: List[LineItem] = []
    session_id: Optional[str] = Field(default=None, alias="sessionId")


class ReleaseReservationRequest(ReserveStockRequest):
    pass


class SendOrderRequest(_CamelRequest):
    items: List[LineItem] = []
    lane_number: Optional[Union[str, int]] = Field(default=None, alias="laneNumber")

    @field_validator("lane_number")
    @classmethod
    def _lane_as_str(cls, v) -> Optional[str]:
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CheckoutSessionRequest(_CamelRequest):
    items: List[LineItem] = []
    lane: Optional[Union[str, int]] = None

    @field_validator("lane")
    @classmethod
    def _lane_as_str(cls, v) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip() or None


class SuccessResponse(BaseModel):
    success: bool = True


class SendOrderResponse(BaseModel):
    message: str
    order_id: str = Field(serialization_alias="orderId")


class CheckoutSessionResponse(BaseModel):
    url: str

from typing import Optional

from pydantic import BaseModel


class CandyAvailability(BaseModel):
    id: str
    name: str
    stock: int
    reserved: int
    available: int
    price: Optional[float] = None


class ShopStatus(BaseModel):
    is_open: bool

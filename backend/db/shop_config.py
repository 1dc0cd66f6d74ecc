from sqlalchemy import Boolean, Column, String

from .database import Base

SHOP_CONFIG_ID = "shop"


class ShopConfig(Base):
    __tablename__ = "shop_config"

    id = Column(String, primary_key=True, default=SHOP_CONFIG_ID)
    is_open = Column(Boolean, nullable=False, default=True)

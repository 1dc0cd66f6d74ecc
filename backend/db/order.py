from sqlalchemy import JSON, Boolean, Column, DateTime, String
from sqlalchemy.sql import func

from .database import Base


class Order(Base):
    """Written once per settled order. Only ``logged`` changes afterwards."""
    __tablename__ = "orders"

    # Stripe checkout session id for paid orders, uuid hex for pay-at-table
    id = Column(String, primary_key=True)
    items = Column(JSON, nullable=False)  # [{"name", "quantity", "id"?}]
    lane_number = Column(String, nullable=True, index=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    customer_details = Column(JSON, nullable=True)
    # Set once the order log row is written; the only field updated after insert
    logged = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

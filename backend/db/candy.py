from sqlalchemy import JSON, Column, Integer, Numeric, String

from .database import Base


class Candy(Base):
    """
    One sellable item. ``id`` is the explicit item id or the name slug.

    ``reservations`` maps checkout session id -> {"quantity", "timestamp"}
    (epoch ms). Always assign a new dict when changing it so the ORM sees
    the update.
    """
    __tablename__ = "candies"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=True)
    reservations = Column(JSON, nullable=False, default=dict)

import hashlib
import hmac
import json
import os
import time

os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

from core.errors import OrderLogError
from core.stripe_client import StripeGateway
from db.candy import Candy
from db.database import Base
from db.order import Order
from db.shop_config import SHOP_CONFIG_ID, ShopConfig

WEBHOOK_SECRET = "whsec_test_secret"


class FakeOrderLog:
    """Collects rows in memory; set ``fail`` to make appends raise."""

    def __init__(self):
        self.rows = []
        self.fail = False

    async def append(self, row, order_id=None):
        if self.fail:
            raise OrderLogError("Failed to write order to Google Sheet.")
        self.rows.append(row)


class FakeGateway(StripeGateway):
    """Real signature checks, canned Stripe API responses."""

    def __init__(self):
        super().__init__("sk_test", WEBHOOK_SECRET, success_url="https://example.test/ok", cancel_url="https://example.test/no")
        self.line_items = {}
        self.created = []

    async def create_checkout_session(self, items, lane):
        self.created.append((list(items), lane))
        return "https://checkout.stripe.test/pay/cs_test_new"

    async def list_line_items(self, session_id):
        return self.line_items.get(session_id, [])


def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(timestamp or time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def checkout_completed_event(session_id: str, lane: str = "7", customer=None) -> bytes:
    return json.dumps(
        {
            "id": "evt_test_1",
            "object": "event",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session_id,
                    "object": "checkout.session",
                    "metadata": {"lane_number": lane},
                    "customer_details": customer,
                }
            },
        }
    ).encode()


class StoreHelper:
    """Seeds and inspects the test database through a plain sync engine."""

    def __init__(self, engine):
        self._engine = engine
        self._session = sessionmaker(engine, expire_on_commit=False)

    def add_candy(self, key, stock, reservations=None, name=None, price=None):
        with self._session() as db:
            db.add(
                Candy(
                    id=key,
                    name=name or key.replace("-", " ").title(),
                    stock=stock,
                    price=price,
                    reservations=reservations or {},
                )
            )
            db.commit()

    def candy(self, key):
        with self._session() as db:
            return db.get(Candy, key)

    def order(self, order_id):
        with self._session() as db:
            return db.get(Order, order_id)

    def order_count(self):
        with self._session() as db:
            return db.execute(select(func.count()).select_from(Order)).scalar_one()

    def set_shop_open(self, is_open):
        with self._session() as db:
            db.merge(ShopConfig(id=SHOP_CONFIG_ID, is_open=is_open))
            db.commit()

    def drop_table(self, name):
        with self._engine.begin() as conn:
            conn.exec_driver_sql(f"DROP TABLE {name}")


@pytest.fixture()
def db_path(tmp_path):
    path = tmp_path / "candy.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return path


@pytest.fixture()
def session_maker(db_path):
    # NullPool: no connection outlives the event loop that opened it
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)

    # SQLite ignores FOR UPDATE; BEGIN IMMEDIATE takes the write lock up front
    @event.listens_for(engine.sync_engine, "connect")
    def _driver_autocommit(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture()
def store(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    yield StoreHelper(engine)
    engine.dispose()


@pytest.fixture()
def order_log():
    return FakeOrderLog()


@pytest.fixture()
def gateway():
    return FakeGateway()

"""Paid (webhook) and pay-at-table settlement."""

import json
from datetime import datetime, timezone

import pytest

from core.errors import InsufficientStockError, OrderLogError, PersistenceError
from core.reservations import to_epoch_ms
from schemas.orders import LineItem
from services import settlement

NOW = datetime(2026, 10, 19, 18, 0, tzinfo=timezone.utc)


def _line(name, quantity):
    return LineItem(name=name, quantity=quantity)


class TestSettlePaidOrder:
    async def test_happy_path(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10, {"cs_x": {"quantity": 4, "timestamp": to_epoch_ms(NOW)}})
        customer = {"email": "bowler@example.com", "name": "Pat"}

        outcome = await settlement.settle_paid_order(
            session_maker,
            order_log,
            session_id="cs_x",
            items=[_line("Gummy Bears", 4)],
            lane_number="7",
            customer_details=customer,
            now=NOW,
        )

        assert outcome.order_id == "cs_x"
        assert outcome.released_holds == 1
        assert outcome.skipped == []

        candy = store.candy("gummy-bears")
        assert candy.stock == 6
        assert candy.reservations == {}

        order = store.order("cs_x")
        assert order.is_paid is True
        assert order.lane_number == "7"
        assert order.items == [{"name": "Gummy Bears", "quantity": 4}]
        assert order.customer_details == customer

        assert len(order_log.rows) == 1
        row = order_log.rows[0]
        assert row[1:5] == ["cs_x", "7", "Yes", "Gummy Bears x4"]
        assert json.loads(row[5]) == customer

    async def test_missing_item_does_not_fail_settlement(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)

        outcome = await settlement.settle_paid_order(
            session_maker,
            order_log,
            session_id="cs_y",
            items=[_line("Mystery Candy", 1), _line("Gummy Bears", 2)],
            lane_number="3",
            customer_details=None,
            now=NOW,
        )

        assert [d.status for d in outcome.deductions] == ["missing", "deducted"]
        assert [d.name for d in outcome.skipped] == ["Mystery Candy"]
        assert store.candy("gummy-bears").stock == 8
        assert store.order("cs_y") is not None
        assert order_log.rows[0][4] == "Mystery Candy x1, Gummy Bears x2"
        assert order_log.rows[0][5] == ""

    async def test_short_stock_is_skipped_not_raised(self, session_maker, store, order_log):
        store.add_candy("sour-worms", 1)
        outcome = await settlement.settle_paid_order(
            session_maker,
            order_log,
            session_id="cs_z",
            items=[_line("Sour Worms", 3)],
            lane_number="1",
            customer_details=None,
            now=NOW,
        )
        assert outcome.skipped[0].status == "insufficient"
        assert store.candy("sour-worms").stock == 1
        assert store.order("cs_z").is_paid

    async def test_redelivered_event_is_ignored(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)
        kwargs = dict(
            session_id="cs_x",
            items=[_line("Gummy Bears", 4)],
            lane_number="7",
            customer_details=None,
            now=NOW,
        )
        await settlement.settle_paid_order(session_maker, order_log, **kwargs)
        again = await settlement.settle_paid_order(session_maker, order_log, **kwargs)

        assert again.duplicate is True
        assert store.candy("gummy-bears").stock == 6
        assert len(order_log.rows) == 1

    async def test_log_failure_surfaces_after_commit(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10, {"cs_x": {"quantity": 4, "timestamp": to_epoch_ms(NOW)}})
        order_log.fail = True

        with pytest.raises(OrderLogError):
            await settlement.settle_paid_order(
                session_maker,
                order_log,
                session_id="cs_x",
                items=[_line("Gummy Bears", 4)],
                lane_number="7",
                customer_details=None,
                now=NOW,
            )

        # Nothing is rolled back
        assert store.order("cs_x") is not None
        candy = store.candy("gummy-bears")
        assert candy.stock == 6
        assert candy.reservations == {}

    async def test_redelivery_writes_log_row_missed_the_first_time(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10, {"cs_x": {"quantity": 4, "timestamp": to_epoch_ms(NOW)}})
        kwargs = dict(
            session_id="cs_x",
            items=[_line("Gummy Bears", 4)],
            lane_number="7",
            customer_details=None,
            now=NOW,
        )

        order_log.fail = True
        with pytest.raises(OrderLogError):
            await settlement.settle_paid_order(session_maker, order_log, **kwargs)
        assert store.order("cs_x").logged is False

        order_log.fail = False
        again = await settlement.settle_paid_order(session_maker, order_log, **kwargs)

        assert again.duplicate is True
        assert again.deductions == []
        assert len(order_log.rows) == 1
        assert order_log.rows[0][1:4] == ["cs_x", "7", "Yes"]
        assert store.order("cs_x").logged is True
        # Stock deducted exactly once
        assert store.candy("gummy-bears").stock == 6

        await settlement.settle_paid_order(session_maker, order_log, **kwargs)
        assert len(order_log.rows) == 1

    async def test_order_write_failure_is_fatal(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)
        store.drop_table("orders")

        with pytest.raises(PersistenceError):
            await settlement.settle_paid_order(
                session_maker,
                order_log,
                session_id="cs_x",
                items=[_line("Gummy Bears", 4)],
                lane_number="7",
                customer_details=None,
                now=NOW,
            )
        assert store.candy("gummy-bears").stock == 10
        assert order_log.rows == []


class TestSettleTableOrder:
    async def test_happy_path(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)
        store.add_candy("sour-worms", 5)

        outcome = await settlement.settle_table_order(
            session_maker,
            order_log,
            items=[_line("Gummy Bears", 3), _line("Sour Worms", 2)],
            lane_number="12",
            now=NOW,
        )

        assert outcome.is_paid is False
        assert len(outcome.order_id) == 32
        assert store.candy("gummy-bears").stock == 7
        assert store.candy("sour-worms").stock == 3

        order = store.order(outcome.order_id)
        assert order.is_paid is False
        assert order.customer_details is None
        assert order.logged is True
        assert order_log.rows[0][1:5] == [outcome.order_id, "12", "No", "Gummy Bears x3, Sour Worms x2"]

    async def test_all_or_nothing(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)
        store.add_candy("sour-worms", 5)

        with pytest.raises(InsufficientStockError) as exc:
            await settlement.settle_table_order(
                session_maker,
                order_log,
                items=[_line("Gummy Bears", 3), _line("Sour Worms", 100)],
                lane_number="12",
                now=NOW,
            )
        assert "Sour Worms" in str(exc.value)
        assert store.candy("gummy-bears").stock == 10
        assert store.candy("sour-worms").stock == 5
        assert store.order_count() == 0
        assert order_log.rows == []

    async def test_each_order_gets_a_fresh_id(self, session_maker, store, order_log):
        store.add_candy("gummy-bears", 10)
        first = await settlement.settle_table_order(
            session_maker, order_log, items=[_line("Gummy Bears", 1)], lane_number="1", now=NOW
        )
        second = await settlement.settle_table_order(
            session_maker, order_log, items=[_line("Gummy Bears", 1)], lane_number="1", now=NOW
        )
        assert first.order_id != second.order_id
        assert store.order_count() == 2


def test_build_log_row_formats_fields():
    row = settlement.build_log_row(
        now=NOW,
        order_id="abc",
        lane_number=None,
        is_paid=False,
        items=[_line("Gummy Bears", 2)],
        customer_details=None,
    )
    assert row[1:] == ["abc", "", "No", "Gummy Bears x2", ""]
    assert row[0].count("/") == 2

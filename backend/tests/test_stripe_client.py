import json
from types import SimpleNamespace

import pytest
import stripe

from core.errors import SignatureVerificationError
from core.stripe_client import CHECKOUT_COMPLETED, StripeGateway
from schemas.orders import LineItem

from conftest import WEBHOOK_SECRET, checkout_completed_event, sign_payload


@pytest.fixture()
def real_gateway():
    return StripeGateway(
        "sk_test_123",
        WEBHOOK_SECRET,
        success_url="https://example.test/success",
        cancel_url="https://example.test/cancel",
    )


class TestConstructEvent:
    def test_valid_checkout_completed(self, real_gateway):
        payload = checkout_completed_event("cs_test_1", lane="9", customer={"email": "a@b.c"})
        event = real_gateway.construct_event(payload, sign_payload(payload))

        assert event.type == CHECKOUT_COMPLETED
        assert event.session_id == "cs_test_1"
        assert event.lane_number == "9"
        assert event.customer_details == {"email": "a@b.c"}

    def test_bad_signature(self, real_gateway):
        payload = checkout_completed_event("cs_test_1")
        with pytest.raises(SignatureVerificationError):
            real_gateway.construct_event(payload, sign_payload(payload, secret="whsec_wrong"))

    def test_missing_signature_header(self, real_gateway):
        with pytest.raises(SignatureVerificationError):
            real_gateway.construct_event(checkout_completed_event("cs_test_1"), None)

    def test_tampered_body(self, real_gateway):
        payload = checkout_completed_event("cs_test_1")
        header = sign_payload(payload)
        with pytest.raises(SignatureVerificationError):
            real_gateway.construct_event(checkout_completed_event("cs_test_2"), header)

    def test_other_event_types_carry_no_session(self, real_gateway):
        payload = json.dumps({"id": "evt_2", "object": "event", "type": "payment_intent.created", "data": {"object": {"id": "pi_1"}}}).encode()
        event = real_gateway.construct_event(payload, sign_payload(payload))
        assert event.type == "payment_intent.created"
        assert event.session_id is None


async def test_create_checkout_session_line_items(real_gateway, monkeypatch):
    captured = {}

    def _create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_test_new", url="https://checkout.stripe.test/cs_test_new")

    monkeypatch.setattr(stripe.checkout.Session, "create", _create)
    url = await real_gateway.create_checkout_session(
        [LineItem(name="Gummy Bears", price=4.99, quantity=2)], "5"
    )

    assert url == "https://checkout.stripe.test/cs_test_new"
    assert captured["mode"] == "payment"
    assert captured["metadata"] == {"lane_number": "5"}
    assert captured["success_url"] == "https://example.test/success"
    assert captured["line_items"] == [
        {
            "price_data": {
                "currency": "usd",
                "product_data": {"name": "Gummy Bears"},
                "unit_amount": 499,
            },
            "quantity": 2,
        }
    ]


async def test_list_line_items(real_gateway, monkeypatch):
    def _list(session_id, **kwargs):
        assert session_id == "cs_test_1"
        assert kwargs["limit"] == 100
        return SimpleNamespace(
            data=[
                SimpleNamespace(description="Gummy Bears", quantity=2),
                SimpleNamespace(description="Sour Worms", quantity=1),
            ]
        )

    monkeypatch.setattr(stripe.checkout.Session, "list_line_items", _list)
    assert await real_gateway.list_line_items("cs_test_1") == [
        {"name": "Gummy Bears", "quantity": 2},
        {"name": "Sour Worms", "quantity": 1},
    ]

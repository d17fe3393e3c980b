import hashlib
import logging

import httpx
import pytest

from apps.orders.domain import Actor, OrderStatus, PaymentMethod, TransitionEvent
from apps.orders.tracking import ConversionTracker, build_event, hash_email


def _run_inline(fn, *args):
    fn(*args)


@pytest.fixture
def tracking_settings(settings):
    settings.CONVERSION_PIXEL_ID = "pixel-1"
    settings.CONVERSION_ACCESS_TOKEN = "secret"
    settings.CONVERSION_API_VERSION = "v19.0"
    return settings


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, params=None, json=None, timeout=None, **kw):
        sent.append({"url": url, "params": params, "json": json})
        return httpx.Response(200, json={"events_received": 1}, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    return sent


def _event(order, old, new):
    return TransitionEvent(order.id, old, new, Actor.GATEWAY, order)


def test_email_is_normalised_before_hashing():
    assert hash_email("  Ana@Example.com ") == hashlib.sha256(b"ana@example.com").hexdigest()


def test_purchase_event_payload(place):
    order = place(PaymentMethod.GATEWAY)

    event = build_event("Purchase", order, now=1700000000)

    assert event["event_id"] == f"Purchase-{order.id}"
    assert event["event_time"] == 1700000000
    assert event["user_data"]["em"] == [hash_email("ana@example.com")]
    assert event["custom_data"]["value"] == order.total
    assert event["custom_data"]["num_items"] == 2
    assert event["custom_data"]["contents"] == [{"id": "1-M", "quantity": 2, "item_price": 1000}]


def test_creation_and_payment_are_reported(place, tracking_settings, posts):
    order = place(PaymentMethod.GATEWAY)
    tracker = ConversionTracker(submit=_run_inline)

    tracker.publish(_event(order, None, OrderStatus.PENDING))
    tracker.publish(_event(order, OrderStatus.PENDING, OrderStatus.PAID))

    assert [p["json"]["data"][0]["event_name"] for p in posts] == ["InitiateCheckout", "Purchase"]
    assert posts[0]["url"] == "https://graph.facebook.com/v19.0/pixel-1/events"
    assert posts[0]["params"] == {"access_token": "secret"}


def test_other_transitions_are_not_reported(place, tracking_settings, posts):
    order = place(PaymentMethod.TRANSFER)
    tracker = ConversionTracker(submit=_run_inline)

    tracker.publish(_event(order, OrderStatus.PENDING, OrderStatus.CANCELLED))
    tracker.publish(_event(order, OrderStatus.PENDING, OrderStatus.AWAITING_CONFIRMATION))

    assert posts == []


def test_missing_credentials_only_warn(place, settings, posts, caplog):
    settings.CONVERSION_PIXEL_ID = ""
    order = place(PaymentMethod.GATEWAY)

    with caplog.at_level(logging.WARNING, logger="orders.tracking"):
        ConversionTracker(submit=_run_inline).publish(_event(order, None, OrderStatus.PENDING))

    assert posts == []
    assert any(r.getMessage() == "conversion.not_configured" for r in caplog.records)


def test_delivery_failure_is_logged_not_raised(place, tracking_settings, monkeypatch, caplog):
    def failing_post(url, **kw):
        raise httpx.ConnectError("no route")

    monkeypatch.setattr(httpx, "post", failing_post)
    order = place(PaymentMethod.GATEWAY)

    ConversionTracker(submit=_run_inline).publish(_event(order, OrderStatus.PENDING, OrderStatus.PAID))

    assert any(r.getMessage() == "conversion.send_failed" for r in caplog.records)

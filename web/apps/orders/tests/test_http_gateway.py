"""Unit tests for the HTTP client to the hosted-checkout provider.

These tests monkeypatch ``httpx.Client.request`` and assert how the
client builds requests, retries, maps failures to ``GatewayError`` codes
and feeds the circuit breaker.
"""

import httpx
import pytest

from apps.orders.domain import CustomerContact, ValidatedLine
from apps.orders.errors import GatewayError
from apps.orders.http_adapters import CircuitBreaker, HttpGatewayClient, _gateway_cb, session_body


class DummyResp:
    """Minimal httpx-like response stub for adapter tests."""

    def __init__(self, status_code=200, json_data=None, bad_json=False):
        self.status_code = status_code
        self._json = json_data or {}
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("not json")
        return self._json


LINES = [ValidatedLine(7, "Mom Jean", "M", 2, 1000)]
PAYER = CustomerContact("Ana", "Pérez", "ana@example.com", "3415551234")


@pytest.fixture
def provider(monkeypatch):
    """Fake provider: records every request and answers from ``answers`` in order.

    An exception instance in ``answers`` is raised instead of returned.
    """

    class FakeProvider:
        def __init__(self):
            self.requests = []
            self.answers = []

    fake = FakeProvider()

    def fake_request(self, method, url, json=None, headers=None, **kw):
        fake.requests.append({"method": method, "url": url, "json": json, "headers": dict(headers or {})})
        answer = fake.answers.pop(0) if fake.answers else DummyResp(200, {})
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    return fake


def _client(**kw):
    return HttpGatewayClient(base_url="http://gateway:9002/", timeout=1.0, access_token=kw.get("token", "tok-123"))


def test_session_body_uses_server_prices_and_shipping(settings):
    settings.GATEWAY_NOTIFICATION_URL = "http://api.local/api/payments/webhook/"
    body = session_body(LINES, 500, "http://shop/ok", "http://shop/ko", "order-1", PAYER)

    assert body["items"][0] == {
        "id": "7-M",
        "title": "Mom Jean (Size: M)",
        "quantity": 2,
        "unit_price": 1000,
        "currency_id": settings.GATEWAY_CURRENCY,
    }
    assert body["items"][1]["id"] == "shipping" and body["items"][1]["unit_price"] == 500
    assert body["back_urls"] == {"success": "http://shop/ok", "failure": "http://shop/ko", "pending": "http://shop/ok"}
    assert body["external_reference"] == "order-1"
    assert body["notification_url"] == "http://api.local/api/payments/webhook/"
    assert body["payer"]["email"] == "ana@example.com"


def test_session_body_without_shipping_has_no_shipping_item():
    body = session_body(LINES, 0, "http://shop/ok", "http://shop/ko", "order-1")
    assert [i["id"] for i in body["items"]] == ["7-M"]
    assert "payer" not in body


def test_create_session_ok(provider):
    provider.answers.append(DummyResp(201, {"id": "pref-1", "init_point": "http://gateway/checkout/pref-1"}))

    session = _client().create_checkout_session(LINES, 0, "http://shop/ok", "http://shop/ko", "order-1", PAYER)

    assert session.session_id == "pref-1"
    assert session.redirect_url == "http://gateway/checkout/pref-1"
    req = provider.requests[0]
    assert (req["method"], req["url"]) == ("POST", "http://gateway:9002/checkout/preferences")
    assert req["headers"]["Authorization"] == "Bearer tok-123"
    assert req["headers"]["X-Idempotency-Key"] == "order-1"


def test_no_token_sends_no_authorization(provider):
    provider.answers.append(DummyResp(200, {"id": "1", "status": "approved"}))
    _client(token="").fetch_payment("1")
    assert "Authorization" not in provider.requests[0]["headers"]


def test_session_without_redirect_is_bad_response(provider):
    provider.answers.append(DummyResp(201, {"id": "pref-1"}))
    with pytest.raises(GatewayError) as e:
        _client().create_checkout_session(LINES, 0, "http://shop/ok", "http://shop/ko", "order-1")
    assert e.value.code == "GATEWAY_BAD_RESPONSE"


def test_fetch_payment_maps_fields(provider):
    provider.answers.append(
        DummyResp(200, {"id": 1001, "status": "approved", "external_reference": "order-1", "transaction_amount": 2000})
    )

    payment = _client().fetch_payment("1001")

    assert (payment.payment_id, payment.status, payment.external_reference, payment.amount) == (
        "1001",
        "approved",
        "order-1",
        2000,
    )
    assert provider.requests[0]["url"] == "http://gateway:9002/v1/payments/1001"


def test_retries_5xx_then_succeeds(provider, settings):
    settings.HTTP_RETRY_MAX = 3
    provider.answers.extend([DummyResp(502), httpx.ConnectError("boom"), DummyResp(200, {"id": "1", "status": "pending"})])

    payment = _client().fetch_payment("1")

    assert payment.status == "pending"
    assert [r["headers"]["X-Retry-Count"] for r in provider.requests] == ["0", "1", "2"]
    assert _gateway_cb.state == "CLOSED"


def test_timeouts_exhaust_retries(provider, settings):
    settings.HTTP_RETRY_MAX = 2
    provider.answers.extend([httpx.ReadTimeout("slow"), httpx.ReadTimeout("slow")])

    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("1")

    assert e.value.code == "GATEWAY_TIMEOUT"
    assert len(provider.requests) == 2


def test_persistent_5xx_is_unavailable(provider, settings):
    settings.HTTP_RETRY_MAX = 2
    provider.answers.extend([DummyResp(503), DummyResp(503)])
    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("1")
    assert e.value.code == "GATEWAY_UNAVAILABLE"


def test_4xx_is_not_retried(provider):
    provider.answers.append(DummyResp(404, {"message": "not found"}))

    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("404")

    assert e.value.code == "GATEWAY_BAD_RESPONSE"
    assert len(provider.requests) == 1
    assert _gateway_cb.state == "CLOSED"


def test_non_json_answer_is_bad_response(provider):
    provider.answers.append(DummyResp(200, bad_json=True))
    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("1")
    assert e.value.code == "GATEWAY_BAD_RESPONSE"


def test_open_circuit_fails_fast(provider, settings):
    settings.HTTP_RETRY_MAX = 1
    for _ in range(_gateway_cb.fail_threshold):
        provider.answers.append(httpx.ConnectError("down"))
        with pytest.raises(GatewayError):
            _client().fetch_payment("1")
    sent = len(provider.requests)

    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("1")

    assert e.value.code == "CIRCUIT_OPEN"
    assert len(provider.requests) == sent


def test_breaker_half_open_probe():
    cb = CircuitBreaker("t", fail_threshold=2, reset_timeout=0.0)
    cb.on_failure()
    cb.on_failure()

    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(GatewayError) as e:
        cb.before_call()
    assert e.value.data["probe_in_flight"] is True

    cb.on_success()
    assert cb.state == "CLOSED"


def test_breaker_failed_probe_reopens():
    cb = CircuitBreaker("t", fail_threshold=1, reset_timeout=60.0)
    cb.on_failure()
    assert cb.state == "OPEN"
    cb.reset_timeout = 0.0
    assert cb.before_call() == "HALF_OPEN"
    cb.reset_timeout = 60.0
    cb.on_failure()
    assert cb.state == "OPEN"


def test_payment_id_is_sent_as_one_path_segment(provider):
    provider.answers.append(DummyResp(200, {"id": 1, "status": "approved"}))

    _client().fetch_payment("../../checkout/preferences")

    assert provider.requests[0]["url"] == "http://gateway:9002/v1/payments/..%2F..%2Fcheckout%2Fpreferences"


@pytest.mark.parametrize(
    "body",
    [
        [{"id": 1, "status": "approved"}],
        "approved",
        {"id": 1, "status": "approved", "transaction_amount": "n/a"},
        {"id": 1, "status": "approved", "transaction_amount": {"value": 10}},
        {"id": 1, "status": ["approved"]},
    ],
)
def test_malformed_payment_is_bad_response(provider, body):
    provider.answers.append(DummyResp(200, body))

    with pytest.raises(GatewayError) as e:
        _client().fetch_payment("1")

    assert e.value.code == "GATEWAY_BAD_RESPONSE"

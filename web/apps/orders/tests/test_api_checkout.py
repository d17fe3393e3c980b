import pytest

from apps.orders.models import CustomerModel, OrderModel

CHECKOUT_URL = "/api/orders/checkout/"


def _post(client, payload, **headers):
    return client.post(CHECKOUT_URL, data=payload, content_type="application/json", **headers)


@pytest.mark.django_db
def test_transfer_checkout_reserves_stock_and_returns_bank_details(client, settings, make_product, stock_of, checkout_payload):
    settings.TRANSFER_BANK_DETAILS = {"cvu": "0000003100000000000001", "alias": "denim.rosario", "holder": "Denim SRL"}
    p = make_product(price=1000, stock={"M": 3})

    r = _post(client, checkout_payload(p, quantity=2, method="transfer", price=1))

    assert r.status_code == 201, r.content
    order = r.json()["order"]
    assert "redirect_url" not in r.json()
    assert order["status"] == "pending"
    assert order["payment_method"] == "transfer"
    assert order["items"][0]["unit_price"] == 1000
    assert (order["subtotal"], order["discount"], order["total"]) == (2000, 200, 1800)
    assert order["bank_details"]["alias"] == "denim.rosario"
    assert order["expires_at"]
    assert stock_of(p, "M") == 1

    row = OrderModel.objects.get(pk=order["id"])
    assert row.internal_id == order["number"]
    assert list(row.lines.values_list("variant_key", "quantity", "unit_price")) == [("M", 2, 1000)]


@pytest.mark.django_db
def test_gateway_checkout_returns_redirect_and_keeps_stock(client, gateway, make_product, stock_of, checkout_payload):
    p = make_product(price=1000, stock={"M": 3})

    r = _post(client, checkout_payload(p, quantity=2, method="gateway", shipping_cost=500))

    assert r.status_code == 201, r.content
    body = r.json()
    assert body["redirect_url"].startswith("https://sandbox.gateway.local/checkout/")
    assert "bank_details" not in body["order"]
    assert body["order"]["total"] == 2500
    assert stock_of(p, "M") == 3
    session = gateway.sessions[0]
    assert session["external_reference"] == body["order"]["id"]
    assert OrderModel.objects.get(pk=body["order"]["id"]).gateway_session_id == session["id"]


@pytest.mark.django_db
def test_out_of_stock_names_the_item(client, make_product, stock_of, checkout_payload):
    p = make_product(name="Wide Leg", stock={"M": 1})

    r = _post(client, checkout_payload(p, quantity=2))

    assert r.status_code == 422
    body = r.json()
    assert body["detail"] == "INSUFFICIENT_STOCK"
    assert "Wide Leg" in body["message"]
    assert body["data"]["variant"] == "M"
    assert OrderModel.objects.count() == 0
    assert stock_of(p, "M") == 1


@pytest.mark.django_db
def test_size_keys_match_as_stored(client, make_product, stock_of, checkout_payload):
    p = make_product(stock={"Única": 2, "m": 1})

    r = _post(client, checkout_payload(p, quantity=1, key=" Única "))
    assert r.status_code == 201, r.content
    assert r.json()["order"]["items"][0]["variant_key"] == "Única"
    assert stock_of(p, "Única") == 1

    r = _post(client, checkout_payload(p, quantity=1, key="M"))
    assert r.status_code == 422
    assert r.json()["detail"] == "VARIANT_UNAVAILABLE"


@pytest.mark.django_db
def test_unknown_product(client, make_product, checkout_payload):
    p = make_product()
    payload = checkout_payload(p)
    payload["items"][0]["product_id"] = p.id + 1000
    r = _post(client, payload)
    assert r.status_code == 422
    assert r.json()["detail"] == "PRODUCT_NOT_FOUND"


@pytest.mark.django_db
def test_malformed_payload_is_400(client, make_product, checkout_payload):
    p = make_product()
    payload = checkout_payload(p)
    payload["payment_method"] = "cash"
    assert _post(client, payload).status_code == 400

    payload = checkout_payload(p)
    del payload["shipping"]["postal_code"]
    assert _post(client, payload).status_code == 400

    payload = checkout_payload(p, email="not-an-email")
    assert _post(client, payload).status_code == 400


@pytest.mark.django_db
def test_gateway_outage_is_503_and_creates_nothing(client, gateway, make_product, checkout_payload):
    gateway.fail_with = "GATEWAY_UNAVAILABLE"
    p = make_product()

    r = _post(client, checkout_payload(p, method="gateway"))

    assert r.status_code == 503
    assert r.json()["detail"] == "GATEWAY_UNAVAILABLE"
    assert OrderModel.objects.count() == 0
    assert CustomerModel.objects.count() == 0


@pytest.mark.django_db
def test_customer_aggregate_is_found_by_email(client, make_product, checkout_payload):
    p = make_product(stock={"M": 10})
    _post(client, checkout_payload(p, quantity=1, email="Ana@Example.com"))
    _post(client, checkout_payload(p, quantity=1, email="ana@example.com", method="gateway"))

    customer = CustomerModel.objects.get()
    assert customer.email == "ana@example.com"
    assert customer.order_count == 2
    assert customer.total_spent == 0


@pytest.mark.django_db
def test_order_detail_and_404(client, make_product, checkout_payload):
    p = make_product()
    oid = _post(client, checkout_payload(p)).json()["order"]["id"]

    r = client.get(f"/api/orders/{oid}/")
    assert r.status_code == 200
    assert r.json()["id"] == oid
    assert r.json()["customer"]["name"] == "Ana Pérez"

    r = client.get("/api/orders/00000000-0000-0000-0000-000000000000/")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_request_id_is_echoed(client):
    r = client.get("/api/orders/ping/", HTTP_X_REQUEST_ID="rid-123")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["X-Request-ID"] == "rid-123"


@pytest.mark.django_db
def test_oversized_body_is_rejected(client, monkeypatch):
    from config import middleware

    monkeypatch.setattr(middleware, "MAX_API_BYTES", 10)
    r = client.post(CHECKOUT_URL, data={"items": ["x" * 50]}, content_type="application/json")
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"

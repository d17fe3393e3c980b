import logging

import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = False
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0
    settings.ORDER_EVENT_SINKS = ["apps.orders.notifications.LoggingNotifier"]
    # the "orders" logger stops propagation in production; caplog listens on root
    monkeypatch.setattr(logging.getLogger("orders"), "propagate", True)


@pytest.fixture(autouse=True)
def fresh_process_state():
    """Throttle counters, the gateway stub and the circuit breaker are process-wide."""
    from django.core.cache import cache

    from apps.orders import providers
    from apps.orders.http_adapters import _gateway_cb

    cache.clear()
    providers._gateway_stub.reset()
    _gateway_cb.reset()
    yield
    providers._gateway_stub.reset()
    _gateway_cb.reset()


@pytest.fixture
def gateway():
    from apps.orders import providers

    return providers._gateway_stub


@pytest.fixture
def make_product(db):
    from apps.catalog.models import ProductModel, VariantModel

    def _make(name="Mom Jean", price=1000, stock=None, active=True):
        product = ProductModel.objects.create(name=name, price=price, is_active=active)
        for key, qty in (stock or {"M": 3}).items():
            VariantModel.objects.create(product=product, key=key, stock=qty)
        return product

    return _make


@pytest.fixture
def stock_of():
    from apps.catalog.models import VariantModel

    def _stock(product, key="M"):
        return VariantModel.objects.get(product=product, key=key).stock

    return _stock


@pytest.fixture
def checkout_payload():
    def _payload(product, quantity=2, method="transfer", key="M", shipping_cost=0, email="ana@example.com", price=None):
        return {
            "items": [{"product_id": product.id, "variant_key": key, "quantity": quantity, "price": price}],
            "customer": {
                "first_name": "Ana",
                "last_name": "Pérez",
                "email": email,
                "phone": "3415551234",
                "doc_number": "30111222",
            },
            "shipping": {
                "street_name": "Córdoba",
                "street_number": "1234",
                "city": "Rosario",
                "province": "Santa Fe",
                "postal_code": "2000",
                "method_id": "cadete",
                "method_name": "Cadete Rosario",
                "cost": shipping_cost,
            },
            "payment_method": method,
        }

    return _payload

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest

from apps.orders.adapters import GatewayStub, InMemoryCustomers, InMemoryInventory, InMemoryOrderStore, RecordingSink
from apps.orders.checkout import CheckoutRequest, CheckoutService, RedirectUrls
from apps.orders.domain import CartLine, CustomerContact, PaymentMethod, ShippingInfo
from apps.orders.lifecycle import ExpiryWatchdog, OrderLifecycle
from apps.orders.reconciliation import PaymentReconciler

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

CONTACT = CustomerContact(first_name="Ana", last_name="Pérez", email="ana@example.com", phone="3415551234")
SHIPPING = ShippingInfo(
    street_name="Córdoba",
    street_number="1234",
    city="Rosario",
    province="Santa Fe",
    postal_code="2000",
    method_id="cadete",
    method_name="Cadete Rosario",
)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def world():
    """Every component wired to in-memory ports.

    Catalog: product 1 "Mom Jean" at 1000 with M=3, L=2; product 2
    "Wide Leg" at 1500 with S=5.
    """
    clock = FakeClock(T0)
    inventory = InMemoryInventory()
    inventory.add_product(1, "Mom Jean", 1000, {"M": 3, "L": 2})
    inventory.add_product(2, "Wide Leg", 1500, {"S": 5})
    orders = InMemoryOrderStore()
    customers = InMemoryCustomers()
    sink = RecordingSink()
    gateway = GatewayStub()
    lifecycle = OrderLifecycle(orders, inventory, customers, sink)
    watchdog = ExpiryWatchdog(lifecycle, timedelta(minutes=15), clock)
    checkout = CheckoutService(
        orders=orders,
        inventory=inventory,
        customers=customers,
        gateway=gateway,
        lifecycle=lifecycle,
        urls=RedirectUrls("http://shop.local"),
        transfer_discount=Decimal("0.10"),
        clock=clock,
    )
    return SimpleNamespace(
        clock=clock,
        inventory=inventory,
        orders=orders,
        customers=customers,
        sink=sink,
        gateway=gateway,
        lifecycle=lifecycle,
        watchdog=watchdog,
        checkout=checkout,
        reconciler=PaymentReconciler(gateway, lifecycle),
    )


@pytest.fixture
def place(world):
    def _place(method=PaymentMethod.TRANSFER, lines=None, shipping=SHIPPING, contact=CONTACT):
        lines = lines if lines is not None else [CartLine(1, "M", 2, claimed_price=1)]
        return world.checkout.place_order(CheckoutRequest(lines, contact, shipping, method)).order

    return _place


@pytest.fixture
def shipping_info():
    return SHIPPING

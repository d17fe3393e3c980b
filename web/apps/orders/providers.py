"""Service provider helpers for wiring the orders components with their ports.

Views never build services themselves; they call the ``get_*`` factories
here. The ORM-backed ledger and repositories are always used. The
payment gateway is the httpx client when ``settings.USE_HTTP_ADAPTERS``
is truthy, otherwise a process-wide ``GatewayStub`` that tests can seed
through ``get_gateway()``.
"""

from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.utils import timezone

from apps.catalog.ledger import InventoryLedger

from .adapters import GatewayStub
from .checkout import CheckoutService, RedirectUrls
from .domain import PaymentGatewayPort
from .http_adapters import HttpGatewayClient
from .lifecycle import ExpiryWatchdog, OrderLifecycle
from .notifications import EventDispatcher
from .reconciliation import PaymentReconciler
from .repository import CustomerRepository, OrderRepository

_gateway_stub = GatewayStub()


def get_gateway() -> PaymentGatewayPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpGatewayClient()
    return _gateway_stub


def get_lifecycle() -> OrderLifecycle:
    return OrderLifecycle(
        orders=OrderRepository(),
        inventory=InventoryLedger(),
        customers=CustomerRepository(),
        events=EventDispatcher(),
    )


def get_watchdog(lifecycle: OrderLifecycle | None = None) -> ExpiryWatchdog:
    return ExpiryWatchdog(
        lifecycle=lifecycle or get_lifecycle(),
        window=timedelta(minutes=settings.TRANSFER_PAYMENT_WINDOW_MINUTES),
        clock=timezone.now,
    )


def get_checkout_service() -> CheckoutService:
    lifecycle = get_lifecycle()
    return CheckoutService(
        orders=lifecycle.orders,
        inventory=lifecycle.inventory,
        customers=lifecycle.customers,
        gateway=get_gateway(),
        lifecycle=lifecycle,
        urls=RedirectUrls(settings.CLIENT_URL.rstrip("/")),
        transfer_discount=Decimal(str(settings.TRANSFER_DISCOUNT_RATE)),
        clock=timezone.now,
    )


def get_reconciler() -> PaymentReconciler:
    return PaymentReconciler(gateway=get_gateway(), lifecycle=get_lifecycle())

"""In-process stub adapters for the orders domain ports.

These stubs implement the ports without a database or network calls.
``GatewayStub`` stands in for the hosted-checkout provider when
``settings.USE_HTTP_ADAPTERS`` is False (tests, local development); the
in-memory stores back the pure domain tests, where deterministic
behavior is more useful than persistence.
"""

import threading
import uuid
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .domain import (
    CheckoutSession,
    CustomerContact,
    CustomerPort,
    EventSinkPort,
    GatewayPayment,
    InventoryPort,
    Order,
    OrderStatus,
    OrderStorePort,
    PaymentGatewayPort,
    PaymentMethod,
    ProductRecord,
    TransitionEvent,
    ValidatedLine,
    VariantRecord,
)
from .errors import GatewayError, ValidationError


class InMemoryInventory(InventoryPort):
    """Dict-backed stock ledger.

    ``decrement`` checks every variant before touching any of them, so a
    refused batch leaves stock exactly as it was.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._products: Dict[int, ProductRecord] = {}
        self._stock: Dict[tuple, int] = {}

    def add_product(
        self, product_id: int, name: str, price: int, stock: Dict[str, int], active: bool = True, unavailable=()
    ):
        with self._lock:
            self._products[product_id] = ProductRecord(
                id=product_id,
                name=name,
                price=price,
                active=active,
                variants={k: VariantRecord(key=k, stock=0, available=k not in unavailable) for k in stock},
            )
            for key, qty in stock.items():
                self._stock[(product_id, key)] = qty

    def stock(self, product_id: int, key: str) -> int:
        return self._stock[(product_id, key)]

    def get_product(self, product_id: int) -> Optional[ProductRecord]:
        with self._lock:
            product = self._products.get(product_id)
            if product is None:
                return None
            variants = {
                k: replace(v, stock=self._stock.get((product_id, k), 0)) for k, v in product.variants.items()
            }
            return replace(product, variants=variants)

    def decrement(self, lines: Iterable[ValidatedLine]) -> None:
        totals = defaultdict(int)
        for line in lines:
            totals[(line.product_id, line.variant_key)] += line.quantity
        with self._lock:
            for (product_id, key), qty in totals.items():
                if self._stock.get((product_id, key), 0) < qty:
                    raise ValidationError(
                        "INSUFFICIENT_STOCK", product_id=product_id, variant=key, requested=qty
                    )
            for k, qty in totals.items():
                self._stock[k] -= qty

    def restore(self, lines: Iterable[ValidatedLine]) -> None:
        with self._lock:
            for line in lines:
                k = (line.product_id, line.variant_key)
                if k in self._stock:
                    self._stock[k] += line.quantity


class InMemoryOrderStore(OrderStorePort):
    """Dict-backed order store; one re-entrant lock serializes every unit of work."""

    def __init__(self):
        self._lock = threading.RLock()
        self._orders: Dict[str, Order] = {}
        self._next_number = 1

    def atomic(self):
        return self._lock

    def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def lock(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def create(self, order: Order) -> Order:
        with self._lock:
            stored = replace(order, number=self._next_number)
            self._next_number += 1
            self._orders[order.id] = stored
            return stored

    def compare_and_set_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
        with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.status != expected:
                return False
            self._orders[order_id] = replace(order, status=new)
            return True

    def expired_transfer_ids(self, cutoff: datetime) -> List[str]:
        return [
            o.id
            for o in self._orders.values()
            if o.payment_method == PaymentMethod.TRANSFER and o.status == OrderStatus.PENDING and o.created_at < cutoff
        ]


class InMemoryCustomers(CustomerPort):
    def __init__(self):
        self._by_email: Dict[str, int] = {}
        self.order_count: Dict[int, int] = defaultdict(int)
        self.total_spent: Dict[int, int] = defaultdict(int)

    def find_or_create(self, contact: CustomerContact) -> int:
        email = contact.email.strip().lower()
        customer_id = self._by_email.setdefault(email, len(self._by_email) + 1)
        self.order_count[customer_id] += 1
        return customer_id

    def add_spent(self, customer_id: int, amount: int) -> None:
        self.total_spent[customer_id] += amount


class GatewayStub(PaymentGatewayPort):
    """Hosted-checkout provider stand-in.

    Sessions are recorded in ``sessions``; payment states are seeded with
    ``set_payment`` so callback handling can be driven deterministically.
    Setting ``fail_with`` to an error code makes every call raise
    ``GatewayError`` with that code.
    """

    def __init__(self):
        self.sessions: List[dict] = []
        self.payments: Dict[str, GatewayPayment] = {}
        self.fail_with: Optional[str] = None

    def _maybe_fail(self):
        if self.fail_with:
            raise GatewayError(self.fail_with)

    def create_checkout_session(
        self,
        lines: List[ValidatedLine],
        shipping_cost: int,
        success_url: str,
        failure_url: str,
        external_reference: str,
        payer: Optional[CustomerContact] = None,
    ) -> CheckoutSession:
        self._maybe_fail()
        session_id = f"pref-{uuid.uuid4().hex[:12]}"
        self.sessions.append(
            {
                "id": session_id,
                "lines": list(lines),
                "shipping_cost": shipping_cost,
                "success_url": success_url,
                "failure_url": failure_url,
                "external_reference": external_reference,
                "payer": payer,
            }
        )
        return CheckoutSession(session_id=session_id, redirect_url=f"https://sandbox.gateway.local/checkout/{session_id}")

    def set_payment(self, payment_id: str, status: str, external_reference: Optional[str], amount: Optional[int] = None):
        self.payments[str(payment_id)] = GatewayPayment(str(payment_id), status, external_reference, amount)

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        self._maybe_fail()
        payment = self.payments.get(str(payment_id))
        if payment is None:
            raise GatewayError("GATEWAY_BAD_RESPONSE", payment_id=payment_id, status_code=404)
        return payment

    def reset(self):
        self.sessions.clear()
        self.payments.clear()
        self.fail_with = None


class RecordingSink(EventSinkPort):
    def __init__(self):
        self.events: List[TransitionEvent] = []

    def publish(self, event: TransitionEvent) -> None:
        self.events.append(event)

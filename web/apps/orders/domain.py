"""Domain model for the order lifecycle.

This module holds the framework-free part of the orders app: status and
payment-method enums, the value objects that flow between components,
the ports (Protocols) that storage, inventory, the payment gateway and
event consumers implement, and the transition table of the order state
machine. Nothing here imports Django.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Order lifecycle statuses.

    ``AWAITING_CONFIRMATION`` only occurs for transfer orders (customer
    reported the transfer, admin has not verified it). ``REJECTED`` only
    occurs for gateway orders whose payment the provider declined; the
    customer may still retry on the hosted page, so it is not terminal.
    """

    PENDING = "pending"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    REJECTED = "rejected"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


class PaymentMethod(str, Enum):
    """How the customer pays: hosted-checkout redirect or bank transfer."""

    GATEWAY = "gateway"
    TRANSFER = "transfer"


class Actor(str, Enum):
    """Who is asking for a transition."""

    CUSTOMER = "customer"
    GATEWAY = "gateway"
    ADMIN = "admin"
    WATCHDOG = "watchdog"


# ---- Transition table ----
@dataclass(frozen=True)
class Rule:
    """A permitted edge of the state machine.

    Attributes:
        actors: Actors allowed to drive this edge.
        methods: Payment methods the edge applies to.
    """

    actors: frozenset
    methods: frozenset = frozenset({PaymentMethod.GATEWAY, PaymentMethod.TRANSFER})


_BOTH = frozenset({PaymentMethod.GATEWAY, PaymentMethod.TRANSFER})
_GATEWAY_ONLY = frozenset({PaymentMethod.GATEWAY})
_TRANSFER_ONLY = frozenset({PaymentMethod.TRANSFER})

TRANSITIONS: dict[tuple[OrderStatus, OrderStatus], Rule] = {
    (OrderStatus.PENDING, OrderStatus.AWAITING_CONFIRMATION): Rule(frozenset({Actor.CUSTOMER}), _TRANSFER_ONLY),
    (OrderStatus.PENDING, OrderStatus.PAID): Rule(frozenset({Actor.GATEWAY, Actor.ADMIN})),
    (OrderStatus.PENDING, OrderStatus.REJECTED): Rule(frozenset({Actor.GATEWAY}), _GATEWAY_ONLY),
    (OrderStatus.PENDING, OrderStatus.CANCELLED): Rule(frozenset({Actor.WATCHDOG, Actor.ADMIN, Actor.GATEWAY})),
    (OrderStatus.AWAITING_CONFIRMATION, OrderStatus.PAID): Rule(frozenset({Actor.ADMIN}), _TRANSFER_ONLY),
    (OrderStatus.AWAITING_CONFIRMATION, OrderStatus.CANCELLED): Rule(frozenset({Actor.ADMIN}), _TRANSFER_ONLY),
    (OrderStatus.REJECTED, OrderStatus.PAID): Rule(frozenset({Actor.GATEWAY, Actor.ADMIN}), _GATEWAY_ONLY),
    (OrderStatus.REJECTED, OrderStatus.CANCELLED): Rule(frozenset({Actor.GATEWAY, Actor.ADMIN}), _GATEWAY_ONLY),
    (OrderStatus.PAID, OrderStatus.SHIPPED): Rule(frozenset({Actor.ADMIN})),
    (OrderStatus.PAID, OrderStatus.DELIVERED): Rule(frozenset({Actor.ADMIN})),
    (OrderStatus.PAID, OrderStatus.CANCELLED): Rule(frozenset({Actor.ADMIN})),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED): Rule(frozenset({Actor.ADMIN})),
    (OrderStatus.SHIPPED, OrderStatus.CANCELLED): Rule(frozenset({Actor.ADMIN})),
}


def find_rule(current: OrderStatus, target: OrderStatus) -> Optional[Rule]:
    return TRANSITIONS.get((current, target))


def holds_reserved_stock(method: PaymentMethod, status: OrderStatus) -> bool:
    """Whether stock was reserved for this order but not yet sold.

    Transfer orders decrement stock at creation, so while they are still
    unpaid the units are a reservation that cancellation must give back.
    Gateway orders never touch stock before payment.
    """
    return method == PaymentMethod.TRANSFER and status in (
        OrderStatus.PENDING,
        OrderStatus.AWAITING_CONFIRMATION,
    )


# ---- Entities / value objects ----
@dataclass(frozen=True)
class CartLine:
    """A line as submitted by the storefront.

    ``claimed_price`` is kept only so it can be logged next to the real
    price; it never reaches pricing.
    """

    product_id: int
    variant_key: str
    quantity: int
    claimed_price: Optional[int] = None


@dataclass(frozen=True)
class VariantRecord:
    key: str
    stock: int
    available: bool = True


@dataclass(frozen=True)
class ProductRecord:
    """Authoritative product data as read from the inventory ledger."""

    id: int
    name: str
    price: int
    active: bool
    variants: dict[str, VariantRecord] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidatedLine:
    """A cart line after server-side re-validation, with the frozen price."""

    product_id: int
    product_name: str
    variant_key: str
    quantity: int
    unit_price: int

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class ValidatedCart:
    lines: List[ValidatedLine]
    subtotal: int


@dataclass(frozen=True)
class ShippingInfo:
    """Shipping snapshot frozen into the order at creation."""

    street_name: str
    street_number: str
    city: str
    province: str
    postal_code: str
    method_id: str
    method_name: str
    cost: int = 0
    apartment: Optional[str] = None
    description: Optional[str] = None
    details: Optional[str] = None


@dataclass(frozen=True)
class CustomerContact:
    first_name: str
    last_name: str
    email: str
    phone: str
    doc_number: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class Order:
    """Snapshot of a persisted order.

    Every field except ``status`` is fixed at creation; transitions
    produce a copy with a new status.
    """

    id: str
    customer_id: int
    contact: CustomerContact
    lines: List[ValidatedLine]
    subtotal: int
    discount: int
    total: int
    status: OrderStatus
    payment_method: PaymentMethod
    shipping: ShippingInfo
    created_at: datetime
    number: Optional[int] = None
    gateway_session_id: Optional[str] = None


@dataclass(frozen=True)
class TransitionEvent:
    """Emitted after a status change is committed.

    ``old_status`` is None for the creation event.
    """

    order_id: str
    old_status: Optional[OrderStatus]
    new_status: OrderStatus
    actor: Actor
    order: Order


@dataclass(frozen=True)
class TransitionResult:
    order: Order
    changed: bool
    previous: OrderStatus


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class GatewayPayment:
    """Live payment state as reported by the provider's API."""

    payment_id: str
    status: str
    external_reference: Optional[str]
    amount: Optional[int] = None


# ---- Ports (DIP) ----
class InventoryPort(Protocol):
    """Authoritative product/variant stock.

    ``decrement`` and ``restore`` are relative adjustments; ``decrement``
    refuses the whole batch when any variant would go negative.
    """

    def get_product(self, product_id: int) -> Optional[ProductRecord]:
        raise NotImplementedError()

    def decrement(self, lines: Iterable[ValidatedLine]) -> None:
        raise NotImplementedError()

    def restore(self, lines: Iterable[ValidatedLine]) -> None:
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Durable order records keyed by id.

    ``atomic()`` opens the unit of work a transition runs in; ``lock()``
    reads an order while holding it exclusively until that unit ends.
    """

    def atomic(self) -> AbstractContextManager:
        raise NotImplementedError()

    def get(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def lock(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError()

    def create(self, order: Order) -> Order:
        raise NotImplementedError()

    def compare_and_set_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
        raise NotImplementedError()

    def expired_transfer_ids(self, cutoff: datetime) -> List[str]:
        raise NotImplementedError()


class CustomerPort(Protocol):
    def find_or_create(self, contact: CustomerContact) -> int:
        """Return the customer id for ``contact.email``, counting one more order."""
        raise NotImplementedError()

    def add_spent(self, customer_id: int, amount: int) -> None:
        raise NotImplementedError()


class PaymentGatewayPort(Protocol):
    """Hosted-checkout payment provider."""

    def create_checkout_session(
        self,
        lines: List[ValidatedLine],
        shipping_cost: int,
        success_url: str,
        failure_url: str,
        external_reference: str,
        payer: Optional[CustomerContact] = None,
    ) -> CheckoutSession:
        raise NotImplementedError()

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        raise NotImplementedError()


class EventSinkPort(Protocol):
    def publish(self, event: TransitionEvent) -> None:
        raise NotImplementedError()

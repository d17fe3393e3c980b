"""Order creation from a submitted cart.

``CheckoutService`` turns a storefront submission into a persisted
``pending`` order. Prices and the subtotal come from ``CartValidator``;
the client never contributes a number that reaches the order total.

The two payment methods commit stock at different moments. Transfer
orders decrement stock here, inside the same unit of work that writes
the order, because nothing external will confirm them until the
customer or an admin acts. Gateway orders leave stock alone until the
provider confirms the payment (see ``OrderLifecycle``).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from .domain import (
    Actor,
    CartLine,
    CheckoutSession,
    CustomerContact,
    CustomerPort,
    InventoryPort,
    Order,
    OrderStatus,
    OrderStorePort,
    PaymentGatewayPort,
    PaymentMethod,
    ShippingInfo,
)
from .lifecycle import OrderLifecycle
from .validation import CartValidator

logger = logging.getLogger("orders.checkout")


@dataclass(frozen=True)
class CheckoutRequest:
    lines: list[CartLine]
    contact: CustomerContact
    shipping: ShippingInfo
    payment_method: PaymentMethod


@dataclass(frozen=True)
class CheckoutResult:
    order: Order
    session: Optional[CheckoutSession] = None


@dataclass(frozen=True)
class RedirectUrls:
    """Builds the storefront URLs the hosted checkout sends customers back to."""

    client_url: str

    def success(self, order_id: str) -> str:
        return f"{self.client_url}/checkout/success?order_id={order_id}"

    def failure(self, order_id: str) -> str:
        return f"{self.client_url}/cart"


def price_order(subtotal: int, shipping_cost: int, method: PaymentMethod, transfer_discount: Decimal) -> tuple[int, int]:
    """Return ``(discount, total)`` for an order.

    Transfer orders get ``transfer_discount`` off subtotal plus shipping,
    rounded half-up to whole currency units.
    """
    gross = subtotal + shipping_cost
    if method != PaymentMethod.TRANSFER or not transfer_discount:
        return 0, gross
    discount = int((Decimal(gross) * transfer_discount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return discount, gross - discount


class CheckoutService:
    """Validate a cart and create the order for the chosen payment method."""

    def __init__(
        self,
        orders: OrderStorePort,
        inventory: InventoryPort,
        customers: CustomerPort,
        gateway: PaymentGatewayPort,
        lifecycle: OrderLifecycle,
        urls: RedirectUrls,
        transfer_discount: Decimal = Decimal("0"),
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.orders = orders
        self.inventory = inventory
        self.customers = customers
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.validator = CartValidator(inventory)
        self.urls = urls
        self.transfer_discount = transfer_discount
        self.clock = clock
        self.id_factory = id_factory

    def place_order(self, request: CheckoutRequest) -> CheckoutResult:
        """Create a ``pending`` order.

        Steps:
            1. Re-validate the cart against the ledger (read-only).
            2. Gateway only: open a hosted-checkout session with the
               validated lines. The order id is generated first so it can
               travel as the session's external reference; when the
               provider fails no order is written.
            3. In one unit of work: find-or-create the customer (counting
               the order), decrement stock for transfer orders, write the
               order.
            4. Publish the creation event.

        Raises:
            ValidationError: The cart failed re-validation, or (transfer)
                stock ran out between validation and decrement.
            GatewayError: The provider could not open a session.
            PersistenceError: The store rejected a write.
        """
        cart = self.validator.validate(request.lines)
        shipping_cost = request.shipping.cost
        discount, total = price_order(cart.subtotal, shipping_cost, request.payment_method, self.transfer_discount)
        order_id = self.id_factory()

        session = None
        if request.payment_method == PaymentMethod.GATEWAY:
            session = self.gateway.create_checkout_session(
                lines=cart.lines,
                shipping_cost=shipping_cost,
                success_url=self.urls.success(order_id),
                failure_url=self.urls.failure(order_id),
                external_reference=order_id,
                payer=request.contact,
            )

        with self.orders.atomic():
            customer_id = self.customers.find_or_create(request.contact)
            if request.payment_method == PaymentMethod.TRANSFER:
                self.inventory.decrement(cart.lines)
            order = self.orders.create(
                Order(
                    id=order_id,
                    customer_id=customer_id,
                    contact=request.contact,
                    lines=cart.lines,
                    subtotal=cart.subtotal,
                    discount=discount,
                    total=total,
                    status=OrderStatus.PENDING,
                    payment_method=request.payment_method,
                    shipping=request.shipping,
                    created_at=self.clock(),
                    gateway_session_id=session.session_id if session else None,
                )
            )

        logger.info(
            "order.created",
            extra={
                "order_id": order.id,
                "payment_method": order.payment_method.value,
                "total": order.total,
                "lines": len(order.lines),
            },
        )
        self.lifecycle.publish_created(order, Actor.CUSTOMER)
        return CheckoutResult(order=order, session=session)

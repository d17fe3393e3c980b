"""Exceptions for the orders domain.

Every error carries a short machine code (``str(err) == err.code``), a
human-readable message and a ``data`` dict with context such as the
order id or the offending product, so views can turn them into
structured responses and logs can carry what an operator needs to
reconcile by hand.
"""

from typing import Any


class OrderError(Exception):
    """Base class for structured order errors.

    Usage:
        try:
            lifecycle.transition(order_id, OrderStatus.PAID, Actor.ADMIN)
        except ConflictError as e:
            if e.code == "INVALID_TRANSITION":
                ...
    """

    _default_messages: dict[str, str] = {}

    def __init__(self, code: str, message: str | None = None, **data: Any):
        self.code = code
        self.message = message or self._default_messages.get(code, code)
        self.data = data
        super().__init__(code)

    def __str__(self) -> str:
        return self.code

    def as_dict(self) -> dict[str, Any]:
        return {"detail": self.code, "message": self.message, "data": dict(self.data)}


class ValidationError(OrderError):
    """Cart failed server-side re-validation; no order is created."""

    _default_messages = {
        "EMPTY_CART": "The cart is empty.",
        "PRODUCT_NOT_FOUND": "A product in the cart no longer exists.",
        "VARIANT_UNAVAILABLE": "A selected size is not available.",
        "INSUFFICIENT_STOCK": "Not enough stock for a product in the cart.",
        "INVALID_QUANTITY": "Quantities must be positive.",
    }


class NotFoundError(OrderError):
    _default_messages = {"NOT_FOUND": "Order not found."}


class ConflictError(OrderError):
    """Transition not valid for the order's current state; order unchanged."""

    _default_messages = {
        "INVALID_TRANSITION": "The order cannot move to that status.",
        "FORBIDDEN_TRANSITION": "That status change is not allowed for this caller.",
        "WRONG_PAYMENT_METHOD": "That operation does not apply to this payment method.",
        "ORDER_EXPIRED": "The payment window for this order has closed.",
        "STOCK_SHORTFALL": "Stock is no longer available for a paid order.",
        "CONCURRENT_MODIFICATION": "The order was modified concurrently.",
    }


class GatewayError(OrderError):
    """The payment provider was unreachable, timed out or answered garbage."""

    _default_messages = {
        "GATEWAY_TIMEOUT": "The payment provider did not answer in time.",
        "GATEWAY_UNAVAILABLE": "The payment provider is unavailable.",
        "GATEWAY_BAD_RESPONSE": "The payment provider returned malformed data.",
        "CIRCUIT_OPEN": "Calls to the payment provider are suspended.",
    }


class PersistenceError(OrderError):
    """A store write failed; the surrounding transaction was rolled back."""

    _default_messages = {"PERSISTENCE_ERROR": "The order store rejected the write."}

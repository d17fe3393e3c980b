"""Reconciliation of asynchronous payment-provider callbacks.

The callback body is only a hint: it tells us *which* payment changed.
The payment's status and the order it belongs to are always re-read
from the provider's API before anything is decided.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .domain import Actor, OrderStatus, PaymentGatewayPort
from .errors import NotFoundError
from .lifecycle import OrderLifecycle

logger = logging.getLogger("orders.reconciliation")

# provider payment ids are numeric; letters, "_" and "-" cover other providers
PAYMENT_ID_RE = re.compile(r"[A-Za-z0-9_-]{1,64}")

# provider payment status -> order status; anything else is not final
GATEWAY_STATUS_MAP = {
    "approved": OrderStatus.PAID,
    "rejected": OrderStatus.REJECTED,
    "cancelled": OrderStatus.CANCELLED,
}
# final on the provider side but need a human: money moved back after payment
MANUAL_REVIEW_STATUSES = frozenset({"refunded", "charged_back"})


@dataclass(frozen=True)
class CallbackOutcome:
    """What handling one callback did.

    Attributes:
        action: ``ignored`` (no payment id / not a payment event),
            ``unknown_order``, ``not_final``, ``manual_review``,
            ``noop`` (order already in the target status) or ``applied``.
    """

    action: str
    payment_id: Optional[str] = None
    order_id: Optional[str] = None
    gateway_status: Optional[str] = None


def extract_payment_id(payload: Mapping[str, Any]) -> Optional[str]:
    """Pull the payment id out of a callback body.

    Payment notifications carry ``{"type": "payment", "data": {"id": ...}}``;
    other event types (merchant orders, plan updates) are ignored, and so
    is an id that does not look like one: it ends up in a provider URL.
    """
    event_type = payload.get("type") or payload.get("topic")
    if event_type not in (None, "payment"):
        return None
    data = payload.get("data")
    if not isinstance(data, Mapping) or data.get("id") in (None, ""):
        return None
    payment_id = str(data["id"])
    if not PAYMENT_ID_RE.fullmatch(payment_id):
        logger.warning("payment.callback.invalid_id", extra={"payment_id": payment_id[:100]})
        return None
    return payment_id


class PaymentReconciler:
    """Drive the order state machine from provider callbacks."""

    def __init__(self, gateway: PaymentGatewayPort, lifecycle: OrderLifecycle):
        self.gateway = gateway
        self.lifecycle = lifecycle

    def handle_callback(self, payload: Mapping[str, Any]) -> CallbackOutcome:
        """Process one callback.

        Returns:
            CallbackOutcome describing what happened.

        Raises:
            GatewayError: The live status could not be fetched (timeout,
                outage, malformed answer). Nothing was changed.
            ConflictError: The provider's status maps to a transition the
                order's current state does not allow. Nothing was changed.
            PersistenceError: The transition could not be stored.
        """
        payment_id = extract_payment_id(payload)
        if payment_id is None:
            return CallbackOutcome("ignored")

        payment = self.gateway.fetch_payment(payment_id)
        order_id = payment.external_reference
        context = {
            "payment_id": payment_id,
            "order_id": order_id,
            "gateway_status": payment.status,
            "amount": payment.amount,
        }

        if not order_id:
            logger.warning("payment.callback.no_reference", extra=context)
            return CallbackOutcome("unknown_order", payment_id, None, payment.status)

        if payment.status in MANUAL_REVIEW_STATUSES:
            logger.warning("payment.callback.manual_review", extra=context)
            return CallbackOutcome("manual_review", payment_id, order_id, payment.status)

        target = GATEWAY_STATUS_MAP.get(payment.status)
        if target is None:
            logger.info("payment.callback.not_final", extra=context)
            return CallbackOutcome("not_final", payment_id, order_id, payment.status)

        try:
            result = self.lifecycle.transition(order_id, target, Actor.GATEWAY)
        except NotFoundError:
            logger.warning("payment.callback.unknown_order", extra=context)
            return CallbackOutcome("unknown_order", payment_id, order_id, payment.status)

        action = "applied" if result.changed else "noop"
        logger.info(f"payment.callback.{action}", extra=context)
        return CallbackOutcome(action, payment_id, order_id, payment.status)

"""Order lifecycle state machine and the transfer expiry watchdog.

All status changes go through ``OrderLifecycle``. Each one runs inside
a single unit of work from the order store: the order row is locked,
the current status is re-read, the transition is decided, stock and
spend side effects are applied and the new status is written with a
compare-and-set. Two concurrent attempts on the same order therefore
serialize, and the loser sees the winner's status (usually turning its
own attempt into a no-op). Lifecycle events are published only after
the unit of work has committed, and a failing event sink never affects
the transition's outcome.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from .domain import (
    TERMINAL_STATUSES,
    Actor,
    CustomerPort,
    EventSinkPort,
    InventoryPort,
    Order,
    OrderStatus,
    OrderStorePort,
    PaymentMethod,
    TransitionEvent,
    TransitionResult,
    find_rule,
    holds_reserved_stock,
)
from .errors import ConflictError, NotFoundError, ValidationError

logger = logging.getLogger("orders.lifecycle")

Decision = Callable[[Order], Optional[OrderStatus]]


class OrderLifecycle:
    """Applies status transitions and their side effects.

    Side effects per target status:

    - ``paid``: decrement stock for gateway orders (transfer orders were
      decremented at creation) and add the order total to the customer's
      ``total_spent``.
    - ``cancelled``: restore stock when the order still holds a transfer
      reservation (pending or awaiting confirmation). Gateway orders have
      nothing to restore before payment.

    Moving an order to the status it already has is a silent no-op, so
    replayed callbacks and retried cancellations are harmless.
    """

    def __init__(
        self,
        orders: OrderStorePort,
        inventory: InventoryPort,
        customers: CustomerPort,
        events: EventSinkPort,
    ):
        self.orders = orders
        self.inventory = inventory
        self.customers = customers
        self.events = events

    def get(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("NOT_FOUND", order_id=order_id)
        return order

    def transition(self, order_id: str, target: OrderStatus, actor: Actor) -> TransitionResult:
        """Move ``order_id`` to ``target`` on behalf of ``actor``.

        Raises:
            NotFoundError: Unknown order id.
            ConflictError: ``INVALID_TRANSITION`` (edge not in the table or
                order terminal), ``FORBIDDEN_TRANSITION`` (actor may not
                drive it), ``WRONG_PAYMENT_METHOD``, ``STOCK_SHORTFALL``
                (gateway order paid but stock is gone).
        """
        return self.apply(order_id, lambda _order: target, actor)

    def apply(self, order_id: str, decide: Decision, actor: Actor) -> TransitionResult:
        """Run ``decide`` against the locked order and apply its answer.

        ``decide`` receives the current order while the lock is held and
        returns the target status, or None to leave the order alone.
        """
        with self.orders.atomic():
            order = self.orders.lock(order_id)
            if order is None:
                raise NotFoundError("NOT_FOUND", order_id=order_id)

            current = order.status
            target = decide(order)
            if target is None or target == current:
                return TransitionResult(order=order, changed=False, previous=current)

            self._check_allowed(order, target, actor)
            self._apply_side_effects(order, target)

            if not self.orders.compare_and_set_status(order.id, current, target):
                # only reachable when the store cannot lock rows; the
                # exception rolls the side effects back with the unit of work
                raise ConflictError("CONCURRENT_MODIFICATION", order_id=order.id, expected=current.value)

            updated = replace(order, status=target)

        logger.info(
            "order.transition",
            extra={
                "order_id": updated.id,
                "old_status": current.value,
                "new_status": target.value,
                "actor": actor.value,
                "payment_method": updated.payment_method.value,
            },
        )
        self._publish(TransitionEvent(updated.id, current, target, actor, updated))
        return TransitionResult(order=updated, changed=True, previous=current)

    def publish_created(self, order: Order, actor: Actor = Actor.CUSTOMER) -> None:
        self._publish(TransitionEvent(order.id, None, order.status, actor, order))

    def _check_allowed(self, order: Order, target: OrderStatus, actor: Actor) -> None:
        current = order.status
        context = {"order_id": order.id, "current": current.value, "target": target.value, "actor": actor.value}

        if current in TERMINAL_STATUSES:
            raise ConflictError("INVALID_TRANSITION", **context)
        rule = find_rule(current, target)
        if rule is None:
            raise ConflictError("INVALID_TRANSITION", **context)
        if order.payment_method not in rule.methods:
            raise ConflictError("WRONG_PAYMENT_METHOD", payment_method=order.payment_method.value, **context)
        if actor not in rule.actors:
            raise ConflictError("FORBIDDEN_TRANSITION", **context)

    def _apply_side_effects(self, order: Order, target: OrderStatus) -> None:
        if target == OrderStatus.PAID:
            if order.payment_method == PaymentMethod.GATEWAY:
                try:
                    self.inventory.decrement(order.lines)
                except ValidationError as e:
                    logger.error(
                        "order.paid.stock_shortfall",
                        extra={"order_id": order.id, **e.data},
                    )
                    raise ConflictError("STOCK_SHORTFALL", order_id=order.id, **e.data) from e
            self.customers.add_spent(order.customer_id, order.total)

        elif target == OrderStatus.CANCELLED:
            if holds_reserved_stock(order.payment_method, order.status):
                self.inventory.restore(order.lines)

    def _publish(self, event: TransitionEvent) -> None:
        try:
            self.events.publish(event)
        except Exception:
            logger.exception(
                "order.event.publish_failed",
                extra={"order_id": event.order_id, "new_status": event.new_status.value},
            )


class ExpiryWatchdog:
    """Pull-based cancellation of unpaid transfer orders.

    ``check`` is safe to call any number of times from any caller (the
    storefront countdown, the sweep command): the expiry decision is
    re-evaluated under the order lock, so a payment confirmation that wins
    the race leaves nothing to cancel.
    """

    def __init__(self, lifecycle: OrderLifecycle, window: timedelta, clock: Callable[[], datetime]):
        self.lifecycle = lifecycle
        self.window = window
        self.clock = clock

    def is_expired(self, order: Order, now: datetime) -> bool:
        return (
            order.payment_method == PaymentMethod.TRANSFER
            and order.status == OrderStatus.PENDING
            and now - order.created_at > self.window
        )

    def expires_at(self, order: Order) -> Optional[datetime]:
        if order.payment_method != PaymentMethod.TRANSFER:
            return None
        return order.created_at + self.window

    def check(self, order_id: str) -> tuple[bool, Order]:
        """Cancel ``order_id`` if it is a pending transfer past its window.

        Returns:
            ``(expired, order)``: ``expired`` is True only when this call
            performed the cancellation; ``order`` is the current snapshot.

        Raises:
            NotFoundError: Unknown order id.
        """

        def decide(order: Order) -> Optional[OrderStatus]:
            return OrderStatus.CANCELLED if self.is_expired(order, self.clock()) else None

        result = self.lifecycle.apply(order_id, decide, Actor.WATCHDOG)
        if result.changed:
            logger.info(
                "order.expired",
                extra={"order_id": order_id, "created_at": result.order.created_at.isoformat()},
            )
        return result.changed, result.order

    def report_payment(self, order_id: str) -> TransitionResult:
        """Customer self-report for a transfer order.

        The window is checked while the order lock is held, in the same unit
        of work that moves the order to ``awaiting_confirmation``. A late
        report cancels the order instead.

        Raises:
            NotFoundError: Unknown order id.
            ConflictError: ``ORDER_EXPIRED`` when the window has closed,
                or the usual transition errors.
        """

        def decide(order: Order) -> Optional[OrderStatus]:
            if self.is_expired(order, self.clock()):
                raise ConflictError("ORDER_EXPIRED", order_id=order.id)
            return OrderStatus.AWAITING_CONFIRMATION

        try:
            return self.lifecycle.apply(order_id, decide, Actor.CUSTOMER)
        except ConflictError as e:
            if e.code == "ORDER_EXPIRED":
                self.check(order_id)
            raise

    def sweep(self) -> int:
        """Run ``check`` over every pending transfer order past the window."""
        cutoff = self.clock() - self.window
        expired = 0
        for order_id in self.lifecycle.orders.expired_transfer_ids(cutoff):
            try:
                changed, _ = self.check(order_id)
            except NotFoundError:
                continue
            expired += int(changed)
        return expired

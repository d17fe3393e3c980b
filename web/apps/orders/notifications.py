"""Lifecycle event fan-out.

``EventDispatcher`` is the ``EventSinkPort`` the lifecycle publishes to.
It forwards every committed transition to the sinks listed in
``settings.ORDER_EVENT_SINKS`` (dotted paths, instantiated without
arguments). Each sink runs in isolation: one raising never stops the
others, and never reaches the caller.

Concrete channels (email, chat) are not part of this app; they plug in
as further sinks.
"""

import logging
from typing import Iterable, List, Optional

from django.conf import settings
from django.utils.module_loading import import_string

from .domain import EventSinkPort, TransitionEvent

logger = logging.getLogger("orders.notifications")


class EventDispatcher(EventSinkPort):
    def __init__(self, sinks: Optional[Iterable[EventSinkPort]] = None):
        if sinks is None:
            sinks = [import_string(path)() for path in getattr(settings, "ORDER_EVENT_SINKS", [])]
        self.sinks: List[EventSinkPort] = list(sinks)

    def publish(self, event: TransitionEvent) -> None:
        for sink in self.sinks:
            try:
                sink.publish(event)
            except Exception:
                logger.exception(
                    "order.event.sink_failed",
                    extra={
                        "sink": type(sink).__name__,
                        "order_id": event.order_id,
                        "new_status": event.new_status.value,
                    },
                )


class LoggingNotifier(EventSinkPort):
    """Writes one ``order.notify`` line per event for downstream log shippers."""

    def publish(self, event: TransitionEvent) -> None:
        logger.info(
            "order.notify",
            extra={
                "order_id": event.order_id,
                "order_number": event.order.number,
                "old_status": event.old_status.value if event.old_status else None,
                "new_status": event.new_status.value,
                "actor": event.actor.value,
                "payment_method": event.order.payment_method.value,
                "customer_email": event.order.contact.email,
                "total": event.order.total,
            },
        )

"""Server-side conversion tracking.

``ConversionTracker`` is a lifecycle event sink that reports
``InitiateCheckout`` when an order is created and ``Purchase`` when it is
paid to the ad platform's conversions endpoint. Delivery happens on a
small background pool and is strictly best effort: a failed or slow
beacon is logged and never delays or fails the order flow.
"""

import hashlib
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

import httpx
from django.conf import settings

from .domain import EventSinkPort, Order, OrderStatus, TransitionEvent

logger = logging.getLogger("orders.tracking")

_EXECUTOR = ThreadPoolExecutor(max_workers=2, thread_name_prefix="conversion")

GRAPH_URL = "https://graph.facebook.com/{version}/{pixel_id}/events"


def hash_email(email: str) -> str:
    return hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()


def build_event(name: str, order: Order, now: Optional[float] = None) -> dict:
    return {
        "event_name": name,
        "event_time": int(now if now is not None else time.time()),
        "event_id": f"{name}-{order.id}",
        "action_source": "website",
        "user_data": {"em": [hash_email(order.contact.email)]},
        "custom_data": {
            "currency": getattr(settings, "CONVERSION_CURRENCY", "ARS"),
            "value": order.total,
            "order_id": order.id,
            "content_type": "product",
            "content_ids": [f"{line.product_id}-{line.variant_key}" for line in order.lines],
            "contents": [
                {"id": f"{line.product_id}-{line.variant_key}", "quantity": line.quantity, "item_price": line.unit_price}
                for line in order.lines
            ],
            "num_items": sum(line.quantity for line in order.lines),
        },
    }


def _send(url: str, token: str, event: dict, timeout: float) -> None:
    try:
        resp = httpx.post(url, params={"access_token": token}, json={"data": [event]}, timeout=timeout)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(
            "conversion.send_failed",
            extra={"event_name": event["event_name"], "order_id": event["custom_data"]["order_id"], "error": str(e)},
        )
        return
    logger.info(
        "conversion.sent",
        extra={"event_name": event["event_name"], "order_id": event["custom_data"]["order_id"]},
    )


class ConversionTracker(EventSinkPort):
    def __init__(self, submit: Optional[Callable] = None):
        self._submit = submit or _EXECUTOR.submit

    def event_name(self, event: TransitionEvent) -> Optional[str]:
        if event.old_status is None:
            return "InitiateCheckout"
        if event.new_status == OrderStatus.PAID:
            return "Purchase"
        return None

    def publish(self, event: TransitionEvent) -> None:
        name = self.event_name(event)
        if name is None:
            return
        pixel_id = getattr(settings, "CONVERSION_PIXEL_ID", "")
        token = getattr(settings, "CONVERSION_ACCESS_TOKEN", "")
        if not pixel_id or not token:
            logger.warning("conversion.not_configured", extra={"event_name": name, "order_id": event.order_id})
            return
        url = GRAPH_URL.format(version=settings.CONVERSION_API_VERSION, pixel_id=pixel_id)
        self._submit(_send, url, token, build_event(name, event.order), settings.HTTP_TIMEOUT_SECS)

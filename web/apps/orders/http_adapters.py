"""HTTP client for the hosted-checkout provider, with retries and a circuit breaker.

This module implements ``PaymentGatewayPort`` over the provider's REST
API using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by ``config.middleware.RequestIdMiddleware``.
- A circuit breaker for the provider, so an outage turns into fast
    ``CIRCUIT_OPEN`` failures instead of piling up timeouts, with HALF_OPEN
    probing after a timeout.
- Simple retry policy with exponential backoff for transport errors and 5xx.
- Idempotent session creation: the order id travels as
    ``X-Idempotency-Key`` so a retried POST never opens two sessions.

Transport failures surface as ``GatewayError`` codes; callers never see
``httpx`` exceptions.
"""

import logging
import threading
import time
from typing import List, Optional
from urllib.parse import quote

import httpx
from django.conf import settings

from config.middleware import REQUEST_ID_CTX

from .domain import CheckoutSession, CustomerContact, GatewayPayment, PaymentGatewayPort, ValidatedLine
from .errors import GatewayError

logger = logging.getLogger("orders.gateway")


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Raises:
            GatewayError: ``CIRCUIT_OPEN`` while open, or while a HALF_OPEN
                probe is already in flight.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise GatewayError("CIRCUIT_OPEN", breaker=self.name)
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise GatewayError("CIRCUIT_OPEN", breaker=self.name, probe_in_flight=True)
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False

    def reset(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._opened_at = 0.0
            self._half_open_probe_in_flight = False


_gateway_cb = CircuitBreaker(
    "gateway",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Retry only on transport errors or 5xx
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def session_body(
    lines: List[ValidatedLine],
    shipping_cost: int,
    success_url: str,
    failure_url: str,
    external_reference: str,
    payer: Optional[CustomerContact] = None,
) -> dict:
    """Build the provider's checkout-preference body.

    One item per validated line at the server-side price, plus a
    ``shipping`` item when shipping is charged. The order id travels as
    ``external_reference`` so callbacks can be matched back to it.
    """
    currency = getattr(settings, "GATEWAY_CURRENCY", "ARS")
    items = [
        {
            "id": f"{line.product_id}-{line.variant_key}",
            "title": f"{line.product_name} (Size: {line.variant_key})",
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "currency_id": currency,
        }
        for line in lines
    ]
    if shipping_cost > 0:
        items.append(
            {"id": "shipping", "title": "Shipping", "quantity": 1, "unit_price": shipping_cost, "currency_id": currency}
        )

    body = {
        "items": items,
        "back_urls": {"success": success_url, "failure": failure_url, "pending": success_url},
        "auto_return": "approved",
        "external_reference": external_reference,
        "notification_url": settings.GATEWAY_NOTIFICATION_URL,
        "statement_descriptor": settings.GATEWAY_STATEMENT_DESCRIPTOR,
    }
    if payer is not None:
        body["payer"] = {"name": payer.first_name, "surname": payer.last_name, "email": payer.email}
    return body


# ---------------- Gateway Adapter ---------------- #

class HttpGatewayClient(PaymentGatewayPort):
    """HTTP client for the hosted-checkout provider with retry and circuit breaker."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None, access_token: str | None = None):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS
        self.access_token = access_token if access_token is not None else settings.GATEWAY_ACCESS_TOKEN

    def _call(self, method: str, path: str, json: Optional[dict] = None, extra: Optional[dict] = None) -> dict:
        """Send one logical request, retrying transport errors and 5xx.

        4xx answers are not retried and do not count against the breaker:
        the provider is up, it just disagrees with us.

        Raises:
            GatewayError: ``CIRCUIT_OPEN``, ``GATEWAY_TIMEOUT``,
                ``GATEWAY_UNAVAILABLE`` or ``GATEWAY_BAD_RESPONSE``.
        """
        max_retries, backoff = _retry_policy()
        cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
        tries = 0

        state = _gateway_cb.before_call()
        extras = {"X-Circuit-State": state, "X-Retry-Count": "0"}
        if self.access_token:
            extras["Authorization"] = f"Bearer {self.access_token}"
        extras.update(extra or {})
        headers = _request_headers(extras)
        url = f"{self.base_url}{path}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, url, json=json, headers=headers)
                        if 200 <= resp.status_code < 300:
                            _gateway_cb.on_success()
                            try:
                                data = resp.json()
                            except ValueError as e:
                                raise GatewayError("GATEWAY_BAD_RESPONSE", path=path, status_code=resp.status_code) from e
                            if not isinstance(data, dict):
                                raise GatewayError("GATEWAY_BAD_RESPONSE", path=path, status_code=resp.status_code)
                            return data
                        if not _should_retry(resp, None):
                            _gateway_cb.on_success()
                            logger.error(
                                "gateway.rejected", extra={"path": path, "status_code": resp.status_code}
                            )
                            raise GatewayError("GATEWAY_BAD_RESPONSE", path=path, status_code=resp.status_code)
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_retries:
                        _gateway_cb.on_failure()
                        if isinstance(exc, httpx.TimeoutException):
                            logger.error("gateway.timeout", extra={"path": path, "tries": tries})
                            raise GatewayError("GATEWAY_TIMEOUT", path=path) from exc
                        logger.error(
                            "gateway.unavailable",
                            extra={
                                "path": path,
                                "tries": tries,
                                "status_code": resp.status_code if resp is not None else None,
                                "error": str(exc) if exc else None,
                            },
                        )
                        raise GatewayError("GATEWAY_UNAVAILABLE", path=path) from exc

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    if sleep_s > 0:
                        time.sleep(min(sleep_s, cap))
        finally:
            _gateway_cb.on_finish()

    def create_checkout_session(
        self,
        lines: List[ValidatedLine],
        shipping_cost: int,
        success_url: str,
        failure_url: str,
        external_reference: str,
        payer: Optional[CustomerContact] = None,
    ) -> CheckoutSession:
        """Open a hosted-checkout session (a provider "preference").

        Returns:
            CheckoutSession with the provider's id and the redirect URL.
        """
        body = session_body(lines, shipping_cost, success_url, failure_url, external_reference, payer)
        data = self._call(
            "POST", "/checkout/preferences", json=body, extra={"X-Idempotency-Key": external_reference}
        )
        session_id = data.get("id")
        redirect_url = data.get("init_point")
        if not session_id or not redirect_url:
            raise GatewayError("GATEWAY_BAD_RESPONSE", path="/checkout/preferences")
        return CheckoutSession(session_id=str(session_id), redirect_url=redirect_url)

    def fetch_payment(self, payment_id: str) -> GatewayPayment:
        """Read a payment's live status and its ``external_reference``.

        The id comes from an unauthenticated callback, so it is sent as a
        single quoted path segment.
        """
        data = self._call("GET", f"/v1/payments/{quote(str(payment_id), safe='')}")
        status = data.get("status")
        if not status or not isinstance(status, str):
            raise GatewayError("GATEWAY_BAD_RESPONSE", payment_id=payment_id)
        amount = data.get("transaction_amount")
        try:
            amount = int(amount) if amount is not None else None
        except (TypeError, ValueError) as e:
            raise GatewayError("GATEWAY_BAD_RESPONSE", payment_id=payment_id, field="transaction_amount") from e
        return GatewayPayment(
            payment_id=str(data.get("id", payment_id)),
            status=str(status),
            external_reference=str(data["external_reference"]) if data.get("external_reference") else None,
            amount=amount,
        )

"""Hosted-checkout provider sandbox built with FastAPI.

Emulates the slice of the payment provider's REST API the store talks
to, so checkout and callback reconciliation can run end to end without
the real provider:

- ``POST /checkout/preferences`` opens a hosted-checkout session and
  returns its id and ``init_point`` (the redirect URL).
- ``GET /v1/payments/{id}`` returns a payment's live status and its
  ``external_reference``.
- ``POST /sandbox/preferences/{id}/payments`` plays the customer on the
  hosted page: it records a payment outcome and posts the provider-style
  callback to the preference's ``notification_url``.

Persistence is delegated to the SQLAlchemy repository in ``repo``.
"""

import logging
import os
import time
import uuid
from typing import Annotated, Literal, Optional

import httpx
from fastapi import BackgroundTasks, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from gateway_sandbox.repo import SandboxRepo, engine, init_db

app = FastAPI(title="Gateway Sandbox")

PUBLIC_URL = os.getenv("SANDBOX_PUBLIC_URL", "http://localhost:9002")
ACCESS_TOKEN = os.getenv("SANDBOX_ACCESS_TOKEN", "")

logger = logging.getLogger("gateway_sandbox")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


PaymentStatus = Literal["approved", "rejected", "pending", "in_process", "cancelled", "refunded", "charged_back"]


class Item(BaseModel):
    id: str
    title: str
    quantity: int = Field(gt=0)
    unit_price: int = Field(ge=0)
    currency_id: str = "ARS"


class PreferenceRequest(BaseModel):
    """Checkout preference as the store sends it."""

    items: list[Item] = Field(min_length=1)
    back_urls: dict[str, str] = {}
    auto_return: Optional[str] = None
    external_reference: Optional[str] = None
    notification_url: Optional[str] = None
    statement_descriptor: Optional[str] = None
    payer: Optional[dict] = None


class PreferenceResponse(BaseModel):
    id: str
    init_point: str
    external_reference: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    status: str
    external_reference: Optional[str] = None
    transaction_amount: int
    preference_id: str


class SimulatePaymentRequest(BaseModel):
    """Outcome to record. With ``payment_id`` an existing payment changes status."""

    status: PaymentStatus
    payment_id: Optional[int] = None


def _check_auth(authorization: Optional[str]):
    if ACCESS_TOKEN and authorization != f"Bearer {ACCESS_TOKEN}":
        raise HTTPException(status_code=401, detail="UNAUTHORIZED")


def _preference_out(pref) -> PreferenceResponse:
    return PreferenceResponse(
        id=pref.id,
        init_point=f"{PUBLIC_URL}/checkout/{pref.id}",
        external_reference=pref.external_reference,
    )


def _payment_out(payment) -> PaymentResponse:
    return PaymentResponse(
        id=payment.id,
        status=payment.status,
        external_reference=payment.external_reference,
        transaction_amount=payment.transaction_amount,
        preference_id=payment.preference_id,
    )


def deliver_callback(url: str, payment_id: int, request_id: str):
    """POST a provider-style payment notification to the store."""
    body = {"type": "payment", "action": "payment.updated", "data": {"id": str(payment_id)}}
    try:
        resp = httpx.post(url, json=body, headers={"X-Request-ID": request_id}, timeout=5.0)
        logger.info(
            "callback delivered",
            extra={"request_id": request_id, "url": url, "payment_id": payment_id, "status_code": resp.status_code},
        )
    except httpx.HTTPError as e:
        logger.error(
            "callback failed",
            extra={"request_id": request_id, "url": url, "payment_id": payment_id, "error": str(e)},
        )


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/checkout/preferences", response_model=PreferenceResponse, status_code=201)
def create_preference(
    req: PreferenceRequest,
    authorization: Annotated[Optional[str], Header()] = None,
    idempotency_key: Annotated[Optional[str], Header(alias="X-Idempotency-Key")] = None,
):
    """Open a checkout session.

    A retry carrying the same ``X-Idempotency-Key`` returns the session
    created by the first request.
    """
    _check_auth(authorization)
    repo = SandboxRepo()
    if idempotency_key:
        existing = repo.find_preference_by_key(idempotency_key)
        if existing is not None:
            return _preference_out(existing)
    pref = repo.create_preference(req.model_dump(), idempotency_key)
    return _preference_out(pref)


@app.get("/v1/payments/{payment_id}", response_model=PaymentResponse)
def get_payment(payment_id: int, authorization: Annotated[Optional[str], Header()] = None):
    _check_auth(authorization)
    payment = SandboxRepo().get_payment(payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    return _payment_out(payment)


@app.post("/sandbox/preferences/{preference_id}/payments", response_model=PaymentResponse, status_code=201)
def simulate_payment(preference_id: str, req: SimulatePaymentRequest, request: Request, background: BackgroundTasks):
    repo = SandboxRepo()
    pref = repo.get_preference(preference_id)
    if pref is None:
        raise HTTPException(status_code=404, detail="PREFERENCE_NOT_FOUND")
    payment = repo.record_payment(pref, req.status, req.payment_id)
    if payment is None:
        raise HTTPException(status_code=404, detail="PAYMENT_NOT_FOUND")
    if pref.notification_url:
        background.add_task(deliver_callback, pref.notification_url, payment.id, request.state.request_id)
    return _payment_out(payment)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response

"""Idempotency utilities for checkout submissions.

A storefront that retries a checkout (double click, flaky network) sends
the same ``Idempotency-Key`` header. The first request records the key
with a hash of its body and, once processed, the response; retries with
the same body get that stored response back instead of creating a
second order. Reusing a key with a different body is a conflict.
"""

import hashlib
import json
from typing import Optional

from django.db import IntegrityError, transaction

from .models import IdempotencyKey


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict) -> tuple[bool, IdempotencyKey]:
    """Get-or-create the record for ``key``.

    Returns:
        ``(existing, rec)``: ``existing`` is False when this call created
        the record (the caller processes the request and ``finalize``s it),
        True when a previous request with the same body owns it.

    Raises:
        ValueError: ``IDEMPOTENCY_CONFLICT`` when the key was first used
            with a different body.
    """
    h = _hash(payload)

    try:
        # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id: Optional[str] = None):
    """Store the response so retries can replay it without side effects."""
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey):
    """Forget a key whose request failed without a response, so a retry runs again."""
    rec.delete()

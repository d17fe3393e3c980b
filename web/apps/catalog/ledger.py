"""Inventory ledger backed by the Django ORM.

Implements ``InventoryPort`` for the orders domain. Stock changes are
always expressed as relative updates (``stock = stock - n`` guarded by
``stock >= n``, or ``stock = stock + n``) so concurrent orders touching
the same variant never overwrite each other's adjustment, and a
decrement that would take a variant below zero simply matches no row.
"""

import logging
from collections import defaultdict
from typing import Iterable, Optional

from django.db import DatabaseError, transaction
from django.db.models import F

from apps.orders.domain import InventoryPort, ProductRecord, ValidatedLine, VariantRecord
from apps.orders.errors import PersistenceError, ValidationError

from .models import ProductModel, VariantModel

logger = logging.getLogger("orders.ledger")


def _totals(lines: Iterable[ValidatedLine]) -> tuple[dict, dict]:
    qty = defaultdict(int)
    names = {}
    for line in lines:
        qty[(line.product_id, line.variant_key)] += line.quantity
        names[line.product_id] = line.product_name
    # fixed order keeps concurrent multi-variant updates from deadlocking
    return dict(sorted(qty.items())), names


class InventoryLedger(InventoryPort):
    """Authoritative per-variant stock."""

    def get_product(self, product_id: int) -> Optional[ProductRecord]:
        try:
            product = ProductModel.objects.prefetch_related("variants").get(pk=product_id)
        except (ProductModel.DoesNotExist, ValueError, TypeError):
            return None
        return ProductRecord(
            id=product.id,
            name=product.name,
            price=product.price,
            active=product.is_active,
            variants={
                v.key: VariantRecord(key=v.key, stock=v.stock, available=v.is_available)
                for v in product.variants.all()
            },
        )

    def decrement(self, lines: Iterable[ValidatedLine]) -> None:
        """Take stock for every line, or for none of them.

        Raises:
            ValidationError: ``INSUFFICIENT_STOCK`` naming the first
                variant that could not cover its quantity.
            PersistenceError: The database refused the update.
        """
        totals, names = _totals(lines)
        try:
            with transaction.atomic():
                for (product_id, key), qty in totals.items():
                    updated = VariantModel.objects.filter(
                        product_id=product_id, key=key, stock__gte=qty
                    ).update(stock=F("stock") - qty)
                    if updated != 1:
                        raise ValidationError(
                            "INSUFFICIENT_STOCK",
                            f"Not enough stock for {names.get(product_id, product_id)} (size {key}).",
                            product_id=product_id,
                            product=names.get(product_id),
                            variant=key,
                            requested=qty,
                        )
        except DatabaseError as e:
            logger.error("stock.decrement.failed", extra={"variants": [f"{p}:{k}" for p, k in totals]})
            raise PersistenceError("PERSISTENCE_ERROR", operation="stock.decrement") from e

        logger.info("stock.decremented", extra={"variants": {f"{p}:{k}": q for (p, k), q in totals.items()}})

    def restore(self, lines: Iterable[ValidatedLine]) -> None:
        """Give back stock for every line.

        A variant deleted from the catalog since the order was placed is
        skipped with a warning.
        """
        totals, _ = _totals(lines)
        try:
            with transaction.atomic():
                for (product_id, key), qty in totals.items():
                    updated = VariantModel.objects.filter(product_id=product_id, key=key).update(
                        stock=F("stock") + qty
                    )
                    if updated != 1:
                        logger.warning(
                            "stock.restore.variant_missing",
                            extra={"product_id": product_id, "variant": key, "quantity": qty},
                        )
        except DatabaseError as e:
            logger.error("stock.restore.failed", extra={"variants": [f"{p}:{k}" for p, k in totals]})
            raise PersistenceError("PERSISTENCE_ERROR", operation="stock.restore") from e

        logger.info("stock.restored", extra={"variants": {f"{p}:{k}": q for (p, k), q in totals.items()}})

"""Server-side re-validation of submitted carts."""

import logging
from collections import defaultdict
from typing import Iterable, List

from .domain import CartLine, InventoryPort, ValidatedCart, ValidatedLine
from .errors import ValidationError

logger = logging.getLogger("orders.validation")


class CartValidator:
    """Rebuild a cart from the inventory ledger's authoritative data.

    The validator is read-only: it reserves nothing. Any unknown product,
    missing or unavailable variant, or quantity above the variant's
    current stock fails the whole cart. Client-claimed prices are
    replaced by the ledger price on every line.
    """

    def __init__(self, inventory: InventoryPort):
        self.inventory = inventory

    def validate(self, cart_lines: Iterable[CartLine]) -> ValidatedCart:
        """Validate ``cart_lines`` and price them.

        Returns:
            ValidatedCart with one ``ValidatedLine`` per submitted line and
            ``subtotal = sum(price * quantity)``.

        Raises:
            ValidationError: ``EMPTY_CART``, ``INVALID_QUANTITY``,
                ``PRODUCT_NOT_FOUND``, ``VARIANT_UNAVAILABLE`` or
                ``INSUFFICIENT_STOCK``; ``data`` names the offending item.
        """
        cart_lines = list(cart_lines)
        if not cart_lines:
            raise ValidationError("EMPTY_CART")

        validated: List[ValidatedLine] = []
        # the same size may appear on several lines; stock is checked on the sum
        requested = defaultdict(int)

        for line in cart_lines:
            if line.quantity <= 0:
                raise ValidationError("INVALID_QUANTITY", product_id=line.product_id, quantity=line.quantity)

            product = self.inventory.get_product(line.product_id)
            if product is None or not product.active:
                raise ValidationError("PRODUCT_NOT_FOUND", product_id=line.product_id)

            variant = product.variants.get(line.variant_key)
            if variant is None or not variant.available:
                raise ValidationError(
                    "VARIANT_UNAVAILABLE",
                    f"{product.name} is not available in size {line.variant_key}.",
                    product_id=product.id,
                    product=product.name,
                    variant=line.variant_key,
                )

            requested[(product.id, variant.key)] += line.quantity
            if requested[(product.id, variant.key)] > variant.stock:
                raise ValidationError(
                    "INSUFFICIENT_STOCK",
                    f"Not enough stock for {product.name} (size {variant.key}).",
                    product_id=product.id,
                    product=product.name,
                    variant=variant.key,
                    available=variant.stock,
                    requested=requested[(product.id, variant.key)],
                )

            if line.claimed_price is not None and line.claimed_price != product.price:
                logger.warning(
                    "cart.price_mismatch",
                    extra={"product_id": product.id, "claimed": line.claimed_price, "price": product.price},
                )

            validated.append(
                ValidatedLine(
                    product_id=product.id,
                    product_name=product.name,
                    variant_key=variant.key,
                    quantity=line.quantity,
                    unit_price=product.price,
                )
            )

        subtotal = sum(v.line_total for v in validated)
        return ValidatedCart(lines=validated, subtotal=subtotal)

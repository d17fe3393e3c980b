from django.db import models


class ProductModel(models.Model):
    name = models.CharField(max_length=200)
    # whole currency units, as charged
    price = models.PositiveIntegerField()
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        ordering = ["id"]

    def __str__(self) -> str:
        return self.name


class VariantModel(models.Model):
    """Stock for one purchasable size of a product.

    ``stock`` only ever changes through ``InventoryLedger`` relative
    updates; a PositiveIntegerField keeps the database refusing negatives.
    """

    product = models.ForeignKey(ProductModel, on_delete=models.CASCADE, related_name="variants")
    key = models.CharField(max_length=32)
    stock = models.PositiveIntegerField(default=0)
    is_available = models.BooleanField(default=True)

    class Meta:
        db_table = "product_variants"
        ordering = ["product_id", "key"]
        constraints = [
            models.UniqueConstraint(fields=["product", "key"], name="ux_variant_product_key"),
        ]

    def __str__(self) -> str:
        return f"{self.product_id}:{self.key}"

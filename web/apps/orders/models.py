import uuid

from django.db import models, transaction
from django.utils import timezone


class CustomerModel(models.Model):
    name = models.CharField(max_length=200)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=40, blank=True, default="")
    order_count = models.PositiveIntegerField(default=0)
    total_spent = models.PositiveBigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "customers"
        ordering = ["-created_at"]


class OrderModel(models.Model):
    # UUID PK exposed in the API and used as the gateway external reference
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # human-facing order number ("Order #42")
    internal_id = models.BigIntegerField(unique=True, editable=False, null=True)

    class Status(models.TextChoices):
        PENDING = "pending"
        AWAITING_CONFIRMATION = "awaiting_confirmation"
        REJECTED = "rejected"
        PAID = "paid"
        SHIPPED = "shipped"
        DELIVERED = "delivered"
        CANCELLED = "cancelled"

    class PaymentMethod(models.TextChoices):
        GATEWAY = "gateway"
        TRANSFER = "transfer"

    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING, db_index=True)
    payment_method = models.CharField(max_length=16, choices=PaymentMethod.choices)

    customer = models.ForeignKey(CustomerModel, on_delete=models.PROTECT, related_name="orders")
    customer_name = models.CharField(max_length=200)
    customer_email = models.EmailField()
    customer_phone = models.CharField(max_length=40)
    customer_doc_number = models.CharField(max_length=32, null=True, blank=True)

    subtotal = models.PositiveIntegerField()
    discount = models.PositiveIntegerField(default=0)
    total = models.PositiveIntegerField()

    shipping_street_name = models.CharField(max_length=200)
    shipping_street_number = models.CharField(max_length=20)
    shipping_apartment = models.CharField(max_length=50, null=True, blank=True)
    shipping_description = models.CharField(max_length=500, null=True, blank=True)
    shipping_city = models.CharField(max_length=100)
    shipping_province = models.CharField(max_length=100)
    shipping_postal_code = models.CharField(max_length=20)
    shipping_method_id = models.CharField(max_length=50)
    shipping_name = models.CharField(max_length=200)
    shipping_details = models.TextField(null=True, blank=True)
    shipping_cost = models.PositiveIntegerField(default=0)

    gateway_session_id = models.CharField(max_length=100, null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        db_table = "orders"
        ordering = ["-internal_id"]
        indexes = [
            models.Index(fields=["payment_method", "status", "created_at"], name="ix_orders_method_status"),
        ]

    def save(self, *args, **kwargs):
        # Assign incremental `internal_id` only on creation
        if self.internal_id is None:
            with transaction.atomic():
                last = (
                    OrderModel.objects.select_for_update()
                    .exclude(internal_id=None)
                    .order_by("-internal_id")
                    .first()
                )
                self.internal_id = 1 if last is None else last.internal_id + 1
                super().save(*args, **kwargs)
            return
        super().save(*args, **kwargs)


class OrderLineModel(models.Model):
    """Line item frozen at order creation; never re-read from the catalog."""

    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="lines")
    position = models.PositiveSmallIntegerField()
    product_id = models.BigIntegerField()
    product_name = models.CharField(max_length=200)
    variant_key = models.CharField(max_length=32)
    quantity = models.PositiveIntegerField()
    unit_price = models.PositiveIntegerField()

    class Meta:
        db_table = "order_lines"
        ordering = ["order_id", "position"]


class IdempotencyKey(models.Model):
    key = models.CharField(max_length=200, primary_key=True)
    request_hash = models.CharField(max_length=64)
    response_status = models.PositiveSmallIntegerField(default=0)
    response_body = models.JSONField(default=dict)
    order = models.ForeignKey(OrderModel, on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "idempotency_keys"

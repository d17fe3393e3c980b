"""Repository layer for orders and customers.

These classes implement the ``OrderStorePort`` and ``CustomerPort``
interfaces on the Django ORM and map rows to and from the frozen domain
``Order``. The domain layer never sees model instances.

Per-order mutual exclusion comes from ``SELECT ... FOR UPDATE`` inside
``transaction.atomic()``; the status write is additionally a
compare-and-set (``UPDATE ... WHERE status = <expected>``) so backends
without row locks (SQLite) still cannot apply two transitions from the
same starting status.
"""

import functools
import logging
from datetime import datetime
from typing import List, Optional

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F

from .domain import (
    CustomerContact,
    CustomerPort,
    Order,
    OrderStatus,
    OrderStorePort,
    PaymentMethod,
    ShippingInfo,
    ValidatedLine,
)
from .errors import PersistenceError
from .models import CustomerModel, OrderLineModel, OrderModel

logger = logging.getLogger("orders.repository")


def _persistence_guard(operation: str):
    """Translate database failures into ``PersistenceError``."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except DatabaseError as e:
                logger.error("store.write_failed", extra={"operation": operation, "error": str(e)})
                raise PersistenceError("PERSISTENCE_ERROR", operation=operation) from e

        return wrapper

    return decorator


def to_domain(obj: OrderModel) -> Order:
    """Map an ``OrderModel`` (with its lines) to a domain ``Order``."""
    return Order(
        id=str(obj.id),
        number=obj.internal_id,
        customer_id=obj.customer_id,
        contact=CustomerContact(
            first_name=obj.customer_name,
            last_name="",
            email=obj.customer_email,
            phone=obj.customer_phone,
            doc_number=obj.customer_doc_number,
        ),
        lines=[
            ValidatedLine(
                product_id=line.product_id,
                product_name=line.product_name,
                variant_key=line.variant_key,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in obj.lines.all()
        ],
        subtotal=obj.subtotal,
        discount=obj.discount,
        total=obj.total,
        status=OrderStatus(obj.status),
        payment_method=PaymentMethod(obj.payment_method),
        shipping=ShippingInfo(
            street_name=obj.shipping_street_name,
            street_number=obj.shipping_street_number,
            apartment=obj.shipping_apartment,
            description=obj.shipping_description,
            city=obj.shipping_city,
            province=obj.shipping_province,
            postal_code=obj.shipping_postal_code,
            method_id=obj.shipping_method_id,
            method_name=obj.shipping_name,
            details=obj.shipping_details,
            cost=obj.shipping_cost,
        ),
        created_at=obj.created_at,
        gateway_session_id=obj.gateway_session_id,
    )


class OrderRepository(OrderStorePort):
    """Order store on the Django ORM."""

    def atomic(self):
        return transaction.atomic()

    def _query(self, order_id: str, for_update: bool) -> Optional[Order]:
        qs = OrderModel.objects.all()
        if for_update:
            qs = qs.select_for_update()
        try:
            obj = qs.prefetch_related("lines").get(pk=order_id)
        except (OrderModel.DoesNotExist, DjangoValidationError, ValueError):
            return None
        return to_domain(obj)

    def get(self, order_id: str) -> Optional[Order]:
        return self._query(order_id, for_update=False)

    def lock(self, order_id: str) -> Optional[Order]:
        """Read the order holding its row lock until the current atomic block ends."""
        return self._query(order_id, for_update=True)

    @_persistence_guard("order.create")
    def create(self, order: Order) -> Order:
        """Persist a new order and its lines.

        Returns:
            The stored order, with its assigned ``number``.
        """
        with transaction.atomic():
            obj = OrderModel(
                id=order.id,
                status=order.status.value,
                payment_method=order.payment_method.value,
                customer_id=order.customer_id,
                customer_name=order.contact.full_name,
                customer_email=order.contact.email,
                customer_phone=order.contact.phone,
                customer_doc_number=order.contact.doc_number,
                subtotal=order.subtotal,
                discount=order.discount,
                total=order.total,
                shipping_street_name=order.shipping.street_name,
                shipping_street_number=order.shipping.street_number,
                shipping_apartment=order.shipping.apartment,
                shipping_description=order.shipping.description,
                shipping_city=order.shipping.city,
                shipping_province=order.shipping.province,
                shipping_postal_code=order.shipping.postal_code,
                shipping_method_id=order.shipping.method_id,
                shipping_name=order.shipping.method_name,
                shipping_details=order.shipping.details,
                shipping_cost=order.shipping.cost,
                gateway_session_id=order.gateway_session_id,
                created_at=order.created_at,
            )
            obj.save(force_insert=True)
            OrderLineModel.objects.bulk_create(
                [
                    OrderLineModel(
                        order=obj,
                        position=i,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        variant_key=line.variant_key,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                    for i, line in enumerate(order.lines)
                ]
            )
        return to_domain(OrderModel.objects.prefetch_related("lines").get(pk=obj.pk))

    @_persistence_guard("order.status")
    def compare_and_set_status(self, order_id: str, expected: OrderStatus, new: OrderStatus) -> bool:
        updated = OrderModel.objects.filter(pk=order_id, status=expected.value).update(status=new.value)
        return updated == 1

    def expired_transfer_ids(self, cutoff: datetime) -> List[str]:
        return [
            str(pk)
            for pk in OrderModel.objects.filter(
                payment_method=OrderModel.PaymentMethod.TRANSFER,
                status=OrderModel.Status.PENDING,
                created_at__lt=cutoff,
            )
            .order_by("created_at")
            .values_list("pk", flat=True)
        ]


class CustomerRepository(CustomerPort):
    """Customer aggregates keyed by email."""

    @_persistence_guard("customer.find_or_create")
    def find_or_create(self, contact: CustomerContact) -> int:
        """Return the customer id for ``contact.email`` and count one more order.

        A concurrent first order for the same email loses the insert race
        on the unique index and falls back to the increment path.
        """
        email = contact.email.strip().lower()
        updated = CustomerModel.objects.filter(email=email).update(order_count=F("order_count") + 1)
        if updated:
            return CustomerModel.objects.values_list("pk", flat=True).get(email=email)
        try:
            # Nested savepoint: if IntegrityError occurs, only this block is rolled back.
            with transaction.atomic():
                obj = CustomerModel.objects.create(
                    email=email,
                    name=contact.full_name,
                    phone=contact.phone,
                    order_count=1,
                    total_spent=0,
                )
                return obj.pk
        except IntegrityError:
            CustomerModel.objects.filter(email=email).update(order_count=F("order_count") + 1)
            return CustomerModel.objects.values_list("pk", flat=True).get(email=email)

    @_persistence_guard("customer.add_spent")
    def add_spent(self, customer_id: int, amount: int) -> None:
        CustomerModel.objects.filter(pk=customer_id).update(total_spent=F("total_spent") + amount)

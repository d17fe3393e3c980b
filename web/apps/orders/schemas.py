"""Pydantic schemas for orders.

Request schemas check shape only (types, required fields, enum values);
business validation of the cart happens in ``CartValidator``. Read
schemas render the domain ``Order`` for the storefront and admin.
"""

import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain import CartLine, CustomerContact, Order, OrderStatus, PaymentMethod, ShippingInfo

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CartLineIn(BaseModel):
    """Input schema for a single cart line.

    Attributes:
        product_id: Catalog product id.
        variant_key: Size key ("S", "M", "42", "Única", ...), matched as
            stored in the catalog after trimming whitespace.
        quantity: Units requested; non-positive values are rejected by
            the cart validator with ``INVALID_QUANTITY``.
        price: Price the storefront displayed. Logged when it differs
            from the catalog price, never used.
    """

    product_id: int = Field(gt=0)
    variant_key: str = Field(min_length=1, max_length=32)
    quantity: int
    price: Optional[int] = None

    @field_validator("variant_key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        return v.strip()

    def to_domain(self) -> CartLine:
        return CartLine(self.product_id, self.variant_key, self.quantity, self.price)


class CustomerIn(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=254)
    phone: str = Field(min_length=6, max_length=40)
    doc_number: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v2 = v.strip().lower()
        if not EMAIL_RE.match(v2):
            raise ValueError("Invalid email")
        return v2

    def to_domain(self) -> CustomerContact:
        return CustomerContact(
            first_name=self.first_name.strip(),
            last_name=self.last_name.strip(),
            email=self.email,
            phone=self.phone.strip(),
            doc_number=self.doc_number,
        )


class ShippingInfoIn(BaseModel):
    street_name: str = Field(min_length=1, max_length=200)
    street_number: str = Field(min_length=1, max_length=20)
    apartment: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)
    city: str = Field(min_length=1, max_length=100)
    province: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    method_id: str = Field(min_length=1, max_length=50)
    method_name: str = Field(min_length=1, max_length=200)
    details: Optional[str] = None
    cost: int = Field(default=0, ge=0)

    def to_domain(self) -> ShippingInfo:
        return ShippingInfo(**self.model_dump())


class CheckoutIn(BaseModel):
    """Schema for a checkout submission."""

    items: list[CartLineIn]
    customer: CustomerIn
    shipping: ShippingInfoIn
    payment_method: Literal["gateway", "transfer"]


class StatusChangeIn(BaseModel):
    status: OrderStatus


class GatewayCallbackIn(BaseModel):
    """Provider callback body. Only the payment id matters; it is re-fetched."""

    model_config = ConfigDict(extra="allow")

    type: Optional[str] = None
    topic: Optional[str] = None
    action: Optional[str] = None
    data: Optional[dict] = None


class OrderLineOut(BaseModel):
    product_id: int
    product_name: str
    variant_key: str
    quantity: int
    unit_price: int
    line_total: int


class ShippingOut(BaseModel):
    street_name: str
    street_number: str
    apartment: Optional[str] = None
    description: Optional[str] = None
    city: str
    province: str
    postal_code: str
    method_id: str
    method_name: str
    details: Optional[str] = None
    cost: int


class CustomerOut(BaseModel):
    id: int
    name: str
    email: str
    phone: str
    doc_number: Optional[str] = None


class BankDetailsOut(BaseModel):
    cvu: str = ""
    alias: str = ""
    holder: str = ""


class OrderReadDTO(BaseModel):
    """Order snapshot.

    ``bank_details`` and ``expires_at`` are only present for transfer
    orders.
    """

    id: str
    number: Optional[int] = None
    status: OrderStatus
    payment_method: PaymentMethod
    customer: CustomerOut
    items: list[OrderLineOut]
    subtotal: int
    discount: int
    total: int
    shipping: ShippingOut
    created_at: datetime
    expires_at: Optional[datetime] = None
    bank_details: Optional[BankDetailsOut] = None

    @classmethod
    def from_order(
        cls,
        order: Order,
        expires_at: Optional[datetime] = None,
        bank_details: Optional[dict] = None,
    ) -> "OrderReadDTO":
        is_transfer = order.payment_method == PaymentMethod.TRANSFER
        return cls(
            id=order.id,
            number=order.number,
            status=order.status,
            payment_method=order.payment_method,
            customer=CustomerOut(
                id=order.customer_id,
                name=order.contact.full_name,
                email=order.contact.email,
                phone=order.contact.phone,
                doc_number=order.contact.doc_number,
            ),
            items=[
                OrderLineOut(
                    product_id=line.product_id,
                    product_name=line.product_name,
                    variant_key=line.variant_key,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    line_total=line.line_total,
                )
                for line in order.lines
            ],
            subtotal=order.subtotal,
            discount=order.discount,
            total=order.total,
            shipping=ShippingOut(
                street_name=order.shipping.street_name,
                street_number=order.shipping.street_number,
                apartment=order.shipping.apartment,
                description=order.shipping.description,
                city=order.shipping.city,
                province=order.shipping.province,
                postal_code=order.shipping.postal_code,
                method_id=order.shipping.method_id,
                method_name=order.shipping.method_name,
                details=order.shipping.details,
                cost=order.shipping.cost,
            ),
            created_at=order.created_at,
            expires_at=expires_at if is_transfer else None,
            bank_details=BankDetailsOut(**(bank_details or {})) if is_transfer else None,
        )

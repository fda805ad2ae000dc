# orderflow/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import List
from decimal import Decimal
from datetime import datetime


class ItemIn(BaseModel):
    """Dodanie produktu do koszyka."""

    product_id: int = Field(..., gt=0)
    quantity: int = Field(..., gt=0)


class LineUpdateIn(BaseModel):
    quantity: int = Field(..., gt=0)


class CartLineOut(BaseModel):
    id: int
    user_id: int
    product_id: int
    quantity: int


class CartItemOut(BaseModel):
    """Linia koszyka z aktualnym stanem produktu."""

    id: int
    product_id: int
    quantity: int
    name: str
    price: Decimal
    stock: int
    is_active: bool
    line_total: Decimal


class CartOut(BaseModel):
    user_id: int
    items: List[CartItemOut]
    total: Decimal


class CheckoutIn(BaseModel):
    user_id: int = Field(..., gt=0)
    address: str = Field(..., min_length=1, max_length=255)
    city: str | None = Field(None, max_length=100)
    province: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=20)
    notes: str | None = None
    payment_method: str | None = Field(None, max_length=40)
    line_ids: List[int] | None = Field(None, description="Tylko wybrane linie koszyka; brak = caly koszyk")


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal


class OrderSummaryOut(BaseModel):
    id: int
    user_id: int
    order_number: str
    status: str
    subtotal: Decimal
    shipping_cost: Decimal
    total_amount: Decimal
    address: str
    city: str | None = None
    province: str | None = None
    postal_code: str | None = None
    notes: str | None = None
    payment_id: int | None = None
    payment_status: str
    shipping_date: datetime | None = None
    delivery_date: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderOut(OrderSummaryOut):
    items: List[OrderItemOut] = []


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderPage(BaseModel):
    items: List[OrderSummaryOut]
    pagination: Pagination


class StatusHistoryOut(BaseModel):
    id: int
    order_id: int
    from_status: str | None = None
    to_status: str
    note: str | None = None
    actor_id: int | None = None
    created_at: datetime


class CancelIn(BaseModel):
    reason: str | None = Field(None, max_length=500)


class StatusChangeIn(BaseModel):
    status: str
    note: str | None = Field(None, max_length=500)
    actor_id: int | None = None


class PaymentOut(BaseModel):
    id: int
    order_id: int
    user_id: int
    amount: Decimal
    method: str
    status: str
    external_reference: str | None = None
    payment_url: str | None = None
    expires_at: datetime
    paid_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PaymentPage(BaseModel):
    items: List[PaymentOut]
    pagination: Pagination


class GatewayReferenceIn(BaseModel):
    external_reference: str = Field(..., min_length=1, max_length=100)
    payment_url: str | None = None


class PaymentCallbackIn(BaseModel):
    """Callback bramki; podpis weryfikowany wczesniej, przed serwisem."""

    external_reference: str = Field(..., min_length=1, max_length=100)
    status: str = Field(..., min_length=1)
    amount: Decimal
    signature: str | None = None


class CallbackResultOut(BaseModel):
    payment_id: int
    order_id: int
    payment_status: str
    order_status: str
    applied: bool

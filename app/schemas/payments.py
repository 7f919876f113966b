from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import field_serializer

from app.schemas.common import CamelModel


class _MoneyModel(CamelModel):
    @field_serializer("amount", "total_amount", "shipping_amount", check_fields=False)
    def serialize_money(self, value: Decimal | None) -> str | None:
        return format(value, "f") if value is not None else None


class PaymentResponse(_MoneyModel):
    id: str
    order_id: str
    provider: str
    amount: Decimal
    currency: str
    status: str
    provider_reference: str | None = None
    external_id: str
    customer_phone: str
    idempotency_key: str
    raw_payload: dict[str, Any] | None = None
    webhook_payload: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime | None = None


class OrderResponse(_MoneyModel):
    id: str
    order_number: str
    customer_id: str
    status: str
    total_amount: Decimal
    shipping_amount: Decimal
    address: dict[str, Any] | None = None
    customer_phone: str | None = None
    notes: str | None = None
    tracking_number: str | None = None
    created_at: datetime
    updated_at: datetime


class OrderDetailResponse(OrderResponse):
    payments: list[PaymentResponse] = []

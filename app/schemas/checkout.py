from decimal import Decimal

from pydantic import Field, field_serializer, field_validator

from app.schemas.common import CamelModel
from app.services.momo_client import PHONE_FORMAT_MESSAGE, validate_phone


class CheckoutRequest(CamelModel):
    telegram_id: str = Field(min_length=1, max_length=64)
    chat_id: int | str
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    phone: str
    delivery_address: str = Field(min_length=1, max_length=1000)

    @field_validator("phone")
    @classmethod
    def validate_phone_number(cls, v: str) -> str:
        v = v.strip()
        if not validate_phone(v):
            raise ValueError(PHONE_FORMAT_MESSAGE)
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "telegramId": "123456789",
                    "chatId": 123456789,
                    "amount": "25.00",
                    "phone": "0244123456",
                    "deliveryAddress": "12 Ring Road\nOsu\nAccra",
                }
            ]
        }
    }


class CheckoutResponse(CamelModel):
    success: bool
    order_id: str
    order_number: str
    payment_id: str
    external_id: str
    reference_id: str | None = None
    amount: Decimal
    expires_in_minutes: int | None = None
    error: str | None = None

    @field_serializer("amount")
    def serialize_amount(self, value: Decimal) -> str:
        return format(value, "f")

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

from app.models import Customer, Order, Payment
from app.services.ledger import PaymentLedger
from app.services.momo_client import (
    GatewayError,
    InvalidPhoneNumber,
    MomoClient,
    build_external_id,
    generate_idempotency_key,
    validate_phone,
)
from app.services.time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_CITY = "Accra"
DEFAULT_REGION = "Greater Accra"
DEFAULT_COUNTRY = "Ghana"


def parse_address(full_address: str) -> dict[str, str]:
    """Split a free-text, line separated address into its parts."""
    lines = [line.strip() for line in full_address.splitlines() if line.strip()]
    return {
        "fullAddress": full_address,
        "street": lines[0] if lines else "",
        "area": lines[1] if len(lines) > 1 else "",
        "city": lines[2] if len(lines) > 2 else DEFAULT_CITY,
        "region": lines[3] if len(lines) > 3 else DEFAULT_REGION,
        "country": DEFAULT_COUNTRY,
    }


@dataclass(frozen=True)
class CheckoutResult:
    success: bool
    order: Order
    payment: Payment
    reference_id: str | None = None
    expires_in_minutes: int | None = None
    error: str | None = None


class CollectionInitiator:
    """Checkout entry point: persists the order and asks the payer to approve."""

    def __init__(
        self,
        ledger: PaymentLedger,
        client: MomoClient,
        *,
        timeout_minutes: int = 10,
        shipping_amount: Decimal = Decimal("10.00"),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.client = client
        self.timeout_minutes = timeout_minutes
        self.shipping_amount = shipping_amount
        self._clock = clock

    def initiate_checkout(
        self,
        customer: Customer,
        amount: Decimal,
        phone: str,
        delivery_address: str,
        *,
        chat_id: int | str,
        description: str = "EcomBot Purchase",
    ) -> CheckoutResult:
        phone = (phone or "").strip()
        if not validate_phone(phone):
            raise InvalidPhoneNumber()

        now = self._clock()
        amount = Decimal(amount).quantize(Decimal("0.01"))
        external_id = build_external_id(chat_id, now)

        order_fields: dict[str, Any] = {
            "customer_id": customer.id,
            "total_amount": amount,
            "shipping_amount": self.shipping_amount,
            "address": parse_address(delivery_address),
            "customer_phone": phone,
            "notes": f"Delivery Address: {delivery_address}",
            "created_at": now,
        }
        payment_fields: dict[str, Any] = {
            "provider": "mtn_momo",
            "amount": amount,
            "currency": self.client.currency,
            "external_id": external_id,
            "customer_phone": phone,
            "idempotency_key": lambda order: generate_idempotency_key(order.id),
            "created_at": now,
            "updated_at": now,
            "expires_at": now + timedelta(minutes=self.timeout_minutes),
        }
        order, payment = self.ledger.create_order_with_payment(order_fields, payment_fields)
        logger.info(
            "Checkout created order %s (%s) with payment %s for customer %s",
            order.order_number,
            order.id,
            payment.id,
            customer.id,
        )

        try:
            result = self.client.initiate_collection(str(amount), phone, external_id, description)
        except GatewayError as exc:
            # Order and payment stay PENDING; the reconciliation timeout cancels them.
            logger.error("Collection request for payment %s failed: %s", payment.id, exc)
            return CheckoutResult(success=False, order=order, payment=payment, error=str(exc))

        if not result.accepted:
            self.ledger.update_payment(payment.id, raw_payload={"request": result.request, "reason": result.reason})
            return CheckoutResult(
                success=False,
                order=order,
                payment=payment,
                reference_id=result.reference_id,
                error=result.reason or "Unable to process payment at this time.",
            )

        payment = self.ledger.update_payment(
            payment.id,
            provider_reference=result.reference_id,
            raw_payload={"request": result.request, "referenceId": result.reference_id},
        )
        return CheckoutResult(
            success=True,
            order=order,
            payment=payment,
            reference_id=result.reference_id,
            expires_in_minutes=self.timeout_minutes,
        )

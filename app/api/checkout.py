import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.config import settings
from app.dependencies import Principal, get_momo_client, require_checkout_caller
from app.models import get_db
from app.schemas.checkout import CheckoutRequest, CheckoutResponse
from app.services.checkout import CollectionInitiator
from app.services.ledger import PaymentLedger
from app.services.momo_client import InvalidPhoneNumber, MomoClient

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "",
    response_model=CheckoutResponse,
    summary="Create order and send MoMo payment request",
)
def checkout(
    body: CheckoutRequest,
    caller: Annotated[Principal, Depends(require_checkout_caller)],
    client: Annotated[MomoClient, Depends(get_momo_client)],
    db: Annotated[Session, Depends(get_db)],
):
    """
    Called by the Telegram bot when the customer confirms checkout.
    Creates the order and its PENDING payment, then asks the customer's
    wallet to approve the collection. A rejected or failed request still
    returns the created order with success=false; the payment expires on
    its own.
    """
    ledger = PaymentLedger(db)
    customer = ledger.get_or_create_customer(
        body.telegram_id,
        username=body.username,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    initiator = CollectionInitiator(
        ledger,
        client,
        timeout_minutes=settings.PAYMENT_TIMEOUT_MINUTES,
        shipping_amount=settings.DEFAULT_SHIPPING_AMOUNT,
    )
    try:
        result = initiator.initiate_checkout(
            customer,
            body.amount,
            body.phone,
            body.delivery_address,
            chat_id=body.chat_id,
        )
    except InvalidPhoneNumber as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(
        "Checkout by %s for order %s: success=%s",
        caller.subject,
        result.order.order_number,
        result.success,
    )
    return CheckoutResponse(
        success=result.success,
        order_id=result.order.id,
        order_number=result.order.order_number,
        payment_id=result.payment.id,
        external_id=result.payment.external_id,
        reference_id=result.reference_id,
        amount=result.payment.amount,
        expires_in_minutes=result.expires_in_minutes,
        error=result.error,
    )

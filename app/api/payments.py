from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.dependencies import Principal, require_admin
from app.models import PaymentStatus, get_db
from app.schemas.payments import OrderDetailResponse, PaymentResponse
from app.services.ledger import PaymentLedger

router = APIRouter()
orders_router = APIRouter()


@router.get(
    "",
    response_model=list[PaymentResponse],
    summary="List payments",
)
def list_payments(
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
    status_filter: Annotated[PaymentStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Newest first, optionally filtered by payment status."""
    ledger = PaymentLedger(db)
    return ledger.list_payments(
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get payment",
)
def get_payment(
    payment_id: str,
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    payment = PaymentLedger(db).get_payment(payment_id)
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    return payment


@orders_router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order with its payments",
)
def get_order(
    order_id: str,
    admin: Annotated[Principal, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
):
    ledger = PaymentLedger(db)
    order = ledger.get_order(order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    detail = OrderDetailResponse.model_validate(order)
    detail.payments = [PaymentResponse.model_validate(p) for p in ledger.get_payments_by_order_id(order.id)]
    return detail

"""Payment state transitions shared by the webhook and the reconciliation job.

PENDING --SUCCESSFUL--> SUCCESS  (order -> PAID)
PENDING --FAILED------> FAILED   (order -> CANCELLED)
PENDING --timeout-----> TIMEOUT  (order -> CANCELLED)
PENDING --PENDING-----> no-op
"""

import logging
from dataclasses import dataclass
from typing import Any

from app.models import Customer, OrderStatus, Payment, PaymentStatus
from app.models.enums import ORDER_STATUS_FOR_PAYMENT
from app.services.ledger import PaymentLedger
from app.services.momo_client import STATUS_FAILED, STATUS_SUCCESSFUL, normalize_remote_status

logger = logging.getLogger(__name__)

PAYMENT_STATUS_FOR_REMOTE = {
    STATUS_SUCCESSFUL: PaymentStatus.SUCCESS,
    STATUS_FAILED: PaymentStatus.FAILED,
}

normalize_provider_status = normalize_remote_status


@dataclass(frozen=True)
class TransitionOutcome:
    applied: bool
    payment_id: str
    order_id: str
    payment_status: PaymentStatus | None = None
    order_status: OrderStatus | None = None
    order_number: str | None = None
    amount: str | None = None
    currency: str | None = None
    customer_telegram_id: str | None = None
    source: str | None = None


def apply_transition(
    ledger: PaymentLedger,
    payment: Payment,
    target: PaymentStatus,
    *,
    notifier=None,
    source: str | None = None,
    **fields: Any,
) -> TransitionOutcome:
    """Move a PENDING payment to ``target`` and cascade to its order.

    Both writes are conditional on the row still being PENDING and are
    committed together. A writer that lost the race gets ``applied=False``
    and nothing is written; the notifier only fires for applied transitions.
    """
    if not target.is_terminal:
        raise ValueError(f"{target.value} is not a terminal payment status")

    db = ledger.db
    order_status = None
    try:
        applied = ledger.transition_payment(payment.id, target, **fields)
        if applied:
            order_target = ORDER_STATUS_FOR_PAYMENT[target]
            if ledger.transition_order(payment.order_id, order_target):
                order_status = order_target
            else:
                logger.info(
                    "Order %s is no longer PENDING, leaving its status unchanged",
                    payment.order_id,
                )
        db.commit()
    except Exception:
        db.rollback()
        raise

    if not applied:
        logger.info(
            "Payment %s already left PENDING, %s transition to %s skipped",
            payment.id,
            source or "requested",
            target.value,
        )
        return TransitionOutcome(applied=False, payment_id=payment.id, order_id=payment.order_id, source=source)

    order = ledger.get_order(payment.order_id)
    customer = db.get(Customer, order.customer_id) if order else None
    outcome = TransitionOutcome(
        applied=True,
        payment_id=payment.id,
        order_id=payment.order_id,
        payment_status=target,
        order_status=order_status,
        order_number=order.order_number if order else None,
        amount=str(payment.amount) if payment.amount is not None else None,
        currency=payment.currency,
        customer_telegram_id=customer.telegram_id if customer else None,
        source=source,
    )
    logger.info(
        "Payment %s -> %s, order %s -> %s (%s)",
        payment.id,
        target.value,
        payment.order_id,
        order_status.value if order_status else "unchanged",
        source or "unknown",
    )

    if notifier is not None:
        try:
            notifier.payment_transitioned(outcome)
        except Exception:
            logger.exception("Notifier failed for payment %s", payment.id)
    return outcome


def apply_provider_status(
    ledger: PaymentLedger,
    payment: Payment,
    provider_status: str,
    *,
    notifier=None,
    source: str | None = None,
    **fields: Any,
) -> TransitionOutcome:
    """Apply a normalized provider status (SUCCESSFUL / FAILED / PENDING)."""
    target = PAYMENT_STATUS_FOR_REMOTE.get(normalize_provider_status(provider_status))
    if target is None:
        return TransitionOutcome(applied=False, payment_id=payment.id, order_id=payment.order_id, source=source)
    return apply_transition(ledger, payment, target, notifier=notifier, source=source, **fields)

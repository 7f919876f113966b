import json
import logging
from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.config import settings
from app.dependencies import get_momo_client, get_notifier, get_webhook_rate_limiter
from app.models import PaymentStatus, get_db
from app.services.ledger import PaymentLedger
from app.services.momo_client import STATUS_PENDING, MomoClient
from app.services.rate_limit import RateLimiter
from app.services.transitions import apply_provider_status, normalize_provider_status

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-mtn-signature"


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: dict[str, Any]


def handle_inbound_notification(
    raw_body: bytes,
    signature: str | None,
    *,
    ledger: PaymentLedger,
    client: MomoClient,
    notifier=None,
    allow_unsigned: bool = False,
) -> WebhookResult:
    """Validate, correlate and apply one provider payment notification."""
    if signature:
        if not client.validate_signature(raw_body, signature):
            logger.warning("Invalid MTN webhook signature")
            return WebhookResult(status.HTTP_401_UNAUTHORIZED, {"error": "Invalid signature"})
    elif allow_unsigned:
        logger.warning("Unsigned MTN webhook accepted (MOMO_WEBHOOK_ALLOW_UNSIGNED is enabled)")
    else:
        logger.warning("Rejected unsigned MTN webhook")
        return WebhookResult(status.HTTP_401_UNAUTHORIZED, {"error": "Missing webhook signature"})

    try:
        body = json.loads(raw_body)
    except ValueError as e:
        logger.error(f"Invalid JSON in MTN webhook: {e}")
        return WebhookResult(status.HTTP_400_BAD_REQUEST, {"error": "Invalid JSON"})
    if not isinstance(body, dict):
        return WebhookResult(status.HTTP_400_BAD_REQUEST, {"error": "JSON object expected"})

    reference_id = body.get("referenceId")
    external_id = body.get("externalId")
    reported_status = body.get("status")
    if not reported_status:
        return WebhookResult(status.HTTP_400_BAD_REQUEST, {"error": "status required"})
    if not reference_id and not external_id:
        return WebhookResult(status.HTTP_400_BAD_REQUEST, {"error": "referenceId or externalId required"})

    logger.info(
        "MTN MoMo webhook received: referenceId=%s externalId=%s status=%s",
        reference_id,
        external_id,
        reported_status,
    )

    payment = None
    if reference_id:
        payment = ledger.get_payment_by_external_reference(str(reference_id))
    if payment is None and external_id:
        payment = ledger.get_payment_by_external_id(str(external_id))
    if payment is None:
        logger.warning("Payment not found for webhook: referenceId=%s externalId=%s", reference_id, external_id)
        return WebhookResult(status.HTTP_404_NOT_FOUND, {"error": "Payment not found"})

    normalized = normalize_provider_status(reported_status)
    snapshot_fields: dict[str, Any] = {"webhook_payload": body}
    if reference_id and not payment.provider_reference:
        snapshot_fields["provider_reference"] = str(reference_id)

    if normalized == STATUS_PENDING:
        recorded = ledger.record_pending_snapshot(payment.id, **snapshot_fields)
        if not recorded:
            logger.info("Payment %s already %s, webhook snapshot not recorded", payment.id, payment.status)
        applied = False
    else:
        outcome = apply_provider_status(
            ledger,
            payment,
            normalized,
            notifier=notifier,
            source="webhook",
            **snapshot_fields,
        )
        applied = outcome.applied

    ledger.db.refresh(payment)
    return WebhookResult(
        status.HTTP_200_OK,
        {
            "success": True,
            "message": "Webhook processed",
            "applied": applied,
            "paymentStatus": PaymentStatus(payment.status).value,
        },
    )


@router.post(
    "/mtn-callback",
    summary="MTN MoMo collection callback",
)
async def mtn_callback(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    client: Annotated[MomoClient, Depends(get_momo_client)],
    notifier: Annotated[Any, Depends(get_notifier)],
    limiter: Annotated[RateLimiter, Depends(get_webhook_rate_limiter)],
):
    """
    MTN MoMo calls this when a request-to-pay settles.
    Body carries status plus referenceId and/or externalId; the raw body is
    signed with HMAC-SHA256 (hex) in the X-MTN-Signature header.
    Idempotent: a payment that already left PENDING is never changed again.
    """
    client_host = request.client.host if request.client else "unknown"
    if not limiter.allow(client_host):
        logger.warning("MTN webhook rate limit exceeded for %s", client_host)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": "Too many webhook requests"},
        )

    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    # Ledger writes and the notifier's HTTP call block; keep them off the event loop.
    try:
        result = await run_in_threadpool(
            handle_inbound_notification,
            raw_body,
            signature,
            ledger=PaymentLedger(db),
            client=client,
            notifier=notifier,
            allow_unsigned=settings.MOMO_WEBHOOK_ALLOW_UNSIGNED,
        )
    except Exception as e:
        logger.error(f"Error processing MTN webhook: {e}", exc_info=True)
        db.rollback()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    return JSONResponse(status_code=result.status_code, content=result.body)

from app.schemas.checkout import CheckoutRequest, CheckoutResponse
from app.schemas.payments import OrderDetailResponse, OrderResponse, PaymentResponse
from app.schemas.reconciliation import (
    ForceReconciliationResponse,
    ReconciliationReportResponse,
    ReconciliationStatusResponse,
)

__all__ = [
    "CheckoutRequest",
    "CheckoutResponse",
    "OrderDetailResponse",
    "OrderResponse",
    "PaymentResponse",
    "ForceReconciliationResponse",
    "ReconciliationReportResponse",
    "ReconciliationStatusResponse",
]

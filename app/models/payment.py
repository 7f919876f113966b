import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, Numeric, String, text

from app.models.database import Base
from app.models.enums import PaymentStatus
from app.services.time_utils import utcnow


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # At most one PENDING payment per order.
        Index(
            "uq_payments_order_pending",
            "order_id",
            unique=True,
            sqlite_where=text("status = 'PENDING'"),
            postgresql_where=text("status = 'PENDING'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    provider = Column(String(32), nullable=False, default="mtn_momo")
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GHS")
    status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    provider_reference = Column(String(64), nullable=True, index=True)
    external_id = Column(String(128), unique=True, index=True, nullable=False)
    customer_phone = Column(String(32), nullable=False)
    raw_payload = Column(JSON, nullable=True, default=dict)
    webhook_payload = Column(JSON, nullable=True, default=dict)
    idempotency_key = Column(String(128), unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

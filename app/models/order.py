import uuid
from decimal import Decimal

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Numeric, String, Text

from app.models.database import Base
from app.models.enums import OrderStatus
from app.services.time_utils import utcnow


class Order(Base):
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number = Column(String(32), unique=True, index=True, nullable=False)  # ORD-YYYYMMDD-NNN
    customer_id = Column(String(36), ForeignKey("customers.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("10.00"))
    address = Column(JSON, nullable=True)
    customer_phone = Column(String(32), nullable=True)
    notes = Column(Text, nullable=True)
    tracking_number = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models import Customer, Order, OrderStatus, Payment, PaymentStatus
from app.services.time_utils import utcnow

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 3


class PaymentLedger:
    """Persistence of orders and payments.

    Status transitions go through the conditional helpers
    (``transition_payment``, ``transition_order``) which only touch rows that
    are still PENDING, so two concurrent writers can never both apply.
    """

    def __init__(self, db: Session):
        self.db = db

    # Customers

    def get_or_create_customer(self, telegram_id: str, **fields: Any) -> Customer:
        customer = self.db.query(Customer).filter(Customer.telegram_id == str(telegram_id)).first()
        if customer:
            return customer
        customer = Customer(telegram_id=str(telegram_id), **fields)
        self.db.add(customer)
        try:
            self.db.commit()
        except IntegrityError:
            # Created concurrently by another request.
            self.db.rollback()
            return self.db.query(Customer).filter(Customer.telegram_id == str(telegram_id)).one()
        return customer

    # Orders

    def generate_order_number(self, now: datetime | None = None) -> str:
        moment = now or utcnow()
        start_of_day = moment.replace(hour=0, minute=0, second=0, microsecond=0)
        count = self.db.query(func.count(Order.id)).filter(Order.created_at >= start_of_day).scalar() or 0
        return f"ORD-{moment:%Y%m%d}-{count + 1:03d}"

    def create_order(self, **fields: Any) -> Order:
        order = self._new_order(fields)
        self.db.add(order)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return order

    def create_payment(self, **fields: Any) -> Payment:
        payment = Payment(**fields)
        self.db.add(payment)
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        return payment

    def create_order_with_payment(
        self,
        order_fields: dict[str, Any],
        payment_fields: dict[str, Any],
    ) -> tuple[Order, Payment]:
        """Insert an order and its first payment in a single transaction.

        ``payment_fields`` may contain callables taking the flushed order;
        they are resolved before the payment is inserted (used for keys that
        embed the order id).
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                order = self._new_order(dict(order_fields))
                self.db.add(order)
                self.db.flush()

                resolved = {
                    key: value(order) if callable(value) else value
                    for key, value in payment_fields.items()
                }
                payment = Payment(order_id=order.id, **resolved)
                self.db.add(payment)
                self.db.commit()
                return order, payment
            except IntegrityError as exc:
                self.db.rollback()
                if "order_number" not in str(exc.orig) or attempt == ORDER_NUMBER_ATTEMPTS:
                    raise
                logger.warning("Order number collision, retrying (attempt %s)", attempt)
            except Exception:
                self.db.rollback()
                raise

    def _new_order(self, fields: dict[str, Any]) -> Order:
        now = fields.pop("created_at", None) or utcnow()
        fields.setdefault("status", OrderStatus.PENDING.value)
        fields.setdefault("order_number", self.generate_order_number(now))
        return Order(created_at=now, updated_at=now, **fields)

    def get_order(self, order_id: str) -> Order | None:
        return self.db.query(Order).filter(Order.id == order_id).first()

    def update_order(self, order_id: str, **fields: Any) -> Order | None:
        order = self.get_order(order_id)
        if not order:
            return None
        for key, value in fields.items():
            setattr(order, key, value)
        order.updated_at = utcnow()
        self.db.commit()
        return order

    # Payments

    def get_payment(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).first()

    def update_payment(self, payment_id: str, **fields: Any) -> Payment | None:
        payment = self.get_payment(payment_id)
        if not payment:
            return None
        for key, value in fields.items():
            setattr(payment, key, value)
        payment.updated_at = utcnow()
        self.db.commit()
        return payment

    def get_pending_payments(self) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.status == PaymentStatus.PENDING.value)
            .order_by(Payment.created_at.asc())
            .all()
        )

    def get_payment_by_idempotency_key(self, key: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.idempotency_key == key).first()

    def get_payment_by_external_reference(self, provider_reference: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.provider_reference == provider_reference).first()

    def get_payment_by_external_id(self, external_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.external_id == external_id).first()

    def get_payments_by_order_id(self, order_id: str) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.order_id == order_id)
            .order_by(Payment.created_at.desc())
            .all()
        )

    def list_payments(self, status: str | None = None, limit: int = 50, offset: int = 0) -> list[Payment]:
        query = self.db.query(Payment)
        if status:
            query = query.filter(Payment.status == status)
        return query.order_by(Payment.created_at.desc()).offset(offset).limit(limit).all()

    # Conditional transitions. These only flush; the caller owns the commit.

    def transition_payment(self, payment_id: str, new_status: PaymentStatus, **fields: Any) -> bool:
        updated = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .update(
                {**fields, "status": new_status.value, "updated_at": utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1

    def transition_order(self, order_id: str, new_status: OrderStatus) -> bool:
        updated = (
            self.db.query(Order)
            .filter(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
            .update(
                {"status": new_status.value, "updated_at": utcnow()},
                synchronize_session=False,
            )
        )
        return updated == 1

    def record_pending_snapshot(self, payment_id: str, **fields: Any) -> bool:
        updated = (
            self.db.query(Payment)
            .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .update({**fields, "updated_at": utcnow()}, synchronize_session=False)
        )
        self.db.commit()
        return updated == 1

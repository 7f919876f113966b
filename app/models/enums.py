from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    PACKED = "PACKED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


# Order status a payment outcome cascades to.
ORDER_STATUS_FOR_PAYMENT = {
    PaymentStatus.SUCCESS: OrderStatus.PAID,
    PaymentStatus.FAILED: OrderStatus.CANCELLED,
    PaymentStatus.TIMEOUT: OrderStatus.CANCELLED,
    PaymentStatus.CANCELLED: OrderStatus.CANCELLED,
}

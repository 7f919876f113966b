from app.models.database import Base, get_db
from app.models.enums import OrderStatus, PaymentStatus
from app.models.customer import Customer
from app.models.order import Order
from app.models.payment import Payment

__all__ = ["Base", "get_db", "OrderStatus", "PaymentStatus", "Customer", "Order", "Payment"]

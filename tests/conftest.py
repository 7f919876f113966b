import os
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Generator
from unittest.mock import MagicMock

# Override settings for tests before importing app modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["MOMO_COLLECTION_USER_ID"] = "momo-user-test"
os.environ["MOMO_COLLECTION_API_KEY"] = "momo-key-test"
os.environ["MOMO_SUBSCRIPTION_KEY"] = "momo-sub-test"
os.environ["MOMO_CALLBACK_SECRET"] = "momo_whsec_test_mock"
os.environ["MOMO_WEBHOOK_ALLOW_UNSIGNED"] = "false"
os.environ["RECONCILE_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.dependencies import get_momo_client, get_notifier, get_reconciliation_engine, get_webhook_rate_limiter
from app.main import app
from app.models import Customer, Order, OrderStatus, Payment, PaymentStatus
from app.models.database import Base, get_db
from app.services.momo_client import MomoClient
from app.services.rate_limit import RateLimiter
from app.services.reconciliation import ReconciliationEngine
from helpers import TEST_CALLBACK_SECRET, FrozenClock, make_token

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine)

AUTO_REFERENCE = object()


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=test_engine)
    db_session = TestSessionLocal()
    try:
        yield db_session
    finally:
        db_session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def http_session() -> MagicMock:
    return MagicMock()


@pytest.fixture
def momo_client(http_session: MagicMock, clock: FrozenClock) -> MomoClient:
    return MomoClient(
        base_url="https://momo.test",
        user_id="momo-user-test",
        api_key="momo-key-test",
        subscription_key="momo-sub-test",
        callback_secret=TEST_CALLBACK_SECRET,
        target_environment="sandbox",
        currency="EUR",
        session=http_session,
        clock=clock,
    )


@pytest.fixture
def notifier() -> MagicMock:
    return MagicMock()


@pytest.fixture
def reconciliation_engine(momo_client: MomoClient, notifier: MagicMock, clock: FrozenClock, db: Session):
    return ReconciliationEngine(
        TestSessionLocal,
        momo_client,
        notifier=notifier,
        timeout_minutes=10,
        interval_minutes=15,
        clock=clock,
    )


@pytest.fixture
def webhook_limiter() -> RateLimiter:
    return RateLimiter(100, window_seconds=60)


@pytest.fixture(scope="function")
def client(db: Session, momo_client, notifier, reconciliation_engine, webhook_limiter) -> Generator[TestClient, None, None]:
    """Create a test client with database and payment service overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_momo_client] = lambda: momo_client
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_reconciliation_engine] = lambda: reconciliation_engine
    app.dependency_overrides[get_webhook_rate_limiter] = lambda: webhook_limiter
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('admin')}"}


@pytest.fixture
def bot_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token('bot', sub='telegram-bot')}"}


@pytest.fixture
def customer(db: Session) -> Customer:
    customer = Customer(telegram_id="555000111", username="ama", first_name="Ama", phone="0244123456")
    db.add(customer)
    db.commit()
    return customer


@pytest.fixture
def make_pending_payment(db: Session, customer: Customer, clock: FrozenClock):
    """Insert an order and its payment directly, bypassing checkout."""

    def _make(
        *,
        created_at: datetime | None = None,
        provider_reference: str | None | object = AUTO_REFERENCE,
        status: PaymentStatus = PaymentStatus.PENDING,
        order_status: OrderStatus = OrderStatus.PENDING,
        amount: Decimal = Decimal("25.00"),
    ) -> Payment:
        created = created_at or clock.now
        suffix = uuid.uuid4().hex[:8]
        order = Order(
            order_number=f"ORD-TEST-{suffix}",
            customer_id=customer.id,
            status=order_status.value,
            total_amount=amount,
            shipping_amount=Decimal("10.00"),
            customer_phone="0244123456",
            created_at=created,
            updated_at=created,
        )
        db.add(order)
        db.flush()
        payment = Payment(
            order_id=order.id,
            amount=amount,
            currency="GHS",
            status=status.value,
            provider_reference=f"ref-{suffix}" if provider_reference is AUTO_REFERENCE else provider_reference,
            external_id=f"ecom_{suffix}_555000111",
            customer_phone="0244123456",
            idempotency_key=f"order:{order.id}:{suffix}",
            created_at=created,
            updated_at=created,
        )
        db.add(payment)
        db.commit()
        return payment

    return _make

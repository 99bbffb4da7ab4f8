import os
from decimal import Decimal
from typing import Generator

# Override settings for tests before importing storefront modules
TEST_DATABASE_URL = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["PAYMENT_GATEWAY"] = "mpesa"
os.environ["MPESA_ENV"] = "sandbox"
os.environ["MPESA_CONSUMER_KEY"] = "ck_test_mock"
os.environ["MPESA_CONSUMER_SECRET"] = "cs_test_mock"
os.environ["MPESA_PASSKEY"] = "passkey_test_mock"
os.environ["MPESA_SHORTCODE"] = "174379"
os.environ["PAYHERO_USERNAME"] = "payhero_user"
os.environ["PAYHERO_PASSWORD"] = "payhero_pass"
os.environ["PAYHERO_CHANNEL_ID"] = "911"
os.environ["PAYMENT_CALLBACK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.main import app
from storefront.models.cart import CartItem
from storefront.models.database import Base, get_db
from storefront.models.order import Order
from storefront.models.user import User
from storefront.services.auth_tokens import create_access_token
from storefront.services.errors import GatewayInitiationError, GatewayStatusError
from storefront.services.gateway_base import GatewayStatus, InitiationResult

# Create test database engine
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


class FakeGateway:
    """In-memory gateway recording the calls made to it."""

    name = "fake"

    def __init__(self, checkout_request_id: str = "ws_abc123"):
        self.checkout_request_id = checkout_request_id
        self.initiate_calls = []
        self.query_calls = []
        self.initiate_error: Exception | None = None
        self.status = GatewayStatus(state="pending", reference=checkout_request_id)
        self.query_error: Exception | None = None

    def initiate_payment(self, amount, phone_number, external_reference, redirect_url=None):
        self.initiate_calls.append(
            {
                "amount": amount,
                "phone_number": phone_number,
                "external_reference": external_reference,
                "redirect_url": redirect_url,
            }
        )
        if self.initiate_error:
            raise self.initiate_error
        return InitiationResult(
            checkout_request_id=self.checkout_request_id,
            raw={"CheckoutRequestID": self.checkout_request_id, "ResponseCode": "0"},
        )

    def query_status(self, correlation_reference):
        self.query_calls.append(correlation_reference)
        if self.query_error:
            raise self.query_error
        return self.status

    @staticmethod
    def parse_callback(body):
        raise NotImplementedError


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


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def fake_gateway(monkeypatch) -> FakeGateway:
    """Route every orchestrator gateway lookup to a FakeGateway."""
    gateway = FakeGateway()
    monkeypatch.setattr(
        "storefront.services.payment_orchestrator.get_payment_gateway",
        lambda name=None: gateway,
    )
    return gateway


@pytest.fixture
def failing_gateway(fake_gateway: FakeGateway) -> FakeGateway:
    fake_gateway.initiate_error = GatewayInitiationError("M-Pesa STK push failed with HTTP 500", status_code=500)
    fake_gateway.query_error = GatewayStatusError("M-Pesa STK status query timed out")
    return fake_gateway


@pytest.fixture
def test_user(db: Session) -> User:
    """Create a test user."""
    user = User(email="test@example.com", display_name="Test User", phone_number="254712345678")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def test_user2(db: Session) -> User:
    """Create a second test user."""
    user = User(email="test2@example.com", display_name="Test User 2")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def cart_items(db: Session, test_user: User) -> list[CartItem]:
    """Two cart lines worth 1500.00 in total."""
    items = [
        CartItem(
            user_id=test_user.id,
            product_id="dress-001",
            product_name="Summer Dress",
            unit_price=Decimal("500.00"),
            quantity=2,
        ),
        CartItem(
            user_id=test_user.id,
            product_id="scarf-002",
            product_name="Silk Scarf",
            unit_price=Decimal("500.00"),
            quantity=1,
        ),
    ]
    db.add_all(items)
    db.commit()
    return items


@pytest.fixture
def pending_order(db: Session, test_user: User) -> Order:
    """A freshly placed order awaiting payment."""
    order = Order(
        user_id=test_user.id,
        total=Decimal("1500.00"),
        status="pending",
        payment_status="pending",
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


@pytest.fixture
def initiated_order(db: Session, pending_order: Order) -> Order:
    """A pending order whose STK push has been sent."""
    pending_order.external_reference = "ORD1-abc123"
    pending_order.checkout_request_id = "ws_abc123"
    pending_order.phone_number = "254712345678"
    db.commit()
    db.refresh(pending_order)
    return pending_order


@pytest.fixture
def auth_token(test_user: User) -> str:
    """Get auth token for test user."""
    return create_access_token(test_user.id)


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    """Get auth headers with token."""
    return {"Authorization": f"Bearer {auth_token}"}

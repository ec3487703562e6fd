"""
Shared pytest fixtures for all test modules.

Uses an in-memory SQLite database (StaticPool) so every test
function gets a clean, isolated database. Daraja and Resend are replaced
by in-process fakes; nothing leaves the test process.
"""
import pytest
from datetime import datetime
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from typing import Any, Dict, List, Optional, Tuple

from mpesa_payments.config import Settings, get_settings
from mpesa_payments.database import Base, get_db
from mpesa_payments.dependencies import get_gateway, get_mailer
from mpesa_payments.exceptions import EmailDeliveryError
from mpesa_payments.gateway.base import BaseGateway
from mpesa_payments.services.email import ResendMailer
from mpesa_payments import models


# ---------------------------------------------------------------------------
# In-memory database engine shared across all fixtures in a test session.
# StaticPool forces all SQLAlchemy connections to reuse the same underlying
# sqlite3 connection, which is required for in-memory SQLite.
# ---------------------------------------------------------------------------
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=TEST_ENGINE)

SHORTCODE = "174379"


@pytest.fixture(autouse=True)
def reset_db():
    """Drop and recreate all tables before each test for full isolation."""
    Base.metadata.drop_all(bind=TEST_ENGINE)
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db(reset_db):
    """Yield a SQLAlchemy session backed by the in-memory test database."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(db, gateway, mailer, settings):
    """
    FastAPI TestClient with the DB, gateway, mailer and settings dependencies
    overridden. The TestClient is NOT used as a context manager so the
    lifespan hook (which creates tables in the on-disk DB) is skipped.
    """
    from mpesa_payments.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[get_settings] = lambda: settings
    yield TestClient(app)
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeGateway(BaseGateway):
    """Records calls; answers with canned bodies or raises a canned error."""

    def __init__(self):
        self.push_response: Dict[str, Any] = {
            "MerchantRequestID": "29115-34620561-1",
            "CheckoutRequestID": "ws_CO_191220191020363925",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }
        self.query_response: Dict[str, Any] = {}
        self.error: Optional[Exception] = None
        self.pushes: List[Tuple] = []
        self.queries: List[str] = []

    async def stk_push(self, phone_number, amount, account_reference, transaction_desc):
        self.pushes.append((phone_number, amount, account_reference, transaction_desc))
        if self.error is not None:
            raise self.error
        return self.push_response

    async def query(self, checkout_request_id):
        self.queries.append(checkout_request_id)
        if self.error is not None:
            raise self.error
        return self.query_response


class FakeMailer(ResendMailer):
    def __init__(self, api_key: Optional[str] = "re_test_key", fail: bool = False):
        super().__init__(api_key=api_key, sender="Receipts <receipts@example.com>")
        self.fail = fail
        self.sent: List[Dict[str, Any]] = []

    async def send(self, to, subject, html, idempotency_key=None):
        if self.fail:
            raise EmailDeliveryError("Failed to send email: 422 invalid recipient")
        self.sent.append({"to": to, "subject": subject, "html": html, "idempotency_key": idempotency_key})
        return f"msg_{len(self.sent)}"


# ---------------------------------------------------------------------------
# Helpers, not fixtures, so any test file can import and call them directly.
# ---------------------------------------------------------------------------
def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite:///:memory:",
        mpesa_environment="sandbox",
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_shortcode=SHORTCODE,
        mpesa_passkey="passkey",
        public_base_url="https://api.example.com",
        resend_api_key="re_test_key",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_txn(
    db,
    checkout_request_id: str = "ws_CO_001",
    status: str = "pending",
    amount: float = 150.0,
    phone_number: str = "254712345678",
    order_id: Optional[str] = None,
    result_code: Optional[int] = None,
    result_desc: Optional[str] = None,
) -> models.MpesaTransaction:
    txn = models.MpesaTransaction(
        checkout_request_id=checkout_request_id,
        merchant_request_id="29115-34620561-1",
        status=status,
        amount=amount,
        phone_number=phone_number,
        account_reference="ORDER-1",
        business_short_code=SHORTCODE,
        order_id=order_id,
        result_code=result_code,
        result_desc=result_desc,
        transaction_timestamp=datetime(2024, 1, 15, 10, 0, 0),
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


def make_order(
    db,
    order_id: str = "order_1",
    email: Optional[str] = "jane@example.com",
    items: Optional[List[Tuple[str, int, float]]] = None,
    delivery_fee: float = 0.0,
    status: str = "pending",
) -> models.Order:
    if items is None:
        items = [("Chapati", 2, 50.0), ("Beef stew", 1, 50.0)]
    customer = models.Customer(name="Jane Wanjiku", email=email, phone="254712345678")
    db.add(customer)
    db.flush()
    subtotal = sum(quantity * price for _, quantity, price in items)
    order = models.Order(
        id=order_id,
        short_id=order_id.upper(),
        customer_id=customer.id,
        status=status,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total_amount=subtotal + delivery_fee,
        delivery_address="Kilimani, Nairobi",
    )
    db.add(order)
    db.flush()
    for name, quantity, price in items:
        db.add(models.OrderItem(order_id=order.id, name=name, item_type="food", quantity=quantity, unit_price=price))
    db.commit()
    db.refresh(order)
    return order


def callback_payload(
    checkout_request_id: str = "ws_CO_001",
    result_code: Any = 0,
    result_desc: str = "The service request is processed successfully.",
    amount: Optional[float] = 150.0,
    receipt_number: str = "NLJ7RT61SV",
    phone_number: int = 254712345678,
) -> Dict[str, Any]:
    stk: Dict[str, Any] = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": checkout_request_id,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if result_code == 0 and amount is not None:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt_number},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone_number},
            ]
        }
    return {"Body": {"stkCallback": stk}}

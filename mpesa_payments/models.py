from datetime import datetime, timezone
import uuid

from sqlalchemy import Column, String, Float, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from mpesa_payments.database import Base


def generate_id():
    return f"mpx_{uuid.uuid4().hex[:12]}"


def utcnow():
    """Naive UTC timestamp, the convention for every DateTime column here."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class MpesaTransaction(Base):
    __tablename__ = "mpesa_transactions"

    id = Column(String, primary_key=True, default=generate_id)
    checkout_request_id = Column(String, nullable=False, unique=True, index=True)
    merchant_request_id = Column(String, nullable=True)
    transaction_type = Column(String, nullable=False, default="payment")
    status = Column(String, nullable=False, default=TransactionStatus.PENDING)
    result_code = Column(Integer, nullable=True)
    result_desc = Column(String, nullable=True)
    amount = Column(Float, nullable=False)
    phone_number = Column(String, nullable=True)
    account_reference = Column(String, nullable=True)
    transaction_desc = Column(String, nullable=True)
    business_short_code = Column(String, nullable=True)
    mpesa_receipt_number = Column(String, nullable=True, index=True)
    balance = Column(Float, nullable=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True, index=True)
    user_auth_id = Column(String, nullable=True)
    transaction_timestamp = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class Customer(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    auth_id = Column(String, nullable=True, unique=True, index=True)
    name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    short_id = Column(String, nullable=True)
    customer_id = Column(String, ForeignKey("users.id"), nullable=True)
    status = Column(String, nullable=False, default="pending")
    payment_method = Column(String, nullable=True)
    subtotal = Column(Float, nullable=False, default=0.0)
    delivery_fee = Column(Float, nullable=False, default=0.0)
    tax = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    delivery_address = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    customer = relationship("Customer")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    item_type = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False, default=0.0)

    order = relationship("Order", back_populates="items")

    @property
    def total_price(self) -> float:
        return (self.quantity or 0) * (self.unit_price or 0.0)


class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    receipt_number = Column(String, nullable=False, unique=True)
    idempotency_key = Column(String, nullable=False, unique=True, index=True)
    transaction_id = Column(String, nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False)
    receipt_type = Column(String, nullable=False, default="payment")
    issue_date = Column(DateTime, nullable=False, default=utcnow)
    customer_name = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    subtotal = Column(Float, nullable=False)
    tax_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)
    business_name = Column(String, nullable=True)
    business_address = Column(String, nullable=True)
    business_phone = Column(String, nullable=True)
    business_email = Column(String, nullable=True)
    payment_method = Column(String, nullable=False, default="M-Pesa")
    currency = Column(String(3), nullable=False, default="KES")
    emailed_at = Column(DateTime, nullable=True)

    items = relationship("ReceiptItem", back_populates="receipt", order_by="ReceiptItem.id")


class ReceiptItem(Base):
    __tablename__ = "receipt_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id"), nullable=False, index=True)
    item_description = Column(String, nullable=False)
    item_code = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False, default=0.0)
    total_price = Column(Float, nullable=False, default=0.0)

    receipt = relationship("Receipt", back_populates="items")

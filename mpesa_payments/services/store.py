"""
Persistence for M-Pesa transactions and the order status they drive.

The update-by-checkout-request-id call is the only serialization point between
concurrent deliveries for the same payment; there is no extra locking.
"""
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mpesa_payments import models
from mpesa_payments.exceptions import RecordNotFoundError

logger = structlog.get_logger(__name__)


class TransactionStore:
    def __init__(self, db: Session):
        self.db = db

    def find_by_checkout_request_id(self, checkout_request_id: str) -> Optional[models.MpesaTransaction]:
        return self.db.query(models.MpesaTransaction).filter(
            models.MpesaTransaction.checkout_request_id == checkout_request_id
        ).first()

    def insert(self, **fields) -> models.MpesaTransaction:
        txn = models.MpesaTransaction(**fields)
        self.db.add(txn)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(txn)
        logger.info(
            "transaction_inserted",
            transaction_id=txn.id,
            checkout_request_id=txn.checkout_request_id,
            status=txn.status,
        )
        return txn

    def update(self, checkout_request_id: str, **fields) -> models.MpesaTransaction:
        """
        Overwrite the given fields on the transaction for checkout_request_id.

        Raises:
            RecordNotFoundError: if no row matches
            SQLAlchemyError: on any persistence failure (after rollback)
        """
        txn = self.find_by_checkout_request_id(checkout_request_id)
        if txn is None:
            raise RecordNotFoundError(
                f"Transaction for checkout request {checkout_request_id} not found"
            )
        for name, value in fields.items():
            setattr(txn, name, value)
        txn.updated_at = models.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self.db.refresh(txn)
        return txn


class OrderService:
    def __init__(self, db: Session):
        self.db = db

    def exists(self, order_id: str) -> bool:
        return self.db.get(models.Order, order_id) is not None

    def set_paid(self, order_id: str) -> None:
        """Mark an order paid by M-Pesa. Repeating the call is harmless."""
        order = self.db.get(models.Order, order_id)
        if order is None:
            logger.warning("order_not_found", order_id=order_id)
            return
        order.status = "paid"
        order.payment_method = "mpesa"
        order.updated_at = models.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        logger.info("order_marked_paid", order_id=order_id)

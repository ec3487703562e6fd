"""
Receipt issuing for completed M-Pesa payments.

A receipt is keyed by "<transaction id>:<order id>". A repeat delivery of the
same success finds the existing receipt and returns it untouched, so each
payment yields one receipt and one email.
"""
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from mpesa_payments import models
from mpesa_payments.config import Settings
from mpesa_payments.exceptions import ConfigurationError, EmailDeliveryError, RecordNotFoundError
from mpesa_payments.services.email import ResendMailer, render_order_receipt, render_payment_receipt

logger = structlog.get_logger(__name__)

RECEIPT_NUMBER_ATTEMPTS = 3


def receipt_key(transaction_id: str, order_id: str) -> str:
    return f"{transaction_id}:{order_id}"


class ReceiptEmitter:
    def __init__(self, db: Session, mailer: Optional[ResendMailer], settings: Settings):
        self.db = db
        self.mailer = mailer
        self.settings = settings

    def find(self, transaction_id: str, order_id: str) -> Optional[models.Receipt]:
        return self.db.query(models.Receipt).filter(
            models.Receipt.idempotency_key == receipt_key(transaction_id, order_id)
        ).first()

    def next_receipt_number(self) -> str:
        """RCP-YYYYMMDD-NNNN, numbered from 1 each UTC day."""
        prefix = f"RCP-{models.utcnow():%Y%m%d}-"
        issued_today = self.db.query(func.count(models.Receipt.id)).filter(
            models.Receipt.receipt_number.like(f"{prefix}%")
        ).scalar()
        return f"{prefix}{(issued_today or 0) + 1:04d}"

    async def emit(self, transaction_id: str, order_id: str, payer_identity: Optional[str]) -> Optional[models.Receipt]:
        """
        Issue (and email) the receipt for a completed payment on an order.

        Returns the receipt, or None if the order does not exist.

        Raises:
            SQLAlchemyError: if the receipt cannot be stored
        """
        existing = self.find(transaction_id, order_id)
        if existing is not None:
            logger.info("receipt_already_issued", receipt_number=existing.receipt_number, order_id=order_id)
            return existing

        order = self.db.get(models.Order, order_id)
        if order is None:
            logger.warning("receipt_order_not_found", transaction_id=transaction_id, order_id=order_id)
            return None

        txn = self.db.get(models.MpesaTransaction, transaction_id)
        items_total = sum(item.total_price for item in order.items)
        amount = txn.amount if txn is not None and txn.amount else items_total

        for attempt in range(1, RECEIPT_NUMBER_ATTEMPTS + 1):
            receipt = self._build(transaction_id, order, payer_identity, amount)
            self.db.add(receipt)
            try:
                self.db.commit()
                break
            except IntegrityError:
                self.db.rollback()
                existing = self.find(transaction_id, order_id)
                if existing is not None:
                    logger.info("receipt_already_issued", receipt_number=existing.receipt_number, order_id=order_id)
                    return existing
                # Another payment took this receipt number between count and commit
                if attempt == RECEIPT_NUMBER_ATTEMPTS:
                    raise
                logger.warning(
                    "receipt_number_collision",
                    receipt_number=receipt.receipt_number,
                    order_id=order_id,
                    attempt=attempt,
                )
            except SQLAlchemyError:
                self.db.rollback()
                raise
        self.db.refresh(receipt)

        logger.info(
            "receipt_issued",
            receipt_number=receipt.receipt_number,
            transaction_id=transaction_id,
            order_id=order_id,
            total_amount=receipt.total_amount,
        )

        await self._email(receipt, order)
        return receipt

    def _build(
        self,
        transaction_id: str,
        order: models.Order,
        payer_identity: Optional[str],
        amount: float,
    ) -> models.Receipt:
        customer = order.customer
        receipt = models.Receipt(
            receipt_number=self.next_receipt_number(),
            idempotency_key=receipt_key(transaction_id, order.id),
            transaction_id=transaction_id,
            order_id=order.id,
            receipt_type="payment",
            issue_date=models.utcnow(),
            customer_name=customer.name if customer and customer.name else "Customer",
            customer_phone=payer_identity or (customer.phone if customer else None),
            customer_email=customer.email if customer else None,
            subtotal=amount,
            tax_amount=0.0,
            discount_amount=0.0,
            total_amount=amount,
            business_name=self.settings.business_name,
            business_address=self.settings.business_address,
            business_phone=self.settings.business_phone,
            business_email=self.settings.business_email,
            payment_method="M-Pesa",
            currency="KES",
        )
        receipt.items = [
            models.ReceiptItem(
                item_description=item.name,
                item_code=item.item_type,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in order.items
        ]
        return receipt

    async def _email(self, receipt: models.Receipt, order: models.Order) -> None:
        if not receipt.customer_email:
            logger.info("receipt_email_skipped", reason="no_customer_email", receipt_number=receipt.receipt_number)
            return
        if self.mailer is None or not self.mailer.configured:
            logger.info("receipt_email_skipped", reason="mailer_not_configured", receipt_number=receipt.receipt_number)
            return

        html = render_payment_receipt(receipt, receipt.items, order)
        try:
            await self.mailer.send(
                to=receipt.customer_email,
                subject=f"Receipt {receipt.receipt_number} - {receipt.business_name}",
                html=html,
                idempotency_key=f"receipt/{receipt.idempotency_key}",
            )
        except EmailDeliveryError as e:
            # The receipt stands; only the email is lost.
            logger.error("receipt_email_failed", receipt_number=receipt.receipt_number, error=str(e))
            return

        receipt.emailed_at = models.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


async def send_order_receipt(order_id: str, db: Session, mailer: ResendMailer, settings: Settings) -> str:
    """
    Email the order summary to the order's customer. Returns the message id.

    Raises:
        ConfigurationError: if the mailer has no API key
        RecordNotFoundError: if the order does not exist or has no customer email
        EmailDeliveryError: if the provider refuses the message
    """
    order = db.get(models.Order, order_id)
    if order is None:
        raise RecordNotFoundError(f"Order {order_id} not found")
    if not mailer.configured:
        raise ConfigurationError("RESEND_API_KEY not configured")

    customer = order.customer
    if customer is None or not customer.email:
        raise RecordNotFoundError(f"No customer email on order {order_id}")

    html = render_order_receipt(order, settings.business_name, settings.business_email)
    message_id = await mailer.send(
        to=customer.email,
        subject=f"Order Receipt #{order.short_id or order.id} - {settings.business_name}",
        html=html,
    )
    logger.info("order_receipt_sent", order_id=order_id, to=customer.email, message_id=message_id)
    return message_id

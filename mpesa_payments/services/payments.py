"""
STK push initiation.

Sends the payment prompt to the customer's phone and records a pending
transaction under the CheckoutRequestID Daraja hands back. The record is what
the callback and status query later reconcile against.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from mpesa_payments import models
from mpesa_payments.exceptions import RecordNotFoundError
from mpesa_payments.models import TransactionStatus
from mpesa_payments.services.classifier import format_phone_number
from mpesa_payments.services.store import OrderService, TransactionStore

logger = structlog.get_logger(__name__)


class PaymentInitiation:
    def __init__(
        self,
        checkout_request_id: str,
        merchant_request_id: Optional[str],
        customer_message: Optional[str],
        transaction: Optional[models.MpesaTransaction],
        gateway_response: Dict[str, Any],
    ):
        self.checkout_request_id = checkout_request_id
        self.merchant_request_id = merchant_request_id
        self.customer_message = customer_message
        self.transaction = transaction
        self.gateway_response = gateway_response


async def initiate_payment(
    gateway,
    store: TransactionStore,
    phone_number: str,
    amount: float,
    account_reference: str,
    transaction_desc: Optional[str] = None,
    order_id: Optional[str] = None,
    user_auth_id: Optional[str] = None,
    business_short_code: Optional[str] = None,
    orders: Optional[OrderService] = None,
) -> PaymentInitiation:
    """
    Push a payment prompt and store the pending transaction.

    Raises:
        ConfigurationError: if M-Pesa credentials are missing
        GatewayError: if Daraja is unreachable or rejects the push
        RecordNotFoundError: if order_id names an order that does not exist
    """
    if order_id and orders is not None and not orders.exists(order_id):
        raise RecordNotFoundError(f"Order {order_id} not found")

    formatted_phone = format_phone_number(phone_number)
    description = transaction_desc or f"Payment for {account_reference}"

    response = await gateway.stk_push(formatted_phone, amount, account_reference, description)
    checkout_request_id = response.get("CheckoutRequestID")
    merchant_request_id = response.get("MerchantRequestID")

    logger.info(
        "stk_push_accepted",
        checkout_request_id=checkout_request_id,
        merchant_request_id=merchant_request_id,
        order_id=order_id,
        amount=amount,
    )

    txn = None
    try:
        txn = store.insert(
            checkout_request_id=checkout_request_id,
            merchant_request_id=merchant_request_id,
            transaction_type="payment",
            status=TransactionStatus.PENDING,
            amount=amount,
            phone_number=formatted_phone,
            account_reference=account_reference,
            transaction_desc=description,
            business_short_code=business_short_code,
            order_id=order_id,
            user_auth_id=user_auth_id,
            transaction_timestamp=models.utcnow(),
        )
    except SQLAlchemyError:
        # The prompt is already on the customer's phone; a successful callback
        # for this key is recovered by reconciliation.
        logger.exception("pending_transaction_store_failed", checkout_request_id=checkout_request_id)

    return PaymentInitiation(
        checkout_request_id=checkout_request_id,
        merchant_request_id=merchant_request_id,
        customer_message=response.get("CustomerMessage"),
        transaction=txn,
        gateway_response=response,
    )

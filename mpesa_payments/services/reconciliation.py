"""
Payment result reconciliation.

Both delivery paths end here:
1. Push: Safaricom POSTs the STK callback → process_callback()
2. Poll: the app asks for a status → poll_status() queries Daraja first
Either way the parsed ResultReport goes through Reconciler.reconcile(), which
1. Looks up the local transaction by CheckoutRequestID
2. Classifies the result code
3. Overwrites the terminal status (repeat deliveries are safe to apply again)
4. On success with an order: marks the order paid and emits a receipt
5. Recovers a missing record for an unmatched success, discards anything else

The engine is at-least-once: a resent callback triggers the order and receipt
side effects again, so those collaborators must tolerate repeats.
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import IntegrityError

from mpesa_payments import models
from mpesa_payments.models import TransactionStatus
from mpesa_payments.services.classifier import (
    Classification,
    ResultReport,
    classify,
    report_from_callback,
    report_from_query,
)

logger = structlog.get_logger(__name__)


UPDATED = "updated"
IGNORED_PENDING = "ignored_pending"
RECOVERED = "recovered"
DISCARDED = "discarded"

NOT_FOUND_MESSAGE = "Transaction not found in database"


class ReconcileOutcome:
    def __init__(
        self,
        matched: bool,
        status: str,
        action: str,
        side_effects_attempted: bool = False,
        transaction: Optional[models.MpesaTransaction] = None,
        message: Optional[str] = None,
    ):
        self.matched = matched
        self.status = status
        self.action = action
        self.side_effects_attempted = side_effects_attempted
        self.transaction = transaction
        self.message = message


class PollResult:
    def __init__(self, outcome: ReconcileOutcome, report: ResultReport, gateway_response: Dict[str, Any]):
        self.outcome = outcome
        self.report = report
        self.gateway_response = gateway_response


class Reconciler:
    """
    Applies ResultReports to the transaction store.

    Args:
        store: TransactionStore (find/insert/update by checkout request id)
        orders: object with set_paid(order_id)
        receipts: object with async emit(transaction_id, order_id, payer_identity)
        business_short_code: recorded on transactions recovered from unmatched callbacks
    """

    def __init__(self, store, orders, receipts, business_short_code: Optional[str] = None):
        self.store = store
        self.orders = orders
        self.receipts = receipts
        self.business_short_code = business_short_code

    async def reconcile(self, report: ResultReport) -> ReconcileOutcome:
        classification = classify(report.raw_code, report.raw_message)
        txn = self.store.find_by_checkout_request_id(report.checkout_request_id)

        if txn is None:
            return await self._reconcile_unmatched(report, classification)
        return await self._apply(txn, report, classification)

    async def _apply(
        self,
        txn: models.MpesaTransaction,
        report: ResultReport,
        classification: Classification,
    ) -> ReconcileOutcome:
        if classification.status == TransactionStatus.PENDING:
            logger.info(
                "transaction_still_pending",
                checkout_request_id=report.checkout_request_id,
                current_status=txn.status,
            )
            return ReconcileOutcome(
                matched=True,
                status=txn.status,
                action=IGNORED_PENDING,
                transaction=txn,
            )

        previous_status = txn.status
        if previous_status in TransactionStatus.TERMINAL and previous_status != classification.status:
            logger.warning(
                "terminal_status_overwritten",
                checkout_request_id=report.checkout_request_id,
                previous_status=previous_status,
                new_status=classification.status,
                result_code=report.raw_code,
            )

        txn = self.store.update(report.checkout_request_id, **self._update_fields(report, classification))
        logger.info(
            "transaction_updated",
            transaction_id=txn.id,
            checkout_request_id=txn.checkout_request_id,
            status=txn.status,
            result_code=txn.result_code,
        )

        side_effects_attempted = False
        if classification.status == TransactionStatus.COMPLETED:
            if txn.order_id:
                await self._complete_order(txn)
                side_effects_attempted = True
            else:
                logger.info("receipt_skipped_no_order", transaction_id=txn.id)

        return ReconcileOutcome(
            matched=True,
            status=txn.status,
            action=UPDATED,
            side_effects_attempted=side_effects_attempted,
            transaction=txn,
            message=classification.message,
        )

    @staticmethod
    def _update_fields(report: ResultReport, classification: Classification) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "status": classification.status,
            "result_code": report.raw_code,
            "result_desc": classification.message or report.raw_message,
        }
        meta = report.success_metadata
        if meta is not None:
            if meta.amount is not None:
                fields["amount"] = meta.amount
            if meta.receipt_number:
                fields["mpesa_receipt_number"] = meta.receipt_number
            if meta.phone_number:
                fields["phone_number"] = meta.phone_number
            if meta.balance is not None:
                fields["balance"] = meta.balance
            if meta.transaction_date is not None:
                fields["transaction_timestamp"] = meta.transaction_date
        return fields

    async def _complete_order(self, txn: models.MpesaTransaction) -> None:
        # The payment already succeeded; neither failure may undo that.
        try:
            self.orders.set_paid(txn.order_id)
        except Exception:
            logger.exception("order_update_failed", transaction_id=txn.id, order_id=txn.order_id)

        try:
            await self.receipts.emit(txn.id, txn.order_id, txn.phone_number)
        except Exception:
            logger.exception("receipt_emit_failed", transaction_id=txn.id, order_id=txn.order_id)

    async def _reconcile_unmatched(self, report: ResultReport, classification: Classification) -> ReconcileOutcome:
        meta = report.success_metadata
        if classification.status == TransactionStatus.COMPLETED and meta is not None and meta.amount is not None:
            try:
                txn = self.store.insert(
                    checkout_request_id=report.checkout_request_id,
                    merchant_request_id=report.merchant_request_id,
                    transaction_type="payment",
                    status=TransactionStatus.COMPLETED,
                    result_code=report.raw_code,
                    result_desc=report.raw_message,
                    amount=meta.amount,
                    phone_number=meta.phone_number,
                    mpesa_receipt_number=meta.receipt_number,
                    balance=meta.balance,
                    transaction_timestamp=meta.transaction_date or models.utcnow(),
                    business_short_code=self.business_short_code or "UNKNOWN",
                )
            except IntegrityError:
                # Another delivery inserted the same key first
                txn = self.store.find_by_checkout_request_id(report.checkout_request_id)
                if txn is None:
                    raise
                return await self._apply(txn, report, classification)

            logger.warning(
                "unmatched_success_recovered",
                checkout_request_id=report.checkout_request_id,
                transaction_id=txn.id,
                receipt_number=meta.receipt_number,
            )
            return ReconcileOutcome(
                matched=False,
                status=txn.status,
                action=RECOVERED,
                transaction=txn,
            )

        logger.warning(
            "unmatched_report_discarded",
            checkout_request_id=report.checkout_request_id,
            status=classification.status,
            result_code=report.raw_code,
        )
        return ReconcileOutcome(
            matched=False,
            status=classification.status,
            action=DISCARDED,
            message=NOT_FOUND_MESSAGE,
        )


async def process_callback(payload: Dict[str, Any], reconciler: Reconciler) -> ReconcileOutcome:
    """Push path: parse an STK callback and reconcile it."""
    report = report_from_callback(payload)
    logger.info(
        "callback_received",
        checkout_request_id=report.checkout_request_id,
        result_code=report.raw_code,
    )
    return await reconciler.reconcile(report)


async def poll_status(checkout_request_id: str, gateway, reconciler: Reconciler) -> PollResult:
    """
    Poll path: query Daraja for checkout_request_id and reconcile the answer.

    Raises:
        ConfigurationError: if M-Pesa credentials are missing
        GatewayError: if Daraja cannot be reached or replies with garbage
        SQLAlchemyError: if the local update fails
    """
    logger.info("querying_transaction_status", checkout_request_id=checkout_request_id)
    raw_response = await gateway.query(checkout_request_id)
    report = report_from_query(checkout_request_id, raw_response)
    outcome = await reconciler.reconcile(report)
    return PollResult(outcome=outcome, report=report, gateway_response=raw_response)

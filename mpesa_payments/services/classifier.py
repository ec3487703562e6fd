"""
Classifies M-Pesa result codes and parses provider payloads into ResultReports.

The STK push callback and the STK push query API describe the same outcome in
different envelopes. Both are reduced here to a single ResultReport so the
reconciliation engine sees one shape regardless of how the result arrived.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, NamedTuple, Optional

import structlog

from mpesa_payments.models import TransactionStatus

logger = structlog.get_logger(__name__)


# Result codes with a fixed meaning on the Daraja side
CANCELLED_BY_USER = 1032
PIN_TIMEOUT = 1037
INSUFFICIENT_FUNDS = 1

RESULT_MESSAGES = {
    CANCELLED_BY_USER: (TransactionStatus.CANCELLED, "Transaction cancelled by user"),
    PIN_TIMEOUT: (TransactionStatus.FAILED, "Transaction timeout - user did not enter PIN"),
    INSUFFICIENT_FUNDS: (TransactionStatus.FAILED, "Insufficient funds"),
}

GENERIC_FAILURE_MESSAGE = "Transaction failed"

# TransactionDate values are East Africa Time
EAT = timezone(timedelta(hours=3))


class Classification(NamedTuple):
    status: str
    message: Optional[str]


def classify(raw_code: Optional[int], raw_message: Optional[str] = None) -> Classification:
    """
    Map a provider result code to (status, message).

    Args:
        raw_code: ResultCode from the provider, None while the payment is in flight
        raw_message: ResultDesc from the provider, used for unrecognised codes

    Returns:
        Classification with one of pending/completed/failed/cancelled
    """
    if raw_code is None:
        return Classification(TransactionStatus.PENDING, None)
    if raw_code == 0:
        return Classification(TransactionStatus.COMPLETED, None)
    if raw_code in RESULT_MESSAGES:
        return Classification(*RESULT_MESSAGES[raw_code])
    return Classification(TransactionStatus.FAILED, raw_message or GENERIC_FAILURE_MESSAGE)


def parse_result_code(value: Any) -> Optional[int]:
    """Daraja sends ResultCode as a number on callbacks and as a string on queries."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    text = str(value).strip()
    if not re.fullmatch(r"-?\d+", text):
        return None
    return int(text)


def parse_transaction_date(value: Any) -> Optional[datetime]:
    """YYYYMMDDHHMMSS (EAT) → naive UTC datetime."""
    if value is None:
        return None
    try:
        local = datetime.strptime(str(value), "%Y%m%d%H%M%S").replace(tzinfo=EAT)
    except ValueError:
        return None
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def format_phone_number(phone: str) -> str:
    """Normalise a Kenyan MSISDN to the 2547XXXXXXXX form Daraja expects."""
    cleaned = re.sub(r"[\s\-+]", "", phone)
    if cleaned.startswith("0"):
        cleaned = "254" + cleaned[1:]
    if not cleaned.startswith("254"):
        cleaned = "254" + cleaned
    return cleaned


class SuccessMetadata:
    def __init__(
        self,
        amount: Optional[float] = None,
        receipt_number: Optional[str] = None,
        phone_number: Optional[str] = None,
        balance: Optional[float] = None,
        transaction_date: Optional[datetime] = None,
    ):
        self.amount = amount
        self.receipt_number = receipt_number
        self.phone_number = phone_number
        self.balance = balance
        self.transaction_date = transaction_date


class ResultReport:
    """A provider result for one correlation key, from either delivery path."""

    def __init__(
        self,
        checkout_request_id: str,
        raw_code: Optional[int] = None,
        raw_message: Optional[str] = None,
        success_metadata: Optional[SuccessMetadata] = None,
        merchant_request_id: Optional[str] = None,
        raw_payload: Optional[Dict[str, Any]] = None,
    ):
        self.checkout_request_id = checkout_request_id
        self.raw_code = raw_code
        self.raw_message = raw_message
        self.success_metadata = success_metadata
        self.merchant_request_id = merchant_request_id
        self.raw_payload = raw_payload or {}


def _report_code(value: Any, checkout_request_id: str) -> Optional[int]:
    code = parse_result_code(value)
    if code is None and value is not None and str(value).strip() != "":
        # Present but unreadable; classify() will treat it as pending
        logger.warning("unparseable_result_code", checkout_request_id=checkout_request_id, raw_value=repr(value))
    return code


def _metadata_value(items, name: str):
    for item in items:
        if item.get("Name") == name:
            return item.get("Value")
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_callback_metadata(stk: Dict[str, Any]) -> Optional[SuccessMetadata]:
    metadata = stk.get("CallbackMetadata") or {}
    items = metadata.get("Item") or []
    if not items:
        return None
    receipt = _metadata_value(items, "MpesaReceiptNumber")
    phone = _metadata_value(items, "PhoneNumber")
    return SuccessMetadata(
        amount=_to_float(_metadata_value(items, "Amount")),
        receipt_number=str(receipt) if receipt is not None else None,
        phone_number=str(phone) if phone is not None else None,
        balance=_to_float(_metadata_value(items, "Balance")),
        transaction_date=parse_transaction_date(_metadata_value(items, "TransactionDate")),
    )


def report_from_callback(payload: Dict[str, Any]) -> ResultReport:
    """
    Parse an STK push callback envelope ({"Body": {"stkCallback": {...}}}).

    Raises:
        ValueError: if the envelope carries no CheckoutRequestID
    """
    stk = (payload.get("Body") or {}).get("stkCallback") or {}
    checkout_request_id = stk.get("CheckoutRequestID")
    if not checkout_request_id:
        raise ValueError("Callback is missing Body.stkCallback.CheckoutRequestID")

    raw_code = _report_code(stk.get("ResultCode"), checkout_request_id)
    success_metadata = _parse_callback_metadata(stk) if raw_code == 0 else None

    return ResultReport(
        checkout_request_id=checkout_request_id,
        raw_code=raw_code,
        raw_message=stk.get("ResultDesc"),
        success_metadata=success_metadata,
        merchant_request_id=stk.get("MerchantRequestID"),
        raw_payload=payload,
    )


def report_from_query(checkout_request_id: str, payload: Dict[str, Any]) -> ResultReport:
    """
    Parse an STK push query response.

    While the customer has not answered the prompt Daraja replies with an
    errorCode/errorMessage pair and no ResultCode; that reads as pending.
    """
    return ResultReport(
        checkout_request_id=checkout_request_id,
        raw_code=_report_code(payload.get("ResultCode"), checkout_request_id),
        raw_message=payload.get("ResultDesc") or payload.get("errorMessage"),
        success_metadata=None,
        merchant_request_id=payload.get("MerchantRequestID"),
        raw_payload=payload,
    )

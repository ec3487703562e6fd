"""
Unit tests for mpesa_payments/services/classifier.py.

Pure functions only: no DB, no network.
"""
import pytest
from datetime import datetime
from structlog.testing import capture_logs

from mpesa_payments.services.classifier import (
    GENERIC_FAILURE_MESSAGE,
    classify,
    format_phone_number,
    parse_result_code,
    parse_transaction_date,
    report_from_callback,
    report_from_query,
)
from tests.conftest import callback_payload


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------
class TestClassify:
    @pytest.mark.parametrize("raw_code,raw_message,expected_status,expected_message", [
        (None, None, "pending", None),
        (0, "The service request is processed successfully.", "completed", None),
        (1032, "Request cancelled by user", "cancelled", "Transaction cancelled by user"),
        (1037, "DS timeout user cannot be reached", "failed", "Transaction timeout - user did not enter PIN"),
        (1, "The balance is insufficient for the transaction.", "failed", "Insufficient funds"),
        (2001, "The initiator information is invalid.", "failed", "The initiator information is invalid."),
    ])
    def test_result_code_table(self, raw_code, raw_message, expected_status, expected_message):
        result = classify(raw_code, raw_message)
        assert result.status == expected_status
        assert result.message == expected_message

    def test_unknown_code_without_description_uses_generic_message(self):
        assert classify(17).message == GENERIC_FAILURE_MESSAGE

    def test_known_codes_ignore_provider_description(self):
        assert classify(1032, "something else").message == "Transaction cancelled by user"

    def test_pending_has_no_message_even_with_description(self):
        assert classify(None, "The transaction is being processed") == ("pending", None)


class TestParseResultCode:
    @pytest.mark.parametrize("value,expected", [
        (0, 0),
        ("0", 0),
        ("1032", 1032),
        (" 1037 ", 1037),
        (None, None),
        ("", None),
        ("abc", None),
        (True, None),
        (0.0, 0),
        (1032.0, 1032),
        (1.5, None),
    ])
    def test_coercion(self, value, expected):
        assert parse_result_code(value) == expected


class TestParseTransactionDate:
    def test_eat_converted_to_utc(self):
        # 10:21:15 in Nairobi is 07:21:15 UTC
        assert parse_transaction_date(20191219102115) == datetime(2019, 12, 19, 7, 21, 15)

    def test_string_input(self):
        assert parse_transaction_date("20240115130000") == datetime(2024, 1, 15, 10, 0, 0)

    @pytest.mark.parametrize("value", [None, "", "not-a-date", 2019])
    def test_invalid_returns_none(self, value):
        assert parse_transaction_date(value) is None


class TestFormatPhoneNumber:
    @pytest.mark.parametrize("phone,expected", [
        ("0712345678", "254712345678"),
        ("+254712345678", "254712345678"),
        ("254712345678", "254712345678"),
        ("0712 345-678", "254712345678"),
        ("712345678", "254712345678"),
    ])
    def test_normalises_to_254_prefix(self, phone, expected):
        assert format_phone_number(phone) == expected


# ---------------------------------------------------------------------------
# Report parsing
# ---------------------------------------------------------------------------
class TestReportFromCallback:
    def test_success_carries_metadata(self):
        report = report_from_callback(callback_payload("ws_CO_1", 0, amount=1.0))

        assert report.checkout_request_id == "ws_CO_1"
        assert report.merchant_request_id == "29115-34620561-1"
        assert report.raw_code == 0
        meta = report.success_metadata
        assert meta.amount == 1.0
        assert meta.receipt_number == "NLJ7RT61SV"
        assert meta.phone_number == "254712345678"
        assert meta.balance is None
        assert meta.transaction_date == datetime(2019, 12, 19, 7, 21, 15)

    def test_failure_has_no_metadata(self):
        report = report_from_callback(callback_payload("ws_CO_1", 1032, "Request cancelled by user"))
        assert report.raw_code == 1032
        assert report.raw_message == "Request cancelled by user"
        assert report.success_metadata is None

    def test_string_result_code(self):
        report = report_from_callback(callback_payload("ws_CO_1", "1037", "DS timeout"))
        assert report.raw_code == 1037

    def test_success_without_metadata_items(self):
        report = report_from_callback(callback_payload("ws_CO_1", 0, amount=None))
        assert report.raw_code == 0
        assert report.success_metadata is None

    def test_missing_checkout_request_id_raises(self):
        with pytest.raises(ValueError):
            report_from_callback({"Body": {"stkCallback": {"ResultCode": 0}}})

    def test_empty_envelope_raises(self):
        with pytest.raises(ValueError):
            report_from_callback({})

    def test_raw_payload_kept(self):
        payload = callback_payload("ws_CO_1", 1)
        assert report_from_callback(payload).raw_payload is payload

    def test_unreadable_result_code_is_logged(self):
        with capture_logs() as logs:
            report = report_from_callback(callback_payload("ws_CO_1", "abc"))

        assert report.raw_code is None
        assert classify(report.raw_code).status == "pending"
        warnings = [e for e in logs if e["event"] == "unparseable_result_code"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"
        assert warnings[0]["checkout_request_id"] == "ws_CO_1"
        assert warnings[0]["raw_value"] == "'abc'"


class TestReportFromQuery:
    def test_completed_query(self):
        report = report_from_query("ws_CO_1", {
            "ResponseCode": "0",
            "MerchantRequestID": "22205-34066-1",
            "CheckoutRequestID": "ws_CO_1",
            "ResultCode": "0",
            "ResultDesc": "The service request is processed successfully.",
        })
        assert report.raw_code == 0
        assert report.success_metadata is None
        assert report.merchant_request_id == "22205-34066-1"

    def test_still_processing_reads_as_pending(self):
        report = report_from_query("ws_CO_1", {
            "requestId": "8563-2164025-1",
            "errorCode": "500.001.1001",
            "errorMessage": "The transaction is being processed",
        })
        assert report.raw_code is None
        assert report.raw_message == "The transaction is being processed"
        assert classify(report.raw_code).status == "pending"

    def test_absent_result_code_is_not_logged_as_unreadable(self):
        with capture_logs() as logs:
            report_from_query("ws_CO_1", {"errorCode": "500.001.1001"})
        assert not [e for e in logs if e["event"] == "unparseable_result_code"]

    def test_uses_caller_checkout_request_id(self):
        report = report_from_query("ws_CO_mine", {"CheckoutRequestID": "ws_CO_other", "ResultCode": "1032"})
        assert report.checkout_request_id == "ws_CO_mine"
        assert report.raw_code == 1032

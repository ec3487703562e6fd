"""Safaricom Daraja (M-Pesa Express) client."""
import base64
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
import structlog

from mpesa_payments.config import MpesaConfig
from mpesa_payments.exceptions import ConfigurationError, GatewayError
from mpesa_payments.gateway.base import BaseGateway

logger = structlog.get_logger(__name__)


class DarajaClient(BaseGateway):
    """
    STK push and STK push query against the Daraja API.

    Every call fetches a fresh OAuth token; tokens live for an hour but a
    request here is short-lived and independent of the next one.
    """

    def __init__(self, config: MpesaConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            transport=self._transport,
        )

    def _require_business_credentials(self) -> None:
        if not self.config.shortcode or not self.config.passkey:
            raise ConfigurationError("M-Pesa configuration missing: MPESA_SHORTCODE or MPESA_PASSKEY")

    @staticmethod
    def timestamp(now: Optional[datetime] = None) -> str:
        return (now or datetime.now()).strftime("%Y%m%d%H%M%S")

    def password(self, timestamp: str) -> str:
        raw = f"{self.config.shortcode}{self.config.passkey}{timestamp}".encode("utf-8")
        return base64.b64encode(raw).decode("utf-8")

    async def access_token(self) -> str:
        if not self.config.consumer_key or not self.config.consumer_secret:
            raise ConfigurationError("M-Pesa credentials not configured")

        try:
            async with self._client() as client:
                response = await client.get(
                    "/oauth/v1/generate",
                    params={"grant_type": "client_credentials"},
                    auth=(self.config.consumer_key, self.config.consumer_secret),
                )
        except httpx.HTTPError as e:
            logger.error("mpesa_oauth_unreachable", error=str(e))
            raise GatewayError(f"Failed to reach M-Pesa OAuth endpoint: {e}") from e

        if response.status_code != 200:
            raise GatewayError(
                f"Failed to get M-Pesa access token: status={response.status_code}",
                status_code=response.status_code,
            )
        try:
            token = response.json().get("access_token")
        except ValueError as e:
            raise GatewayError("M-Pesa OAuth returned a non-JSON body", status_code=response.status_code) from e
        if not token:
            raise GatewayError("M-Pesa OAuth response is missing access_token", status_code=response.status_code)
        return token

    async def _post(self, path: str, payload: Dict[str, Any]) -> httpx.Response:
        token = await self.access_token()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        try:
            async with self._client() as client:
                return await client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error("mpesa_request_failed", path=path, error=str(e))
            raise GatewayError(f"Failed to reach M-Pesa API: {e}") from e

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise GatewayError(
                f"M-Pesa returned a non-JSON body (status {response.status_code})",
                status_code=response.status_code,
            ) from e
        if not isinstance(body, dict):
            raise GatewayError("M-Pesa returned an unexpected body", status_code=response.status_code)
        return body

    async def stk_push(
        self,
        phone_number: str,
        amount: float,
        account_reference: str,
        transaction_desc: str,
    ) -> Dict[str, Any]:
        self._require_business_credentials()
        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": int(round(amount)),
            "PartyA": phone_number,
            "PartyB": self.config.shortcode,
            "PhoneNumber": phone_number,
            "CallBackURL": self.config.callback_url,
            "AccountReference": account_reference,
            "TransactionDesc": transaction_desc or "Payment for order",
        }

        logger.info("stk_push_sending", environment=self.config.environment, phone_number=phone_number, amount=payload["Amount"])
        response = await self._post("/mpesa/stkpush/v1/processrequest", payload)
        body = self._decode(response)

        if str(body.get("ResponseCode")) != "0":
            description = body.get("ResponseDescription") or body.get("errorMessage") or "unknown error"
            raise GatewayError(f"STK Push failed: {description}", status_code=response.status_code, payload=body)
        return body

    async def query(self, checkout_request_id: str) -> Dict[str, Any]:
        self._require_business_credentials()
        timestamp = self.timestamp()
        payload = {
            "BusinessShortCode": self.config.shortcode,
            "Password": self.password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }
        response = await self._post("/mpesa/stkpushquery/v1/query", payload)
        # Daraja answers "still processing" with a 500 and an errorCode body,
        # so the body is returned whatever the status code.
        body = self._decode(response)
        logger.info(
            "stk_query_response",
            checkout_request_id=checkout_request_id,
            http_status=response.status_code,
            result_code=body.get("ResultCode"),
            error_code=body.get("errorCode"),
        )
        return body

"""Receipt emails: HTML rendering and delivery through the Resend API."""
from html import escape
from typing import Iterable, Optional

import httpx
import structlog

from mpesa_payments import models
from mpesa_payments.exceptions import ConfigurationError, EmailDeliveryError

logger = structlog.get_logger(__name__)

RESEND_URL = "https://api.resend.com/emails"


class ResendMailer:
    def __init__(
        self,
        api_key: Optional[str],
        sender: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, to: str, subject: str, html: str, idempotency_key: Optional[str] = None) -> str:
        """
        Send one HTML email. Returns the provider's message id.

        Raises:
            ConfigurationError: if RESEND_API_KEY is not set
            EmailDeliveryError: if the provider refuses the message or is unreachable
        """
        if not self.api_key:
            raise ConfigurationError("RESEND_API_KEY not configured")

        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    RESEND_URL,
                    json={"from": self.sender, "to": to, "subject": subject, "html": html},
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise EmailDeliveryError(f"Failed to reach email provider: {e}") from e

        if response.status_code >= 300:
            raise EmailDeliveryError(f"Failed to send email: {response.text}")

        try:
            message_id = response.json().get("id", "")
        except ValueError:
            message_id = ""
        logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return message_id


def _ksh(value) -> str:
    return f"KSh {round(value or 0):,}"


_STATUS_COLOURS = {
    "pending": ("#fef3c7", "#92400e"),
    "confirmed": ("#dbeafe", "#1e40af"),
    "paid": ("#d1fae5", "#065f46"),
    "delivered": ("#d1fae5", "#065f46"),
}


def _rows(cells: Iterable[tuple]) -> str:
    return "".join(
        f"""
    <tr>
      <td style="padding: 12px; border-bottom: 1px solid #e5e7eb;">{escape(str(description))}</td>
      <td style="padding: 12px; border-bottom: 1px solid #e5e7eb; text-align: center;">{quantity}</td>
      <td style="padding: 12px; border-bottom: 1px solid #e5e7eb; text-align: right;">{_ksh(unit_price)}</td>
      <td style="padding: 12px; border-bottom: 1px solid #e5e7eb; text-align: right;"><strong>{_ksh(total)}</strong></td>
    </tr>"""
        for description, quantity, unit_price, total in cells
    )


def _document(title: str, heading: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
</head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
    <h1 style="margin: 0; font-size: 28px;">{escape(heading)}</h1>
    <p style="margin: 10px 0 0 0; opacity: 0.9;">{escape(title)}</p>
  </div>
{body}
</body>
</html>
"""


def render_payment_receipt(receipt: models.Receipt, items, order: Optional[models.Order] = None) -> str:
    """HTML for a receipt issued after a completed M-Pesa payment."""
    rows = _rows((i.item_description, i.quantity, i.unit_price, i.total_price) for i in items)
    delivery_fee = order.delivery_fee if order is not None else 0
    short_id = escape(order.short_id or order.id) if order is not None else ""
    tax_row = ""
    if receipt.tax_amount:
        tax_row = f"""
    <div style="display: flex; justify-content: space-between; margin-bottom: 8px;"><span>Tax:</span><span>{_ksh(receipt.tax_amount)}</span></div>"""

    body = f"""
  <div style="background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb;">
    <p style="margin: 5px 0;"><strong>Receipt Number:</strong> {escape(receipt.receipt_number)}</p>
    <p style="margin: 5px 0;"><strong>Order ID:</strong> {short_id}</p>
    <p style="margin: 5px 0;"><strong>Date:</strong> {receipt.issue_date:%d %b %Y %H:%M}</p>
    <p style="margin: 5px 0;"><strong>Payment Method:</strong> {escape(receipt.payment_method)}</p>
  </div>
  <div style="background: white; padding: 20px; border: 1px solid #e5e7eb; border-top: none;">
    <h3 style="margin-top: 0; color: #667eea;">Customer Details</h3>
    <p style="margin: 5px 0;"><strong>Name:</strong> {escape(receipt.customer_name or '')}</p>
    <p style="margin: 5px 0;"><strong>Phone:</strong> {escape(receipt.customer_phone or '')}</p>
    <p style="margin: 5px 0;"><strong>Email:</strong> {escape(receipt.customer_email or '')}</p>
  </div>
  <div style="background: white; padding: 20px; border: 1px solid #e5e7eb; border-top: none;">
    <h3 style="margin-top: 0; color: #667eea;">Order Items</h3>
    <table style="width: 100%; border-collapse: collapse;">
      <thead>
        <tr style="background: #f9fafb;">
          <th style="padding: 12px; text-align: left;">Item</th>
          <th style="padding: 12px; text-align: center;">Qty</th>
          <th style="padding: 12px; text-align: right;">Price</th>
          <th style="padding: 12px; text-align: right;">Total</th>
        </tr>
      </thead>
      <tbody>{rows}
      </tbody>
    </table>
  </div>
  <div style="background: #f9fafb; padding: 20px; border: 1px solid #e5e7eb; border-top: none;">
    <div style="display: flex; justify-content: space-between; margin-bottom: 8px;"><span>Subtotal:</span><span>{_ksh(receipt.subtotal)}</span></div>
    <div style="display: flex; justify-content: space-between; margin-bottom: 8px;"><span>Delivery Fee:</span><span>{_ksh(delivery_fee)}</span></div>{tax_row}
    <div style="display: flex; justify-content: space-between; padding-top: 12px; border-top: 2px solid #e5e7eb; font-size: 18px; font-weight: bold; color: #667eea;">
      <span>Total Paid:</span><span>{_ksh(receipt.total_amount)}</span>
    </div>
  </div>
  <div style="background: white; padding: 20px; text-align: center; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
    <p style="margin: 0; color: #6b7280; font-size: 14px;">
      Thank you for your order!<br>
      For questions, contact us at {escape(receipt.business_phone or receipt.business_email or '')}
    </p>
  </div>"""
    return _document("Payment Receipt", receipt.business_name or "", body)


def render_order_receipt(order: models.Order, business_name: str, support_email: str) -> str:
    """HTML for the order summary sent on request, independent of any payment."""
    customer = order.customer
    rows = _rows((i.name, i.quantity, i.unit_price, i.total_price) for i in order.items)
    background, colour = _STATUS_COLOURS.get(order.status, ("#fee2e2", "#991b1b"))
    subtotal = (order.total_amount or 0) - (order.delivery_fee or 0)
    address = ""
    if order.delivery_address:
        address = f'\n    <p style="margin: 5px 0;"><strong>Delivery Address:</strong> {escape(order.delivery_address)}</p>'
    delivery_row = ""
    if order.delivery_fee:
        delivery_row = f"""
    <div style="display: flex; justify-content: space-between; margin-bottom: 8px;"><span>Delivery Fee</span><span>{_ksh(order.delivery_fee)}</span></div>"""

    body = f"""
  <div style="padding: 20px; border: 1px solid #e5e7eb;">
    <h2 style="margin: 0 0 10px 0; font-size: 24px;">Order #{escape(order.short_id or order.id)}</h2>
    <p style="margin: 0; color: #6b7280;">{order.created_at:%A, %d %B %Y %H:%M}</p>
    <span style="display: inline-block; padding: 6px 16px; background: {background}; color: {colour}; border-radius: 20px; font-weight: 600; text-transform: capitalize;">{escape(order.status)}</span>
  </div>
  <div style="background: #f9fafb; padding: 16px; border: 1px solid #e5e7eb; border-top: none;">
    <h3 style="margin: 0 0 12px 0; font-size: 16px;">Customer Information</h3>
    <p style="margin: 5px 0;"><strong>Name:</strong> {escape(customer.name or '') if customer else ''}</p>
    <p style="margin: 5px 0;"><strong>Phone:</strong> {escape(customer.phone or '') if customer else ''}</p>
    <p style="margin: 5px 0;"><strong>Email:</strong> {escape(customer.email or '') if customer else ''}</p>{address}
  </div>
  <div style="padding: 20px; border: 1px solid #e5e7eb; border-top: none;">
    <h3 style="margin: 0 0 20px 0; font-size: 18px;">Order Items</h3>
    <table style="width: 100%; border-collapse: collapse;">
      <tbody>{rows}
      </tbody>
    </table>
  </div>
  <div style="padding: 20px; background: #f9fafb; border: 1px solid #e5e7eb; border-top: none;">
    <div style="display: flex; justify-content: space-between; margin-bottom: 8px;"><span>Subtotal</span><span>{_ksh(subtotal)}</span></div>{delivery_row}
    <div style="display: flex; justify-content: space-between; padding-top: 12px; border-top: 2px solid #e5e7eb; font-weight: 700;">
      <span>Total</span><span>{_ksh(order.total_amount)}</span>
    </div>
    <div style="display: flex; justify-content: space-between; margin-top: 12px;"><span>Payment Method</span><span>{escape(order.payment_method or 'M-Pesa')}</span></div>
  </div>
  <div style="padding: 20px; text-align: center; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
    <p style="margin: 0 0 10px 0; color: #6b7280; font-size: 14px;">Thank you for your order!</p>
    <p style="margin: 0; color: #9ca3af; font-size: 12px;">If you have any questions, please contact us at {escape(support_email)}</p>
  </div>"""
    return _document("Order Receipt", business_name, body)

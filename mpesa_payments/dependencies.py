"""FastAPI dependencies wiring the services to a request's DB session."""
from fastapi import Depends
from sqlalchemy.orm import Session

from mpesa_payments.config import Settings, get_settings
from mpesa_payments.database import get_db
from mpesa_payments.gateway.base import BaseGateway
from mpesa_payments.gateway.daraja import DarajaClient
from mpesa_payments.services.email import ResendMailer
from mpesa_payments.services.receipts import ReceiptEmitter
from mpesa_payments.services.reconciliation import Reconciler
from mpesa_payments.services.store import OrderService, TransactionStore


def get_gateway(settings: Settings = Depends(get_settings)) -> BaseGateway:
    return DarajaClient(settings.mpesa_config())


def get_mailer(settings: Settings = Depends(get_settings)) -> ResendMailer:
    return ResendMailer(
        api_key=settings.resend_api_key,
        sender=settings.receipt_from_address,
        timeout=settings.http_timeout_seconds,
    )


def get_reconciler(
    db: Session = Depends(get_db),
    mailer: ResendMailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
) -> Reconciler:
    return Reconciler(
        store=TransactionStore(db),
        orders=OrderService(db),
        receipts=ReceiptEmitter(db, mailer, settings),
        business_short_code=settings.mpesa_shortcode,
    )

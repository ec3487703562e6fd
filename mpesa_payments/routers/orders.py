from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from mpesa_payments.config import Settings, get_settings
from mpesa_payments.database import get_db
from mpesa_payments.dependencies import get_mailer
from mpesa_payments.exceptions import ConfigurationError, EmailDeliveryError, RecordNotFoundError
from mpesa_payments.schemas.responses import SendReceiptResponse
from mpesa_payments.services.email import ResendMailer
from mpesa_payments.services.receipts import send_order_receipt

router = APIRouter()


@router.post("/{order_id}/send-receipt", response_model=SendReceiptResponse)
async def send_receipt(
    order_id: str,
    db: Session = Depends(get_db),
    mailer: ResendMailer = Depends(get_mailer),
    settings: Settings = Depends(get_settings),
):
    """Email the order summary to the customer who placed the order."""
    try:
        message_id = await send_order_receipt(order_id, db, mailer, settings)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except EmailDeliveryError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return SendReceiptResponse(success=True, message="Receipt sent successfully", message_id=message_id)

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from mpesa_payments.config import Settings, get_settings
from mpesa_payments.database import get_db
from mpesa_payments.dependencies import get_gateway, get_reconciler
from mpesa_payments.exceptions import ConfigurationError, GatewayError, RecordNotFoundError
from mpesa_payments.gateway.base import BaseGateway
from mpesa_payments.schemas.requests import QueryStatusRequest, StkPushRequest
from mpesa_payments.schemas.responses import (
    CallbackAck,
    QueryStatusResponse,
    StkPushResponse,
    TransactionOut,
)
from mpesa_payments.services.payments import initiate_payment
from mpesa_payments.services.reconciliation import DISCARDED, Reconciler, poll_status, process_callback
from mpesa_payments.services.store import OrderService, TransactionStore

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/stk-push", response_model=StkPushResponse)
async def stk_push(
    body: StkPushRequest,
    db: Session = Depends(get_db),
    gateway: BaseGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    """
    Prompt the customer's phone for payment and record a pending transaction.

    The result arrives later on /callback, or can be pulled with /query-status.
    """
    try:
        result = await initiate_payment(
            gateway,
            TransactionStore(db),
            phone_number=body.phone_number,
            amount=body.amount,
            account_reference=body.account_reference,
            transaction_desc=body.transaction_desc,
            order_id=body.order_id,
            user_auth_id=body.user_auth_id,
            business_short_code=settings.mpesa_shortcode,
            orders=OrderService(db),
        )
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return StkPushResponse(
        success=True,
        message=result.customer_message or "STK push sent successfully",
        merchant_request_id=result.merchant_request_id,
        checkout_request_id=result.checkout_request_id,
        transaction_id=result.transaction.id if result.transaction is not None else None,
    )


@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(request: Request, reconciler: Reconciler = Depends(get_reconciler)):
    """
    Push path. Safaricom retries anything but an acceptance, so the
    acknowledgment is the same whatever happens while processing.
    """
    try:
        payload = await request.json()
        outcome = await process_callback(payload, reconciler)
        logger.info("callback_processed", action=outcome.action, status=outcome.status, matched=outcome.matched)
    except Exception:
        logger.exception("callback_processing_failed")
    return CallbackAck()


@router.post(
    "/query-status",
    response_model=QueryStatusResponse,
    responses={404: {"model": QueryStatusResponse}},
)
async def query_status(
    body: QueryStatusRequest,
    gateway: BaseGateway = Depends(get_gateway),
    reconciler: Reconciler = Depends(get_reconciler),
):
    """
    Poll path: ask Daraja for the result and reconcile it exactly as a
    callback would be.

    - 200 with the current status when the transaction is known (or recovered)
    - 404 when Daraja reports on a CheckoutRequestID this service never stored
    """
    try:
        result = await poll_status(body.checkout_request_id, gateway, reconciler)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except GatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except SQLAlchemyError:
        logger.exception("transaction_update_failed", checkout_request_id=body.checkout_request_id)
        raise HTTPException(status_code=500, detail="Failed to update transaction")

    outcome = result.outcome
    response = QueryStatusResponse(
        success=outcome.action != DISCARDED,
        status=outcome.status,
        result_code=result.report.raw_code,
        result_desc=result.report.raw_message,
        error_message=outcome.message,
        matched=outcome.matched,
        action=outcome.action,
        transaction=TransactionOut.model_validate(outcome.transaction) if outcome.transaction is not None else None,
        mpesa_response=result.gateway_response,
    )
    if outcome.action == DISCARDED:
        return JSONResponse(status_code=404, content=response.model_dump(mode="json", by_alias=True))
    return response

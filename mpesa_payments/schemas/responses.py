from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, Dict, Any
from datetime import datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TransactionOut(CamelModel):
    id: str
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    status: str
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    amount: float
    phone_number: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    order_id: Optional[str] = None
    transaction_timestamp: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class StkPushResponse(CamelModel):
    success: bool
    message: Optional[str] = None
    merchant_request_id: Optional[str] = None
    checkout_request_id: Optional[str] = None
    transaction_id: Optional[str] = None


class QueryStatusResponse(CamelModel):
    success: bool
    status: str
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    error_message: Optional[str] = None
    matched: bool
    action: str
    transaction: Optional[TransactionOut] = None
    mpesa_response: Dict[str, Any]


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class SendReceiptResponse(CamelModel):
    success: bool
    message: str
    message_id: Optional[str] = None

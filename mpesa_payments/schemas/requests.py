from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional


class StkPushRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    phone_number: str
    amount: float = Field(gt=0)
    order_id: Optional[str] = None
    account_reference: str
    transaction_desc: Optional[str] = None
    user_auth_id: Optional[str] = None

    @field_validator("phone_number", "account_reference")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class QueryStatusRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    checkout_request_id: str

    @field_validator("checkout_request_id")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("checkoutRequestId is required")
        return v.strip()

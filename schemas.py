# schemas.py
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, List, Union


# -------- PAYMENTS --------
class StkPushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # kept loose on purpose: the service turns bad values into ValidationError
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    amount: Union[int, float, str, None] = None
    user_id: Optional[str] = Field(default=None, alias="userId")


class StkPushResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    transaction_id: UUID = Field(alias="transactionId")
    correlation_id: str = Field(alias="correlationId")
    merchant_request_id: Optional[str] = Field(default=None, alias="merchantRequestId")
    message: str = "STK push sent. Enter your M-Pesa PIN on your phone to authorize."


class ErrorResponse(BaseModel):
    error: str


# -------- CALLBACKS --------
class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


# -------- TRANSACTIONS --------
class TransactionItem(BaseModel):
    id: UUID
    phone_number: str
    amount: Decimal
    user_id: Optional[str] = None
    status: str
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    receipt_number: Optional[str] = None
    confirmed_amount: Optional[Decimal] = None
    result_code: Optional[str] = None
    result_desc: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TransactionListResponse(BaseModel):
    items: List[TransactionItem]


class StkQueryResponse(BaseModel):
    transaction: TransactionItem
    queried: bool
    applied: bool
    provider_result_code: Optional[str] = None
    provider_result_desc: Optional[str] = None
    provider_body: Optional[dict[str, Any]] = None

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Any
from uuid import UUID
from datetime import datetime


PENDING = "pending"
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class NewTransaction:
    phone_number: str
    amount: Decimal
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Transaction:
    id: UUID
    phone_number: str
    amount: Decimal
    user_id: Optional[str]
    status: str
    checkout_request_id: str
    merchant_request_id: Optional[str]
    receipt_number: Optional[str]
    confirmed_amount: Optional[Decimal]
    result_code: Optional[str]
    result_desc: Optional[str]
    raw_callback: Optional[dict[str, Any]]
    created_at: datetime
    updated_at: datetime

# app/payments/service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from app.errors import StorageError, UpstreamAuthError, UpstreamRequestError, ValidationError
from app.mpesa.client import DarajaClient
from app.mpesa.formatting import normalize_phone, whole_amount
from app.transactions.model import NewTransaction
from app.transactions.repository import TransactionStore
from services.metrics import increment_stk_push
from services.redaction import mask_phone


logger = logging.getLogger("stkpay.payments")


@dataclass(frozen=True)
class InitiationResult:
    transaction_id: UUID
    checkout_request_id: str
    merchant_request_id: Optional[str]
    customer_message: Optional[str]


# numeric(12, 2) column in the transactions table
MAX_AMOUNT = Decimal("9999999999")


def parse_amount(raw: Any) -> Decimal:
    """
    Validate a requested amount and return the whole-shilling value that
    is both charged and stored.
    """
    if raw is None or isinstance(raw, bool):
        raise ValidationError("Amount is required")
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Amount must be a number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Amount must be a positive number")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {MAX_AMOUNT}")
    try:
        whole = whole_amount(amount)
    except InvalidOperation:
        raise ValidationError("Amount must be a number")
    if whole < 1:
        raise ValidationError("Amount must be at least 1")
    return Decimal(whole)


def initiate_payment(
    store: TransactionStore,
    client: DarajaClient,
    *,
    phone_number: Any,
    amount: Any,
    user_id: Optional[str] = None,
) -> InitiationResult:
    """
    Send an STK push and record it.

    The transaction row is written only after Daraja accepts the push, so a
    rejected or unreachable provider never leaves a pending row behind that
    no callback could ever settle.
    """
    phone_raw = str(phone_number or "").strip()
    if not phone_raw:
        raise ValidationError("Phone number is required")
    value = parse_amount(amount)

    phone = normalize_phone(phone_raw, client.cfg.country_prefix)

    try:
        ack = client.stk_push(phone=phone, amount=value)
    except UpstreamAuthError:
        increment_stk_push("auth_error")
        raise
    except UpstreamRequestError:
        increment_stk_push("rejected")
        raise

    try:
        txn = store.create(
            NewTransaction(
                phone_number=phone,
                amount=value,
                checkout_request_id=ack.checkout_request_id,
                merchant_request_id=ack.merchant_request_id,
                user_id=(user_id or None),
            )
        )
    except StorageError:
        # Daraja already prompted the customer; the callback will find nothing.
        logger.error(
            "reconciliation_gap stage=create checkout_request_id=%s merchant_request_id=%s phone=%s amount=%s",
            ack.checkout_request_id,
            ack.merchant_request_id,
            mask_phone(phone),
            value,
        )
        increment_stk_push("storage_error")
        raise

    logger.info(
        "stk_push accepted transaction_id=%s checkout_request_id=%s phone=%s amount=%s",
        txn.id,
        ack.checkout_request_id,
        mask_phone(phone),
        value,
    )
    increment_stk_push("accepted")
    return InitiationResult(
        transaction_id=txn.id,
        checkout_request_id=ack.checkout_request_id,
        merchant_request_id=ack.merchant_request_id,
        customer_message=ack.customer_message,
    )

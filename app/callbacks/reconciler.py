# app/callbacks/reconciler.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from app.errors import MalformedCallbackError, StorageError
from app.transactions.model import COMPLETED, FAILED, PENDING, Transaction
from app.transactions.repository import TransactionStore
from app.transactions.state_machine import is_terminal, status_for_result_code
from services.metrics import increment_callback
from services.redaction import redact_dict


logger = logging.getLogger("stkpay.callbacks")

APPLIED = "APPLIED"
DUPLICATE = "DUPLICATE"
NOT_FOUND = "NOT_FOUND"
MALFORMED = "MALFORMED"
STORAGE_ERROR = "STORAGE_ERROR"

# Body Daraja expects back; anything else makes it retry the callback.
ACK = {"ResultCode": 0, "ResultDesc": "Accepted"}


@dataclass(frozen=True)
class StkCallback:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    result_code: str
    result_desc: Optional[str]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def receipt_number(self) -> Optional[str]:
        value = self.metadata.get("MpesaReceiptNumber")
        return str(value) if value is not None else None

    @property
    def amount(self) -> Optional[Decimal]:
        value = self.metadata.get("Amount")
        if value is None:
            return None
        try:
            return Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None

    @property
    def phone_number(self) -> Optional[str]:
        value = self.metadata.get("PhoneNumber")
        return str(value) if value is not None else None


@dataclass(frozen=True)
class ReconcileOutcome:
    reason: str
    transaction_id: Optional[UUID] = None
    status: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.reason == APPLIED


def _metadata_items(stk: dict[str, Any]) -> dict[str, Any]:
    meta = stk.get("CallbackMetadata")
    if not isinstance(meta, dict):
        return {}
    items = meta.get("Item")
    if not isinstance(items, list):
        return {}
    out: dict[str, Any] = {}
    for item in items:
        if isinstance(item, dict) and item.get("Name"):
            out[str(item["Name"])] = item.get("Value")
    return out


def parse_callback(payload: Any) -> StkCallback:
    if not isinstance(payload, dict):
        raise MalformedCallbackError("Callback body is not a JSON object")
    body = payload.get("Body")
    if not isinstance(body, dict):
        raise MalformedCallbackError("Callback is missing Body")
    stk = body.get("stkCallback")
    if not isinstance(stk, dict):
        raise MalformedCallbackError("Callback is missing Body.stkCallback")

    checkout_id = str(stk.get("CheckoutRequestID") or "").strip()
    if not checkout_id:
        raise MalformedCallbackError("Callback is missing CheckoutRequestID")
    if stk.get("ResultCode") is None or str(stk.get("ResultCode")).strip() == "":
        raise MalformedCallbackError("Callback is missing ResultCode")

    merchant_id = str(stk.get("MerchantRequestID") or "").strip() or None
    return StkCallback(
        checkout_request_id=checkout_id,
        merchant_request_id=merchant_id,
        result_code=str(stk.get("ResultCode")).strip(),
        result_desc=stk.get("ResultDesc"),
        metadata=_metadata_items(stk),
    )


def apply_result(
    store: TransactionStore,
    txn: Transaction,
    *,
    result_code: str,
    result_desc: Optional[str] = None,
    receipt_number: Optional[str] = None,
    confirmed_amount: Optional[Decimal] = None,
    raw_callback: Optional[dict[str, Any]] = None,
) -> ReconcileOutcome:
    """
    Move a pending transaction to its terminal state. Terminal rows and
    lost races are reported as DUPLICATE and left untouched.
    """
    if is_terminal(txn.status):
        return ReconcileOutcome(reason=DUPLICATE, transaction_id=txn.id, status=txn.status)

    new_status = status_for_result_code(result_code)
    applied = store.update_status(
        txn.id,
        new_status,
        from_status=PENDING,
        receipt_number=receipt_number if new_status != FAILED else None,
        confirmed_amount=confirmed_amount,
        result_code=result_code,
        result_desc=result_desc,
        raw_callback=raw_callback,
    )
    if not applied:
        current = store.get(txn.id)
        return ReconcileOutcome(
            reason=DUPLICATE,
            transaction_id=txn.id,
            status=current.status if current else None,
        )
    return ReconcileOutcome(reason=APPLIED, transaction_id=txn.id, status=new_status)


def _find(store: TransactionStore, cb: StkCallback) -> Optional[Transaction]:
    return store.find_by_correlation_id(cb.checkout_request_id)


def reconcile(store: TransactionStore, payload: Any) -> ReconcileOutcome:
    """
    Settle the transaction a Daraja callback refers to.

    Never raises: every outcome, including bad payloads and storage
    failures, is logged and returned so the route can always acknowledge.
    """
    try:
        cb = parse_callback(payload)
    except MalformedCallbackError as exc:
        logger.warning(
            "callback_malformed reason=%s payload=%s",
            exc.message,
            redact_dict(payload) if isinstance(payload, dict) else repr(payload)[:300],
        )
        increment_callback(MALFORMED.lower())
        return ReconcileOutcome(reason=MALFORMED)

    try:
        txn = _find(store, cb)
        if txn is None:
            logger.warning(
                "callback_unmatched checkout_request_id=%s merchant_request_id=%s result_code=%s",
                cb.checkout_request_id,
                cb.merchant_request_id,
                cb.result_code,
            )
            increment_callback(NOT_FOUND.lower())
            return ReconcileOutcome(reason=NOT_FOUND)

        if txn.status == PENDING and status_for_result_code(cb.result_code) == COMPLETED:
            amount = cb.amount
            if amount is not None and amount != txn.amount:
                logger.warning(
                    "callback_amount_mismatch transaction_id=%s requested=%s confirmed=%s",
                    txn.id,
                    txn.amount,
                    amount,
                )

        outcome = apply_result(
            store,
            txn,
            result_code=cb.result_code,
            result_desc=cb.result_desc,
            receipt_number=cb.receipt_number,
            confirmed_amount=cb.amount,
            raw_callback=payload,
        )
    except StorageError:
        logger.error(
            "callback_storage_error checkout_request_id=%s result_code=%s payload=%s",
            cb.checkout_request_id,
            cb.result_code,
            redact_dict(payload),
        )
        increment_callback(STORAGE_ERROR.lower())
        return ReconcileOutcome(reason=STORAGE_ERROR)

    if outcome.applied:
        logger.info(
            "callback_applied transaction_id=%s checkout_request_id=%s status=%s receipt=%s result_code=%s",
            outcome.transaction_id,
            cb.checkout_request_id,
            outcome.status,
            cb.receipt_number,
            cb.result_code,
        )
    else:
        logger.info(
            "callback_duplicate transaction_id=%s checkout_request_id=%s status=%s",
            outcome.transaction_id,
            cb.checkout_request_id,
            outcome.status,
        )
    increment_callback(outcome.reason.lower())
    return outcome

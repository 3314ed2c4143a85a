# routes/transactions.py
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.callbacks.reconciler import apply_result
from app.errors import PaymentError
from app.mpesa.client import DarajaClient
from app.transactions.model import Transaction
from app.transactions.repository import TransactionStore
from app.transactions.state_machine import is_terminal
from deps.mpesa import get_daraja_client
from deps.store import get_store
from schemas import ErrorResponse, StkQueryResponse, TransactionItem, TransactionListResponse
from services.metrics import increment_stk_query

router = APIRouter(prefix="/v1/transactions", tags=["transactions"])
logger = logging.getLogger("stkpay.transactions")


class TransactionNotFound(PaymentError):
    http_status = 404


def _item(txn: Transaction) -> TransactionItem:
    return TransactionItem(
        id=txn.id,
        phone_number=txn.phone_number,
        amount=txn.amount,
        user_id=txn.user_id,
        status=txn.status,
        checkout_request_id=txn.checkout_request_id,
        merchant_request_id=txn.merchant_request_id,
        receipt_number=txn.receipt_number,
        confirmed_amount=txn.confirmed_amount,
        result_code=txn.result_code,
        result_desc=txn.result_desc,
        created_at=txn.created_at,
        updated_at=txn.updated_at,
    )


def _require(store: TransactionStore, transaction_id: UUID) -> Transaction:
    txn = store.get(transaction_id)
    if txn is None:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    return txn


@router.get("", response_model=TransactionListResponse)
def list_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str | None = Query(default=None),
    store: TransactionStore = Depends(get_store),
):
    txns = store.list_recent(limit, user_id=user_id)
    return TransactionListResponse(items=[_item(t) for t in txns])


@router.get("/{transaction_id}", response_model=TransactionItem, responses={404: {"model": ErrorResponse}})
def get_transaction(transaction_id: UUID, store: TransactionStore = Depends(get_store)):
    return _item(_require(store, transaction_id))


@router.post("/{transaction_id}/query", response_model=StkQueryResponse, responses={404: {"model": ErrorResponse}})
def query_transaction(
    transaction_id: UUID,
    store: TransactionStore = Depends(get_store),
    client: DarajaClient = Depends(get_daraja_client),
):
    """
    Ask Daraja for the STK result of a transaction whose callback never came.
    A final result goes through the same conditional transition as callbacks.
    """
    txn = _require(store, transaction_id)
    if is_terminal(txn.status):
        return StkQueryResponse(transaction=_item(txn), queried=False, applied=False)

    try:
        result = client.query_stk_status(txn.checkout_request_id)
    except PaymentError:
        increment_stk_query("error")
        raise

    if result.pending:
        increment_stk_query("pending")
        return StkQueryResponse(
            transaction=_item(txn),
            queried=True,
            applied=False,
            provider_result_desc=result.result_desc,
            provider_body=result.raw,
        )

    outcome = apply_result(
        store,
        txn,
        result_code=result.result_code,
        result_desc=result.result_desc,
    )
    increment_stk_query("applied" if outcome.applied else "duplicate")
    logger.info(
        "stk_query transaction_id=%s checkout_request_id=%s result_code=%s outcome=%s",
        txn.id,
        txn.checkout_request_id,
        result.result_code,
        outcome.reason,
    )
    return StkQueryResponse(
        transaction=_item(_require(store, transaction_id)),
        queried=True,
        applied=outcome.applied,
        provider_result_code=result.result_code,
        provider_result_desc=result.result_desc,
        provider_body=result.raw,
    )

# routes/callbacks.py
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from app.callbacks.reconciler import ACK, reconcile
from app.transactions.repository import TransactionStore
from deps.store import get_store
from schemas import CallbackAck
from services.redaction import redact_text

router = APIRouter(prefix="/v1/mpesa", tags=["callbacks"])
logger = logging.getLogger("stkpay.callbacks")


@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(req: Request, store: TransactionStore = Depends(get_store)):
    """
    Daraja STK result callback.

    Always answers 200 with the fixed acknowledgment: Daraja retries anything
    else, and nothing it could resend would change the outcome.
    """
    raw = await req.body()
    try:
        payload = json.loads(raw.decode("utf-8", errors="replace")) if raw else None
    except json.JSONDecodeError:
        payload = None

    if payload is None:
        logger.warning("callback_invalid_json body=%s", redact_text(raw[:300].decode("utf-8", errors="replace")))

    # store calls block, so keep them off the loop
    try:
        outcome = await run_in_threadpool(reconcile, store, payload)
        logger.debug("callback_handled reason=%s transaction_id=%s", outcome.reason, outcome.transaction_id)
    except Exception:
        logger.exception("callback_unhandled_error body=%s", redact_text(raw[:300].decode("utf-8", errors="replace")))
    return dict(ACK)

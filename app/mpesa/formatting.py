# app/mpesa/formatting.py
from __future__ import annotations

import base64
import re
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from app.mpesa.config import MpesaConfig

# Daraja validates timestamps against Nairobi local time (no DST).
EAT = timezone(timedelta(hours=3), "EAT")
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Any, country_prefix: str = "254") -> str:
    """
    Normalize a phone number to the digits-only MSISDN form Daraja expects.

    Never raises: garbage in gives a well-formed but meaningless number out.
    The result always starts with `country_prefix`, which makes the function
    idempotent.
    """
    digits = _NON_DIGITS.sub("", str(raw or ""))
    if digits.startswith("00"):
        digits = digits[2:]

    if digits.startswith(country_prefix):
        return digits
    if digits.startswith("0"):
        return country_prefix + digits[1:]
    return country_prefix + digits


def make_timestamp(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(EAT).strftime(TIMESTAMP_FORMAT)


def build_password(short_code: str, passkey: str, timestamp: str) -> str:
    raw = f"{short_code}{passkey}{timestamp}".encode("utf-8")
    return base64.b64encode(raw).decode("utf-8")


def whole_amount(amount: Decimal) -> int:
    # STK push only accepts whole shillings
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_stk_payload(cfg: MpesaConfig, *, phone: str, amount: Decimal, timestamp: str) -> dict[str, Any]:
    return {
        "BusinessShortCode": cfg.shortcode,
        "Password": build_password(cfg.shortcode, cfg.passkey, timestamp),
        "Timestamp": timestamp,
        "TransactionType": cfg.transaction_type,
        "Amount": whole_amount(amount),
        "PartyA": phone,
        "PartyB": cfg.shortcode,
        "PhoneNumber": phone,
        "CallBackURL": cfg.callback_url,
        "AccountReference": cfg.account_reference,
        "TransactionDesc": cfg.transaction_desc,
    }


def build_query_payload(cfg: MpesaConfig, *, checkout_request_id: str, timestamp: str) -> dict[str, Any]:
    return {
        "BusinessShortCode": cfg.shortcode,
        "Password": build_password(cfg.shortcode, cfg.passkey, timestamp),
        "Timestamp": timestamp,
        "CheckoutRequestID": checkout_request_id,
    }

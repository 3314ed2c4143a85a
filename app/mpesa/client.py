# app/mpesa/client.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import requests

from app.errors import UpstreamAuthError, UpstreamRequestError
from app.mpesa.auth import TokenProvider
from app.mpesa.config import MpesaConfig, mpesa_config, require_complete
from app.mpesa.formatting import build_query_payload, build_stk_payload, make_timestamp
from services.redaction import mask_phone, redact_text


logger = logging.getLogger("stkpay.mpesa")

STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"

# Daraja reports a rejected bearer token in-band with this code.
INVALID_TOKEN_CODES = {"404.001.03"}
# Query answers this while the customer has not yet acted on the prompt.
STILL_PROCESSING_CODES = {"500.001.1001"}


@dataclass(frozen=True)
class StkPushAck:
    checkout_request_id: str
    merchant_request_id: Optional[str]
    response_code: str
    response_description: Optional[str] = None
    customer_message: Optional[str] = None
    raw: Optional[dict[str, Any]] = None


@dataclass(frozen=True)
class StkQueryResult:
    checkout_request_id: str
    result_code: Optional[str]
    result_desc: Optional[str]
    raw: Optional[dict[str, Any]] = None

    @property
    def pending(self) -> bool:
        return self.result_code is None


def _safe_json(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


def _provider_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("errorMessage", "ResponseDescription", "ResultDesc", "CustomerMessage"):
            value = payload.get(key)
            if value:
                return str(value)
    return fallback


def _is_invalid_token(status_code: int, payload: Any) -> bool:
    if status_code == 401:
        return True
    if isinstance(payload, dict):
        return str(payload.get("errorCode") or "") in INVALID_TOKEN_CODES
    return False


class DarajaClient:
    def __init__(self, cfg: MpesaConfig | None = None, tokens: TokenProvider | None = None) -> None:
        self.cfg = cfg or mpesa_config()
        self.tokens = tokens or TokenProvider(self.cfg)

    def _headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    def _post(self, path: str, body: dict[str, Any], token: str, *, stage: str):
        url = f"{self.cfg.base_url}{path}"
        try:
            return requests.post(url, json=body, headers=self._headers(token), timeout=self.cfg.timeout_s)
        except requests.RequestException as exc:
            logger.warning("mpesa %s transport error err=%s", stage, exc)
            raise UpstreamRequestError(f"Failed to reach M-Pesa {stage} API: {exc}") from exc

    def stk_push(self, *, phone: str, amount: Decimal) -> StkPushAck:
        """
        Send one STK push. The timestamp is taken once and shared by the
        password and the payload.
        """
        require_complete(self.cfg)
        token = self.tokens.get_access_token()
        timestamp = make_timestamp()
        body = build_stk_payload(self.cfg, phone=phone, amount=amount, timestamp=timestamp)

        resp = self._post(STK_PUSH_PATH, body, token, stage="stk_push")
        payload = _safe_json(resp)
        logger.info(
            "mpesa stk_push response status=%s phone=%s amount=%s",
            resp.status_code,
            mask_phone(phone),
            body["Amount"],
        )

        if _is_invalid_token(resp.status_code, payload):
            self.tokens.invalidate()
            raise UpstreamAuthError(_provider_message(payload, "M-Pesa rejected the access token"))

        if not (200 <= resp.status_code < 300) or not isinstance(payload, dict):
            message = _provider_message(payload, f"M-Pesa request failed: HTTP {resp.status_code}")
            logger.warning(
                "mpesa stk_push rejected status=%s body=%s",
                resp.status_code,
                redact_text((resp.text or "")[:300]),
            )
            raise UpstreamRequestError(
                message,
                http_status=resp.status_code,
                body=payload if isinstance(payload, dict) else None,
            )

        # errors can arrive in-band with a 200
        if payload.get("errorCode") or str(payload.get("ResponseCode")) != "0":
            message = _provider_message(payload, "STK push was not accepted")
            logger.warning(
                "mpesa stk_push not accepted code=%s message=%s",
                payload.get("errorCode") or payload.get("ResponseCode"),
                message,
            )
            raise UpstreamRequestError(f"M-Pesa error: {message}", http_status=resp.status_code, body=payload)

        checkout_id = str(payload.get("CheckoutRequestID") or "").strip()
        if not checkout_id:
            raise UpstreamRequestError(
                "M-Pesa accepted the request without a CheckoutRequestID",
                http_status=resp.status_code,
                body=payload,
            )

        merchant_id = str(payload.get("MerchantRequestID") or "").strip() or None
        return StkPushAck(
            checkout_request_id=checkout_id,
            merchant_request_id=merchant_id,
            response_code="0",
            response_description=payload.get("ResponseDescription"),
            customer_message=payload.get("CustomerMessage"),
            raw=payload,
        )

    def query_stk_status(self, checkout_request_id: str) -> StkQueryResult:
        require_complete(self.cfg)
        token = self.tokens.get_access_token()
        timestamp = make_timestamp()
        body = build_query_payload(self.cfg, checkout_request_id=checkout_request_id, timestamp=timestamp)

        resp = self._post(STK_QUERY_PATH, body, token, stage="stk_query")
        payload = _safe_json(resp)
        logger.info(
            "mpesa stk_query response status=%s checkout_request_id=%s",
            resp.status_code,
            checkout_request_id,
        )

        if _is_invalid_token(resp.status_code, payload):
            self.tokens.invalidate()
            raise UpstreamAuthError(_provider_message(payload, "M-Pesa rejected the access token"))

        if isinstance(payload, dict) and str(payload.get("errorCode") or "") in STILL_PROCESSING_CODES:
            return StkQueryResult(
                checkout_request_id=checkout_request_id,
                result_code=None,
                result_desc=_provider_message(payload, "The transaction is being processed"),
                raw=payload,
            )

        if resp.status_code == 200 and isinstance(payload, dict) and payload.get("ResultCode") is not None:
            return StkQueryResult(
                checkout_request_id=checkout_request_id,
                result_code=str(payload.get("ResultCode")).strip(),
                result_desc=payload.get("ResultDesc"),
                raw=payload,
            )

        raise UpstreamRequestError(
            _provider_message(payload, f"M-Pesa query failed: HTTP {resp.status_code}"),
            http_status=resp.status_code,
            body=payload if isinstance(payload, dict) else None,
        )

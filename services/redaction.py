from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
# +E.164 or bare MSISDNs such as 254712345678
_PHONE_RE = re.compile(r"\+?\b\d{9,15}\b")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "secret",
    "password",
    "passkey",
)

_PHONE_KEYS = {"phonenumber", "phone_number", "partya", "phone"}


def _mask_email(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def mask_phone(value: Any) -> str:
    text = str(value or "")
    if len(text) <= 8:
        return text
    prefix = text[:6]
    suffix = text[-2:]
    return f"{prefix}****{suffix}"


def redact_text(value: str) -> str:
    masked = _EMAIL_RE.sub(_mask_email, value)

    def _phone_replace(match: re.Match) -> str:
        return mask_phone(match.group(0))

    masked = _PHONE_RE.sub(_phone_replace, masked)

    for marker in ("access_token", "bearer"):
        if marker in masked.lower():
            return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Copy of `payload` safe for logs.

    Callback metadata carries the phone as `{"Name": "PhoneNumber", "Value": 2547...}`
    with an int value, so those items are masked by name as well.
    """
    out: dict[str, Any] = {}
    name = str(payload.get("Name") or "").lower()
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        elif k.lower() in _PHONE_KEYS and v is not None:
            out[k] = mask_phone(v)
        elif k == "Value" and name in _PHONE_KEYS and v is not None:
            out[k] = mask_phone(v)
        else:
            out[k] = redact_value(v)
    return out

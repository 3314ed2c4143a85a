# app/mpesa/auth.py
from __future__ import annotations

import logging
import time
from threading import Lock
from typing import Optional

import requests

from app.errors import ConfigurationError, UpstreamAuthError
from app.mpesa.config import MpesaConfig, mpesa_config
from services.redaction import redact_text


TOKEN_SAFETY_BUFFER_S = 60
DEFAULT_EXPIRES_IN_S = 3599
logger = logging.getLogger("stkpay.mpesa")


class TokenProvider:
    """
    Fetches Daraja OAuth bearer tokens.

    With caching enabled the token is reused until shortly before it
    expires. `invalidate()` forces the next call to fetch a fresh one.
    """

    def __init__(self, cfg: MpesaConfig | None = None) -> None:
        self.cfg = cfg or mpesa_config()
        self._lock = Lock()
        self._token: Optional[str] = None
        self._token_exp: float = 0.0

    def get_access_token(self) -> str:
        if not self.cfg.consumer_key or not self.cfg.consumer_secret:
            raise ConfigurationError("M-Pesa consumer key/secret are not configured")

        if not self.cfg.token_cache:
            token, _ = self._fetch()
            return token

        with self._lock:
            now = time.time()
            if self._token and now < (self._token_exp - TOKEN_SAFETY_BUFFER_S):
                return self._token

            token, expires_in = self._fetch()
            self._token = token
            self._token_exp = now + max(0, expires_in)
            return token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._token_exp = 0.0

    def _fetch(self) -> tuple[str, int]:
        url = f"{self.cfg.base_url}/oauth/v1/generate?grant_type=client_credentials"
        try:
            resp = requests.get(
                url,
                auth=(self.cfg.consumer_key, self.cfg.consumer_secret),
                headers={"Accept": "application/json"},
                timeout=self.cfg.timeout_s,
            )
        except requests.RequestException as exc:
            logger.warning("mpesa oauth transport error err=%s", exc)
            raise UpstreamAuthError(f"Failed to reach M-Pesa OAuth endpoint: {exc}") from exc

        if resp.status_code != 200:
            logger.warning(
                "mpesa oauth rejected status=%s body=%s",
                resp.status_code,
                redact_text((resp.text or "")[:300]),
            )
            raise UpstreamAuthError(f"M-Pesa OAuth error: HTTP {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise UpstreamAuthError("M-Pesa OAuth returned a non-JSON body") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token or not str(token).strip():
            raise UpstreamAuthError("M-Pesa OAuth response is missing access_token")

        try:
            expires_in = int(payload.get("expires_in") or DEFAULT_EXPIRES_IN_S)
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN_S

        logger.info("mpesa oauth token acquired expires_in=%s", expires_in)
        return str(token).strip(), expires_in

# app/mpesa/config.py
from __future__ import annotations

from dataclasses import dataclass

from app.errors import ConfigurationError
from settings import settings


BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


def mpesa_env() -> str:
    return (settings.MPESA_ENV or "sandbox").strip().lower()


@dataclass(frozen=True)
class MpesaConfig:
    env: str
    base_url: str
    consumer_key: str
    consumer_secret: str
    shortcode: str
    passkey: str
    callback_url: str
    account_reference: str
    transaction_desc: str
    transaction_type: str
    country_prefix: str
    timeout_s: float
    token_cache: bool


def missing_credentials(cfg: MpesaConfig) -> list[str]:
    missing: list[str] = []
    if not cfg.consumer_key:
        missing.append("MPESA_CONSUMER_KEY")
    if not cfg.consumer_secret:
        missing.append("MPESA_CONSUMER_SECRET")
    if not cfg.shortcode:
        missing.append("MPESA_SHORTCODE")
    if not cfg.passkey:
        missing.append("MPESA_PASSKEY")
    if not cfg.callback_url:
        missing.append("MPESA_CALLBACK_URL")
    return missing


def mpesa_config() -> MpesaConfig:
    env = mpesa_env()
    base = (settings.MPESA_BASE_URL or BASE_URLS.get(env) or BASE_URLS["sandbox"]).strip()
    return MpesaConfig(
        env=env,
        base_url=base.rstrip("/"),
        consumer_key=(settings.MPESA_CONSUMER_KEY or "").strip(),
        consumer_secret=(settings.MPESA_CONSUMER_SECRET or "").strip(),
        shortcode=(settings.MPESA_SHORTCODE or "").strip(),
        passkey=(settings.MPESA_PASSKEY or "").strip(),
        callback_url=(settings.MPESA_CALLBACK_URL or "").strip(),
        account_reference=(settings.MPESA_ACCOUNT_REFERENCE or "STK Pay").strip(),
        transaction_desc=(settings.MPESA_TRANSACTION_DESC or "Payment").strip(),
        transaction_type=(settings.MPESA_TRANSACTION_TYPE or "CustomerPayBillOnline").strip(),
        country_prefix=(settings.MPESA_COUNTRY_PREFIX or "254").strip(),
        timeout_s=float(settings.MPESA_HTTP_TIMEOUT_S or 30.0),
        token_cache=bool(settings.MPESA_TOKEN_CACHE),
    )


def require_complete(cfg: MpesaConfig) -> MpesaConfig:
    missing = missing_credentials(cfg)
    if missing:
        raise ConfigurationError(f"M-Pesa is not configured: missing {', '.join(missing)}")
    return cfg

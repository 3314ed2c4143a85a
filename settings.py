# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    ENV: Literal["dev", "staging", "prod"] = "dev"
    LOG_LEVEL: str = "INFO"

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="")

    # -----------------------
    # M-Pesa Daraja
    # -----------------------
    MPESA_ENV: Literal["sandbox", "production"] = "sandbox"
    MPESA_BASE_URL: str = ""  # overrides the host picked from MPESA_ENV

    MPESA_CONSUMER_KEY: str = ""
    MPESA_CONSUMER_SECRET: str = ""
    MPESA_SHORTCODE: str = ""
    MPESA_PASSKEY: str = ""
    MPESA_CALLBACK_URL: str = ""

    MPESA_ACCOUNT_REFERENCE: str = "STK Pay"
    MPESA_TRANSACTION_DESC: str = "Payment"
    MPESA_TRANSACTION_TYPE: str = "CustomerPayBillOnline"
    MPESA_COUNTRY_PREFIX: str = "254"

    MPESA_HTTP_TIMEOUT_S: float = 30.0
    MPESA_TOKEN_CACHE: bool = True


settings = Settings()


_REQUIRED_MPESA = (
    "MPESA_CONSUMER_KEY",
    "MPESA_CONSUMER_SECRET",
    "MPESA_SHORTCODE",
    "MPESA_PASSKEY",
    "MPESA_CALLBACK_URL",
)


def validate_env_settings() -> None:
    """
    Fail fast outside dev when secrets are missing.
    Dev keeps booting so health/metrics work without credentials.
    """
    env = (settings.ENV or "dev").strip().lower()
    if env == "dev":
        return

    missing: list[str] = []
    if not (settings.DATABASE_URL or "").strip():
        missing.append("DATABASE_URL")
    for name in _REQUIRED_MPESA:
        if not (getattr(settings, name, "") or "").strip():
            missing.append(name)

    if missing:
        raise RuntimeError(f"Missing required settings for ENV={env}: {', '.join(missing)}")

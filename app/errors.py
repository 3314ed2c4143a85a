# app/errors.py
from __future__ import annotations


class PaymentError(Exception):
    """Base class for errors rendered as `{"error": message}`."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PaymentError):
    http_status = 400


class ConfigurationError(PaymentError):
    http_status = 500


class UpstreamAuthError(PaymentError):
    """Token acquisition failed. Callers may retry after a backoff."""

    http_status = 401


class UpstreamRequestError(PaymentError):
    """The provider rejected or never answered the push request."""

    http_status = 502

    def __init__(self, message: str, *, http_status: int | None = None, body: dict | None = None):
        super().__init__(message)
        self.provider_status = http_status
        self.body = body


class MalformedCallbackError(PaymentError):
    http_status = 400


class StorageError(PaymentError):
    http_status = 500

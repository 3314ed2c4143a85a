# tests/conftest.py

import json
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from threading import Lock
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.errors import StorageError
from app.mpesa.client import DarajaClient
from app.mpesa.config import MpesaConfig
from app.transactions.model import PENDING, NewTransaction, Transaction
from app.transactions.state_machine import assert_transition
from deps.mpesa import get_daraja_client
from deps.store import get_store
from main import create_app
from services import metrics


BASE_URL = "https://daraja.test"
SHORTCODE = "174379"
PASSKEY = "test-passkey"


# ---------------------------
# Fake Daraja HTTP
# ---------------------------

class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.text = text
        else:
            self.text = json.dumps(payload) if payload is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def stk_ack(checkout_id: str = "ws_CO_123", merchant_id: str = "29115-34620561-1") -> dict:
    return {
        "MerchantRequestID": merchant_id,
        "CheckoutRequestID": checkout_id,
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }


def stk_callback(
    checkout_id: str = "ws_CO_123",
    *,
    result_code: int = 0,
    receipt: str = "QWE123",
    amount: Any = 500,
    phone: int = 254712345678,
    merchant_id: str = "29115-34620561-1",
) -> dict:
    stk: Dict[str, Any] = {
        "MerchantRequestID": merchant_id,
        "CheckoutRequestID": checkout_id,
        "ResultCode": result_code,
        "ResultDesc": "The service request is processed successfully." if result_code == 0 else "Request cancelled by user",
    }
    if result_code == 0:
        stk["CallbackMetadata"] = {
            "Item": [
                {"Name": "Amount", "Value": amount},
                {"Name": "MpesaReceiptNumber", "Value": receipt},
                {"Name": "Balance"},
                {"Name": "TransactionDate", "Value": 20191219102115},
                {"Name": "PhoneNumber", "Value": phone},
            ]
        }
    return {"Body": {"stkCallback": stk}}


class FakeDaraja:
    """
    Stands in for requests.get/requests.post against the Daraja host.
    Queue responses per endpoint; every call is recorded.
    """

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.token_responses: List[Any] = []
        self.stk_responses: List[Any] = []
        self.query_responses: List[Any] = []
        self.default_token = _FakeResponse(200, {"access_token": "token-123", "expires_in": "3599"})

    def count(self, kind: str) -> int:
        return sum(1 for c in self.calls if c["kind"] == kind)

    def last(self, kind: str) -> Dict[str, Any]:
        return [c for c in self.calls if c["kind"] == kind][-1]

    @staticmethod
    def _next(queue: List[Any], default: Any):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, auth=None, headers=None, timeout=None, **kwargs):
        if "/oauth/v1/generate" not in url:
            raise AssertionError(f"unexpected GET {url}")
        self.calls.append({"kind": "token", "url": url, "auth": auth, "headers": headers})
        return self._next(self.token_responses, self.default_token)

    def post(self, url, json=None, headers=None, timeout=None, **kwargs):
        if url.endswith("/mpesa/stkpush/v1/processrequest"):
            self.calls.append({"kind": "stk", "url": url, "json": json, "headers": headers})
            return self._next(self.stk_responses, _FakeResponse(200, stk_ack()))
        if url.endswith("/mpesa/stkpushquery/v1/query"):
            self.calls.append({"kind": "query", "url": url, "json": json, "headers": headers})
            return self._next(self.query_responses, _FakeResponse(500, {"errorCode": "500.001.1001", "errorMessage": "The transaction is being processed"}))
        raise AssertionError(f"unexpected POST {url}")


# ---------------------------
# In-memory store
# ---------------------------

class InMemoryTransactionStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._rows: Dict[uuid.UUID, Transaction] = {}
        self._seq: Dict[uuid.UUID, int] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.fail_with: Optional[StorageError] = None

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def create(self, record: NewTransaction) -> Transaction:
        self._check()
        with self._lock:
            if any(t.checkout_request_id == record.checkout_request_id for t in self._rows.values()):
                raise StorageError("duplicate checkout_request_id")
            now = self._tick()
            txn = Transaction(
                id=uuid.uuid4(),
                phone_number=record.phone_number,
                amount=Decimal(record.amount),
                user_id=record.user_id,
                status=PENDING,
                checkout_request_id=record.checkout_request_id,
                merchant_request_id=record.merchant_request_id,
                receipt_number=None,
                confirmed_amount=None,
                result_code=None,
                result_desc=None,
                raw_callback=None,
                created_at=now,
                updated_at=now,
            )
            self._rows[txn.id] = txn
            self._seq[txn.id] = len(self._seq)
            return txn

    def get(self, transaction_id):
        self._check()
        return self._rows.get(transaction_id)

    def find_by_correlation_id(self, checkout_request_id):
        self._check()
        for t in self._rows.values():
            if t.checkout_request_id == checkout_request_id:
                return t
        return None

    def update_status(
        self,
        transaction_id,
        new_status,
        *,
        from_status=PENDING,
        receipt_number=None,
        confirmed_amount=None,
        result_code=None,
        result_desc=None,
        raw_callback=None,
    ) -> bool:
        self._check()
        assert_transition(from_status, new_status)
        with self._lock:
            current = self._rows.get(transaction_id)
            if current is None or current.status != from_status:
                return False
            self._rows[transaction_id] = replace(
                current,
                status=new_status,
                receipt_number=receipt_number if receipt_number is not None else current.receipt_number,
                confirmed_amount=confirmed_amount if confirmed_amount is not None else current.confirmed_amount,
                result_code=result_code if result_code is not None else current.result_code,
                result_desc=result_desc if result_desc is not None else current.result_desc,
                raw_callback=raw_callback if raw_callback is not None else current.raw_callback,
                updated_at=self._tick(),
            )
            return True

    def list_recent(self, limit=50, *, user_id=None):
        self._check()
        rows = [t for t in self._rows.values() if user_id is None or t.user_id == user_id]
        rows.sort(key=lambda t: (t.created_at, self._seq[t.id]), reverse=True)
        return rows[:limit]

    def all(self) -> List[Transaction]:
        return list(self._rows.values())


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def mpesa_cfg() -> MpesaConfig:
    return MpesaConfig(
        env="sandbox",
        base_url=BASE_URL,
        consumer_key="consumer-key",
        consumer_secret="consumer-secret",
        shortcode=SHORTCODE,
        passkey=PASSKEY,
        callback_url="https://example.test/v1/mpesa/callback",
        account_reference="STK Pay",
        transaction_desc="Payment",
        transaction_type="CustomerPayBillOnline",
        country_prefix="254",
        timeout_s=5.0,
        token_cache=True,
    )


@pytest.fixture()
def fake_daraja(monkeypatch) -> FakeDaraja:
    fake = FakeDaraja()
    monkeypatch.setattr("app.mpesa.auth.requests.get", fake.get)
    monkeypatch.setattr("app.mpesa.client.requests.post", fake.post)
    return fake


@pytest.fixture()
def store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture()
def daraja(mpesa_cfg: MpesaConfig, fake_daraja: FakeDaraja) -> DarajaClient:
    return DarajaClient(mpesa_cfg)


@pytest.fixture()
def client(store: InMemoryTransactionStore, daraja: DarajaClient) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_daraja_client] = lambda: daraja
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)

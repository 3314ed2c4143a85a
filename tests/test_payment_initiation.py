from __future__ import annotations

from decimal import Decimal

import pytest

from app.callbacks.reconciler import reconcile
from app.errors import StorageError, UpstreamAuthError, UpstreamRequestError, ValidationError
from app.payments.service import initiate_payment, parse_amount
from services import metrics
from tests.conftest import _FakeResponse, stk_ack, stk_callback


def test_scenario_pending_transaction_created(store, daraja, fake_daraja):
    result = initiate_payment(store, daraja, phone_number="0712345678", amount=500)

    assert result.checkout_request_id == "ws_CO_123"
    txn = store.get(result.transaction_id)
    assert txn.status == "pending"
    assert txn.checkout_request_id == "ws_CO_123"
    assert txn.merchant_request_id == "29115-34620561-1"
    assert txn.amount == Decimal("500")
    assert txn.phone_number == "254712345678"
    assert txn.user_id is None
    assert fake_daraja.last("stk")["json"]["PhoneNumber"] == "254712345678"
    assert metrics.counter_value("stk_push_requests_total", {"result": "accepted"}) == 1


def test_user_id_recorded(store, daraja, fake_daraja):
    result = initiate_payment(store, daraja, phone_number="0712345678", amount="10", user_id="user-1")
    assert store.get(result.transaction_id).user_id == "user-1"


@pytest.mark.parametrize(
    "amount",
    [-5, 0, "0", "-1", "abc", "", None, "NaN", "Infinity", 0.2, True, "1e30", 10**12, "10000000000", "9999999999.6"],
)
def test_invalid_amount_rejected_before_network(store, daraja, fake_daraja, amount):
    with pytest.raises(ValidationError):
        initiate_payment(store, daraja, phone_number="0712345678", amount=amount)
    assert fake_daraja.calls == []
    assert store.all() == []


@pytest.mark.parametrize("phone", ["", "   ", None])
def test_missing_phone_rejected_before_network(store, daraja, fake_daraja, phone):
    with pytest.raises(ValidationError):
        initiate_payment(store, daraja, phone_number=phone, amount=100)
    assert fake_daraja.calls == []


def test_provider_rejection_leaves_no_row(store, daraja, fake_daraja):
    fake_daraja.stk_responses.append(
        _FakeResponse(400, {"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid PhoneNumber"})
    )
    with pytest.raises(UpstreamRequestError):
        initiate_payment(store, daraja, phone_number="0712345678", amount=100)
    assert store.all() == []
    assert metrics.counter_value("stk_push_requests_total", {"result": "rejected"}) == 1


def test_auth_failure_leaves_no_row(store, daraja, fake_daraja):
    fake_daraja.token_responses.append(_FakeResponse(401, {"errorMessage": "Invalid credentials"}))
    with pytest.raises(UpstreamAuthError):
        initiate_payment(store, daraja, phone_number="0712345678", amount=100)
    assert store.all() == []
    assert fake_daraja.count("stk") == 0


def test_storage_failure_after_acceptance_is_logged(store, daraja, fake_daraja, caplog):
    store.fail_with = StorageError("db down")
    with pytest.raises(StorageError):
        initiate_payment(store, daraja, phone_number="0712345678", amount=100)
    assert "reconciliation_gap" in caplog.text
    assert "ws_CO_123" in caplog.text


def test_not_idempotent_two_submissions_two_rows(store, daraja, fake_daraja):
    fake_daraja.stk_responses.append(_FakeResponse(200, stk_ack("ws_CO_1", "m-1")))
    fake_daraja.stk_responses.append(_FakeResponse(200, stk_ack("ws_CO_2", "m-2")))

    first = initiate_payment(store, daraja, phone_number="0712345678", amount=100)
    second = initiate_payment(store, daraja, phone_number="0712345678", amount=100)

    assert first.transaction_id != second.transaction_id
    assert fake_daraja.count("stk") == 2
    assert len(store.all()) == 2


def test_parse_amount_returns_whole_shillings():
    assert parse_amount("500") == Decimal("500")
    assert parse_amount(" 12.50 ") == Decimal("13")
    assert parse_amount(10.4) == Decimal("10")
    assert parse_amount(1) == Decimal("1")
    assert parse_amount("9999999999") == Decimal("9999999999")


@pytest.mark.parametrize("amount", [10.4, "10.5", "99.99"])
def test_stored_amount_matches_charged_amount(store, daraja, fake_daraja, amount):
    result = initiate_payment(store, daraja, phone_number="0712345678", amount=amount)
    charged = fake_daraja.last("stk")["json"]["Amount"]
    assert store.get(result.transaction_id).amount == Decimal(charged)


def test_rounded_amount_callback_is_not_a_mismatch(store, daraja, fake_daraja, caplog):
    initiate_payment(store, daraja, phone_number="0712345678", amount=10.4)
    reconcile(store, stk_callback(amount=10))
    assert "callback_amount_mismatch" not in caplog.text

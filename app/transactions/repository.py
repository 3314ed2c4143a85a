# app/transactions/repository.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Protocol
from uuid import UUID

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from app.errors import StorageError
from app.transactions.model import PENDING, NewTransaction, Transaction
from app.transactions.state_machine import assert_transition
from db import get_conn


logger = logging.getLogger("stkpay.store")

_COLUMNS = """
  id, phone_number, amount, user_id, status,
  checkout_request_id, merchant_request_id, receipt_number,
  confirmed_amount, result_code, result_desc, raw_callback,
  created_at, updated_at
"""


class TransactionStore(Protocol):
    def create(self, record: NewTransaction) -> Transaction: ...
    def get(self, transaction_id: UUID) -> Optional[Transaction]: ...
    def find_by_correlation_id(self, checkout_request_id: str) -> Optional[Transaction]: ...
    def update_status(
        self,
        transaction_id: UUID,
        new_status: str,
        *,
        from_status: str = PENDING,
        receipt_number: Optional[str] = None,
        confirmed_amount: Optional[Decimal] = None,
        result_code: Optional[str] = None,
        result_desc: Optional[str] = None,
        raw_callback: Optional[dict[str, Any]] = None,
    ) -> bool: ...
    def list_recent(self, limit: int = 50, *, user_id: Optional[str] = None) -> list[Transaction]: ...


def _row_to_transaction(row: dict[str, Any]) -> Transaction:
    return Transaction(
        id=row["id"],
        phone_number=row["phone_number"],
        amount=row["amount"],
        user_id=row["user_id"],
        status=row["status"],
        checkout_request_id=row["checkout_request_id"],
        merchant_request_id=row["merchant_request_id"],
        receipt_number=row["receipt_number"],
        confirmed_amount=row["confirmed_amount"],
        result_code=row["result_code"],
        result_desc=row["result_desc"],
        raw_callback=row["raw_callback"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresTransactionStore:
    """
    `transactions` table access. Each method runs in its own pooled
    connection; `get_conn` commits on success and rolls back on error.
    """

    def _fetchone(self, sql: str, params: tuple) -> Optional[dict[str, Any]]:
        try:
            with get_conn() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return cur.fetchone()
        except psycopg2.Error as exc:
            logger.error("transactions query failed err=%s", exc)
            raise StorageError("Transaction storage is unavailable") from exc

    def _fetchall(self, sql: str, params: tuple) -> list[dict[str, Any]]:
        try:
            with get_conn() as conn:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(sql, params)
                    return list(cur.fetchall())
        except psycopg2.Error as exc:
            logger.error("transactions query failed err=%s", exc)
            raise StorageError("Transaction storage is unavailable") from exc

    def create(self, record: NewTransaction) -> Transaction:
        row = self._fetchone(
            f"""
            INSERT INTO transactions (
              phone_number, amount, user_id, status,
              checkout_request_id, merchant_request_id
            )
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
            """,
            (
                record.phone_number,
                record.amount,
                record.user_id,
                PENDING,
                record.checkout_request_id,
                record.merchant_request_id,
            ),
        )
        if row is None:
            raise StorageError("Insert returned no row")
        return _row_to_transaction(row)

    def get(self, transaction_id: UUID) -> Optional[Transaction]:
        row = self._fetchone(
            f"SELECT {_COLUMNS} FROM transactions WHERE id = %s::uuid",
            (str(transaction_id),),
        )
        return _row_to_transaction(row) if row else None

    def find_by_correlation_id(self, checkout_request_id: str) -> Optional[Transaction]:
        row = self._fetchone(
            f"SELECT {_COLUMNS} FROM transactions WHERE checkout_request_id = %s",
            (checkout_request_id,),
        )
        return _row_to_transaction(row) if row else None

    def update_status(
        self,
        transaction_id: UUID,
        new_status: str,
        *,
        from_status: str = PENDING,
        receipt_number: Optional[str] = None,
        confirmed_amount: Optional[Decimal] = None,
        result_code: Optional[str] = None,
        result_desc: Optional[str] = None,
        raw_callback: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Conditional transition: only moves the row if it is still in
        `from_status`. Returns False when another writer got there first.
        """
        assert_transition(from_status, new_status)
        row = self._fetchone(
            """
            UPDATE transactions
            SET
              status = %s,
              receipt_number = COALESCE(%s, receipt_number),
              confirmed_amount = COALESCE(%s, confirmed_amount),
              result_code = COALESCE(%s, result_code),
              result_desc = COALESCE(%s, result_desc),
              raw_callback = COALESCE(%s::jsonb, raw_callback),
              updated_at = now()
            WHERE id = %s::uuid
              AND status = %s
            RETURNING id
            """,
            (
                new_status,
                receipt_number,
                confirmed_amount,
                result_code,
                result_desc,
                Json(raw_callback) if raw_callback is not None else None,
                str(transaction_id),
                from_status,
            ),
        )
        return row is not None

    def list_recent(self, limit: int = 50, *, user_id: Optional[str] = None) -> list[Transaction]:
        if user_id:
            rows = self._fetchall(
                f"""
                SELECT {_COLUMNS} FROM transactions
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (user_id, int(limit)),
            )
        else:
            rows = self._fetchall(
                f"SELECT {_COLUMNS} FROM transactions ORDER BY created_at DESC LIMIT %s",
                (int(limit),),
            )
        return [_row_to_transaction(r) for r in rows]

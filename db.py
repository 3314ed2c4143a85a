# db.py
from __future__ import annotations

from contextlib import contextmanager

import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool

from settings import settings

_pool: SimpleConnectionPool | None = None

# run on every checkout
_SESSION_SQL = (
    "SET statement_timeout = '5000ms';",
    "SET application_name = 'stkpay_api';",
)


def init_pool() -> SimpleConnectionPool:
    """Create the transactions pool on first use."""
    global _pool
    if _pool is None:
        psycopg2.extras.register_uuid()
        _pool = SimpleConnectionPool(
            minconn=1,
            maxconn=10,
            dsn=settings.DATABASE_URL,
            connect_timeout=5,
        )
    return _pool


def close_pool() -> None:
    """Close every pooled connection. Called on app shutdown."""
    global _pool
    if _pool is not None:
        _pool.closeall()
        _pool = None


@contextmanager
def get_conn():
    """
    Pooled connection for one unit of work: commits when the block
    finishes, rolls back if it raises.
    """
    pool = init_pool()
    conn = pool.getconn()
    try:
        with conn.cursor() as cur:
            for stmt in _SESSION_SQL:
                cur.execute(stmt)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)

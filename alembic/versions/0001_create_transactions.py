"""create transactions table

Revision ID: 0001_create_transactions
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from __future__ import annotations

from alembic import op


revision = "0001_create_transactions"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id uuid DEFAULT gen_random_uuid() PRIMARY KEY,
            phone_number varchar(20) NOT NULL,
            amount numeric(12, 2) NOT NULL CHECK (amount > 0),
            user_id text,
            status varchar(16) NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'completed', 'failed')),
            checkout_request_id varchar(128) NOT NULL,
            merchant_request_id varchar(128),
            receipt_number varchar(64),
            confirmed_amount numeric(12, 2),
            result_code varchar(16),
            result_desc text,
            raw_callback jsonb,
            created_at timestamp with time zone DEFAULT now() NOT NULL,
            updated_at timestamp with time zone DEFAULT now() NOT NULL
        );
        """
    )
    op.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_transactions_checkout_request_id ON transactions USING btree (checkout_request_id);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_transactions_merchant_request_id ON transactions USING btree (merchant_request_id);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_transactions_created_at ON transactions USING btree (created_at DESC);"
    )
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_transactions_user_created ON transactions USING btree (user_id, created_at DESC);"
    )
    # terminal rows never change status again
    op.execute(
        """
        CREATE OR REPLACE FUNCTION transactions_guard_terminal() RETURNS trigger AS $$
        BEGIN
            IF OLD.status <> 'pending' AND NEW.status <> OLD.status THEN
                RAISE EXCEPTION 'TRANSACTION_TERMINAL: % -> %', OLD.status, NEW.status;
            END IF;
            IF NEW.checkout_request_id <> OLD.checkout_request_id THEN
                RAISE EXCEPTION 'CHECKOUT_REQUEST_ID_IMMUTABLE';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_guard_terminal ON transactions;")
    op.execute(
        """
        CREATE TRIGGER trg_transactions_guard_terminal
        BEFORE UPDATE ON transactions
        FOR EACH ROW EXECUTE FUNCTION transactions_guard_terminal();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_guard_terminal ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS transactions_guard_terminal();")
    op.execute("DROP TABLE IF EXISTS transactions;")

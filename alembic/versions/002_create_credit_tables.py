"""002: create user_credits and credit_transactions tables

Revision ID: 002
Revises: 001
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE user_credits (
            id                  BIGSERIAL       PRIMARY KEY,
            user_id             BIGINT          NOT NULL,
            credit_type         VARCHAR(50)     NOT NULL,
            balance             INT             NOT NULL DEFAULT 0,
            max_balance         INT,
            rollover_enabled    BOOLEAN         NOT NULL DEFAULT FALSE,
            expires_at          TIMESTAMPTZ,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_user_credits_user_type    UNIQUE (user_id, credit_type),
            CONSTRAINT ck_user_credits_balance_gte_0 CHECK (balance >= 0),
            CONSTRAINT ck_user_credits_max_balance  CHECK (max_balance IS NULL OR max_balance >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_user_credits_updated_at
            BEFORE UPDATE ON user_credits
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    # Append-only: no updated_at, no trigger
    op.execute("""
        CREATE TABLE credit_transactions (
            id              BIGSERIAL       PRIMARY KEY,
            user_id         BIGINT          NOT NULL,
            credit_type     VARCHAR(50)     NOT NULL,
            amount          INT             NOT NULL,
            balance_after   INT             NOT NULL,
            source          VARCHAR(50)     NOT NULL,
            source_id       BIGINT,
            description     TEXT,
            metadata        JSONB,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_credit_transactions_balance_after CHECK (balance_after >= 0),
            CONSTRAINT ck_credit_transactions_source CHECK (
                source IN (
                    'monthly_reset', 'monthly_allocation', 'upgrade_adjustment',
                    'promo_code', 'reservation', 'reservation_cancellation',
                    'staff_grant', 'staff_deduction'
                )
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_credit_transactions_user_type
        ON credit_transactions (user_id, credit_type, created_at DESC);
    """)
    op.execute("""
        CREATE INDEX idx_credit_transactions_source
        ON credit_transactions (source, source_id);
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS credit_transactions;")
    op.execute("DROP TRIGGER IF EXISTS trg_user_credits_updated_at ON user_credits;")
    op.execute("DROP TABLE IF EXISTS user_credits;")

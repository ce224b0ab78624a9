"""003: create promo_codes and promo_code_redemptions tables

Revision ID: 003
Revises: 002
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE promo_codes (
            id              BIGSERIAL       PRIMARY KEY,
            code            VARCHAR(64)     NOT NULL,
            credit_type     VARCHAR(50)     NOT NULL,
            credit_amount   INT             NOT NULL,
            max_uses        INT,
            uses_count      INT             NOT NULL DEFAULT 0,
            is_active       BOOLEAN         NOT NULL DEFAULT TRUE,
            expires_at      TIMESTAMPTZ,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_promo_codes_code          UNIQUE (code),
            CONSTRAINT ck_promo_codes_amount        CHECK (credit_amount > 0),
            CONSTRAINT ck_promo_codes_max_uses      CHECK (max_uses IS NULL OR max_uses > 0),
            CONSTRAINT ck_promo_codes_uses_count    CHECK (uses_count >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_promo_codes_updated_at
            BEFORE UPDATE ON promo_codes
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE promo_code_redemptions (
            id                      BIGSERIAL       PRIMARY KEY,
            promo_code_id           BIGINT          NOT NULL REFERENCES promo_codes (id),
            user_id                 BIGINT          NOT NULL,
            credit_transaction_id   BIGINT          REFERENCES credit_transactions (id),
            redeemed_at             TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_promo_code_redemptions_code_user UNIQUE (promo_code_id, user_id)
        );
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS promo_code_redemptions;")
    op.execute("DROP TRIGGER IF EXISTS trg_promo_codes_updated_at ON promo_codes;")
    op.execute("DROP TABLE IF EXISTS promo_codes;")

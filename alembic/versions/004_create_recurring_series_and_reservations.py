"""004: create recurring_series and reservations tables

Revision ID: 004
Revises: 003
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE recurring_series (
            id                  BIGSERIAL       PRIMARY KEY,
            user_id             BIGINT          NOT NULL,
            recurable_type      VARCHAR(50)     NOT NULL DEFAULT 'rehearsal_reservation',
            recurrence_rule     VARCHAR(255)    NOT NULL,
            start_time          TIME            NOT NULL,
            end_time            TIME            NOT NULL,
            series_start_date   DATE            NOT NULL,
            series_end_date     DATE,
            max_advance_days    INT             NOT NULL DEFAULT 90,
            status              VARCHAR(20)     NOT NULL DEFAULT 'active',
            notes               TEXT,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_recurring_series_status   CHECK (status IN ('active', 'cancelled', 'completed')),
            CONSTRAINT ck_recurring_series_times    CHECK (end_time > start_time),
            CONSTRAINT ck_recurring_series_dates    CHECK (
                series_end_date IS NULL OR series_end_date >= series_start_date
            ),
            CONSTRAINT ck_recurring_series_advance  CHECK (max_advance_days > 0)
        );
    """)
    op.execute("""
        CREATE INDEX idx_recurring_series_active
        ON recurring_series (id)
        WHERE status = 'active';
    """)
    op.execute("""
        CREATE TRIGGER trg_recurring_series_updated_at
            BEFORE UPDATE ON recurring_series
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE reservations (
            id                  BIGSERIAL       PRIMARY KEY,
            user_id             BIGINT          NOT NULL,
            recurring_series_id BIGINT          REFERENCES recurring_series (id),
            instance_date       DATE,
            reserved_at         TIMESTAMPTZ     NOT NULL,
            reserved_until      TIMESTAMPTZ     NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            cancellation_reason VARCHAR(500),
            cost_cents          INT             NOT NULL DEFAULT 0,
            free_blocks_used    INT             NOT NULL DEFAULT 0,
            payment_status      VARCHAR(20)     NOT NULL DEFAULT 'unpaid',
            payment_method      VARCHAR(50),
            paid_at             TIMESTAMPTZ,
            notes               TEXT,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_reservations_window       CHECK (reserved_until > reserved_at),
            CONSTRAINT ck_reservations_status       CHECK (
                status IN ('pending', 'confirmed', 'cancelled', 'completed')
            ),
            CONSTRAINT ck_reservations_payment      CHECK (
                payment_status IN ('unpaid', 'paid', 'comped', 'refunded', 'not_applicable')
            ),
            CONSTRAINT ck_reservations_cost_gte_0   CHECK (cost_cents >= 0),
            CONSTRAINT ck_reservations_blocks_gte_0 CHECK (free_blocks_used >= 0),
            CONSTRAINT ck_reservations_instance     CHECK (
                (recurring_series_id IS NULL) = (instance_date IS NULL)
            ),
            CONSTRAINT ex_reservations_no_overlap EXCLUDE USING gist (
                tstzrange(reserved_at, reserved_until, '[)') WITH &&
            ) WHERE (status IN ('pending', 'confirmed'))
        );
    """)
    # One instance per (series, date); cancelled placeholders keep the date taken
    op.execute("""
        CREATE UNIQUE INDEX uq_reservations_series_instance
        ON reservations (recurring_series_id, instance_date)
        WHERE recurring_series_id IS NOT NULL;
    """)
    op.execute("CREATE INDEX idx_reservations_user ON reservations (user_id, reserved_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_reservations_updated_at
            BEFORE UPDATE ON reservations
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_reservations_updated_at ON reservations;")
    op.execute("DROP TABLE IF EXISTS reservations;")
    op.execute("DROP TRIGGER IF EXISTS trg_recurring_series_updated_at ON recurring_series;")
    op.execute("DROP TABLE IF EXISTS recurring_series;")

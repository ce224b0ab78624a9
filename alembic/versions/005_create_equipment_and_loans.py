"""005: create equipment and equipment_loans tables

Revision ID: 005
Revises: 004
Create Date: 2026-10-12
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE equipment (
            id              BIGSERIAL       PRIMARY KEY,
            name            VARCHAR(200)    NOT NULL,
            type            VARCHAR(50)     NOT NULL,
            status          VARCHAR(20)     NOT NULL DEFAULT 'available',
            condition       VARCHAR(20)     NOT NULL DEFAULT 'good',
            loanable        BOOLEAN         NOT NULL DEFAULT TRUE,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_equipment_status      CHECK (
                status IN ('available', 'checked_out', 'maintenance', 'retired')
            ),
            CONSTRAINT ck_equipment_condition   CHECK (
                condition IN ('excellent', 'good', 'fair', 'poor', 'needs_repair')
            )
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_equipment_updated_at
            BEFORE UPDATE ON equipment
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)

    op.execute("""
        CREATE TABLE equipment_loans (
            id                      BIGSERIAL       PRIMARY KEY,
            equipment_id            BIGINT          NOT NULL REFERENCES equipment (id),
            borrower_id             BIGINT          NOT NULL,
            state                   VARCHAR(30)     NOT NULL DEFAULT 'requested',
            reserved_from           TIMESTAMPTZ     NOT NULL,
            due_at                  TIMESTAMPTZ     NOT NULL,
            checked_out_at          TIMESTAMPTZ,
            returned_at             TIMESTAMPTZ,
            condition_out           VARCHAR(20),
            condition_in            VARCHAR(20),
            damage_notes            TEXT,
            security_deposit_cents  INT             NOT NULL DEFAULT 0,
            rental_fee_cents        INT             NOT NULL DEFAULT 0,
            notes                   TEXT,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_equipment_loans_state CHECK (
                state IN (
                    'requested', 'staff_preparing', 'ready_for_pickup', 'checked_out',
                    'overdue', 'dropoff_scheduled', 'staff_processing_return',
                    'damage_reported', 'returned', 'cancelled'
                )
            ),
            CONSTRAINT ck_equipment_loans_window    CHECK (due_at > reserved_from),
            CONSTRAINT ck_equipment_loans_deposit   CHECK (security_deposit_cents >= 0),
            CONSTRAINT ck_equipment_loans_fee       CHECK (rental_fee_cents >= 0)
        );
    """)
    # At most one active loan per item
    op.execute("""
        CREATE UNIQUE INDEX uq_equipment_loans_active
        ON equipment_loans (equipment_id)
        WHERE state NOT IN ('returned', 'cancelled');
    """)
    op.execute("CREATE INDEX idx_equipment_loans_borrower ON equipment_loans (borrower_id, id DESC);")
    op.execute("""
        CREATE INDEX idx_equipment_loans_due
        ON equipment_loans (due_at)
        WHERE state = 'checked_out';
    """)
    op.execute("""
        CREATE TRIGGER trg_equipment_loans_updated_at
            BEFORE UPDATE ON equipment_loans
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_equipment_loans_updated_at ON equipment_loans;")
    op.execute("DROP TABLE IF EXISTS equipment_loans;")
    op.execute("DROP TRIGGER IF EXISTS trg_equipment_updated_at ON equipment;")
    op.execute("DROP TABLE IF EXISTS equipment;")

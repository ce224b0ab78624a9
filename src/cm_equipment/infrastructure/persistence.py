"""EquipmentRepository: raw SQL implementation of EquipmentRepositoryProtocol.

The one-active-loan-per-item rule is enforced twice: the service checks it
under a row lock on the equipment, and the partial unique index
uq_equipment_loans_active makes a duplicate insert a no-op (reported as None).

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.errors import InternalError
from src.cm_equipment.domain.models import Equipment, EquipmentLoan, NewLoan
from src.cm_equipment.domain.states import LoanState

_TERMINAL_STATES_SQL = f"('{LoanState.RETURNED.value}', '{LoanState.CANCELLED.value}')"

# ---------------------------------------------------------------------------
# SQL: equipment
# ---------------------------------------------------------------------------

_EQUIPMENT_COLUMNS = "id, name, type, status, condition, loanable"

_GET_EQUIPMENT_SQL = text(f"SELECT {_EQUIPMENT_COLUMNS} FROM equipment WHERE id = :id")

_LOCK_EQUIPMENT_SQL = text(
    f"SELECT {_EQUIPMENT_COLUMNS} FROM equipment WHERE id = :id FOR UPDATE"
)

_UPDATE_EQUIPMENT_SQL = text(f"""
    UPDATE equipment
    SET status = :status,
        condition = COALESCE(:condition, condition),
        updated_at = NOW()
    WHERE id = :id
    RETURNING {_EQUIPMENT_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: equipment_loans
# ---------------------------------------------------------------------------

_LOAN_COLUMNS = """
    id, equipment_id, borrower_id, state, reserved_from, due_at,
    checked_out_at, returned_at, condition_out, condition_in, damage_notes,
    security_deposit_cents, rental_fee_cents, notes, created_at, updated_at
"""

_FIND_ACTIVE_LOAN_SQL = text(f"""
    SELECT {_LOAN_COLUMNS}
    FROM equipment_loans
    WHERE equipment_id = :equipment_id AND state NOT IN {_TERMINAL_STATES_SQL}
""")

_INSERT_LOAN_SQL = text(f"""
    INSERT INTO equipment_loans
        (equipment_id, borrower_id, state, reserved_from, due_at, checked_out_at,
         condition_out, security_deposit_cents, rental_fee_cents, notes)
    VALUES
        (:equipment_id, :borrower_id, :state, :reserved_from, :due_at, :checked_out_at,
         :condition_out, :security_deposit_cents, :rental_fee_cents, :notes)
    ON CONFLICT (equipment_id) WHERE state NOT IN {_TERMINAL_STATES_SQL}
        DO NOTHING
    RETURNING {_LOAN_COLUMNS}
""")

_GET_LOAN_SQL = text(f"SELECT {_LOAN_COLUMNS} FROM equipment_loans WHERE id = :id")

_LOCK_LOAN_SQL = text(f"SELECT {_LOAN_COLUMNS} FROM equipment_loans WHERE id = :id FOR UPDATE")

_UPDATE_LOAN_SQL = text(f"""
    UPDATE equipment_loans
    SET state = :state,
        checked_out_at = COALESCE(:checked_out_at, checked_out_at),
        returned_at = COALESCE(:returned_at, returned_at),
        due_at = COALESCE(:due_at, due_at),
        condition_out = COALESCE(:condition_out, condition_out),
        condition_in = COALESCE(:condition_in, condition_in),
        damage_notes = COALESCE(:damage_notes, damage_notes),
        updated_at = NOW()
    WHERE id = :id
    RETURNING {_LOAN_COLUMNS}
""")

_LIST_BORROWER_LOANS_SQL = text(f"""
    SELECT {_LOAN_COLUMNS}
    FROM equipment_loans
    WHERE borrower_id = :borrower_id
      AND (NOT :active_only OR state NOT IN {_TERMINAL_STATES_SQL})
    ORDER BY id DESC
""")

_LIST_EQUIPMENT_LOANS_SQL = text(f"""
    SELECT {_LOAN_COLUMNS}
    FROM equipment_loans
    WHERE equipment_id = :equipment_id
    ORDER BY id DESC
    LIMIT :limit
""")

_LIST_PAST_DUE_SQL = text(f"""
    SELECT {_LOAN_COLUMNS}
    FROM equipment_loans
    WHERE state = '{LoanState.CHECKED_OUT.value}' AND due_at < :now
    ORDER BY due_at
""")


def _row_to_equipment(row: object) -> Equipment:
    return Equipment(
        id=row.id,  # type: ignore[attr-defined]
        name=row.name,  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        condition=row.condition,  # type: ignore[attr-defined]
        loanable=row.loanable,  # type: ignore[attr-defined]
    )


def _row_to_loan(row: object) -> EquipmentLoan:
    return EquipmentLoan(
        id=row.id,  # type: ignore[attr-defined]
        equipment_id=row.equipment_id,  # type: ignore[attr-defined]
        borrower_id=row.borrower_id,  # type: ignore[attr-defined]
        state=row.state,  # type: ignore[attr-defined]
        reserved_from=row.reserved_from,  # type: ignore[attr-defined]
        due_at=row.due_at,  # type: ignore[attr-defined]
        checked_out_at=row.checked_out_at,  # type: ignore[attr-defined]
        returned_at=row.returned_at,  # type: ignore[attr-defined]
        condition_out=row.condition_out,  # type: ignore[attr-defined]
        condition_in=row.condition_in,  # type: ignore[attr-defined]
        damage_notes=row.damage_notes,  # type: ignore[attr-defined]
        security_deposit_cents=row.security_deposit_cents,  # type: ignore[attr-defined]
        rental_fee_cents=row.rental_fee_cents,  # type: ignore[attr-defined]
        notes=row.notes,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class EquipmentRepository:
    """Concrete repository for equipment and equipment_loans."""

    async def get_equipment(self, db: AsyncSession, equipment_id: int) -> Equipment | None:
        row = (await db.execute(_GET_EQUIPMENT_SQL, {"id": equipment_id})).fetchone()
        return _row_to_equipment(row) if row else None

    async def lock_equipment(self, db: AsyncSession, equipment_id: int) -> Equipment | None:
        row = (await db.execute(_LOCK_EQUIPMENT_SQL, {"id": equipment_id})).fetchone()
        return _row_to_equipment(row) if row else None

    async def update_equipment(
        self,
        db: AsyncSession,
        equipment_id: int,
        status: str,
        condition: str | None = None,
    ) -> Equipment:
        result = await db.execute(
            _UPDATE_EQUIPMENT_SQL,
            {"id": equipment_id, "status": status, "condition": condition},
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Equipment disappeared: {equipment_id}")
        return _row_to_equipment(row)

    async def find_active_loan(
        self, db: AsyncSession, equipment_id: int
    ) -> EquipmentLoan | None:
        result = await db.execute(_FIND_ACTIVE_LOAN_SQL, {"equipment_id": equipment_id})
        row = result.fetchone()
        return _row_to_loan(row) if row else None

    async def insert_loan(self, db: AsyncSession, loan: NewLoan) -> EquipmentLoan | None:
        result = await db.execute(
            _INSERT_LOAN_SQL,
            {
                "equipment_id": loan.equipment_id,
                "borrower_id": loan.borrower_id,
                "state": loan.state,
                "reserved_from": loan.reserved_from,
                "due_at": loan.due_at,
                "checked_out_at": loan.checked_out_at,
                "condition_out": loan.condition_out,
                "security_deposit_cents": loan.security_deposit_cents,
                "rental_fee_cents": loan.rental_fee_cents,
                "notes": loan.notes,
            },
        )
        row = result.fetchone()
        return _row_to_loan(row) if row else None

    async def get_loan(self, db: AsyncSession, loan_id: int) -> EquipmentLoan | None:
        row = (await db.execute(_GET_LOAN_SQL, {"id": loan_id})).fetchone()
        return _row_to_loan(row) if row else None

    async def lock_loan(self, db: AsyncSession, loan_id: int) -> EquipmentLoan | None:
        row = (await db.execute(_LOCK_LOAN_SQL, {"id": loan_id})).fetchone()
        return _row_to_loan(row) if row else None

    async def update_loan(
        self,
        db: AsyncSession,
        loan_id: int,
        state: str,
        checked_out_at: datetime | None = None,
        returned_at: datetime | None = None,
        due_at: datetime | None = None,
        condition_out: str | None = None,
        condition_in: str | None = None,
        damage_notes: str | None = None,
    ) -> EquipmentLoan:
        result = await db.execute(
            _UPDATE_LOAN_SQL,
            {
                "id": loan_id,
                "state": state,
                "checked_out_at": checked_out_at,
                "returned_at": returned_at,
                "due_at": due_at,
                "condition_out": condition_out,
                "condition_in": condition_in,
                "damage_notes": damage_notes,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Equipment loan disappeared: {loan_id}")
        return _row_to_loan(row)

    async def list_loans_for_borrower(
        self, db: AsyncSession, borrower_id: int, active_only: bool
    ) -> list[EquipmentLoan]:
        result = await db.execute(
            _LIST_BORROWER_LOANS_SQL,
            {"borrower_id": borrower_id, "active_only": active_only},
        )
        return [_row_to_loan(row) for row in result.fetchall()]

    async def list_loans_for_equipment(
        self, db: AsyncSession, equipment_id: int, limit: int
    ) -> list[EquipmentLoan]:
        result = await db.execute(
            _LIST_EQUIPMENT_LOANS_SQL, {"equipment_id": equipment_id, "limit": limit}
        )
        return [_row_to_loan(row) for row in result.fetchall()]

    async def list_past_due(self, db: AsyncSession, now: datetime) -> list[EquipmentLoan]:
        result = await db.execute(_LIST_PAST_DUE_SQL, {"now": now})
        return [_row_to_loan(row) for row in result.fetchall()]

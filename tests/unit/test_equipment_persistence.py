# tests/unit/test_equipment_persistence.py
"""Unit tests for EquipmentRepository using a MagicMock AsyncSession."""
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cm_common.errors import InternalError
from src.cm_equipment.domain.models import NewLoan
from src.cm_equipment.infrastructure.persistence import EquipmentRepository

NOW = datetime(2025, 1, 15, 18, 0, tzinfo=UTC)


def _loan_row(**kwargs):
    row = MagicMock()
    row.id = kwargs.get("id", 5)
    row.equipment_id = kwargs.get("equipment_id", 1)
    row.borrower_id = 1
    row.state = kwargs.get("state", "checked_out")
    row.reserved_from = NOW
    row.due_at = NOW
    row.checked_out_at = NOW
    row.returned_at = None
    row.condition_out = "good"
    row.condition_in = None
    row.damage_notes = kwargs.get("damage_notes")
    row.security_deposit_cents = 5000
    row.rental_fee_cents = 1500
    row.notes = None
    row.created_at = NOW
    row.updated_at = NOW
    return row


def _equipment_row(**kwargs):
    row = MagicMock()
    row.id = kwargs.get("id", 1)
    row.name = "Bass amp"
    row.type = "amplifier"
    row.status = kwargs.get("status", "available")
    row.condition = kwargs.get("condition", "good")
    row.loanable = True
    return row


def _result(one=None, many=None):
    result_mock = MagicMock()
    result_mock.fetchone.return_value = one
    result_mock.fetchall.return_value = many or []
    return result_mock


@pytest.fixture
def db():
    return MagicMock()


class TestEquipment:
    async def test_lock_equipment(self, db):
        db.execute = AsyncMock(return_value=_result(_equipment_row(status="maintenance")))

        item = await EquipmentRepository().lock_equipment(db, 1)

        assert item is not None
        assert item.status == "maintenance"
        assert not item.is_checkout_ready

    async def test_update_keeps_condition_when_not_given(self, db):
        db.execute = AsyncMock(return_value=_result(_equipment_row(status="retired")))

        item = await EquipmentRepository().update_equipment(db, 1, "retired")

        assert item.status == "retired"
        assert db.execute.call_args[0][1]["condition"] is None


class TestEquipmentLoans:
    async def test_insert_conflict_returns_none(self, db):
        db.execute = AsyncMock(return_value=_result(None))
        new = NewLoan(
            equipment_id=1, borrower_id=1, state="requested", reserved_from=NOW, due_at=NOW
        )

        assert await EquipmentRepository().insert_loan(db, new) is None

    async def test_insert_returns_loan(self, db):
        db.execute = AsyncMock(return_value=_result(_loan_row(state="checked_out")))
        new = NewLoan(
            equipment_id=1,
            borrower_id=1,
            state="checked_out",
            reserved_from=NOW,
            due_at=NOW,
            checked_out_at=NOW,
            security_deposit_cents=5000,
            rental_fee_cents=1500,
        )

        loan = await EquipmentRepository().insert_loan(db, new)

        assert loan is not None
        assert loan.total_fees_cents == 6500

    async def test_list_past_due(self, db):
        db.execute = AsyncMock(return_value=_result(many=[_loan_row(id=5), _loan_row(id=6)]))

        loans = await EquipmentRepository().list_past_due(db, NOW)

        assert [loan.id for loan in loans] == [5, 6]
        assert db.execute.call_args[0][1] == {"now": NOW}

    async def test_update_missing_loan_raises(self, db):
        db.execute = AsyncMock(return_value=_result(None))

        with pytest.raises(InternalError):
            await EquipmentRepository().update_loan(db, 99, "returned")

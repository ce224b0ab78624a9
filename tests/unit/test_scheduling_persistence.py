# tests/unit/test_scheduling_persistence.py
"""Unit tests for ReservationRepository using a MagicMock AsyncSession."""
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from src.cm_common.errors import ReservationConflictError
from src.cm_scheduling.domain.models import NewReservation
from src.cm_scheduling.infrastructure.persistence import ReservationRepository

STARTS = datetime(2025, 1, 28, 3, 0, tzinfo=UTC)
ENDS = datetime(2025, 1, 28, 5, 0, tzinfo=UTC)


def _instance(**kwargs):
    params = {
        "user_id": 1,
        "reserved_at": STARTS,
        "reserved_until": ENDS,
        "status": "pending",
        "recurring_series_id": 7,
        "instance_date": date(2025, 1, 27),
    }
    params.update(kwargs)
    return NewReservation(**params)


def _integrity_error(message: str) -> IntegrityError:
    return IntegrityError("INSERT INTO reservations ...", {}, Exception(message))


@pytest.fixture
def db():
    return MagicMock()


class TestInsertReservation:
    async def test_existing_series_date_returns_none(self, db):
        # ON CONFLICT DO NOTHING returns no row
        result_mock = MagicMock()
        result_mock.fetchone.return_value = None
        db.execute = AsyncMock(return_value=result_mock)

        assert await ReservationRepository().insert(db, _instance()) is None

    async def test_passes_series_and_date(self, db):
        result_mock = MagicMock()
        result_mock.fetchone.return_value = None
        db.execute = AsyncMock(return_value=result_mock)

        await ReservationRepository().insert(db, _instance())

        params = db.execute.call_args[0][1]
        assert params["recurring_series_id"] == 7
        assert params["instance_date"] == date(2025, 1, 27)
        assert params["status"] == "pending"

    async def test_overlap_exclusion_maps_to_conflict(self, db):
        db.execute = AsyncMock(
            side_effect=_integrity_error(
                'conflicting key value violates exclusion constraint "ex_reservations_no_overlap"'
            )
        )

        with pytest.raises(ReservationConflictError):
            await ReservationRepository().insert(db, _instance())

    async def test_other_integrity_errors_propagate(self, db):
        error = _integrity_error(
            'new row violates check constraint "ck_reservations_cost_non_negative"'
        )
        db.execute = AsyncMock(side_effect=error)

        with pytest.raises(IntegrityError) as exc_info:
            await ReservationRepository().insert(db, _instance(cost_cents=-1))
        assert exc_info.value is error

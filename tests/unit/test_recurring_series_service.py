"""Unit tests for RecurringSeriesService (expander, series lifecycle, job)."""

from datetime import date, time

import pytest

from src.cm_common.context import RequestContext
from src.cm_common.datetime_utils import combine_local
from src.cm_common.errors import (
    ForbiddenActionError,
    InvalidRecurrenceRuleError,
    SeriesNotActiveError,
    SeriesNotFoundError,
)
from src.cm_credits.application.service import CreditLedgerService
from src.cm_scheduling.application.recurring_service import (
    CONFLICT_REASON,
    RecurringSeriesService,
)
from src.cm_scheduling.application.reservation_service import ReservationService
from src.cm_scheduling.domain.models import NewReservation, RecurringSeries
from tests.unit.fakes import (
    FakeSession,
    InMemoryCreditRepository,
    InMemoryPromoCodeRepository,
    InMemoryReservationRepository,
    InMemorySeriesRepository,
    fixed_clock,
)

MEMBER = RequestContext(actor_id=1)
OTHER = RequestContext(actor_id=2)
STAFF = RequestContext.system()

MONDAYS = [
    date(2025, 1, 20),
    date(2025, 1, 27),
    date(2025, 2, 3),
    date(2025, 2, 10),
    date(2025, 2, 17),
    date(2025, 2, 24),
]


@pytest.fixture
def credits() -> InMemoryCreditRepository:
    return InMemoryCreditRepository()


@pytest.fixture
def reservations() -> InMemoryReservationRepository:
    return InMemoryReservationRepository()


@pytest.fixture
def series_repo() -> InMemorySeriesRepository:
    return InMemorySeriesRepository()


@pytest.fixture
def svc(
    credits: InMemoryCreditRepository,
    reservations: InMemoryReservationRepository,
    series_repo: InMemorySeriesRepository,
) -> RecurringSeriesService:
    clock = fixed_clock()
    ledger = CreditLedgerService(
        repo=credits, promo_repo=InMemoryPromoCodeRepository(), clock=clock
    )
    booking = ReservationService(repo=reservations, ledger=ledger, clock=clock)
    return RecurringSeriesService(series_repo=series_repo, reservations=booking, clock=clock)


@pytest.fixture
def db() -> FakeSession:
    return FakeSession()


async def _create(svc: RecurringSeriesService, db: FakeSession, **kwargs):  # type: ignore[no-untyped-def]
    params = {
        "recurrence_rule": "FREQ=WEEKLY;BYDAY=MO",
        "series_start_date": date(2025, 1, 20),
        "start_time": time(19, 0),
        "end_time": time(21, 0),
        "series_end_date": date(2025, 2, 28),
    }
    params.update(kwargs)
    return await svc.create_series(db, MEMBER, MEMBER.actor_id, **params)


class TestCreateSeries:
    async def test_generates_pending_instances(
        self, svc: RecurringSeriesService, db: FakeSession
    ) -> None:
        series, created = await _create(svc, db)

        assert series.recurrence_rule == "FREQ=WEEKLY;BYDAY=MO"
        assert [r.instance_date for r in created] == MONDAYS
        assert all(r.status == "pending" for r in created)
        assert all(r.recurring_series_id == series.id for r in created)
        assert created[0].reserved_at == combine_local(date(2025, 1, 20), time(19, 0))
        assert db.commits == 1

    async def test_instances_consume_free_hours_in_order(
        self,
        svc: RecurringSeriesService,
        credits: InMemoryCreditRepository,
        db: FakeSession,
    ) -> None:
        credits.seed(1, "free_hours", 10)

        _, created = await _create(svc, db)

        assert [r.free_blocks_used for r in created[:4]] == [4, 4, 2, 0]
        assert [r.cost_cents for r in created[:4]] == [0, 0, 1500, 3000]
        assert credits.balances[(1, "free_hours")].balance == 0

    async def test_invalid_rule_writes_nothing(
        self,
        svc: RecurringSeriesService,
        series_repo: InMemorySeriesRepository,
        db: FakeSession,
    ) -> None:
        with pytest.raises(InvalidRecurrenceRuleError):
            await _create(svc, db, recurrence_rule="FREQ=HOURLY")
        assert series_repo.series == {}

    async def test_member_cannot_create_for_others(
        self, svc: RecurringSeriesService, db: FakeSession
    ) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.create_series(
                db, OTHER, 1, "FREQ=WEEKLY;BYDAY=MO", date(2025, 1, 20), time(19), time(21)
            )


class StaleReadReservationRepository(InMemoryReservationRepository):
    """Reads miss rows another expander has inserted but not yet committed."""

    async def instance_dates(self, db, series_id):  # type: ignore[no-untyped-def]
        return set()

    async def find_overlapping(self, db, starts_at, ends_at, exclude_id=None):  # type: ignore[no-untyped-def]
        return []


class TestGenerateInstances:
    async def test_rerun_is_idempotent(
        self,
        svc: RecurringSeriesService,
        reservations: InMemoryReservationRepository,
        db: FakeSession,
    ) -> None:
        series, _ = await _create(svc, db)

        again = await svc.generate_instances(db, MEMBER, series.id)

        assert again == []
        assert len(reservations.rows) == len(MONDAYS)

    async def test_conflict_records_cancelled_placeholder(
        self,
        svc: RecurringSeriesService,
        reservations: InMemoryReservationRepository,
        db: FakeSession,
    ) -> None:
        await reservations.insert(
            db,
            NewReservation(
                user_id=2,
                reserved_at=combine_local(date(2025, 1, 27), time(19, 30)),
                reserved_until=combine_local(date(2025, 1, 27), time(20, 30)),
                status="confirmed",
            ),
        )

        series, created = await _create(svc, db)

        assert date(2025, 1, 27) not in [r.instance_date for r in created]
        assert len(created) == len(MONDAYS) - 1
        placeholder = await reservations.get_instance(db, series.id, date(2025, 1, 27))
        assert placeholder is not None
        assert placeholder.status == "cancelled"
        assert placeholder.cancellation_reason == CONFLICT_REASON
        assert db.savepoint_rollbacks == 1

        assert await svc.generate_instances(db, MEMBER, series.id) == []

    async def test_extending_adds_only_new_dates(
        self, svc: RecurringSeriesService, db: FakeSession
    ) -> None:
        series, _ = await _create(svc, db)

        updated, created = await svc.extend_series(db, MEMBER, series.id, date(2025, 3, 10))

        assert updated.series_end_date == date(2025, 3, 10)
        assert [r.instance_date for r in created] == [date(2025, 3, 3), date(2025, 3, 10)]

    async def test_unknown_series(self, svc: RecurringSeriesService, db: FakeSession) -> None:
        with pytest.raises(SeriesNotFoundError):
            await svc.generate_instances(db, MEMBER, 99)


class TestCancelAndSkip:
    async def test_cancel_series_cancels_future_instances(
        self,
        svc: RecurringSeriesService,
        reservations: InMemoryReservationRepository,
        db: FakeSession,
    ) -> None:
        series, _ = await _create(svc, db)

        updated, count = await svc.cancel_series(db, MEMBER, series.id)

        assert updated.status == "cancelled"
        assert count == len(MONDAYS)
        assert reservations.by_status("pending") == []
        with pytest.raises(SeriesNotActiveError):
            await svc.generate_instances(db, MEMBER, series.id)

    async def test_skip_generated_instance(
        self, svc: RecurringSeriesService, db: FakeSession
    ) -> None:
        series, _ = await _create(svc, db)

        skipped = await svc.skip_instance(db, MEMBER, series.id, date(2025, 2, 3), "Gig night")

        assert skipped is not None
        assert skipped.status == "cancelled"
        assert skipped.cancellation_reason == "Gig night"

    async def test_skip_future_date_blocks_generation(
        self, svc: RecurringSeriesService, db: FakeSession
    ) -> None:
        series, _ = await _create(svc, db)
        await svc.skip_instance(db, MEMBER, series.id, date(2025, 3, 3))

        _, created = await svc.extend_series(db, MEMBER, series.id, date(2025, 3, 10))

        assert [r.instance_date for r in created] == [date(2025, 3, 10)]


class TestFutureInstancesJob:
    async def test_tops_up_and_completes(
        self,
        svc: RecurringSeriesService,
        series_repo: InMemorySeriesRepository,
        db: FakeSession,
    ) -> None:
        series, _ = await _create(svc, db)
        series_repo.seed(
            RecurringSeries(
                id=50,
                user_id=3,
                recurrence_rule="FREQ=WEEKLY;BYDAY=TU",
                start_time=time(19, 0),
                end_time=time(21, 0),
                series_start_date=date(2024, 11, 5),
                series_end_date=date(2024, 12, 31),
            )
        )

        summary = await svc.generate_future_instances(db, STAFF)

        assert summary.series_processed == 2
        assert summary.series_completed == 1
        assert summary.instances_created == 0
        assert series_repo.series[50].status == "completed"
        assert series_repo.series[series.id].status == "active"

    async def test_requires_staff(self, svc: RecurringSeriesService, db: FakeSession) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.generate_future_instances(db, MEMBER)


class TestPatternConflicts:
    async def test_reports_overlapping_dates(
        self,
        svc: RecurringSeriesService,
        reservations: InMemoryReservationRepository,
        db: FakeSession,
    ) -> None:
        await reservations.insert(
            db,
            NewReservation(
                user_id=2,
                reserved_at=combine_local(date(2025, 2, 3), time(20, 0)),
                reserved_until=combine_local(date(2025, 2, 3), time(22, 0)),
                status="confirmed",
            ),
        )

        conflicts = await svc.check_pattern_conflicts(
            db, "FREQ=WEEKLY;BYDAY=MO", date(2025, 1, 20), time(19), time(21)
        )

        assert [c.instance_date for c in conflicts] == [date(2025, 2, 3)]
        assert conflicts[0].conflicting_reservation_ids == [1]


class TestConcurrentExpander:
    async def test_date_taken_by_other_expander_is_skipped(
        self,
        series_repo: InMemorySeriesRepository,
        credits: InMemoryCreditRepository,
        db: FakeSession,
    ) -> None:
        clock = fixed_clock()
        stale = StaleReadReservationRepository()
        ledger = CreditLedgerService(
            repo=credits, promo_repo=InMemoryPromoCodeRepository(), clock=clock
        )
        svc = RecurringSeriesService(
            series_repo=series_repo,
            reservations=ReservationService(repo=stale, ledger=ledger, clock=clock),
            clock=clock,
        )
        series = series_repo.seed(
            RecurringSeries(
                id=7,
                user_id=1,
                recurrence_rule="FREQ=WEEKLY;BYDAY=MO",
                start_time=time(19, 0),
                end_time=time(21, 0),
                series_start_date=date(2025, 1, 20),
                series_end_date=date(2025, 2, 28),
            )
        )
        taken = date(2025, 1, 27)
        await stale.insert(
            db,
            NewReservation(
                user_id=1,
                reserved_at=combine_local(taken, time(19, 0)),
                reserved_until=combine_local(taken, time(21, 0)),
                status="pending",
                recurring_series_id=series.id,
                instance_date=taken,
            ),
        )

        created = await svc.generate_instances(db, MEMBER, series.id)

        assert [r.instance_date for r in created] == [d for d in MONDAYS if d != taken]
        rows_for_taken = [r for r in stale.rows.values() if r.instance_date == taken]
        assert len(rows_for_taken) == 1
        assert rows_for_taken[0].status == "pending"
        assert stale.by_status("cancelled") == []
        assert db.savepoint_rollbacks == 0
        assert db.commits == 1

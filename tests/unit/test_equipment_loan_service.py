"""Unit tests for EquipmentLoanService against an in-memory repository."""

from datetime import datetime, timedelta

import pytest

from src.cm_common.context import RequestContext
from src.cm_common.errors import (
    EquipmentNotFoundError,
    EquipmentUnavailableError,
    ForbiddenActionError,
    InvalidReservationWindowError,
    InvalidTransitionError,
    LoanNotFoundError,
)
from src.cm_equipment.application.service import EquipmentLoanService
from tests.unit.fakes import NOW, FakeSession, InMemoryEquipmentRepository, fixed_clock

STAFF = RequestContext(actor_id=900, is_staff=True)
MEMBER = RequestContext(actor_id=1)
OTHER = RequestContext(actor_id=2)

DUE = NOW + timedelta(days=7)


@pytest.fixture
def repo() -> InMemoryEquipmentRepository:
    repo = InMemoryEquipmentRepository()
    repo.seed_equipment(1)
    return repo


@pytest.fixture
def svc(repo: InMemoryEquipmentRepository) -> EquipmentLoanService:
    return EquipmentLoanService(repo=repo, clock=fixed_clock())


@pytest.fixture
def db() -> FakeSession:
    return FakeSession()


class TestCheckout:
    async def test_one_active_loan_per_item(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        first = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        assert first.state == "checked_out"
        assert first.checked_out_at == NOW
        assert first.condition_out == "good"
        assert repo.equipment[1].status == "checked_out"

        with pytest.raises(EquipmentUnavailableError):
            await svc.checkout(db, STAFF, 1, borrower_id=2, due_at=DUE)

        returned = await svc.return_loan(db, STAFF, first.id, "fair")
        assert returned.state == "returned"
        assert returned.returned_at == NOW
        assert repo.equipment[1].status == "available"
        assert repo.equipment[1].condition == "fair"

        third = await svc.checkout(db, STAFF, 1, borrower_id=2, due_at=DUE)
        assert third.state == "checked_out"
        assert third.condition_out == "fair"

    async def test_requires_staff(self, svc: EquipmentLoanService, db: FakeSession) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.checkout(db, MEMBER, 1, borrower_id=1, due_at=DUE)

    async def test_not_loanable(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        repo.seed_equipment(2, loanable=False)
        with pytest.raises(EquipmentUnavailableError):
            await svc.checkout(db, STAFF, 2, borrower_id=1, due_at=DUE)
        assert db.rollbacks == 1

    async def test_in_maintenance(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        repo.seed_equipment(3, status="maintenance")
        with pytest.raises(EquipmentUnavailableError):
            await svc.checkout(db, STAFF, 3, borrower_id=1, due_at=DUE)

    async def test_unknown_equipment(self, svc: EquipmentLoanService, db: FakeSession) -> None:
        with pytest.raises(EquipmentNotFoundError):
            await svc.checkout(db, STAFF, 99, borrower_id=1, due_at=DUE)


class TestRequestFlow:
    async def test_full_member_flow(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        loan = await svc.request_loan(db, MEMBER, 1, due_at=DUE, rental_fee_cents=1500)
        assert loan.state == "requested"
        assert loan.borrower_id == MEMBER.actor_id
        assert repo.equipment[1].status == "available"

        loan = await svc.start_preparation(db, STAFF, loan.id)
        loan = await svc.mark_ready_for_pickup(db, STAFF, loan.id, "excellent")
        assert loan.condition_out == "excellent"

        loan = await svc.hand_over(db, STAFF, loan.id)
        assert loan.state == "checked_out"
        assert loan.checked_out_at == NOW
        assert repo.equipment[1].status == "checked_out"

        loan = await svc.schedule_dropoff(db, MEMBER, loan.id)
        loan = await svc.receive_dropoff(db, STAFF, loan.id)
        loan = await svc.report_damage(db, STAFF, loan.id, "Cracked grille")
        assert loan.state == "damage_reported"
        assert loan.damage_notes == "Cracked grille"

        loan = await svc.return_loan(db, STAFF, loan.id, "needs_repair")
        assert loan.state == "returned"
        assert repo.equipment[1].condition == "needs_repair"
        assert repo.equipment[1].status == "available"

    async def test_second_request_while_active(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        await svc.request_loan(db, MEMBER, 1, due_at=DUE)
        with pytest.raises(EquipmentUnavailableError):
            await svc.request_loan(db, OTHER, 1, due_at=DUE)

    async def test_member_cannot_prepare(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.request_loan(db, MEMBER, 1, due_at=DUE)
        with pytest.raises(ForbiddenActionError):
            await svc.start_preparation(db, MEMBER, loan.id)

    async def test_other_member_cannot_schedule_dropoff(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        with pytest.raises(ForbiddenActionError):
            await svc.schedule_dropoff(db, OTHER, loan.id)

    async def test_reschedule_returns_to_checked_out(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        await svc.schedule_dropoff(db, MEMBER, loan.id)

        loan = await svc.apply_transition(db, MEMBER, loan.id, "checked_out")

        assert loan.state == "checked_out"

    async def test_invalid_transition_rolls_back(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.request_loan(db, MEMBER, 1, due_at=DUE)
        with pytest.raises(InvalidTransitionError):
            await svc.receive_dropoff(db, STAFF, loan.id)
        assert db.rollbacks == 1

    async def test_returned_loan_is_final(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        await svc.return_loan(db, STAFF, loan.id, "good")
        with pytest.raises(InvalidTransitionError):
            await svc.return_loan(db, STAFF, loan.id, "good")


class TestCancel:
    async def test_member_cancels_request(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        loan = await svc.request_loan(db, MEMBER, 1, due_at=DUE)

        cancelled = await svc.cancel_loan(db, MEMBER, loan.id)

        assert cancelled.state == "cancelled"
        assert await repo.find_active_loan(db, 1) is None

    async def test_member_cannot_cancel_checked_out(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        with pytest.raises(ForbiddenActionError):
            await svc.cancel_loan(db, MEMBER, loan.id)

    async def test_staff_cannot_cancel_checked_out(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        with pytest.raises(InvalidTransitionError):
            await svc.cancel_loan(db, STAFF, loan.id)

    async def test_other_member_cannot_cancel(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        loan = await svc.request_loan(db, MEMBER, 1, due_at=DUE)
        with pytest.raises(ForbiddenActionError):
            await svc.cancel_loan(db, OTHER, loan.id)


class TestOverdueAndQueries:
    async def test_process_overdue_loans(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        repo.seed_equipment(2)
        late = repo.seed_loan(
            equipment_id=1,
            borrower_id=1,
            state="checked_out",
            reserved_from=NOW - timedelta(days=10),
            due_at=NOW - timedelta(days=1),
            checked_out_at=NOW - timedelta(days=10),
        )
        on_time = repo.seed_loan(
            equipment_id=2,
            borrower_id=2,
            state="checked_out",
            reserved_from=NOW - timedelta(days=1),
            due_at=NOW + timedelta(days=1),
            checked_out_at=NOW - timedelta(days=1),
        )

        marked = await svc.process_overdue_loans(db, RequestContext.system())

        assert marked == 1
        assert repo.loans[late.id].state == "overdue"
        assert repo.loans[on_time.id].state == "checked_out"

    async def test_loans_for_borrower(self, svc: EquipmentLoanService, db: FakeSession) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)

        mine = await svc.loans_for_borrower(db, MEMBER, MEMBER.actor_id)

        assert [x.id for x in mine] == [loan.id]
        with pytest.raises(ForbiddenActionError):
            await svc.loans_for_borrower(db, OTHER, MEMBER.actor_id)

    async def test_loan_history_is_staff_only(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)

        assert len(await svc.loan_history(db, STAFF, 1)) == 1
        with pytest.raises(ForbiddenActionError):
            await svc.loan_history(db, MEMBER, 1)

    async def test_get_loan_missing(self, svc: EquipmentLoanService, db: FakeSession) -> None:
        with pytest.raises(LoanNotFoundError):
            await svc.get_loan(db, STAFF, 404)


class TestNaiveTimestamps:
    async def test_checkout_rejects_naive_due_date(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        with pytest.raises(InvalidReservationWindowError):
            await svc.checkout(db, STAFF, 1, borrower_id=2, due_at=datetime(2030, 1, 1))

    async def test_request_rejects_naive_due_date(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        with pytest.raises(InvalidReservationWindowError):
            await svc.request_loan(db, MEMBER, 1, due_at=datetime(2030, 1, 1))

    async def test_request_rejects_naive_start(
        self, svc: EquipmentLoanService, db: FakeSession
    ) -> None:
        with pytest.raises(InvalidReservationWindowError):
            await svc.request_loan(
                db, MEMBER, 1, due_at=DUE, reserved_from=datetime(2025, 1, 16, 10, 0)
            )

    async def test_nothing_written(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        with pytest.raises(InvalidReservationWindowError):
            await svc.checkout(db, STAFF, 1, borrower_id=2, due_at=datetime(2030, 1, 1))
        assert repo.loans == {}
        assert repo.equipment[1].status == "available"


class TestMarkLost:
    async def test_retires_item_and_keeps_loan_state(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)

        lost = await svc.mark_lost(db, STAFF, loan.id, "Left at venue, not recovered")

        assert lost.state == "checked_out"
        assert lost.damage_notes == "Left at venue, not recovered"
        assert repo.equipment[1].status == "retired"

    async def test_retired_item_cannot_be_checked_out(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        repo.seed_equipment(2)
        loan = await svc.checkout(db, STAFF, 2, borrower_id=1, due_at=DUE)
        await svc.mark_lost(db, STAFF, loan.id)
        with pytest.raises(EquipmentUnavailableError):
            await svc.checkout(db, STAFF, 2, borrower_id=3, due_at=DUE)

    async def test_staff_only(self, svc: EquipmentLoanService, db: FakeSession) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        with pytest.raises(ForbiddenActionError):
            await svc.mark_lost(db, MEMBER, loan.id)

    async def test_finished_loan_rejected(
        self,
        svc: EquipmentLoanService,
        repo: InMemoryEquipmentRepository,
        db: FakeSession,
    ) -> None:
        loan = await svc.checkout(db, STAFF, 1, borrower_id=1, due_at=DUE)
        await svc.return_loan(db, STAFF, loan.id, "good")

        with pytest.raises(InvalidTransitionError):
            await svc.mark_lost(db, STAFF, loan.id)
        assert repo.equipment[1].status == "available"
        assert db.rollbacks == 1

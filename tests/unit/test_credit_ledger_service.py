"""Unit tests for CreditLedgerService against in-memory repositories."""

from datetime import UTC, datetime, timedelta

import pytest

from src.cm_common.context import RequestContext
from src.cm_common.enums import CreditSource
from src.cm_common.errors import (
    ForbiddenActionError,
    InsufficientCreditsError,
    InvalidCreditAmountError,
    PromoCodeAlreadyRedeemedError,
    PromoCodeMaxUsesError,
    PromoCodeNotFoundError,
    UnknownCreditTypeError,
)
from src.cm_credits.application.service import CreditLedgerService
from src.cm_credits.domain.models import CreditTransaction
from tests.unit.fakes import (
    NOW,
    FakeSession,
    InMemoryCreditRepository,
    InMemoryPromoCodeRepository,
    fixed_clock,
)

STAFF = RequestContext(actor_id=900, is_staff=True)
MEMBER = RequestContext(actor_id=1)


@pytest.fixture
def repo() -> InMemoryCreditRepository:
    return InMemoryCreditRepository()


@pytest.fixture
def promos() -> InMemoryPromoCodeRepository:
    return InMemoryPromoCodeRepository()


@pytest.fixture
def svc(repo: InMemoryCreditRepository, promos: InMemoryPromoCodeRepository) -> CreditLedgerService:
    return CreditLedgerService(repo=repo, promo_repo=promos, clock=fixed_clock())


@pytest.fixture
def db() -> FakeSession:
    return FakeSession()


class TestMonthlyAllocation:
    async def test_allocating_twice_in_a_month_is_idempotent(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        first = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "free_hours")
        second = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "free_hours")

        assert first is not None
        assert second is None
        assert await svc.balance_of(db, 1, "free_hours") == 100
        resets = [
            t for t in repo.transactions_for(1, "free_hours")
            if t.source == CreditSource.MONTHLY_RESET.value
        ]
        assert len(resets) == 1
        assert db.commits == 2

    async def test_reset_replaces_leftover_balance(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "free_hours", 37)

        tx = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "free_hours")

        assert tx is not None
        assert tx.amount == 100
        assert tx.balance_after == 100

    async def test_rollover_is_capped(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "equipment_credits", 230, rollover_enabled=True, max_balance=250)

        tx = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "equipment_credits")

        assert tx is not None
        assert tx.source == CreditSource.MONTHLY_ALLOCATION.value
        assert tx.amount == 20
        assert await svc.balance_of(db, 1, "equipment_credits") == 250

    async def test_new_row_takes_type_policy(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        await svc.allocate_monthly_credits(db, STAFF, 2, 100, "equipment_credits")

        row = repo.balances[(2, "equipment_credits")]
        assert row.rollover_enabled is True
        assert row.max_balance == 250

    async def test_upgrade_in_same_month_adds_difference(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        await svc.allocate_monthly_credits(db, STAFF, 1, 50, "free_hours")
        tx = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "free_hours")

        assert tx is not None
        assert tx.source == CreditSource.UPGRADE_ADJUSTMENT.value
        assert tx.amount == 50
        assert await svc.balance_of(db, 1, "free_hours") == 100

    async def test_last_months_allocation_does_not_block(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "free_hours", 12)
        repo.add_history(
            CreditTransaction(
                id=99,
                user_id=1,
                credit_type="free_hours",
                amount=100,
                balance_after=100,
                source=CreditSource.MONTHLY_RESET.value,
                metadata={"allocated_amount": 100},
                created_at=datetime(2024, 12, 20, tzinfo=UTC),
            )
        )

        tx = await svc.allocate_monthly_credits(db, STAFF, 1, 100, "free_hours")

        assert tx is not None
        assert tx.source == CreditSource.MONTHLY_RESET.value
        assert await svc.balance_of(db, 1, "free_hours") == 100

    async def test_member_cannot_allocate(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.allocate_monthly_credits(db, MEMBER, 1, 100, "free_hours")

    async def test_unknown_type_rolls_back(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(UnknownCreditTypeError):
            await svc.allocate_monthly_credits(db, STAFF, 1, 100, "gold_stars")
        assert db.rollbacks == 1
        assert db.commits == 0


class TestAddAndDeduct:
    async def test_deduct_more_than_balance_fails_without_side_effects(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "free_hours", 20)

        with pytest.raises(InsufficientCreditsError) as exc_info:
            await svc.deduct_credits(db, STAFF, 1, 30, "free_hours")

        assert exc_info.value.required == 30
        assert exc_info.value.available == 20
        assert await svc.balance_of(db, 1, "free_hours") == 20
        assert repo.transactions == []
        assert db.rollbacks == 1

    async def test_deduct_records_negative_amount(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "free_hours", 20)

        tx = await svc.deduct_credits(db, STAFF, 1, 8, "free_hours", "Manual correction")

        assert tx.amount == -8
        assert tx.balance_after == 12
        assert tx.source == CreditSource.STAFF_DEDUCTION.value
        assert tx.source_id == STAFF.actor_id

    async def test_deduct_without_row_is_insufficient(
        self, svc: CreditLedgerService, db: FakeSession
    ) -> None:
        with pytest.raises(InsufficientCreditsError) as exc_info:
            await svc.deduct_credits(db, STAFF, 1, 1, "free_hours")
        assert exc_info.value.available == 0

    async def test_add_creates_row_and_transaction(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        tx = await svc.add_credits(db, STAFF, 3, 10, "free_hours", "Volunteer shift")

        assert tx.amount == 10
        assert tx.balance_after == 10
        assert tx.source == CreditSource.STAFF_GRANT.value
        assert tx.description == "Volunteer shift"
        assert await svc.balance_of(db, 3, "free_hours") == 10

    async def test_add_rejects_non_positive(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(InvalidCreditAmountError):
            await svc.add_credits(db, STAFF, 3, 0, "free_hours")

    async def test_member_cannot_grant(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.add_credits(db, MEMBER, 1, 10, "free_hours")

    async def test_expired_balance_reads_zero_and_restarts(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        repo.seed(1, "free_hours", 40, expires_at=NOW - timedelta(days=1))

        assert await svc.balance_of(db, 1, "free_hours") == 0
        tx = await svc.add_credits(db, STAFF, 1, 10, "free_hours")

        assert tx.balance_after == 10
        assert repo.balances[(1, "free_hours")].expires_at is None


class TestPromoCodes:
    async def test_redeem_adds_credits(
        self,
        svc: CreditLedgerService,
        promos: InMemoryPromoCodeRepository,
        db: FakeSession,
    ) -> None:
        promo = promos.seed("TEST100", credit_amount=100)

        tx = await svc.redeem_promo_code(db, MEMBER, "TEST100")

        assert tx.amount == 100
        assert tx.source == CreditSource.PROMO_CODE.value
        assert tx.source_id == promo.id
        assert tx.description == "Promo code: TEST100"
        assert promos.codes["TEST100"].uses_count == 1
        assert len(promos.redemptions) == 1
        assert await svc.balance_of(db, MEMBER.actor_id, "free_hours") == 100

    async def test_second_redemption_by_same_user_fails(
        self,
        svc: CreditLedgerService,
        promos: InMemoryPromoCodeRepository,
        db: FakeSession,
    ) -> None:
        promos.seed("TEST100", credit_amount=100)
        await svc.redeem_promo_code(db, MEMBER, "TEST100")

        with pytest.raises(PromoCodeAlreadyRedeemedError):
            await svc.redeem_promo_code(db, MEMBER, "TEST100")
        assert await svc.balance_of(db, MEMBER.actor_id, "free_hours") == 100
        assert promos.codes["TEST100"].uses_count == 1

    async def test_exhausted_code_fails(
        self, svc: CreditLedgerService, promos: InMemoryPromoCodeRepository, db: FakeSession
    ) -> None:
        promos.seed("TEST100", max_uses=5, uses_count=5)

        with pytest.raises(PromoCodeMaxUsesError):
            await svc.redeem_promo_code(db, RequestContext(actor_id=6), "TEST100")

    async def test_code_match_is_case_sensitive(
        self, svc: CreditLedgerService, promos: InMemoryPromoCodeRepository, db: FakeSession
    ) -> None:
        promos.seed("TEST100")

        with pytest.raises(PromoCodeNotFoundError):
            await svc.redeem_promo_code(db, MEMBER, "test100")

    async def test_inactive_and_expired_look_missing(
        self, svc: CreditLedgerService, promos: InMemoryPromoCodeRepository, db: FakeSession
    ) -> None:
        promos.seed("OFF", is_active=False)
        promos.seed("OLD", expires_at=NOW - timedelta(seconds=1))

        with pytest.raises(PromoCodeNotFoundError):
            await svc.redeem_promo_code(db, MEMBER, "OFF")
        with pytest.raises(PromoCodeNotFoundError):
            await svc.redeem_promo_code(db, MEMBER, "OLD")


class TestReads:
    async def test_get_balance_checks_owner(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(ForbiddenActionError):
            await svc.get_balance(db, MEMBER, 2, "free_hours")

    async def test_get_balance_unknown_type(self, svc: CreditLedgerService, db: FakeSession) -> None:
        with pytest.raises(UnknownCreditTypeError):
            await svc.get_balance(db, MEMBER, 1, "gold_stars")

    async def test_usage_counts_this_months_reservations(
        self, svc: CreditLedgerService, repo: InMemoryCreditRepository, db: FakeSession
    ) -> None:
        for tx_id, amount, created_at in (
            (1, -4, NOW),
            (2, -2, datetime(2024, 12, 28, tzinfo=UTC)),
        ):
            repo.add_history(
                CreditTransaction(
                    id=tx_id,
                    user_id=1,
                    credit_type="free_hours",
                    amount=amount,
                    balance_after=10,
                    source=CreditSource.RESERVATION.value,
                    created_at=created_at,
                )
            )

        assert await svc.usage_this_month(db, MEMBER, 1, "free_hours") == 4

    async def test_transaction_pages(
        self, svc: CreditLedgerService, db: FakeSession
    ) -> None:
        for _ in range(3):
            await svc.add_credits(db, STAFF, 1, 5, "free_hours")

        first = await svc.list_transactions(db, MEMBER, 1, None, 2)
        assert [item.id for item in first.items] == [3, 2]
        assert first.has_more is True
        assert first.next_cursor is not None

        second = await svc.list_transactions(db, MEMBER, 1, first.next_cursor, 2)
        assert [item.id for item in second.items] == [1]
        assert second.has_more is False
        assert second.next_cursor is None

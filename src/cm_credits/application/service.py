"""CreditLedgerService: balances, append-only transactions, promo codes.

Public methods take the acting RequestContext, own their transaction and
commit or roll back. The `*_in_tx` methods run inside the caller's
transaction and never commit; other services (reservations) compose them.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.datetime_utils import month_start, utc_now
from src.cm_common.enums import CreditSource
from src.cm_common.errors import (
    InsufficientCreditsError,
    InvalidCreditAmountError,
    PromoCodeAlreadyRedeemedError,
    PromoCodeMaxUsesError,
    PromoCodeNotFoundError,
)
from src.cm_common.pagination import cursor_decode, cursor_encode
from src.cm_credits.application.schemas import TransactionItem, TransactionPage
from src.cm_credits.domain.allocation import ALLOCATION_SOURCES, plan_monthly_allocation
from src.cm_credits.domain.models import CreditTransaction
from src.cm_credits.domain.policies import get_policy
from src.cm_credits.domain.repository import (
    CreditRepositoryProtocol,
    PromoCodeRepositoryProtocol,
)
from src.cm_credits.infrastructure.persistence import CreditRepository, PromoCodeRepository

logger = logging.getLogger(__name__)


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise InvalidCreditAmountError(amount)


class CreditLedgerService:
    def __init__(
        self,
        repo: CreditRepositoryProtocol | None = None,
        promo_repo: PromoCodeRepositoryProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: CreditRepositoryProtocol = repo or CreditRepository()
        self._promo_repo: PromoCodeRepositoryProtocol = promo_repo or PromoCodeRepository()
        self._clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def balance_of(self, db: AsyncSession, user_id: int, credit_type: str) -> int:
        """0 when no row exists or the row has expired."""
        row = await self._repo.get_balance(db, user_id, credit_type)
        if row is None:
            return 0
        return row.available(self._clock())

    async def get_balance(
        self, db: AsyncSession, ctx: RequestContext, user_id: int, credit_type: str
    ) -> int:
        ctx.require_self_or_staff(user_id, "viewing credit balance")
        get_policy(credit_type)
        return await self.balance_of(db, user_id, credit_type)

    async def usage_this_month(
        self, db: AsyncSession, ctx: RequestContext, user_id: int, credit_type: str
    ) -> int:
        """Blocks spent on reservations since the start of the local calendar month."""
        ctx.require_self_or_staff(user_id, "viewing credit usage")
        spent = await self._repo.sum_amount_since(
            db, user_id, credit_type, CreditSource.RESERVATION.value, month_start(self._clock())
        )
        return -spent

    async def list_transactions(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        cursor: str | None,
        limit: int,
        credit_type: str | None = None,
    ) -> TransactionPage:
        ctx.require_self_or_staff(user_id, "viewing credit history")
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        rows = await self._repo.list_transactions(db, user_id, credit_type, cursor_id, limit + 1)
        has_more = len(rows) > limit
        page = rows[:limit]
        next_cursor = cursor_encode(page[-1].id) if has_more and page else None
        return TransactionPage(
            items=[TransactionItem.from_transaction(tx) for tx in page],
            next_cursor=next_cursor,
            has_more=has_more,
        )

    # ------------------------------------------------------------------
    # Mutations inside the caller's transaction
    # ------------------------------------------------------------------

    async def add_credits_in_tx(
        self,
        db: AsyncSession,
        user_id: int,
        amount: int,
        source: str,
        credit_type: str,
        source_id: int | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> CreditTransaction:
        _require_positive(amount)
        policy = get_policy(credit_type)
        row = await self._repo.lock_or_create_balance(db, user_id, policy)
        updated = await self._repo.update_balance(
            db, user_id, credit_type, row.available(self._clock()) + amount
        )
        return await self._repo.insert_transaction(
            db,
            user_id,
            credit_type,
            amount,
            updated.balance,
            source,
            source_id,
            description,
            metadata,
        )

    async def deduct_credits_in_tx(
        self,
        db: AsyncSession,
        user_id: int,
        amount: int,
        source: str,
        credit_type: str,
        source_id: int | None = None,
        description: str | None = None,
    ) -> CreditTransaction:
        _require_positive(amount)
        get_policy(credit_type)
        row = await self._repo.lock_balance(db, user_id, credit_type)
        available = row.available(self._clock()) if row else 0
        if row is None or amount > available:
            raise InsufficientCreditsError(amount, available)
        updated = await self._repo.update_balance(db, user_id, credit_type, row.balance - amount)
        return await self._repo.insert_transaction(
            db,
            user_id,
            credit_type,
            -amount,
            updated.balance,
            source,
            source_id,
            description,
            None,
        )

    async def allocate_monthly_credits_in_tx(
        self, db: AsyncSession, user_id: int, amount: int, credit_type: str
    ) -> CreditTransaction | None:
        _require_positive(amount)
        policy = get_policy(credit_type)
        now = self._clock()
        # Lock first: concurrent triggers for the same month serialize here and
        # the second one sees the first one's transaction below.
        row = await self._repo.lock_or_create_balance(db, user_id, policy)
        previous = await self._repo.find_transaction_since(
            db,
            user_id,
            credit_type,
            [s.value for s in ALLOCATION_SOURCES],
            month_start(now),
        )
        plan = plan_monthly_allocation(
            row.available(now), amount, row.rollover_enabled, row.max_balance, previous
        )
        if plan is None:
            logger.info(
                "Monthly allocation already done: user=%s type=%s amount=%d",
                user_id, credit_type, amount,
            )
            return None

        updated = await self._repo.update_balance(db, user_id, credit_type, plan.new_balance)
        tx = await self._repo.insert_transaction(
            db,
            user_id,
            credit_type,
            plan.transaction_amount,
            updated.balance,
            plan.source.value,
            None,
            f"Monthly {credit_type} allocation",
            plan.metadata,
        )
        logger.info(
            "Monthly allocation: user=%s type=%s source=%s amount=%d balance=%d",
            user_id, credit_type, plan.source.value, plan.transaction_amount, updated.balance,
        )
        return tx

    async def redeem_promo_code_in_tx(
        self, db: AsyncSession, user_id: int, code: str
    ) -> CreditTransaction:
        promo = await self._promo_repo.lock_by_code(db, code)
        if promo is None or not promo.is_redeemable(self._clock()):
            raise PromoCodeNotFoundError()
        if await self._promo_repo.has_redemption(db, promo.id, user_id):
            raise PromoCodeAlreadyRedeemedError(code)
        if promo.is_exhausted:
            raise PromoCodeMaxUsesError(code)

        await self._promo_repo.increment_uses(db, promo.id)
        tx = await self.add_credits_in_tx(
            db,
            user_id,
            promo.credit_amount,
            CreditSource.PROMO_CODE.value,
            promo.credit_type,
            source_id=promo.id,
            description=f"Promo code: {promo.code}",
        )
        await self._promo_repo.insert_redemption(db, promo.id, user_id, tx.id, self._clock())
        logger.info("Promo code redeemed: code=%s user=%s tx=%d", code, user_id, tx.id)
        return tx

    # ------------------------------------------------------------------
    # Public commands (own the transaction)
    # ------------------------------------------------------------------

    async def add_credits(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        amount: int,
        credit_type: str,
        description: str | None = None,
    ) -> CreditTransaction:
        ctx.require_staff("granting credits")
        try:
            tx = await self.add_credits_in_tx(
                db,
                user_id,
                amount,
                CreditSource.STAFF_GRANT.value,
                credit_type,
                source_id=ctx.actor_id,
                description=description,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return tx

    async def deduct_credits(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        amount: int,
        credit_type: str,
        description: str | None = None,
    ) -> CreditTransaction:
        ctx.require_staff("deducting credits")
        try:
            tx = await self.deduct_credits_in_tx(
                db,
                user_id,
                amount,
                CreditSource.STAFF_DEDUCTION.value,
                credit_type,
                source_id=ctx.actor_id,
                description=description,
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return tx

    async def allocate_monthly_credits(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        amount: int,
        credit_type: str,
    ) -> CreditTransaction | None:
        ctx.require_staff("allocating monthly credits")
        try:
            tx = await self.allocate_monthly_credits_in_tx(db, user_id, amount, credit_type)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return tx

    async def redeem_promo_code(
        self, db: AsyncSession, ctx: RequestContext, code: str
    ) -> CreditTransaction:
        try:
            tx = await self.redeem_promo_code_in_tx(db, ctx.actor_id, code)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return tx

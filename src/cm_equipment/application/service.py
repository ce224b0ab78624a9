"""EquipmentLoanService: orchestrates loan transitions and equipment status.

Every command loads the loan (or equipment) under a row lock, asks the state
machine whether the move is legal, writes the loan and then, as an explicit
second step in the same transaction, the equipment row it affects. Checkout
paths re-check availability under the equipment lock at the moment of the
transition, so two concurrent checkouts cannot both succeed.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.datetime_utils import utc_now
from src.cm_common.enums import EquipmentStatus
from src.cm_common.errors import (
    EquipmentNotFoundError,
    EquipmentUnavailableError,
    ForbiddenActionError,
    InvalidReservationWindowError,
    InvalidTransitionError,
    LoanNotFoundError,
)
from src.cm_equipment.domain.models import Equipment, EquipmentLoan, NewLoan
from src.cm_equipment.domain.repository import EquipmentRepositoryProtocol
from src.cm_equipment.domain.states import LoanState, info, transition
from src.cm_equipment.infrastructure.persistence import EquipmentRepository

logger = logging.getLogger(__name__)


def _require_aware(*values: datetime | None) -> None:
    if any(v is not None and v.tzinfo is None for v in values):
        raise InvalidReservationWindowError("timestamps must carry a timezone")


class EquipmentLoanService:
    def __init__(
        self,
        repo: EquipmentRepositoryProtocol | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: EquipmentRepositoryProtocol = repo or EquipmentRepository()
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers (inside the caller's transaction)
    # ------------------------------------------------------------------

    async def _lock_available_equipment(
        self, db: AsyncSession, equipment_id: int, ignore_loan_id: int | None = None
    ) -> Equipment:
        equipment = await self._repo.lock_equipment(db, equipment_id)
        if equipment is None:
            raise EquipmentNotFoundError(equipment_id)
        if not equipment.loanable:
            raise EquipmentUnavailableError(equipment_id, "not loanable")
        if not equipment.is_checkout_ready:
            raise EquipmentUnavailableError(equipment_id, f"currently {equipment.status}")
        active = await self._repo.find_active_loan(db, equipment_id)
        if active is not None and active.id != ignore_loan_id:
            raise EquipmentUnavailableError(equipment_id, "already on an active loan")
        return equipment

    async def _lock_loan(self, db: AsyncSession, loan_id: int) -> EquipmentLoan:
        loan = await self._repo.lock_loan(db, loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def _log_transition(self, loan: EquipmentLoan, target: LoanState, ctx: RequestContext) -> None:
        logger.info(
            "Loan %d: %s -> %s by=%s", loan.id, loan.state, target.value, ctx.actor_id
        )

    async def _move(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        loan_id: int,
        target: LoanState,
        staff_only: bool,
        **updates: object,
    ) -> EquipmentLoan:
        """Plain transition with no equipment side effect."""
        try:
            loan = await self._lock_loan(db, loan_id)
            if staff_only:
                ctx.require_staff(f"moving a loan to {target.value}")
            else:
                ctx.require_self_or_staff(loan.borrower_id, f"moving a loan to {target.value}")
            transition(loan.state, target)
            updated = await self._repo.update_loan(db, loan_id, target.value, **updates)  # type: ignore[arg-type]
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self._log_transition(loan, target, ctx)
        return updated

    # ------------------------------------------------------------------
    # Creating loans
    # ------------------------------------------------------------------

    async def request_loan(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        equipment_id: int,
        due_at: datetime,
        reserved_from: datetime | None = None,
        security_deposit_cents: int = 0,
        rental_fee_cents: int = 0,
        notes: str | None = None,
    ) -> EquipmentLoan:
        """Member asks for an item; staff will prepare it."""
        _require_aware(due_at, reserved_from)
        starts = reserved_from or self._clock()
        if due_at <= starts:
            raise InvalidReservationWindowError("due date must be after the loan start")
        try:
            await self._lock_available_equipment(db, equipment_id)
            loan = await self._repo.insert_loan(
                db,
                NewLoan(
                    equipment_id=equipment_id,
                    borrower_id=ctx.actor_id,
                    state=LoanState.REQUESTED.value,
                    reserved_from=starts,
                    due_at=due_at,
                    security_deposit_cents=security_deposit_cents,
                    rental_fee_cents=rental_fee_cents,
                    notes=notes,
                ),
            )
            if loan is None:
                raise EquipmentUnavailableError(equipment_id, "already on an active loan")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Loan %d requested: equipment=%d by=%s", loan.id, equipment_id, ctx.actor_id)
        return loan

    async def checkout(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        equipment_id: int,
        borrower_id: int,
        due_at: datetime,
        condition_out: str | None = None,
        security_deposit_cents: int = 0,
        rental_fee_cents: int = 0,
        notes: str | None = None,
    ) -> EquipmentLoan:
        """Staff hands an item over immediately."""
        ctx.require_staff("checking out equipment")
        _require_aware(due_at)
        now = self._clock()
        if due_at <= now:
            raise InvalidReservationWindowError("due date must be in the future")
        try:
            equipment = await self._lock_available_equipment(db, equipment_id)
            loan = await self._repo.insert_loan(
                db,
                NewLoan(
                    equipment_id=equipment_id,
                    borrower_id=borrower_id,
                    state=LoanState.CHECKED_OUT.value,
                    reserved_from=now,
                    due_at=due_at,
                    checked_out_at=now,
                    condition_out=condition_out or equipment.condition,
                    security_deposit_cents=security_deposit_cents,
                    rental_fee_cents=rental_fee_cents,
                    notes=notes,
                ),
            )
            if loan is None:
                raise EquipmentUnavailableError(equipment_id, "already on an active loan")
            await self._repo.update_equipment(db, equipment_id, EquipmentStatus.CHECKED_OUT.value)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Loan %d checked out: equipment=%d borrower=%s by=%s",
            loan.id, equipment_id, borrower_id, ctx.actor_id,
        )
        return loan

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_preparation(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        return await self._move(db, ctx, loan_id, LoanState.STAFF_PREPARING, staff_only=True)

    async def mark_ready_for_pickup(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int, condition_out: str | None = None
    ) -> EquipmentLoan:
        return await self._move(
            db, ctx, loan_id, LoanState.READY_FOR_PICKUP, staff_only=True,
            condition_out=condition_out,
        )

    async def hand_over(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        loan_id: int,
        condition_out: str | None = None,
        due_at: datetime | None = None,
    ) -> EquipmentLoan:
        """ready_for_pickup -> checked_out, re-checking the item under its lock."""
        ctx.require_staff("handing over equipment")
        _require_aware(due_at)
        try:
            loan = await self._lock_loan(db, loan_id)
            target = transition(loan.state, LoanState.CHECKED_OUT)
            await self._lock_available_equipment(db, loan.equipment_id, ignore_loan_id=loan.id)
            updated = await self._repo.update_loan(
                db,
                loan_id,
                target.value,
                checked_out_at=self._clock(),
                due_at=due_at,
                condition_out=condition_out,
            )
            await self._repo.update_equipment(
                db, loan.equipment_id, EquipmentStatus.CHECKED_OUT.value
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self._log_transition(loan, target, ctx)
        return updated

    async def schedule_dropoff(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        return await self._move(db, ctx, loan_id, LoanState.DROPOFF_SCHEDULED, staff_only=False)

    async def reschedule_dropoff(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        """Drop a scheduled dropoff; the loan goes back to checked_out."""
        return await self._move(db, ctx, loan_id, LoanState.CHECKED_OUT, staff_only=False)

    async def receive_dropoff(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        return await self._move(
            db, ctx, loan_id, LoanState.STAFF_PROCESSING_RETURN, staff_only=True
        )

    async def report_damage(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int, damage_notes: str
    ) -> EquipmentLoan:
        return await self._move(
            db, ctx, loan_id, LoanState.DAMAGE_REPORTED, staff_only=True,
            damage_notes=damage_notes,
        )

    async def mark_overdue(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        return await self._move(db, ctx, loan_id, LoanState.OVERDUE, staff_only=True)

    async def return_loan(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        loan_id: int,
        condition_in: str,
        damage_notes: str | None = None,
    ) -> EquipmentLoan:
        """-> returned; the item goes back on the shelf in its returned condition.

        Loan and equipment rows are written in one transaction: either both
        change or neither does.
        """
        ctx.require_staff("returning equipment")
        try:
            loan = await self._lock_loan(db, loan_id)
            target = transition(loan.state, LoanState.RETURNED)
            updated = await self._repo.update_loan(
                db,
                loan_id,
                target.value,
                returned_at=self._clock(),
                condition_in=condition_in,
                damage_notes=damage_notes,
            )
            await self._repo.update_equipment(
                db, loan.equipment_id, EquipmentStatus.AVAILABLE.value, condition_in
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self._log_transition(loan, target, ctx)
        return updated

    async def mark_lost(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int, notes: str | None = None
    ) -> EquipmentLoan:
        """Record an item as lost: notes go on the loan and the item is retired.

        The loan keeps its state so the borrower stays accountable for it.
        """
        ctx.require_staff("marking equipment as lost")
        try:
            loan = await self._lock_loan(db, loan_id)
            if not loan.is_active:
                raise InvalidTransitionError(loan.state, "lost")
            updated = await self._repo.update_loan(
                db, loan_id, loan.state, damage_notes=notes
            )
            await self._repo.update_equipment(
                db, loan.equipment_id, EquipmentStatus.RETIRED.value
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.warning(
            "Loan %d: equipment %d marked lost by=%s", loan.id, loan.equipment_id, ctx.actor_id
        )
        return updated

    async def cancel_loan(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        """Staff may cancel any cancellable loan; the borrower only while the
        current state allows member cancellation."""
        try:
            loan = await self._lock_loan(db, loan_id)
            if not ctx.is_staff:
                if ctx.actor_id != loan.borrower_id:
                    raise ForbiddenActionError("only the borrower or staff can cancel a loan")
                if not info(loan.state).can_be_cancelled_by_member:
                    raise ForbiddenActionError(
                        f"a loan in state {loan.state} can no longer be cancelled by the member"
                    )
            target = transition(loan.state, LoanState.CANCELLED)
            updated = await self._repo.update_loan(db, loan_id, target.value)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        self._log_transition(loan, target, ctx)
        return updated

    async def apply_transition(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        loan_id: int,
        target: LoanState | str,
        condition: str | None = None,
        damage_notes: str | None = None,
    ) -> EquipmentLoan:
        """Route a generic "move to <target>" request to the matching command."""
        target = LoanState(target)
        if target is LoanState.STAFF_PREPARING:
            return await self.start_preparation(db, ctx, loan_id)
        if target is LoanState.READY_FOR_PICKUP:
            return await self.mark_ready_for_pickup(db, ctx, loan_id, condition)
        if target is LoanState.CHECKED_OUT:
            loan = await self._repo.get_loan(db, loan_id)
            if loan is None:
                raise LoanNotFoundError(loan_id)
            if loan.state == LoanState.DROPOFF_SCHEDULED.value:
                return await self.reschedule_dropoff(db, ctx, loan_id)
            return await self.hand_over(db, ctx, loan_id, condition)
        if target is LoanState.OVERDUE:
            return await self.mark_overdue(db, ctx, loan_id)
        if target is LoanState.DROPOFF_SCHEDULED:
            return await self.schedule_dropoff(db, ctx, loan_id)
        if target is LoanState.STAFF_PROCESSING_RETURN:
            return await self.receive_dropoff(db, ctx, loan_id)
        if target is LoanState.DAMAGE_REPORTED:
            return await self.report_damage(db, ctx, loan_id, damage_notes or "")
        if target is LoanState.RETURNED:
            return await self.return_loan(db, ctx, loan_id, condition or "good", damage_notes)
        if target is LoanState.CANCELLED:
            return await self.cancel_loan(db, ctx, loan_id)
        raise InvalidTransitionError("-", target.value)

    async def process_overdue_loans(self, db: AsyncSession, ctx: RequestContext) -> int:
        """Scheduled job: move every checked-out loan past its due date to overdue."""
        ctx.require_staff("processing overdue loans")
        now = self._clock()
        marked = 0
        try:
            for candidate in await self._repo.list_past_due(db, now):
                loan = await self._lock_loan(db, candidate.id)
                if loan.state != LoanState.CHECKED_OUT.value or not loan.is_overdue(now):
                    continue
                await self._repo.update_loan(db, loan.id, LoanState.OVERDUE.value)
                marked += 1
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Overdue sweep: marked %d loan(s)", marked)
        return marked

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_loan(
        self, db: AsyncSession, ctx: RequestContext, loan_id: int
    ) -> EquipmentLoan:
        loan = await self._repo.get_loan(db, loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        ctx.require_self_or_staff(loan.borrower_id, "viewing a loan")
        return loan

    async def loans_for_borrower(
        self, db: AsyncSession, ctx: RequestContext, borrower_id: int, active_only: bool = True
    ) -> list[EquipmentLoan]:
        ctx.require_self_or_staff(borrower_id, "listing loans")
        return await self._repo.list_loans_for_borrower(db, borrower_id, active_only)

    async def loan_history(
        self, db: AsyncSession, ctx: RequestContext, equipment_id: int, limit: int = 50
    ) -> list[EquipmentLoan]:
        ctx.require_staff("viewing equipment loan history")
        if await self._repo.get_equipment(db, equipment_id) is None:
            raise EquipmentNotFoundError(equipment_id)
        return await self._repo.list_loans_for_equipment(db, equipment_id, limit)

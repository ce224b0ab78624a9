"""Admin application service: scheduled jobs triggered by staff or a cron caller."""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.errors import AppError
from src.cm_credits.application.service import CreditLedgerService
from src.cm_equipment.application.service import EquipmentLoanService
from src.cm_scheduling.application.recurring_service import RecurringSeriesService

logger = logging.getLogger(__name__)


@dataclass
class AllocationItem:
    user_id: int
    amount: int
    credit_type: str


@dataclass
class AllocationBatchResult:
    allocated: int = 0
    skipped: int = 0
    failed: list[dict[str, Any]] = field(default_factory=list)


class AdminJobsService:
    def __init__(
        self,
        ledger: CreditLedgerService | None = None,
        series: RecurringSeriesService | None = None,
        loans: EquipmentLoanService | None = None,
    ) -> None:
        self._ledger = ledger or CreditLedgerService()
        self._series = series or RecurringSeriesService()
        self._loans = loans or EquipmentLoanService()

    async def run_monthly_allocations(
        self, db: AsyncSession, ctx: RequestContext, items: list[AllocationItem]
    ) -> AllocationBatchResult:
        """Allocate each member's monthly credits.

        Every item runs in its own savepoint, so one bad row (unknown type,
        non-positive amount) is reported without undoing the others. Re-running
        the batch in the same month skips members that were already allocated.
        """
        ctx.require_staff("running monthly allocations")
        result = AllocationBatchResult()
        try:
            for item in items:
                try:
                    async with db.begin_nested():
                        tx = await self._ledger.allocate_monthly_credits_in_tx(
                            db, item.user_id, item.amount, item.credit_type
                        )
                except AppError as e:
                    logger.warning(
                        "Monthly allocation failed: user=%s type=%s: %s",
                        item.user_id, item.credit_type, e.message,
                    )
                    result.failed.append(
                        {"user_id": item.user_id, "credit_type": item.credit_type, "error": e.message}
                    )
                    continue
                if tx is None:
                    result.skipped += 1
                else:
                    result.allocated += 1
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Monthly allocation batch: allocated=%d skipped=%d failed=%d",
            result.allocated, result.skipped, len(result.failed),
        )
        return result

    async def run_recurring_instances(
        self, db: AsyncSession, ctx: RequestContext
    ) -> dict[str, int]:
        summary = await self._series.generate_future_instances(db, ctx)
        return {
            "series_processed": summary.series_processed,
            "instances_created": summary.instances_created,
            "series_completed": summary.series_completed,
            "series_failed": summary.series_failed,
        }

    async def run_overdue_loans(self, db: AsyncSession, ctx: RequestContext) -> dict[str, int]:
        marked = await self._loans.process_overdue_loans(db, ctx)
        return {"loans_marked_overdue": marked}

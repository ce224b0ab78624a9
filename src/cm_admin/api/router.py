"""Admin REST API: job triggers (staff only)."""

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_admin.application.service import AdminJobsService, AllocationItem
from src.cm_common.context import RequestContext
from src.cm_common.database import get_db_session
from src.cm_common.response import ApiResponse, success_response
from src.cm_gateway.dependencies import require_staff

router = APIRouter(prefix="/admin", tags=["admin"])
_service = AdminJobsService()


class AllocationEntry(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0)
    credit_type: str = "free_hours"


class MonthlyAllocationRequest(BaseModel):
    allocations: list[AllocationEntry] = Field(..., max_length=5000)


@router.post("/jobs/monthly-allocations")
async def monthly_allocations(
    body: MonthlyAllocationRequest,
    ctx: Annotated[RequestContext, Depends(require_staff)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    items = [AllocationItem(e.user_id, e.amount, e.credit_type) for e in body.allocations]
    result = await _service.run_monthly_allocations(db, ctx, items)
    return success_response(
        {"allocated": result.allocated, "skipped": result.skipped, "failed": result.failed}
    )


@router.post("/jobs/recurring-instances")
async def recurring_instances(
    ctx: Annotated[RequestContext, Depends(require_staff)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    return success_response(await _service.run_recurring_instances(db, ctx))


@router.post("/jobs/overdue-loans")
async def overdue_loans(
    ctx: Annotated[RequestContext, Depends(require_staff)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
) -> ApiResponse:
    return success_response(await _service.run_overdue_loans(db, ctx))

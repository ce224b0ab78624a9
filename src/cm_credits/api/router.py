"""cm_credits REST API: balances, history, promo codes, staff adjustments."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.database import get_db_session
from src.cm_common.response import ApiResponse, success_response
from src.cm_credits.application.schemas import (
    BalanceResponse,
    DeductCreditsRequest,
    GrantCreditsRequest,
    RedeemPromoCodeRequest,
    TransactionItem,
    UsageResponse,
)
from src.cm_credits.application.service import CreditLedgerService
from src.cm_gateway.dependencies import get_request_context

router = APIRouter(prefix="/credits", tags=["credits"])

_service = CreditLedgerService()


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


@router.get("/balances/{credit_type}")
async def get_balance(
    credit_type: str,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: int | None = Query(None, description="Staff only: another member's id"),
) -> ApiResponse:
    target = user_id if user_id is not None else ctx.actor_id
    balance = await _service.get_balance(db, ctx, target, credit_type)
    data = BalanceResponse(user_id=target, credit_type=credit_type, balance=balance)
    return _respond(request, data.model_dump())


@router.get("/usage/{credit_type}")
async def get_usage(
    credit_type: str,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: int | None = Query(None, description="Staff only: another member's id"),
) -> ApiResponse:
    target = user_id if user_id is not None else ctx.actor_id
    used = await _service.usage_this_month(db, ctx, target, credit_type)
    data = UsageResponse(user_id=target, credit_type=credit_type, used_this_month=used)
    return _respond(request, data.model_dump())


@router.get("/transactions")
async def list_transactions(
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    user_id: int | None = Query(None, description="Staff only: another member's id"),
    credit_type: str | None = Query(None, description="Filter by credit type"),
    cursor: str | None = Query(None, description="Pagination cursor (opaque Base64)"),
    limit: int = Query(20, ge=1, le=100, description="Items per page"),
) -> ApiResponse:
    target = user_id if user_id is not None else ctx.actor_id
    page = await _service.list_transactions(db, ctx, target, cursor, limit, credit_type)
    return _respond(request, page.model_dump())


@router.post("/promo-codes/redeem")
async def redeem_promo_code(
    body: RedeemPromoCodeRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _service.redeem_promo_code(db, ctx, body.code)
    return _respond(request, TransactionItem.from_transaction(tx).model_dump())


@router.post("/grants")
async def grant_credits(
    body: GrantCreditsRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _service.add_credits(
        db, ctx, body.user_id, body.amount, body.credit_type, body.description
    )
    return _respond(request, TransactionItem.from_transaction(tx).model_dump())


@router.post("/deductions")
async def deduct_credits(
    body: DeductCreditsRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    tx = await _service.deduct_credits(
        db, ctx, body.user_id, body.amount, body.credit_type, body.description
    )
    return _respond(request, TransactionItem.from_transaction(tx).model_dump())

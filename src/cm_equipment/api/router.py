"""cm_equipment REST API: loan requests, checkout, transitions, returns."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.database import get_db_session
from src.cm_common.response import ApiResponse, success_response
from src.cm_equipment.application.schemas import (
    CheckoutRequest,
    LoanResponse,
    MarkLostRequest,
    RequestLoanRequest,
    ReturnLoanRequest,
    TransitionRequest,
)
from src.cm_equipment.application.service import EquipmentLoanService
from src.cm_equipment.domain.models import EquipmentLoan
from src.cm_gateway.dependencies import get_request_context

router = APIRouter(prefix="/equipment", tags=["equipment"])

_service = EquipmentLoanService()


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


def _loan(loan: EquipmentLoan) -> dict:
    return LoanResponse.from_loan(loan).model_dump(mode="json")


# Static paths first so "/loans/mine" is not captured by "/loans/{loan_id}".


@router.get("/loans/mine")
async def my_loans(
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    active_only: bool = Query(True),
) -> ApiResponse:
    loans = await _service.loans_for_borrower(db, ctx, ctx.actor_id, active_only)
    return _respond(request, [_loan(loan) for loan in loans])


@router.get("/loans/{loan_id}")
async def get_loan(
    loan_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.get_loan(db, ctx, loan_id)
    return _respond(request, _loan(loan))


@router.post("/loans/{loan_id}/transitions")
async def transition_loan(
    loan_id: int,
    body: TransitionRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.apply_transition(
        db, ctx, loan_id, body.target, body.condition, body.damage_notes
    )
    return _respond(request, _loan(loan))


@router.post("/loans/{loan_id}/return")
async def return_loan(
    loan_id: int,
    body: ReturnLoanRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.return_loan(db, ctx, loan_id, body.condition_in, body.damage_notes)
    return _respond(request, _loan(loan))


@router.post("/loans/{loan_id}/lost")
async def mark_lost(
    loan_id: int,
    body: MarkLostRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.mark_lost(db, ctx, loan_id, body.notes)
    return _respond(request, _loan(loan))


@router.post("/{equipment_id}/loans")
async def request_loan(
    equipment_id: int,
    body: RequestLoanRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.request_loan(
        db,
        ctx,
        equipment_id,
        body.due_at,
        body.reserved_from,
        body.security_deposit_cents,
        body.rental_fee_cents,
        body.notes,
    )
    return _respond(request, _loan(loan))


@router.post("/{equipment_id}/checkout")
async def checkout(
    equipment_id: int,
    body: CheckoutRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    loan = await _service.checkout(
        db,
        ctx,
        equipment_id,
        body.borrower_id,
        body.due_at,
        body.condition_out,
        body.security_deposit_cents,
        body.rental_fee_cents,
        body.notes,
    )
    return _respond(request, _loan(loan))


@router.get("/{equipment_id}/loans")
async def loan_history(
    equipment_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int = Query(50, ge=1, le=200),
) -> ApiResponse:
    loans = await _service.loan_history(db, ctx, equipment_id, limit)
    return _respond(request, [_loan(loan) for loan in loans])

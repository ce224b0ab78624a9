"""cm_payments REST API: fee quotes for checkout pages."""

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from src.cm_common.money import cents_to_display
from src.cm_common.response import ApiResponse, success_response
from src.cm_payments.domain.fees import fee_breakdown, validate_fee_coverage

router = APIRouter(prefix="/payments", tags=["payments"])


class FeeQuoteResponse(BaseModel):
    base_cents: int
    fee_cents: int
    total_cents: int
    total_display: str
    covers_fees: bool
    covers_exactly: bool
    description: str


@router.get("/fee-quote")
async def fee_quote(
    request: Request,
    amount_cents: int = Query(..., ge=0, description="Amount the recipient should receive"),
    cover_fees: bool = Query(True, description="Payer covers the processing fee"),
) -> ApiResponse:
    quote = fee_breakdown(amount_cents, cover_fees)
    data = FeeQuoteResponse(
        base_cents=quote.base_cents,
        fee_cents=quote.fee_cents,
        total_cents=quote.total_cents,
        total_display=cents_to_display(quote.total_cents),
        covers_fees=quote.covers_fees,
        covers_exactly=(
            validate_fee_coverage(quote.base_cents, quote.total_cents)
            if quote.covers_fees
            else False
        ),
        description=quote.description,
    )
    resp = success_response(data.model_dump())
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp

"""cm_scheduling REST API: reservations and recurring series."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.context import RequestContext
from src.cm_common.database import get_db_session
from src.cm_common.response import ApiResponse, success_response
from src.cm_gateway.dependencies import get_request_context
from src.cm_scheduling.application.recurring_service import RecurringSeriesService
from src.cm_scheduling.application.reservation_service import ReservationService
from src.cm_scheduling.application.schemas import (
    CancelRequest,
    CreateReservationRequest,
    CreateSeriesRequest,
    ExtendSeriesRequest,
    PatternCheckResponse,
    RecordPaymentRequest,
    ReservationResponse,
    SeriesResponse,
    SeriesWithInstancesResponse,
    SkipInstanceRequest,
    ValidatePatternRequest,
)

router = APIRouter(tags=["scheduling"])

_reservations = ReservationService()
_series = RecurringSeriesService(reservations=_reservations)


def _respond(request: Request, data: object) -> ApiResponse:
    resp = success_response(data)
    resp.request_id = getattr(request.state, "request_id", resp.request_id)
    return resp


# ---------------------------------------------------------------------------
# Reservations
# ---------------------------------------------------------------------------


@router.post("/reservations")
async def create_reservation(
    body: CreateReservationRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    user_id = body.user_id if body.user_id is not None else ctx.actor_id
    reservation = await _reservations.create_reservation(
        db, ctx, user_id, body.starts_at, body.ends_at, body.notes
    )
    return _respond(request, ReservationResponse.from_reservation(reservation).model_dump(mode="json"))


@router.get("/reservations/{reservation_id}")
async def get_reservation(
    reservation_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    reservation = await _reservations.get_reservation(db, ctx, reservation_id)
    return _respond(request, ReservationResponse.from_reservation(reservation).model_dump(mode="json"))


@router.post("/reservations/{reservation_id}/confirm")
async def confirm_reservation(
    reservation_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    reservation = await _reservations.confirm_reservation(db, ctx, reservation_id)
    return _respond(request, ReservationResponse.from_reservation(reservation).model_dump(mode="json"))


@router.post("/reservations/{reservation_id}/cancel")
async def cancel_reservation(
    reservation_id: int,
    body: CancelRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    reservation = await _reservations.cancel_reservation(db, ctx, reservation_id, body.reason)
    return _respond(request, ReservationResponse.from_reservation(reservation).model_dump(mode="json"))


@router.post("/reservations/{reservation_id}/payment")
async def record_payment(
    reservation_id: int,
    body: RecordPaymentRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    reservation = await _reservations.record_payment(
        db, ctx, reservation_id, body.payment_status, body.payment_method, body.notes
    )
    return _respond(request, ReservationResponse.from_reservation(reservation).model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Recurring series
# ---------------------------------------------------------------------------


@router.post("/recurring-series")
async def create_series(
    body: CreateSeriesRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    user_id = body.user_id if body.user_id is not None else ctx.actor_id
    series, created = await _series.create_series(
        db,
        ctx,
        user_id,
        body.rule_string(),
        body.series_start_date,
        body.start_time,
        body.end_time,
        body.series_end_date,
        body.max_advance_days,
        body.notes,
    )
    data = SeriesWithInstancesResponse(
        series=SeriesResponse.from_series(series),
        created_instances=[ReservationResponse.from_reservation(r) for r in created],
    )
    return _respond(request, data.model_dump(mode="json"))


@router.post("/recurring-series/validate")
async def validate_pattern(
    body: ValidatePatternRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    rule = body.rule_string()
    conflicts = await _series.check_pattern_conflicts(
        db,
        rule,
        body.series_start_date,
        body.start_time,
        body.end_time,
        body.series_end_date,
    )
    return _respond(request, PatternCheckResponse.from_conflicts(rule, conflicts).model_dump())


@router.get("/recurring-series/{series_id}/instances")
async def upcoming_instances(
    series_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int = Query(10, ge=1, le=100),
) -> ApiResponse:
    instances = await _series.upcoming_instances(db, ctx, series_id, limit)
    return _respond(
        request,
        [ReservationResponse.from_reservation(r).model_dump(mode="json") for r in instances],
    )


@router.post("/recurring-series/{series_id}/generate")
async def generate_instances(
    series_id: int,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    created = await _series.generate_instances(db, ctx, series_id)
    return _respond(
        request,
        [ReservationResponse.from_reservation(r).model_dump(mode="json") for r in created],
    )


@router.post("/recurring-series/{series_id}/cancel")
async def cancel_series(
    series_id: int,
    body: CancelRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    series, cancelled = await _series.cancel_series(db, ctx, series_id, body.reason)
    data = {
        "series": SeriesResponse.from_series(series).model_dump(mode="json"),
        "cancelled_instances": cancelled,
    }
    return _respond(request, data)


@router.post("/recurring-series/{series_id}/skip")
async def skip_instance(
    series_id: int,
    body: SkipInstanceRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    skipped = await _series.skip_instance(db, ctx, series_id, body.instance_date, body.reason)
    data = ReservationResponse.from_reservation(skipped).model_dump(mode="json") if skipped else None
    return _respond(request, data)


@router.post("/recurring-series/{series_id}/extend")
async def extend_series(
    series_id: int,
    body: ExtendSeriesRequest,
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
) -> ApiResponse:
    series, created = await _series.extend_series(db, ctx, series_id, body.series_end_date)
    data = SeriesWithInstancesResponse(
        series=SeriesResponse.from_series(series),
        created_instances=[ReservationResponse.from_reservation(r) for r in created],
    )
    return _respond(request, data.model_dump(mode="json"))

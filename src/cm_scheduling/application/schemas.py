"""Pydantic schemas for cm_scheduling API."""

from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from src.cm_payments.domain.status import cost_display, requires_payment
from src.cm_scheduling.application.recurring_service import PatternConflict
from src.cm_scheduling.domain.models import RecurringSeries, Reservation
from src.cm_scheduling.domain.recurrence import RecurrenceRule, build_rule

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CreateReservationRequest(BaseModel):
    starts_at: datetime
    ends_at: datetime
    user_id: int | None = Field(None, description="Staff only: book for another member")
    notes: str | None = Field(None, max_length=1000)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class RecordPaymentRequest(BaseModel):
    payment_status: Literal["paid", "comped", "refunded"]
    payment_method: str | None = Field(None, max_length=50)
    notes: str | None = Field(None, max_length=1000)


class RulePattern(BaseModel):
    """Either a raw rule string or the form fields that build one."""

    recurrence_rule: str | None = None
    frequency: Literal["DAILY", "WEEKLY", "MONTHLY"] | None = None
    interval: int = Field(1, ge=1)
    by_day: list[str] | None = None
    by_month_day: int | None = Field(None, ge=1, le=31)

    @model_validator(mode="after")
    def _rule_or_fields(self) -> "RulePattern":
        if self.recurrence_rule is None and self.frequency is None:
            raise ValueError("recurrence_rule or frequency is required")
        return self

    def rule_string(self) -> str:
        if self.recurrence_rule is not None:
            return self.recurrence_rule
        assert self.frequency is not None
        return build_rule(self.frequency, self.interval, self.by_day, self.by_month_day)


class CreateSeriesRequest(RulePattern):
    series_start_date: date
    start_time: time
    end_time: time
    series_end_date: date | None = None
    max_advance_days: int | None = Field(None, ge=1, le=365)
    user_id: int | None = Field(None, description="Staff only: create for another member")
    notes: str | None = Field(None, max_length=1000)


class ValidatePatternRequest(RulePattern):
    series_start_date: date
    start_time: time
    end_time: time
    series_end_date: date | None = None


class SkipInstanceRequest(BaseModel):
    instance_date: date
    reason: str | None = Field(None, max_length=500)


class ExtendSeriesRequest(BaseModel):
    series_end_date: date | None = Field(None, description="None removes the end date")


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ReservationResponse(BaseModel):
    id: int
    user_id: int
    recurring_series_id: int | None
    instance_date: date | None
    reserved_at: datetime
    reserved_until: datetime
    status: str
    cancellation_reason: str | None
    cost_cents: int
    cost_display: str
    free_blocks_used: int
    payment_status: str
    requires_payment: bool

    @classmethod
    def from_reservation(cls, r: Reservation) -> "ReservationResponse":
        return cls(
            id=r.id,
            user_id=r.user_id,
            recurring_series_id=r.recurring_series_id,
            instance_date=r.instance_date,
            reserved_at=r.reserved_at,
            reserved_until=r.reserved_until,
            status=r.status,
            cancellation_reason=r.cancellation_reason,
            cost_cents=r.cost_cents,
            cost_display=cost_display(r.cost_cents),
            free_blocks_used=r.free_blocks_used,
            payment_status=r.payment_status,
            requires_payment=requires_payment(r.cost_cents, r.payment_status),
        )


class SeriesResponse(BaseModel):
    id: int
    user_id: int
    recurrence_rule: str
    description: str
    start_time: time
    end_time: time
    series_start_date: date
    series_end_date: date | None
    max_advance_days: int
    status: str

    @classmethod
    def from_series(cls, s: RecurringSeries) -> "SeriesResponse":
        return cls(
            id=s.id,
            user_id=s.user_id,
            recurrence_rule=s.recurrence_rule,
            description=RecurrenceRule.parse(s.recurrence_rule).describe(),
            start_time=s.start_time,
            end_time=s.end_time,
            series_start_date=s.series_start_date,
            series_end_date=s.series_end_date,
            max_advance_days=s.max_advance_days,
            status=s.status,
        )


class SeriesWithInstancesResponse(BaseModel):
    series: SeriesResponse
    created_instances: list[ReservationResponse]


class PatternCheckResponse(BaseModel):
    recurrence_rule: str
    description: str
    has_conflicts: bool
    conflicts: list[dict[str, object]]

    @classmethod
    def from_conflicts(cls, rule: str, conflicts: list[PatternConflict]) -> "PatternCheckResponse":
        parsed = RecurrenceRule.parse(rule)
        return cls(
            recurrence_rule=parsed.to_string(),
            description=parsed.describe(),
            has_conflicts=bool(conflicts),
            conflicts=[
                {
                    "date": c.instance_date.isoformat(),
                    "reservation_ids": c.conflicting_reservation_ids,
                }
                for c in conflicts
            ],
        )

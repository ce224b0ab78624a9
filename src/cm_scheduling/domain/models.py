"""Domain models for cm_scheduling: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import date, datetime, time

from src.cm_common.enums import ReservationStatus, SeriesStatus

ACTIVE_RESERVATION_STATUSES = (
    ReservationStatus.PENDING.value,
    ReservationStatus.CONFIRMED.value,
)

DEFAULT_RECURABLE_TYPE = "rehearsal_reservation"


@dataclass
class RecurringSeries:
    id: int
    user_id: int
    recurrence_rule: str
    start_time: time                 # local time of day
    end_time: time
    series_start_date: date
    series_end_date: date | None = None
    max_advance_days: int = 90
    status: str = SeriesStatus.ACTIVE.value
    recurable_type: str = DEFAULT_RECURABLE_TYPE
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == SeriesStatus.ACTIVE.value


@dataclass
class NewReservation:
    """Row to insert; the id is assigned by the database."""

    user_id: int
    reserved_at: datetime
    reserved_until: datetime
    status: str
    cost_cents: int = 0
    free_blocks_used: int = 0
    payment_status: str = "not_applicable"
    recurring_series_id: int | None = None
    instance_date: date | None = None
    cancellation_reason: str | None = None
    notes: str | None = None


@dataclass
class Reservation:
    id: int
    user_id: int
    reserved_at: datetime
    reserved_until: datetime
    status: str
    cost_cents: int = 0
    free_blocks_used: int = 0
    payment_status: str = "not_applicable"
    recurring_series_id: int | None = None
    instance_date: date | None = None
    cancellation_reason: str | None = None
    payment_method: str | None = None
    paid_at: datetime | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_RESERVATION_STATUSES

    @property
    def duration_minutes(self) -> int:
        return int((self.reserved_until - self.reserved_at).total_seconds() // 60)

"""RecurringSeriesService: expands recurring series into reservation instances.

Expansion is idempotent: dates that already hold an instance are skipped, and
every insert is additionally guarded by the (series, date) unique index so two
expanders racing on the same series cannot create duplicates. Each instance is
created inside its own savepoint; a scheduling conflict rolls back only that
instance and leaves a cancelled placeholder so the date is not retried.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_common.context import RequestContext
from src.cm_common.datetime_utils import combine_local, local_today, utc_now
from src.cm_common.enums import PaymentStatus, ReservationStatus, SeriesStatus
from src.cm_common.errors import (
    InvalidReservationWindowError,
    ReservationConflictError,
    SeriesNotActiveError,
    SeriesNotFoundError,
)
from src.cm_scheduling.application.reservation_service import (
    ReservationService,
    validate_window,
)
from src.cm_scheduling.domain.expansion import plan_instance_dates
from src.cm_scheduling.domain.models import (
    ACTIVE_RESERVATION_STATUSES,
    NewReservation,
    RecurringSeries,
    Reservation,
)
from src.cm_scheduling.domain.recurrence import RecurrenceRule
from src.cm_scheduling.domain.repository import SeriesRepositoryProtocol
from src.cm_scheduling.infrastructure.persistence import SeriesRepository

logger = logging.getLogger(__name__)

CONFLICT_REASON = "Scheduling conflict"
SKIPPED_REASON = "Manually skipped"
SERIES_CANCELLED_REASON = "Recurring series cancelled"
PATTERN_PREVIEW_OCCURRENCES = 8
PATTERN_PREVIEW_MONTHS = 3


@dataclass
class PatternConflict:
    instance_date: date
    conflicting_reservation_ids: list[int] = field(default_factory=list)


@dataclass
class FutureGenerationSummary:
    series_processed: int = 0
    instances_created: int = 0
    series_completed: int = 0
    series_failed: int = 0


class RecurringSeriesService:
    def __init__(
        self,
        series_repo: SeriesRepositoryProtocol | None = None,
        reservations: ReservationService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._series_repo: SeriesRepositoryProtocol = series_repo or SeriesRepository()
        self._reservations = reservations or ReservationService(clock=clock)
        self._clock = clock

    # ------------------------------------------------------------------
    # Expansion
    # ------------------------------------------------------------------

    async def _record_placeholder(
        self, db: AsyncSession, series: RecurringSeries, day: date, reason: str
    ) -> Reservation | None:
        async with db.begin_nested():
            return await self._reservations.repo.insert(
                db,
                NewReservation(
                    user_id=series.user_id,
                    reserved_at=combine_local(day, series.start_time),
                    reserved_until=combine_local(day, series.end_time),
                    status=ReservationStatus.CANCELLED.value,
                    cancellation_reason=reason,
                    payment_status=PaymentStatus.NOT_APPLICABLE.value,
                    recurring_series_id=series.id,
                    instance_date=day,
                ),
            )

    async def generate_instances_in_tx(
        self, db: AsyncSession, series: RecurringSeries
    ) -> list[Reservation]:
        """Create the missing instances up to the horizon; returns only new active ones."""
        today = local_today(self._clock())
        existing = await self._reservations.repo.instance_dates(db, series.id)
        created: list[Reservation] = []
        for day in plan_instance_dates(series, today, existing):
            try:
                async with db.begin_nested():
                    reservation = await self._reservations.create_reservation_in_tx(
                        db,
                        series.user_id,
                        combine_local(day, series.start_time),
                        combine_local(day, series.end_time),
                        notes=series.notes,
                        recurring_series_id=series.id,
                        instance_date=day,
                        status=ReservationStatus.PENDING.value,
                    )
            except ReservationConflictError:
                logger.info("Series %d: conflict on %s, recording placeholder", series.id, day)
                await self._record_placeholder(db, series, day, CONFLICT_REASON)
                continue
            if reservation is None:
                # Another expander created this date first
                logger.debug("Series %d: instance %s already exists", series.id, day)
                continue
            created.append(reservation)

        logger.info("Series %d: generated %d instance(s)", series.id, len(created))
        return created

    async def _load_locked(self, db: AsyncSession, series_id: int) -> RecurringSeries:
        series = await self._series_repo.lock_series(db, series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        return series

    async def generate_instances(
        self, db: AsyncSession, ctx: RequestContext, series_id: int
    ) -> list[Reservation]:
        try:
            series = await self._load_locked(db, series_id)
            ctx.require_self_or_staff(series.user_id, "generating series instances")
            if not series.is_active:
                raise SeriesNotActiveError(series_id, series.status)
            created = await self.generate_instances_in_tx(db, series)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return created

    async def generate_future_instances(
        self, db: AsyncSession, ctx: RequestContext
    ) -> FutureGenerationSummary:
        """Scheduled job: top up every active series; close out the ones that ended."""
        ctx.require_staff("generating future instances")
        today = local_today(self._clock())
        summary = FutureGenerationSummary()
        for listed in await self._series_repo.list_active(db):
            try:
                series = await self._load_locked(db, listed.id)
                if not series.is_active:
                    await db.rollback()
                    continue
                if series.series_end_date is not None and series.series_end_date < today:
                    await self._series_repo.update_status(
                        db, series.id, SeriesStatus.COMPLETED.value
                    )
                    summary.series_completed += 1
                else:
                    summary.instances_created += len(
                        await self.generate_instances_in_tx(db, series)
                    )
                await db.commit()
                summary.series_processed += 1
            except Exception:
                await db.rollback()
                logger.exception("Series %d: instance generation failed", listed.id)
                summary.series_failed += 1
        logger.info(
            "Future instance generation: processed=%d created=%d completed=%d failed=%d",
            summary.series_processed,
            summary.instances_created,
            summary.series_completed,
            summary.series_failed,
        )
        return summary

    # ------------------------------------------------------------------
    # Series lifecycle
    # ------------------------------------------------------------------

    async def create_series(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        recurrence_rule: str,
        series_start_date: date,
        start_time: time,
        end_time: time,
        series_end_date: date | None = None,
        max_advance_days: int | None = None,
        notes: str | None = None,
    ) -> tuple[RecurringSeries, list[Reservation]]:
        ctx.require_self_or_staff(user_id, "creating a recurring series")
        rule = RecurrenceRule.parse(recurrence_rule)
        if end_time <= start_time:
            raise InvalidReservationWindowError("end time must be after start time")
        # Validates duration bounds before anything is written
        validate_window(
            combine_local(series_start_date, start_time),
            combine_local(series_start_date, end_time),
        )
        if series_end_date is not None and series_end_date < series_start_date:
            raise InvalidReservationWindowError("series end date is before its start date")
        advance = max_advance_days or settings.DEFAULT_MAX_ADVANCE_DAYS
        if advance < 1:
            raise InvalidReservationWindowError("max_advance_days must be >= 1")

        try:
            series = await self._series_repo.insert_series(
                db,
                user_id,
                rule.to_string(),
                start_time,
                end_time,
                series_start_date,
                series_end_date,
                advance,
                notes,
            )
            created = await self.generate_instances_in_tx(db, series)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Recurring series created: id=%d user=%s rule=%s", series.id, user_id, series.recurrence_rule
        )
        return series, created

    async def get_series(
        self, db: AsyncSession, ctx: RequestContext, series_id: int
    ) -> RecurringSeries:
        series = await self._series_repo.get_series(db, series_id)
        if series is None:
            raise SeriesNotFoundError(series_id)
        ctx.require_self_or_staff(series.user_id, "viewing a recurring series")
        return series

    async def cancel_series(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        series_id: int,
        reason: str | None = None,
    ) -> tuple[RecurringSeries, int]:
        """Cancel the series and every future active instance; returns (series, cancelled count)."""
        try:
            series = await self._load_locked(db, series_id)
            ctx.require_self_or_staff(series.user_id, "cancelling a recurring series")
            if not series.is_active:
                raise SeriesNotActiveError(series_id, series.status)
            updated = await self._series_repo.update_status(
                db, series_id, SeriesStatus.CANCELLED.value
            )
            future = await self._reservations.repo.list_instances(
                db, series_id, self._clock(), list(ACTIVE_RESERVATION_STATUSES), None
            )
            for instance in future:
                await self._reservations.cancel_in_tx(
                    db, instance, reason or SERIES_CANCELLED_REASON
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Recurring series cancelled: id=%d instances=%d", series_id, len(future))
        return updated, len(future)

    async def skip_instance(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        series_id: int,
        instance_date: date,
        reason: str | None = None,
    ) -> Reservation | None:
        """Cancel one date of the series, or block it if not generated yet."""
        try:
            series = await self._load_locked(db, series_id)
            ctx.require_self_or_staff(series.user_id, "skipping a series instance")
            instance = await self._reservations.repo.get_instance(db, series_id, instance_date)
            if instance is None:
                skipped = await self._record_placeholder(
                    db, series, instance_date, reason or SKIPPED_REASON
                )
            elif instance.is_active:
                skipped = await self._reservations.cancel_in_tx(
                    db, instance, reason or SKIPPED_REASON
                )
            else:
                skipped = instance
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return skipped

    async def extend_series(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        series_id: int,
        series_end_date: date | None,
    ) -> tuple[RecurringSeries, list[Reservation]]:
        try:
            series = await self._load_locked(db, series_id)
            ctx.require_self_or_staff(series.user_id, "extending a recurring series")
            if not series.is_active:
                raise SeriesNotActiveError(series_id, series.status)
            if series_end_date is not None and series_end_date < series.series_start_date:
                raise InvalidReservationWindowError("series end date is before its start date")
            updated = await self._series_repo.update_end_date(db, series_id, series_end_date)
            created = await self.generate_instances_in_tx(db, updated)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return updated, created

    async def upcoming_instances(
        self, db: AsyncSession, ctx: RequestContext, series_id: int, limit: int = 10
    ) -> list[Reservation]:
        await self.get_series(db, ctx, series_id)
        return await self._reservations.repo.list_instances(
            db, series_id, self._clock(), list(ACTIVE_RESERVATION_STATUSES), limit
        )

    async def check_pattern_conflicts(
        self,
        db: AsyncSession,
        recurrence_rule: str,
        series_start_date: date,
        start_time: time,
        end_time: time,
        series_end_date: date | None = None,
        occurrences: int = PATTERN_PREVIEW_OCCURRENCES,
    ) -> list[PatternConflict]:
        """Preview the first occurrences of a pattern against existing bookings."""
        rule = RecurrenceRule.parse(recurrence_rule)
        if end_time <= start_time:
            raise InvalidReservationWindowError("end time must be after start time")
        window_end = series_end_date or series_start_date + relativedelta(
            months=PATTERN_PREVIEW_MONTHS
        )
        dates = rule.occurrences(series_start_date, window_end, anchor=series_start_date)
        conflicts: list[PatternConflict] = []
        for day in dates[:occurrences]:
            overlapping = await self._reservations.repo.find_overlapping(
                db, combine_local(day, start_time), combine_local(day, end_time)
            )
            if overlapping:
                conflicts.append(PatternConflict(day, [r.id for r in overlapping]))
        return conflicts

"""SeriesRepository / ReservationRepository: raw SQL implementations.

Two database constraints back the scheduling invariants:

  uq_reservations_series_instance   one instance per (series, date); inserts use
                                    ON CONFLICT DO NOTHING and report None
  ex_reservations_no_overlap        no two active reservations overlap; a
                                    violation surfaces as ReservationConflictError

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

from datetime import date, datetime, time

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.errors import InternalError, ReservationConflictError
from src.cm_scheduling.domain.models import (
    ACTIVE_RESERVATION_STATUSES,
    NewReservation,
    RecurringSeries,
    Reservation,
)

# ---------------------------------------------------------------------------
# SQL: recurring_series
# ---------------------------------------------------------------------------

_SERIES_COLUMNS = """
    id, user_id, recurable_type, recurrence_rule, start_time, end_time,
    series_start_date, series_end_date, max_advance_days, status, notes,
    created_at, updated_at
"""

_INSERT_SERIES_SQL = text(f"""
    INSERT INTO recurring_series
        (user_id, recurrence_rule, start_time, end_time,
         series_start_date, series_end_date, max_advance_days, notes)
    VALUES
        (:user_id, :recurrence_rule, :start_time, :end_time,
         :series_start_date, :series_end_date, :max_advance_days, :notes)
    RETURNING {_SERIES_COLUMNS}
""")

_GET_SERIES_SQL = text(f"SELECT {_SERIES_COLUMNS} FROM recurring_series WHERE id = :id")

_LOCK_SERIES_SQL = text(
    f"SELECT {_SERIES_COLUMNS} FROM recurring_series WHERE id = :id FOR UPDATE"
)

_UPDATE_SERIES_STATUS_SQL = text(f"""
    UPDATE recurring_series
    SET status = :status, updated_at = NOW()
    WHERE id = :id
    RETURNING {_SERIES_COLUMNS}
""")

_UPDATE_SERIES_END_DATE_SQL = text(f"""
    UPDATE recurring_series
    SET series_end_date = :series_end_date, updated_at = NOW()
    WHERE id = :id
    RETURNING {_SERIES_COLUMNS}
""")

_LIST_ACTIVE_SERIES_SQL = text(f"""
    SELECT {_SERIES_COLUMNS}
    FROM recurring_series
    WHERE status = 'active'
    ORDER BY id
""")

# ---------------------------------------------------------------------------
# SQL: reservations
# ---------------------------------------------------------------------------

_RESERVATION_COLUMNS = """
    id, user_id, recurring_series_id, instance_date, reserved_at, reserved_until,
    status, cancellation_reason, cost_cents, free_blocks_used, payment_status,
    payment_method, paid_at, notes, created_at, updated_at
"""

_INSERT_RESERVATION_SQL = text(f"""
    INSERT INTO reservations
        (user_id, recurring_series_id, instance_date, reserved_at, reserved_until,
         status, cancellation_reason, cost_cents, free_blocks_used, payment_status, notes)
    VALUES
        (:user_id, :recurring_series_id, :instance_date, :reserved_at, :reserved_until,
         :status, :cancellation_reason, :cost_cents, :free_blocks_used, :payment_status, :notes)
    ON CONFLICT (recurring_series_id, instance_date)
        WHERE recurring_series_id IS NOT NULL
        DO NOTHING
    RETURNING {_RESERVATION_COLUMNS}
""")

_GET_RESERVATION_SQL = text(f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id = :id")

_LOCK_RESERVATION_SQL = text(
    f"SELECT {_RESERVATION_COLUMNS} FROM reservations WHERE id = :id FOR UPDATE"
)

# Half-open intervals: back-to-back bookings do not overlap
_FIND_OVERLAPPING_SQL = text(f"""
    SELECT {_RESERVATION_COLUMNS}
    FROM reservations
    WHERE status = ANY(CAST(:statuses AS VARCHAR[]))
      AND reserved_at < :ends_at
      AND reserved_until > :starts_at
      AND (CAST(:exclude_id AS BIGINT) IS NULL OR id <> :exclude_id)
    ORDER BY reserved_at
""")

_INSTANCE_DATES_SQL = text("""
    SELECT instance_date
    FROM reservations
    WHERE recurring_series_id = :series_id AND instance_date IS NOT NULL
""")

_GET_INSTANCE_SQL = text(f"""
    SELECT {_RESERVATION_COLUMNS}
    FROM reservations
    WHERE recurring_series_id = :series_id AND instance_date = :instance_date
""")

_LIST_INSTANCES_SQL = text(f"""
    SELECT {_RESERVATION_COLUMNS}
    FROM reservations
    WHERE recurring_series_id = :series_id
      AND (CAST(:starts_after AS TIMESTAMPTZ) IS NULL OR reserved_at > :starts_after)
      AND (CAST(:statuses AS VARCHAR[]) IS NULL OR status = ANY(CAST(:statuses AS VARCHAR[])))
    ORDER BY reserved_at
    LIMIT :limit
""")

_UPDATE_RESERVATION_STATUS_SQL = text(f"""
    UPDATE reservations
    SET status = :status,
        cancellation_reason = COALESCE(:cancellation_reason, cancellation_reason),
        updated_at = NOW()
    WHERE id = :id
    RETURNING {_RESERVATION_COLUMNS}
""")

_UPDATE_RESERVATION_PAYMENT_SQL = text(f"""
    UPDATE reservations
    SET payment_status = :payment_status,
        payment_method = :payment_method,
        paid_at = :paid_at,
        notes = COALESCE(:notes, notes),
        updated_at = NOW()
    WHERE id = :id
    RETURNING {_RESERVATION_COLUMNS}
""")


def _row_to_series(row: object) -> RecurringSeries:
    return RecurringSeries(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        recurable_type=row.recurable_type,  # type: ignore[attr-defined]
        recurrence_rule=row.recurrence_rule,  # type: ignore[attr-defined]
        start_time=row.start_time,  # type: ignore[attr-defined]
        end_time=row.end_time,  # type: ignore[attr-defined]
        series_start_date=row.series_start_date,  # type: ignore[attr-defined]
        series_end_date=row.series_end_date,  # type: ignore[attr-defined]
        max_advance_days=row.max_advance_days,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        notes=row.notes,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_reservation(row: object) -> Reservation:
    return Reservation(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        recurring_series_id=row.recurring_series_id,  # type: ignore[attr-defined]
        instance_date=row.instance_date,  # type: ignore[attr-defined]
        reserved_at=row.reserved_at,  # type: ignore[attr-defined]
        reserved_until=row.reserved_until,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        cancellation_reason=row.cancellation_reason,  # type: ignore[attr-defined]
        cost_cents=row.cost_cents,  # type: ignore[attr-defined]
        free_blocks_used=row.free_blocks_used,  # type: ignore[attr-defined]
        payment_status=row.payment_status,  # type: ignore[attr-defined]
        payment_method=row.payment_method,  # type: ignore[attr-defined]
        paid_at=row.paid_at,  # type: ignore[attr-defined]
        notes=row.notes,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class SeriesRepository:
    """Concrete repository for recurring_series."""

    async def insert_series(
        self,
        db: AsyncSession,
        user_id: int,
        recurrence_rule: str,
        start_time: time,
        end_time: time,
        series_start_date: date,
        series_end_date: date | None,
        max_advance_days: int,
        notes: str | None,
    ) -> RecurringSeries:
        result = await db.execute(
            _INSERT_SERIES_SQL,
            {
                "user_id": user_id,
                "recurrence_rule": recurrence_rule,
                "start_time": start_time,
                "end_time": end_time,
                "series_start_date": series_start_date,
                "series_end_date": series_end_date,
                "max_advance_days": max_advance_days,
                "notes": notes,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("recurring_series insert returned no rows")
        return _row_to_series(row)

    async def get_series(self, db: AsyncSession, series_id: int) -> RecurringSeries | None:
        row = (await db.execute(_GET_SERIES_SQL, {"id": series_id})).fetchone()
        return _row_to_series(row) if row else None

    async def lock_series(self, db: AsyncSession, series_id: int) -> RecurringSeries | None:
        row = (await db.execute(_LOCK_SERIES_SQL, {"id": series_id})).fetchone()
        return _row_to_series(row) if row else None

    async def update_status(
        self, db: AsyncSession, series_id: int, status: str
    ) -> RecurringSeries:
        result = await db.execute(_UPDATE_SERIES_STATUS_SQL, {"id": series_id, "status": status})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Recurring series disappeared: {series_id}")
        return _row_to_series(row)

    async def update_end_date(
        self, db: AsyncSession, series_id: int, series_end_date: date | None
    ) -> RecurringSeries:
        result = await db.execute(
            _UPDATE_SERIES_END_DATE_SQL,
            {"id": series_id, "series_end_date": series_end_date},
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Recurring series disappeared: {series_id}")
        return _row_to_series(row)

    async def list_active(self, db: AsyncSession) -> list[RecurringSeries]:
        result = await db.execute(_LIST_ACTIVE_SERIES_SQL)
        return [_row_to_series(row) for row in result.fetchall()]


class ReservationRepository:
    """Concrete repository for reservations."""

    async def insert(
        self, db: AsyncSession, reservation: NewReservation
    ) -> Reservation | None:
        try:
            result = await db.execute(
                _INSERT_RESERVATION_SQL,
                {
                    "user_id": reservation.user_id,
                    "recurring_series_id": reservation.recurring_series_id,
                    "instance_date": reservation.instance_date,
                    "reserved_at": reservation.reserved_at,
                    "reserved_until": reservation.reserved_until,
                    "status": reservation.status,
                    "cancellation_reason": reservation.cancellation_reason,
                    "cost_cents": reservation.cost_cents,
                    "free_blocks_used": reservation.free_blocks_used,
                    "payment_status": reservation.payment_status,
                    "notes": reservation.notes,
                },
            )
        except IntegrityError as exc:
            # Per-series uniqueness is absorbed by ON CONFLICT above
            if "ex_reservations_no_overlap" in str(exc.orig):
                raise ReservationConflictError() from exc
            raise
        row = result.fetchone()
        return _row_to_reservation(row) if row else None

    async def get(self, db: AsyncSession, reservation_id: int) -> Reservation | None:
        row = (await db.execute(_GET_RESERVATION_SQL, {"id": reservation_id})).fetchone()
        return _row_to_reservation(row) if row else None

    async def lock(self, db: AsyncSession, reservation_id: int) -> Reservation | None:
        row = (await db.execute(_LOCK_RESERVATION_SQL, {"id": reservation_id})).fetchone()
        return _row_to_reservation(row) if row else None

    async def find_overlapping(
        self,
        db: AsyncSession,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]:
        result = await db.execute(
            _FIND_OVERLAPPING_SQL,
            {
                "statuses": list(ACTIVE_RESERVATION_STATUSES),
                "starts_at": starts_at,
                "ends_at": ends_at,
                "exclude_id": exclude_id,
            },
        )
        return [_row_to_reservation(row) for row in result.fetchall()]

    async def instance_dates(self, db: AsyncSession, series_id: int) -> set[date]:
        result = await db.execute(_INSTANCE_DATES_SQL, {"series_id": series_id})
        return {row.instance_date for row in result.fetchall()}

    async def get_instance(
        self, db: AsyncSession, series_id: int, instance_date: date
    ) -> Reservation | None:
        result = await db.execute(
            _GET_INSTANCE_SQL, {"series_id": series_id, "instance_date": instance_date}
        )
        row = result.fetchone()
        return _row_to_reservation(row) if row else None

    async def list_instances(
        self,
        db: AsyncSession,
        series_id: int,
        starts_after: datetime | None,
        statuses: list[str] | None,
        limit: int | None,
    ) -> list[Reservation]:
        result = await db.execute(
            _LIST_INSTANCES_SQL,
            {
                "series_id": series_id,
                "starts_after": starts_after,
                "statuses": statuses,
                "limit": limit,
            },
        )
        return [_row_to_reservation(row) for row in result.fetchall()]

    async def update_status(
        self,
        db: AsyncSession,
        reservation_id: int,
        status: str,
        cancellation_reason: str | None = None,
    ) -> Reservation:
        result = await db.execute(
            _UPDATE_RESERVATION_STATUS_SQL,
            {"id": reservation_id, "status": status, "cancellation_reason": cancellation_reason},
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Reservation disappeared: {reservation_id}")
        return _row_to_reservation(row)

    async def update_payment(
        self,
        db: AsyncSession,
        reservation_id: int,
        payment_status: str,
        payment_method: str | None,
        paid_at: datetime | None,
        notes: str | None,
    ) -> Reservation:
        result = await db.execute(
            _UPDATE_RESERVATION_PAYMENT_SQL,
            {
                "id": reservation_id,
                "payment_status": payment_status,
                "payment_method": payment_method,
                "paid_at": paid_at,
                "notes": notes,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Reservation disappeared: {reservation_id}")
        return _row_to_reservation(row)

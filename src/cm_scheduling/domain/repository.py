"""Repository Protocols: dependency inversion for testability.

Unit tests inject in-memory fakes that conform to these Protocols.
Infrastructure layer provides the real implementation.
"""

from datetime import date, datetime, time
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_scheduling.domain.models import NewReservation, RecurringSeries, Reservation


class SeriesRepositoryProtocol(Protocol):
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
    ) -> RecurringSeries: ...

    async def get_series(self, db: AsyncSession, series_id: int) -> RecurringSeries | None: ...

    async def lock_series(self, db: AsyncSession, series_id: int) -> RecurringSeries | None: ...

    async def update_status(
        self, db: AsyncSession, series_id: int, status: str
    ) -> RecurringSeries: ...

    async def update_end_date(
        self, db: AsyncSession, series_id: int, series_end_date: date | None
    ) -> RecurringSeries: ...

    async def list_active(self, db: AsyncSession) -> list[RecurringSeries]: ...


class ReservationRepositoryProtocol(Protocol):
    async def insert(
        self, db: AsyncSession, reservation: NewReservation
    ) -> Reservation | None:
        """None when the series already has an instance on that date.

        Raises ReservationConflictError when the slot overlaps an active reservation.
        """
        ...

    async def get(self, db: AsyncSession, reservation_id: int) -> Reservation | None: ...

    async def lock(self, db: AsyncSession, reservation_id: int) -> Reservation | None: ...

    async def find_overlapping(
        self,
        db: AsyncSession,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Reservation]: ...

    async def instance_dates(self, db: AsyncSession, series_id: int) -> set[date]: ...

    async def get_instance(
        self, db: AsyncSession, series_id: int, instance_date: date
    ) -> Reservation | None: ...

    async def list_instances(
        self,
        db: AsyncSession,
        series_id: int,
        starts_after: datetime | None,
        statuses: list[str] | None,
        limit: int | None,
    ) -> list[Reservation]: ...

    async def update_status(
        self,
        db: AsyncSession,
        reservation_id: int,
        status: str,
        cancellation_reason: str | None = None,
    ) -> Reservation: ...

    async def update_payment(
        self,
        db: AsyncSession,
        reservation_id: int,
        payment_status: str,
        payment_method: str | None,
        paid_at: datetime | None,
        notes: str | None,
    ) -> Reservation: ...

"""ReservationService: rehearsal bookings and their credit usage.

Creating a reservation prices it against the member's free-hour balance and
deducts the free blocks it uses in the same transaction; cancelling refunds
them. The recurring expander feeds its instances through the same path.
"""

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.cm_common.context import RequestContext
from src.cm_common.datetime_utils import utc_now
from src.cm_common.enums import CreditSource, PaymentStatus, ReservationStatus
from src.cm_common.errors import (
    InternalError,
    InvalidReservationStatusError,
    InvalidReservationWindowError,
    ReservationConflictError,
    ReservationNotFoundError,
)
from src.cm_credits.application.service import CreditLedgerService
from src.cm_scheduling.domain.models import NewReservation, Reservation
from src.cm_scheduling.domain.pricing import quote
from src.cm_scheduling.domain.repository import ReservationRepositoryProtocol
from src.cm_scheduling.infrastructure.persistence import ReservationRepository

logger = logging.getLogger(__name__)

PAYMENT_UPDATE_STATUSES = (
    PaymentStatus.PAID.value,
    PaymentStatus.COMPED.value,
    PaymentStatus.REFUNDED.value,
)


def validate_window(starts_at: datetime, ends_at: datetime) -> int:
    """Return the duration in minutes or raise InvalidReservationWindowError."""
    if starts_at.tzinfo is None or ends_at.tzinfo is None:
        raise InvalidReservationWindowError("timestamps must carry a timezone")
    # Same-zone subtraction ignores DST shifts
    starts_utc = starts_at.astimezone(UTC)
    ends_utc = ends_at.astimezone(UTC)
    if ends_utc <= starts_utc:
        raise InvalidReservationWindowError("end must be after start")
    minutes = int((ends_utc - starts_utc).total_seconds() // 60)
    if minutes < settings.MIN_RESERVATION_MINUTES:
        raise InvalidReservationWindowError(
            f"minimum duration is {settings.MIN_RESERVATION_MINUTES} minutes"
        )
    if minutes > settings.MAX_RESERVATION_MINUTES:
        raise InvalidReservationWindowError(
            f"maximum duration is {settings.MAX_RESERVATION_MINUTES} minutes"
        )
    return minutes


class ReservationService:
    def __init__(
        self,
        repo: ReservationRepositoryProtocol | None = None,
        ledger: CreditLedgerService | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo: ReservationRepositoryProtocol = repo or ReservationRepository()
        self._ledger = ledger or CreditLedgerService(clock=clock)
        self._clock = clock

    @property
    def repo(self) -> ReservationRepositoryProtocol:
        return self._repo

    # ------------------------------------------------------------------
    # Inside the caller's transaction
    # ------------------------------------------------------------------

    async def create_reservation_in_tx(
        self,
        db: AsyncSession,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        notes: str | None = None,
        recurring_series_id: int | None = None,
        instance_date: date | None = None,
        status: str | None = None,
    ) -> Reservation | None:
        """Price, insert and charge free blocks.

        Returns None only for series instances whose date is already taken.
        """
        minutes = validate_window(starts_at, ends_at)
        if await self._repo.find_overlapping(db, starts_at, ends_at):
            raise ReservationConflictError()

        credit_type = settings.RESERVATION_CREDIT_TYPE
        balance = await self._ledger.balance_of(db, user_id, credit_type)
        price = quote(minutes, balance)

        if status is None:
            auto_confirm = starts_at - self._clock() < timedelta(days=settings.AUTO_CONFIRM_DAYS)
            status = (
                ReservationStatus.CONFIRMED.value if auto_confirm
                else ReservationStatus.PENDING.value
            )

        reservation = await self._repo.insert(
            db,
            NewReservation(
                user_id=user_id,
                reserved_at=starts_at,
                reserved_until=ends_at,
                status=status,
                cost_cents=price.cost_cents,
                free_blocks_used=price.free_blocks,
                payment_status=(
                    PaymentStatus.NOT_APPLICABLE.value if price.cost_cents == 0
                    else PaymentStatus.UNPAID.value
                ),
                recurring_series_id=recurring_series_id,
                instance_date=instance_date,
                notes=notes,
            ),
        )
        if reservation is None:
            return None

        if price.free_blocks > 0:
            await self._ledger.deduct_credits_in_tx(
                db,
                user_id,
                price.free_blocks,
                CreditSource.RESERVATION.value,
                credit_type,
                source_id=reservation.id,
                description=f"Reservation #{reservation.id}",
            )
        logger.info(
            "Reservation created: id=%d user=%s status=%s free_blocks=%d cost=%d",
            reservation.id, user_id, reservation.status, price.free_blocks, price.cost_cents,
        )
        return reservation

    async def cancel_in_tx(
        self, db: AsyncSession, reservation: Reservation, reason: str | None
    ) -> Reservation:
        if not reservation.is_active:
            raise InvalidReservationStatusError(reservation.id, reservation.status, "cancelled")
        cancelled = await self._repo.update_status(
            db, reservation.id, ReservationStatus.CANCELLED.value, reason
        )
        if reservation.free_blocks_used > 0:
            await self._ledger.add_credits_in_tx(
                db,
                reservation.user_id,
                reservation.free_blocks_used,
                CreditSource.RESERVATION_CANCELLATION.value,
                settings.RESERVATION_CREDIT_TYPE,
                source_id=reservation.id,
                description=f"Refund for cancelled reservation #{reservation.id}",
            )
        return cancelled

    async def _load(self, db: AsyncSession, reservation_id: int, lock: bool) -> Reservation:
        reservation = await (
            self._repo.lock(db, reservation_id) if lock else self._repo.get(db, reservation_id)
        )
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    # ------------------------------------------------------------------
    # Public commands
    # ------------------------------------------------------------------

    async def get_reservation(
        self, db: AsyncSession, ctx: RequestContext, reservation_id: int
    ) -> Reservation:
        reservation = await self._load(db, reservation_id, lock=False)
        ctx.require_self_or_staff(reservation.user_id, "viewing a reservation")
        return reservation

    async def create_reservation(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        user_id: int,
        starts_at: datetime,
        ends_at: datetime,
        notes: str | None = None,
    ) -> Reservation:
        ctx.require_self_or_staff(user_id, "booking a reservation")
        validate_window(starts_at, ends_at)
        if starts_at <= self._clock():
            raise InvalidReservationWindowError("start must be in the future")
        try:
            reservation = await self.create_reservation_in_tx(
                db, user_id, starts_at, ends_at, notes
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        if reservation is None:
            raise InternalError("Reservation insert returned no rows")
        return reservation

    async def confirm_reservation(
        self, db: AsyncSession, ctx: RequestContext, reservation_id: int
    ) -> Reservation:
        try:
            reservation = await self._load(db, reservation_id, lock=True)
            ctx.require_self_or_staff(reservation.user_id, "confirming a reservation")
            if reservation.status != ReservationStatus.PENDING.value:
                raise InvalidReservationStatusError(
                    reservation_id, reservation.status, "confirmed"
                )
            confirmed = await self._repo.update_status(
                db, reservation_id, ReservationStatus.CONFIRMED.value
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return confirmed

    async def cancel_reservation(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        reservation_id: int,
        reason: str | None = None,
    ) -> Reservation:
        try:
            reservation = await self._load(db, reservation_id, lock=True)
            ctx.require_self_or_staff(reservation.user_id, "cancelling a reservation")
            cancelled = await self.cancel_in_tx(db, reservation, reason)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info("Reservation cancelled: id=%d by=%s", reservation_id, ctx.actor_id)
        return cancelled

    async def record_payment(
        self,
        db: AsyncSession,
        ctx: RequestContext,
        reservation_id: int,
        payment_status: str,
        payment_method: str | None = None,
        notes: str | None = None,
    ) -> Reservation:
        ctx.require_staff("recording a payment")
        if payment_status not in PAYMENT_UPDATE_STATUSES:
            raise InvalidReservationStatusError(reservation_id, payment_status, "recorded")
        try:
            reservation = await self._load(db, reservation_id, lock=True)
            if (
                payment_status == PaymentStatus.REFUNDED.value
                and reservation.payment_status != PaymentStatus.PAID.value
            ):
                raise InvalidReservationStatusError(
                    reservation_id, reservation.payment_status, "refunded"
                )
            paid_at = self._clock() if payment_status == PaymentStatus.PAID.value else reservation.paid_at
            updated = await self._repo.update_payment(
                db, reservation_id, payment_status, payment_method, paid_at, notes
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return updated

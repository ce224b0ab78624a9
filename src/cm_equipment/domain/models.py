"""Domain models for cm_equipment: pure dataclasses, no SQLAlchemy dependency."""

import math
from dataclasses import dataclass
from datetime import datetime

from src.cm_common.enums import EquipmentStatus
from src.cm_equipment.domain.states import LoanState, is_terminal

_SECONDS_PER_DAY = 86400


@dataclass
class Equipment:
    id: int
    name: str
    type: str
    status: str = EquipmentStatus.AVAILABLE.value
    condition: str = "good"
    loanable: bool = True

    @property
    def is_checkout_ready(self) -> bool:
        """Loanable and on the shelf; an active loan is checked separately."""
        return self.loanable and self.status == EquipmentStatus.AVAILABLE.value


@dataclass
class NewLoan:
    equipment_id: int
    borrower_id: int
    state: str
    reserved_from: datetime
    due_at: datetime
    checked_out_at: datetime | None = None
    condition_out: str | None = None
    security_deposit_cents: int = 0
    rental_fee_cents: int = 0
    notes: str | None = None


@dataclass
class EquipmentLoan:
    id: int
    equipment_id: int
    borrower_id: int
    state: str                       # LoanState value
    reserved_from: datetime
    due_at: datetime
    checked_out_at: datetime | None = None
    returned_at: datetime | None = None
    condition_out: str | None = None
    condition_in: str | None = None
    damage_notes: str | None = None
    security_deposit_cents: int = 0
    rental_fee_cents: int = 0
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return not is_terminal(self.state)

    @property
    def total_fees_cents(self) -> int:
        return self.security_deposit_cents + self.rental_fee_cents

    def is_overdue(self, now: datetime) -> bool:
        return self.state in (LoanState.CHECKED_OUT.value, LoanState.OVERDUE.value) and now > self.due_at

    def days_out(self, now: datetime) -> int:
        """Whole days since checkout (to return, if returned); 0 if never checked out."""
        if self.checked_out_at is None:
            return 0
        end = self.returned_at or now
        return max(0, int((end - self.checked_out_at).total_seconds() // _SECONDS_PER_DAY))

    def days_overdue(self, now: datetime) -> int:
        """Started days past the due date, counted until return."""
        end = self.returned_at or now
        if end <= self.due_at:
            return 0
        return math.ceil((end - self.due_at).total_seconds() / _SECONDS_PER_DAY)

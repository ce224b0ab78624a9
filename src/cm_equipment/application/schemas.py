"""Pydantic schemas for cm_equipment API."""

from datetime import datetime
from typing import Literal

from pydantic import AwareDatetime, BaseModel, Field

from src.cm_common.datetime_utils import utc_now
from src.cm_equipment.domain.models import EquipmentLoan
from src.cm_equipment.domain.states import allowed_targets, info

Condition = Literal["excellent", "good", "fair", "poor", "needs_repair"]

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RequestLoanRequest(BaseModel):
    due_at: AwareDatetime
    reserved_from: AwareDatetime | None = None
    security_deposit_cents: int = Field(0, ge=0)
    rental_fee_cents: int = Field(0, ge=0)
    notes: str | None = Field(None, max_length=1000)


class CheckoutRequest(BaseModel):
    borrower_id: int
    due_at: AwareDatetime
    condition_out: Condition | None = None
    security_deposit_cents: int = Field(0, ge=0)
    rental_fee_cents: int = Field(0, ge=0)
    notes: str | None = Field(None, max_length=1000)


class TransitionRequest(BaseModel):
    target: Literal[
        "staff_preparing",
        "ready_for_pickup",
        "checked_out",
        "overdue",
        "dropoff_scheduled",
        "staff_processing_return",
        "damage_reported",
        "cancelled",
    ]
    condition: Condition | None = None
    damage_notes: str | None = Field(None, max_length=2000)


class ReturnLoanRequest(BaseModel):
    condition_in: Condition
    damage_notes: str | None = Field(None, max_length=2000)


class MarkLostRequest(BaseModel):
    notes: str | None = Field(None, max_length=2000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class LoanResponse(BaseModel):
    id: int
    equipment_id: int
    borrower_id: int
    state: str
    state_description: str
    allowed_transitions: list[str]
    reserved_from: datetime
    due_at: datetime
    checked_out_at: datetime | None
    returned_at: datetime | None
    condition_out: str | None
    condition_in: str | None
    damage_notes: str | None
    security_deposit_cents: int
    rental_fee_cents: int
    total_fees_cents: int
    is_overdue: bool
    days_overdue: int

    @classmethod
    def from_loan(cls, loan: EquipmentLoan, now: datetime | None = None) -> "LoanResponse":
        now = now or utc_now()
        return cls(
            id=loan.id,
            equipment_id=loan.equipment_id,
            borrower_id=loan.borrower_id,
            state=loan.state,
            state_description=info(loan.state).description,
            allowed_transitions=[s.value for s in allowed_targets(loan.state)],
            reserved_from=loan.reserved_from,
            due_at=loan.due_at,
            checked_out_at=loan.checked_out_at,
            returned_at=loan.returned_at,
            condition_out=loan.condition_out,
            condition_in=loan.condition_in,
            damage_notes=loan.damage_notes,
            security_deposit_cents=loan.security_deposit_cents,
            rental_fee_cents=loan.rental_fee_cents,
            total_fees_cents=loan.total_fees_cents,
            is_overdue=loan.is_overdue(now),
            days_overdue=loan.days_overdue(now) if loan.checked_out_at else 0,
        )

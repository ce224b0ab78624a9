"""Pydantic schemas for cm_credits API."""

from typing import Any

from pydantic import BaseModel, Field

from src.cm_credits.domain.models import CreditTransaction

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class RedeemPromoCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class GrantCreditsRequest(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0, description="Blocks to add")
    credit_type: str = "free_hours"
    description: str | None = Field(None, max_length=500)


class DeductCreditsRequest(BaseModel):
    user_id: int
    amount: int = Field(..., gt=0, description="Blocks to remove")
    credit_type: str = "free_hours"
    description: str | None = Field(None, max_length=500)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    user_id: int
    credit_type: str
    balance: int


class UsageResponse(BaseModel):
    user_id: int
    credit_type: str
    used_this_month: int


class TransactionItem(BaseModel):
    id: int
    credit_type: str
    amount: int
    balance_after: int
    source: str
    source_id: int | None
    description: str | None
    metadata: dict[str, Any]
    created_at: str  # ISO8601 string

    @classmethod
    def from_transaction(cls, tx: CreditTransaction) -> "TransactionItem":
        return cls(
            id=tx.id,
            credit_type=tx.credit_type,
            amount=tx.amount,
            balance_after=tx.balance_after,
            source=tx.source,
            source_id=tx.source_id,
            description=tx.description,
            metadata=tx.metadata,
            created_at=tx.created_at.isoformat() if tx.created_at else "",
        )


class AllocationResponse(BaseModel):
    allocated: bool
    transaction: TransactionItem | None


class TransactionPage(BaseModel):
    items: list[TransactionItem]
    next_cursor: str | None
    has_more: bool

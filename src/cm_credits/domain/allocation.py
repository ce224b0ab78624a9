"""Monthly allocation planning: pure function, no I/O.

Given the locked balance row, the requested tier amount and the allocation
already recorded this month (if any), decide what to write.

  reset row     balance := amount, transaction amount = new balance
  rollover row  balance += min(amount, cap - balance), transaction amount = delta
  same month    upgrade to a larger tier adds only the tier difference;
                an equal or smaller tier is a no-op
"""

from dataclasses import dataclass
from typing import Any

from src.cm_common.enums import CreditSource
from src.cm_credits.domain.models import CreditTransaction

ALLOCATION_SOURCES = (
    CreditSource.MONTHLY_RESET,
    CreditSource.MONTHLY_ALLOCATION,
    CreditSource.UPGRADE_ADJUSTMENT,
)

ALLOCATED_AMOUNT_KEY = "allocated_amount"


@dataclass(frozen=True)
class AllocationPlan:
    new_balance: int
    transaction_amount: int
    source: CreditSource
    metadata: dict[str, Any]


def _capped_increment(balance: int, amount: int, max_balance: int | None) -> int:
    if max_balance is None:
        return amount
    return min(amount, max(0, max_balance - balance))


def previous_allocated_amount(tx: CreditTransaction) -> int:
    """Tier amount recorded by an earlier allocation this month."""
    value = tx.metadata.get(ALLOCATED_AMOUNT_KEY)
    if value is None:
        # Rows written without metadata: fall back to the signed amount
        return max(tx.amount, 0)
    return int(value)


def plan_monthly_allocation(
    balance: int,
    amount: int,
    rollover_enabled: bool,
    max_balance: int | None,
    previous: CreditTransaction | None,
) -> AllocationPlan | None:
    metadata = {ALLOCATED_AMOUNT_KEY: amount}

    if previous is not None:
        prior = previous_allocated_amount(previous)
        delta = amount - prior
        if delta <= 0:
            return None
        if rollover_enabled:
            delta = _capped_increment(balance, delta, max_balance)
        metadata["previous_allocated_amount"] = prior
        return AllocationPlan(
            new_balance=balance + delta,
            transaction_amount=delta,
            source=CreditSource.UPGRADE_ADJUSTMENT,
            metadata=metadata,
        )

    if not rollover_enabled:
        return AllocationPlan(
            new_balance=amount,
            transaction_amount=amount,
            source=CreditSource.MONTHLY_RESET,
            metadata=metadata,
        )

    added = _capped_increment(balance, amount, max_balance)
    return AllocationPlan(
        new_balance=balance + added,
        transaction_amount=added,
        source=CreditSource.MONTHLY_ALLOCATION,
        metadata=metadata,
    )

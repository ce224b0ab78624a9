"""Rehearsal pricing in blocks and integer cents.

A reservation of N minutes consumes ceil(N / MINUTES_PER_BLOCK) blocks. Free
blocks from the member's credit balance cover as much as they can; the
remainder is charged at the hourly rate, rounded up to the cent.
"""

from dataclasses import dataclass

from config.settings import settings
from src.cm_common.money import ceil_div


@dataclass(frozen=True)
class PriceQuote:
    total_blocks: int
    free_blocks: int
    paid_minutes: int
    cost_cents: int


def blocks_for(minutes: int, minutes_per_block: int | None = None) -> int:
    per_block = minutes_per_block or settings.MINUTES_PER_BLOCK
    return ceil_div(minutes, per_block)


def quote(
    minutes: int,
    free_balance: int,
    hourly_rate_cents: int | None = None,
    minutes_per_block: int | None = None,
) -> PriceQuote:
    per_block = minutes_per_block or settings.MINUTES_PER_BLOCK
    rate = settings.HOURLY_RATE_CENTS if hourly_rate_cents is None else hourly_rate_cents
    total_blocks = blocks_for(minutes, per_block)
    free_blocks = max(0, min(free_balance, total_blocks))
    paid_minutes = max(0, minutes - free_blocks * per_block)
    return PriceQuote(
        total_blocks=total_blocks,
        free_blocks=free_blocks,
        paid_minutes=paid_minutes,
        cost_cents=ceil_div(paid_minutes * rate, 60),
    )

"""Domain models for cm_credits: pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class CreditTypePolicy:
    name: str
    rollover_enabled: bool
    max_balance: int | None = None   # None = uncapped


@dataclass
class CreditBalance:
    user_id: int
    credit_type: str
    balance: int                     # blocks
    max_balance: int | None = None
    rollover_enabled: bool = False
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def available(self, now: datetime) -> int:
        """Spendable balance; an expired row reads as zero but is kept."""
        return 0 if self.is_expired(now) else self.balance


@dataclass
class CreditTransaction:
    id: int                          # BIGSERIAL
    user_id: int
    credit_type: str
    amount: int                      # signed delta (reset rows carry the new balance)
    balance_after: int
    source: str                      # CreditSource value
    source_id: int | None = None
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class PromoCode:
    id: int
    code: str                        # case-sensitive
    credit_type: str
    credit_amount: int
    max_uses: int | None = None      # None = unlimited
    uses_count: int = 0
    is_active: bool = True
    expires_at: datetime | None = None

    def is_redeemable(self, now: datetime) -> bool:
        return self.is_active and (self.expires_at is None or self.expires_at > now)

    @property
    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.uses_count >= self.max_uses


@dataclass
class PromoCodeRedemption:
    id: int
    promo_code_id: int
    user_id: int
    credit_transaction_id: int
    redeemed_at: datetime

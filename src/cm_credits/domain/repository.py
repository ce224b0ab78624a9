"""Repository Protocols: dependency inversion for testability.

Unit tests inject in-memory fakes that conform to these Protocols.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_credits.domain.models import (
    CreditBalance,
    CreditTransaction,
    CreditTypePolicy,
    PromoCode,
    PromoCodeRedemption,
)


class CreditRepositoryProtocol(Protocol):
    async def get_balance(
        self, db: AsyncSession, user_id: int, credit_type: str
    ) -> CreditBalance | None: ...

    async def lock_or_create_balance(
        self, db: AsyncSession, user_id: int, policy: CreditTypePolicy
    ) -> CreditBalance: ...

    async def lock_balance(
        self, db: AsyncSession, user_id: int, credit_type: str
    ) -> CreditBalance | None: ...

    async def update_balance(
        self, db: AsyncSession, user_id: int, credit_type: str, balance: int
    ) -> CreditBalance: ...

    async def insert_transaction(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str,
        amount: int,
        balance_after: int,
        source: str,
        source_id: int | None,
        description: str | None,
        metadata: dict[str, Any] | None,
    ) -> CreditTransaction: ...

    async def find_transaction_since(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str,
        sources: list[str],
        since: datetime,
    ) -> CreditTransaction | None: ...

    async def sum_amount_since(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str,
        source: str,
        since: datetime,
    ) -> int: ...

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str | None,
        cursor_id: int | None,
        limit: int,
    ) -> list[CreditTransaction]: ...


class PromoCodeRepositoryProtocol(Protocol):
    async def lock_by_code(self, db: AsyncSession, code: str) -> PromoCode | None: ...

    async def has_redemption(
        self, db: AsyncSession, promo_code_id: int, user_id: int
    ) -> bool: ...

    async def increment_uses(self, db: AsyncSession, promo_code_id: int) -> PromoCode: ...

    async def insert_redemption(
        self,
        db: AsyncSession,
        promo_code_id: int,
        user_id: int,
        credit_transaction_id: int,
        redeemed_at: datetime,
    ) -> PromoCodeRedemption: ...

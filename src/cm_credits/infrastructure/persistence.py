"""CreditRepository / PromoCodeRepository: raw SQL implementations.

Every balance mutation starts by taking the row lock for (user_id, credit_type):
either SELECT ... FOR UPDATE or the implicit lock of INSERT ... ON CONFLICT DO
UPDATE. The balance write and the transaction insert then happen in the same
database transaction, so a concurrent deduct and monthly reset serialize.

Transaction ownership: the CALLER (application service) commits or rolls back.
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.cm_common.errors import InternalError
from src.cm_credits.domain.models import (
    CreditBalance,
    CreditTransaction,
    CreditTypePolicy,
    PromoCode,
    PromoCodeRedemption,
)

# ---------------------------------------------------------------------------
# SQL: user_credits
# ---------------------------------------------------------------------------

_BALANCE_COLUMNS = """
    user_id, credit_type, balance, max_balance, rollover_enabled,
    expires_at, created_at, updated_at
"""

_GET_BALANCE_SQL = text(f"""
    SELECT {_BALANCE_COLUMNS}
    FROM user_credits
    WHERE user_id = :user_id AND credit_type = :credit_type
""")

_LOCK_BALANCE_SQL = text(f"""
    SELECT {_BALANCE_COLUMNS}
    FROM user_credits
    WHERE user_id = :user_id AND credit_type = :credit_type
    FOR UPDATE
""")

_LOCK_OR_CREATE_BALANCE_SQL = text(f"""
    INSERT INTO user_credits (user_id, credit_type, balance, max_balance, rollover_enabled)
    VALUES (:user_id, :credit_type, 0, :max_balance, :rollover_enabled)
    ON CONFLICT (user_id, credit_type) DO UPDATE
        SET updated_at = NOW()
    RETURNING {_BALANCE_COLUMNS}
""")

# Writing to an expired row starts a fresh balance, so the stale expiry is dropped
_UPDATE_BALANCE_SQL = text(f"""
    UPDATE user_credits
    SET balance = :balance,
        expires_at = CASE WHEN expires_at <= NOW() THEN NULL ELSE expires_at END,
        updated_at = NOW()
    WHERE user_id = :user_id AND credit_type = :credit_type
    RETURNING {_BALANCE_COLUMNS}
""")

# ---------------------------------------------------------------------------
# SQL: credit_transactions (append-only)
# ---------------------------------------------------------------------------

_TRANSACTION_COLUMNS = """
    id, user_id, credit_type, amount, balance_after,
    source, source_id, description, metadata, created_at
"""

_INSERT_TRANSACTION_SQL = text(f"""
    INSERT INTO credit_transactions
        (user_id, credit_type, amount, balance_after,
         source, source_id, description, metadata)
    VALUES
        (:user_id, :credit_type, :amount, :balance_after,
         :source, :source_id, :description, CAST(:metadata AS JSONB))
    RETURNING {_TRANSACTION_COLUMNS}
""")

_FIND_TRANSACTION_SINCE_SQL = text(f"""
    SELECT {_TRANSACTION_COLUMNS}
    FROM credit_transactions
    WHERE user_id = :user_id
      AND credit_type = :credit_type
      AND source = ANY(CAST(:sources AS VARCHAR[]))
      AND created_at >= :since
    ORDER BY id DESC
    LIMIT 1
""")

_SUM_AMOUNT_SINCE_SQL = text("""
    SELECT COALESCE(SUM(amount), 0) AS total
    FROM credit_transactions
    WHERE user_id = :user_id
      AND credit_type = :credit_type
      AND source = :source
      AND created_at >= :since
""")

_LIST_TRANSACTIONS_SQL = text(f"""
    SELECT {_TRANSACTION_COLUMNS}
    FROM credit_transactions
    WHERE user_id = :user_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < :cursor_id)
      AND (CAST(:credit_type AS VARCHAR) IS NULL OR credit_type = :credit_type)
    ORDER BY id DESC
    LIMIT :limit
""")

# ---------------------------------------------------------------------------
# SQL: promo codes
# ---------------------------------------------------------------------------

_PROMO_COLUMNS = """
    id, code, credit_type, credit_amount, max_uses, uses_count, is_active, expires_at
"""

# Exact, case-sensitive match; activity and expiry are checked by the caller
_LOCK_PROMO_SQL = text(f"""
    SELECT {_PROMO_COLUMNS}
    FROM promo_codes
    WHERE code = :code
    FOR UPDATE
""")

_HAS_REDEMPTION_SQL = text("""
    SELECT 1 FROM promo_code_redemptions
    WHERE promo_code_id = :promo_code_id AND user_id = :user_id
""")

_INCREMENT_USES_SQL = text(f"""
    UPDATE promo_codes
    SET uses_count = uses_count + 1,
        updated_at = NOW()
    WHERE id = :promo_code_id
    RETURNING {_PROMO_COLUMNS}
""")

_INSERT_REDEMPTION_SQL = text("""
    INSERT INTO promo_code_redemptions
        (promo_code_id, user_id, credit_transaction_id, redeemed_at)
    VALUES
        (:promo_code_id, :user_id, :credit_transaction_id, :redeemed_at)
    RETURNING id, promo_code_id, user_id, credit_transaction_id, redeemed_at
""")


def _row_to_balance(row: object) -> CreditBalance:
    return CreditBalance(
        user_id=row.user_id,  # type: ignore[attr-defined]
        credit_type=row.credit_type,  # type: ignore[attr-defined]
        balance=row.balance,  # type: ignore[attr-defined]
        max_balance=row.max_balance,  # type: ignore[attr-defined]
        rollover_enabled=row.rollover_enabled,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _decode_metadata(raw: object) -> dict[str, Any]:
    # asyncpg hands JSONB back as text unless a codec is registered
    if raw is None:
        return {}
    if isinstance(raw, str):
        return json.loads(raw)
    return dict(raw)  # type: ignore[call-overload]


def _row_to_transaction(row: object) -> CreditTransaction:
    return CreditTransaction(
        id=row.id,  # type: ignore[attr-defined]
        user_id=row.user_id,  # type: ignore[attr-defined]
        credit_type=row.credit_type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        source=row.source,  # type: ignore[attr-defined]
        source_id=row.source_id,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        metadata=_decode_metadata(row.metadata),  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


def _row_to_promo(row: object) -> PromoCode:
    return PromoCode(
        id=row.id,  # type: ignore[attr-defined]
        code=row.code,  # type: ignore[attr-defined]
        credit_type=row.credit_type,  # type: ignore[attr-defined]
        credit_amount=row.credit_amount,  # type: ignore[attr-defined]
        max_uses=row.max_uses,  # type: ignore[attr-defined]
        uses_count=row.uses_count,  # type: ignore[attr-defined]
        is_active=row.is_active,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
    )


class CreditRepository:
    """Concrete repository for user_credits and credit_transactions."""

    async def get_balance(
        self, db: AsyncSession, user_id: int, credit_type: str
    ) -> CreditBalance | None:
        result = await db.execute(
            _GET_BALANCE_SQL, {"user_id": user_id, "credit_type": credit_type}
        )
        row = result.fetchone()
        return _row_to_balance(row) if row else None

    async def lock_or_create_balance(
        self, db: AsyncSession, user_id: int, policy: CreditTypePolicy
    ) -> CreditBalance:
        result = await db.execute(
            _LOCK_OR_CREATE_BALANCE_SQL,
            {
                "user_id": user_id,
                "credit_type": policy.name,
                "max_balance": policy.max_balance,
                "rollover_enabled": policy.rollover_enabled,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("user_credits upsert returned no rows")
        return _row_to_balance(row)

    async def lock_balance(
        self, db: AsyncSession, user_id: int, credit_type: str
    ) -> CreditBalance | None:
        result = await db.execute(
            _LOCK_BALANCE_SQL, {"user_id": user_id, "credit_type": credit_type}
        )
        row = result.fetchone()
        return _row_to_balance(row) if row else None

    async def update_balance(
        self, db: AsyncSession, user_id: int, credit_type: str, balance: int
    ) -> CreditBalance:
        result = await db.execute(
            _UPDATE_BALANCE_SQL,
            {"user_id": user_id, "credit_type": credit_type, "balance": balance},
        )
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Credit balance not found: user={user_id} type={credit_type}")
        return _row_to_balance(row)

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
    ) -> CreditTransaction:
        result = await db.execute(
            _INSERT_TRANSACTION_SQL,
            {
                "user_id": user_id,
                "credit_type": credit_type,
                "amount": amount,
                "balance_after": balance_after,
                "source": source,
                "source_id": source_id,
                "description": description,
                "metadata": json.dumps(metadata or {}),
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("credit_transactions insert returned no rows")
        return _row_to_transaction(row)

    async def find_transaction_since(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str,
        sources: list[str],
        since: datetime,
    ) -> CreditTransaction | None:
        result = await db.execute(
            _FIND_TRANSACTION_SINCE_SQL,
            {
                "user_id": user_id,
                "credit_type": credit_type,
                "sources": sources,
                "since": since,
            },
        )
        row = result.fetchone()
        return _row_to_transaction(row) if row else None

    async def sum_amount_since(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str,
        source: str,
        since: datetime,
    ) -> int:
        result = await db.execute(
            _SUM_AMOUNT_SINCE_SQL,
            {
                "user_id": user_id,
                "credit_type": credit_type,
                "source": source,
                "since": since,
            },
        )
        row = result.fetchone()
        return int(row.total) if row else 0

    async def list_transactions(
        self,
        db: AsyncSession,
        user_id: int,
        credit_type: str | None,
        cursor_id: int | None,
        limit: int,
    ) -> list[CreditTransaction]:
        result = await db.execute(
            _LIST_TRANSACTIONS_SQL,
            {
                "user_id": user_id,
                "credit_type": credit_type,
                "cursor_id": cursor_id,
                "limit": limit,
            },
        )
        return [_row_to_transaction(row) for row in result.fetchall()]


class PromoCodeRepository:
    """Concrete repository for promo_codes and promo_code_redemptions."""

    async def lock_by_code(self, db: AsyncSession, code: str) -> PromoCode | None:
        result = await db.execute(_LOCK_PROMO_SQL, {"code": code})
        row = result.fetchone()
        return _row_to_promo(row) if row else None

    async def has_redemption(
        self, db: AsyncSession, promo_code_id: int, user_id: int
    ) -> bool:
        result = await db.execute(
            _HAS_REDEMPTION_SQL, {"promo_code_id": promo_code_id, "user_id": user_id}
        )
        return result.fetchone() is not None

    async def increment_uses(self, db: AsyncSession, promo_code_id: int) -> PromoCode:
        result = await db.execute(_INCREMENT_USES_SQL, {"promo_code_id": promo_code_id})
        row = result.fetchone()
        if row is None:
            raise InternalError(f"Promo code disappeared while locked: {promo_code_id}")
        return _row_to_promo(row)

    async def insert_redemption(
        self,
        db: AsyncSession,
        promo_code_id: int,
        user_id: int,
        credit_transaction_id: int,
        redeemed_at: datetime,
    ) -> PromoCodeRedemption:
        result = await db.execute(
            _INSERT_REDEMPTION_SQL,
            {
                "promo_code_id": promo_code_id,
                "user_id": user_id,
                "credit_transaction_id": credit_transaction_id,
                "redeemed_at": redeemed_at,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("promo_code_redemptions insert returned no rows")
        return PromoCodeRedemption(
            id=row.id,
            promo_code_id=row.promo_code_id,
            user_id=row.user_id,
            credit_transaction_id=row.credit_transaction_id,
            redeemed_at=row.redeemed_at,
        )

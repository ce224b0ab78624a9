"""Per-type credit policies, read from settings.CREDIT_TYPES.

Adding a credit type is a configuration change; the ledger never branches on
a type's name.
"""

from config.settings import settings
from src.cm_common.errors import UnknownCreditTypeError
from src.cm_credits.domain.models import CreditTypePolicy


def get_policy(credit_type: str) -> CreditTypePolicy:
    raw = settings.CREDIT_TYPES.get(credit_type)
    if raw is None:
        raise UnknownCreditTypeError(credit_type)
    return CreditTypePolicy(
        name=credit_type,
        rollover_enabled=bool(raw.get("rollover_enabled", False)),
        max_balance=raw.get("max_balance"),
    )


def known_credit_types() -> list[str]:
    return sorted(settings.CREDIT_TYPES)

"""Payment-status predicates shared by reservations and loans."""

from src.cm_common.enums import PaymentStatus
from src.cm_common.money import cents_to_display

SETTLED_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.COMPED.value)


def requires_payment(cost_cents: int, payment_status: str) -> bool:
    """cost > 0 and not already paid or comped."""
    return cost_cents > 0 and payment_status not in SETTLED_STATUSES


def cost_display(cost_cents: int) -> str:
    if cost_cents <= 0:
        return "Free"
    return cents_to_display(cost_cents)

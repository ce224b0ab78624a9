"""Card-processing fee math in integer cents.

The processor charges `rate_bps` basis points plus a fixed fee per charge.
Percentages round half up to the nearest cent.
"""

from dataclasses import dataclass

from config.settings import settings
from src.cm_common.errors import InvalidFeeInputError
from src.cm_common.money import cents_to_display, round_half_up_div

_BPS_DENOMINATOR = 10000
# Allowed difference between the net of a covered total and the intended base
COVERAGE_TOLERANCE_CENTS = 1


def _resolve(rate_bps: int | None, fixed_cents: int | None) -> tuple[int, int]:
    rate = settings.PROCESSING_FEE_RATE_BPS if rate_bps is None else rate_bps
    fixed = settings.PROCESSING_FEE_FIXED_CENTS if fixed_cents is None else fixed_cents
    if not 0 <= rate < _BPS_DENOMINATOR:
        raise InvalidFeeInputError(f"rate_bps must be in [0, 10000), got {rate}")
    if fixed < 0:
        raise InvalidFeeInputError(f"fixed fee must be >= 0, got {fixed}")
    return rate, fixed


def _require_non_negative(name: str, value: int) -> None:
    if value < 0:
        raise InvalidFeeInputError(f"{name} must be >= 0, got {value}")


def calculate_processing_fee(
    amount_cents: int, rate_bps: int | None = None, fixed_cents: int | None = None
) -> int:
    """fee = round_half_up(amount x rate) + fixed."""
    _require_non_negative("amount", amount_cents)
    rate, fixed = _resolve(rate_bps, fixed_cents)
    return round_half_up_div(amount_cents * rate, _BPS_DENOMINATOR) + fixed


def calculate_total_with_fee_coverage(
    base_cents: int, rate_bps: int | None = None, fixed_cents: int | None = None
) -> int:
    """Amount to charge so the recipient nets `base_cents` after the fee.

    total = (base + fixed) / (1 - rate), rounded half up.
    """
    _require_non_negative("base", base_cents)
    rate, fixed = _resolve(rate_bps, fixed_cents)
    return round_half_up_div(
        (base_cents + fixed) * _BPS_DENOMINATOR, _BPS_DENOMINATOR - rate
    )


def calculate_net_amount(
    total_cents: int, rate_bps: int | None = None, fixed_cents: int | None = None
) -> int:
    """What the recipient keeps after the processor takes its fee."""
    return total_cents - calculate_processing_fee(total_cents, rate_bps, fixed_cents)


def validate_fee_coverage(
    base_cents: int,
    total_cents: int,
    rate_bps: int | None = None,
    fixed_cents: int | None = None,
) -> bool:
    net = calculate_net_amount(total_cents, rate_bps, fixed_cents)
    return abs(net - base_cents) <= COVERAGE_TOLERANCE_CENTS


@dataclass(frozen=True)
class FeeBreakdown:
    base_cents: int
    fee_cents: int
    total_cents: int
    covers_fees: bool

    @property
    def description(self) -> str:
        if self.covers_fees:
            return (
                f"{cents_to_display(self.base_cents)} + "
                f"{cents_to_display(self.fee_cents)} processing fee"
            )
        return cents_to_display(self.total_cents)


def fee_breakdown(
    base_cents: int,
    cover_fees: bool,
    rate_bps: int | None = None,
    fixed_cents: int | None = None,
) -> FeeBreakdown:
    """Quote a charge for the payer.

    When the payer covers fees the gross-up is added on top and reported as the
    fee; otherwise the payer is charged the base and no fee line is shown.
    """
    _require_non_negative("base", base_cents)
    if cover_fees:
        total = calculate_total_with_fee_coverage(base_cents, rate_bps, fixed_cents)
        return FeeBreakdown(base_cents, total - base_cents, total, True)
    return FeeBreakdown(base_cents, 0, base_cents, False)

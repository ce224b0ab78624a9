"""Integer arithmetic helpers for cents.

All prices, fees, deposits and costs are int cents. No float, no Decimal.
"""


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 4550 -> '$45.50', -1200 -> '-$12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-${abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"${cents // 100:,}.{cents % 100:02d}"


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer ceiling division for non-negative operands: (a + b - 1) // b."""
    return (numerator + denominator - 1) // denominator


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounding .5 away from zero, for non-negative operands."""
    return (2 * numerator + denominator) // (2 * denominator)

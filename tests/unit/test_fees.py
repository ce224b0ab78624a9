"""Tests for cm_payments.domain.fees (2.9% + 30c defaults)."""

import pytest

from src.cm_common.errors import InvalidFeeInputError
from src.cm_payments.domain.fees import (
    calculate_net_amount,
    calculate_processing_fee,
    calculate_total_with_fee_coverage,
    fee_breakdown,
    validate_fee_coverage,
)


class TestProcessingFee:
    def test_default_rate(self) -> None:
        # 1000 * 2.9% = 29 ; + 30
        assert calculate_processing_fee(1000) == 59

    def test_rounds_half_up(self) -> None:
        # 4717 * 2.9% = 136.793 -> 137 ; + 30
        assert calculate_processing_fee(4717) == 167

    def test_zero_amount_still_pays_fixed_fee(self) -> None:
        assert calculate_processing_fee(0) == 30

    def test_explicit_rate(self) -> None:
        assert calculate_processing_fee(10000, rate_bps=100, fixed_cents=0) == 100

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(InvalidFeeInputError):
            calculate_processing_fee(-1)

    def test_rate_out_of_range_rejected(self) -> None:
        with pytest.raises(InvalidFeeInputError):
            calculate_processing_fee(1000, rate_bps=10000)


class TestFeeCoverage:
    def test_total_for_4550(self) -> None:
        # (4550 + 30) / 0.971 = 4716.79 -> 4717
        assert calculate_total_with_fee_coverage(4550) == 4717

    def test_total_for_1000(self) -> None:
        assert calculate_total_with_fee_coverage(1000) == 1061

    def test_net_of_covered_total_matches_base(self) -> None:
        assert calculate_net_amount(4717) == 4550
        assert calculate_net_amount(1061) == 1000

    @pytest.mark.parametrize("base", [0, 1, 99, 1500, 4550, 12345, 250000])
    def test_coverage_within_one_cent(self, base: int) -> None:
        total = calculate_total_with_fee_coverage(base)
        assert validate_fee_coverage(base, total)

    def test_under_charge_fails_validation(self) -> None:
        assert not validate_fee_coverage(4550, 4600)

    def test_negative_base_rejected(self) -> None:
        with pytest.raises(InvalidFeeInputError):
            calculate_total_with_fee_coverage(-100)


class TestFeeBreakdown:
    def test_payer_covers_fees(self) -> None:
        quote = fee_breakdown(4550, cover_fees=True)
        assert quote.total_cents == 4717
        assert quote.fee_cents == 167
        assert quote.description == "$45.50 + $1.67 processing fee"

    def test_payer_does_not_cover_fees(self) -> None:
        quote = fee_breakdown(4550, cover_fees=False)
        assert quote.total_cents == 4550
        assert quote.fee_cents == 0
        assert quote.description == "$45.50"

    def test_negative_base_rejected_without_coverage(self) -> None:
        with pytest.raises(InvalidFeeInputError):
            fee_breakdown(-1, cover_fees=False)

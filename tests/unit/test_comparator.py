"""
test_comparator.py - Unit tests for the acceptance predicates

Each predicate is fed hand-built snapshots so every accept/reject boundary
can be hit exactly.
"""

import pytest
from decimal import Decimal

from loopvault import (
    ComparisonContext, VaultConfig,
    HealthFactorOutOfRange, NavIncreaseBelowMin, InvalidDebtAfterWithdraw,
    InvalidCollateralAfterWithdraw, InsufficientProceeds, ExcessCollateralRemoved,
    AlreadyInitialized, CollateralNonZero, DebtAfterInitNonZero,
    RateChangedDuringSession,
)
from loopvault.comparator import (
    check_rate_unchanged, check_health_factor_toward_target, check_deposit,
    check_donate, check_withdraw, check_unwind, check_initialize_before,
    check_initialize_after,
)

from tests.harness import make_snapshot


CONFIG = VaultConfig(minimum_deposit=10)
TARGET = CONFIG.target_health_factor
FLOOR = CONFIG.health_factor_floor
CEILING = CONFIG.health_factor_ceiling
INF = Decimal("Infinity")


def hf(value):
    return Decimal(value)


class TestRateStability:

    def test_unchanged(self):
        check_rate_unchanged(Decimal("1.15"), Decimal("1.15"))

    def test_any_change_rejected(self):
        with pytest.raises(RateChangedDuringSession):
            check_rate_unchanged(Decimal("1.15"), Decimal("1.1500000001"))


class TestHealthFactorTowardTarget:

    def test_band_edges(self):
        assert FLOOR == Decimal("1.2987")
        assert CEILING == Decimal("1.30013")

    def test_below_target_may_rise(self):
        check_health_factor_toward_target(hf("1.1"), hf("1.2"), CONFIG)
        check_health_factor_toward_target(hf("1.1"), hf("1.1"), CONFIG)
        check_health_factor_toward_target(hf("1.1"), CEILING, CONFIG)

    def test_below_target_may_not_fall(self):
        with pytest.raises(HealthFactorOutOfRange, match="fell"):
            check_health_factor_toward_target(hf("1.2"), hf("1.19"), CONFIG)

    def test_below_target_may_not_overshoot(self):
        with pytest.raises(HealthFactorOutOfRange, match="overshoots"):
            check_health_factor_toward_target(hf("1.2"), hf("1.31"), CONFIG)

    @pytest.mark.parametrize("before", [TARGET, hf("2"), INF])
    def test_at_or_above_target_must_land_in_band(self, before):
        check_health_factor_toward_target(before, FLOOR, CONFIG)
        check_health_factor_toward_target(before, CEILING, CONFIG)
        with pytest.raises(HealthFactorOutOfRange):
            check_health_factor_toward_target(before, FLOOR - Decimal("1e-9"), CONFIG)
        with pytest.raises(HealthFactorOutOfRange):
            check_health_factor_toward_target(before, CEILING + Decimal("1e-9"), CONFIG)

    def test_unlevered_result_is_out_of_band(self):
        with pytest.raises(HealthFactorOutOfRange):
            check_health_factor_toward_target(INF, INF, CONFIG)


class TestDeposit:

    def test_accepts(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(collateral_value=125, health_factor=TARGET),
        )
        check_deposit(ctx, CONFIG)

    def test_minimum_value_creation(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(collateral_value=124, health_factor=TARGET),
        )
        with pytest.raises(NavIncreaseBelowMin):
            check_deposit(ctx, CONFIG)

    def test_health_factor_checked_first(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(collateral_value=115, health_factor=hf("1.5")),
        )
        with pytest.raises(HealthFactorOutOfRange):
            check_deposit(ctx, CONFIG)


class TestDonate:

    def test_strict_increase(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(collateral_value=116, health_factor=TARGET),
        )
        check_donate(ctx, CONFIG)

    def test_no_increase(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(health_factor=TARGET),
        )
        with pytest.raises(NavIncreaseBelowMin):
            check_donate(ctx, CONFIG)

    def test_unlevered_position_skips_health_factor(self):
        ctx = ComparisonContext(
            make_snapshot(debt=0, health_factor=INF),
            make_snapshot(collateral_value=120, debt=0, health_factor=INF),
        )
        check_donate(ctx, CONFIG)

    def test_levered_position_keeps_band(self):
        ctx = ComparisonContext(
            make_snapshot(health_factor=TARGET),
            make_snapshot(collateral_value=130, health_factor=hf("1.5")),
        )
        with pytest.raises(HealthFactorOutOfRange):
            check_donate(ctx, CONFIG)


class TestWithdraw:
    """Before: collateral 100, debt 80, 35 shares. Burn 7 -> debt 64, collateral 80."""

    def _ctx(self, debt, collateral):
        return ComparisonContext(
            make_snapshot(),
            make_snapshot(collateral=collateral, debt=debt),
            shares=7,
        )

    def test_expected_values(self):
        ctx = self._ctx(64, 80)
        assert ctx.expected_debt == 64
        assert ctx.expected_collateral == 80
        check_withdraw(ctx)

    def test_one_unit_toward_vault_accepted(self):
        check_withdraw(self._ctx(63, 81))

    def test_debt_too_high(self):
        with pytest.raises(InvalidDebtAfterWithdraw):
            check_withdraw(self._ctx(65, 80))

    def test_debt_too_low(self):
        with pytest.raises(InvalidDebtAfterWithdraw):
            check_withdraw(self._ctx(62, 80))

    def test_collateral_too_low(self):
        with pytest.raises(InvalidCollateralAfterWithdraw):
            check_withdraw(self._ctx(64, 79))

    def test_collateral_too_high(self):
        with pytest.raises(InvalidCollateralAfterWithdraw):
            check_withdraw(self._ctx(64, 82))

    def test_shares_required(self):
        ctx = ComparisonContext(make_snapshot(), make_snapshot())
        with pytest.raises(ValueError):
            ctx.expected_debt


class TestUnwind:
    """Before: collateral 100, debt 80."""

    def _ctx(self, collateral, debt):
        return ComparisonContext(make_snapshot(), make_snapshot(collateral=collateral, debt=debt))

    def test_accepts(self):
        check_unwind(self._ctx(90, 69), collateral_amount=10, min_proceeds=11, proceeds=11)

    def test_proceeds_optional(self):
        check_unwind(self._ctx(90, 69), collateral_amount=10, min_proceeds=11)

    def test_reported_proceeds_too_low(self):
        with pytest.raises(InsufficientProceeds, match="returned"):
            check_unwind(self._ctx(90, 69), collateral_amount=10, min_proceeds=11, proceeds=10)

    def test_debt_reduction_too_low(self):
        with pytest.raises(InsufficientProceeds, match="repaid"):
            check_unwind(self._ctx(90, 70), collateral_amount=10, min_proceeds=11, proceeds=11)

    def test_excess_collateral(self):
        with pytest.raises(ExcessCollateralRemoved):
            check_unwind(self._ctx(89, 60), collateral_amount=10, min_proceeds=11)


class TestInitialize:

    def test_empty_before(self):
        check_initialize_before(make_snapshot(collateral=0, collateral_value=0, debt=0, total_shares=0))

    def test_supply_outstanding(self):
        with pytest.raises(AlreadyInitialized):
            check_initialize_before(make_snapshot(total_shares=1))

    def test_collateral_present(self):
        with pytest.raises(CollateralNonZero):
            check_initialize_before(make_snapshot(total_shares=0))

    def _after(self, collateral_value, debt):
        before = make_snapshot(collateral=0, collateral_value=0, debt=0, total_shares=0)
        return ComparisonContext(before, make_snapshot(collateral_value=collateral_value, debt=debt, total_shares=0))

    def test_debt_free_after(self):
        check_initialize_after(self._after(10, 0), CONFIG)

    def test_debt_after(self):
        with pytest.raises(DebtAfterInitNonZero):
            check_initialize_after(self._after(100, 1), CONFIG)

    def test_seed_too_small(self):
        with pytest.raises(NavIncreaseBelowMin):
            check_initialize_after(self._after(9, 0), CONFIG)

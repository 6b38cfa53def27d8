"""
comparator.py - Before/after snapshot comparison and acceptance predicates

Each top-level operation ends by comparing the position before and after
its callback. The check_* functions raise a distinct InvariantViolation
subclass for every rejected condition and return None on acceptance.

    Deposit:    health factor moves toward target (never past the ceiling),
                NAV grows by at least minimum_deposit
    Withdraw:   debt and collateral shrink by exactly the burned fraction
                (ceil on debt, floor on collateral, 1 unit of slack toward
                the vault)
    Unwind:     debt falls by at least the slippage-adjusted redemption
                value of the collateral sold; no more collateral leaves
                than requested
    Initialize: empty before, debt-free after
    Donate:     NAV strictly grows; health factor rule of deposit when
                the position carries debt
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .config import VaultConfig
from .core import (
    HealthFactorOutOfRange, NavIncreaseBelowMin, InvalidDebtAfterWithdraw,
    InvalidCollateralAfterWithdraw, InsufficientProceeds, ExcessCollateralRemoved,
    AlreadyInitialized, CollateralNonZero, DebtAfterInitNonZero,
    RateChangedDuringSession,
)
from .snapshot import PositionSnapshot


@dataclass(frozen=True, slots=True)
class ComparisonContext:
    """
    A before/after pair of snapshots for one operation.

    Attributes:
        before: Snapshot taken after the session opened, before the callback
        after: Snapshot taken after the callback returned
        shares: Shares burned (withdraw) or None
    """
    before: PositionSnapshot
    after: PositionSnapshot
    shares: Optional[int] = None

    @property
    def nav_delta(self) -> int:
        """Signed NAV change. Raises PositionInsolvent if either side is in deficit."""
        return self.after.nav - self.before.nav

    @property
    def expected_debt(self) -> int:
        """Debt the position must carry after burning `shares`."""
        return self.before.debt - self.before.debt_for_shares(self._shares())

    @property
    def expected_collateral(self) -> int:
        """Collateral the position must hold after burning `shares`."""
        return self.before.collateral - self.before.collateral_for_shares(self._shares())

    def _shares(self) -> int:
        if self.shares is None:
            raise ValueError("share amount is only defined for withdraw comparisons")
        return self.shares


def check_rate_unchanged(before_rate: Decimal, after_rate: Decimal) -> None:
    """
    Raises:
        RateChangedDuringSession: If the reference rate moved inside the session
    """
    if before_rate != after_rate:
        raise RateChangedDuringSession(
            f"reference rate changed from {before_rate} to {after_rate}"
        )


def check_health_factor_toward_target(
    hf_before: Decimal, hf_after: Decimal, config: VaultConfig
) -> None:
    """
    Below target the health factor may only rise, up to the ceiling. At or
    above target it must land inside [floor, ceiling].

    Raises:
        HealthFactorOutOfRange
    """
    target = config.target_health_factor
    ceiling = config.health_factor_ceiling
    if hf_before < target:
        if hf_after < hf_before:
            raise HealthFactorOutOfRange(
                f"health factor fell from {hf_before} to {hf_after} below target {target}"
            )
        if hf_after > ceiling:
            raise HealthFactorOutOfRange(
                f"health factor {hf_after} overshoots ceiling {ceiling}"
            )
        return

    floor = config.health_factor_floor
    if hf_after < floor or hf_after > ceiling:
        raise HealthFactorOutOfRange(
            f"health factor {hf_after} outside [{floor}, {ceiling}]"
        )


def check_deposit(ctx: ComparisonContext, config: VaultConfig) -> None:
    """
    Raises:
        HealthFactorOutOfRange: If the position moved away from target
        NavIncreaseBelowMin: If NAV grew by less than minimum_deposit
    """
    check_health_factor_toward_target(ctx.before.health_factor, ctx.after.health_factor, config)
    delta = ctx.nav_delta
    if delta < config.minimum_deposit:
        raise NavIncreaseBelowMin(
            f"deposit created {delta} of value, minimum is {config.minimum_deposit}"
        )


def check_donate(ctx: ComparisonContext, config: VaultConfig) -> None:
    """
    Raises:
        HealthFactorOutOfRange: If a levered position moved away from target
        NavIncreaseBelowMin: If NAV did not strictly increase
    """
    if ctx.after.debt > 0:
        check_health_factor_toward_target(ctx.before.health_factor, ctx.after.health_factor, config)
    delta = ctx.nav_delta
    if delta <= 0:
        raise NavIncreaseBelowMin(f"donation must increase NAV, changed by {delta}")


def check_withdraw(ctx: ComparisonContext) -> None:
    """
    Raises:
        InvalidDebtAfterWithdraw: Debt outside [expected - 1, expected]
        InvalidCollateralAfterWithdraw: Collateral outside [expected, expected + 1]
    """
    expected_debt = ctx.expected_debt
    actual_debt = ctx.after.debt
    if not expected_debt - 1 <= actual_debt <= expected_debt:
        raise InvalidDebtAfterWithdraw(
            f"debt after withdraw is {actual_debt}, expected {expected_debt}"
        )

    expected_collateral = ctx.expected_collateral
    actual_collateral = ctx.after.collateral
    if not expected_collateral <= actual_collateral <= expected_collateral + 1:
        raise InvalidCollateralAfterWithdraw(
            f"collateral after withdraw is {actual_collateral}, expected {expected_collateral}"
        )


def check_unwind(
    ctx: ComparisonContext,
    collateral_amount: int,
    min_proceeds: int,
    proceeds: Optional[int] = None,
) -> None:
    """
    Args:
        ctx: Before/after snapshots
        collateral_amount: Collateral the unwind was authorized to sell
        min_proceeds: Slippage-adjusted redemption value of that collateral
        proceeds: Amount the callback reports having received, if any

    Raises:
        InsufficientProceeds: Debt fell (or proceeds came in) under min_proceeds
        ExcessCollateralRemoved: More than collateral_amount left the position
    """
    removed = ctx.before.collateral - ctx.after.collateral
    if removed > collateral_amount:
        raise ExcessCollateralRemoved(
            f"unwind removed {removed} collateral, authorized {collateral_amount}"
        )
    if proceeds is not None and proceeds < min_proceeds:
        raise InsufficientProceeds(
            f"unwind returned {proceeds}, minimum is {min_proceeds}"
        )
    repaid = ctx.before.debt - ctx.after.debt
    if repaid < min_proceeds:
        raise InsufficientProceeds(
            f"unwind repaid {repaid} of debt, minimum is {min_proceeds}"
        )


def check_initialize_before(before: PositionSnapshot) -> None:
    """
    Raises:
        AlreadyInitialized: If shares are outstanding
        CollateralNonZero: If the position already holds collateral
    """
    if before.total_shares != 0:
        raise AlreadyInitialized(f"{before.total_shares} shares already outstanding")
    if before.collateral != 0:
        raise CollateralNonZero(f"position already holds {before.collateral} collateral")


def check_initialize_after(ctx: ComparisonContext, config: VaultConfig) -> None:
    """
    Raises:
        DebtAfterInitNonZero: If the seeded position carries debt
        NavIncreaseBelowMin: If the seed is worth less than minimum_deposit
    """
    if ctx.after.debt != 0:
        raise DebtAfterInitNonZero(f"initialization left {ctx.after.debt} debt")
    delta = ctx.nav_delta
    if delta < config.minimum_deposit:
        raise NavIncreaseBelowMin(
            f"initial position worth {delta}, minimum is {config.minimum_deposit}"
        )

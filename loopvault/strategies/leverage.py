"""
leverage.py - Borrow sizing and reference callbacks

The vault accepts any callback that leaves the position in an acceptable
state. This module provides the sizing rule for re-levering toward a
target health factor and four callbacks built on it:

- SeedInitializer: pull, stake, supply (initialize)
- LeverageLoop: pull, stake, supply, then borrow-stake-supply until the
  health factor reaches target (deposit)
- ProportionalWithdraw: repay the burned fraction of debt with a flash
  loan from a swap desk, release the burned fraction of collateral,
  repay the desk in collateral and hand the remainder to the receiver
  (withdraw)
- SwapDeskUnwind: sell a slice of collateral to a swap desk at a quoted
  price and repay debt with the proceeds (unwind)

Sizing (health factor hf, debt D, headroom A, liquidation threshold lt):

    hf < target or A == 0  ->  0
    A' = A * (1 - buffer)
    D > 0                  ->  min(A', (hf - target) * D / (target - lt))
    D == 0                 ->  A'

Borrowing x and re-supplying it as collateral gives
hf' = (C * lt + x * lt) / (D + x); solving hf' = target yields the D > 0
branch. An unlevered position has no such bound, so LeverageLoop caps the
D == 0 case at C * lt / (target - lt).
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Any, Optional
import logging

from ..core import bps_to_ratio, mul_ratio, div_ratio
from ..actions import SessionHandle

logger = logging.getLogger(__name__)

DEFAULT_BORROW_BUFFER = Decimal("0.0001")
DEFAULT_TARGET_MARGIN = Decimal("1e-12")


def calculate_borrow_amount(
    debt: int,
    available_borrow: int,
    health_factor: Decimal,
    liquidation_threshold: Decimal,
    target: Decimal,
    buffer: Decimal = DEFAULT_BORROW_BUFFER,
) -> int:
    """
    Borrow amount that, staked and re-supplied, moves the health factor to target.

    Args:
        debt: Current debt
        available_borrow: LTV headroom reported by the market
        health_factor: Current health factor (Infinity without debt)
        liquidation_threshold: Liquidation threshold as a ratio (e.g., 0.95)
        target: Target health factor
        buffer: Fraction of headroom left unused for oracle precision

    Returns:
        Amount to borrow (0 when already at or below target)
    """
    if target <= liquidation_threshold:
        raise ValueError(f"target {target} must exceed liquidation threshold {liquidation_threshold}")
    if health_factor < target or available_borrow == 0:
        return 0
    capped = mul_ratio(available_borrow, Decimal("1") - buffer, ROUND_DOWN)
    if debt > 0:
        target_amount = (health_factor - target) * Decimal(debt) / (target - liquidation_threshold)
        return min(capped, int(target_amount.to_integral_value(rounding=ROUND_DOWN)))
    return capped


def calculate_unlevered_borrow_cap(collateral_value: int, liquidation_threshold: Decimal, target: Decimal) -> int:
    """Borrow that takes a debt-free position exactly to target."""
    amount = Decimal(collateral_value) * liquidation_threshold / (target - liquidation_threshold)
    return int(amount.to_integral_value(rounding=ROUND_DOWN))


# ============================================================================
# CALLBACKS
# ============================================================================

@dataclass(frozen=True, slots=True)
class SeedInitializer:
    """Pull `amount` of the borrowed asset from `source`, stake it and supply it."""
    source: str
    amount: int

    def run(self, handle: SessionHandle, data: Any) -> Optional[int]:
        handle.pull(handle.borrowed_asset, self.source, self.amount)
        collateral = handle.stake(self.amount)
        handle.supply_collateral(collateral)
        return None


@dataclass(frozen=True, slots=True)
class LeverageLoop:
    """
    Deposit `amount` from `source` and re-lever to `target`.

    Attributes:
        source: Holder the deposit is pulled from (must have approved the vault)
        amount: Borrowed-asset amount deposited
        target: Health factor to lever toward
        buffer: Fraction of borrow headroom left unused
        max_iterations: Upper bound on borrow-stake-supply rounds
        target_margin: Relative amount the loop aims above target; staking
            and valuation round down by a few base units, and the margin
            keeps the result from settling below target
    """
    source: str
    amount: int
    target: Decimal = Decimal("1.3")
    buffer: Decimal = DEFAULT_BORROW_BUFFER
    max_iterations: int = 32
    target_margin: Decimal = DEFAULT_TARGET_MARGIN

    def run(self, handle: SessionHandle, data: Any) -> Optional[int]:
        handle.pull(handle.borrowed_asset, self.source, self.amount)
        handle.supply_collateral(handle.stake(self.amount))

        aim = self.target * (Decimal("1") + self.target_margin)
        floor = max(1, handle.minimum_stake)
        for iteration in range(self.max_iterations):
            position = handle.market_position()
            lt = bps_to_ratio(position.liquidation_threshold_bps)
            size = calculate_borrow_amount(
                position.debt_value,
                position.available_borrow,
                position.health_factor,
                lt,
                aim,
                self.buffer,
            )
            if position.debt_value == 0:
                size = min(size, calculate_unlevered_borrow_cap(position.collateral_value, lt, aim))
            if size < floor:
                logger.debug("leverage loop settled after %s rounds at hf %s", iteration, position.health_factor)
                break
            handle.borrow(size)
            handle.supply_collateral(handle.stake(size))
        return None


@dataclass(frozen=True, slots=True)
class ProportionalWithdraw:
    """
    Unwind the burned fraction of the position for `receiver`.

    The swap desk fronts the borrowed asset for the debt repayment (it must
    have approved the vault) and is repaid in collateral at the staking
    rate, rounded up.
    """
    swap_desk: str
    receiver: str

    def run(self, handle: SessionHandle, data: Any) -> Optional[int]:
        if handle.shares is None:
            raise ValueError("ProportionalWithdraw only runs inside a withdraw")
        debt_share = handle.before.debt_for_shares(handle.shares)
        collateral_share = handle.before.collateral_for_shares(handle.shares)

        if debt_share > 0:
            handle.pull(handle.borrowed_asset, self.swap_desk, debt_share)
            handle.repay(debt_share)
        released = handle.withdraw_collateral(collateral_share) if collateral_share > 0 else 0

        owed = div_ratio(debt_share, handle.staking.current_rate(), ROUND_UP) if debt_share > 0 else 0
        if owed > 0:
            handle.send(handle.collateral_asset, self.swap_desk, owed)
        remainder = released - owed
        if remainder > 0:
            handle.send(handle.collateral_asset, self.receiver, remainder)
        return None


@dataclass(frozen=True, slots=True)
class SwapDeskUnwind:
    """
    Sell the unwind's collateral slice to `swap_desk` and repay debt.

    Attributes:
        swap_desk: Counterparty buying collateral (must have approved the vault)
        price: Borrowed asset paid per unit of collateral; the staking
            rate when None
    """
    swap_desk: str
    price: Optional[Decimal] = None

    def run(self, handle: SessionHandle, data: Any) -> Optional[int]:
        if handle.amount is None:
            raise ValueError("SwapDeskUnwind only runs inside an unwind")
        released = handle.withdraw_collateral(handle.amount)
        price = handle.staking.current_rate() if self.price is None else self.price
        proceeds = mul_ratio(released, price, ROUND_DOWN)
        handle.send(handle.collateral_asset, self.swap_desk, released)
        if proceeds > 0:
            handle.pull(handle.borrowed_asset, self.swap_desk, proceeds)
            handle.repay(proceeds)
        return proceeds

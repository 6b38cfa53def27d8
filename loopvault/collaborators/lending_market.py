"""
lending_market.py - Simulated lending market with scaled balances

ARCHITECTURE (Pure Function Pattern):
=====================================

1. PURE CALCULATION FUNCTIONS (calculate_*):
   - Scaled-balance conversion, health factor, borrow headroom
   - Integers in, integers (or Decimal ratios) out, rounding stated

2. STATEFUL SIMULATION (SimulatedLendingMarket):
   - One collateral asset, one borrowable asset
   - Token movements go through the shared Ledger; the market holds
     supplied collateral and lendable liquidity under its own holder
   - Implements LendingMarket and Checkpointable

Key Formulas:
    scaled = amount * RAY / index          (down on supply, up on borrow)
    scaled_left = remaining * RAY / index  (up after withdraw, down after repay)
    collateral = floor(scaled * liquidity_index / RAY)
    debt = ceil(scaled * borrow_index / RAY)
    collateral_value = floor(collateral * rate)
    health_factor = collateral_value * lt / debt      (Infinity without debt)
    available_borrow = max(0, floor(collateral_value * ltv) - debt)
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Any, Dict, Optional
import logging

from ..core import (
    PositionData, ScaledBalances, RateProvider,
    UnsupportedAsset, InsufficientLiquidity, SupplyCapExceeded,
    BorrowCapacityExceeded, HealthFactorTooLow,
    RAY, BPS, mul_div, mul_ratio,
)
from ..ledger import Ledger

logger = logging.getLogger(__name__)

INFINITE_HEALTH_FACTOR = Decimal("Infinity")


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_scaled_amount(amount: int, index: int, rounding: str) -> int:
    """Convert an amount to scaled units at `index` (RAY)."""
    return mul_div(amount, RAY, index, rounding)


def calculate_balance(scaled: int, index: int, rounding: str) -> int:
    """Convert scaled units back to an amount at `index` (RAY)."""
    return mul_div(scaled, index, RAY, rounding)


def calculate_health_factor(collateral_value: int, debt: int, liquidation_threshold_bps: int) -> Decimal:
    """Liquidation-weighted collateral over debt. Infinity when there is no debt."""
    if debt == 0:
        return INFINITE_HEALTH_FACTOR
    return Decimal(collateral_value) * Decimal(liquidation_threshold_bps) / Decimal(BPS) / Decimal(debt)


def calculate_available_borrow(collateral_value: int, debt: int, ltv_bps: int) -> int:
    """Borrow headroom under the loan-to-value limit."""
    limit = mul_div(collateral_value, ltv_bps, BPS, ROUND_DOWN)
    return max(0, limit - debt)


def calculate_grown_index(index: int, growth: Decimal) -> int:
    """Apply fractional growth to a RAY index, rounding down."""
    if growth < 0:
        raise ValueError(f"Index growth cannot be negative, got {growth}")
    return mul_ratio(index, Decimal("1") + growth, ROUND_DOWN)


# ============================================================================
# SIMULATION
# ============================================================================

class SimulatedLendingMarket:
    """
    A single-pair lending market in the style of pooled money markets.

    Balances are stored scaled by an index that only grows. Collateral is
    priced through the supplied RateProvider so the market and the vault
    agree on valuation.

    Example:
        market = SimulatedLendingMarket(ledger, rate_provider, "WETH", "WSTETH")
        ledger.mint("WETH", market.holder, 1_000 * WAD)   # lendable liquidity
        market.supply("WSTETH", amount, "vault")
        market.borrow("WETH", amount // 2, "vault")
    """

    def __init__(
        self,
        ledger: Ledger,
        rate_provider: RateProvider,
        borrowed_asset: str,
        collateral_asset: str,
        holder: str = "lending_market",
        ltv_bps: int = 9300,
        liquidation_threshold_bps: int = 9500,
        supply_cap: Optional[int] = None,
    ):
        if not 0 < ltv_bps <= liquidation_threshold_bps < BPS:
            raise ValueError(
                f"require 0 < ltv <= liquidation threshold < {BPS}, "
                f"got ltv={ltv_bps}, lt={liquidation_threshold_bps}"
            )
        if supply_cap is not None and supply_cap < 0:
            raise ValueError(f"supply_cap cannot be negative, got {supply_cap}")
        self.ledger = ledger
        self.rate_provider = rate_provider
        self.borrowed_asset = borrowed_asset
        self.collateral_asset = collateral_asset
        self.holder = holder
        self.ltv_bps = ltv_bps
        self.liquidation_threshold_bps = liquidation_threshold_bps
        self.supply_cap = supply_cap
        self.liquidity_index = RAY
        self.borrow_index = RAY
        self._collateral_scaled: Dict[str, int] = {}
        self._debt_scaled: Dict[str, int] = {}
        if not ledger.is_registered(holder):
            ledger.register_holder(holder)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def collateral_balance(self, asset: str, owner: str) -> int:
        self._require_asset(asset, self.collateral_asset)
        return calculate_balance(self._collateral_scaled.get(owner, 0), self.liquidity_index, ROUND_DOWN)

    def debt_balance(self, asset: str, owner: str) -> int:
        self._require_asset(asset, self.borrowed_asset)
        return calculate_balance(self._debt_scaled.get(owner, 0), self.borrow_index, ROUND_UP)

    def total_collateral(self) -> int:
        return calculate_balance(sum(self._collateral_scaled.values()), self.liquidity_index, ROUND_DOWN)

    def collateral_value(self, amount: int) -> int:
        return mul_ratio(amount, self.rate_provider.current_rate(), ROUND_DOWN)

    def position_data(self, owner: str) -> PositionData:
        collateral = self.collateral_balance(self.collateral_asset, owner)
        value = self.collateral_value(collateral)
        debt = self.debt_balance(self.borrowed_asset, owner)
        return PositionData(
            collateral_value=value,
            debt_value=debt,
            available_borrow=calculate_available_borrow(value, debt, self.ltv_bps),
            liquidation_threshold_bps=self.liquidation_threshold_bps,
            ltv_bps=self.ltv_bps,
            health_factor=calculate_health_factor(value, debt, self.liquidation_threshold_bps),
        )

    def scaled_balances(self, owner: str) -> ScaledBalances:
        return ScaledBalances(
            collateral_scaled=self._collateral_scaled.get(owner, 0),
            collateral_index=self.liquidity_index,
            debt_scaled=self._debt_scaled.get(owner, 0),
            debt_index=self.borrow_index,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def supply(self, asset: str, amount: int, owner: str) -> None:
        """
        Raises:
            SupplyCapExceeded: If total collateral would exceed the cap
        """
        self._require_asset(asset, self.collateral_asset)
        if self.supply_cap is not None and self.total_collateral() + amount > self.supply_cap:
            raise SupplyCapExceeded(
                f"supplying {amount} exceeds cap {self.supply_cap} (current {self.total_collateral()})"
            )
        self.ledger.transfer(asset, owner, self.holder, amount, memo="market_supply")
        scaled = calculate_scaled_amount(amount, self.liquidity_index, ROUND_DOWN)
        self._collateral_scaled[owner] = self._collateral_scaled.get(owner, 0) + scaled

    def withdraw(self, asset: str, amount: int, owner: str) -> int:
        """
        Raises:
            InsufficientLiquidity: If amount exceeds the owner's collateral
            HealthFactorTooLow: If the remaining collateral would not cover the debt
        """
        self._require_asset(asset, self.collateral_asset)
        available = self.collateral_balance(asset, owner)
        if amount > available:
            raise InsufficientLiquidity(f"withdraw {amount} exceeds collateral {available}")
        debt = self.debt_balance(self.borrowed_asset, owner)
        if debt > 0:
            remaining_value = self.collateral_value(available - amount)
            hf = calculate_health_factor(remaining_value, debt, self.liquidation_threshold_bps)
            if hf < 1:
                raise HealthFactorTooLow(f"withdraw {amount} would leave health factor {hf}")

        held = self._collateral_scaled.get(owner, 0)
        if amount == available:
            remaining = 0
        else:
            # smallest scaled balance reading back as at least available - amount
            remaining = min(held, calculate_scaled_amount(available - amount, self.liquidity_index, ROUND_UP))
        self._collateral_scaled[owner] = remaining
        self._cover_collateral_shortfall(amount, memo="withdraw_rounding")
        self.ledger.transfer(asset, self.holder, owner, amount, memo="market_withdraw")
        return amount

    def borrow(self, asset: str, amount: int, owner: str) -> None:
        """
        Raises:
            BorrowCapacityExceeded: If amount exceeds the LTV headroom
            InsufficientLiquidity: If the market cannot fund the loan
        """
        self._require_asset(asset, self.borrowed_asset)
        headroom = self.position_data(owner).available_borrow
        if amount > headroom:
            raise BorrowCapacityExceeded(f"borrow {amount} exceeds available {headroom}")
        liquidity = self.ledger.get_balance(self.holder, asset)
        if amount > liquidity:
            raise InsufficientLiquidity(f"borrow {amount} exceeds market liquidity {liquidity}")
        scaled = calculate_scaled_amount(amount, self.borrow_index, ROUND_UP)
        self._debt_scaled[owner] = self._debt_scaled.get(owner, 0) + scaled
        self.ledger.transfer(asset, self.holder, owner, amount, memo="market_borrow")

    def repay(self, asset: str, amount: int, owner: str) -> int:
        """Repay up to the outstanding debt. Returns the amount taken."""
        self._require_asset(asset, self.borrowed_asset)
        debt = self.debt_balance(asset, owner)
        actual = min(amount, debt)
        if actual == 0:
            return 0
        held = self._debt_scaled.get(owner, 0)
        if actual == debt:
            remaining = 0
        else:
            # largest scaled debt that reads back no higher than debt - actual
            remaining = min(held, calculate_scaled_amount(debt - actual, self.borrow_index, ROUND_DOWN))
        self._debt_scaled[owner] = remaining
        self.ledger.transfer(asset, owner, self.holder, actual, memo="market_repay")
        return actual

    def accrue_interest(
        self, liquidity_growth: Decimal = Decimal("0"), borrow_growth: Decimal = Decimal("0")
    ) -> None:
        """
        Grow the indices by the given fractions.

        Collateral owed to suppliers grows with the liquidity index; the
        market mints the collateral backing that growth.
        """
        owed_before = self.total_collateral()
        self.liquidity_index = calculate_grown_index(self.liquidity_index, liquidity_growth)
        self.borrow_index = calculate_grown_index(self.borrow_index, borrow_growth)
        self._cover_collateral_shortfall(0, memo="supply_interest")
        logger.debug(
            "market indices: liquidity %s, borrow %s (owed collateral %s -> %s)",
            self.liquidity_index, self.borrow_index, owed_before, self.total_collateral(),
        )

    # ------------------------------------------------------------------
    # Checkpoint / restore
    # ------------------------------------------------------------------

    def checkpoint(self) -> Dict[str, Any]:
        return {
            'liquidity_index': self.liquidity_index,
            'borrow_index': self.borrow_index,
            'collateral_scaled': dict(self._collateral_scaled),
            'debt_scaled': dict(self._debt_scaled),
        }

    def restore(self, token: Dict[str, Any]) -> None:
        self.liquidity_index = token['liquidity_index']
        self.borrow_index = token['borrow_index']
        self._collateral_scaled = dict(token['collateral_scaled'])
        self._debt_scaled = dict(token['debt_scaled'])

    def _cover_collateral_shortfall(self, outgoing: int, memo: str) -> None:
        """Mint collateral so holdings cover what suppliers are owed plus `outgoing`."""
        held = self.ledger.get_balance(self.holder, self.collateral_asset)
        shortfall = self.total_collateral() + outgoing - held
        if shortfall > 0:
            self.ledger.mint(self.collateral_asset, self.holder, shortfall, memo=memo)

    def _require_asset(self, asset: str, expected: str) -> None:
        if asset != expected:
            raise UnsupportedAsset(f"market does not accept {asset} here (expected {expected})")

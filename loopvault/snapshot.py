"""
snapshot.py - Point-in-time position views and share accounting

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASS:
   - PositionSnapshot: immutable view of the vault's market position plus
     the share supply it is divided into. A new one is built for every read.

2. ADAPTER FUNCTION (read_snapshot):
   - The ONLY place that queries the lending market and rate provider
     for a snapshot.

3. PURE CALCULATION FUNCTIONS (calculate_*, convert_*):
   - Take integers explicitly, round in a stated direction.

Key Formulas:
    nav = collateral_value - debt
    shares_minted = floor(total_shares * nav_delta / nav_before)
    debt_for_shares = ceil(debt * shares / total_shares)
    collateral_for_shares = floor(collateral * shares / total_shares)

Rounding always favours the vault: debt owed rounds up, collateral released
rounds down, shares issued round down.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_UP

from .core import (
    LendingMarket, RateProvider, ScaledBalances, PositionInsolvent,
    bps_to_ratio, mul_div,
)


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """
    Immutable view of the position at one instant.

    Attributes:
        collateral: Collateral held in the market (native units)
        collateral_value: Collateral value in the reference currency
        debt: Debt in the reference currency
        ltv: Loan-to-value ratio (e.g., Decimal("0.93"))
        liquidation_threshold: Liquidation threshold ratio (e.g., Decimal("0.95"))
        available_borrow: Borrow headroom the market reports
        health_factor: Market health factor (Infinity without debt)
        total_shares: Share supply including unminted fee shares
        rate: Reference rate used to value collateral
        scaled: Raw scaled balances and indices backing collateral and debt

    A deficit (debt > collateral_value) is representable; reading `nav`
    on such a snapshot raises PositionInsolvent.
    """
    collateral: int
    collateral_value: int
    debt: int
    ltv: Decimal
    liquidation_threshold: Decimal
    available_borrow: int
    health_factor: Decimal
    total_shares: int
    rate: Decimal
    scaled: ScaledBalances

    @property
    def is_insolvent(self) -> bool:
        return self.debt > self.collateral_value

    @property
    def nav(self) -> int:
        return calculate_nav(self.collateral_value, self.debt)

    def debt_for_shares(self, shares: int) -> int:
        return calculate_proportional_debt(self.debt, shares, self.total_shares)

    def collateral_for_shares(self, shares: int) -> int:
        return calculate_proportional_collateral(self.collateral, shares, self.total_shares)

    def __repr__(self) -> str:
        return (
            f"PositionSnapshot(collateral={self.collateral}, value={self.collateral_value}, "
            f"debt={self.debt}, hf={self.health_factor}, shares={self.total_shares})"
        )


def read_snapshot(
    market: LendingMarket,
    rate_provider: RateProvider,
    owner: str,
    collateral_asset: str,
    total_shares: int,
) -> PositionSnapshot:
    """
    Build a snapshot of `owner`'s market position.

    Args:
        market: Lending market collaborator
        rate_provider: Reference rate collaborator
        owner: Account holding the position (the vault)
        collateral_asset: Symbol of the supplied collateral
        total_shares: Share supply including unminted fee shares

    Returns:
        A fresh PositionSnapshot
    """
    data = market.position_data(owner)
    return PositionSnapshot(
        collateral=market.collateral_balance(collateral_asset, owner),
        collateral_value=data.collateral_value,
        debt=data.debt_value,
        ltv=bps_to_ratio(data.ltv_bps),
        liquidation_threshold=bps_to_ratio(data.liquidation_threshold_bps),
        available_borrow=data.available_borrow,
        health_factor=data.health_factor,
        total_shares=total_shares,
        rate=rate_provider.current_rate(),
        scaled=market.scaled_balances(owner),
    )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_nav(collateral_value: int, debt: int) -> int:
    """
    Net asset value of the position in the reference currency.

    Raises:
        PositionInsolvent: If debt exceeds collateral value
    """
    if debt > collateral_value:
        raise PositionInsolvent(
            f"debt {debt} exceeds collateral value {collateral_value}"
        )
    return collateral_value - debt


def calculate_shares_for_nav_delta(total_shares: int, nav_before: int, nav_delta: int) -> int:
    """
    Shares to mint for a NAV increase, rounded down.

    With no prior supply or NAV, shares are issued 1:1 with the NAV increase.
    """
    if nav_delta < 0:
        raise ArithmeticError(f"nav_delta cannot be negative, got {nav_delta}")
    if total_shares == 0 or nav_before == 0:
        return nav_delta
    return mul_div(total_shares, nav_delta, nav_before, ROUND_DOWN)


def calculate_proportional_debt(debt: int, shares: int, total_shares: int) -> int:
    """Debt attributable to `shares`, rounded up (owed to the vault)."""
    if shares > total_shares:
        raise ArithmeticError(f"shares {shares} exceed total supply {total_shares}")
    if total_shares == 0:
        return 0
    return mul_div(debt, shares, total_shares, ROUND_UP)


def calculate_proportional_collateral(collateral: int, shares: int, total_shares: int) -> int:
    """Collateral attributable to `shares`, rounded down (released by the vault)."""
    if shares > total_shares:
        raise ArithmeticError(f"shares {shares} exceed total supply {total_shares}")
    if total_shares == 0:
        return 0
    return mul_div(collateral, shares, total_shares, ROUND_DOWN)


def convert_to_shares(assets: int, total_shares: int, nav: int) -> int:
    """
    Shares worth `assets` of NAV, rounded down. 1:1 when supply or NAV is zero.

    Round trips through convert_to_assets never gain. A shares-first trip
    loses at most one share when NAV >= supply, and an assets-first trip at
    most one asset unit when NAV <= supply. In the other regime the loss is
    under 1 + supply / NAV (or 1 + NAV / supply) units.
    """
    if total_shares == 0 or nav == 0:
        return assets
    return mul_div(assets, total_shares, nav, ROUND_DOWN)


def convert_to_assets(shares: int, total_shares: int, nav: int) -> int:
    """NAV attributable to `shares`, rounded down. See convert_to_shares for round-trip loss."""
    if total_shares == 0 or nav == 0:
        return shares
    return mul_div(shares, nav, total_shares, ROUND_DOWN)

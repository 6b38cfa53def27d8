"""
collaborators - Reference simulations of the vault's external collaborators.

- lending_market: pooled lending market with scaled balances and indices
- staking: liquid-staking token with a settable exchange rate
- rate_provider: staking rate behind a linear growth cap

All three operate on a shared Ledger and implement Checkpointable.
"""

from .lending_market import (
    SimulatedLendingMarket,
    calculate_scaled_amount,
    calculate_balance,
    calculate_health_factor,
    calculate_available_borrow,
    calculate_grown_index,
)
from .staking import SimulatedStakingToken
from .rate_provider import CappedRateProvider, calculate_max_rate, SECONDS_PER_YEAR

__all__ = [
    'SimulatedLendingMarket',
    'calculate_scaled_amount',
    'calculate_balance',
    'calculate_health_factor',
    'calculate_available_borrow',
    'calculate_grown_index',
    'SimulatedStakingToken',
    'CappedRateProvider',
    'calculate_max_rate',
    'SECONDS_PER_YEAR',
]

"""
strategies - Callback implementations for the vault's operations.

Available strategies:
- leverage: borrow sizing toward a target health factor, and callbacks for
  seeding, levering, proportional withdrawal and unwinding
"""

from .leverage import (
    calculate_borrow_amount,
    calculate_unlevered_borrow_cap,
    SeedInitializer,
    LeverageLoop,
    ProportionalWithdraw,
    SwapDeskUnwind,
    DEFAULT_BORROW_BUFFER,
    DEFAULT_TARGET_MARGIN,
)

__all__ = [
    'calculate_borrow_amount',
    'calculate_unlevered_borrow_cap',
    'SeedInitializer',
    'LeverageLoop',
    'ProportionalWithdraw',
    'SwapDeskUnwind',
    'DEFAULT_BORROW_BUFFER',
    'DEFAULT_TARGET_MARGIN',
]

"""
rate_provider.py - Growth-capped exchange rate

Values collateral at the staking token's exchange rate, but never above a
ceiling that grows linearly from a snapshot:

    max_rate = snapshot_rate * (1 + max_yearly_growth * elapsed / year)
    current_rate = min(staking_rate, max_rate)

The raw inputs are public so the cap can be recomputed independently of
any market price feed.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from ..core import StakingToken
from ..ledger import Ledger

SECONDS_PER_YEAR = Decimal(365 * 24 * 60 * 60)


def calculate_max_rate(
    snapshot_rate: Decimal, max_yearly_growth: Decimal, elapsed_seconds: Decimal
) -> Decimal:
    """Rate ceiling after `elapsed_seconds`. Negative elapsed time counts as zero."""
    elapsed = max(Decimal("0"), elapsed_seconds)
    return snapshot_rate * (Decimal("1") + max_yearly_growth * elapsed / SECONDS_PER_YEAR)


class CappedRateProvider:
    """
    RateProvider reading a staking token through a growth cap.

    Args:
        source: Staking token whose rate is capped
        clock: Ledger supplying logical time
        max_yearly_growth: Fractional growth allowed per year (e.g., 0.1)
        snapshot_rate: Rate the cap grows from (default: source's current rate)
        snapshot_time: When the snapshot was taken (default: clock's current time)
    """

    def __init__(
        self,
        source: StakingToken,
        clock: Ledger,
        max_yearly_growth: Decimal = Decimal("0.1"),
        snapshot_rate: Optional[Decimal] = None,
        snapshot_time: Optional[datetime] = None,
    ):
        if max_yearly_growth < 0:
            raise ValueError(f"max_yearly_growth cannot be negative, got {max_yearly_growth}")
        self.source = source
        self.clock = clock
        self.max_yearly_growth = Decimal(max_yearly_growth)
        self.snapshot_rate = Decimal(snapshot_rate) if snapshot_rate is not None else source.current_rate()
        self.snapshot_time = snapshot_time or clock.current_time
        if self.snapshot_rate <= 0:
            raise ValueError(f"snapshot_rate must be positive, got {self.snapshot_rate}")

    def max_rate(self) -> Decimal:
        elapsed = Decimal((self.clock.current_time - self.snapshot_time).total_seconds())
        return calculate_max_rate(self.snapshot_rate, self.max_yearly_growth, elapsed)

    def current_rate(self) -> Decimal:
        return min(self.source.current_rate(), self.max_rate())

    def is_capped(self) -> bool:
        return self.source.current_rate() > self.max_rate()

    def update_snapshot(self) -> None:
        """Re-anchor the cap at the current (capped) rate and time."""
        self.snapshot_rate = self.current_rate()
        self.snapshot_time = self.clock.current_time

    def checkpoint(self) -> Dict[str, Any]:
        return {'snapshot_rate': self.snapshot_rate, 'snapshot_time': self.snapshot_time}

    def restore(self, token: Dict[str, Any]) -> None:
        self.snapshot_rate = token['snapshot_rate']
        self.snapshot_time = token['snapshot_time']

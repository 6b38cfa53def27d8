"""
fees.py - Performance fee accrual above a high-water mark

The share rate is NAV per share. When it exceeds the all-time high, the
fee recipient is issued enough new shares to own `fee_rate` of the gain:

    ownership = (rate - all_time_high) * fee_rate / rate
    fee_shares = floor(total_shares * ownership / (1 - ownership))

After issuance the high-water mark is set to the rate over the enlarged
supply, which is always at or above the previous mark. Fees are never
charged on recovering a drawdown.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict
import logging

from .core import mul_ratio
from .snapshot import calculate_nav

logger = logging.getLogger(__name__)

ONE = Decimal("1")


def calculate_share_rate(collateral_value: int, debt: int, total_shares: int) -> Decimal:
    """
    NAV per share. 1 when either NAV or supply is zero.

    Raises:
        PositionInsolvent: If debt exceeds collateral value
    """
    nav = calculate_nav(collateral_value, debt)
    if nav == 0 or total_shares == 0:
        return ONE
    return Decimal(nav) / Decimal(total_shares)


def calculate_fee_shares(
    rate: Decimal, all_time_high: Decimal, fee_rate: Decimal, total_shares: int
) -> int:
    """Shares owed to the fee recipient for growth of `rate` above `all_time_high`."""
    if fee_rate <= 0 or total_shares == 0 or rate <= all_time_high:
        return 0
    ownership = (rate - all_time_high) * fee_rate / rate
    return mul_ratio(total_shares, ownership / (ONE - ownership), ROUND_DOWN)


class FeeState:
    """
    Fee parameters and the high-water mark of one vault.

    Attributes:
        fee_rate: Fraction of rate growth taken as fee (0 disables fees)
        fee_recipient: Holder credited with fee shares
        all_time_high: Highest share rate fees have been charged up to
    """

    def __init__(self, fee_rate: Decimal, fee_recipient: str, all_time_high: Decimal = ONE):
        if fee_rate < 0 or fee_rate >= 1:
            raise ValueError(f"fee_rate must be in [0, 1), got {fee_rate}")
        self.fee_rate = fee_rate
        self.fee_recipient = fee_recipient
        self.all_time_high = all_time_high

    def pending(self, collateral_value: int, debt: int, total_shares: int) -> int:
        """Fee shares accrual would issue now, without changing state."""
        rate = calculate_share_rate(collateral_value, debt, total_shares)
        return calculate_fee_shares(rate, self.all_time_high, self.fee_rate, total_shares)

    def accrue(self, collateral_value: int, debt: int, total_shares: int) -> int:
        """
        Charge fees on growth since the last mark and advance the mark.

        Returns:
            Fee shares the caller must issue to fee_recipient
        """
        rate = calculate_share_rate(collateral_value, debt, total_shares)
        if self.fee_rate <= 0 or total_shares == 0 or rate <= self.all_time_high:
            return 0
        fee_shares = calculate_fee_shares(rate, self.all_time_high, self.fee_rate, total_shares)
        new_high = calculate_share_rate(collateral_value, debt, total_shares + fee_shares)
        self.raise_high_water_mark(new_high)
        logger.debug("fee accrual: rate %s, %s fee shares, mark %s", rate, fee_shares, self.all_time_high)
        return fee_shares

    def raise_high_water_mark(self, rate: Decimal) -> None:
        """Move the mark up to `rate`. Lower values are ignored."""
        if rate > self.all_time_high:
            self.all_time_high = rate

    def checkpoint(self) -> Dict[str, Any]:
        return {'all_time_high': self.all_time_high}

    def restore(self, token: Dict[str, Any]) -> None:
        self.all_time_high = token['all_time_high']

    def __repr__(self) -> str:
        return f"FeeState(rate={self.fee_rate}, mark={self.all_time_high}, recipient={self.fee_recipient})"

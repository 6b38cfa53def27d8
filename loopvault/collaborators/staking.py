"""
staking.py - Simulated liquid-staking token

The staking token's shares are the vault's collateral asset. One share
redeems for `rate` units of the underlying (the borrowed asset); the rate
is set externally to model staking rewards.

    shares = floor(assets / rate)
    assets = floor(shares * rate)

The staking holder keeps underlying reserves of at least
ceil(share_supply * rate); raising the rate mints the reward shortfall.
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import Any, Dict
import logging

from ..core import Move, AmountBelowMinimum, SYSTEM_HOLDER, mul_ratio, div_ratio
from ..ledger import Ledger

logger = logging.getLogger(__name__)


class SimulatedStakingToken:
    """
    Wrapped staking token with a settable exchange rate.

    Attributes:
        asset: Underlying symbol (staked in)
        share_asset: Share symbol (issued)
        holder: Identity holding the underlying reserves
        rate: Underlying per share
        minimum_stake: Smallest stake accepted
    """

    def __init__(
        self,
        ledger: Ledger,
        asset: str,
        share_asset: str,
        holder: str = "staking_pool",
        rate: Decimal = Decimal("1"),
        minimum_stake: int = 0,
    ):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if minimum_stake < 0:
            raise ValueError(f"minimum_stake cannot be negative, got {minimum_stake}")
        self.ledger = ledger
        self.asset = asset
        self.share_asset = share_asset
        self.holder = holder
        self.rate = Decimal(rate)
        self.minimum_stake = minimum_stake
        if not ledger.is_registered(holder):
            ledger.register_holder(holder)

    def current_rate(self) -> Decimal:
        return self.rate

    def convert_to_shares(self, assets: int) -> int:
        return div_ratio(assets, self.rate, ROUND_DOWN)

    def convert_to_assets(self, shares: int) -> int:
        return mul_ratio(shares, self.rate, ROUND_DOWN)

    def stake(self, amount: int, owner: str) -> int:
        """
        Raises:
            AmountBelowMinimum: Under minimum_stake, or too small for one share
        """
        if amount < self.minimum_stake:
            raise AmountBelowMinimum(f"stake {amount} below minimum {self.minimum_stake}")
        shares = self.convert_to_shares(amount)
        if shares == 0:
            raise AmountBelowMinimum(f"stake {amount} is worth less than one share")
        self.ledger.execute([
            Move(amount, self.asset, owner, self.holder, "stake"),
            Move(shares, self.share_asset, SYSTEM_HOLDER, owner, "stake"),
        ])
        return shares

    def redeem(self, shares: int, owner: str) -> int:
        assets = self.convert_to_assets(shares)
        moves = [Move(shares, self.share_asset, owner, SYSTEM_HOLDER, "redeem")]
        if assets > 0:
            moves.append(Move(assets, self.asset, self.holder, owner, "redeem"))
        self.ledger.execute(moves)
        return assets

    def set_rate(self, rate: Decimal) -> None:
        """Move the exchange rate, topping up reserves so every share stays redeemable."""
        rate = Decimal(rate)
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        logger.debug("staking rate %s -> %s", self.rate, rate)
        self.rate = rate
        required = mul_ratio(self.ledger.total_supply(self.share_asset), rate, ROUND_UP)
        shortfall = required - self.ledger.get_balance(self.holder, self.asset)
        if shortfall > 0:
            self.ledger.mint(self.asset, self.holder, shortfall, memo="staking_rewards")

    def checkpoint(self) -> Dict[str, Any]:
        return {'rate': self.rate}

    def restore(self, token: Dict[str, Any]) -> None:
        self.rate = token['rate']

    def __repr__(self) -> str:
        return f"SimulatedStakingToken({self.share_asset}/{self.asset} @ {self.rate})"

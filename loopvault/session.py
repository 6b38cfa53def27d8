"""
session.py - Session lock and scoped running balances

State machine:

    Unlocked --acquire(caller)--> Locked(caller) --release()--> Unlocked

While Locked, only `caller` may invoke primitive actions. Two running
balances (borrowed asset, collateral asset) track tokens the vault holds
loose during the operation; release() refuses to close the session unless
both are exactly zero.
"""

from __future__ import annotations
from typing import Dict, Optional, Tuple
import logging

from .core import (
    AlreadyLocked, NotLocked, NotPermitted, SessionBalanceNonZero,
    InsufficientSessionBalance, UnsupportedAsset,
)

logger = logging.getLogger(__name__)


class Session:
    """
    The single mutable session record owned by a vault.

    Attributes:
        borrowed_asset: Symbol whose running balance is tracked as "borrowed"
        collateral_asset: Symbol whose running balance is tracked as "collateral"
    """

    def __init__(self, borrowed_asset: str, collateral_asset: str):
        if borrowed_asset == collateral_asset:
            raise ValueError("borrowed_asset and collateral_asset must be different")
        self.borrowed_asset = borrowed_asset
        self.collateral_asset = collateral_asset
        self._locked = False
        self._caller: Optional[str] = None
        self._balances: Dict[str, int] = {borrowed_asset: 0, collateral_asset: 0}

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_locked(self) -> bool:
        return self._locked

    @property
    def caller(self) -> Optional[str]:
        return self._caller

    @property
    def borrowed_balance(self) -> int:
        return self._balances[self.borrowed_asset]

    @property
    def collateral_balance(self) -> int:
        return self._balances[self.collateral_asset]

    def balance(self, asset: str) -> int:
        self._check_asset(asset)
        return self._balances[asset]

    def balances(self) -> Tuple[int, int]:
        """(borrowed, collateral) running balances."""
        return self.borrowed_balance, self.collateral_balance

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def acquire(self, caller: str) -> None:
        """
        Open a session for `caller`.

        Raises:
            AlreadyLocked: If a session is already open
        """
        if self._locked:
            raise AlreadyLocked(f"session already held by {self._caller}")
        if not caller:
            raise NotPermitted("session caller cannot be empty")
        self._locked = True
        self._caller = caller
        self._zero()
        logger.debug("session acquired by %s", caller)

    def release(self) -> None:
        """
        Close the session.

        Raises:
            NotLocked: If no session is open
            SessionBalanceNonZero: If either running balance is non-zero
        """
        if not self._locked:
            raise NotLocked("no session to release")
        borrowed, collateral = self.balances()
        if borrowed != 0 or collateral != 0:
            raise SessionBalanceNonZero(
                f"session balances not settled: {self.borrowed_asset}={borrowed}, "
                f"{self.collateral_asset}={collateral}"
            )
        logger.debug("session released by %s", self._caller)
        self._locked = False
        self._caller = None

    def reset(self) -> None:
        """Force the session back to Unlocked with zero balances (used on rollback)."""
        self._locked = False
        self._caller = None
        self._zero()

    # ------------------------------------------------------------------
    # Guards and balance updates
    # ------------------------------------------------------------------

    def require_caller(self, caller: str) -> None:
        """
        Raises:
            NotLocked: If no session is open
            NotPermitted: If `caller` is not the session's caller
        """
        if not self._locked:
            raise NotLocked("primitive actions require an open session")
        if caller != self._caller:
            raise NotPermitted(f"{caller} is not the session caller ({self._caller})")

    def credit(self, asset: str, amount: int) -> None:
        self._check_asset(asset)
        self._balances[asset] += amount

    def debit(self, asset: str, amount: int) -> None:
        """
        Raises:
            InsufficientSessionBalance: If the running balance cannot cover `amount`
        """
        self._check_asset(asset)
        if amount > self._balances[asset]:
            raise InsufficientSessionBalance(
                f"session {asset} balance {self._balances[asset]} cannot cover {amount}"
            )
        self._balances[asset] -= amount

    def _check_asset(self, asset: str) -> None:
        if asset not in self._balances:
            raise UnsupportedAsset(f"{asset} is not tracked by this session")

    def _zero(self) -> None:
        for asset in self._balances:
            self._balances[asset] = 0

    def __repr__(self) -> str:
        state = f"Locked({self._caller})" if self._locked else "Unlocked"
        borrowed, collateral = self.balances()
        return f"Session({state}, {self.borrowed_asset}={borrowed}, {self.collateral_asset}={collateral})"

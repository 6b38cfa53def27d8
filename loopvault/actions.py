"""
actions.py - Primitive actions available inside an open session

Eight state-mutating actions, each of which:
1. Requires an open session and the invoking identity to be the session caller
2. Updates exactly one running balance of the session
3. Immediately performs the corresponding collaborator call

    stake(amount)                borrowed  -> collateral (staking token)
    redeem(shares)               collateral -> borrowed  (staking token)
    supply_collateral(amount)    session collateral -> market position
    withdraw_collateral(amount)  market position -> session collateral
    borrow(amount)               market debt -> session borrowed
    repay(amount)                session borrowed -> market debt
    send(asset, to, amount)      session balance -> external holder
    pull(asset, source, amount)  external holder -> session balance

Every action takes the Session explicitly. Callbacks never see these
functions directly; they receive a SessionHandle bound to the session,
the collaborators and the caller.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional
import logging

from .core import (
    LendingMarket, StakingToken, RateProvider, PositionData, OperationKind,
    ZeroAmount, ZeroAddress, AmountBelowMinimum, UnsupportedAsset,
    is_zero_address,
)
from .ledger import Ledger
from .session import Session
from .snapshot import PositionSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class VaultEnvironment:
    """
    The collaborators a vault acts through, and the identity it acts as.

    Attributes:
        ledger: Token balances (borrowed asset, collateral, shares)
        market: Lending market holding the position
        staking: Liquid-staking token (collateral issuer)
        rate_provider: Reference rate for valuing collateral
        vault_holder: Identity owning the market position and loose tokens
        borrowed_asset: Symbol of the borrowed asset
        collateral_asset: Symbol of the collateral asset
        minimum_stake: Smallest amount stake() accepts
    """
    ledger: Ledger
    market: LendingMarket
    staking: StakingToken
    rate_provider: RateProvider
    vault_holder: str
    borrowed_asset: str
    collateral_asset: str
    minimum_stake: int = 0


def _require_positive(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"amount must be int, got {type(amount).__name__}")
    if amount <= 0:
        raise ZeroAmount(f"amount must be positive, got {amount}")


def _require_holder(holder: Optional[str]) -> None:
    if is_zero_address(holder):
        raise ZeroAddress("holder cannot be the zero address")


def _require_session_asset(env: VaultEnvironment, asset: str) -> None:
    if asset not in (env.borrowed_asset, env.collateral_asset):
        raise UnsupportedAsset(f"{asset} cannot move through the session")


# ============================================================================
# PRIMITIVE ACTIONS
# ============================================================================

def stake(session: Session, env: VaultEnvironment, caller: str, amount: int) -> int:
    """
    Convert session borrowed asset into collateral through the staking token.

    Returns:
        Collateral received

    Raises:
        AmountBelowMinimum: If amount is under the staking floor
        InsufficientSessionBalance: If the session holds less than amount
    """
    session.require_caller(caller)
    _require_positive(amount)
    if amount < env.minimum_stake:
        raise AmountBelowMinimum(f"stake {amount} below minimum {env.minimum_stake}")
    session.debit(env.borrowed_asset, amount)
    received = env.staking.stake(amount, env.vault_holder)
    session.credit(env.collateral_asset, received)
    logger.debug("stake %s -> %s collateral", amount, received)
    return received


def redeem(session: Session, env: VaultEnvironment, caller: str, shares: int) -> int:
    """
    Convert session collateral back into the borrowed asset.

    Returns:
        Borrowed asset received
    """
    session.require_caller(caller)
    _require_positive(shares)
    session.debit(env.collateral_asset, shares)
    received = env.staking.redeem(shares, env.vault_holder)
    session.credit(env.borrowed_asset, received)
    logger.debug("redeem %s collateral -> %s", shares, received)
    return received


def supply_collateral(session: Session, env: VaultEnvironment, caller: str, amount: int) -> None:
    """Move session collateral into the market position."""
    session.require_caller(caller)
    _require_positive(amount)
    session.debit(env.collateral_asset, amount)
    env.market.supply(env.collateral_asset, amount, env.vault_holder)
    logger.debug("supply %s collateral", amount)


def withdraw_collateral(session: Session, env: VaultEnvironment, caller: str, amount: int) -> int:
    """
    Move collateral out of the market position into the session.

    Returns:
        Collateral actually withdrawn (credited to the session)
    """
    session.require_caller(caller)
    _require_positive(amount)
    actual = env.market.withdraw(env.collateral_asset, amount, env.vault_holder)
    session.credit(env.collateral_asset, actual)
    logger.debug("withdraw %s collateral (requested %s)", actual, amount)
    return actual


def borrow(session: Session, env: VaultEnvironment, caller: str, amount: int) -> None:
    """Draw debt from the market into the session."""
    session.require_caller(caller)
    _require_positive(amount)
    env.market.borrow(env.borrowed_asset, amount, env.vault_holder)
    session.credit(env.borrowed_asset, amount)
    logger.debug("borrow %s", amount)


def repay(session: Session, env: VaultEnvironment, caller: str, amount: int) -> int:
    """
    Repay market debt from the session.

    If the market takes less than `amount` (debt smaller than amount), only
    the amount taken leaves the session.

    Returns:
        Amount actually repaid
    """
    session.require_caller(caller)
    _require_positive(amount)
    session.debit(env.borrowed_asset, amount)
    actual = env.market.repay(env.borrowed_asset, amount, env.vault_holder)
    if actual < amount:
        session.credit(env.borrowed_asset, amount - actual)
    logger.debug("repay %s (requested %s)", actual, amount)
    return actual


def send(session: Session, env: VaultEnvironment, caller: str, asset: str, to: str, amount: int) -> None:
    """
    Transfer a session balance to an external holder.

    Raises:
        ZeroAddress: If `to` is empty or the zero address
        ZeroAmount: If amount is not positive
        InsufficientSessionBalance: If the session balance cannot cover amount
    """
    session.require_caller(caller)
    _require_holder(to)
    _require_positive(amount)
    _require_session_asset(env, asset)
    session.debit(asset, amount)
    env.ledger.transfer(asset, env.vault_holder, to, amount, memo="session_send")
    logger.debug("send %s %s to %s", amount, asset, to)


def pull(session: Session, env: VaultEnvironment, caller: str, asset: str, source: str, amount: int) -> None:
    """
    Transfer tokens from an external holder into the session.

    The holder must have approved the vault for at least `amount`.

    Raises:
        ZeroAddress: If `source` is empty or the zero address
        ZeroAmount: If amount is not positive
    """
    session.require_caller(caller)
    _require_holder(source)
    _require_positive(amount)
    _require_session_asset(env, asset)
    env.ledger.transfer_from(env.vault_holder, asset, source, env.vault_holder, amount, memo="session_pull")
    session.credit(asset, amount)
    logger.debug("pull %s %s from %s", amount, asset, source)


# ============================================================================
# SESSION HANDLE
# ============================================================================

class SessionHandle:
    """
    The capability a callback receives while its session is open.

    Binds the session, collaborators and caller so callback code reads
    `handle.stake(amount)`. Also exposes read-only context: the operation
    kind, the before-snapshot, the share amount (withdraw), the collateral
    amount (unwind) and the live market position for sizing decisions.
    """

    def __init__(
        self,
        session: Session,
        env: VaultEnvironment,
        caller: str,
        kind: OperationKind,
        before: PositionSnapshot,
        shares: Optional[int] = None,
        amount: Optional[int] = None,
    ):
        self._session = session
        self._env = env
        self.caller = caller
        self.kind = kind
        self.before = before
        self.shares = shares
        self.amount = amount

    @property
    def borrowed_asset(self) -> str:
        return self._env.borrowed_asset

    @property
    def collateral_asset(self) -> str:
        return self._env.collateral_asset

    @property
    def minimum_stake(self) -> int:
        return self._env.minimum_stake

    @property
    def staking(self) -> StakingToken:
        return self._env.staking

    @property
    def rate_provider(self) -> RateProvider:
        return self._env.rate_provider

    def session_balances(self) -> Any:
        """(borrowed, collateral) running balances."""
        return self._session.balances()

    def market_position(self) -> PositionData:
        """Live market position of the vault (may be mid-operation)."""
        return self._env.market.position_data(self._env.vault_holder)

    def stake(self, amount: int) -> int:
        return stake(self._session, self._env, self.caller, amount)

    def redeem(self, shares: int) -> int:
        return redeem(self._session, self._env, self.caller, shares)

    def supply_collateral(self, amount: int) -> None:
        supply_collateral(self._session, self._env, self.caller, amount)

    def withdraw_collateral(self, amount: int) -> int:
        return withdraw_collateral(self._session, self._env, self.caller, amount)

    def borrow(self, amount: int) -> None:
        borrow(self._session, self._env, self.caller, amount)

    def repay(self, amount: int) -> int:
        return repay(self._session, self._env, self.caller, amount)

    def send(self, asset: str, to: str, amount: int) -> None:
        send(self._session, self._env, self.caller, asset, to, amount)

    def pull(self, asset: str, source: str, amount: int) -> None:
        pull(self._session, self._env, self.caller, asset, source, amount)

    def __repr__(self) -> str:
        return f"SessionHandle({self.kind.value}, caller={self.caller})"

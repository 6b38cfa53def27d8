"""
ledger.py - Token Balance Ledger

The Ledger holds every token balance the vault touches: the borrowed asset,
the staking collateral, and the vault's own shares. It stands in for the
token contracts of the platform the engine runs on.

Key responsibilities:
    - Registers holders and assets
    - Executes batches of moves atomically (all moves succeed or all fail)
    - Issues and redeems through SYSTEM_HOLDER (double-entry: the system
      holder's balance mirrors the circulating supply)
    - Tracks logical time for collaborators that accrue (rate caps)
    - Captures and restores its full state for operation rollback
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
import copy
import logging

from .core import (
    Asset, Move, SYSTEM_HOLDER,
)

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for token ledger errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would take a holder's balance below zero."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a transfer_from exceeds the approved amount."""
    pass


class AssetNotRegistered(LedgerError):
    pass


class HolderNotRegistered(LedgerError):
    pass


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed batch of moves.

    Attributes:
        moves: The moves applied, in order
        sequence_number: Monotonic sequence within the ledger
        execution_time: Logical time the batch was applied
    """
    moves: Tuple[Move, ...]
    sequence_number: int
    execution_time: datetime

    def __repr__(self) -> str:
        return f"Transaction(#{self.sequence_number}, {len(self.moves)} moves)"


class Ledger:
    """
    Double-entry token ledger with atomic batch execution.

    Every non-system holder balance is non-negative. SYSTEM_HOLDER may go
    negative; for every asset the sum over all holders (system included) is
    zero, so total_supply() is the negation of the system balance.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.

    Example:
        ledger = Ledger("chain")
        ledger.register_asset(Asset("WETH", "Wrapped Ether"))
        ledger.register_holder("alice")
        ledger.mint("WETH", "alice", 10 * WAD)
        ledger.transfer("WETH", "alice", "vault", WAD)
    """

    def __init__(self, name: str, initial_time: Optional[datetime] = None):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
        """
        self.name = name
        self.balances: Dict[str, Dict[str, int]] = {}
        self.assets: Dict[str, Asset] = {}
        self.registered_holders: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.allowances: Dict[Tuple[str, str, str], int] = {}
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0

        self.registered_holders.add(SYSTEM_HOLDER)
        self.balances[SYSTEM_HOLDER] = defaultdict(int)

    # ========================================================================
    # READ-ONLY ACCESS
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, holder: str, symbol: str) -> int:
        """
        Balance of an asset held by a holder.

        Raises:
            HolderNotRegistered: If holder is not registered
            AssetNotRegistered: If asset is not registered
        """
        if holder not in self.registered_holders:
            raise HolderNotRegistered(f"Holder {holder} not registered")
        if symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {symbol} not registered")
        return self.balances[holder].get(symbol, 0)

    def get_asset(self, symbol: str) -> Asset:
        if symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {symbol} not registered")
        return self.assets[symbol]

    def list_holders(self) -> Set[str]:
        return self.registered_holders.copy()

    def list_assets(self) -> List[str]:
        return sorted(self.assets.keys())

    def is_registered(self, holder: str) -> bool:
        return holder in self.registered_holders

    def total_supply(self, symbol: str) -> int:
        """Circulating supply: sum of all non-system balances."""
        if symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {symbol} not registered")
        return sum(
            self.balances[h].get(symbol, 0)
            for h in sorted(self.registered_holders)
            if h != SYSTEM_HOLDER
        )

    def verify_double_entry(self) -> Dict[str, Any]:
        """
        Verify that every asset nets to zero across all holders.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every asset sums to zero
            - 'supplies': Dict[str, int] - Circulating supply per asset
            - 'discrepancies': List[Dict] - Assets whose sum is non-zero
        """
        supplies = {}
        discrepancies = []
        for symbol in self.assets:
            net = sum(self.balances[h].get(symbol, 0) for h in self.registered_holders)
            supplies[symbol] = self.total_supply(symbol)
            if net != 0:
                discrepancies.append({'asset': symbol, 'net': net})
        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_holder(self, holder: str) -> str:
        """
        Register a holder.

        Raises:
            ValueError: If the holder is already registered or empty
        """
        if not holder or not holder.strip():
            raise ValueError("Holder identity cannot be empty")
        if holder in self.registered_holders:
            raise ValueError(f"Holder {holder} already registered")
        self.registered_holders.add(holder)
        self.balances[holder] = defaultdict(int)
        return holder

    def register_asset(self, asset: Asset) -> None:
        """
        Register an asset.

        Raises:
            ValueError: If the symbol is already registered
        """
        if asset.symbol in self.assets:
            raise ValueError(f"Asset {asset.symbol} already registered")
        self.assets[asset.symbol] = asset
        logger.debug("registered asset %s (%s)", asset.symbol, asset.name)

    # ========================================================================
    # TRANSFERS (Mutating)
    # ========================================================================

    def execute(self, moves: Sequence[Move]) -> Transaction:
        """
        Apply a batch of moves atomically.

        All moves are validated against the balances they would produce
        before any is applied; a failing batch leaves the ledger untouched.

        Raises:
            AssetNotRegistered, HolderNotRegistered: Unknown asset or holder
            InsufficientFunds: A non-system holder would go negative
            ValueError: If the batch is empty
        """
        if not moves:
            raise ValueError("Transaction must contain at least one move")
        self._validate(moves)

        for move in moves:
            self.balances[move.source][move.asset] -= move.quantity
            self.balances[move.dest][move.asset] += move.quantity

        tx = Transaction(
            moves=tuple(moves),
            sequence_number=self._next_sequence,
            execution_time=self._current_time,
        )
        self._next_sequence += 1
        self.transaction_log.append(tx)
        return tx

    def transfer(self, symbol: str, source: str, dest: str, amount: int, memo: str = "") -> Transaction:
        return self.execute([Move(amount, symbol, source, dest, memo)])

    def mint(self, symbol: str, dest: str, amount: int, memo: str = "mint") -> Transaction:
        """Issue new units to dest (moves out of SYSTEM_HOLDER)."""
        return self.execute([Move(amount, symbol, SYSTEM_HOLDER, dest, memo)])

    def burn(self, symbol: str, source: str, amount: int, memo: str = "burn") -> Transaction:
        """Redeem units from source (moves into SYSTEM_HOLDER)."""
        return self.execute([Move(amount, symbol, source, SYSTEM_HOLDER, memo)])

    def approve(self, owner: str, spender: str, symbol: str, amount: int) -> None:
        """Allow `spender` to move up to `amount` of `owner`'s `symbol` (overwrites)."""
        if owner not in self.registered_holders:
            raise HolderNotRegistered(f"Holder {owner} not registered")
        if symbol not in self.assets:
            raise AssetNotRegistered(f"Asset {symbol} not registered")
        if amount < 0:
            raise ValueError(f"Allowance cannot be negative, got {amount}")
        self.allowances[(owner, spender, symbol)] = amount

    def allowance(self, owner: str, spender: str, symbol: str) -> int:
        return self.allowances.get((owner, spender, symbol), 0)

    def transfer_from(
        self, spender: str, symbol: str, source: str, dest: str, amount: int, memo: str = ""
    ) -> Transaction:
        """
        Move `amount` out of `source` on its behalf, consuming allowance.

        Raises:
            InsufficientAllowance: If `source` has not approved `spender` for `amount`
        """
        allowed = self.allowance(source, spender, symbol)
        if amount > allowed:
            raise InsufficientAllowance(
                f"{spender} may move {allowed} {symbol} from {source}, requested {amount}"
            )
        tx = self.transfer(symbol, source, dest, amount, memo)
        self.allowances[(source, spender, symbol)] = allowed - amount
        return tx

    def _validate(self, moves: Sequence[Move]) -> None:
        net: Dict[Tuple[str, str], int] = {}
        for move in moves:
            if move.asset not in self.assets:
                raise AssetNotRegistered(f"Asset {move.asset} not registered")
            if move.source not in self.registered_holders:
                raise HolderNotRegistered(f"Holder {move.source} not registered")
            if move.dest not in self.registered_holders:
                raise HolderNotRegistered(f"Holder {move.dest} not registered")
            key_src = (move.source, move.asset)
            key_dst = (move.dest, move.asset)
            net[key_src] = net.get(key_src, 0) - move.quantity
            net[key_dst] = net.get(key_dst, 0) + move.quantity

        # SYSTEM_HOLDER is exempt: it carries the negative of circulating supply.
        for (holder, symbol), delta in net.items():
            if holder == SYSTEM_HOLDER:
                continue
            proposed = self.balances[holder][symbol] + delta
            if proposed < 0:
                raise InsufficientFunds(
                    f"{holder} {symbol}: balance {self.balances[holder][symbol]} "
                    f"cannot cover {-delta}"
                )

    # ========================================================================
    # CHECKPOINT / RESTORE
    # ========================================================================

    def checkpoint(self) -> Dict[str, Any]:
        """
        Capture the full mutable state of the ledger.

        Assets and holders registered after the checkpoint are removed on
        restore, as are balances and log entries.
        """
        return {
            'balances': {h: dict(b) for h, b in self.balances.items()},
            'assets': dict(self.assets),
            'holders': self.registered_holders.copy(),
            'allowances': dict(self.allowances),
            'log_length': len(self.transaction_log),
            'sequence': self._next_sequence,
            'time': self._current_time,
        }

    def restore(self, token: Dict[str, Any]) -> None:
        """Restore state captured by checkpoint()."""
        self.balances = {
            h: defaultdict(int, b) for h, b in copy.deepcopy(token['balances']).items()
        }
        self.assets = dict(token['assets'])
        self.registered_holders = set(token['holders'])
        self.allowances = dict(token['allowances'])
        del self.transaction_log[token['log_length']:]
        self._next_sequence = token['sequence']
        self._current_time = token['time']

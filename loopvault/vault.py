"""
vault.py - Operation orchestrator

LoopVault runs the five top-level operations. Each one:

    1. refuses to start while a session is open
    2. checkpoints every participant (ledger, market, staking, rate provider,
       fee state)
    3. accrues performance fees (initialize, deposit, withdraw)
    4. opens the session and takes the before-snapshot
    5. runs the caller's callback with a SessionHandle
    6. takes the after-snapshot, closes the session (balances must be zero)
       and checks the reference rate did not move
    7. applies the operation's acceptance predicate
    8. mints or burns shares and emits an OperationRecord

Any exception in steps 3-8 restores every participant, resets the session
and propagates unchanged.
"""

from __future__ import annotations
from contextlib import contextmanager
from decimal import Decimal, ROUND_DOWN
from typing import Any, Callable, Iterable, Iterator, List, Optional, Tuple, Union
import logging

from .actions import SessionHandle, VaultEnvironment
from .comparator import (
    ComparisonContext, check_rate_unchanged, check_deposit, check_donate,
    check_withdraw, check_unwind, check_initialize_before, check_initialize_after,
)
from .config import VaultConfig
from .core import (
    Asset, Checkpointable, LendingMarket, LoopCallback, OperationKind, OperationRecord,
    RateProvider, StakingToken,
    AlreadyLocked, ZeroAmount, ZeroAddress, InsufficientShares, NotInitialized,
    AmountExceedsAvailable, InvalidCallbackResult, NavIncreaseBelowMin,
    is_zero_address, mul_ratio,
)
from .fees import FeeState, calculate_share_rate
from .ledger import Ledger
from .session import Session
from .snapshot import (
    PositionSnapshot, read_snapshot, calculate_shares_for_nav_delta,
    convert_to_shares, convert_to_assets,
)

logger = logging.getLogger(__name__)

Callback = Union[LoopCallback, Callable[[SessionHandle, Any], Optional[int]]]


class LoopVault:
    """
    A share-issuing vault over one leveraged staking position.

    Example:
        vault = LoopVault(ledger, market, staking, rate_provider, VaultConfig())
        ledger.approve("alice", vault.holder, "WETH", WAD)
        vault.initialize("alice", SeedInitializer("alice", WAD))
        vault.deposit("alice", LeverageLoop("alice", 10 * WAD, Decimal("1.3")))
    """

    def __init__(
        self,
        ledger: Ledger,
        market: LendingMarket,
        staking: StakingToken,
        rate_provider: RateProvider,
        config: Optional[VaultConfig] = None,
        participants: Iterable[Checkpointable] = (),
    ):
        self.config = config or VaultConfig()
        self.ledger = ledger
        self.market = market
        self.staking = staking
        self.rate_provider = rate_provider
        self.env = VaultEnvironment(
            ledger=ledger,
            market=market,
            staking=staking,
            rate_provider=rate_provider,
            vault_holder=self.config.vault_holder,
            borrowed_asset=self.config.borrowed_asset,
            collateral_asset=self.config.collateral_asset,
            minimum_stake=self.config.minimum_stake,
        )
        self.session = Session(self.config.borrowed_asset, self.config.collateral_asset)
        self.fee_state = FeeState(self.config.fee_rate, self.config.fee_recipient)
        self.records: List[OperationRecord] = []

        if self.config.share_symbol not in ledger.assets:
            ledger.register_asset(Asset(self.config.share_symbol, "Loop vault share"))
        for holder in (self.config.vault_holder, self.config.fee_recipient):
            if holder and not ledger.is_registered(holder):
                ledger.register_holder(holder)

        self._participants: List[Checkpointable] = []
        for candidate in (ledger, market, staking, rate_provider, self.fee_state, *participants):
            if isinstance(candidate, Checkpointable) and all(candidate is not p for p in self._participants):
                self._participants.append(candidate)

    @property
    def holder(self) -> str:
        """Identity the vault holds tokens and its market position under."""
        return self.config.vault_holder

    @property
    def share_symbol(self) -> str:
        return self.config.share_symbol

    # ========================================================================
    # TOP-LEVEL OPERATIONS
    # ========================================================================

    def initialize(
        self, caller: str, callback: Callback, data: Any = None, receiver: Optional[str] = None
    ) -> OperationRecord:
        """
        Seed an empty vault. The callback must build a debt-free position
        worth at least minimum_deposit; shares are issued 1:1 with its NAV.

        Raises:
            AlreadyInitialized, CollateralNonZero, DebtAfterInitNonZero, NavIncreaseBelowMin
        """
        receiver = self._resolve_receiver(caller, receiver)
        kind = OperationKind.INITIALIZE
        self._require_unlocked()
        with self._atomic(kind):
            fee_shares = self._accrue_fees()
            before, handle = self._open(kind, caller, self._minted_supply())
            check_initialize_before(before)
            self._dispatch(callback, handle, data)
            ctx = ComparisonContext(before, self._close(before))
            check_initialize_after(ctx, self.config)
            minted = ctx.after.nav
            self.ledger.mint(self.share_symbol, receiver, minted, memo="initialize")
            self.fee_state.raise_high_water_mark(
                calculate_share_rate(ctx.after.collateral_value, ctx.after.debt, minted)
            )
        return self._record(kind, caller, ctx, minted=minted, fee_shares=fee_shares)

    def deposit(
        self, caller: str, callback: Callback, data: Any = None, receiver: Optional[str] = None
    ) -> OperationRecord:
        """
        Grow the position. Shares minted are floor(supply * nav_delta / nav_before).

        Raises:
            NotInitialized: If no shares exist yet
            HealthFactorOutOfRange, NavIncreaseBelowMin
        """
        receiver = self._resolve_receiver(caller, receiver)
        kind = OperationKind.DEPOSIT
        self._require_unlocked()
        self._require_initialized()
        with self._atomic(kind):
            fee_shares = self._accrue_fees()
            before, handle = self._open(kind, caller, self._minted_supply())
            self._dispatch(callback, handle, data)
            ctx = ComparisonContext(before, self._close(before))
            check_deposit(ctx, self.config)
            minted = calculate_shares_for_nav_delta(before.total_shares, before.nav, ctx.nav_delta)
            if minted == 0:
                raise NavIncreaseBelowMin(f"deposit of {ctx.nav_delta} would mint no shares")
            self.ledger.mint(self.share_symbol, receiver, minted, memo="deposit")
        return self._record(kind, caller, ctx, minted=minted, fee_shares=fee_shares)

    def withdraw(self, caller: str, shares: int, callback: Callback, data: Any = None) -> OperationRecord:
        """
        Redeem `shares`. They are burned before the callback runs; the callback
        must then shrink debt and collateral by exactly the burned fraction.

        Raises:
            ZeroAmount, InsufficientShares
            InvalidDebtAfterWithdraw, InvalidCollateralAfterWithdraw
        """
        kind = OperationKind.WITHDRAW
        if shares <= 0:
            raise ZeroAmount(f"withdraw requires positive shares, got {shares}")
        self._require_unlocked()
        held = self.balance_of(caller)
        if shares > held:
            raise InsufficientShares(f"{caller} holds {held} shares, requested {shares}")
        with self._atomic(kind):
            fee_shares = self._accrue_fees()
            before, handle = self._open(kind, caller, self._minted_supply(), shares=shares)
            self.ledger.burn(self.share_symbol, caller, shares, memo="withdraw")
            self._dispatch(callback, handle, data)
            ctx = ComparisonContext(before, self._close(before), shares=shares)
            check_withdraw(ctx)
        return self._record(kind, caller, ctx, burned=shares, fee_shares=fee_shares)

    def unwind(
        self,
        caller: str,
        collateral_amount: int,
        callback: Callback,
        data: Any = None,
        slippage_tolerance: Optional[Decimal] = None,
    ) -> OperationRecord:
        """
        Sell a slice of collateral to pay down debt. No shares move.

        The debt must fall by at least the collateral's redemption value at
        the staking rate, less the slippage tolerance.

        Raises:
            ZeroAmount, AmountExceedsAvailable
            InsufficientProceeds, ExcessCollateralRemoved
        """
        kind = OperationKind.UNWIND
        if collateral_amount <= 0:
            raise ZeroAmount(f"unwind requires positive collateral, got {collateral_amount}")
        slippage = self.config.slippage_tolerance if slippage_tolerance is None else Decimal(slippage_tolerance)
        if slippage < 0 or slippage >= 1:
            raise ValueError(f"slippage_tolerance must be in [0, 1), got {slippage}")
        self._require_unlocked()
        with self._atomic(kind):
            before, handle = self._open(kind, caller, self._total_supply(), amount=collateral_amount)
            if collateral_amount > before.collateral:
                raise AmountExceedsAvailable(
                    f"unwind of {collateral_amount} exceeds collateral {before.collateral}"
                )
            redemption_value = self.staking.convert_to_assets(collateral_amount)
            min_proceeds = mul_ratio(redemption_value, Decimal("1") - slippage, ROUND_DOWN)
            proceeds = self._dispatch(callback, handle, data)
            ctx = ComparisonContext(before, self._close(before))
            check_unwind(ctx, collateral_amount, min_proceeds, proceeds)
        return self._record(kind, caller, ctx, proceeds=proceeds or 0)

    def donate(self, caller: str, callback: Callback, data: Any = None) -> OperationRecord:
        """
        Add value without minting shares; existing holders gain pro rata.

        Raises:
            NotInitialized, HealthFactorOutOfRange, NavIncreaseBelowMin
        """
        kind = OperationKind.DONATE
        self._require_unlocked()
        self._require_initialized()
        with self._atomic(kind):
            before, handle = self._open(kind, caller, self._total_supply())
            self._dispatch(callback, handle, data)
            ctx = ComparisonContext(before, self._close(before))
            check_donate(ctx, self.config)
        return self._record(kind, caller, ctx)

    # ========================================================================
    # CONSISTENT-VIEW GETTERS
    # ========================================================================

    def snapshot(self) -> PositionSnapshot:
        """Current position, with supply including pending fee shares."""
        self._require_unlocked()
        return self._read(self._total_supply())

    def total_assets(self) -> int:
        """NAV of the position in the borrowed asset."""
        return self.snapshot().nav

    def total_supply(self) -> int:
        """Minted shares plus fee shares the next accrual would mint."""
        self._require_unlocked()
        return self._total_supply()

    def pending_fee_shares(self) -> int:
        self._require_unlocked()
        return self._pending_fee_shares()

    def share_rate(self) -> Decimal:
        snap = self.snapshot()
        return calculate_share_rate(snap.collateral_value, snap.debt, snap.total_shares)

    def convert_to_shares(self, assets: int) -> int:
        snap = self.snapshot()
        return convert_to_shares(assets, snap.total_shares, snap.nav)

    def convert_to_assets(self, shares: int) -> int:
        snap = self.snapshot()
        return convert_to_assets(shares, snap.total_shares, snap.nav)

    def balance_of(self, holder: str) -> int:
        self._require_unlocked()
        if not self.ledger.is_registered(holder):
            return 0
        return self.ledger.get_balance(holder, self.share_symbol)

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @contextmanager
    def _atomic(self, kind: OperationKind) -> Iterator[None]:
        tokens = [(p, p.checkpoint()) for p in self._participants]
        try:
            yield
        except Exception as exc:
            for participant, token in reversed(tokens):
                participant.restore(token)
            self.session.reset()
            logger.warning("%s rolled back: %s: %s", kind.value, type(exc).__name__, exc)
            raise

    def _open(
        self,
        kind: OperationKind,
        caller: str,
        total_shares: int,
        shares: Optional[int] = None,
        amount: Optional[int] = None,
    ) -> Tuple[PositionSnapshot, SessionHandle]:
        self.session.acquire(caller)
        before = self._read(total_shares)
        handle = SessionHandle(self.session, self.env, caller, kind, before, shares=shares, amount=amount)
        return before, handle

    def _close(self, before: PositionSnapshot) -> PositionSnapshot:
        after = self._read(before.total_shares)
        self.session.release()
        check_rate_unchanged(before.rate, after.rate)
        return after

    def _dispatch(self, callback: Callback, handle: SessionHandle, data: Any) -> Optional[int]:
        if isinstance(callback, LoopCallback):
            result = callback.run(handle, data)
        elif callable(callback):
            result = callback(handle, data)
        else:
            raise TypeError(f"callback must implement run() or be callable, got {type(callback).__name__}")
        if result is not None and (isinstance(result, bool) or not isinstance(result, int) or result < 0):
            raise InvalidCallbackResult(f"callback returned {result!r}, expected None or a non-negative int")
        return result

    def _read(self, total_shares: int) -> PositionSnapshot:
        return read_snapshot(
            self.market, self.rate_provider, self.holder, self.config.collateral_asset, total_shares
        )

    def _minted_supply(self) -> int:
        return self.ledger.total_supply(self.share_symbol)

    def _pending_fee_shares(self) -> int:
        data = self.market.position_data(self.holder)
        return self.fee_state.pending(data.collateral_value, data.debt_value, self._minted_supply())

    def _total_supply(self) -> int:
        return self._minted_supply() + self._pending_fee_shares()

    def _accrue_fees(self) -> int:
        data = self.market.position_data(self.holder)
        fee_shares = self.fee_state.accrue(data.collateral_value, data.debt_value, self._minted_supply())
        if fee_shares > 0:
            self.ledger.mint(self.share_symbol, self.fee_state.fee_recipient, fee_shares, memo="performance_fee")
        return fee_shares

    def _require_unlocked(self) -> None:
        if self.session.is_locked:
            raise AlreadyLocked(f"vault session held by {self.session.caller}")

    def _require_initialized(self) -> None:
        if self._minted_supply() == 0:
            raise NotInitialized("vault has no shares; initialize first")

    def _resolve_receiver(self, caller: str, receiver: Optional[str]) -> str:
        receiver = caller if receiver is None else receiver
        if is_zero_address(receiver):
            raise ZeroAddress("share receiver cannot be the zero address")
        return receiver

    def _record(
        self,
        kind: OperationKind,
        caller: str,
        ctx: ComparisonContext,
        minted: int = 0,
        burned: int = 0,
        fee_shares: int = 0,
        proceeds: int = 0,
    ) -> OperationRecord:
        after = ctx.after
        record = OperationRecord(
            kind=kind,
            caller=caller,
            sequence=len(self.records),
            timestamp=self.ledger.current_time,
            shares_minted=minted,
            shares_burned=burned,
            fee_shares=fee_shares,
            nav_before=ctx.before.nav,
            nav_after=after.nav,
            collateral=after.collateral,
            debt=after.debt,
            total_supply=self._minted_supply(),
            health_factor=after.health_factor,
            proceeds=proceeds,
        )
        self.records.append(record)
        logger.info("committed %r", record)
        return record

"""
Core types and pure functions for the leveraged-position vault.

This module provides the foundational data structures and protocols for the vault:
1. Protocols: collaborator interfaces (lending market, staking token, rate provider),
   the callback contract, and the Checkpointable participant interface
2. Immutable data structures: Asset, Move, PositionData, OperationRecord
3. Exceptions: VaultError and the four-way taxonomy (session, validation,
   invariant, collaborator)
4. Rounding-explicit integer arithmetic: mul_div, mul_ratio, div_ratio

All functions in this module are pure. Token amounts are integers in native
base units; ratios (health factor, LTV, exchange rates) are Decimals.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_UP, ROUND_HALF_EVEN, getcontext
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Ratios are compared for exact equality (rate stability check) and across
# tolerance bands a few parts in 10_000 wide, so the context must be
# deterministic and far more precise than an 18-decimal token amount.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_VAULT_DECIMAL_CONTEXT = getcontext()
_VAULT_DECIMAL_CONTEXT.prec = 50
_VAULT_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved holder for issuance and redemption. Exempt from balance validation.
SYSTEM_HOLDER = "system"

# The null identity. Transfers to or from it are rejected.
ZERO_ADDRESS = "0x" + "0" * 40

# One whole token in native base units (18 decimals).
WAD = 10 ** 18

# Fixed-point base for lending market indices.
RAY = 10 ** 27

# Basis points denominator for LTV / liquidation threshold.
BPS = 10_000

# Rounding modes accepted by the division helpers.
ROUNDING_MODES = (ROUND_DOWN, ROUND_UP)


# ============================================================================
# ENUMS
# ============================================================================

class OperationKind(Enum):
    """Top-level operations that open a session."""
    INITIALIZE = "initialize"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    UNWIND = "unwind"
    DONATE = "donate"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class VaultError(Exception):
    """Base exception for all vault errors."""
    pass


# --- session discipline -----------------------------------------------------

class SessionError(VaultError):
    """Lock protocol misuse."""
    pass


class AlreadyLocked(SessionError):
    """Raised when a session is opened (or a consistent read attempted) while one is in flight."""
    pass


class NotLocked(SessionError):
    """Raised when a primitive action is invoked with no open session."""
    pass


class NotPermitted(SessionError):
    """Raised when a primitive action is invoked by someone other than the session's caller."""
    pass


class SessionBalanceNonZero(SessionError):
    """Raised when a session is closed with a non-zero running balance."""
    pass


class RateChangedDuringSession(SessionError):
    """Raised when the reference rate differs between session open and close."""
    pass


# --- input validation -------------------------------------------------------

class ValidationError(VaultError):
    """Invalid input to an operation or action."""
    pass


class ZeroAmount(ValidationError):
    pass


class ZeroAddress(ValidationError):
    pass


class AmountBelowMinimum(ValidationError):
    pass


class AmountExceedsAvailable(ValidationError):
    pass


class InsufficientSessionBalance(ValidationError):
    """Raised when a decrement exceeds the session's running balance."""
    pass


class UnsupportedAsset(ValidationError):
    pass


class InsufficientShares(ValidationError):
    pass


class NotInitialized(ValidationError):
    pass


class InvalidCallbackResult(ValidationError):
    pass


# --- invariant violations ---------------------------------------------------

class InvariantViolation(VaultError):
    """An operation's economic effect was rejected."""
    pass


class HealthFactorOutOfRange(InvariantViolation):
    pass


class NavIncreaseBelowMin(InvariantViolation):
    pass


class InvalidDebtAfterWithdraw(InvariantViolation):
    pass


class InvalidCollateralAfterWithdraw(InvariantViolation):
    pass


class InsufficientProceeds(InvariantViolation):
    pass


class ExcessCollateralRemoved(InvariantViolation):
    pass


class AlreadyInitialized(InvariantViolation):
    pass


class CollateralNonZero(InvariantViolation):
    pass


class DebtAfterInitNonZero(InvariantViolation):
    pass


class PositionInsolvent(InvariantViolation):
    """Raised when NAV is derived from a snapshot whose debt exceeds its collateral value."""
    pass


# --- collaborator failures --------------------------------------------------

class CollaboratorError(VaultError):
    """Raised by a lending market or staking collaborator; propagated verbatim."""
    pass


class InsufficientLiquidity(CollaboratorError):
    pass


class SupplyCapExceeded(CollaboratorError):
    pass


class BorrowCapacityExceeded(CollaboratorError):
    pass


class HealthFactorTooLow(CollaboratorError):
    pass


# ============================================================================
# ROUNDING-EXPLICIT ARITHMETIC
# ============================================================================

def mul_div(x: int, y: int, denominator: int, rounding: str) -> int:
    """
    Compute x * y / denominator on non-negative integers with explicit rounding.

    Args:
        x, y: Non-negative integer factors
        denominator: Positive integer divisor
        rounding: ROUND_DOWN (floor) or ROUND_UP (ceiling); there is no default

    Raises:
        ZeroDivisionError: If denominator is zero
        ArithmeticError: If any operand is negative
        ValueError: If rounding is not one of ROUNDING_MODES
    """
    if rounding not in ROUNDING_MODES:
        raise ValueError(f"Unsupported rounding mode: {rounding}")
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    if x < 0 or y < 0 or denominator < 0:
        raise ArithmeticError(f"mul_div operands must be non-negative: {x} * {y} / {denominator}")
    product = x * y
    if rounding == ROUND_DOWN:
        return product // denominator
    return -(-product // denominator)


def mul_ratio(amount: int, ratio: Decimal, rounding: str) -> int:
    """
    Scale an integer amount by a Decimal ratio and round to an integer.

    Used wherever a token amount is multiplied by a rate, health factor
    or tolerance. The result is exact up to the 50-digit context.
    """
    if rounding not in ROUNDING_MODES:
        raise ValueError(f"Unsupported rounding mode: {rounding}")
    if amount < 0 or ratio < 0:
        raise ArithmeticError(f"mul_ratio operands must be non-negative: {amount} * {ratio}")
    return int((Decimal(amount) * ratio).to_integral_value(rounding=rounding))


def div_ratio(amount: int, ratio: Decimal, rounding: str) -> int:
    """Divide an integer amount by a positive Decimal ratio and round to an integer."""
    if rounding not in ROUNDING_MODES:
        raise ValueError(f"Unsupported rounding mode: {rounding}")
    if ratio <= 0:
        raise ZeroDivisionError(f"div_ratio divisor must be positive, got {ratio}")
    if amount < 0:
        raise ArithmeticError(f"div_ratio amount must be non-negative, got {amount}")
    return int((Decimal(amount) / ratio).to_integral_value(rounding=rounding))


def bps_to_ratio(bps: int) -> Decimal:
    """Convert basis points to a Decimal ratio (9500 -> 0.95)."""
    return Decimal(bps) / Decimal(BPS)


def is_zero_address(holder: Optional[str]) -> bool:
    """True for an empty identity or the null address."""
    return not holder or not holder.strip() or holder == ZERO_ADDRESS


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Asset:
    """
    Definition of a fungible token tracked by the token ledger.

    Attributes:
        symbol: Short identifier (e.g., "WETH", "WSTETH", "LOOP")
        name: Human-readable name
        decimals: Number of decimals of one whole token
    """
    symbol: str
    name: str
    decimals: int = 18

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Asset symbol cannot be empty")
        if self.decimals < 0:
            raise ValueError(f"Asset decimals cannot be negative, got {self.decimals}")

    @property
    def one(self) -> int:
        """One whole token in base units."""
        return 10 ** self.decimals


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of an asset between two holders.

    Attributes:
        quantity: Positive integer amount in base units
        asset: Symbol of the asset moved
        source: Holder debited
        dest: Holder credited
        memo: Free-form label for the audit log
    """
    quantity: int
    asset: str
    source: str
    dest: str
    memo: str = ""

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.asset or not self.asset.strip():
            raise ValueError("Move asset cannot be empty")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"Move quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.asset}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class PositionData:
    """
    Account summary returned by a lending market for one owner.

    Values are in the reference currency (the borrowed asset). Ratios are in
    basis points as lending markets report them; health factor is a Decimal
    (Infinity when there is no debt).
    """
    collateral_value: int
    debt_value: int
    available_borrow: int
    liquidation_threshold_bps: int
    ltv_bps: int
    health_factor: Decimal


@dataclass(frozen=True, slots=True)
class ScaledBalances:
    """Raw scaled balances and accrual indices (RAY) backing a market position."""
    collateral_scaled: int
    collateral_index: int
    debt_scaled: int
    debt_index: int


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """
    Immutable record emitted for every committed top-level operation.

    Attributes:
        kind: Which operation committed
        caller: Identity that held the session
        sequence: Monotonic sequence number within the vault
        timestamp: Logical time of commit
        shares_minted: Shares issued to the receiver (deposit/initialize)
        shares_burned: Shares redeemed (withdraw)
        fee_shares: Fee shares minted by the accrual preceding the operation
        nav_before, nav_after: Net asset value around the callback
        collateral, debt: Resulting position totals
        total_supply: Resulting share supply
        health_factor: Resulting health factor
        proceeds: Borrowed asset returned by an unwind (0 otherwise)
    """
    kind: OperationKind
    caller: str
    sequence: int
    timestamp: datetime
    shares_minted: int
    shares_burned: int
    fee_shares: int
    nav_before: int
    nav_after: int
    collateral: int
    debt: int
    total_supply: int
    health_factor: Decimal
    proceeds: int = 0

    @property
    def nav_delta(self) -> int:
        return self.nav_after - self.nav_before

    def __repr__(self) -> str:
        parts = [f"{self.kind.value}#{self.sequence}", f"caller={self.caller}"]
        if self.shares_minted:
            parts.append(f"minted={self.shares_minted}")
        if self.shares_burned:
            parts.append(f"burned={self.shares_burned}")
        if self.fee_shares:
            parts.append(f"fees={self.fee_shares}")
        if self.proceeds:
            parts.append(f"proceeds={self.proceeds}")
        parts.append(f"nav_delta={self.nav_delta}")
        parts.append(f"supply={self.total_supply}")
        return f"OperationRecord({', '.join(parts)})"


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class Checkpointable(Protocol):
    """
    A participant whose state can be captured and restored.

    The orchestrator checkpoints every participant before an operation and
    restores all of them if the operation raises, so a failed operation is
    indistinguishable from one that never started.
    """

    def checkpoint(self) -> Any:
        ...

    def restore(self, token: Any) -> None:
        ...


@runtime_checkable
class LendingMarket(Protocol):
    """Lending market collaborator. `owner` is the account the call acts for."""

    def supply(self, asset: str, amount: int, owner: str) -> None:
        ...

    def withdraw(self, asset: str, amount: int, owner: str) -> int:
        """Return the amount actually withdrawn."""
        ...

    def borrow(self, asset: str, amount: int, owner: str) -> None:
        ...

    def repay(self, asset: str, amount: int, owner: str) -> int:
        """Return the amount actually repaid."""
        ...

    def position_data(self, owner: str) -> PositionData:
        ...

    def collateral_balance(self, asset: str, owner: str) -> int:
        ...

    def debt_balance(self, asset: str, owner: str) -> int:
        ...

    def scaled_balances(self, owner: str) -> ScaledBalances:
        ...


@runtime_checkable
class StakingToken(Protocol):
    """Liquid-staking token collaborator (shares are the collateral asset)."""

    def stake(self, amount: int, owner: str) -> int:
        """Convert `amount` of the borrowed asset into staking shares; return shares received."""
        ...

    def redeem(self, shares: int, owner: str) -> int:
        """Convert staking shares back to the borrowed asset; return assets received."""
        ...

    def convert_to_assets(self, shares: int) -> int:
        ...

    def convert_to_shares(self, assets: int) -> int:
        ...

    def current_rate(self) -> Decimal:
        ...


@runtime_checkable
class RateProvider(Protocol):
    """Reference rate used to value collateral in the borrowed asset."""

    def current_rate(self) -> Decimal:
        ...

    def is_capped(self) -> bool:
        ...


@runtime_checkable
class LoopCallback(Protocol):
    """
    Caller-supplied logic run inside an open session.

    `run` receives a SessionHandle (the only way to invoke primitive actions)
    and the caller's opaque data. It may return an asset amount (unwind
    proceeds) or None. Any exception aborts the whole operation.
    """

    def run(self, handle: Any, data: Any) -> Optional[int]:
        ...

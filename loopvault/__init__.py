"""
loopvault - Leveraged staking position vault

A share-issuing vault over a looped position: a liquid-staking token
supplied as collateral to a lending market, borrowed against, and
re-staked. Every top-level operation runs a caller-supplied callback
inside a locked session and commits only if the position's before/after
comparison passes.

Usage:
    from decimal import Decimal
    from loopvault import (
        Ledger, Asset, LoopVault, VaultConfig, WAD,
        SimulatedStakingToken, CappedRateProvider, SimulatedLendingMarket,
        SeedInitializer, LeverageLoop,
    )

    ledger = Ledger("chain")
    ledger.register_asset(Asset("WETH", "Wrapped Ether"))
    ledger.register_asset(Asset("WSTETH", "Wrapped Staked Ether"))
    ledger.register_holder("alice")
    ledger.mint("WETH", "alice", 20 * WAD)

    staking = SimulatedStakingToken(ledger, "WETH", "WSTETH", rate=Decimal("1.2"))
    rates = CappedRateProvider(staking, ledger)
    market = SimulatedLendingMarket(ledger, rates, "WETH", "WSTETH")
    ledger.mint("WETH", market.holder, 1_000 * WAD)

    vault = LoopVault(ledger, market, staking, rates, VaultConfig())
    ledger.approve("alice", vault.holder, "WETH", 20 * WAD)
    vault.initialize("alice", SeedInitializer("alice", WAD))
    vault.deposit("alice", LeverageLoop("alice", 10 * WAD))
"""

# Core types
from .core import (
    Asset,
    Move,
    PositionData,
    ScaledBalances,
    OperationKind,
    OperationRecord,
    Checkpointable,
    LendingMarket,
    StakingToken,
    RateProvider,
    LoopCallback,
    mul_div,
    mul_ratio,
    div_ratio,
    bps_to_ratio,
    is_zero_address,
    SYSTEM_HOLDER,
    ZERO_ADDRESS,
    WAD,
    RAY,
    BPS,
    # Exceptions
    VaultError,
    SessionError,
    AlreadyLocked,
    NotLocked,
    NotPermitted,
    SessionBalanceNonZero,
    RateChangedDuringSession,
    ValidationError,
    ZeroAmount,
    ZeroAddress,
    AmountBelowMinimum,
    AmountExceedsAvailable,
    InsufficientSessionBalance,
    UnsupportedAsset,
    InsufficientShares,
    NotInitialized,
    InvalidCallbackResult,
    InvariantViolation,
    HealthFactorOutOfRange,
    NavIncreaseBelowMin,
    InvalidDebtAfterWithdraw,
    InvalidCollateralAfterWithdraw,
    InsufficientProceeds,
    ExcessCollateralRemoved,
    AlreadyInitialized,
    CollateralNonZero,
    DebtAfterInitNonZero,
    PositionInsolvent,
    CollaboratorError,
    InsufficientLiquidity,
    SupplyCapExceeded,
    BorrowCapacityExceeded,
    HealthFactorTooLow,
)

# Token ledger
from .ledger import (
    Ledger,
    Transaction,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    AssetNotRegistered,
    HolderNotRegistered,
)

# Configuration
from .config import VaultConfig, load_config, configure_logging

# Engine
from .snapshot import (
    PositionSnapshot,
    read_snapshot,
    calculate_nav,
    calculate_shares_for_nav_delta,
    calculate_proportional_debt,
    calculate_proportional_collateral,
    convert_to_shares,
    convert_to_assets,
)
from .session import Session
from .actions import VaultEnvironment, SessionHandle
from .comparator import ComparisonContext
from .fees import FeeState, calculate_share_rate, calculate_fee_shares
from .vault import LoopVault

# Collaborators
from .collaborators import (
    SimulatedLendingMarket,
    SimulatedStakingToken,
    CappedRateProvider,
)

# Strategies
from .strategies import (
    calculate_borrow_amount,
    SeedInitializer,
    LeverageLoop,
    ProportionalWithdraw,
    SwapDeskUnwind,
)

__version__ = "0.1.0"

__all__ = [
    'Asset', 'Move', 'PositionData', 'ScaledBalances', 'OperationKind', 'OperationRecord',
    'Checkpointable', 'LendingMarket', 'StakingToken', 'RateProvider', 'LoopCallback',
    'mul_div', 'mul_ratio', 'div_ratio', 'bps_to_ratio', 'is_zero_address',
    'SYSTEM_HOLDER', 'ZERO_ADDRESS', 'WAD', 'RAY', 'BPS',
    'VaultError', 'SessionError', 'AlreadyLocked', 'NotLocked', 'NotPermitted',
    'SessionBalanceNonZero', 'RateChangedDuringSession',
    'ValidationError', 'ZeroAmount', 'ZeroAddress', 'AmountBelowMinimum',
    'AmountExceedsAvailable', 'InsufficientSessionBalance', 'UnsupportedAsset',
    'InsufficientShares', 'NotInitialized', 'InvalidCallbackResult',
    'InvariantViolation', 'HealthFactorOutOfRange', 'NavIncreaseBelowMin',
    'InvalidDebtAfterWithdraw', 'InvalidCollateralAfterWithdraw', 'InsufficientProceeds',
    'ExcessCollateralRemoved', 'AlreadyInitialized', 'CollateralNonZero',
    'DebtAfterInitNonZero', 'PositionInsolvent',
    'CollaboratorError', 'InsufficientLiquidity', 'SupplyCapExceeded',
    'BorrowCapacityExceeded', 'HealthFactorTooLow',
    'Ledger', 'Transaction', 'LedgerError', 'InsufficientFunds', 'InsufficientAllowance',
    'AssetNotRegistered', 'HolderNotRegistered',
    'VaultConfig', 'load_config', 'configure_logging',
    'PositionSnapshot', 'read_snapshot', 'calculate_nav', 'calculate_shares_for_nav_delta',
    'calculate_proportional_debt', 'calculate_proportional_collateral',
    'convert_to_shares', 'convert_to_assets',
    'Session', 'VaultEnvironment', 'SessionHandle', 'ComparisonContext',
    'FeeState', 'calculate_share_rate', 'calculate_fee_shares', 'LoopVault',
    'SimulatedLendingMarket', 'SimulatedStakingToken', 'CappedRateProvider',
    'calculate_borrow_amount', 'SeedInitializer', 'LeverageLoop',
    'ProportionalWithdraw', 'SwapDeskUnwind',
]

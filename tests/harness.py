"""
harness.py - Vault construction helpers shared by the test suites

Builds a funded ledger, the three collaborator simulations and a vault
wired to them, plus shortcuts for the common initialize/deposit steps
and state capture for rollback comparisons.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from loopvault import (
    Ledger, Asset, LoopVault, VaultConfig, PositionSnapshot, ScaledBalances, WAD, RAY,
    SimulatedStakingToken, CappedRateProvider, SimulatedLendingMarket,
    SeedInitializer, LeverageLoop,
)

# =============================================================================
# CONSTANTS
# =============================================================================

START_TIME = datetime(2025, 1, 1)
STAKING_RATE = Decimal("1.15")
UNLIMITED = 10 ** 40

USERS = ("alice", "bob")
TREASURY = "treasury"
SWAP_DESK = "swap_desk"


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

@dataclass
class VaultHarness:
    """A vault together with the collaborators and ledger it runs on."""
    ledger: Ledger
    staking: SimulatedStakingToken
    rates: CappedRateProvider
    market: SimulatedLendingMarket
    vault: LoopVault

    @property
    def config(self) -> VaultConfig:
        return self.vault.config

    def weth(self, holder: str) -> int:
        return self.ledger.get_balance(holder, "WETH")

    def wsteth(self, holder: str) -> int:
        return self.ledger.get_balance(holder, "WSTETH")

    def shares(self, holder: str) -> int:
        return self.ledger.get_balance(holder, self.vault.share_symbol)


def create_ledger() -> Ledger:
    """Ledger with both assets registered and users, treasury and swap desk funded."""
    ledger = Ledger("chain", initial_time=START_TIME)
    ledger.register_asset(Asset("WETH", "Wrapped Ether"))
    ledger.register_asset(Asset("WSTETH", "Wrapped Staked Ether"))
    for holder in (*USERS, TREASURY, SWAP_DESK):
        ledger.register_holder(holder)
    for user in USERS:
        ledger.mint("WETH", user, 100 * WAD, memo="faucet")
    ledger.mint("WETH", SWAP_DESK, 10_000 * WAD, memo="faucet")
    return ledger


def create_harness(
    config: Optional[VaultConfig] = None,
    staking_rate: Decimal = STAKING_RATE,
    max_yearly_growth: Decimal = Decimal("0.1"),
    supply_cap: Optional[int] = None,
) -> VaultHarness:
    """Build a funded ledger, the three collaborators and a vault over them."""
    config = config or VaultConfig()
    ledger = create_ledger()
    staking = SimulatedStakingToken(
        ledger, "WETH", "WSTETH", rate=staking_rate, minimum_stake=config.minimum_stake
    )
    rates = CappedRateProvider(staking, ledger, max_yearly_growth=max_yearly_growth)
    market = SimulatedLendingMarket(ledger, rates, "WETH", "WSTETH", supply_cap=supply_cap)
    ledger.mint("WETH", market.holder, 100_000 * WAD, memo="market_liquidity")
    vault = LoopVault(ledger, market, staking, rates, config)
    for holder in (*USERS, SWAP_DESK):
        ledger.approve(holder, vault.holder, "WETH", UNLIMITED)
    return VaultHarness(ledger, staking, rates, market, vault)


def initialize(harness: VaultHarness, user: str = "alice", amount: int = WAD):
    return harness.vault.initialize(user, SeedInitializer(user, amount))


def deposit(harness: VaultHarness, user: str = "alice", amount: int = 10 * WAD):
    target = harness.config.target_health_factor
    return harness.vault.deposit(user, LeverageLoop(user, amount, target))


def ledger_state(ledger: Ledger) -> dict:
    """Every balance and allowance, for before/after equality checks."""
    return {
        'balances': {
            h: {s: ledger.balances[h].get(s, 0) for s in ledger.list_assets()}
            for h in sorted(ledger.registered_holders)
        },
        'allowances': dict(ledger.allowances),
        'log_length': len(ledger.transaction_log),
    }


def vault_state(harness: VaultHarness) -> dict:
    """Ledger, market, staking and fee state of a harness."""
    return {
        'ledger': ledger_state(harness.ledger),
        'market': harness.market.checkpoint(),
        'staking': harness.staking.checkpoint(),
        'fees': harness.vault.fee_state.checkpoint(),
        'records': len(harness.vault.records),
    }


def make_snapshot(collateral=100, collateral_value=115, debt=80, total_shares=35, **overrides):
    """A hand-built PositionSnapshot; defaults describe a small levered position."""
    fields = dict(
        collateral=collateral,
        collateral_value=collateral_value,
        debt=debt,
        ltv=Decimal("0.93"),
        liquidation_threshold=Decimal("0.95"),
        available_borrow=0,
        health_factor=Decimal("1.3"),
        total_shares=total_shares,
        rate=Decimal("1.15"),
        scaled=ScaledBalances(collateral, RAY, debt, RAY),
    )
    fields.update(overrides)
    return PositionSnapshot(**fields)

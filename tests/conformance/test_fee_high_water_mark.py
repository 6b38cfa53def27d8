"""
Performance Fee Conformance Tests

INVARIANT: The high-water mark never falls, and fees are only charged
on share-rate growth above it.

    ∀ accrual sequence:
        all_time_high(t+1) ≥ all_time_high(t)
        fee_shares(t) > 0 ⟹ rate(t) > all_time_high(t)
        value(fee_shares(t)) ≤ fee_rate · (rate(t) - all_time_high(t)) · S(t)

An accrual immediately repeated at the same NAV charges nothing. The mark
also never falls across vault operations, including rolled-back ones and
a full exit followed by re-seeding.
"""

from datetime import timedelta
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.stateful import RuleBasedStateMachine, rule, invariant

from loopvault import (
    WAD, FeeState, VaultConfig, VaultError, LedgerError, LeverageLoop, ProportionalWithdraw,
    calculate_share_rate,
)

from tests.harness import SWAP_DESK, TREASURY, USERS, create_harness, initialize, deposit

FEE_RATES = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("0.5"), places=2)
NAVS = st.lists(st.integers(min_value=10 ** 17, max_value=10 ** 21), min_size=1, max_size=12)


class TestHighWaterMark:

    @given(FEE_RATES, NAVS)
    @settings(max_examples=50)
    def test_mark_monotone_and_fees_bounded(self, fee_rate, navs):
        state = FeeState(fee_rate, "treasury")
        supply = 10 ** 18

        for nav in navs:
            mark = state.all_time_high
            rate = calculate_share_rate(nav, 0, supply)
            fee = state.accrue(nav, 0, supply)

            assert state.all_time_high >= mark
            if fee > 0:
                assert rate > mark
                recipient_value = Decimal(nav) * fee / (supply + fee)
                assert recipient_value <= fee_rate * (rate - mark) * supply + 1
            if rate <= mark:
                assert fee == 0
                assert state.all_time_high == mark
            supply += fee

    @given(FEE_RATES, NAVS)
    @settings(max_examples=50)
    def test_repeat_accrual_is_free(self, fee_rate, navs):
        state = FeeState(fee_rate, "treasury")
        supply = 10 ** 18
        for nav in navs:
            supply += state.accrue(nav, 0, supply)
            assert state.accrue(nav, 0, supply) == 0

    @given(FEE_RATES, NAVS)
    @settings(max_examples=50)
    def test_pending_matches_accrual(self, fee_rate, navs):
        state = FeeState(fee_rate, "treasury")
        supply = 10 ** 18
        for nav in navs:
            pending = state.pending(nav, 0, supply)
            assert state.accrue(nav, 0, supply) == pending
            supply += pending


# =============================================================================
# THROUGH THE VAULT
# =============================================================================

class Abort(Exception):
    """Raised by a callback after it has moved funds."""


def aborting_deposit(source, amount):
    def callback(handle, data):
        LeverageLoop(source, amount).run(handle, data)
        raise Abort("callback gave up after levering")
    return callback


class VaultFeeMachine(RuleBasedStateMachine):
    """
    Random deposits, withdrawals, donations, rolled-back operations, full
    exits with re-seeding and staking-rate moves on a fee-charging vault.
    After every step the high-water mark is at least what it was before.
    """

    def __init__(self):
        super().__init__()
        self.h = create_harness(
            config=VaultConfig(fee_rate=Decimal("0.2"), fee_recipient=TREASURY),
            max_yearly_growth=Decimal("1"),
        )
        initialize(self.h)
        deposit(self.h)
        self.mark = self.h.vault.fee_state.all_time_high

    def attempt(self, operation):
        try:
            operation()
        except (VaultError, LedgerError):
            pass

    @rule(days=st.integers(min_value=1, max_value=90),
          step=st.decimals(min_value=Decimal("-0.03"), max_value=Decimal("0.06"), places=4))
    def move_staking_rate(self, days, step):
        self.h.ledger.advance_time(self.h.ledger.current_time + timedelta(days=days))
        rate = self.h.staking.current_rate() * (1 + step)
        self.h.staking.set_rate(max(rate, Decimal("1")))

    @rule(user=st.sampled_from(USERS), amount=st.integers(min_value=WAD // 100, max_value=5 * WAD))
    def deposit_funds(self, user, amount):
        self.attempt(lambda: deposit(self.h, user=user, amount=amount))

    @rule(holder=st.sampled_from((*USERS, TREASURY)), per_mille=st.integers(min_value=1, max_value=1000))
    def withdraw_shares(self, holder, per_mille):
        shares = self.h.shares(holder) * per_mille // 1000
        if shares > 0:
            self.attempt(lambda: self.h.vault.withdraw(holder, shares, ProportionalWithdraw(SWAP_DESK, holder)))

    @rule(amount=st.integers(min_value=WAD // 100, max_value=2 * WAD))
    def donate(self, amount):
        self.attempt(lambda: self.h.vault.donate("bob", LeverageLoop("bob", amount)))

    @rule(amount=st.integers(min_value=WAD // 100, max_value=2 * WAD))
    def rolled_back_deposit(self, amount):
        mark = self.h.vault.fee_state.all_time_high
        try:
            self.h.vault.deposit("alice", aborting_deposit("alice", amount))
        except (Abort, VaultError, LedgerError):
            pass
        assert self.h.vault.fee_state.all_time_high == mark

    @rule()
    def exit_and_reseed(self):
        for _ in range(4):
            for holder in (*USERS, TREASURY):
                shares = self.h.shares(holder)
                if shares > 0:
                    self.attempt(
                        lambda: self.h.vault.withdraw(holder, shares, ProportionalWithdraw(SWAP_DESK, holder))
                    )
        if self.h.vault.total_supply() == 0:
            self.attempt(lambda: initialize(self.h))

    @invariant()
    def mark_never_falls(self):
        mark = self.h.vault.fee_state.all_time_high
        assert mark >= self.mark
        self.mark = mark


VaultFeeMachine.TestCase.settings = settings(max_examples=25, stateful_step_count=20, deadline=None)
TestVaultHighWaterMark = VaultFeeMachine.TestCase

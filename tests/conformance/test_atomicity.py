"""
Atomicity Conformance Tests

INVARIANT: Top-level operations are all-or-nothing.

    ∀ operation O, ∀ callback C:
        O commits   ⟹ every action C took is kept
        O raises    ⟹ ledger, market, staking and fee state equal their
                      values before O, and the session is Unlocked with
                      zero balances

The same holds one level down for Ledger.execute: a batch of moves is
applied whole or not at all.
"""

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from loopvault import WAD, Move, InsufficientFunds

from tests.harness import SWAP_DESK, create_ledger, create_harness, initialize, deposit, vault_state, ledger_state


class Abort(Exception):
    pass


# =============================================================================
# STRATEGIES
# =============================================================================

ACTION_NAMES = ["pull", "stake", "supply", "borrow", "withdraw_collateral", "repay", "send"]


@st.composite
def action_script(draw):
    """A short list of (action, amount) steps for a callback to replay."""
    steps = draw(st.lists(
        st.tuples(st.sampled_from(ACTION_NAMES), st.integers(min_value=1, max_value=5 * WAD)),
        min_size=1,
        max_size=6,
    ))
    return steps


def replay(handle, steps):
    """Run each step; steps that would overdraw the session are clipped to what it holds."""
    for name, amount in steps:
        borrowed, collateral = handle.session_balances()
        if name == "pull":
            handle.pull(handle.borrowed_asset, "alice", amount)
        elif name == "stake" and min(amount, borrowed) >= max(1, handle.minimum_stake):
            handle.stake(min(amount, borrowed))
        elif name == "supply" and collateral > 0:
            handle.supply_collateral(min(amount, collateral))
        elif name == "borrow":
            handle.borrow(amount // 10 + 1)
        elif name == "withdraw_collateral":
            handle.withdraw_collateral(amount // 10 + 1)
        elif name == "repay" and borrowed > 0:
            handle.repay(min(amount, borrowed))
        elif name == "send" and borrowed > 0:
            handle.send(handle.borrowed_asset, SWAP_DESK, min(amount, borrowed))


# =============================================================================
# PROPERTY TESTS
# =============================================================================

class TestOperationAtomicity:
    """A callback that fails after arbitrary actions leaves no trace."""

    @given(action_script(), st.sampled_from(["deposit", "donate", "withdraw", "unwind"]))
    @settings(max_examples=50, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_failed_callback_restores_everything(self, steps, operation):
        h = create_harness()
        initialize(h)
        deposit(h)
        state = vault_state(h)
        supply = h.ledger.total_supply(h.vault.share_symbol)

        def failing(handle, data):
            replay(handle, steps)
            raise Abort("callback gave up")

        with pytest.raises(Exception):
            if operation == "deposit":
                h.vault.deposit("alice", failing)
            elif operation == "donate":
                h.vault.donate("alice", failing)
            elif operation == "withdraw":
                h.vault.withdraw("alice", h.shares("alice") // 3, failing)
            else:
                h.vault.unwind("alice", WAD, failing)

        assert vault_state(h) == state
        assert h.ledger.total_supply(h.vault.share_symbol) == supply
        assert not h.vault.session.is_locked
        assert h.vault.session.balances() == (0, 0)
        assert h.ledger.verify_double_entry()['valid']

    @given(action_script())
    @settings(max_examples=25, deadline=None)
    def test_vault_usable_after_rollback(self, steps):
        h = create_harness()
        initialize(h)

        def failing(handle, data):
            replay(handle, steps)
            raise Abort("callback gave up")

        with pytest.raises(Exception):
            h.vault.donate("alice", failing)
        record = deposit(h)
        assert record.sequence == 1


class TestLedgerAtomicity:

    @given(st.lists(st.integers(min_value=1, max_value=50 * WAD), min_size=2, max_size=8))
    @settings(max_examples=50)
    def test_batch_applies_whole_or_not_at_all(self, amounts):
        """
        PROPERTY: alice pays bob each amount in one batch; it either applies
        in full or, when the total exceeds her balance, not at all.
        """
        ledger = create_ledger()
        initial = ledger_state(ledger)
        moves = [Move(a, "WETH", "alice", "bob", f"leg_{i}") for i, a in enumerate(amounts)]

        if sum(amounts) <= 100 * WAD:
            ledger.execute(moves)
            assert ledger.get_balance("alice", "WETH") == 100 * WAD - sum(amounts)
            assert ledger.get_balance("bob", "WETH") == 100 * WAD + sum(amounts)
        else:
            with pytest.raises(InsufficientFunds):
                ledger.execute(moves)
            assert ledger_state(ledger) == initial

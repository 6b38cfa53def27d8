"""
conftest.py - Shared pytest fixtures for loopvault tests

Provides common fixtures used across unit, conformance and functional tests:
- A funded token ledger (borrowed asset, collateral, holders)
- Vaults in four states: empty, initialized, levered, levered with fees

Construction helpers live in tests/harness.py.
"""

import pytest
from decimal import Decimal

from loopvault import VaultConfig

from tests.harness import (
    TREASURY, create_ledger, create_harness, initialize, deposit,
)


@pytest.fixture
def ledger():
    """A funded ledger with no collaborators."""
    return create_ledger()


@pytest.fixture
def harness():
    """An empty vault with default policy."""
    return create_harness()


@pytest.fixture
def initialized():
    """A vault seeded by alice with 1 WETH (debt-free)."""
    h = create_harness()
    initialize(h)
    return h


@pytest.fixture
def levered():
    """A vault seeded with 1 WETH and levered to target with a 10 WETH deposit."""
    h = create_harness()
    initialize(h)
    deposit(h)
    return h


@pytest.fixture
def fee_harness():
    """A levered vault charging a 10% performance fee to the treasury."""
    h = create_harness(
        config=VaultConfig(fee_rate=Decimal("0.1"), fee_recipient=TREASURY),
        max_yearly_growth=Decimal("1"),
    )
    initialize(h)
    deposit(h)
    return h

"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the vault engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - All-or-nothing operation semantics
2. session_balance.py - Sessions close only with zero running balances
3. withdraw_proportionality.py - Withdrawals shrink the position pro rata
4. share_round_trip.py - Share conversions never create value
5. fee_high_water_mark.py - Fees only on growth above the mark

These tests use hypothesis for property-based testing.
"""

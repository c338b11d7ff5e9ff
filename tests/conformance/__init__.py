"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the stable-asset engine.
Any compliant engine MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Collateral custody and DSC supply match the ledger
2. atomicity.py - All-or-nothing operation semantics
3. rounding.py - Fixed-point conversions never favour the account
4. liquidation.py - Liquidations strictly improve the account or are rejected

These tests use hypothesis for property-based testing.
"""

"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine and the
ledger underneath it.

The tests are organized by invariant:
1. test_conservation.py - Supply conservation and engine custody
2. test_atomicity.py - All-or-nothing engine operations
3. test_idempotency.py - Duplicate execution handling
4. test_determinism.py - Reproducible behavior

Random operation sequences come from strategies.py and are driven with
hypothesis.
"""

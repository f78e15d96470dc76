"""
Idempotency Conformance Tests

INVARIANT: The ledger never applies the same intent twice.

    ∀ pending transactions T:
        execute(T); execute(T) ≡ execute(T)

Engine operations embed the prior state of every unit they touch, so two
economically identical calls (e.g. two repayments of the same amount) have
distinct intents and both apply, while resubmitting a logged transaction is
a no-op.
"""

import pytest
from decimal import Decimal

from pepperlend import (
    ExecuteResult, InsufficientAllowance, PendingTransaction, StaticPriceOracle, PRICE_SCALE,
)
from tests.conftest import PAIR, balances_snapshot, make_engine, make_ledger


def _setup():
    ledger = make_ledger()
    engine = make_engine(ledger, StaticPriceOracle({PAIR: PRICE_SCALE}))
    return ledger, engine


class TestIdempotencyExamples:

    def test_identical_repayments_both_apply(self):
        ledger, engine = _setup()
        position_id = engine.borrow("bob", Decimal("1000000"))
        engine.repay("bob", position_id, Decimal("1000"))
        engine.repay("bob", position_id, Decimal("1000"))
        assert engine.get_position(position_id).amount_repaid == Decimal("2000")
        intents = [tx.intent_id for tx in ledger.transaction_log]
        assert len(intents) == len(set(intents))

    def test_identical_deposits_both_apply(self):
        ledger, engine = _setup()
        engine.deposit("alice", Decimal("10"))
        engine.deposit("alice", Decimal("10"))
        assert engine.available_liquidity() == Decimal("1000020")

    def test_resubmitted_borrow_not_applied_twice(self):
        ledger, engine = _setup()
        engine.borrow("bob", Decimal("1000000"))
        tx = ledger.transaction_log[-1]
        replay = PendingTransaction(
            moves=tx.moves,
            state_changes=tx.state_changes,
            origin=tx.origin,
            timestamp=tx.timestamp,
            units_to_create=tx.units_to_create,
        )
        assert replay.intent_id == tx.intent_id

        before = balances_snapshot(ledger)
        assert ledger.execute(replay) == ExecuteResult.ALREADY_APPLIED
        assert balances_snapshot(ledger) == before
        assert engine.positions.count() == 1

    def test_rejected_intent_can_be_retried(self):
        ledger, engine = _setup()
        ledger.approve("bob", engine.address, "LEND", Decimal("0"))
        with pytest.raises(InsufficientAllowance):
            engine.borrow("bob", Decimal("1000"))
        ledger.approve("bob", engine.address, "LEND", Decimal("1000"))
        assert engine.borrow("bob", Decimal("1000")) == 1

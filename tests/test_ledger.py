"""
test_ledger.py - Tests for the double-entry ledger

Tests:
- Registration of wallets and units
- Allowances (approve / pulled moves)
- Balance limits and typed rejections
- Stale state detection
- Temporary unit registration rolled back on rejection
- Idempotency and time management
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from pepperlend import (
    Ledger, Move, Unit, UnitStateChange, ExecuteResult, build_transaction, token,
    LedgerError, InsufficientBalance, InsufficientAllowance, BalanceConstraintViolation,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered, StaleState,
    SYSTEM_WALLET,
)
from pepperlend.core import _freeze_state


@pytest.fixture
def basic_ledger():
    ledger = Ledger("test", initial_time=datetime(2025, 1, 1), test_mode=True)
    ledger.register_unit(token("BORROW", "Borrowed Token"))
    ledger.register_wallet("alice")
    ledger.register_wallet("bob")
    ledger.set_balance("alice", "BORROW", Decimal("1000"))
    return ledger


class TestRegistration:

    def test_duplicate_wallet_rejected(self, basic_ledger):
        with pytest.raises(ValueError, match="already registered"):
            basic_ledger.register_wallet("alice")

    def test_duplicate_unit_rejected(self, basic_ledger):
        with pytest.raises(ValueError, match="already registered"):
            basic_ledger.register_unit(token("BORROW", "Again"))

    def test_system_wallet_always_registered(self):
        ledger = Ledger("fresh")
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_balance_of_unknown_wallet_raises(self, basic_ledger):
        with pytest.raises(WalletNotRegistered):
            basic_ledger.get_balance("mallory", "BORROW")

    def test_state_of_unknown_unit_raises(self, basic_ledger):
        with pytest.raises(UnitNotRegistered):
            basic_ledger.get_unit_state("NOPE")

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod")
        ledger.register_unit(token("BORROW", "Borrowed Token"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="test_mode"):
            ledger.set_balance("alice", "BORROW", Decimal("1"))

    def test_move_to_unregistered_wallet_rejected(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("10"), "BORROW", "alice", "mallory", "pay")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, WalletNotRegistered)


class TestTransfers:

    def test_simple_transfer(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("100"), "BORROW", "alice", "bob", "pay")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.get_balance("alice", "BORROW") == Decimal("900")
        assert basic_ledger.get_balance("bob", "BORROW") == Decimal("100")
        assert len(basic_ledger.transaction_log) == 1
        assert basic_ledger.get_wallet_balances("bob") == {"BORROW": Decimal("100")}

    def test_overdraft_rejected_with_insufficient_balance(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("1001"), "BORROW", "alice", "bob", "pay")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, InsufficientBalance)
        assert basic_ledger.get_balance("alice", "BORROW") == Decimal("1000")

    def test_max_balance_enforced(self, basic_ledger):
        capped = Unit("CAP", "Capped", "TOKEN", max_balance=Decimal("1"), decimal_places=0)
        basic_ledger.register_unit(capped)
        tx = build_transaction(basic_ledger, [
            Move(Decimal("2"), "CAP", SYSTEM_WALLET, "alice", "mint")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, BalanceConstraintViolation)

    def test_system_wallet_may_go_negative(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("5"), "BORROW", SYSTEM_WALLET, "bob", "issue")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.get_balance(SYSTEM_WALLET, "BORROW") == Decimal("-5")

    def test_last_rejection_cleared_on_success(self, basic_ledger):
        bad = build_transaction(basic_ledger, [
            Move(Decimal("5000"), "BORROW", "alice", "bob", "pay")
        ])
        basic_ledger.execute(bad)
        assert basic_ledger.last_rejection is not None
        good = build_transaction(basic_ledger, [
            Move(Decimal("5"), "BORROW", "alice", "bob", "pay")
        ])
        assert basic_ledger.execute(good) == ExecuteResult.APPLIED
        assert basic_ledger.last_rejection is None

    def test_transfer_rule_violation(self, basic_ledger):
        def frozen(view, move):
            raise TransferRuleViolation(f"{move.unit_symbol} is frozen")

        basic_ledger.register_unit(Unit("FRZ", "Frozen", "TOKEN", transfer_rule=frozen))
        basic_ledger.set_balance("alice", "FRZ", Decimal("10"))
        tx = build_transaction(basic_ledger, [
            Move(Decimal("1"), "FRZ", "alice", "bob", "pay")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, TransferRuleViolation)


class TestAllowances:

    def test_pulled_move_consumes_allowance(self, basic_ledger):
        basic_ledger.approve("alice", "bob", "BORROW", Decimal("300"))
        tx = build_transaction(basic_ledger, [
            Move(Decimal("200"), "BORROW", "alice", "bob", "pull", spender="bob")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.get_allowance("alice", "bob", "BORROW") == Decimal("100")

    def test_pull_beyond_allowance_rejected(self, basic_ledger):
        basic_ledger.approve("alice", "bob", "BORROW", Decimal("50"))
        tx = build_transaction(basic_ledger, [
            Move(Decimal("51"), "BORROW", "alice", "bob", "pull", spender="bob")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, InsufficientAllowance)
        assert basic_ledger.get_allowance("alice", "bob", "BORROW") == Decimal("50")

    def test_pulls_are_summed_within_a_transaction(self, basic_ledger):
        basic_ledger.approve("alice", "bob", "BORROW", Decimal("100"))
        tx = build_transaction(basic_ledger, [
            Move(Decimal("60"), "BORROW", "alice", "bob", "pull_1", spender="bob"),
            Move(Decimal("60"), "BORROW", "alice", "bob", "pull_2", spender="bob"),
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(basic_ledger.last_rejection, InsufficientAllowance)

    def test_approve_overwrites(self, basic_ledger):
        basic_ledger.approve("alice", "bob", "BORROW", Decimal("100"))
        basic_ledger.approve("alice", "bob", "BORROW", Decimal("7"))
        assert basic_ledger.get_allowance("alice", "bob", "BORROW") == Decimal("7")

    def test_negative_allowance_rejected(self, basic_ledger):
        with pytest.raises(ValueError):
            basic_ledger.approve("alice", "bob", "BORROW", Decimal("-1"))

    def test_spender_must_differ_from_source(self):
        with pytest.raises(ValueError, match="spender"):
            Move(Decimal("1"), "BORROW", "alice", "bob", "pull", spender="alice")


class TestStateChanges:

    @pytest.fixture
    def stateful(self, basic_ledger):
        basic_ledger.register_unit(Unit(
            "POOL", "Pool", "LENDING_POOL",
            _frozen_state=_freeze_state({'total': Decimal("0")}),
        ))
        return basic_ledger

    def test_state_change_applied(self, stateful):
        old = stateful.get_unit_state("POOL")
        tx = build_transaction(stateful, [], [
            UnitStateChange("POOL", old, {'total': Decimal("5")})
        ])
        assert stateful.execute(tx) == ExecuteResult.APPLIED
        assert stateful.get_unit_state("POOL") == {'total': Decimal("5")}

    def test_stale_state_rejected(self, stateful):
        old = stateful.get_unit_state("POOL")
        first = build_transaction(stateful, [], [UnitStateChange("POOL", old, {'total': Decimal("5")})])
        second = build_transaction(stateful, [], [UnitStateChange("POOL", old, {'total': Decimal("9")})])
        assert stateful.execute(first) == ExecuteResult.APPLIED
        assert stateful.execute(second) == ExecuteResult.REJECTED
        assert isinstance(stateful.last_rejection, StaleState)
        assert stateful.get_unit_state("POOL") == {'total': Decimal("5")}

    def test_returned_state_is_a_copy(self, stateful):
        state = stateful.get_unit_state("POOL")
        state['total'] = Decimal("999")
        assert stateful.get_unit_state("POOL") == {'total': Decimal("0")}

    def test_units_to_create_rolled_back_on_rejection(self, basic_ledger):
        new_unit = token("NEW", "New Token")
        tx = build_transaction(
            basic_ledger,
            [
                Move(Decimal("1"), "NEW", SYSTEM_WALLET, "bob", "mint"),
                Move(Decimal("5000"), "BORROW", "alice", "bob", "pay"),
            ],
            units_to_create=(new_unit,),
        )
        assert basic_ledger.execute(tx) == ExecuteResult.REJECTED
        assert "NEW" not in basic_ledger.list_units()

    def test_units_to_create_registered_on_success(self, basic_ledger):
        tx = build_transaction(
            basic_ledger,
            [Move(Decimal("1"), "NEW", SYSTEM_WALLET, "bob", "mint")],
            units_to_create=(token("NEW", "New Token"),),
        )
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.get_balance("bob", "NEW") == Decimal("1")


class TestIdempotencyAndTime:

    def test_same_intent_applied_once(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("10"), "BORROW", "alice", "bob", "pay")
        ])
        assert basic_ledger.execute(tx) == ExecuteResult.APPLIED
        assert basic_ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert basic_ledger.get_balance("bob", "BORROW") == Decimal("10")

    def test_intent_id_ignores_move_order(self, basic_ledger):
        a = Move(Decimal("10"), "BORROW", "alice", "bob", "pay_a")
        b = Move(Decimal("20"), "BORROW", "alice", "bob", "pay_b")
        assert (build_transaction(basic_ledger, [a, b]).intent_id
                == build_transaction(basic_ledger, [b, a]).intent_id)

    def test_time_cannot_go_backwards(self, basic_ledger):
        with pytest.raises(ValueError, match="backwards"):
            basic_ledger.advance_time(datetime(2024, 12, 31))

    def test_advance_time(self, basic_ledger):
        later = basic_ledger.current_time + timedelta(days=1)
        basic_ledger.advance_time(later)
        assert basic_ledger.current_time == later

    def test_verify_double_entry(self, basic_ledger):
        tx = build_transaction(basic_ledger, [
            Move(Decimal("10"), "BORROW", "alice", "bob", "pay")
        ])
        basic_ledger.execute(tx)
        result = basic_ledger.verify_double_entry({'BORROW': Decimal("1000")})
        assert result['valid'], result['discrepancies']

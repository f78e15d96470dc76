"""
test_positions.py - Unit tests for debt positions and the PositionStore

Tests:
- DebtPosition value semantics and derived properties
- State dict round trip through a ledger unit
- PositionStore.create() id allocation and staged writes
- PositionStore.get() NotFound cases
- PositionStore.mutate() NotActive and structural invariants
- Position token transfer rule
"""

import pytest
from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta
from decimal import Decimal

from tests.fake_view import FakeView
from pepperlend import (
    DebtPosition, PositionStatus, PositionStore, Move,
    NotActive, NotFound, TransferRuleViolation,
    SYSTEM_WALLET, UNIT_TYPE_DEBT_POSITION,
)
from pepperlend.positions import (
    create_position_unit, create_registry_unit, to_state_dict, from_state_dict,
    position_transfer_rule,
)


T0 = datetime(2025, 1, 1)
EXPIRY = T0 + timedelta(days=30)


def make_position(**overrides) -> DebtPosition:
    fields = dict(
        id=1,
        borrower="bob",
        collateral_original=Decimal("1000000"),
        collateral_locked=Decimal("1000000"),
        principal=Decimal("500000"),
        total_owed=Decimal("500500"),
        amount_repaid=Decimal("0"),
        origination_time=T0,
        expiry=EXPIRY,
    )
    fields.update(overrides)
    return DebtPosition(**fields)


def view_with(*positions: DebtPosition) -> FakeView:
    states = {'POOL.positions': {'pool': 'POOL', 'next_id': len(positions) + 1}}
    for position in positions:
        states[f"POOL#{position.id}"] = to_state_dict(position)
    return FakeView(balances={}, states=states, time=T0)


class TestDebtPosition:

    def test_outstanding(self):
        position = make_position(amount_repaid=Decimal("200200"))
        assert position.outstanding == Decimal("300300")

    def test_overdue_strictly_after_expiry(self):
        position = make_position()
        assert not position.is_overdue(EXPIRY)
        assert position.is_overdue(EXPIRY + timedelta(seconds=1))

    def test_closed_position_never_overdue(self):
        position = make_position(status=PositionStatus.REPAID, collateral_locked=Decimal("0"),
                                 amount_repaid=Decimal("500500"))
        assert not position.is_overdue(EXPIRY + timedelta(days=1))

    def test_immutable(self):
        position = make_position()
        with pytest.raises(FrozenInstanceError):
            position.amount_repaid = Decimal("1")

    def test_state_dict_round_trip(self):
        position = make_position(bad_debt=Decimal("7"), status=PositionStatus.LIQUIDATED,
                                 collateral_locked=Decimal("0"), closed_time=EXPIRY)
        assert from_state_dict(to_state_dict(position)) == position

    def test_position_unit(self):
        unit = create_position_unit("POOL#1", make_position())
        assert unit.unit_type == UNIT_TYPE_DEBT_POSITION
        assert unit.max_balance == Decimal("1")
        assert unit.state['borrower'] == "bob"
        assert unit.state['status'] == "active"

    def test_registry_unit_starts_at_one(self):
        assert create_registry_unit("POOL.positions", "POOL").state['next_id'] == 1


class TestPositionStoreReads:

    def test_get(self):
        store = PositionStore(view_with(make_position()), "POOL")
        assert store.get(1) == make_position()

    @pytest.mark.parametrize("position_id", [0, -1, 2, "1", True])
    def test_get_not_found(self, position_id):
        store = PositionStore(view_with(make_position()), "POOL")
        with pytest.raises(NotFound):
            store.get(position_id)

    def test_count_and_list(self):
        p1 = make_position()
        p2 = make_position(id=2, borrower="carol")
        p3 = make_position(id=3, status=PositionStatus.REPAID, collateral_locked=Decimal("0"),
                           amount_repaid=Decimal("500500"))
        store = PositionStore(view_with(p1, p2, p3), "POOL")
        assert store.count() == 3
        assert [p.id for p in store.list_positions()] == [1, 2, 3]
        assert [p.id for p in store.list_positions(borrower="bob")] == [1, 3]
        assert [p.id for p in store.list_positions(status=PositionStatus.ACTIVE)] == [1, 2]

    def test_total_collateral_locked_counts_active_only(self):
        p1 = make_position(collateral_locked=Decimal("600000"))
        p2 = make_position(id=2, status=PositionStatus.REPAID, collateral_locked=Decimal("0"),
                           amount_repaid=Decimal("500500"))
        store = PositionStore(view_with(p1, p2), "POOL")
        assert store.total_collateral_locked() == Decimal("600000")


class TestPositionStoreCreate:

    def test_create_allocates_next_id(self):
        store = PositionStore(view_with(make_position()), "POOL")
        write = store.create("carol", Decimal("10"), Decimal("5"), Decimal("5"), T0, EXPIRY)
        assert write.position.id == 2
        assert write.symbol == "POOL#2"
        assert write.position.status == PositionStatus.ACTIVE
        assert write.position.collateral_original == Decimal("10")
        assert len(write.units_to_create) == 1
        registry_change = write.state_changes[0]
        assert registry_change.unit == "POOL.positions"
        assert registry_change.changed_fields() == {'next_id': (2, 3)}

    def test_create_does_not_consume_id(self):
        view = view_with()
        store = PositionStore(view, "POOL")
        store.create("bob", Decimal("10"), Decimal("5"), Decimal("5"), T0, EXPIRY)
        assert store.next_id() == 1

    @pytest.mark.parametrize("collateral,principal,owed,expiry", [
        (Decimal("0"), Decimal("5"), Decimal("5"), EXPIRY),
        (Decimal("10"), Decimal("0"), Decimal("5"), EXPIRY),
        (Decimal("10"), Decimal("5"), Decimal("4"), EXPIRY),
        (Decimal("10"), Decimal("5"), Decimal("5"), T0),
    ])
    def test_create_rejects_inconsistent_amounts(self, collateral, principal, owed, expiry):
        store = PositionStore(view_with(), "POOL")
        with pytest.raises(ValueError):
            store.create("bob", collateral, principal, owed, T0, expiry)


class TestPositionStoreMutate:

    def test_mutate_stages_change(self):
        store = PositionStore(view_with(make_position()), "POOL")
        write = store.mutate(1, lambda p: replace(p, amount_repaid=Decimal("100")))
        assert write.position.amount_repaid == Decimal("100")
        assert write.state_changes[0].changed_fields() == {
            'amount_repaid': (Decimal("0"), Decimal("100"))
        }
        assert write.units_to_create == ()

    def test_mutate_closed_position(self):
        closed = make_position(status=PositionStatus.REPAID, collateral_locked=Decimal("0"),
                               amount_repaid=Decimal("500500"))
        store = PositionStore(view_with(closed), "POOL")
        with pytest.raises(NotActive):
            store.mutate(1, lambda p: p)

    @pytest.mark.parametrize("transition", [
        lambda p: replace(p, principal=Decimal("1")),
        lambda p: replace(p, borrower="mallory"),
        lambda p: replace(p, amount_repaid=Decimal("500501")),
        lambda p: replace(p, collateral_locked=Decimal("-1")),
        lambda p: replace(p, collateral_locked=Decimal("1000001")),
        lambda p: replace(p, status=PositionStatus.LIQUIDATED),
        lambda p: replace(p, status=PositionStatus.REPAID, collateral_locked=Decimal("0")),
    ])
    def test_mutate_rejects_structural_violations(self, transition):
        store = PositionStore(view_with(make_position()), "POOL")
        with pytest.raises(ValueError):
            store.mutate(1, transition)

    def test_amount_repaid_cannot_decrease(self):
        store = PositionStore(view_with(make_position(amount_repaid=Decimal("10"))), "POOL")
        with pytest.raises(ValueError, match="decrease"):
            store.mutate(1, lambda p: replace(p, amount_repaid=Decimal("5")))


class TestPositionTransferRule:

    @pytest.fixture
    def view(self):
        return view_with(make_position())

    def test_mint_to_borrower(self, view):
        position_transfer_rule(view, Move(Decimal("1"), "POOL#1", SYSTEM_WALLET, "bob", "mint"))

    def test_burn_from_borrower(self, view):
        position_transfer_rule(view, Move(Decimal("1"), "POOL#1", "bob", SYSTEM_WALLET, "burn"))

    def test_transfer_to_third_party(self, view):
        with pytest.raises(TransferRuleViolation):
            position_transfer_rule(view, Move(Decimal("1"), "POOL#1", "bob", "carol", "sell"))

"""
positions.py - Debt positions and the PositionStore

=== POSITION MODEL ===

A DebtPosition is one loan: collateral locked against a principal that must
be repaid (plus a flat fee) before expiry. Each position lives in the ledger
as its own DEBT_POSITION unit:

    - the unit's state holds the position record
    - one unit of it (the position token) is held by the borrower while the
      position is active and burned when it closes

A POSITION_REGISTRY unit per pool holds the id counter. Ids start at 1 and
are consumed only when the transaction that creates the position commits.

=== STAGED WRITES ===

The store never writes to the ledger itself. create() and mutate() return a
PositionWrite (units to create + state changes) that the engine submits in
the same transaction as the asset moves, so a failed transfer discards the
position change too.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .core import (
    LedgerView, Move, Unit, UnitStateChange,
    SYSTEM_WALLET, UNIT_TYPE_DEBT_POSITION, UNIT_TYPE_POSITION_REGISTRY,
    NotActive, NotFound, TransferRuleViolation, UnitNotRegistered,
    _freeze_state,
)


class PositionStatus(str, Enum):
    """Status of a debt position. REPAID and LIQUIDATED are terminal."""
    ACTIVE = "active"
    REPAID = "repaid"
    LIQUIDATED = "liquidated"


# ============================================================================
# FROZEN DATACLASS
# ============================================================================

@dataclass(frozen=True, slots=True)
class DebtPosition:
    """
    Immutable snapshot of a debt position.

    Each state change creates a NEW instance (value semantics), so callers
    can never hold a mutable reference into the store.
    """
    id: int
    borrower: str
    collateral_original: Decimal
    collateral_locked: Decimal
    principal: Decimal
    total_owed: Decimal
    amount_repaid: Decimal
    origination_time: datetime
    expiry: datetime
    status: PositionStatus = PositionStatus.ACTIVE
    collateral_liquidated: Decimal = Decimal("0")
    bad_debt: Decimal = Decimal("0")
    closed_time: Optional[datetime] = None

    @property
    def outstanding(self) -> Decimal:
        """Debt still to be repaid."""
        return self.total_owed - self.amount_repaid

    @property
    def is_active(self) -> bool:
        return self.status == PositionStatus.ACTIVE

    def is_overdue(self, now: datetime) -> bool:
        """True strictly after expiry while the position is still active."""
        return self.is_active and now > self.expiry


def to_state_dict(position: DebtPosition) -> Dict[str, Any]:
    """Convert a DebtPosition to the dict stored as unit state."""
    return {
        'id': position.id,
        'borrower': position.borrower,
        'collateral_original': position.collateral_original,
        'collateral_locked': position.collateral_locked,
        'principal': position.principal,
        'total_owed': position.total_owed,
        'amount_repaid': position.amount_repaid,
        'origination_time': position.origination_time,
        'expiry': position.expiry,
        'status': position.status.value,
        'collateral_liquidated': position.collateral_liquidated,
        'bad_debt': position.bad_debt,
        'closed_time': position.closed_time,
    }


def from_state_dict(raw: Dict[str, Any]) -> DebtPosition:
    """Inverse of to_state_dict()."""
    return DebtPosition(
        id=int(raw['id']),
        borrower=raw['borrower'],
        collateral_original=Decimal(str(raw['collateral_original'])),
        collateral_locked=Decimal(str(raw['collateral_locked'])),
        principal=Decimal(str(raw['principal'])),
        total_owed=Decimal(str(raw['total_owed'])),
        amount_repaid=Decimal(str(raw['amount_repaid'])),
        origination_time=raw['origination_time'],
        expiry=raw['expiry'],
        status=PositionStatus(raw['status']),
        collateral_liquidated=Decimal(str(raw.get('collateral_liquidated', 0))),
        bad_debt=Decimal(str(raw.get('bad_debt', 0))),
        closed_time=raw.get('closed_time'),
    )


# ============================================================================
# POSITION TOKEN
# ============================================================================

def position_transfer_rule(view: LedgerView, move: Move) -> None:
    """
    Position tokens only move between the system wallet and the borrower.

    Raises:
        TransferRuleViolation: If another wallet would send or receive one.
    """
    borrower = view.get_unit_state(move.unit_symbol).get('borrower')
    if not borrower:
        raise TransferRuleViolation(f"Position {move.unit_symbol} has no borrower")
    authorized = {SYSTEM_WALLET, borrower}
    if move.source not in authorized:
        raise TransferRuleViolation(f"Position {move.unit_symbol}: {move.source} not authorized")
    if move.dest not in authorized:
        raise TransferRuleViolation(f"Position {move.unit_symbol}: {move.dest} not authorized")


def create_position_unit(symbol: str, position: DebtPosition) -> Unit:
    """Create the non-fungible ledger unit carrying a position record."""
    return Unit(
        symbol=symbol,
        name=f"Debt position {position.id}",
        unit_type=UNIT_TYPE_DEBT_POSITION,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        transfer_rule=position_transfer_rule,
        _frozen_state=_freeze_state(to_state_dict(position)),
    )


def create_registry_unit(symbol: str, pool_symbol: str) -> Unit:
    """Create the id registry for the positions of one pool."""
    return Unit(
        symbol=symbol,
        name=f"{pool_symbol} positions",
        unit_type=UNIT_TYPE_POSITION_REGISTRY,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({'pool': pool_symbol, 'next_id': 1}),
    )


# ============================================================================
# POSITION STORE
# ============================================================================

@dataclass(frozen=True, slots=True)
class PositionWrite:
    """A staged change to the store, committed by the engine's transaction."""
    position: DebtPosition
    symbol: str
    units_to_create: Tuple[Unit, ...] = ()
    state_changes: Tuple[UnitStateChange, ...] = ()


class PositionStore:
    """
    Arena of DebtPositions keyed by id, backed by ledger units.

    Reads go through a LedgerView. Writes are staged as PositionWrite values
    so that the DebtEngine remains the only writer.
    """

    def __init__(self, view: LedgerView, pool_symbol: str):
        self.view = view
        self.pool_symbol = pool_symbol
        self.registry_symbol = f"{pool_symbol}.positions"

    def symbol_for(self, position_id: int) -> str:
        """Ledger unit symbol of a position."""
        return f"{self.pool_symbol}#{position_id}"

    def next_id(self) -> int:
        return int(self.view.get_unit_state(self.registry_symbol)['next_id'])

    def count(self) -> int:
        """Number of positions ever created."""
        return self.next_id() - 1

    def get(self, position_id: int) -> DebtPosition:
        """
        Load a position.

        Raises:
            NotFound: If no position has this id.
        """
        if not isinstance(position_id, int) or isinstance(position_id, bool) or position_id < 1:
            raise NotFound(f"Position {position_id!r} not found")
        try:
            raw = self.view.get_unit_state(self.symbol_for(position_id))
        except UnitNotRegistered:
            raise NotFound(f"Position {position_id} not found") from None
        return from_state_dict(raw)

    def list_positions(
        self,
        borrower: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[DebtPosition]:
        """All positions in id order, optionally filtered."""
        positions = []
        for position_id in range(1, self.next_id()):
            position = self.get(position_id)
            if borrower is not None and position.borrower != borrower:
                continue
            if status is not None and position.status != status:
                continue
            positions.append(position)
        return positions

    def total_collateral_locked(self) -> Decimal:
        """Collateral held against all active positions."""
        return sum(
            (p.collateral_locked for p in self.list_positions(status=PositionStatus.ACTIVE)),
            Decimal("0"),
        )

    def create(
        self,
        borrower: str,
        collateral_locked: Decimal,
        principal: Decimal,
        total_owed: Decimal,
        origination_time: datetime,
        expiry: datetime,
    ) -> PositionWrite:
        """
        Stage a new ACTIVE position under the next free id.

        Raises:
            ValueError: If amounts are inconsistent.
        """
        if collateral_locked <= 0:
            raise ValueError(f"collateral_locked must be positive, got {collateral_locked}")
        if principal <= 0:
            raise ValueError(f"principal must be positive, got {principal}")
        if total_owed < principal:
            raise ValueError(f"total_owed ({total_owed}) cannot be below principal ({principal})")
        if expiry <= origination_time:
            raise ValueError("expiry must be after origination_time")

        registry_state = self.view.get_unit_state(self.registry_symbol)
        position_id = int(registry_state['next_id'])
        position = DebtPosition(
            id=position_id,
            borrower=borrower,
            collateral_original=collateral_locked,
            collateral_locked=collateral_locked,
            principal=principal,
            total_owed=total_owed,
            amount_repaid=Decimal("0"),
            origination_time=origination_time,
            expiry=expiry,
        )
        symbol = self.symbol_for(position_id)
        new_registry_state = {**registry_state, 'next_id': position_id + 1}
        return PositionWrite(
            position=position,
            symbol=symbol,
            units_to_create=(create_position_unit(symbol, position),),
            state_changes=(
                UnitStateChange(self.registry_symbol, registry_state, new_registry_state),
            ),
        )

    def mutate(
        self,
        position_id: int,
        transition: Callable[[DebtPosition], DebtPosition],
    ) -> PositionWrite:
        """
        Stage a transition of an ACTIVE position.

        The store checks only structural invariants; whether the amounts are
        financially right is the engine's responsibility.

        Raises:
            NotFound: If no position has this id.
            NotActive: If the position is already repaid or liquidated.
            ValueError: If the transition breaks a structural invariant.
        """
        current = self.get(position_id)
        if not current.is_active:
            raise NotActive(f"Position {position_id} is {current.status.value}")

        updated = transition(current)
        _check_transition(current, updated)

        symbol = self.symbol_for(position_id)
        return PositionWrite(
            position=updated,
            symbol=symbol,
            state_changes=(
                UnitStateChange(symbol, to_state_dict(current), to_state_dict(updated)),
            ),
        )


_FIXED_FIELDS = (
    'id', 'borrower', 'collateral_original', 'principal', 'total_owed',
    'origination_time', 'expiry',
)


def _check_transition(current: DebtPosition, updated: DebtPosition) -> None:
    for name in _FIXED_FIELDS:
        if getattr(current, name) != getattr(updated, name):
            raise ValueError(f"Position field {name} is fixed at origination")
    if updated.amount_repaid < current.amount_repaid:
        raise ValueError("amount_repaid cannot decrease")
    if updated.amount_repaid > updated.total_owed:
        raise ValueError(
            f"amount_repaid ({updated.amount_repaid}) exceeds total_owed ({updated.total_owed})"
        )
    if updated.collateral_locked < 0:
        raise ValueError(f"collateral_locked cannot be negative, got {updated.collateral_locked}")
    if updated.collateral_locked > current.collateral_locked:
        raise ValueError("collateral_locked cannot increase")
    if not updated.is_active and updated.collateral_locked != 0:
        raise ValueError("a closed position cannot keep collateral locked")
    if updated.status == PositionStatus.REPAID and updated.outstanding != 0:
        raise ValueError("a repaid position must have no outstanding debt")

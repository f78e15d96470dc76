"""
pool.py - Liquidity pool of the borrowed asset

The pool's liquidity is simply the engine wallet's balance of the borrowed
asset; the pool unit keeps the owner and running counters:

    total_deposited / total_withdrawn - owner deposits and withdrawals
    total_lent                        - principal issued to borrowers
    total_repaid                      - repayments and liquidation proceeds

Only the owner may deposit or withdraw, and withdrawals are limited to the
liquidity not currently lent out.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict

from .core import (
    LedgerView, Move, Unit, UnitStateChange,
    UNIT_TYPE_LENDING_POOL,
    InsufficientAvailableLiquidity, Unauthorized,
    to_quantity, _freeze_state,
)


@dataclass(frozen=True, slots=True)
class PoolState:
    """Immutable snapshot of the pool unit's state."""
    owner: str
    wallet: str
    collateral_unit: str
    borrowed_unit: str
    total_deposited: Decimal = Decimal("0")
    total_withdrawn: Decimal = Decimal("0")
    total_lent: Decimal = Decimal("0")
    total_repaid: Decimal = Decimal("0")


def pool_to_state_dict(state: PoolState) -> Dict[str, Any]:
    return {
        'owner': state.owner,
        'wallet': state.wallet,
        'collateral_unit': state.collateral_unit,
        'borrowed_unit': state.borrowed_unit,
        'total_deposited': state.total_deposited,
        'total_withdrawn': state.total_withdrawn,
        'total_lent': state.total_lent,
        'total_repaid': state.total_repaid,
    }


def create_pool_unit(
    symbol: str,
    name: str,
    owner: str,
    wallet: str,
    collateral_unit: str,
    borrowed_unit: str,
) -> Unit:
    """
    Create the stateful unit describing a lending pool.

    Raises:
        ValueError: If owner or wallet are empty, or identical.
    """
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    if not wallet or not wallet.strip():
        raise ValueError("wallet cannot be empty")
    if owner == wallet:
        raise ValueError("owner and pool wallet must be different")

    state = PoolState(
        owner=owner,
        wallet=wallet,
        collateral_unit=collateral_unit,
        borrowed_unit=borrowed_unit,
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_LENDING_POOL,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(pool_to_state_dict(state)),
    )


class LiquidityPool:
    """
    Read access and staged counter updates for one pool unit.

    Like the PositionStore, the pool never writes to the ledger: the
    engine commits its state changes together with the asset moves.
    """

    def __init__(self, view: LedgerView, symbol: str):
        self.view = view
        self.symbol = symbol

    def load(self) -> PoolState:
        raw = self.view.get_unit_state(self.symbol)
        return PoolState(
            owner=raw['owner'],
            wallet=raw['wallet'],
            collateral_unit=raw['collateral_unit'],
            borrowed_unit=raw['borrowed_unit'],
            total_deposited=Decimal(str(raw['total_deposited'])),
            total_withdrawn=Decimal(str(raw['total_withdrawn'])),
            total_lent=Decimal(str(raw['total_lent'])),
            total_repaid=Decimal(str(raw['total_repaid'])),
        )

    def available_liquidity(self) -> Decimal:
        """Borrowed asset held by the pool and not lent out."""
        state = self.load()
        return self.view.get_balance(state.wallet, state.borrowed_unit)

    def _change(self, **deltas: Decimal) -> UnitStateChange:
        old_state = self.view.get_unit_state(self.symbol)
        new_state = dict(old_state)
        for key, delta in deltas.items():
            new_state[key] = Decimal(str(old_state[key])) + delta
        return UnitStateChange(self.symbol, old_state, new_state)

    def record_lent(self, amount: Decimal) -> UnitStateChange:
        return self._change(total_lent=amount)

    def record_repaid(self, amount: Decimal) -> UnitStateChange:
        return self._change(total_repaid=amount)

    def stage_deposit(self, caller: str, amount: Decimal) -> tuple:
        """
        Stage an owner deposit.

        Returns:
            (moves, state_changes) for the engine's transaction.

        Raises:
            Unauthorized: If caller is not the pool owner.
            ValueError: If amount is not a positive whole amount.
        """
        amount = to_quantity(amount)
        state = self.load()
        if caller != state.owner:
            raise Unauthorized(f"{caller} is not the owner of pool {self.symbol}")
        moves = [Move(
            quantity=amount,
            unit_symbol=state.borrowed_unit,
            source=caller,
            dest=state.wallet,
            contract_id=f"deposit_{self.symbol}",
            spender=state.wallet,
        )]
        return moves, [self._change(total_deposited=amount)]

    def stage_withdraw(self, caller: str, amount: Decimal) -> tuple:
        """
        Stage an owner withdrawal of undeployed liquidity.

        Raises:
            Unauthorized: If caller is not the pool owner.
            InsufficientAvailableLiquidity: If amount exceeds available liquidity.
            ValueError: If amount is not a positive whole amount.
        """
        amount = to_quantity(amount)
        state = self.load()
        if caller != state.owner:
            raise Unauthorized(f"{caller} is not the owner of pool {self.symbol}")
        available = self.view.get_balance(state.wallet, state.borrowed_unit)
        if amount > available:
            raise InsufficientAvailableLiquidity(
                f"Cannot withdraw {amount}: only {available} {state.borrowed_unit} available"
            )
        moves = [Move(
            quantity=amount,
            unit_symbol=state.borrowed_unit,
            source=state.wallet,
            dest=caller,
            contract_id=f"withdraw_{self.symbol}",
        )]
        return moves, [self._change(total_withdrawn=amount)]

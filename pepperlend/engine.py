"""
engine.py - DebtEngine: borrowing, repayment and liquidation

=== LIFECYCLE ===

    borrow(caller, collateral)        ACTIVE position, credit paid out
    repay(caller, id, amount)         collateral released pro rata,
                                      REPAID once total_owed is covered
    liquidate(caller, id, repay)      after expiry only; collateral sold at
                                      the oracle price plus a growing bonus,
                                      LIQUIDATED once debt or collateral is gone

=== TRANSACTIONS ===

Every mutating call reads the clock once, stages all of its effects (asset
moves, new position unit, position/registry/pool state changes) and submits
them as ONE PendingTransaction. The ledger applies all of it or nothing, and
its rejection reason is raised to the caller unchanged.

=== PURE FUNCTIONS ===

    calculate_total_owed(principal, fee_rate)
    calculate_remaining_collateral(original, total_owed, outstanding, locked)
    calculate_repayment(position, amount, now)
    calculate_liquidation(position, repay_amount, price, curve, now)

The DebtEngine only gathers inputs for these and turns their results into
moves.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN, ROUND_UP
from typing import List, Optional, Tuple
import logging

from .config import EngineConfig
from .core import (
    Move, PendingTransaction, UnitStateChange, TransactionOrigin, OriginType,
    ExecuteResult, SYSTEM_WALLET,
    LedgerError, NotActive, NotOverdue, RepaymentExceedsDebt,
    Unauthorized, WalletNotRegistered,
    build_transaction, to_quantity,
)
from .credit import estimate_credit
from .ledger import Ledger
from .liquidation import BonusCurve, bonus_curve_from_config, calculate_collateral_for_repay
from .oracle import PriceOracle, require_price
from .pool import LiquidityPool, create_pool_unit
from .positions import (
    DebtPosition, PositionStatus, PositionStore, create_registry_unit,
)

logger = logging.getLogger(__name__)


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

def calculate_total_owed(principal: Decimal, fee_rate: Decimal) -> Decimal:
    """
    Principal inflated by the flat origination fee, truncated to whole units.

    Example:
        >>> calculate_total_owed(Decimal("500000"), Decimal("0.001"))
        Decimal('500500')
    """
    owed = principal * (Decimal("1") + fee_rate)
    return owed.quantize(Decimal(1), rounding=ROUND_DOWN)


def calculate_remaining_collateral(
    collateral_original: Decimal,
    total_owed: Decimal,
    outstanding_after: Decimal,
    collateral_locked: Decimal,
) -> Decimal:
    """
    Collateral that must stay locked once `outstanding_after` remains owed.

    Rounded up, so the release is rounded down and the position is never
    under-collateralized. Never more than what is currently locked, so a
    position that was partly liquidated releases nothing until its debt
    falls back in line with its collateral.
    """
    if outstanding_after <= 0:
        return Decimal("0")
    required = (collateral_original * outstanding_after / total_owed).quantize(
        Decimal(1), rounding=ROUND_UP
    )
    return min(collateral_locked, required)


def calculate_repayment(
    position: DebtPosition,
    amount: Decimal,
    now: datetime,
) -> Tuple[DebtPosition, Decimal]:
    """
    Apply a repayment to a position.

    Returns:
        (updated position, collateral released)

    Raises:
        NotActive: If the position is closed.
        RepaymentExceedsDebt: If amount exceeds the outstanding debt.

    Example:
        Position with collateral 1,000,000 and total_owed 500,500:
        repaying 200,200 then 100,100 then 200,200 releases
        400,000, 200,000 and 400,000.
    """
    if not position.is_active:
        raise NotActive(f"Position {position.id} is {position.status.value}")
    if position.amount_repaid + amount > position.total_owed:
        raise RepaymentExceedsDebt(
            f"Repayment of {amount} exceeds outstanding debt {position.outstanding} "
            f"on position {position.id}"
        )

    amount_repaid = position.amount_repaid + amount
    remaining = calculate_remaining_collateral(
        position.collateral_original,
        position.total_owed,
        position.total_owed - amount_repaid,
        position.collateral_locked,
    )
    released = position.collateral_locked - remaining

    fully_repaid = amount_repaid == position.total_owed
    updated = replace(
        position,
        amount_repaid=amount_repaid,
        collateral_locked=remaining,
        status=PositionStatus.REPAID if fully_repaid else PositionStatus.ACTIVE,
        closed_time=now if fully_repaid else None,
    )
    return updated, released


@dataclass(frozen=True, slots=True)
class LiquidationQuote:
    """
    Outcome of liquidating a position at a given time and price.

    Attributes:
        position_id: Position being liquidated
        repay_amount: Debt actually repaid (requested amount capped at outstanding)
        collateral_amount: Collateral paid to the liquidator
        surplus: Collateral returned to the borrower when the debt is cleared
        bad_debt: Debt left uncovered when the collateral runs out
        bonus: Bonus fraction applied
        elapsed: Time since expiry
        closes_position: True if the position ends LIQUIDATED
    """
    position_id: int
    repay_amount: Decimal
    collateral_amount: Decimal
    surplus: Decimal
    bad_debt: Decimal
    bonus: Decimal
    elapsed: timedelta
    closes_position: bool


def calculate_liquidation(
    position: DebtPosition,
    repay_amount: Decimal,
    price: Decimal,
    curve: BonusCurve,
    now: datetime,
) -> LiquidationQuote:
    """
    Price a liquidation.

    Raises:
        NotActive: If the position is closed.
        NotOverdue: If now is not strictly after the position's expiry.
    """
    if not position.is_active:
        raise NotActive(f"Position {position.id} is {position.status.value}")
    if now <= position.expiry:
        raise NotOverdue(f"Position {position.id} expires at {position.expiry}, now is {now}")

    elapsed = now - position.expiry
    bonus = curve.bonus(elapsed)
    repay_eff = min(repay_amount, position.outstanding)
    collateral = calculate_collateral_for_repay(
        repay_eff, price, bonus, position.collateral_locked
    )

    outstanding_after = position.outstanding - repay_eff
    locked_after = position.collateral_locked - collateral

    surplus = Decimal("0")
    bad_debt = Decimal("0")
    closes = False
    if outstanding_after == 0:
        surplus = locked_after
        closes = True
    elif locked_after == 0:
        bad_debt = outstanding_after
        closes = True

    return LiquidationQuote(
        position_id=position.id,
        repay_amount=repay_eff,
        collateral_amount=collateral,
        surplus=surplus,
        bad_debt=bad_debt,
        bonus=bonus,
        elapsed=elapsed,
        closes_position=closes,
    )


def _apply_liquidation(quote: LiquidationQuote, now: datetime):
    def transition(position: DebtPosition) -> DebtPosition:
        return replace(
            position,
            amount_repaid=position.amount_repaid + quote.repay_amount,
            collateral_locked=(
                position.collateral_locked - quote.collateral_amount - quote.surplus
            ),
            collateral_liquidated=position.collateral_liquidated + quote.collateral_amount,
            bad_debt=quote.bad_debt,
            status=PositionStatus.LIQUIDATED if quote.closes_position else PositionStatus.ACTIVE,
            closed_time=now if quote.closes_position else None,
        )
    return transition


# ============================================================================
# DEBT ENGINE
# ============================================================================

class DebtEngine:
    """
    Lending pool over one collateral/borrowed asset pair.

    The engine owns a wallet (named after the pool) that holds the pool's
    liquidity and the collateral of every active position. Borrowers and
    liquidators approve that wallet on the ledger before calling in, like
    ERC-20 transferFrom.

    Example:
        engine = DebtEngine(ledger, oracle, EngineConfig("LEND", "BORROW", "LEND/BORROW"), "alice")
        ledger.approve("alice", engine.address, "BORROW", Decimal("1000000"))
        engine.deposit("alice", Decimal("1000000"))

        ledger.approve("bob", engine.address, "LEND", Decimal("1000000"))
        position_id = engine.borrow("bob", Decimal("1000000"))   # 500,000 BORROW
    """

    def __init__(
        self,
        ledger: Ledger,
        oracle: PriceOracle,
        config: EngineConfig,
        owner: str,
        name: Optional[str] = None,
    ):
        """
        Register the pool, its position registry and the engine wallet.

        Raises:
            UnitNotRegistered: If either asset is not registered on the ledger.
            WalletNotRegistered: If the owner wallet is not registered.
            ValueError: If the pool wallet or a pool unit already exists, or
                the owner is the pool wallet. Nothing is registered then.
        """
        self.ledger = ledger
        self.oracle = oracle
        self.config = config
        self.name = name or f"{config.collateral_unit}-{config.borrowed_unit}"
        self.curve: BonusCurve = bonus_curve_from_config(config)

        ledger.get_unit(config.collateral_unit)
        ledger.get_unit(config.borrowed_unit)
        if not ledger.is_registered(owner):
            raise WalletNotRegistered(f"Wallet {owner} not registered")
        # Liquidity is the pool wallet's whole balance: the wallet must be new
        if ledger.is_registered(self.name):
            raise ValueError(f"Wallet {self.name} already registered")

        self.pool = LiquidityPool(ledger, self.name)
        self.positions = PositionStore(ledger, self.name)
        pool_unit = create_pool_unit(
            self.name,
            f"{self.name} lending pool",
            owner,
            self.name,
            config.collateral_unit,
            config.borrowed_unit,
        )
        registry_unit = create_registry_unit(self.positions.registry_symbol, self.name)
        for unit in (pool_unit, registry_unit):
            if unit.symbol in ledger.units:
                raise ValueError(f"Unit {unit.symbol} already registered")

        ledger.register_wallet(self.name)
        ledger.register_unit(pool_unit)
        ledger.register_unit(registry_unit)
        logger.info("Created pool %s (owner %s, pair %s)", self.name, owner, config.pair_id)

    @property
    def address(self) -> str:
        """Engine wallet: pool liquidity and collateral custody."""
        return self.name

    @property
    def owner(self) -> str:
        return self.pool.load().owner

    # ------------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------------

    def available_liquidity(self) -> Decimal:
        return self.pool.available_liquidity()

    def estimate_credit(self, collateral_amount: Decimal) -> Decimal:
        """
        Credit the given collateral would support right now.

        Raises:
            ValueError: If collateral_amount is not a positive whole amount.
            PriceUnavailable: If the oracle has no usable price.
            InsufficientLiquidity: If the pool cannot fund the credit.
        """
        return self._estimate_credit(collateral_amount, self.ledger.current_time)

    def quote_liquidation(self, position_id: int, repay_amount: Decimal) -> LiquidationQuote:
        """
        Price a liquidation without executing it.

        Raises:
            ValueError: If repay_amount is not a positive whole amount.
            NotFound, NotActive, NotOverdue: In that order.
            PriceUnavailable: If the oracle has no usable price.
        """
        _, quote = self._quote(position_id, repay_amount, self.ledger.current_time)
        return quote

    def estimate_liquidation(self, position_id: int, repay_amount: Decimal) -> Decimal:
        """Collateral a liquidator would receive for repay_amount right now."""
        return self.quote_liquidation(position_id, repay_amount).collateral_amount

    def get_position(self, position_id: int) -> DebtPosition:
        return self.positions.get(position_id)

    def list_positions(
        self,
        borrower: Optional[str] = None,
        status: Optional[PositionStatus] = None,
    ) -> List[DebtPosition]:
        return self.positions.list_positions(borrower=borrower, status=status)

    def is_overdue(self, position_id: int) -> bool:
        return self.positions.get(position_id).is_overdue(self.ledger.current_time)

    def verify_custody(self) -> bool:
        """True if the collateral held equals the sum locked by active positions."""
        held = self.ledger.get_balance(self.address, self.config.collateral_unit)
        return held == self.positions.total_collateral_locked()

    # ------------------------------------------------------------------------
    # Pool
    # ------------------------------------------------------------------------

    def deposit(self, caller: str, amount: Decimal) -> None:
        """
        Owner adds borrowed-asset liquidity (pulled under allowance).

        Raises:
            Unauthorized: If caller is not the pool owner.
        """
        now = self.ledger.current_time
        moves, state_changes = self.pool.stage_deposit(caller, amount)
        self._commit(moves, state_changes, caller, "DEPOSIT", now)
        logger.info("%s deposited %s %s into %s", caller, moves[0].quantity,
                    self.config.borrowed_unit, self.name)

    def withdraw(self, caller: str, amount: Decimal) -> None:
        """
        Owner takes back undeployed liquidity.

        Raises:
            Unauthorized: If caller is not the pool owner.
            InsufficientAvailableLiquidity: If amount exceeds available liquidity.
        """
        now = self.ledger.current_time
        moves, state_changes = self.pool.stage_withdraw(caller, amount)
        self._commit(moves, state_changes, caller, "WITHDRAW", now)
        logger.info("%s withdrew %s %s from %s", caller, moves[0].quantity,
                    self.config.borrowed_unit, self.name)

    # ------------------------------------------------------------------------
    # Borrow / repay / liquidate
    # ------------------------------------------------------------------------

    def borrow(self, caller: str, collateral_amount: Decimal) -> int:
        """
        Lock collateral and receive its credit as a new position.

        Returns:
            The new position id.

        Raises:
            ValueError: If collateral_amount is invalid or supports no credit.
            PriceUnavailable: If the oracle has no usable price.
            InsufficientLiquidity: If the pool cannot fund the credit.
            InsufficientAllowance, InsufficientBalance, WalletNotRegistered:
                If the ledger rejects the collateral transfer.
        """
        collateral_amount = to_quantity(collateral_amount, "collateral_amount")
        now = self.ledger.current_time
        principal = self._estimate_credit(collateral_amount, now)
        if principal <= 0:
            raise ValueError(f"Collateral {collateral_amount} supports no credit")

        total_owed = calculate_total_owed(principal, self.config.fee_rate)
        write = self.positions.create(
            borrower=caller,
            collateral_locked=collateral_amount,
            principal=principal,
            total_owed=total_owed,
            origination_time=now,
            expiry=now + self.config.loan_term,
        )
        contract_id = f"borrow_{write.symbol}"
        moves = [
            Move(collateral_amount, self.config.collateral_unit, caller, self.address,
                 contract_id, spender=self.address),
            Move(principal, self.config.borrowed_unit, self.address, caller, contract_id),
            Move(Decimal("1"), write.symbol, SYSTEM_WALLET, caller, contract_id),
        ]
        state_changes = [*write.state_changes, self.pool.record_lent(principal)]
        self._commit(moves, state_changes, caller, "BORROW", now, write.units_to_create)

        logger.info(
            "Position %d opened by %s: collateral %s, principal %s, owed %s, expiry %s",
            write.position.id, caller, collateral_amount, principal, total_owed,
            write.position.expiry,
        )
        return write.position.id

    def repay(self, caller: str, position_id: int, amount: Decimal) -> Decimal:
        """
        Repay part or all of a position's debt.

        Returns:
            Collateral released to the borrower.

        Raises:
            ValueError: If amount is not a positive whole amount.
            NotFound, NotActive: If the position cannot be repaid.
            Unauthorized: If caller is not the borrower.
            RepaymentExceedsDebt: If amount exceeds the outstanding debt.
        """
        amount = to_quantity(amount)
        now = self.ledger.current_time
        position = self.positions.get(position_id)
        if not position.is_active:
            raise NotActive(f"Position {position_id} is {position.status.value}")
        if caller != position.borrower:
            raise Unauthorized(f"{caller} is not the borrower of position {position_id}")

        updated, released = calculate_repayment(position, amount, now)
        write = self.positions.mutate(position_id, lambda _: updated)

        contract_id = f"repay_{write.symbol}"
        moves = [
            Move(amount, self.config.borrowed_unit, caller, self.address,
                 contract_id, spender=self.address),
        ]
        if released > 0:
            moves.append(Move(released, self.config.collateral_unit, self.address, caller,
                              contract_id))
        if not updated.is_active:
            moves.append(Move(Decimal("1"), write.symbol, caller, SYSTEM_WALLET, contract_id))
        state_changes = [*write.state_changes, self.pool.record_repaid(amount)]
        self._commit(moves, state_changes, caller, "REPAY", now)

        logger.info(
            "Position %d repaid %s by %s, released %s, outstanding %s%s",
            position_id, amount, caller, released, updated.outstanding,
            " (closed)" if not updated.is_active else "",
        )
        return released

    def liquidate(self, caller: str, position_id: int, repay_amount: Decimal) -> LiquidationQuote:
        """
        Repay an overdue position's debt in exchange for its collateral.

        Anyone may liquidate. The repayment is capped at the outstanding
        debt and the collateral at what is still locked.

        Returns:
            The executed LiquidationQuote.

        Raises:
            NotFound, NotActive, NotOverdue: In that order.
            PriceUnavailable: If the oracle has no usable price.
            InsufficientAllowance, InsufficientBalance: If the ledger rejects
                the liquidator's payment.
        """
        now = self.ledger.current_time
        position, quote = self._quote(position_id, repay_amount, now)
        write = self.positions.mutate(position_id, _apply_liquidation(quote, now))

        contract_id = f"liquidate_{write.symbol}"
        moves = [
            Move(quote.repay_amount, self.config.borrowed_unit, caller, self.address,
                 contract_id, spender=self.address),
        ]
        if quote.collateral_amount > 0:
            moves.append(Move(quote.collateral_amount, self.config.collateral_unit,
                              self.address, caller, contract_id))
        if quote.surplus > 0:
            moves.append(Move(quote.surplus, self.config.collateral_unit,
                              self.address, position.borrower, f"{contract_id}_surplus"))
        if quote.closes_position:
            moves.append(Move(Decimal("1"), write.symbol, position.borrower, SYSTEM_WALLET,
                              contract_id))
        state_changes = [*write.state_changes, self.pool.record_repaid(quote.repay_amount)]
        self._commit(moves, state_changes, caller, "LIQUIDATE", now)

        logger.info(
            "Position %d liquidated by %s: repaid %s for %s collateral (bonus %s)%s",
            position_id, caller, quote.repay_amount, quote.collateral_amount, quote.bonus,
            " (closed)" if quote.closes_position else "",
        )
        if quote.bad_debt > 0:
            logger.warning("Position %d closed with bad debt %s", position_id, quote.bad_debt)
        return quote

    # ------------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------------

    def _estimate_credit(self, collateral_amount: Decimal, now: datetime) -> Decimal:
        price = require_price(self.oracle, self.config.pair_id, now)
        return estimate_credit(
            collateral_amount, price, self.config.loan_to_value, self.available_liquidity()
        )

    def _quote(
        self,
        position_id: int,
        repay_amount: Decimal,
        now: datetime,
    ) -> Tuple[DebtPosition, LiquidationQuote]:
        repay_amount = to_quantity(repay_amount, "repay_amount")
        position = self.positions.get(position_id)
        if not position.is_active:
            raise NotActive(f"Position {position_id} is {position.status.value}")
        if not position.is_overdue(now):
            raise NotOverdue(f"Position {position_id} expires at {position.expiry}, now is {now}")
        price = require_price(self.oracle, self.config.pair_id, now)
        return position, calculate_liquidation(position, repay_amount, price, self.curve, now)

    def _commit(
        self,
        moves: List[Move],
        state_changes: List[UnitStateChange],
        caller: str,
        event_type: str,
        now: datetime,
        units_to_create: tuple = (),
    ) -> None:
        origin = TransactionOrigin(
            origin_type=OriginType.ENGINE,
            source_id=self.name,
            unit_symbol=self.name,
            event_type=f"{event_type}:{caller}",
        )
        pending: PendingTransaction = build_transaction(
            self.ledger, moves, state_changes, origin, units_to_create, timestamp=now
        )
        result = self.ledger.execute(pending)
        if result == ExecuteResult.APPLIED:
            return
        if result == ExecuteResult.REJECTED and self.ledger.last_rejection is not None:
            raise self.ledger.last_rejection
        raise LedgerError(f"{event_type} by {caller} was not applied: {result.value}")

"""
pepperlend - Collateralized lending on a double-entry ledger

A liquidity pool of a borrowed asset lends against a collateral asset. Loans
carry a flat origination fee and a fixed term; overdue loans are liquidated
at the oracle price plus a bonus that grows with time since expiry.

Usage:
    from pepperlend import (
        Ledger, DebtEngine, EngineConfig, StaticPriceOracle, token, PRICE_SCALE,
    )

    ledger = Ledger("main", initial_time=datetime(2025, 1, 1))
    ledger.register_unit(token("LEND", "Collateral Token"))
    ledger.register_unit(token("BORROW", "Borrowed Token"))
    for wallet in ("alice", "bob"):
        ledger.register_wallet(wallet)

    oracle = StaticPriceOracle({"LEND/BORROW": PRICE_SCALE})
    engine = DebtEngine(ledger, oracle, EngineConfig("LEND", "BORROW", "LEND/BORROW"), "alice")

    # Pool owner funds the pool
    ledger.approve("alice", engine.address, "BORROW", Decimal("1000000"))
    engine.deposit("alice", Decimal("1000000"))

    # Borrower locks collateral and receives credit
    ledger.approve("bob", engine.address, "LEND", Decimal("1000000"))
    position_id = engine.borrow("bob", Decimal("1000000"))
"""

# Core types
from .core import (
    LedgerView,
    Move,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InsufficientBalance,
    InsufficientAllowance,
    BalanceConstraintViolation,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    StaleState,
    LendingError,
    InsufficientLiquidity,
    InsufficientAvailableLiquidity,
    NotFound,
    NotActive,
    RepaymentExceedsDebt,
    NotOverdue,
    PriceUnavailable,
    Unauthorized,
    token,
    to_quantity,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_LENDING_POOL,
    UNIT_TYPE_POSITION_REGISTRY,
    UNIT_TYPE_DEBT_POSITION,
)

# Ledger
from .ledger import Ledger

# Price oracles
from .oracle import (
    PRICE_SCALE,
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    require_price,
)

# Configuration
from .config import (
    EngineConfig,
    load_engine_config,
    CURVE_LINEAR,
    CURVE_STEPPED,
)

# Credit and liquidation pricing
from .credit import calculate_credit, estimate_credit
from .liquidation import (
    BonusCurve,
    LinearBonusCurve,
    SteppedBonusCurve,
    bonus_curve_from_config,
    calculate_collateral_for_repay,
    sample_bonus_curve,
)

# Positions and pool
from .positions import (
    DebtPosition,
    PositionStatus,
    PositionStore,
    PositionWrite,
)
from .pool import LiquidityPool, PoolState, create_pool_unit

# Engine
from .engine import (
    DebtEngine,
    LiquidationQuote,
    calculate_total_owed,
    calculate_remaining_collateral,
    calculate_repayment,
    calculate_liquidation,
)


__all__ = [
    # Core
    'LedgerView', 'Move', 'Transaction', 'PendingTransaction', 'TransactionOrigin', 'OriginType',
    'build_transaction', 'Unit', 'UnitStateChange', 'ExecuteResult',
    'token', 'to_quantity', 'SYSTEM_WALLET',
    'UNIT_TYPE_TOKEN', 'UNIT_TYPE_LENDING_POOL', 'UNIT_TYPE_POSITION_REGISTRY',
    'UNIT_TYPE_DEBT_POSITION',
    # Errors
    'LedgerError', 'InsufficientBalance', 'InsufficientAllowance', 'BalanceConstraintViolation',
    'TransferRuleViolation', 'UnitNotRegistered', 'WalletNotRegistered', 'StaleState',
    'LendingError', 'InsufficientLiquidity', 'InsufficientAvailableLiquidity', 'NotFound',
    'NotActive', 'RepaymentExceedsDebt', 'NotOverdue', 'PriceUnavailable', 'Unauthorized',
    # Ledger
    'Ledger',
    # Oracles
    'PRICE_SCALE', 'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle', 'require_price',
    # Config
    'EngineConfig', 'load_engine_config', 'CURVE_LINEAR', 'CURVE_STEPPED',
    # Pricing
    'calculate_credit', 'estimate_credit',
    'BonusCurve', 'LinearBonusCurve', 'SteppedBonusCurve', 'bonus_curve_from_config',
    'calculate_collateral_for_repay', 'sample_bonus_curve',
    # Positions and pool
    'DebtPosition', 'PositionStatus', 'PositionStore', 'PositionWrite',
    'LiquidityPool', 'PoolState', 'create_pool_unit',
    # Engine
    'DebtEngine', 'LiquidationQuote',
    'calculate_total_owed', 'calculate_remaining_collateral',
    'calculate_repayment', 'calculate_liquidation',
]

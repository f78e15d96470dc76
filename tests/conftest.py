"""
conftest.py - Shared pytest fixtures for pepperlend tests

Provides common fixtures used across unit, functional and conformance tests:
- A test-mode ledger with the LEND (collateral) and BORROW tokens
- A unity-priced static oracle
- A DebtEngine owned by alice, funded with 1,000,000 BORROW
- Helpers for approvals and balance snapshots
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Tuple

from pepperlend import (
    Ledger, DebtEngine, EngineConfig, StaticPriceOracle, token, PRICE_SCALE,
)


T0 = datetime(2025, 1, 1, 12, 0, 0)
PAIR = "LEND/BORROW"
WALLETS = ("alice", "bob", "carol")

STARTING_LEND = Decimal("10000000")
STARTING_BORROW = Decimal("10000000")
POOL_DEPOSIT = Decimal("1000000")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_ledger() -> Ledger:
    """Test-mode ledger with LEND/BORROW registered and alice/bob/carol funded."""
    ledger = Ledger("test", initial_time=T0, test_mode=True)
    ledger.register_unit(token("LEND", "Collateral Token"))
    ledger.register_unit(token("BORROW", "Borrowed Token"))
    for wallet in WALLETS:
        ledger.register_wallet(wallet)
        ledger.set_balance(wallet, "LEND", STARTING_LEND)
        ledger.set_balance(wallet, "BORROW", STARTING_BORROW)
    return ledger


def make_engine(ledger: Ledger, oracle: StaticPriceOracle, config: EngineConfig = None,
                deposit: Decimal = POOL_DEPOSIT) -> DebtEngine:
    """Engine owned by alice with `deposit` BORROW in the pool and open approvals."""
    if config is None:
        config = EngineConfig("LEND", "BORROW", PAIR)
    engine = DebtEngine(ledger, oracle, config, owner="alice")
    approve_all(ledger, engine)
    if deposit:
        engine.deposit("alice", deposit)
    return engine


def approve_all(ledger: Ledger, engine: DebtEngine, amount: Decimal = Decimal("100000000")) -> None:
    """Let the engine pull LEND and BORROW from every test wallet."""
    for wallet in WALLETS:
        ledger.approve(wallet, engine.address, "LEND", amount)
        ledger.approve(wallet, engine.address, "BORROW", amount)


def balances_snapshot(ledger: Ledger) -> Dict[Tuple[str, str], Decimal]:
    """All (wallet, unit) balances, for before/after comparisons."""
    return {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in sorted(ledger.registered_wallets)
        for unit in ledger.list_units()
    }


def expire(ledger: Ledger, engine: DebtEngine, position_id: int, after: timedelta) -> None:
    """Advance the clock to `after` past a position's expiry."""
    ledger.advance_time(engine.get_position(position_id).expiry + after)


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    return make_ledger()


@pytest.fixture
def oracle():
    return StaticPriceOracle({PAIR: PRICE_SCALE})


@pytest.fixture
def config():
    return EngineConfig("LEND", "BORROW", PAIR)


@pytest.fixture
def engine(ledger, oracle, config):
    """Pool of 1,000,000 BORROW at unity price, default risk parameters."""
    return make_engine(ledger, oracle, config)


@pytest.fixture
def empty_engine(ledger, oracle, config):
    """Engine with approvals in place but no liquidity."""
    return make_engine(ledger, oracle, config, deposit=Decimal("0"))

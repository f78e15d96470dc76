"""
oracle.py - Price oracles for collateral valuation

Prices are fixed-point integers scaled by PRICE_SCALE and quoted as
"borrowed-asset units per collateral unit" for an asset pair identifier.
A price of 1e8 therefore means one collateral unit is worth one borrowed
unit.

Classes:
- PriceOracle: Protocol defining the oracle interface
- StaticPriceOracle: Time-independent prices
- TimeSeriesPriceOracle: Time-varying prices with historical data
"""

from bisect import bisect_right
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Protocol, runtime_checkable

from .core import PriceUnavailable

# Fixed-point scale of oracle prices.
PRICE_SCALE = 10 ** 8


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price oracles.

    get_price() returns the scaled price for an asset pair at a timestamp,
    or None when no price has been set.
    """

    def get_price(self, pair_id: str, timestamp: datetime) -> Optional[int]:
        """Get the scaled price of an asset pair at a specific timestamp."""
        ...


class StaticPriceOracle:
    """
    Oracle with static prices (time-independent).

    Example:
        oracle = StaticPriceOracle()
        oracle.set_price("LEND/BORROW", 10 ** 8)   # 1 LEND = 1 BORROW
    """

    def __init__(self, prices: Optional[Dict[str, int]] = None):
        self.prices: Dict[str, int] = dict(prices or {})

    def get_price(self, pair_id: str, timestamp: datetime) -> Optional[int]:
        """Get static price (timestamp is ignored)."""
        return self.prices.get(pair_id)

    def set_price(self, pair_id: str, price: int) -> None:
        """Set the scaled price of an asset pair."""
        self.prices[pair_id] = price

    def clear_price(self, pair_id: str) -> None:
        """Remove the price of an asset pair."""
        self.prices.pop(pair_id, None)

    def __repr__(self):
        return f"StaticPriceOracle({len(self.prices)} pairs)"


class TimeSeriesPriceOracle:
    """
    Oracle with time-varying prices.

    Uses the most recent observation at or before the requested timestamp.
    """

    def __init__(self, price_paths: Optional[Dict[str, List[Tuple[datetime, int]]]] = None):
        """
        Initialize the oracle.

        Args:
            price_paths: Optional dict mapping pair ids to (timestamp, price) tuples.

        Example:
            oracle = TimeSeriesPriceOracle({
                'LEND/BORROW': [(t0, 10 ** 8), (t1, 9 * 10 ** 7)],
            })
        """
        self.price_history: Dict[str, List[Tuple[datetime, int]]] = {}

        if price_paths:
            for pair_id, path in price_paths.items():
                if not path:
                    continue
                self.price_history[pair_id] = sorted(path, key=lambda x: x[0])

    def add_price(self, pair_id: str, timestamp: datetime, price: int) -> None:
        """Add a price observation for a pair at a specific time."""
        history = self.price_history.setdefault(pair_id, [])
        history.append((timestamp, price))
        history.sort(key=lambda x: x[0])

    def get_price(self, pair_id: str, timestamp: datetime) -> Optional[int]:
        """
        Get price at or before the specified timestamp.

        Returns None if no observation exists at or before the timestamp.
        Uses binary search for O(log n) lookup.
        """
        history = self.price_history.get(pair_id)
        if not history:
            return None

        timestamps = [ts for ts, _ in history]
        idx = bisect_right(timestamps, timestamp)
        if idx == 0:
            return None
        return history[idx - 1][1]

    def __repr__(self):
        total_observations = sum(len(history) for history in self.price_history.values())
        return f"TimeSeriesPriceOracle({len(self.price_history)} pairs, {total_observations} observations)"


def require_price(oracle: PriceOracle, pair_id: str, timestamp: datetime) -> Decimal:
    """
    Read a usable scaled price from an oracle.

    Raises:
        PriceUnavailable: If the oracle has no price or a non-positive one.
    """
    price = oracle.get_price(pair_id, timestamp)
    if price is None:
        raise PriceUnavailable(f"No price for {pair_id} at {timestamp}")
    price = Decimal(str(price))
    if not price.is_finite() or price <= 0:
        raise PriceUnavailable(f"Invalid price {price} for {pair_id} at {timestamp}")
    return price

"""
liquidation.py - Time-decaying liquidation pricing (capped Dutch auction)

Once a position is past expiry anyone may repay its debt and receive
collateral in return. The exchange rate starts at the oracle price and
improves for the liquidator as time passes:

    bonus(elapsed)    = curve(elapsed), 0 at elapsed 0, capped at max_bonus
    collateral_amount = floor(repay * PRICE_SCALE / price * (1 + bonus))
    collateral_amount = min(collateral_amount, collateral_locked)

Curves are interchangeable policies:
    LinearBonusCurve  - grows linearly over the ramp duration
    SteppedBonusCurve - same envelope, advances once per step

All functions here are pure; `elapsed` is passed in by the caller, which
reads the clock exactly once per operation.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Protocol, Tuple, runtime_checkable

import numpy as np

from .config import CURVE_LINEAR, CURVE_STEPPED, EngineConfig
from .oracle import PRICE_SCALE


def _seconds(duration: timedelta) -> Decimal:
    return Decimal(str(duration.total_seconds()))


@runtime_checkable
class BonusCurve(Protocol):
    """A liquidator bonus as a function of time elapsed since expiry."""

    max_bonus: Decimal

    def bonus(self, elapsed: timedelta) -> Decimal:
        """Return the bonus fraction for an elapsed overdue time."""
        ...


@dataclass(frozen=True, slots=True)
class LinearBonusCurve:
    """
    Bonus ramps linearly from 0 to max_bonus over ramp_duration, then holds.

    Strictly increasing on [0, ramp_duration].
    """
    max_bonus: Decimal
    ramp_duration: timedelta

    def __post_init__(self):
        if not isinstance(self.max_bonus, Decimal):
            object.__setattr__(self, 'max_bonus', Decimal(str(self.max_bonus)))
        if self.max_bonus < 0:
            raise ValueError(f"max_bonus cannot be negative, got {self.max_bonus}")
        if self.ramp_duration <= timedelta(0):
            raise ValueError(f"ramp_duration must be positive, got {self.ramp_duration}")

    def bonus(self, elapsed: timedelta) -> Decimal:
        if elapsed <= timedelta(0):
            return Decimal("0")
        if elapsed >= self.ramp_duration:
            return self.max_bonus
        return self.max_bonus * _seconds(elapsed) / _seconds(self.ramp_duration)


@dataclass(frozen=True, slots=True)
class SteppedBonusCurve:
    """
    Bonus follows the linear envelope but only advances once per step.

    Non-decreasing; 0 for the whole first step after expiry.
    """
    max_bonus: Decimal
    ramp_duration: timedelta
    step: timedelta

    def __post_init__(self):
        if not isinstance(self.max_bonus, Decimal):
            object.__setattr__(self, 'max_bonus', Decimal(str(self.max_bonus)))
        if self.max_bonus < 0:
            raise ValueError(f"max_bonus cannot be negative, got {self.max_bonus}")
        if self.ramp_duration <= timedelta(0):
            raise ValueError(f"ramp_duration must be positive, got {self.ramp_duration}")
        if self.step <= timedelta(0):
            raise ValueError(f"step must be positive, got {self.step}")

    def bonus(self, elapsed: timedelta) -> Decimal:
        if elapsed <= timedelta(0):
            return Decimal("0")
        if elapsed >= self.ramp_duration:
            return self.max_bonus
        steps = (_seconds(elapsed) / _seconds(self.step)).to_integral_value(rounding=ROUND_DOWN)
        stepped = steps * _seconds(self.step)
        return min(self.max_bonus, self.max_bonus * stepped / _seconds(self.ramp_duration))


def bonus_curve_from_config(config: EngineConfig) -> BonusCurve:
    """Build the bonus curve policy named by an engine config."""
    if config.liquidation_curve == CURVE_LINEAR:
        return LinearBonusCurve(config.liquidation_max_bonus, config.liquidation_bonus_ramp)
    if config.liquidation_curve == CURVE_STEPPED:
        return SteppedBonusCurve(
            config.liquidation_max_bonus,
            config.liquidation_bonus_ramp,
            config.liquidation_bonus_step,
        )
    raise ValueError(f"Unknown liquidation curve {config.liquidation_curve!r}")


def calculate_collateral_for_repay(
    repay_amount: Decimal,
    price: Decimal,
    bonus: Decimal,
    collateral_locked: Decimal,
) -> Decimal:
    """
    Collateral a liquidator receives for repaying `repay_amount`.

    PURE FUNCTION - All inputs explicit.

    The oracle-implied equivalent is inflated by the bonus, truncated to
    whole collateral units and capped at the collateral still locked.

    Example:
        >>> calculate_collateral_for_repay(
        ...     Decimal("500000"), Decimal(10 ** 8), Decimal("0"), Decimal("1000000"))
        Decimal('500000')
    """
    at_par = repay_amount * Decimal(PRICE_SCALE) / price
    amount = (at_par * (Decimal("1") + bonus)).quantize(Decimal(1), rounding=ROUND_DOWN)
    return min(amount, collateral_locked)


def sample_bonus_curve(
    curve: BonusCurve,
    horizon: timedelta,
    num_points: int = 101,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Sample a bonus curve on an even grid from expiry to `horizon`.

    For inspection and charting only; settlement always uses curve.bonus().

    Returns:
        (elapsed_seconds, bonus) float arrays of length num_points.
    """
    if num_points < 2:
        raise ValueError(f"num_points must be at least 2, got {num_points}")
    if horizon <= timedelta(0):
        raise ValueError(f"horizon must be positive, got {horizon}")
    elapsed = np.linspace(0.0, horizon.total_seconds(), num_points)
    bonus = np.array([float(curve.bonus(timedelta(seconds=float(s)))) for s in elapsed])
    return elapsed, bonus

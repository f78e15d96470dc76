"""
config.py - Engine configuration (fixed at construction)

EngineConfig is the term sheet of a lending pool: the two assets, the
oracle pair, and the risk parameters. It never changes after the engine
is built.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Union
import logging

import yaml

logger = logging.getLogger(__name__)

CURVE_LINEAR = "linear"
CURVE_STEPPED = "stepped"
LIQUIDATION_CURVES = (CURVE_LINEAR, CURVE_STEPPED)

DEFAULT_LOAN_TO_VALUE = Decimal("0.5")
DEFAULT_FEE_RATE = Decimal("0.001")      # 1001/1000 of principal
DEFAULT_LOAN_TERM = timedelta(days=30)
DEFAULT_BONUS_RAMP = timedelta(days=1)
DEFAULT_MAX_BONUS = Decimal("0.1")
DEFAULT_BONUS_STEP = timedelta(hours=1)


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """
    Immutable configuration of a DebtEngine.

    Attributes:
        collateral_unit: Symbol of the collateral asset
        borrowed_unit: Symbol of the borrowed asset
        pair_id: Asset pair identifier used for oracle lookups
        loan_to_value: Fraction of collateral value that may be borrowed
        fee_rate: Flat origination premium added to the principal
        loan_term: Time from origination to expiry
        liquidation_bonus_ramp: Time after expiry at which the bonus is maximal
        liquidation_max_bonus: Maximum liquidator bonus (0.1 = 10% extra collateral)
        liquidation_curve: Shape of the bonus ramp ("linear" or "stepped")
        liquidation_bonus_step: Step width of the "stepped" curve
    """
    collateral_unit: str
    borrowed_unit: str
    pair_id: str
    loan_to_value: Decimal = DEFAULT_LOAN_TO_VALUE
    fee_rate: Decimal = DEFAULT_FEE_RATE
    loan_term: timedelta = DEFAULT_LOAN_TERM
    liquidation_bonus_ramp: timedelta = DEFAULT_BONUS_RAMP
    liquidation_max_bonus: Decimal = DEFAULT_MAX_BONUS
    liquidation_curve: str = CURVE_LINEAR
    liquidation_bonus_step: timedelta = DEFAULT_BONUS_STEP

    def __post_init__(self):
        """Convert float values to Decimal and validate ranges."""
        for name in ('loan_to_value', 'fee_rate', 'liquidation_max_bonus'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))

        if not self.collateral_unit or not self.collateral_unit.strip():
            raise ValueError("collateral_unit cannot be empty")
        if not self.borrowed_unit or not self.borrowed_unit.strip():
            raise ValueError("borrowed_unit cannot be empty")
        if self.collateral_unit == self.borrowed_unit:
            raise ValueError("collateral_unit and borrowed_unit must be different")
        if not self.pair_id:
            raise ValueError("pair_id cannot be empty")
        if not (Decimal("0") < self.loan_to_value <= Decimal("1")):
            raise ValueError(f"loan_to_value must be in (0, 1], got {self.loan_to_value}")
        if self.fee_rate < Decimal("0"):
            raise ValueError(f"fee_rate cannot be negative, got {self.fee_rate}")
        if self.loan_term <= timedelta(0):
            raise ValueError(f"loan_term must be positive, got {self.loan_term}")
        if self.liquidation_bonus_ramp <= timedelta(0):
            raise ValueError(
                f"liquidation_bonus_ramp must be positive, got {self.liquidation_bonus_ramp}"
            )
        if self.liquidation_max_bonus < Decimal("0"):
            raise ValueError(
                f"liquidation_max_bonus cannot be negative, got {self.liquidation_max_bonus}"
            )
        if self.liquidation_curve not in LIQUIDATION_CURVES:
            raise ValueError(
                f"liquidation_curve must be one of {LIQUIDATION_CURVES}, got {self.liquidation_curve!r}"
            )
        if self.liquidation_bonus_step <= timedelta(0):
            raise ValueError(
                f"liquidation_bonus_step must be positive, got {self.liquidation_bonus_step}"
            )

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> EngineConfig:
        """
        Build a config from plain values.

        Durations are given in seconds (``loan_term_seconds`` etc.) and
        ratios as strings or numbers, as they appear in a YAML file.
        """
        raw = dict(raw)
        kwargs: Dict[str, Any] = {}
        for name in ('collateral_unit', 'borrowed_unit', 'pair_id', 'liquidation_curve'):
            if name in raw:
                kwargs[name] = str(raw.pop(name))
        for name in ('loan_to_value', 'fee_rate', 'liquidation_max_bonus'):
            if name in raw:
                kwargs[name] = Decimal(str(raw.pop(name)))
        for name in ('loan_term', 'liquidation_bonus_ramp', 'liquidation_bonus_step'):
            key = f"{name}_seconds"
            if key in raw:
                kwargs[name] = timedelta(seconds=int(raw.pop(key)))
        if raw:
            raise ValueError(f"Unknown engine config keys: {sorted(raw)}")
        return cls(**kwargs)


def load_engine_config(path: Union[str, Path]) -> EngineConfig:
    """
    Load an EngineConfig from a YAML file.

    Example file:
        collateral_unit: LEND
        borrowed_unit: BORROW
        pair_id: LEND/BORROW
        loan_to_value: "0.5"
        loan_term_seconds: 2592000

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not a mapping or has unknown keys
    """
    config_path = Path(path)
    with open(config_path) as f:
        raw = yaml.safe_load(f)
    if not isinstance(raw, dict):
        raise ValueError(f"Engine config {config_path} must be a mapping")
    config = EngineConfig.from_dict(raw)
    logger.info("Loaded engine config for %s from %s", config.pair_id, config_path)
    return config

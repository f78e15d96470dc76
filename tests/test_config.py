"""
Tests for EngineConfig and the YAML loader.
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from pepperlend import EngineConfig, load_engine_config, CURVE_STEPPED


class TestEngineConfig:

    def test_defaults(self):
        config = EngineConfig("LEND", "BORROW", "LEND/BORROW")
        assert config.loan_to_value == Decimal("0.5")
        assert config.fee_rate == Decimal("0.001")
        assert config.loan_term == timedelta(days=30)
        assert config.liquidation_bonus_ramp == timedelta(days=1)
        assert config.liquidation_max_bonus == Decimal("0.1")
        assert config.liquidation_curve == "linear"

    def test_floats_converted_to_decimal(self):
        config = EngineConfig("LEND", "BORROW", "LEND/BORROW", loan_to_value=0.75)
        assert config.loan_to_value == Decimal("0.75")

    def test_frozen(self):
        config = EngineConfig("LEND", "BORROW", "LEND/BORROW")
        with pytest.raises(AttributeError):
            config.fee_rate = Decimal("0.5")

    @pytest.mark.parametrize("kwargs", [
        {"loan_to_value": Decimal("0")},
        {"loan_to_value": Decimal("1.5")},
        {"fee_rate": Decimal("-0.01")},
        {"loan_term": timedelta(0)},
        {"liquidation_bonus_ramp": timedelta(seconds=-1)},
        {"liquidation_max_bonus": Decimal("-0.1")},
        {"liquidation_curve": "exponential"},
        {"liquidation_bonus_step": timedelta(0)},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            EngineConfig("LEND", "BORROW", "LEND/BORROW", **kwargs)

    def test_same_asset_rejected(self):
        with pytest.raises(ValueError, match="different"):
            EngineConfig("LEND", "LEND", "LEND/LEND")

    def test_from_dict(self):
        config = EngineConfig.from_dict({
            "collateral_unit": "LEND",
            "borrowed_unit": "BORROW",
            "pair_id": "LEND/BORROW",
            "loan_to_value": "0.6",
            "loan_term_seconds": 3600,
            "liquidation_curve": "stepped",
            "liquidation_bonus_step_seconds": 600,
        })
        assert config.loan_to_value == Decimal("0.6")
        assert config.loan_term == timedelta(hours=1)
        assert config.liquidation_curve == CURVE_STEPPED
        assert config.liquidation_bonus_step == timedelta(minutes=10)

    def test_from_dict_rejects_unknown_keys(self):
        with pytest.raises(ValueError, match="Unknown"):
            EngineConfig.from_dict({
                "collateral_unit": "LEND",
                "borrowed_unit": "BORROW",
                "pair_id": "LEND/BORROW",
                "interest_model": "compound",
            })


class TestLoadEngineConfig:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text(
            "collateral_unit: LEND\n"
            "borrowed_unit: BORROW\n"
            "pair_id: LEND/BORROW\n"
            "fee_rate: '0.002'\n"
            "liquidation_max_bonus: 0.05\n"
            "liquidation_bonus_ramp_seconds: 7200\n"
        )
        config = load_engine_config(path)
        assert config.fee_rate == Decimal("0.002")
        assert config.liquidation_max_bonus == Decimal("0.05")
        assert config.liquidation_bonus_ramp == timedelta(hours=2)

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "engine.yaml"
        path.write_text("- LEND\n- BORROW\n")
        with pytest.raises(ValueError, match="mapping"):
            load_engine_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_engine_config(tmp_path / "missing.yaml")

"""Tests for config models and the JSON file provider."""
import json
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from core.config.models import config_to_dict, create_default_config, load_config_from_dict
from core.config.providers.file_config_provider import FileConfigProvider

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "core" / "config" / "default_config.json"


class TestModels:
    def test_defaults(self):
        config = create_default_config()

        assert config.paper_trading.initial_balance == Decimal("5")
        assert config.paper_trading.max_open_positions == 5
        assert config.paper_trading.price_check.max_retries == 15
        assert config.swap.amount_lamports == 1_000_000_000
        assert config.sell.stop_loss_percent == Decimal("30")
        assert config.sell.take_profit_percent == Decimal("26")
        assert config.price_feed.trusted_dex_ids == ["raydium"]
        assert config.strategies.liquidity_drop.threshold_percent == Decimal("20")
        assert not config.price_validation.enabled

    def test_partial_dict_keeps_other_defaults(self):
        config = load_config_from_dict({
            "sell": {"stop_loss_percent": "15"},
            "price_feed": {"trusted_dex_ids": ["Raydium", "ORCA"]},
        })

        assert config.sell.stop_loss_percent == Decimal("15")
        assert config.sell.take_profit_percent == Decimal("26")
        assert config.price_feed.trusted_dex_ids == ["raydium", "orca"]
        assert config.swap.slippage_bps == 200

    def test_empty_dict_is_default(self):
        assert load_config_from_dict(None) == create_default_config()

    @pytest.mark.parametrize("data", [
        {"swap": {"slippage_bps": 20_000}},
        {"price_feed": {"trusted_dex_ids": []}},
        {"paper_trading": {"price_check": {"initial_delay_seconds": 10, "max_delay_seconds": 5}}},
        {"strategies": {"liquidity_drop": {"threshold_percent": 0}}},
        {"paper_trading": {"initial_balance": "-1"}},
    ])
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ValidationError):
            load_config_from_dict(data)

    def test_shipped_file_matches_defaults(self):
        with open(DEFAULT_CONFIG_FILE) as f:
            assert load_config_from_dict(json.load(f)) == create_default_config()


class TestFileConfigProvider:
    def test_missing_file_gives_defaults(self, tmp_path):
        provider = FileConfigProvider(tmp_path / "absent.json")
        assert provider.load() == create_default_config()

    def test_save_then_load(self, tmp_path):
        provider = FileConfigProvider(tmp_path / "nested" / "config.json")
        config = create_default_config()
        config.sell.auto_sell = False
        config.paper_trading.tick_interval_seconds = 2.5

        provider.save(config)
        loaded = provider.load()

        assert loaded == config
        assert json.loads(provider.config_path.read_text()) == config_to_dict(config)

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            FileConfigProvider(path).load()

"""
Safety and configuration tests for FOURCAST.
"""
import os
from decimal import Decimal
from unittest.mock import patch

import pytest

from fourcast.config import TradingConfig, TradingMode, default_agent_profiles, load_config


class TestSafetyLatches:
    """Test safety latch behavior."""

    def test_default_config_is_simulation(self):
        """Default configuration should be simulation mode."""
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config()
        assert cfg.trading_mode == TradingMode.SIMULATION
        assert cfg.live_trading_enabled is False
        assert cfg.can_execute_live() is False

    def test_live_mode_without_flag_raises(self):
        with pytest.raises(ValueError, match="SAFETY"):
            TradingConfig(trading_mode=TradingMode.LIVE, live_trading_enabled=False)

    def test_live_mode_from_env_without_flag_raises(self):
        with patch.dict(os.environ, {"TRADING_MODE": "live"}, clear=True):
            with pytest.raises(ValueError, match="SAFETY"):
                load_config()

    def test_live_mode_needs_venue_credentials(self):
        cfg = TradingConfig(trading_mode=TradingMode.LIVE, live_trading_enabled=True)
        assert cfg.can_execute_live() is False
        assert "falling back to simulation" in cfg.get_mode_description()

    def test_live_mode_with_credentials(self):
        cfg = TradingConfig(
            trading_mode=TradingMode.LIVE,
            live_trading_enabled=True,
            polymarket_api_key="k",
            polymarket_api_secret="s",
            polymarket_passphrase="p",
            polymarket_private_key="0xabc",
        )
        assert cfg.can_execute_live() is True

    def test_credentials_alone_do_not_enable_live(self):
        cfg = TradingConfig(
            polymarket_api_key="k",
            polymarket_api_secret="s",
            polymarket_passphrase="p",
            polymarket_private_key="0xabc",
        )
        assert cfg.has_venue_credentials() is True
        assert cfg.can_execute_live() is False

    def test_unknown_mode_falls_back_to_simulation(self):
        with patch.dict(os.environ, {"TRADING_MODE": "paper"}, clear=True):
            cfg = load_config()
        assert cfg.trading_mode == TradingMode.SIMULATION

    def test_invalid_trade_fraction_rejected(self):
        with pytest.raises(ValueError):
            TradingConfig(max_trade_fraction=Decimal("1.5"))
        with pytest.raises(ValueError):
            TradingConfig(max_trade_fraction=Decimal("0"))

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValueError):
            TradingConfig(tick_interval_minutes=0)


class TestTradingParameters:
    """Test trading defaults and environment overrides."""

    def test_defaults(self):
        cfg = TradingConfig()
        assert cfg.initial_capital == Decimal("500")
        assert cfg.max_trade_fraction == Decimal("0.10")
        assert cfg.min_liquidity == Decimal("1000")
        assert cfg.tick_interval_minutes == 15
        assert cfg.tick_interval_seconds == 900
        assert cfg.position_epsilon == Decimal("0.001")

    def test_max_trade_size_is_fraction_of_initial_capital(self):
        cfg = TradingConfig()
        assert cfg.max_trade_size(Decimal("500")) == Decimal("50")
        assert cfg.max_trade_size(Decimal("1000")) == Decimal("100")

    def test_env_overrides(self):
        env = {
            "INITIAL_CAPITAL": "1000",
            "MAX_TRADE_FRACTION": "0.05",
            "MIN_LIQUIDITY": "250",
            "TICK_INTERVAL_MINUTES": "5",
            "DECISION_TIMEOUT_SECONDS": "30",
            "FOURCAST_STATE_PATH": "/tmp/ledger.json",
            "AUTO_START_SCHEDULER": "true",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            cfg = load_config()
        assert cfg.initial_capital == Decimal("1000")
        assert cfg.max_trade_size(cfg.initial_capital) == Decimal("50")
        assert cfg.min_liquidity == Decimal("250")
        assert cfg.tick_interval_minutes == 5
        assert cfg.decision_timeout_seconds == 30
        assert cfg.state_path == "/tmp/ledger.json"
        assert cfg.auto_start_scheduler is True
        assert cfg.log_level == "DEBUG"

    def test_default_roster_has_one_agent_per_provider(self):
        with patch.dict(os.environ, {}, clear=True):
            profiles = default_agent_profiles()
        assert [p.provider for p in profiles] == ["openai", "xai", "anthropic", "google"]
        assert len({p.name for p in profiles}) == 4

    def test_model_override_from_env(self):
        with patch.dict(os.environ, {"ANTHROPIC_MODEL": "claude-test"}, clear=True):
            profiles = default_agent_profiles()
        assert next(p for p in profiles if p.provider == "anthropic").model == "claude-test"


class TestCredentials:
    """Test provider key reporting."""

    def test_configured_providers(self):
        cfg = TradingConfig(openai_api_key="sk-1", gemini_api_key="g-1")
        assert cfg.get_configured_providers() == ["openai", "google"]
        assert cfg.provider_api_key("xai") == ""

    def test_validate_env_lists_missing(self):
        cfg = TradingConfig(openai_api_key="sk-1", brave_api_key="b")
        missing = cfg.validate_env()
        assert "OPENAI_API_KEY" not in missing
        assert "XAI_API_KEY" in missing
        assert "TWITTER_BEARER_TOKEN" in missing
        assert "BRAVE_API_KEY" not in missing
        assert "POLYMARKET_*" in missing

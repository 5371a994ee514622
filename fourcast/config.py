"""
Configuration management with safety latches for trading modes.
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List


class TradingMode(str, Enum):
    SIMULATION = "simulation"
    LIVE = "live"


@dataclass
class AgentProfile:
    """Static description of one competing agent."""
    name: str
    model: str
    provider: str
    color: str
    strategy: str


def default_agent_profiles() -> List[AgentProfile]:
    return [
        AgentProfile(
            name="GPT-5",
            model=os.getenv("OPENAI_MODEL", "gpt-5"),
            provider="openai",
            color="#14b8a6",
            strategy=(
                "Balanced macro + sentiment hybrid. Analyzes broader economic trends while "
                "incorporating social sentiment for timing decisions. Focuses on medium-term "
                "positions with calculated risk exposure."
            ),
        ),
        AgentProfile(
            name="Grok-4",
            model=os.getenv("XAI_MODEL", "grok-4"),
            provider="xai",
            color="#a855f7",
            strategy=(
                "Aggressive short-term opportunist. Exploits rapid market movements and "
                "sentiment shifts. Higher turnover with focus on quick profit-taking and "
                "momentum plays."
            ),
        ),
        AgentProfile(
            name="Claude-Sonnet-4",
            model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            provider="anthropic",
            color="#f97316",
            strategy=(
                "Statistics and probability-focused risk-averse trader. Relies heavily on "
                "historical patterns and mathematical edge. Prefers high-probability setups "
                "with defined risk parameters."
            ),
        ),
        AgentProfile(
            name="Gemini-2.5-Flash",
            model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            provider="google",
            color="#3b82f6",
            strategy=(
                "News-driven cautious analyst. Prioritizes fundamental research, policy "
                "announcements, and roadmap tracking. Conservative positioning with emphasis "
                "on information edge."
            ),
        ),
    ]


PROVIDER_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "xai": "XAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "google": "GEMINI_API_KEY",
}


@dataclass
class TradingConfig:
    openai_api_key: str = ""
    xai_api_key: str = ""
    anthropic_api_key: str = ""
    gemini_api_key: str = ""

    polymarket_api_key: str = ""
    polymarket_api_secret: str = ""
    polymarket_passphrase: str = ""
    polymarket_private_key: str = ""

    twitter_bearer_token: str = ""
    brave_api_key: str = ""

    trading_mode: TradingMode = TradingMode.SIMULATION
    live_trading_enabled: bool = False
    auto_start_scheduler: bool = False

    initial_capital: Decimal = Decimal("500")
    max_trade_fraction: Decimal = Decimal("0.10")
    max_daily_volume_fraction: Decimal = Decimal("0.40")
    min_liquidity: Decimal = Decimal("1000")
    position_epsilon: Decimal = Decimal("0.001")
    assumed_volatility: Decimal = Decimal("0.20")

    tick_interval_minutes: float = 15
    decision_timeout_seconds: float = 60.0
    market_limit: int = 50
    brief_market_limit: int = 20

    polymarket_gamma_url: str = "https://gamma-api.polymarket.com"
    polymarket_clob_url: str = "https://clob.polymarket.com"
    twitter_base_url: str = "https://api.twitter.com/2"
    brave_base_url: str = "https://api.search.brave.com/res/v1"
    http_timeout_seconds: float = 15.0

    agent_profiles: List[AgentProfile] = field(default_factory=default_agent_profiles)

    state_path: str = ""
    log_level: str = "INFO"

    def __post_init__(self):
        self._validate_safety()

    def _validate_safety(self):
        """Ensure safety latches are properly configured."""
        if self.trading_mode == TradingMode.LIVE and not self.live_trading_enabled:
            raise ValueError(
                "SAFETY: Live trading requested but LIVE_TRADING_ENABLED is not true. "
                "Both TRADING_MODE=live AND LIVE_TRADING_ENABLED=true are required."
            )
        if not (Decimal("0") < self.max_trade_fraction <= Decimal("1")):
            raise ValueError(f"max_trade_fraction must be in (0, 1], got {self.max_trade_fraction}")
        if self.tick_interval_minutes <= 0:
            raise ValueError("tick_interval_minutes must be positive")

    @property
    def tick_interval_seconds(self) -> float:
        return self.tick_interval_minutes * 60

    def max_trade_size(self, initial_capital: Decimal) -> Decimal:
        """Per-trade cap: a fixed fraction of the agent's initial capital."""
        return initial_capital * self.max_trade_fraction

    def has_venue_credentials(self) -> bool:
        return bool(
            self.polymarket_private_key
            and self.polymarket_api_key
            and self.polymarket_api_secret
            and self.polymarket_passphrase
        )

    def can_execute_live(self) -> bool:
        """Live orders need the mode latch, the enable flag and venue credentials."""
        return (
            self.trading_mode == TradingMode.LIVE
            and self.live_trading_enabled
            and self.has_venue_credentials()
        )

    def provider_api_key(self, provider: str) -> str:
        return {
            "openai": self.openai_api_key,
            "xai": self.xai_api_key,
            "anthropic": self.anthropic_api_key,
            "google": self.gemini_api_key,
        }.get(provider, "")

    def get_configured_providers(self) -> List[str]:
        return [p for p in PROVIDER_KEY_ENV if self.provider_api_key(p)]

    def validate_env(self) -> List[str]:
        """Names of optional credentials that are not set."""
        missing = [env for provider, env in PROVIDER_KEY_ENV.items() if not self.provider_api_key(provider)]
        if not self.twitter_bearer_token:
            missing.append("TWITTER_BEARER_TOKEN")
        if not self.brave_api_key:
            missing.append("BRAVE_API_KEY")
        if not self.has_venue_credentials():
            missing.append("POLYMARKET_*")
        return missing

    def get_mode_description(self) -> str:
        """Get human-readable description of current mode."""
        if self.trading_mode == TradingMode.SIMULATION:
            return "SIMULATION: Ledger updated locally, no orders sent to the venue"
        if self.can_execute_live():
            return "LIVE: Venue credentials present, orders routed through the live path"
        return "LIVE: Venue credentials missing, falling back to simulation"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config() -> TradingConfig:
    """Load configuration from environment variables."""
    mode_str = os.getenv("TRADING_MODE", "simulation").lower()
    try:
        trading_mode = TradingMode(mode_str)
    except ValueError:
        trading_mode = TradingMode.SIMULATION

    return TradingConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        xai_api_key=os.getenv("XAI_API_KEY", ""),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        polymarket_api_key=os.getenv("POLYMARKET_API_KEY", ""),
        polymarket_api_secret=os.getenv("POLYMARKET_API_SECRET", ""),
        polymarket_passphrase=os.getenv("POLYMARKET_PASSPHRASE", ""),
        polymarket_private_key=os.getenv("POLYMARKET_PRIVATE_KEY", ""),
        twitter_bearer_token=os.getenv("TWITTER_BEARER_TOKEN", ""),
        brave_api_key=os.getenv("BRAVE_API_KEY", ""),
        trading_mode=trading_mode,
        live_trading_enabled=_env_bool("LIVE_TRADING_ENABLED"),
        auto_start_scheduler=_env_bool("AUTO_START_SCHEDULER"),
        initial_capital=Decimal(os.getenv("INITIAL_CAPITAL", "500")),
        max_trade_fraction=Decimal(os.getenv("MAX_TRADE_FRACTION", "0.10")),
        max_daily_volume_fraction=Decimal(os.getenv("MAX_DAILY_VOLUME_FRACTION", "0.40")),
        min_liquidity=Decimal(os.getenv("MIN_LIQUIDITY", "1000")),
        tick_interval_minutes=float(os.getenv("TICK_INTERVAL_MINUTES", "15")),
        decision_timeout_seconds=float(os.getenv("DECISION_TIMEOUT_SECONDS", "60")),
        market_limit=int(os.getenv("MARKET_LIMIT", "50")),
        state_path=os.getenv("FOURCAST_STATE_PATH", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )

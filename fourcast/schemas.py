"""
Pydantic schemas for ledger entities.

Monetary, price and share fields are Decimal; they serialize to exact
strings with model_dump(mode="json").
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def new_id() -> str:
    return str(uuid.uuid4())


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class Side(str, Enum):
    YES = "YES"
    NO = "NO"


class TradeStatus(str, Enum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


class CycleStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertType(str, Enum):
    LARGE_WIN = "large_win"
    LARGE_LOSS = "large_loss"
    RISK_BREACH = "risk_breach"
    MARKET_OPPORTUNITY = "market_opportunity"
    SYSTEM_ERROR = "system_error"


class Agent(BaseModel):
    """A competing decision-making agent and its capital ledger."""
    id: str = Field(default_factory=new_id)
    name: str
    model: str
    provider: str
    strategy_description: str
    color: str = "#64748b"
    initial_capital: Decimal
    current_capital: Decimal
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Market(BaseModel):
    """A two-sided prediction market as last seen by the intelligence provider."""
    id: str = Field(default_factory=new_id)
    external_id: str = Field(description="Venue identifier (Polymarket condition id)")
    question: str
    category: str = "Other"
    end_date: Optional[datetime] = None
    volume: Decimal = Decimal("0")
    liquidity: Decimal = Decimal("0")
    yes_price: Decimal = Decimal("0.5")
    no_price: Decimal = Decimal("0.5")
    resolved: bool = False
    outcome: Optional[str] = None
    last_updated: datetime = Field(default_factory=datetime.utcnow)

    def price_for(self, side: "Side") -> Decimal:
        return self.yes_price if Side(side) == Side.YES else self.no_price


class MarketSnapshot(BaseModel):
    """Point-in-time price history row for a market."""
    id: str = Field(default_factory=new_id)
    market_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    yes_price: Decimal
    no_price: Decimal
    volume: Decimal = Decimal("0")
    sentiment_score: Decimal = Decimal("0")
    news_count: int = 0


class Trade(BaseModel):
    """Immutable record of one attempted action."""
    id: str = Field(default_factory=new_id)
    agent_id: str
    market_id: str
    action: TradeAction
    side: Side
    size_usd: Decimal
    price: Decimal
    shares: Decimal = Decimal("0")
    reasoning: str = ""
    status: TradeStatus = TradeStatus.PENDING
    error_message: Optional[str] = None
    executed_at: datetime = Field(default_factory=datetime.utcnow)


class Position(BaseModel):
    """Open exposure of one agent to one market side."""
    id: str = Field(default_factory=new_id)
    agent_id: str
    market_id: str
    side: Side
    shares: Decimal
    entry_price: Decimal
    current_value: Decimal = Decimal("0")
    unrealized_pnl: Decimal = Decimal("0")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PerformanceMetrics(BaseModel):
    """Append-only performance snapshot for one agent."""
    id: str = Field(default_factory=new_id)
    agent_id: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    net_pnl: Decimal = Decimal("0")
    sharpe_ratio: Decimal = Decimal("0")
    max_drawdown: Decimal = Decimal("0")
    win_rate: Decimal = Decimal("0")
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_holding_time: int = Field(default=0, description="Minutes")
    turnover: Decimal = Decimal("0")


class TickCycle(BaseModel):
    """One orchestration run."""
    id: str = Field(default_factory=new_id)
    cycle_number: int
    status: CycleStatus = CycleStatus.RUNNING
    markets_processed: int = 0
    trades_executed: int = 0
    error_count: int = 0
    started_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None


class Alert(BaseModel):
    """Notification raised by the alert engine."""
    id: str = Field(default_factory=new_id)
    type: AlertType
    severity: AlertSeverity = AlertSeverity.INFO
    title: str
    message: str
    agent_id: Optional[str] = None
    trade_id: Optional[str] = None
    market_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    is_dismissed: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SystemLog(BaseModel):
    """Persisted log line for the presentation layer."""
    id: str = Field(default_factory=new_id)
    level: str
    source: str
    message: str
    metadata: Optional[Dict[str, Any]] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

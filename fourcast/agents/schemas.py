"""
Pydantic schemas for the trading cycle pipeline.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from ..schemas import (
    Agent,
    Market,
    PerformanceMetrics,
    Side,
    Trade,
    TradeAction,
)


class CanonicalAction(BaseModel):
    """Validated trading instruction derived from a provider response."""
    action: TradeAction
    market_id: str = ""
    side: Side = Side.YES
    size_usd: Decimal = Field(default=Decimal("0"), ge=0)
    max_price: Decimal = Field(default=Decimal("1"), ge=0, le=1)
    reasoning: str = "No reasoning provided"

    @model_validator(mode="after")
    def hold_has_no_size(self) -> "CanonicalAction":
        if self.action == TradeAction.HOLD:
            self.size_usd = Decimal("0")
        return self

    @property
    def is_hold(self) -> bool:
        return self.action == TradeAction.HOLD


class AgentDecision(BaseModel):
    """Outcome of asking one agent for a decision: an action or a failure note."""
    agent_id: str
    agent_name: str
    action: Optional[CanonicalAction] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.action is None


class ExecutionResult(BaseModel):
    """Result from TradeExecutor.execute."""
    success: bool
    trade: Optional[Trade] = None
    error: Optional[str] = None
    metrics: Optional[PerformanceMetrics] = None
    previous_metrics: Optional[PerformanceMetrics] = None


class SocialPost(BaseModel):
    id: str
    text: str
    author_id: str = ""
    created_at: str = ""
    like_count: int = 0
    retweet_count: int = 0
    reply_count: int = 0


class NewsArticle(BaseModel):
    title: str
    url: str
    description: str = ""
    age: Optional[str] = None


class MarketIntelligence(BaseModel):
    """Markets plus supporting context gathered for one cycle."""
    markets: List[Market] = Field(default_factory=list)
    posts: List[SocialPost] = Field(default_factory=list)
    news: List[NewsArticle] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class CycleStats(BaseModel):
    cycle_number: int
    markets_processed: int = 0
    trades_executed: int = 0
    error_count: int = 0


class LeaderboardEntry(BaseModel):
    rank: int
    agent: Agent
    metrics: Optional[PerformanceMetrics] = None
    net_pnl: Decimal = Decimal("0")

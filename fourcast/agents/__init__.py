"""
FOURCAST agent system - one trading cycle across competing model-backed agents.

Components (in handoff order):
1. MarketIntelligenceProvider - Markets, social posts and news
2. DecisionEngine - One provider call per agent, parsed to a CanonicalAction
3. TradeExecutor - Validate and apply the action to the ledger
4. MetricsEngine - Append a performance snapshot after each trade
5. AlertEngine - Threshold alerts on trades, metrics and cycles

The CycleOrchestrator runs the cycle and owns the schedule.
"""

from .schemas import (
    CanonicalAction,
    AgentDecision,
    ExecutionResult,
    MarketIntelligence,
    SocialPost,
    NewsArticle,
    CycleStats,
    LeaderboardEntry,
)

__all__ = [
    "CanonicalAction",
    "AgentDecision",
    "ExecutionResult",
    "MarketIntelligence",
    "SocialPost",
    "NewsArticle",
    "CycleStats",
    "LeaderboardEntry",
]

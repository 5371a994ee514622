"""
Performance metrics for competing agents.

Tracks net PnL, a win-rate estimate, a Sharpe proxy, drawdown and
turnover. The win rate is derived from aggregate PnL rather than from
closed positions, and the Sharpe ratio uses a fixed assumed volatility.
"""
import logging
from decimal import ROUND_FLOOR, Decimal
from typing import List

from ..config import TradingConfig
from ..schemas import Agent, PerformanceMetrics, Position, Trade, TradeStatus
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.analytics.performance")

WIN_RATE_FLOOR = Decimal("0.3")
WIN_RATE_CEILING = Decimal("0.7")
HOLDING_CYCLES_ESTIMATE = 4


def estimate_win_rate(pnl_ratio: Decimal) -> Decimal:
    """0.5 nudged by the PnL ratio, clamped to [0.3, 0.7]."""
    return max(WIN_RATE_FLOOR, min(WIN_RATE_CEILING, Decimal("0.5") + pnl_ratio))


def compute_metrics(
    agent: Agent,
    trades: List[Trade],
    positions: List[Position],
    config: TradingConfig,
) -> PerformanceMetrics:
    """Pure calculation of one snapshot from an agent's trades and open positions."""
    executed = [t for t in trades if t.status == TradeStatus.EXECUTED]
    total_trades = len(executed)

    unrealized = sum((p.unrealized_pnl for p in positions), Decimal("0"))
    net_pnl = (agent.current_capital - agent.initial_capital) + unrealized

    returns = net_pnl / agent.initial_capital if agent.initial_capital > 0 else Decimal("0")

    winning = int((total_trades * estimate_win_rate(returns)).to_integral_value(rounding=ROUND_FLOOR))
    losing = total_trades - winning
    win_rate = Decimal(winning) / Decimal(total_trades) if total_trades else Decimal("0")

    volatility = config.assumed_volatility
    sharpe = returns / volatility if volatility > 0 else Decimal("0")

    avg_holding = int(config.tick_interval_minutes * HOLDING_CYCLES_ESTIMATE) if total_trades else 0

    return PerformanceMetrics(
        agent_id=agent.id,
        net_pnl=net_pnl,
        sharpe_ratio=sharpe,
        max_drawdown=min(Decimal("0"), returns),
        win_rate=win_rate,
        total_trades=total_trades,
        winning_trades=winning,
        losing_trades=losing,
        avg_holding_time=avg_holding,
        turnover=sum((t.size_usd for t in executed), Decimal("0")),
    )


class MetricsEngine:
    """Appends a PerformanceMetrics row per recompute; never edits old rows."""

    def __init__(self, config: TradingConfig, store: LedgerStore):
        self.config = config
        self.store = store

    async def recompute(self, agent: Agent) -> PerformanceMetrics:
        agent = await self.store.get_agent(agent.id) or agent
        trades = await self.store.get_trades_by_agent(agent.id)
        positions = await self.store.get_positions_by_agent(agent.id)

        metrics = compute_metrics(agent, trades, positions, self.config)
        saved = await self.store.create_metrics(metrics)
        logger.info(
            f"Metrics for {agent.name}: PnL ${saved.net_pnl:.2f}, "
            f"{saved.total_trades} trades, win rate {saved.win_rate:.0%}"
        )
        return saved

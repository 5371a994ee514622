"""
AlertEngine - Threshold checks over trades, metrics and cycle outcomes.

Purpose: Persist and publish an Alert for every satisfied threshold
Observational only: never touches trades, agents or metrics, and never
raises into the cycle.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, List, Optional

from .schemas import CycleStats
from ..config import TradingConfig
from ..events import EventSink, EventType
from ..schemas import (
    Agent,
    Alert,
    AlertSeverity,
    AlertType,
    PerformanceMetrics,
    Trade,
    TradeAction,
    TradeStatus,
)
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.agents.alerts")


@dataclass
class AlertThresholds:
    large_win_amount: Decimal = Decimal("25")
    large_loss_amount: Decimal = Decimal("20")
    risk_limit_percent: Decimal = Decimal("35")
    significant_drawdown_percent: Decimal = Decimal("10")
    high_win_rate_percent: Decimal = Decimal("75")
    high_win_rate_min_trades: int = 5
    # Expected gain on a fresh BUY, as a fraction of its size.
    estimated_gain_fraction: Decimal = Decimal("0.1")
    busy_cycle_trades: int = 3
    critical_cycle_errors: int = 3


class AlertEngine:
    """Sole writer of Alert rows."""

    def __init__(
        self,
        config: TradingConfig,
        store: LedgerStore,
        sink: EventSink,
        thresholds: Optional[AlertThresholds] = None,
    ):
        self.config = config
        self.store = store
        self.sink = sink
        self.thresholds = thresholds or AlertThresholds()

    async def on_trade(self, trade: Trade, agent: Agent) -> List[Alert]:
        t = self.thresholds
        created: List[Alert] = []
        size = trade.size_usd
        portfolio = agent.current_capital
        trade_percent = (size / portfolio * 100) if portfolio > 0 else Decimal("0")

        if trade.action == TradeAction.BUY and trade.status == TradeStatus.EXECUTED:
            estimated_gain = size * t.estimated_gain_fraction
            if estimated_gain >= t.large_win_amount:
                created += await self._emit(
                    type=AlertType.LARGE_WIN,
                    severity=AlertSeverity.INFO,
                    title=f"Large Position: {agent.name}",
                    message=(
                        f"{agent.name} opened a significant position of ${size:.2f} "
                        f"({trade_percent:.1f}% of portfolio)"
                    ),
                    agent_id=agent.id,
                    trade_id=trade.id,
                    market_id=trade.market_id,
                    metadata={"trade_size": str(size), "trade_percent": str(trade_percent)},
                )

        if trade_percent >= t.risk_limit_percent:
            daily_limit = self.config.max_daily_volume_fraction * 100
            created += await self._emit(
                type=AlertType.RISK_BREACH,
                severity=AlertSeverity.WARNING,
                title=f"Risk Limit Warning: {agent.name}",
                message=f"Trade size {trade_percent:.1f}% approaches the {daily_limit:.0f}% daily limit",
                agent_id=agent.id,
                trade_id=trade.id,
                market_id=trade.market_id,
                metadata={"trade_percent": str(trade_percent), "limit": str(daily_limit)},
            )

        if trade.status == TradeStatus.FAILED and trade.error_message:
            created += await self._emit(
                type=AlertType.SYSTEM_ERROR,
                severity=AlertSeverity.WARNING,
                title=f"Trade Failed: {agent.name}",
                message=trade.error_message,
                agent_id=agent.id,
                trade_id=trade.id,
                market_id=trade.market_id,
                metadata={"error_message": trade.error_message},
            )
        return created

    async def on_performance(
        self,
        agent: Agent,
        metrics: PerformanceMetrics,
        previous: Optional[PerformanceMetrics] = None,
    ) -> List[Alert]:
        t = self.thresholds
        created: List[Alert] = []

        if previous is not None:
            change = metrics.net_pnl - previous.net_pnl
            meta = {"pnl_change": str(change), "total_pnl": str(metrics.net_pnl)}
            if change >= t.large_win_amount:
                created += await self._emit(
                    type=AlertType.LARGE_WIN,
                    severity=AlertSeverity.INFO,
                    title=f"Winning Streak: {agent.name}",
                    message=f"{agent.name} gained ${change:.2f} since the last snapshot",
                    agent_id=agent.id,
                    metadata=meta,
                )
            if change <= -t.large_loss_amount:
                created += await self._emit(
                    type=AlertType.LARGE_LOSS,
                    severity=AlertSeverity.WARNING,
                    title=f"Significant Loss: {agent.name}",
                    message=f"{agent.name} lost ${abs(change):.2f} since the last snapshot",
                    agent_id=agent.id,
                    metadata=meta,
                )

        drawdown_percent = abs(metrics.max_drawdown) * 100
        if drawdown_percent >= t.significant_drawdown_percent:
            created += await self._emit(
                type=AlertType.RISK_BREACH,
                severity=AlertSeverity.CRITICAL,
                title=f"Drawdown Alert: {agent.name}",
                message=f"{agent.name} has reached {drawdown_percent:.1f}% maximum drawdown",
                agent_id=agent.id,
                metadata={"max_drawdown": str(metrics.max_drawdown), "net_pnl": str(metrics.net_pnl)},
            )

        win_rate_percent = metrics.win_rate * 100
        if win_rate_percent >= t.high_win_rate_percent and metrics.total_trades >= t.high_win_rate_min_trades:
            created += await self._emit(
                type=AlertType.MARKET_OPPORTUNITY,
                severity=AlertSeverity.INFO,
                title=f"High Win Rate: {agent.name}",
                message=(
                    f"{agent.name} is achieving {win_rate_percent:.0f}% win rate "
                    f"over {metrics.total_trades} trades"
                ),
                agent_id=agent.id,
                metadata={"win_rate": str(metrics.win_rate), "total_trades": metrics.total_trades},
            )
        return created

    async def on_cycle_complete(self, stats: CycleStats) -> List[Alert]:
        t = self.thresholds
        created: List[Alert] = []
        meta = stats.model_dump()

        if stats.error_count > 0:
            severity = AlertSeverity.CRITICAL if stats.error_count >= t.critical_cycle_errors else AlertSeverity.WARNING
            created += await self._emit(
                type=AlertType.SYSTEM_ERROR,
                severity=severity,
                title=f"Cycle #{stats.cycle_number} Errors",
                message=f"{stats.error_count} errors occurred during trading cycle",
                metadata=meta,
            )

        if stats.trades_executed >= t.busy_cycle_trades:
            created += await self._emit(
                type=AlertType.MARKET_OPPORTUNITY,
                severity=AlertSeverity.INFO,
                title="Active Trading Cycle",
                message=(
                    f"Cycle #{stats.cycle_number}: {stats.trades_executed} trades executed "
                    f"across {stats.markets_processed} markets"
                ),
                metadata=meta,
            )
        return created

    async def _emit(self, **fields: Any) -> List[Alert]:
        try:
            alert = await self.store.create_alert(Alert(**fields))
        except Exception as e:
            logger.error(f"Failed to create alert '{fields.get('title')}': {e}")
            return []

        logger.info(f"Alert created: {alert.title}")
        try:
            await self.sink.publish(EventType.ALERT, alert.model_dump(mode="json"))
        except Exception as e:
            logger.warning(f"Failed to publish alert {alert.id}: {e}")
        return [alert]

"""
Alert engine threshold tests.
"""
from decimal import Decimal

import pytest

from fourcast.agents.alerts import AlertEngine
from fourcast.agents.schemas import CycleStats
from fourcast.errors import LedgerError
from fourcast.events import EventType
from fourcast.schemas import (
    AlertSeverity,
    AlertType,
    PerformanceMetrics,
    Side,
    Trade,
    TradeAction,
    TradeStatus,
)
from fourcast.storage import InMemoryLedgerStore


def _trade(agent, size, status=TradeStatus.EXECUTED, error=None, action=TradeAction.BUY):
    return Trade(
        agent_id=agent.id,
        market_id="m-1",
        action=action,
        side=Side.YES,
        size_usd=Decimal(size),
        price=Decimal("0.5"),
        status=status,
        error_message=error,
    )


def _metrics(agent, pnl="0", drawdown="0", win_rate="0", trades=0):
    return PerformanceMetrics(
        agent_id=agent.id,
        net_pnl=Decimal(pnl),
        max_drawdown=Decimal(drawdown),
        win_rate=Decimal(win_rate),
        total_trades=trades,
    )


class TestTradeAlerts:
    """Test alerts raised per trade."""

    @pytest.mark.asyncio
    async def test_large_position(self, config, store, sink, seed):
        agent = await seed.agent(capital="2000")
        alerts = await AlertEngine(config, store, sink).on_trade(_trade(agent, "250"), agent)

        assert [a.type for a in alerts] == [AlertType.LARGE_WIN]
        assert alerts[0].title == "Large Position: Alpha"
        assert alerts[0].metadata["trade_size"] == "250"

    @pytest.mark.asyncio
    async def test_small_trade_is_quiet(self, config, store, sink, seed):
        agent = await seed.agent()
        assert await AlertEngine(config, store, sink).on_trade(_trade(agent, "20"), agent) == []

    @pytest.mark.asyncio
    async def test_trade_share_of_portfolio(self, config, store, sink, seed):
        agent = await seed.agent(capital="100")
        alerts = await AlertEngine(config, store, sink).on_trade(_trade(agent, "40"), agent)

        assert [a.type for a in alerts] == [AlertType.RISK_BREACH]
        assert alerts[0].severity == AlertSeverity.WARNING

    @pytest.mark.asyncio
    async def test_zero_capital_does_not_divide(self, config, store, sink, seed):
        agent = await seed.agent(capital="0")
        assert await AlertEngine(config, store, sink).on_trade(_trade(agent, "10"), agent) == []

    @pytest.mark.asyncio
    async def test_failed_trade(self, config, store, sink, seed):
        agent = await seed.agent()
        trade = _trade(agent, "20", TradeStatus.FAILED, "Market liquidity too low")
        alerts = await AlertEngine(config, store, sink).on_trade(trade, agent)

        assert [a.type for a in alerts] == [AlertType.SYSTEM_ERROR]
        assert alerts[0].message == "Market liquidity too low"


class TestPerformanceAlerts:
    """Test alerts raised from metric snapshots."""

    @pytest.mark.asyncio
    async def test_gain_since_last_snapshot(self, config, store, sink, seed):
        agent = await seed.agent()
        alerts = await AlertEngine(config, store, sink).on_performance(
            agent, _metrics(agent, pnl="30"), _metrics(agent, pnl="0")
        )
        assert [a.title for a in alerts] == ["Winning Streak: Alpha"]

    @pytest.mark.asyncio
    async def test_loss_since_last_snapshot(self, config, store, sink, seed):
        agent = await seed.agent()
        alerts = await AlertEngine(config, store, sink).on_performance(
            agent, _metrics(agent, pnl="-5"), _metrics(agent, pnl="20")
        )
        assert [a.type for a in alerts] == [AlertType.LARGE_LOSS]

    @pytest.mark.asyncio
    async def test_first_snapshot_skips_change_checks(self, config, store, sink, seed):
        agent = await seed.agent()
        alerts = await AlertEngine(config, store, sink).on_performance(agent, _metrics(agent, pnl="100"))
        assert alerts == []

    @pytest.mark.asyncio
    async def test_drawdown_is_critical(self, config, store, sink, seed):
        agent = await seed.agent()
        alerts = await AlertEngine(config, store, sink).on_performance(agent, _metrics(agent, drawdown="-0.12"))

        assert [a.type for a in alerts] == [AlertType.RISK_BREACH]
        assert alerts[0].severity == AlertSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_high_win_rate_needs_enough_trades(self, config, store, sink, seed):
        agent = await seed.agent()
        engine = AlertEngine(config, store, sink)

        assert await engine.on_performance(agent, _metrics(agent, win_rate="0.8", trades=4)) == []
        alerts = await engine.on_performance(agent, _metrics(agent, win_rate="0.8", trades=5))
        assert [a.type for a in alerts] == [AlertType.MARKET_OPPORTUNITY]


class TestCycleAlerts:
    """Test alerts raised when a cycle ends."""

    @pytest.mark.asyncio
    async def test_errors_escalate_to_critical(self, config, store, sink):
        engine = AlertEngine(config, store, sink)

        warning = await engine.on_cycle_complete(CycleStats(cycle_number=4, error_count=1))
        critical = await engine.on_cycle_complete(CycleStats(cycle_number=5, error_count=3))

        assert warning[0].severity == AlertSeverity.WARNING
        assert critical[0].severity == AlertSeverity.CRITICAL
        assert critical[0].title == "Cycle #5 Errors"

    @pytest.mark.asyncio
    async def test_busy_cycle(self, config, store, sink):
        alerts = await AlertEngine(config, store, sink).on_cycle_complete(
            CycleStats(cycle_number=2, trades_executed=3, markets_processed=12)
        )
        assert [a.title for a in alerts] == ["Active Trading Cycle"]

    @pytest.mark.asyncio
    async def test_quiet_cycle(self, config, store, sink):
        assert await AlertEngine(config, store, sink).on_cycle_complete(CycleStats(cycle_number=1)) == []


class BrokenAlertStore(InMemoryLedgerStore):
    async def create_alert(self, alert):
        raise LedgerError("unreachable")


class ExplodingSink:
    async def publish(self, event_type, payload):
        raise RuntimeError("socket closed")


class TestDelivery:
    """Test persistence and publishing of alerts."""

    @pytest.mark.asyncio
    async def test_alert_is_persisted_and_published(self, config, store, sink):
        alerts = await AlertEngine(config, store, sink).on_cycle_complete(CycleStats(cycle_number=1, error_count=1))

        assert (await store.get_unread_alerts())[0].id == alerts[0].id
        assert sink.types() == [EventType.ALERT]
        payload = sink.events[0][1]
        assert payload["id"] == alerts[0].id
        assert payload["type"] == "system_error"

    @pytest.mark.asyncio
    async def test_store_failure_is_swallowed(self, config, sink):
        alerts = await AlertEngine(config, BrokenAlertStore(), sink).on_cycle_complete(
            CycleStats(cycle_number=1, error_count=1)
        )
        assert alerts == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_alert(self, config, store):
        alerts = await AlertEngine(config, store, ExplodingSink()).on_cycle_complete(
            CycleStats(cycle_number=1, error_count=1)
        )
        assert len(alerts) == 1
        assert len(await store.get_alerts()) == 1

"""
CycleOrchestrator - Top-level conductor of the trading competition.

Purpose: Own the schedule and run one cycle at a time.

Per cycle (strict order):
  MarketIntelligenceProvider -> for each active agent:
      DecisionEngine -> TradeExecutor (-> MetricsEngine) -> AlertEngine
  -> TradeExecutor.revalue_open_positions -> finalize TickCycle
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from .alerts import AlertEngine
from .decision import DecisionEngine
from .execution import TradeExecutor
from .market_data import MarketIntelligenceProvider
from .schemas import CycleStats
from ..config import TradingConfig
from ..events import EventSink, EventType
from ..schemas import Agent, CycleStatus, TickCycle
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.agents.orchestrator")


class CycleOrchestrator:
    """
    Runs trading cycles on a fixed interval.

    At most one cycle is in flight; overlapping requests are rejected.
    stop() disarms the timer but never interrupts a running cycle.
    """

    def __init__(
        self,
        config: TradingConfig,
        store: LedgerStore,
        intelligence: MarketIntelligenceProvider,
        decision: DecisionEngine,
        executor: TradeExecutor,
        alerts: AlertEngine,
        sink: EventSink,
    ):
        self.config = config
        self.store = store
        self.intelligence = intelligence
        self.decision = decision
        self.executor = executor
        self.alerts = alerts
        self.sink = sink

        self._running = False
        self._cycle_number = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._cycle_lock = asyncio.Lock()

        logger.info(
            f"Orchestrator initialized - Mode: {config.trading_mode.value}, "
            f"interval: {config.tick_interval_minutes} min"
        )

    # -- control surface --------------------------------------------------

    def is_active(self) -> bool:
        return self._running

    def current_cycle_number(self) -> int:
        return self._cycle_number

    @property
    def cycle_in_progress(self) -> bool:
        return self._cycle_lock.locked()

    async def start(self):
        if self._running:
            logger.warning("Scheduler already running")
            return

        self._running = True
        try:
            last = await self.store.get_last_cycle()
            self._cycle_number = last.cycle_number if last else 0
            await self.ensure_agents()
        except Exception as e:
            logger.error(f"Scheduler failed to start: {e}", exc_info=True)
            self._running = False
            return

        logger.info(
            f"Scheduler starting - every {self.config.tick_interval_minutes} min, "
            f"last cycle #{self._cycle_number}"
        )

        started_at = asyncio.get_running_loop().time()
        await self.run_cycle()

        if self._running and self._timer is None:
            self._timer = asyncio.create_task(self._timer_loop(started_at))
            logger.info(f"Scheduler started - next cycle in {self.config.tick_interval_minutes} minutes")

    async def stop(self):
        if not self._running and self._timer is None:
            return

        self._running = False
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        logger.info("Scheduler stopped")

    async def trigger_cycle(self) -> Optional[TickCycle]:
        """Start the scheduler if idle, otherwise run one extra cycle now."""
        if not self._running:
            await self.start()
            last = await self.store.get_last_cycle() if self._running else None
            return last
        return await self.run_cycle()

    async def wait_idle(self):
        """Wait for an in-flight cycle, if any, to finish."""
        task = self._inflight
        if task is not None and not task.done():
            await asyncio.wait([task])

    async def ensure_agents(self) -> List[Agent]:
        """Upsert the configured roster by name; capital is never reset."""
        agents = []
        for profile in self.config.agent_profiles:
            agent = await self.store.get_agent_by_name(profile.name)
            if agent is None:
                agent = await self.store.create_agent(
                    Agent(
                        name=profile.name,
                        model=profile.model,
                        provider=profile.provider,
                        strategy_description=profile.strategy,
                        color=profile.color,
                        initial_capital=self.config.initial_capital,
                        current_capital=self.config.initial_capital,
                    )
                )
                logger.info(f"Created agent: {agent.name} ({agent.provider}/{agent.model})")
            else:
                changes = {
                    field: value
                    for field, value in (
                        ("model", profile.model),
                        ("provider", profile.provider),
                        ("strategy_description", profile.strategy),
                        ("color", profile.color),
                    )
                    if getattr(agent, field) != value
                }
                if changes:
                    agent = await self.store.update_agent(agent.id, **changes)
                    logger.info(f"Updated agent {agent.name}: {', '.join(sorted(changes))}")
            agents.append(agent)
        return agents

    # -- cycle ------------------------------------------------------------

    async def run_cycle(self) -> Optional[TickCycle]:
        """
        Run one cycle unless one is already in flight.

        Returns:
            The finished TickCycle, or None when rejected or unrecordable
        """
        if self._cycle_lock.locked():
            logger.warning(f"Cycle #{self._cycle_number} still in progress - request ignored")
            return None

        await self._cycle_lock.acquire()
        task = asyncio.create_task(self._run_locked())
        self._inflight = task
        return await asyncio.shield(task)

    async def _run_locked(self) -> Optional[TickCycle]:
        try:
            return await self._execute_cycle()
        finally:
            self._cycle_lock.release()

    async def _execute_cycle(self) -> Optional[TickCycle]:
        self._cycle_number += 1
        stats = CycleStats(cycle_number=self._cycle_number)
        logger.info(f"=== CYCLE #{stats.cycle_number} START ===")

        try:
            cycle = await self.store.create_cycle(TickCycle(cycle_number=stats.cycle_number))
        except Exception as e:
            logger.error(f"Cycle #{stats.cycle_number} could not be recorded: {e}", exc_info=True)
            stats.error_count += 1
            await self.alerts.on_cycle_complete(stats)
            return None

        await self._publish(EventType.CYCLE_START, {"cycle": cycle.model_dump(mode="json")})

        finalized = False
        try:
            logger.info("[1/3] Collecting market intelligence...")
            intelligence = await self.intelligence.collect()
            stats.markets_processed = len(intelligence.markets)
            stats.error_count += len(intelligence.errors)
            brief = self.intelligence.format_brief(intelligence)

            logger.info("[2/3] Getting agent decisions...")
            for agent in await self.store.get_agents():
                if not agent.active:
                    continue
                await self._agent_turn(agent, brief, stats)

            logger.info("[3/3] Revaluing open positions...")
            await self.executor.revalue_open_positions()

            cycle = await self.store.update_cycle(
                cycle.id,
                status=CycleStatus.COMPLETED,
                completed_at=datetime.utcnow(),
                **self._counts(stats),
            )
            finalized = True
            logger.info(
                f"=== CYCLE #{stats.cycle_number} COMPLETE === markets: {stats.markets_processed}, "
                f"trades: {stats.trades_executed}, errors: {stats.error_count}"
            )

            agents = await self.store.get_agents()
            metrics = await self.store.get_latest_metrics()
            await self._publish(
                EventType.CYCLE_COMPLETE,
                {
                    "cycle": cycle.model_dump(mode="json"),
                    "trades_executed": stats.trades_executed,
                    "markets_processed": stats.markets_processed,
                    "agents": [a.model_dump(mode="json") for a in agents],
                    "metrics": [m.model_dump(mode="json") for m in metrics],
                },
            )
        except Exception as e:
            if finalized:
                logger.error(f"Cycle #{stats.cycle_number} completed but its report failed: {e}", exc_info=True)
            else:
                stats.error_count += 1
                logger.error(f"Cycle #{stats.cycle_number} failed: {e}", exc_info=True)
                cycle = await self._mark_failed(cycle, stats)

        await self.alerts.on_cycle_complete(stats)
        return cycle

    async def _agent_turn(self, agent: Agent, brief: str, stats: CycleStats):
        decision = await self.decision.decide(agent, brief)
        if decision.failed:
            stats.error_count += 1
            return

        action = decision.action
        if action.is_hold:
            logger.info(f"{agent.name} holds: {action.reasoning[:100]}")
        else:
            result = await self.executor.execute(agent.id, action)
            if result.success:
                stats.trades_executed += 1
            else:
                stats.error_count += 1

            agent = await self.store.get_agent(agent.id) or agent
            if result.trade is not None:
                await self.alerts.on_trade(result.trade, agent)
                if result.success:
                    await self._publish(
                        EventType.NEW_TRADE,
                        {"trade": result.trade.model_dump(mode="json"), "agent": agent.model_dump(mode="json")},
                    )
            if result.metrics is not None:
                await self.alerts.on_performance(agent, result.metrics, result.previous_metrics)

        metrics = await self.store.get_latest_agent_metrics(agent.id)
        await self._publish(
            EventType.AGENT_UPDATE,
            {
                "agent": agent.model_dump(mode="json"),
                "metrics": metrics.model_dump(mode="json") if metrics else None,
            },
        )

    async def _mark_failed(self, cycle: TickCycle, stats: CycleStats) -> TickCycle:
        try:
            return await self.store.update_cycle(
                cycle.id,
                status=CycleStatus.FAILED,
                completed_at=datetime.utcnow(),
                **self._counts(stats),
            )
        except Exception as e:
            logger.error(f"Could not mark cycle #{cycle.cycle_number} failed: {e}")
            return cycle.model_copy(update={"status": CycleStatus.FAILED, **self._counts(stats)})

    @staticmethod
    def _counts(stats: CycleStats) -> Dict[str, Any]:
        return {
            "markets_processed": stats.markets_processed,
            "trades_executed": stats.trades_executed,
            "error_count": stats.error_count,
        }

    async def _publish(self, event_type: EventType, payload: Dict[str, Any]):
        try:
            await self.sink.publish(event_type, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type.value}: {e}")

    async def _timer_loop(self, started_at: float):
        """Fire every interval measured from start, not from the end of the last cycle."""
        loop = asyncio.get_running_loop()
        interval = self.config.tick_interval_seconds
        next_tick = started_at + interval
        while self._running:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if not self._running:
                break
            await self.run_cycle()
            # Ticks that fell inside the cycle are dropped, as the overlap guard would.
            now = loop.time()
            while next_tick <= now:
                next_tick += interval

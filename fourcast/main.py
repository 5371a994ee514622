"""
Main entry point - runs the trading competition scheduler until interrupted.
"""
import asyncio
import logging
import signal
import sys
from typing import Optional

from .agents.alerts import AlertEngine
from .agents.decision import DecisionEngine
from .agents.execution import TradeExecutor
from .agents.market_data import MarketIntelligenceProvider
from .agents.orchestrator import CycleOrchestrator
from .agents.providers import ProviderRegistry, build_provider_registry
from .analytics.performance import MetricsEngine
from .config import TradingConfig, load_config
from .events import EventSink, FanoutEventSink, LoggingEventSink
from .logger import LedgerLogHandler, configure_logging
from .storage import InMemoryLedgerStore, JsonLedgerStore, LedgerStore

logger = logging.getLogger("fourcast.main")


def build_store(config: TradingConfig) -> LedgerStore:
    if config.state_path:
        return JsonLedgerStore(config.state_path)
    return InMemoryLedgerStore()


def build_orchestrator(
    config: TradingConfig,
    store: Optional[LedgerStore] = None,
    sink: Optional[EventSink] = None,
    providers: Optional[ProviderRegistry] = None,
    intelligence: Optional[MarketIntelligenceProvider] = None,
) -> CycleOrchestrator:
    """Compose the full object graph around one ledger and one event sink."""
    store = store if store is not None else build_store(config)
    sink = sink if sink is not None else FanoutEventSink([LoggingEventSink()])
    providers = providers if providers is not None else build_provider_registry(config)

    metrics = MetricsEngine(config, store)
    return CycleOrchestrator(
        config=config,
        store=store,
        intelligence=intelligence or MarketIntelligenceProvider(config, store),
        decision=DecisionEngine(config, store, providers),
        executor=TradeExecutor(config, store, metrics),
        alerts=AlertEngine(config, store, sink),
        sink=sink,
    )


def print_banner(config: TradingConfig):
    print("\n" + "=" * 60)
    print("FOURCAST STARTING")
    print("=" * 60)
    print(f"Mode: {config.get_mode_description()}")
    print(f"Agents: {', '.join(p.name for p in config.agent_profiles)}")
    print(f"Providers configured: {', '.join(config.get_configured_providers()) or 'none'}")
    print(f"Max $ per trade: ${config.max_trade_size(config.initial_capital):.2f}")
    print(f"Cycle interval: {config.tick_interval_minutes} min")
    print("=" * 60 + "\n")


async def run(config: TradingConfig):
    orchestrator = build_orchestrator(config)
    logging.getLogger("fourcast").addHandler(LedgerLogHandler(orchestrator.store))

    missing = config.validate_env()
    if missing:
        logger.warning(f"Optional credentials not set: {', '.join(missing)}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await orchestrator.start()
    await stop_event.wait()

    logger.info("Shutdown requested - waiting for in-flight cycle")
    await orchestrator.stop()
    await orchestrator.wait_idle()


def main() -> int:
    try:
        config = load_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    configure_logging(config.log_level)
    print_banner(config)
    asyncio.run(run(config))
    print("Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())

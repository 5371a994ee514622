"""
Shared fixtures for FOURCAST tests.

Provides an in-memory ledger, scripted decision providers, a canned
intelligence source and a sink that records published events.
"""
import asyncio
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

root_dir = Path(__file__).parent.parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

import pytest

from fourcast.agents.providers import ProviderRegistry
from fourcast.agents.schemas import MarketIntelligence
from fourcast.config import AgentProfile, TradingConfig
from fourcast.events import EventType
from fourcast.main import build_orchestrator
from fourcast.schemas import Agent, Market
from fourcast.storage import InMemoryLedgerStore

pytest_plugins = ('pytest_asyncio',)


class FakeProvider:
    """Decision provider returning scripted responses."""

    def __init__(
        self,
        responses: Union[str, List[str], Callable[[str], str], None] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
        name: str = "fake",
    ):
        self.name = name
        self.responses = responses
        self.error = error
        self.delay = delay
        self.prompts: List[str] = []
        self.systems: List[Optional[str]] = []
        self.called = asyncio.Event()

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        self.prompts.append(prompt)
        self.systems.append(system)
        self.called.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if callable(self.responses):
            return self.responses(prompt)
        if isinstance(self.responses, list):
            return self.responses.pop(0)
        return self.responses or '{"action": "HOLD", "reasoning": "waiting"}'


class FakeIntelligence:
    """Intelligence source serving whatever markets are already in the ledger."""

    def __init__(self, store, error: Optional[Exception] = None, source_errors: Optional[List[str]] = None):
        self.store = store
        self.error = error
        self.source_errors = source_errors or []
        self.calls = 0

    async def collect(self) -> MarketIntelligence:
        self.calls += 1
        if self.error is not None:
            raise self.error
        markets = await self.store.get_markets()
        return MarketIntelligence(markets=markets, errors=list(self.source_errors))

    def format_brief(self, intelligence: MarketIntelligence) -> str:
        return "# Market Intelligence Report\n" + "\n".join(
            f"- {m.question} | Market ID: {m.id}" for m in intelligence.markets
        )


class RecordingSink:
    def __init__(self):
        self.events: List[tuple] = []

    async def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        self.events.append((EventType(event_type), payload))

    def types(self) -> List[EventType]:
        return [event_type for event_type, _ in self.events]


def buy(market_id: str, size: Any = 50, side: str = "YES", max_price: Any = None) -> str:
    body = f'"action": "BUY", "market_id": "{market_id}", "side": "{side}", "size_usd": {size}'
    if max_price is not None:
        body += f', "max_price": {max_price}'
    return "{" + body + ', "reasoning": "edge"}'


@pytest.fixture
def profiles():
    return [
        AgentProfile(name="Alpha", model="alpha-1", provider="openai", color="#111111", strategy="Momentum"),
        AgentProfile(name="Beta", model="beta-1", provider="anthropic", color="#222222", strategy="Value"),
    ]


@pytest.fixture
def config(profiles):
    return TradingConfig(
        agent_profiles=profiles,
        decision_timeout_seconds=1.0,
    )


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def seed(store, config):
    """Async helpers that insert agents and markets."""

    class Seeder:
        async def agent(self, name: str = "Alpha", capital: str = "500", **fields) -> Agent:
            capital = Decimal(capital)
            return await store.create_agent(
                Agent(
                    name=name,
                    model=fields.pop("model", "alpha-1"),
                    provider=fields.pop("provider", "openai"),
                    strategy_description=fields.pop("strategy_description", "Momentum"),
                    initial_capital=fields.pop("initial_capital", capital),
                    current_capital=capital,
                    **fields,
                )
            )

        async def market(
            self,
            yes: str = "0.40",
            no: str = "0.60",
            liquidity: str = "5000",
            **fields,
        ) -> Market:
            return await store.create_market(
                Market(
                    external_id=fields.pop("external_id", f"0x{len(store._data['markets']):04d}"),
                    question=fields.pop("question", "Will it happen?"),
                    yes_price=Decimal(yes),
                    no_price=Decimal(no),
                    liquidity=Decimal(liquidity),
                    **fields,
                )
            )

    return Seeder()


@pytest.fixture
def make_orchestrator(config, store, sink):
    """Build a CycleOrchestrator around fakes: make_orchestrator({"Alpha": FakeProvider(...)})."""

    def _make(providers: Optional[Dict[str, FakeProvider]] = None, intelligence=None, cfg: TradingConfig = None):
        return build_orchestrator(
            cfg or config,
            store=store,
            sink=sink,
            providers=ProviderRegistry(providers or {}),
            intelligence=intelligence or FakeIntelligence(store),
        )

    return _make

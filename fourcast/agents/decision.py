"""
DecisionEngine - asks one agent's provider for a single trading action.

Purpose: Turn a provider's free-text answer into a validated CanonicalAction
Hard constraints:
- Exactly one action per invocation (BUY / SELL / HOLD)
- size_usd never exceeds the per-trade cap (clamped, not rejected)
- Provider errors, timeouts and unparsable output become a per-agent
  failure; they never raise past this boundary
"""
import asyncio
import json
import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError

from .providers import ProviderRegistry
from .schemas import AgentDecision, CanonicalAction
from ..config import TradingConfig
from ..errors import ProviderError, ProviderTimeoutError
from ..schemas import Agent, Side, TradeAction
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.agents.decision")

CENT = Decimal("0.01")

AGENT_SYSTEM_PROMPT = """You are a professional trading agent competing in prediction markets. Your goal is to maximize returns while managing risk.

RULES:
1. You can execute ONE action per decision: BUY, SELL, or HOLD
2. Maximum trade size: ${max_trade:.2f} USDC ({pct:f}% of your ${initial:.2f} starting portfolio)
3. Always provide clear reasoning for your decision
4. Consider market liquidity, sentiment, and timing
5. Be conservative with position sizing in uncertain markets

RESPONSE FORMAT (JSON only, no markdown):
{{
  "action": "BUY" | "SELL" | "HOLD",
  "market_id": "string (the Market ID from the report)",
  "side": "YES" | "NO",
  "size_usd": number (0-{max_trade:.0f}),
  "max_price": number (0-1),
  "reasoning": "string explaining your decision"
}}

If you choose HOLD, set size_usd to 0."""


class ResponseRejected(ValueError):
    """Provider output did not describe a valid action."""


def strip_code_fence(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _to_decimal(value: Any, field: str) -> Decimal:
    if isinstance(value, bool):
        raise ResponseRejected(f"{field} must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ResponseRejected(f"{field} is not a number: {value!r}")
    if not number.is_finite():
        raise ResponseRejected(f"{field} must be finite")
    return number


class DecisionEngine:
    """Builds the prompt, calls the agent's provider, parses the answer."""

    def __init__(self, config: TradingConfig, store: LedgerStore, providers: ProviderRegistry):
        self.config = config
        self.store = store
        self.providers = providers

    def system_prompt(self, agent: Agent) -> str:
        return AGENT_SYSTEM_PROMPT.format(
            max_trade=self.config.max_trade_size(agent.initial_capital),
            pct=(self.config.max_trade_fraction * 100).normalize(),
            initial=agent.initial_capital,
        )

    async def build_prompt(self, agent: Agent, brief: str) -> str:
        positions = await self.store.get_positions_by_agent(agent.id)
        return (
            "Your current portfolio:\n"
            f"- Balance: ${agent.current_capital:.2f} USDC\n"
            f"- Open positions: {len(positions)}\n"
            "\n"
            f"Your trading strategy: {agent.strategy_description}\n"
            "\n"
            f"{brief}\n"
            "\n"
            "Analyze the markets above and provide your trading decision. "
            "Choose the best opportunity that matches your strategy."
        )

    async def decide(self, agent: Agent, brief: str) -> AgentDecision:
        """
        Ask the agent's provider for one action.

        Returns:
            AgentDecision with either a CanonicalAction or an error note
        """
        provider = self.providers.get(agent.name)
        if provider is None:
            error = str(ProviderError(agent.provider, f"no provider registered for agent {agent.name}"))
            logger.error(f"Agent {agent.name} decision failed: {error}")
            return AgentDecision(agent_id=agent.id, agent_name=agent.name, error=error)

        prompt = await self.build_prompt(agent, brief)
        timeout = self.config.decision_timeout_seconds

        try:
            content = await asyncio.wait_for(
                provider.generate(prompt, system=self.system_prompt(agent)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            error = str(ProviderTimeoutError(provider.name, timeout))
            logger.error(f"Agent {agent.name} decision failed: {error}")
            return AgentDecision(agent_id=agent.id, agent_name=agent.name, error=error)
        except ProviderError as e:
            logger.error(f"Agent {agent.name} decision failed: {e}")
            return AgentDecision(agent_id=agent.id, agent_name=agent.name, error=str(e))
        except Exception as e:
            error = str(ProviderError(provider.name, f"{type(e).__name__}: {e}"))
            logger.error(f"Agent {agent.name} decision failed: {error}")
            return AgentDecision(agent_id=agent.id, agent_name=agent.name, error=error)

        try:
            action = self.parse_response(content, agent)
        except ResponseRejected as e:
            logger.warning(f"Rejected response from {agent.name}: {e} | {content[:200]!r}")
            return AgentDecision(agent_id=agent.id, agent_name=agent.name, error=f"Invalid response: {e}")

        target = action.market_id or "N/A"
        logger.info(f"Agent {agent.name} decision: {action.action.value} on market {target}")
        return AgentDecision(agent_id=agent.id, agent_name=agent.name, action=action)

    def parse_response(self, content: str, agent: Agent) -> CanonicalAction:
        """Parse provider text into a CanonicalAction or raise ResponseRejected."""
        try:
            data = json.loads(strip_code_fence(content))
        except json.JSONDecodeError as e:
            raise ResponseRejected(f"not valid JSON ({e.msg})")
        if not isinstance(data, dict):
            raise ResponseRejected("expected a JSON object")

        raw_action = str(data.get("action") or "").strip().upper()
        try:
            action = TradeAction(raw_action)
        except ValueError:
            raise ResponseRejected(f"unknown action {data.get('action')!r}")

        reasoning = str(data.get("reasoning") or "").strip()

        if action == TradeAction.HOLD:
            try:
                side = self._parse_side(data.get("side") or Side.YES.value)
            except ResponseRejected:
                side = Side.YES
            return CanonicalAction(
                action=action,
                market_id=str(data.get("market_id") or ""),
                side=side,
                reasoning=reasoning or "No action taken",
            )

        market_id = data.get("market_id")
        if not market_id:
            raise ResponseRejected("market_id is required for BUY/SELL")
        if not data.get("side"):
            raise ResponseRejected("side is required for BUY/SELL")
        if data.get("size_usd") in (None, ""):
            raise ResponseRejected("size_usd is required for BUY/SELL")

        side = self._parse_side(data["side"])
        size = _to_decimal(data["size_usd"], "size_usd")
        if size <= 0:
            raise ResponseRejected(f"size_usd must be positive, got {size}")

        cap = self.config.max_trade_size(agent.initial_capital)
        if size > cap:
            logger.info(f"Clamping {agent.name} size ${size} to cap ${cap}")
            size = cap
        size = size.quantize(CENT, rounding=ROUND_DOWN)
        if size <= 0:
            raise ResponseRejected("size_usd rounds to zero")

        max_price = Decimal("1")
        if data.get("max_price") not in (None, ""):
            max_price = _to_decimal(data["max_price"], "max_price")
        # 0 or less means no limit; prices never exceed 1.
        if max_price <= 0 or max_price > 1:
            max_price = Decimal("1")

        try:
            return CanonicalAction(
                action=action,
                market_id=str(market_id),
                side=side,
                size_usd=size,
                max_price=max_price,
                reasoning=reasoning or "No reasoning provided",
            )
        except ValidationError as e:
            raise ResponseRejected(e.errors()[0].get("msg", "invalid action"))

    @staticmethod
    def _parse_side(value: Any) -> Side:
        try:
            return Side(str(value).strip().upper())
        except ValueError:
            raise ResponseRejected(f"unknown side {value!r}")

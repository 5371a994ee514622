"""
TradeExecutor - Validate a canonical action and apply it to the ledger.

Purpose: Turn one CanonicalAction into exactly one Trade record
Validation order (first failure wins, nothing is mutated):
1. HOLD is never executed
2. Market exists and is not resolved
3. BUY size <= current capital
4. Size <= max-trade fraction of initial capital
5. Market liquidity >= minimum
6. SELL: existing position worth >= size
7. BUY: side price <= max_price

Execution is simulated against the ledger. The live path is a stub that
falls back to simulation until order signing exists.
"""
import logging
from decimal import Decimal
from typing import Optional

from .schemas import CanonicalAction, ExecutionResult
from ..analytics.performance import MetricsEngine
from ..config import TradingConfig
from ..errors import FourcastError, InvariantViolation, LedgerError
from ..schemas import Agent, Market, Position, Trade, TradeAction, TradeStatus
from ..storage import LedgerStore

logger = logging.getLogger("fourcast.agents.execution")


class TradeExecutor:
    """Sole writer of trades, positions and agent capital."""

    def __init__(self, config: TradingConfig, store: LedgerStore, metrics: MetricsEngine):
        self.config = config
        self.store = store
        self.metrics = metrics

        if not config.can_execute_live():
            logger.warning("Running in SIMULATION mode - no real orders will be sent")

    async def execute(self, agent_id: str, action: CanonicalAction) -> ExecutionResult:
        """
        Validate and apply one action.

        Returns:
            ExecutionResult; validation failures carry a failed Trade
        """
        if action.is_hold:
            return ExecutionResult(success=False, error="HOLD: nothing to execute")

        agent = await self.store.get_agent(agent_id)
        if agent is None:
            return ExecutionResult(success=False, error=f"Agent {agent_id} not found")

        market = await self.store.get_market(action.market_id)
        price = market.price_for(action.side) if market else Decimal("0")

        error = await self.validate(agent, market, action)
        if error:
            trade = await self.store.create_trade(self._trade_record(agent, action, price, Decimal("0")))
            trade = await self.store.update_trade_status(trade.id, TradeStatus.FAILED, error)
            logger.warning(f"Trade rejected for {agent.name}: {error}")
            return ExecutionResult(success=False, trade=trade, error=error)

        shares = action.size_usd / price
        trade = await self.store.create_trade(self._trade_record(agent, action, price, shares))

        try:
            async with self.store.transaction():
                if self.config.can_execute_live():
                    await self._execute_live(agent, market, action, price, shares)
                else:
                    await self._simulate(agent, market, action, price, shares)
                trade = await self.store.update_trade_status(trade.id, TradeStatus.EXECUTED)
        except (LedgerError, InvariantViolation) as e:
            await self._mark_failed(trade, str(e))
            raise
        except Exception as e:
            logger.error(f"Trade execution error for {agent.name}: {e}", exc_info=True)
            failed = await self._mark_failed(trade, f"Execution failed: {e}")
            return ExecutionResult(success=False, trade=failed or trade, error=str(e))

        logger.info(
            f"Trade executed: {agent.name} {action.action.value} {action.side.value} "
            f"${action.size_usd} @ {price} on {market.question[:50]}"
        )

        previous = await self.store.get_latest_agent_metrics(agent.id)
        metrics = await self.metrics.recompute(agent)
        return ExecutionResult(success=True, trade=trade, metrics=metrics, previous_metrics=previous)

    async def validate(self, agent: Agent, market: Optional[Market], action: CanonicalAction) -> Optional[str]:
        """First failing rule as a message, or None."""
        if market is None:
            return f"Market {action.market_id} not found"
        if market.resolved:
            return "Market is already resolved"

        price = market.price_for(action.side)
        size = action.size_usd

        if action.action == TradeAction.BUY and size > agent.current_capital:
            return f"Insufficient capital: ${size:.2f} requested, ${agent.current_capital:.2f} available"

        cap = self.config.max_trade_size(agent.initial_capital)
        if size > cap:
            pct = (self.config.max_trade_fraction * 100).normalize()
            return f"Trade size exceeds {pct:f}% limit (${size:.2f} > ${cap:.2f})"

        if market.liquidity < self.config.min_liquidity:
            return f"Market liquidity too low: ${market.liquidity:,.2f} < ${self.config.min_liquidity:,.2f}"

        if price <= 0:
            return f"No tradable {action.side.value} price for market {market.id}"

        if action.action == TradeAction.SELL:
            position = await self.store.get_position(agent.id, market.id, action.side)
            if position is None:
                return f"No open {action.side.value} position to sell"
            value = position.shares * price
            if value < size:
                return f"Insufficient position to sell: worth ${value:.2f}, requested ${size:.2f}"

        if action.action == TradeAction.BUY and price > action.max_price:
            return f"Price {price} exceeds max {action.max_price}"

        return None

    @staticmethod
    def _trade_record(agent: Agent, action: CanonicalAction, price: Decimal, shares: Decimal) -> Trade:
        return Trade(
            agent_id=agent.id,
            market_id=action.market_id,
            action=action.action,
            side=action.side,
            size_usd=action.size_usd,
            price=price,
            shares=shares,
            reasoning=action.reasoning,
        )

    async def _mark_failed(self, trade: Trade, message: str) -> Optional[Trade]:
        try:
            return await self.store.update_trade_status(trade.id, TradeStatus.FAILED, message)
        except FourcastError as e:
            logger.error(f"Could not mark trade {trade.id} failed: {e}")
            return None

    async def _simulate(self, agent: Agent, market: Market, action: CanonicalAction, price: Decimal, shares: Decimal):
        size = action.size_usd
        position = await self.store.get_position(agent.id, market.id, action.side)

        if action.action == TradeAction.BUY:
            capital = agent.current_capital - size
            if capital < 0:
                raise InvariantViolation(f"BUY would leave {agent.name} with negative capital {capital}")
            await self.store.update_agent_capital(agent.id, capital)

            if position:
                total = position.shares + shares
                entry = (position.shares * position.entry_price + size) / total
                await self.store.update_position(
                    position.id,
                    shares=total,
                    entry_price=entry,
                    current_value=total * price,
                    unrealized_pnl=(price - entry) * total,
                )
            else:
                await self.store.create_position(
                    Position(
                        agent_id=agent.id,
                        market_id=market.id,
                        side=action.side,
                        shares=shares,
                        entry_price=price,
                        current_value=size,
                    )
                )
            return

        if position is None:
            raise InvariantViolation(f"SELL reached execution without a position for {agent.name}")

        await self.store.update_agent_capital(agent.id, agent.current_capital + size)

        remaining = position.shares - shares
        if remaining < -self.config.position_epsilon:
            raise InvariantViolation(f"SELL would leave {remaining} shares on position {position.id}")
        if remaining <= self.config.position_epsilon:
            await self.store.delete_position(position.id)
        else:
            await self.store.update_position(
                position.id,
                shares=remaining,
                current_value=remaining * price,
                unrealized_pnl=(price - position.entry_price) * remaining,
            )

    async def _execute_live(self, agent: Agent, market: Market, action: CanonicalAction, price: Decimal, shares: Decimal):
        # TODO: sign and submit CLOB orders once a signing client is wired in.
        logger.warning("Live order signing not available - falling back to simulation")
        await self._simulate(agent, market, action, price, shares)

    async def revalue_open_positions(self) -> int:
        """Refresh value and unrealized PnL of every open position. Returns the count updated."""
        updated = 0
        async with self.store.transaction():
            for position in await self.store.get_positions():
                market = await self.store.get_market(position.market_id)
                if market is None:
                    continue
                price = market.price_for(position.side)
                await self.store.update_position(
                    position.id,
                    current_value=position.shares * price,
                    unrealized_pnl=(price - position.entry_price) * position.shares,
                )
                updated += 1
        logger.info(f"Revalued {updated} open positions")
        return updated

"""
Ledger store - the single source of truth for agents, markets, trades,
positions, metrics, cycles, alerts and system logs.

LedgerStore is the narrow interface every component talks to. Two
implementations ship with the package: an in-memory store and a
JSON-file store that survives restarts.
"""
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from .errors import InvariantViolation, LedgerError
from .schemas import (
    Agent,
    Alert,
    CycleStatus,
    Market,
    MarketSnapshot,
    PerformanceMetrics,
    Position,
    Side,
    SystemLog,
    TickCycle,
    Trade,
    TradeStatus,
)

logger = logging.getLogger("fourcast.storage")


class LedgerStore(ABC):
    """Repository interface consumed by the trading cycle."""

    # Agents
    @abstractmethod
    async def get_agents(self) -> List[Agent]: ...

    @abstractmethod
    async def get_agent(self, agent_id: str) -> Optional[Agent]: ...

    @abstractmethod
    async def get_agent_by_name(self, name: str) -> Optional[Agent]: ...

    @abstractmethod
    async def create_agent(self, agent: Agent) -> Agent: ...

    @abstractmethod
    async def update_agent_capital(self, agent_id: str, capital) -> Agent: ...

    @abstractmethod
    async def update_agent(self, agent_id: str, **fields: Any) -> Agent: ...

    # Markets
    @abstractmethod
    async def get_markets(self) -> List[Market]: ...

    @abstractmethod
    async def get_market(self, market_id: str) -> Optional[Market]: ...

    @abstractmethod
    async def get_market_by_external_id(self, external_id: str) -> Optional[Market]: ...

    @abstractmethod
    async def create_market(self, market: Market) -> Market: ...

    @abstractmethod
    async def update_market(self, market_id: str, **fields: Any) -> Market: ...

    @abstractmethod
    async def create_market_snapshot(self, snapshot: MarketSnapshot) -> MarketSnapshot: ...

    @abstractmethod
    async def get_market_snapshots(self, market_id: str) -> List[MarketSnapshot]: ...

    # Trades
    @abstractmethod
    async def get_trades(self, limit: int = 100) -> List[Trade]: ...

    @abstractmethod
    async def get_trades_by_agent(self, agent_id: str) -> List[Trade]: ...

    @abstractmethod
    async def create_trade(self, trade: Trade) -> Trade: ...

    @abstractmethod
    async def update_trade_status(
        self, trade_id: str, status: TradeStatus, error_message: Optional[str] = None
    ) -> Trade: ...

    # Positions
    @abstractmethod
    async def get_positions(self) -> List[Position]: ...

    @abstractmethod
    async def get_positions_by_agent(self, agent_id: str) -> List[Position]: ...

    @abstractmethod
    async def get_position(self, agent_id: str, market_id: str, side: Side) -> Optional[Position]: ...

    @abstractmethod
    async def create_position(self, position: Position) -> Position: ...

    @abstractmethod
    async def update_position(self, position_id: str, **fields: Any) -> Position: ...

    @abstractmethod
    async def delete_position(self, position_id: str) -> None: ...

    # Performance metrics
    @abstractmethod
    async def create_metrics(self, metrics: PerformanceMetrics) -> PerformanceMetrics: ...

    @abstractmethod
    async def get_metrics_by_agent(self, agent_id: str) -> List[PerformanceMetrics]: ...

    @abstractmethod
    async def get_latest_agent_metrics(self, agent_id: str) -> Optional[PerformanceMetrics]: ...

    @abstractmethod
    async def get_latest_metrics(self) -> List[PerformanceMetrics]: ...

    # Tick cycles
    @abstractmethod
    async def get_last_cycle(self) -> Optional[TickCycle]: ...

    @abstractmethod
    async def get_cycles(self, limit: int = 20) -> List[TickCycle]: ...

    @abstractmethod
    async def create_cycle(self, cycle: TickCycle) -> TickCycle: ...

    @abstractmethod
    async def update_cycle(self, cycle_id: str, **fields: Any) -> TickCycle: ...

    # Alerts
    @abstractmethod
    async def get_alerts(self, limit: int = 50) -> List[Alert]: ...

    @abstractmethod
    async def get_unread_alerts(self) -> List[Alert]: ...

    @abstractmethod
    async def get_alerts_by_agent(self, agent_id: str) -> List[Alert]: ...

    @abstractmethod
    async def create_alert(self, alert: Alert) -> Alert: ...

    @abstractmethod
    async def mark_alert_read(self, alert_id: str) -> Optional[Alert]: ...

    @abstractmethod
    async def mark_alert_dismissed(self, alert_id: str) -> Optional[Alert]: ...

    @abstractmethod
    async def mark_all_alerts_read(self) -> None: ...

    # System logs
    @abstractmethod
    async def create_log(self, log: SystemLog) -> SystemLog: ...

    @abstractmethod
    async def get_logs(self, limit: int = 50) -> List[SystemLog]: ...

    @abstractmethod
    def transaction(self):
        """Async context manager: all writes inside commit together or not at all."""


_COLLECTIONS = {
    "agents": Agent,
    "markets": Market,
    "market_snapshots": MarketSnapshot,
    "trades": Trade,
    "positions": Position,
    "metrics": PerformanceMetrics,
    "cycles": TickCycle,
    "alerts": Alert,
    "logs": SystemLog,
}

# Rows in these collections are only ever inserted.
_APPEND_ONLY = ("market_snapshots", "logs")

DEFAULT_MAX_LOGS = 1000


class InMemoryLedgerStore(LedgerStore):
    """
    Dict-backed ledger.

    Every read returns a deep copy, so no caller ever holds the
    authoritative object. Stored rows are replaced, never mutated, so a
    transaction only needs a shallow copy of each collection it writes to.
    """

    def __init__(self, max_logs: int = DEFAULT_MAX_LOGS):
        self._data: Dict[str, Dict[str, Any]] = {name: {} for name in _COLLECTIONS}
        self.max_logs = max_logs
        self._tx_backups: List[Dict[str, Dict[str, Any]]] = []
        self._dirty: Set[str] = set()
        self._appended: Dict[str, list] = {name: [] for name in _APPEND_ONLY}

    # -- plumbing ---------------------------------------------------------

    def _commit(self):
        """Hook called once committed changes are ready to persist."""

    def _flush(self):
        self._commit()
        self._dirty.clear()
        for rows in self._appended.values():
            rows.clear()

    def _touch(self, collection: str):
        for backup in self._tx_backups:
            if collection not in backup:
                backup[collection] = dict(self._data[collection])
        self._dirty.add(collection)

    def _changed(self):
        if not self._tx_backups:
            self._flush()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["InMemoryLedgerStore"]:
        backup: Dict[str, Dict[str, Any]] = {}
        self._tx_backups.append(backup)
        try:
            yield self
        except BaseException:
            self._rollback(backup)
            raise
        finally:
            self._tx_backups.remove(backup)
        if not self._tx_backups:
            self._flush()

    def _rollback(self, backup: Dict[str, Dict[str, Any]]):
        for collection, rows in backup.items():
            self._data[collection] = rows
            if collection in self._appended:
                self._appended[collection] = [r for r in self._appended[collection] if r.id in rows]
        if len(self._tx_backups) == 1:
            self._dirty.difference_update(backup)

    @staticmethod
    def _copy(item):
        return item.model_copy(deep=True) if item is not None else None

    def _all(self, collection: str) -> list:
        return [self._copy(item) for item in self._data[collection].values()]

    def _get(self, collection: str, item_id: str):
        return self._copy(self._data[collection].get(item_id))

    def _require(self, collection: str, item_id: str):
        item = self._data[collection].get(item_id)
        if item is None:
            raise LedgerError(f"{collection} record {item_id} not found")
        return item

    def _insert(self, collection: str, item):
        if item.id in self._data[collection]:
            raise LedgerError(f"{collection} record {item.id} already exists")
        self._touch(collection)
        stored = item.model_copy(deep=True)
        self._data[collection][item.id] = stored
        if collection in self._appended:
            self._appended[collection].append(stored)
        self._changed()
        return self._copy(item)

    def _patch(self, collection: str, item_id: str, fields: Dict[str, Any]):
        current = self._require(collection, item_id)
        updated = current.model_copy(update=fields, deep=True)
        self._touch(collection)
        self._data[collection][item_id] = updated
        self._changed()
        return self._copy(updated)

    # -- agents -----------------------------------------------------------

    async def get_agents(self) -> List[Agent]:
        return sorted(self._all("agents"), key=lambda a: a.name)

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self._get("agents", agent_id)

    async def get_agent_by_name(self, name: str) -> Optional[Agent]:
        return next((a for a in self._all("agents") if a.name == name), None)

    async def create_agent(self, agent: Agent) -> Agent:
        return self._insert("agents", agent)

    async def update_agent_capital(self, agent_id: str, capital) -> Agent:
        return self._patch("agents", agent_id, {"current_capital": capital})

    async def update_agent(self, agent_id: str, **fields: Any) -> Agent:
        return self._patch("agents", agent_id, fields)

    # -- markets ----------------------------------------------------------

    async def get_markets(self) -> List[Market]:
        return sorted(self._all("markets"), key=lambda m: m.volume, reverse=True)

    async def get_market(self, market_id: str) -> Optional[Market]:
        return self._get("markets", market_id)

    async def get_market_by_external_id(self, external_id: str) -> Optional[Market]:
        return next((m for m in self._all("markets") if m.external_id == external_id), None)

    async def create_market(self, market: Market) -> Market:
        return self._insert("markets", market)

    async def update_market(self, market_id: str, **fields: Any) -> Market:
        fields["last_updated"] = datetime.utcnow()
        return self._patch("markets", market_id, fields)

    async def create_market_snapshot(self, snapshot: MarketSnapshot) -> MarketSnapshot:
        return self._insert("market_snapshots", snapshot)

    async def get_market_snapshots(self, market_id: str) -> List[MarketSnapshot]:
        rows = [s for s in self._all("market_snapshots") if s.market_id == market_id]
        return sorted(rows, key=lambda s: s.timestamp, reverse=True)

    # -- trades -----------------------------------------------------------

    async def get_trades(self, limit: int = 100) -> List[Trade]:
        rows = sorted(self._all("trades"), key=lambda t: t.executed_at, reverse=True)
        return rows[:limit]

    async def get_trades_by_agent(self, agent_id: str) -> List[Trade]:
        rows = [t for t in self._all("trades") if t.agent_id == agent_id]
        return sorted(rows, key=lambda t: t.executed_at, reverse=True)

    async def create_trade(self, trade: Trade) -> Trade:
        return self._insert("trades", trade)

    async def update_trade_status(
        self, trade_id: str, status: TradeStatus, error_message: Optional[str] = None
    ) -> Trade:
        current = self._require("trades", trade_id)
        if current.status != TradeStatus.PENDING:
            raise InvariantViolation(
                f"Trade {trade_id} is already {current.status.value}; cannot move to {TradeStatus(status).value}"
            )
        return self._patch("trades", trade_id, {"status": TradeStatus(status), "error_message": error_message})

    # -- positions --------------------------------------------------------

    async def get_positions(self) -> List[Position]:
        return self._all("positions")

    async def get_positions_by_agent(self, agent_id: str) -> List[Position]:
        return [p for p in self._all("positions") if p.agent_id == agent_id]

    async def get_position(self, agent_id: str, market_id: str, side: Side) -> Optional[Position]:
        side = Side(side)
        return next(
            (
                p for p in self._all("positions")
                if p.agent_id == agent_id and p.market_id == market_id and p.side == side
            ),
            None,
        )

    async def create_position(self, position: Position) -> Position:
        if await self.get_position(position.agent_id, position.market_id, position.side):
            raise InvariantViolation(
                f"Position slot ({position.agent_id}, {position.market_id}, {position.side.value}) already open"
            )
        if position.shares < 0:
            raise InvariantViolation(f"Negative shares on new position: {position.shares}")
        return self._insert("positions", position)

    async def update_position(self, position_id: str, **fields: Any) -> Position:
        if "shares" in fields and fields["shares"] < 0:
            raise InvariantViolation(f"Negative shares on position {position_id}: {fields['shares']}")
        fields["updated_at"] = datetime.utcnow()
        return self._patch("positions", position_id, fields)

    async def delete_position(self, position_id: str) -> None:
        self._require("positions", position_id)
        self._touch("positions")
        del self._data["positions"][position_id]
        self._changed()

    # -- metrics ----------------------------------------------------------

    async def create_metrics(self, metrics: PerformanceMetrics) -> PerformanceMetrics:
        return self._insert("metrics", metrics)

    async def get_metrics_by_agent(self, agent_id: str) -> List[PerformanceMetrics]:
        rows = [m for m in self._all("metrics") if m.agent_id == agent_id]
        return sorted(rows, key=lambda m: m.timestamp, reverse=True)

    async def get_latest_agent_metrics(self, agent_id: str) -> Optional[PerformanceMetrics]:
        # Insertion order breaks timestamp ties within the same clock tick.
        rows = [m for m in self._data["metrics"].values() if m.agent_id == agent_id]
        return self._copy(rows[-1]) if rows else None

    async def get_latest_metrics(self) -> List[PerformanceMetrics]:
        latest = []
        for agent in await self.get_agents():
            metrics = await self.get_latest_agent_metrics(agent.id)
            if metrics:
                latest.append(metrics)
        return latest

    # -- cycles -----------------------------------------------------------

    async def get_last_cycle(self) -> Optional[TickCycle]:
        cycles = self._all("cycles")
        return max(cycles, key=lambda c: c.cycle_number) if cycles else None

    async def get_cycles(self, limit: int = 20) -> List[TickCycle]:
        return sorted(self._all("cycles"), key=lambda c: c.cycle_number, reverse=True)[:limit]

    async def create_cycle(self, cycle: TickCycle) -> TickCycle:
        return self._insert("cycles", cycle)

    async def update_cycle(self, cycle_id: str, **fields: Any) -> TickCycle:
        current = self._require("cycles", cycle_id)
        if current.status != CycleStatus.RUNNING:
            raise InvariantViolation(f"Cycle #{current.cycle_number} already {current.status.value}")
        return self._patch("cycles", cycle_id, fields)

    # -- alerts -----------------------------------------------------------

    async def get_alerts(self, limit: int = 50) -> List[Alert]:
        rows = [a for a in self._all("alerts") if not a.is_dismissed]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)[:limit]

    async def get_unread_alerts(self) -> List[Alert]:
        rows = [a for a in self._all("alerts") if not a.is_read and not a.is_dismissed]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)

    async def get_alerts_by_agent(self, agent_id: str) -> List[Alert]:
        rows = [a for a in self._all("alerts") if a.agent_id == agent_id and not a.is_dismissed]
        return sorted(rows, key=lambda a: a.created_at, reverse=True)

    async def create_alert(self, alert: Alert) -> Alert:
        return self._insert("alerts", alert)

    async def mark_alert_read(self, alert_id: str) -> Optional[Alert]:
        if alert_id not in self._data["alerts"]:
            return None
        return self._patch("alerts", alert_id, {"is_read": True})

    async def mark_alert_dismissed(self, alert_id: str) -> Optional[Alert]:
        if alert_id not in self._data["alerts"]:
            return None
        return self._patch("alerts", alert_id, {"is_dismissed": True})

    async def mark_all_alerts_read(self) -> None:
        self._touch("alerts")
        for alert_id, alert in list(self._data["alerts"].items()):
            if not alert.is_read:
                self._data["alerts"][alert_id] = alert.model_copy(update={"is_read": True})
        self._changed()

    # -- logs -------------------------------------------------------------

    async def create_log(self, log: SystemLog) -> SystemLog:
        stored = self._insert("logs", log)
        logs = self._data["logs"]
        while len(logs) > self.max_logs:
            del logs[next(iter(logs))]
        return stored

    async def get_logs(self, limit: int = 50) -> List[SystemLog]:
        return sorted(self._all("logs"), key=lambda l: l.timestamp, reverse=True)[:limit]


class JsonLedgerStore(InMemoryLedgerStore):
    """
    In-memory ledger persisted next to `path`.

    The mutable collections are rewritten to `path` atomically when they
    change. Market snapshots and system logs are appended to one JSONL
    journal each, so the per-cycle price history does not rewrite the file.
    """

    def __init__(self, path: str, max_logs: int = DEFAULT_MAX_LOGS):
        super().__init__(max_logs=max_logs)
        self.path = Path(path)
        self._load()

    def journal_path(self, collection: str) -> Path:
        return self.path.with_name(f"{self.path.stem}.{collection}.jsonl")

    def _load(self):
        if self.path.exists():
            try:
                with open(self.path, "r") as f:
                    raw = json.load(f)
            except (OSError, ValueError) as e:
                raise LedgerError(f"Could not read ledger file {self.path}: {e}") from e

            for name, model in _COLLECTIONS.items():
                if name in _APPEND_ONLY:
                    continue
                for row in raw.get(name, []):
                    item = model.model_validate(row)
                    self._data[name][item.id] = item
            logger.info(f"Loaded ledger from {self.path}")

        for name in _APPEND_ONLY:
            self._load_journal(name)

    def _load_journal(self, collection: str):
        journal = self.journal_path(collection)
        if not journal.exists():
            return
        model = _COLLECTIONS[collection]
        try:
            with open(journal, "r") as f:
                lines = [line for line in f if line.strip()]
            rows = [model.model_validate(json.loads(line)) for line in lines]
        except (OSError, ValueError) as e:
            raise LedgerError(f"Could not read ledger journal {journal}: {e}") from e

        if collection == "logs" and len(rows) > self.max_logs:
            rows = rows[-self.max_logs:]
            self._rewrite_journal(journal, rows)
        for item in rows:
            self._data[collection][item.id] = item

    def _commit(self):
        for name in _APPEND_ONLY:
            if self._appended[name]:
                self._append_journal(self.journal_path(name), self._appended[name])
        if self._dirty.difference(_APPEND_ONLY):
            self._write_main()

    def _write_main(self):
        payload = {
            name: [item.model_dump(mode="json") for item in items.values()]
            for name, items in self._data.items()
            if name not in _APPEND_ONLY
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2, default=str)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise LedgerError(f"Could not write ledger file {self.path}: {e}") from e

    def _append_journal(self, journal: Path, rows: list):
        try:
            journal.parent.mkdir(parents=True, exist_ok=True)
            with open(journal, "a") as f:
                for item in rows:
                    f.write(json.dumps(item.model_dump(mode="json"), default=str) + "\n")
        except OSError as e:
            raise LedgerError(f"Could not append to ledger journal {journal}: {e}") from e

    def _rewrite_journal(self, journal: Path, rows: list):
        try:
            fd, tmp_path = tempfile.mkstemp(dir=str(journal.parent), suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                for item in rows:
                    f.write(json.dumps(item.model_dump(mode="json"), default=str) + "\n")
            os.replace(tmp_path, journal)
        except OSError as e:
            raise LedgerError(f"Could not compact ledger journal {journal}: {e}") from e

"""
FastAPI service - control surface and read API for the trading competition.

Exposes scheduler commands, ledger reads, alert mutations and a /ws feed
that relays orchestrator events to dashboard clients.
"""
import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .agents.orchestrator import CycleOrchestrator
from .agents.schemas import LeaderboardEntry
from .config import TradingConfig, load_config
from .events import EventType, FanoutEventSink, LoggingEventSink
from .logger import LedgerLogHandler, configure_logging
from .main import build_orchestrator
from .schemas import (
    Agent,
    Alert,
    Market,
    MarketSnapshot,
    PerformanceMetrics,
    Position,
    SystemLog,
    TickCycle,
    Trade,
)
from .storage import LedgerStore

logger = logging.getLogger("fourcast.api")


class WebSocketBroadcaster:
    """Event sink that relays every event to connected WebSocket clients."""

    def __init__(self):
        self.clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self.clients)

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"WebSocket client connected. Total clients: {self.client_count}")
        await websocket.send_json({"type": "connected", "data": {"message": "Connected to FOURCAST real-time feed"}})

    def disconnect(self, websocket: WebSocket):
        self.clients.discard(websocket)
        logger.info(f"WebSocket client disconnected. Total clients: {self.client_count}")

    async def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        message = {"type": EventType(event_type).value, "data": payload}
        for client in list(self.clients):
            try:
                await client.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping WebSocket client: {e}")
                self.clients.discard(client)


_cfg: Optional[TradingConfig] = None
_orchestrator: Optional[CycleOrchestrator] = None
_broadcaster = WebSocketBroadcaster()
_log_handler: Optional[LedgerLogHandler] = None
_background: Set[asyncio.Task] = set()


def get_orchestrator() -> CycleOrchestrator:
    if _orchestrator is None:
        raise HTTPException(status_code=503, detail="Trading service not initialized")
    return _orchestrator


def get_store() -> LedgerStore:
    return get_orchestrator().store


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _cfg, _orchestrator, _log_handler
    _cfg = load_config()
    configure_logging(_cfg.log_level)
    logger.info("Starting FOURCAST service...")
    sink = FanoutEventSink([LoggingEventSink(), _broadcaster])
    _orchestrator = build_orchestrator(_cfg, sink=sink)

    _log_handler = LedgerLogHandler(_orchestrator.store)
    logging.getLogger("fourcast").addHandler(_log_handler)

    logger.info(f"Trading mode: {_cfg.get_mode_description()}")
    logger.info(f"Configured providers: {_cfg.get_configured_providers()}")

    if _cfg.auto_start_scheduler:
        logger.info("[Scheduler] Auto-start enabled - starting orchestrator")
        _spawn(_orchestrator.start())

    yield

    await _orchestrator.stop()
    for task in list(_background):
        task.cancel()
    await _orchestrator.wait_idle()
    logging.getLogger("fourcast").removeHandler(_log_handler)
    logger.info("FOURCAST service shutdown complete")


app = FastAPI(
    title="FOURCAST Trading Competition",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Request logging middleware."""
    start_time = datetime.utcnow()
    response = await call_next(request)
    duration = (datetime.utcnow() - start_time).total_seconds() * 1000
    logger.debug(f"{request.method} {request.url.path} - {response.status_code} ({duration:.1f}ms)")
    return response


@app.get("/health")
async def health_check():
    await get_store().get_agents()
    return {"status": "healthy", "service": "fourcast", "timestamp": datetime.utcnow().isoformat()}


@app.get("/api/dashboard")
async def get_dashboard():
    """Everything the dashboard needs on first paint."""
    store = get_store()
    agents = await store.get_agents()
    history: List[PerformanceMetrics] = []
    for agent in agents:
        history.extend(await store.get_metrics_by_agent(agent.id))
    return {
        "agents": agents,
        "metrics": history,
        "trades": await store.get_trades(50),
        "positions": await store.get_positions(),
        "markets": await store.get_markets(),
        "last_cycle": await store.get_last_cycle(),
        "logs": await store.get_logs(20),
    }


@app.get("/api/config")
async def get_trading_config():
    cfg = get_orchestrator().config
    return {
        "trading": {
            "mode": cfg.trading_mode.value,
            "initial_capital": str(cfg.initial_capital),
            "tick_interval_minutes": cfg.tick_interval_minutes,
            "market_limit": cfg.market_limit,
        },
        "risk": {
            "max_trade_fraction": str(cfg.max_trade_fraction),
            "max_trade_size": str(cfg.max_trade_size(cfg.initial_capital)),
            "max_daily_volume_fraction": str(cfg.max_daily_volume_fraction),
            "min_liquidity": str(cfg.min_liquidity),
        },
        "models": [
            {
                "name": profile.name,
                "model": profile.model,
                "provider": profile.provider,
                "color": profile.color,
                "strategy": profile.strategy,
            }
            for profile in cfg.agent_profiles
        ],
    }


# -- system / scheduler ---------------------------------------------------

@app.get("/api/system/status")
async def get_system_status():
    orchestrator = get_orchestrator()
    cfg = orchestrator.config
    return {
        "scheduler": {
            "is_running": orchestrator.is_active(),
            "current_cycle": orchestrator.current_cycle_number(),
            "cycle_in_progress": orchestrator.cycle_in_progress,
            "interval_minutes": cfg.tick_interval_minutes,
        },
        "websocket": {"connected_clients": _broadcaster.client_count},
        "last_cycle": await orchestrator.store.get_last_cycle(),
        "recent_logs": await orchestrator.store.get_logs(10),
        "environment": {
            "missing": cfg.validate_env(),
            "configured_providers": cfg.get_configured_providers(),
        },
        "mode": cfg.get_mode_description(),
        "simulation": not cfg.can_execute_live(),
    }


@app.get("/api/system/logs", response_model=List[SystemLog])
async def get_system_logs(limit: int = 50):
    return await get_store().get_logs(limit)


@app.post("/api/scheduler/start")
async def start_scheduler():
    orchestrator = get_orchestrator()
    if orchestrator.is_active():
        return {"success": True, "message": "Scheduler already running"}
    _spawn(orchestrator.start())
    return {"success": True, "message": "Scheduler starting"}


@app.post("/api/scheduler/stop")
async def stop_scheduler():
    await get_orchestrator().stop()
    return {"success": True, "message": "Scheduler stopped"}


@app.post("/api/scheduler/trigger")
async def trigger_cycle():
    orchestrator = get_orchestrator()
    if orchestrator.cycle_in_progress:
        return {"success": False, "message": "A cycle is already in progress", "in_progress": True}
    _spawn(orchestrator.trigger_cycle())
    return {"success": True, "message": "Cycle triggered", "in_progress": False}


@app.post("/api/agents/initialize", response_model=List[Agent])
async def initialize_agents():
    return await get_orchestrator().ensure_agents()


# -- agents -----------------------------------------------------------------

@app.get("/api/agents", response_model=List[Agent])
async def list_agents():
    return await get_store().get_agents()


@app.get("/api/agents/{agent_id}", response_model=Agent)
async def get_agent(agent_id: str):
    agent = await get_store().get_agent(agent_id)
    if agent is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return agent


@app.get("/api/agents/{agent_id}/metrics", response_model=List[PerformanceMetrics])
async def get_agent_metrics(agent_id: str):
    return await get_store().get_metrics_by_agent(agent_id)


@app.get("/api/agents/{agent_id}/trades", response_model=List[Trade])
async def get_agent_trades(agent_id: str):
    return await get_store().get_trades_by_agent(agent_id)


@app.get("/api/agents/{agent_id}/positions", response_model=List[Position])
async def get_agent_positions(agent_id: str):
    return await get_store().get_positions_by_agent(agent_id)


# -- markets / trades / positions / metrics ---------------------------------

@app.get("/api/markets", response_model=List[Market])
async def list_markets():
    return await get_store().get_markets()


@app.get("/api/markets/{market_id}", response_model=Market)
async def get_market(market_id: str):
    market = await get_store().get_market(market_id)
    if market is None:
        raise HTTPException(status_code=404, detail="Market not found")
    return market


@app.get("/api/markets/{market_id}/snapshots", response_model=List[MarketSnapshot])
async def get_market_snapshots(market_id: str):
    return await get_store().get_market_snapshots(market_id)


@app.get("/api/trades", response_model=List[Trade])
async def list_trades(limit: int = 100):
    return await get_store().get_trades(limit)


@app.get("/api/positions", response_model=List[Position])
async def list_positions():
    return await get_store().get_positions()


@app.get("/api/metrics", response_model=List[PerformanceMetrics])
async def latest_metrics():
    return await get_store().get_latest_metrics()


@app.get("/api/cycles", response_model=List[TickCycle])
async def list_cycles(limit: int = 20):
    return await get_store().get_cycles(limit)


@app.get("/api/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard():
    store = get_store()
    rows = []
    for agent in await store.get_agents():
        metrics = await store.get_latest_agent_metrics(agent.id)
        rows.append((agent, metrics, metrics.net_pnl if metrics else 0))
    rows.sort(key=lambda row: row[2], reverse=True)
    return [
        LeaderboardEntry(rank=i + 1, agent=agent, metrics=metrics, net_pnl=pnl)
        for i, (agent, metrics, pnl) in enumerate(rows)
    ]


# -- alerts -----------------------------------------------------------------

@app.get("/api/alerts", response_model=List[Alert])
async def list_alerts(limit: int = 50):
    return await get_store().get_alerts(limit)


@app.get("/api/alerts/unread")
async def unread_alerts():
    alerts = await get_store().get_unread_alerts()
    return {"count": len(alerts), "alerts": alerts}


@app.post("/api/alerts/read-all")
async def read_all_alerts():
    await get_store().mark_all_alerts_read()
    return {"success": True}


@app.post("/api/alerts/{alert_id}/read", response_model=Alert)
async def read_alert(alert_id: str):
    alert = await get_store().mark_alert_read(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@app.post("/api/alerts/{alert_id}/dismiss", response_model=Alert)
async def dismiss_alert(alert_id: str):
    alert = await get_store().mark_alert_dismissed(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


# -- live feed --------------------------------------------------------------

@app.websocket("/ws")
async def websocket_feed(websocket: WebSocket):
    await _broadcaster.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "data": {"message": "Invalid message format"}})
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_json({"type": "pong", "data": {"timestamp": datetime.utcnow().isoformat()}})
    except WebSocketDisconnect:
        pass
    finally:
        _broadcaster.disconnect(websocket)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("FOURCAST_PORT", "8001"))
    uvicorn.run(app, host="0.0.0.0", port=port)

"""
Event sink - fire-and-forget notifications for the presentation layer.
"""
import logging
from enum import Enum
from typing import Any, Dict, Iterable, List, Protocol, runtime_checkable

logger = logging.getLogger("fourcast.events")


class EventType(str, Enum):
    CYCLE_START = "cycle_start"
    CYCLE_COMPLETE = "cycle_complete"
    NEW_TRADE = "new_trade"
    ALERT = "alert"
    AGENT_UPDATE = "agent_update"


@runtime_checkable
class EventSink(Protocol):
    async def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None: ...


class LoggingEventSink:
    """Writes every event to the log at DEBUG level."""

    async def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        logger.debug(f"event {EventType(event_type).value}: {payload}")


class FanoutEventSink:
    """Forwards events to several sinks; one failing sink never blocks the rest."""

    def __init__(self, sinks: Iterable[EventSink] = ()):
        self.sinks: List[EventSink] = list(sinks)

    def add(self, sink: EventSink):
        self.sinks.append(sink)

    async def publish(self, event_type: EventType, payload: Dict[str, Any]) -> None:
        for sink in self.sinks:
            try:
                await sink.publish(event_type, payload)
            except Exception as e:
                logger.warning(f"Event sink {type(sink).__name__} failed on {EventType(event_type).value}: {e}")

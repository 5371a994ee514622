"""
Logging setup plus a handler that mirrors log records into the ledger.
"""
import asyncio
import logging
import sys
from typing import Optional, Set

from .schemas import SystemLog
from .storage import LedgerStore

LOG_FORMAT = '%(asctime)s [FOURCAST] %(levelname)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: str = "INFO"):
    """Configure the root handler and pin the package logger level.

    basicConfig is a no-op once a server has installed root handlers, so
    the `fourcast` logger gets its level set directly.
    """
    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
    )
    logging.getLogger("fourcast").setLevel(resolved)


class LedgerLogHandler(logging.Handler):
    """
    Persists log records as SystemLog rows.

    Records are written from the running event loop; records emitted
    outside of one are dropped. Persistence errors go to stderr.
    """

    def __init__(self, store: LedgerStore, level: int = logging.INFO):
        super().__init__(level)
        self.store = store
        self._pending: Set[asyncio.Task] = set()

    @staticmethod
    def _source(name: str) -> str:
        return name.rsplit(".", 1)[-1]

    def emit(self, record: logging.LogRecord):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        metadata: Optional[dict] = None
        if record.exc_info and record.exc_info[1] is not None:
            metadata = {"exception": repr(record.exc_info[1])}

        entry = SystemLog(
            level=record.levelname.lower(),
            source=self._source(record.name),
            message=record.getMessage(),
            metadata=metadata,
        )
        task = loop.create_task(self._persist(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, entry: SystemLog):
        try:
            await self.store.create_log(entry)
        except Exception as e:
            print(f"LedgerLogHandler: could not persist log entry: {e}", file=sys.stderr)

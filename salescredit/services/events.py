import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    async def send(self, name: str, payload: Dict[str, Any]) -> None:
        ...


class LoggingEventSink:
    async def send(self, name: str, payload: Dict[str, Any]) -> None:
        logger.info(f"Event {name}: {payload}")


class EventPublisher:
    """Fire-and-forget delivery of claim notifications.

    ``publish`` schedules the send and returns immediately; a failing sink is
    logged and never affects the claim that triggered it.
    """

    def __init__(self, sink: Optional[EventSink] = None):
        self.sink = sink or LoggingEventSink()
        self._pending: Set[asyncio.Task] = set()

    def publish(self, name: str, payload: Dict[str, Any]):
        task = asyncio.create_task(self.sink.send(name, payload))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Event delivery failed: {error}")

    async def drain(self):
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


_default_publisher: Optional[EventPublisher] = None


def get_event_publisher() -> EventPublisher:
    global _default_publisher
    if _default_publisher is None:
        _default_publisher = EventPublisher()
    return _default_publisher

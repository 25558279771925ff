"""
In-process event bus for mint lifecycle notifications
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Listener = Callable[["Event"], Awaitable[None]]


@dataclass
class Event:
    type: str
    data: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)
    source: str = "engine"


class EventTypes:
    DEPOSIT_DISCOVERED = "deposit_discovered"
    MINT_FINALIZED = "mint_finalized"
    MINT_FAILED = "mint_failed"
    RESERVATION_RECOVERED = "reservation_recovered"


_STOP = object()


class EventBus:
    """
    Decouples the mint workflow from notification sinks.

    ``emit`` only enqueues. A single worker task delivers events in order;
    listener failures are logged there and never reach the emitter, so a
    broken webhook cannot fail a mint.
    """

    def __init__(self):
        self.listeners: Dict[str, List[Listener]] = defaultdict(list)
        self.event_queue: asyncio.Queue = asyncio.Queue()
        self.running = False
        self._worker: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            return
        self.running = True
        self._worker = asyncio.create_task(self._deliver_forever())
        logger.info("EventBus started")

    async def stop(self):
        """Deliver everything already queued, then stop the worker"""
        if not self.running:
            return
        self.running = False
        await self.event_queue.put(_STOP)
        await self._worker
        self._worker = None
        logger.info("EventBus stopped")

    async def _deliver_forever(self):
        while True:
            item = await self.event_queue.get()
            if item is _STOP:
                return
            await self._deliver(item)

    async def _deliver(self, event: Event):
        listeners = list(self.listeners.get(event.type, ()))
        if not listeners:
            logger.debug(f"No listeners for {event.type}")
            return
        for listener in listeners:
            try:
                await listener(event)
            except Exception as e:
                logger.error(
                    f"Listener {getattr(listener, '__name__', listener)} failed on {event.type}: {e}",
                    exc_info=True,
                )

    def subscribe(self, event_type: str, listener: Listener):
        self.listeners[event_type].append(listener)
        logger.info(f"Subscribed {getattr(listener, '__name__', listener)} to {event_type}")

    def unsubscribe(self, event_type: str, listener: Listener):
        if listener in self.listeners[event_type]:
            self.listeners[event_type].remove(listener)

    async def emit(self, event_type: str, data: Dict[str, Any], source: str = "engine"):
        # Nothing drains the queue until start()
        if not self.running:
            logger.debug(f"EventBus not running; dropped {event_type} from {source}")
            return
        await self.event_queue.put(Event(type=event_type, data=data, source=source))
        logger.debug(f"Emitted {event_type} from {source}")


# Process-wide bus used by the running engine
event_bus = EventBus()

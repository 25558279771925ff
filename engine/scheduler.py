"""
Fixed-interval tick driver for the mint workflow.
"""

import asyncio
import time
from typing import Optional

from engine.workflow import MintWorkflow, TickReport
from log_utils import get_logger
from monitoring.health import HealthMonitor, tick_duration

logger = get_logger(__name__)


class Scheduler:
    """
    Runs one tick immediately, then one every ``interval`` seconds.

    ``stop()`` is honoured between ticks only; a tick in progress finishes
    its current deposits before ``run()`` returns.
    """

    def __init__(self, workflow: MintWorkflow, interval: float,
                 health: Optional[HealthMonitor] = None):
        self.workflow = workflow
        self.interval = interval
        self.health = health
        self.ticks = 0
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self):
        if not self._stop_event.is_set():
            logger.info("Stop requested; finishing current tick")
            self._stop_event.set()

    async def tick(self) -> Optional[TickReport]:
        self.ticks += 1
        report = None
        try:
            with tick_duration.time():
                report = await self.workflow.run_tick()
        except Exception as e:
            # Keep polling; the next tick retries from durable state
            logger.error(f"Tick failed unexpectedly: {e}", exc_info=True, extra={"tick": self.ticks})

        if self.health is not None:
            self.health.record_tick(ok=report is not None and report.ok)
        return report

    async def run(self):
        logger.info(f"Starting deposit polling ({self.interval}s interval)")
        while not self._stop_event.is_set():
            started = time.monotonic()
            await self.tick()
            remaining = max(0.0, self.interval - (time.monotonic() - started))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduler stopped")

import asyncio
import logging
import os
import random
from typing import Awaitable, Callable, Optional

from scheduled_jobs.api.v1.metrics import LOOP_RESTARTS

logger = logging.getLogger(__name__)

Tick = Callable[[], Awaitable[object]]

def terminate_process(loop: "PeriodicLoop") -> None:
    logger.critical("Loop %s exhausted %d restarts, terminating process", loop.name, loop.max_restarts)
    os._exit(1)

class PeriodicLoop:
    """
    Runs ``tick`` every ``interval`` seconds (plus up to ``max_jitter``) until stopped.

    An exception escaping a tick is logged with its traceback and the loop is
    relaunched after ``restart_delay``. A successful tick resets the crash
    counter; ``max_restarts`` consecutive crashes stop the loop and call
    ``on_exhausted`` (which by default kills the process).
    """

    def __init__(
        self,
        name: str,
        tick: Tick,
        interval: float,
        max_restarts: int = 10,
        restart_delay: float = 1.0,
        max_jitter: float = 0.0,
        on_exhausted: Optional[Callable[["PeriodicLoop"], None]] = None,
    ):
        self.name = name
        self.interval = interval
        self.max_restarts = max_restarts
        self.restart_delay = restart_delay
        self.max_jitter = max_jitter
        self.consecutive_crashes = 0
        self._tick = tick
        self._on_exhausted = on_exhausted or terminate_process
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"loop-{self.name}")
        logger.info("Loop %s started (interval=%ss).", self.name, self.interval)

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Loop %s stopped.", self.name)

    async def wait(self):
        """Blocks until the loop exits on its own (exhausted restarts)."""
        if self._task:
            await self._task

    def _next_delay(self) -> float:
        if self.max_jitter > 0:
            return self.interval + random.uniform(0, self.max_jitter)
        return self.interval

    async def _loop(self):
        while self._running:
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.consecutive_crashes += 1
                LOOP_RESTARTS.labels(loop=self.name).inc()
                logger.exception(
                    "Loop %s crashed (%d/%d consecutive)",
                    self.name, self.consecutive_crashes, self.max_restarts,
                )
                if self.consecutive_crashes > self.max_restarts:
                    self._running = False
                    self._on_exhausted(self)
                    return
                await asyncio.sleep(self.restart_delay)
                logger.info("Relaunching loop %s, current try: %d", self.name, self.consecutive_crashes)
                continue

            self.consecutive_crashes = 0
            await asyncio.sleep(self._next_delay())

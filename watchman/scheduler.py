"""Scheduler — periodic trigger for the top of the pipeline plus bus workers."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from watchman.core.config import Settings
from watchman.pipeline.bus import InProcessBus
from watchman.pipeline.stages import StartStage

logger = structlog.get_logger("watchman.scheduler")


class EngineLoop:
    """Single scheduling loop with trigger/timeout wake mechanism."""

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = asyncio.Event()

    async def loop(self) -> None:
        """Run forever, waking on trigger or timeout.  A failed cycle never ends the loop."""
        while True:
            try:
                await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
                self.trigger.clear()
            except asyncio.TimeoutError:
                pass

            try:
                processed = await self.run_fn()
                logger.info("engine.cycle", engine=self.name, processed=processed)
            except Exception:
                logger.exception("engine.error", engine=self.name)


class Scheduler:
    """Manages lifecycle of the EngineLoop tasks and the bus workers."""

    def __init__(
        self,
        loops: list[EngineLoop],
        bus: InProcessBus | None = None,
        *,
        concurrency: int = 1,
    ) -> None:
        self._loops = loops
        self._bus = bus
        self._concurrency = concurrency
        self._tasks: list[asyncio.Task[None]] = []

    async def start(self) -> None:
        """Start bus workers and all loops; the first loop fires immediately."""
        if self._bus is not None:
            self._bus.start(self._concurrency)
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        if self._loops:
            self._loops[0].trigger.set()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    async def stop(self) -> None:
        """Cancel all loops and bus workers and wait for them to exit."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        if self._bus is not None:
            await self._bus.stop()
        logger.info("scheduler.stopped")


def create_scheduler(
    settings: Settings,
    start_stage: StartStage,
    bus: InProcessBus,
) -> Scheduler:
    """Build a Scheduler that triggers a scan cycle every ``scan_interval`` seconds."""
    start_loop = EngineLoop("start", start_stage.run, settings.scan_interval)
    return Scheduler([start_loop], bus, concurrency=settings.bus_concurrency)

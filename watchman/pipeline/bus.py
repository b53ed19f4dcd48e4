"""In-process message bus with at-least-once delivery.

Stands in for an external queue/topic service: one handler per topic,
no ordering guarantee across messages, and a failed handler gets the same
payload again (with exponential backoff) until ``max_attempts`` is reached.
Handlers must therefore be idempotent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from watchman.exceptions import BusError
from watchman.interfaces import Handler, MessageBus

log = structlog.get_logger("watchman.bus")


@dataclass
class Envelope:
    topic: str
    payload: str
    attempts: int = 0


@dataclass
class DeadLetter:
    envelope: Envelope
    error: str


class InProcessBus(MessageBus):
    """asyncio.Queue-backed bus.

    Use :meth:`start` / :meth:`stop` for long-running workers, or
    :meth:`drain` to process everything currently queued (including
    anything published while draining) on the caller's task.
    """

    def __init__(self, *, max_attempts: int = 3, retry_base_delay: float = 1.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._retry_base_delay = retry_base_delay
        self._handlers: dict[str, Handler] = {}
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self.dead_letters: list[DeadLetter] = []

    # ── MessageBus ────────────────────────────────────────────────────────

    def subscribe(self, topic: str, handler: Handler) -> None:
        if topic in self._handlers:
            raise BusError(f"topic {topic!r} already has a subscriber")
        self._handlers[topic] = handler

    async def publish(self, topic: str, payload: str) -> None:
        if topic not in self._handlers:
            raise BusError(f"no subscriber for topic {topic!r}")
        self._queue.put_nowait(Envelope(topic=topic, payload=payload))
        log.debug("bus.published", topic=topic)

    # ── consumption ───────────────────────────────────────────────────────

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def drain(self) -> int:
        """Deliver queued messages until the queue is empty.  Returns deliveries made."""
        delivered = 0
        while not self._queue.empty():
            envelope = self._queue.get_nowait()
            try:
                await self._deliver(envelope)
            finally:
                self._queue.task_done()
            delivered += 1
        return delivered

    def start(self, concurrency: int = 1) -> None:
        """Spawn *concurrency* worker tasks on the running loop."""
        if self._workers:
            raise BusError("bus workers already running")
        self._workers = [
            asyncio.create_task(self._worker(), name=f"bus-worker-{i}") for i in range(concurrency)
        ]
        log.info("bus.started", workers=concurrency, topics=sorted(self._handlers))

    async def join(self) -> None:
        """Wait until every queued message (and its redeliveries) is finished."""
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        log.info("bus.stopped", pending=self._queue.qsize())

    # ── internal ──────────────────────────────────────────────────────────

    async def _worker(self) -> None:
        while True:
            envelope = await self._queue.get()
            try:
                await self._deliver(envelope)
            finally:
                self._queue.task_done()

    async def _deliver(self, envelope: Envelope) -> None:
        handler = self._handlers[envelope.topic]
        envelope.attempts += 1
        try:
            await handler(envelope.payload)
        except Exception as exc:
            if envelope.attempts >= self._max_attempts:
                log.error(
                    "bus.dead_letter",
                    topic=envelope.topic,
                    attempts=envelope.attempts,
                    error=f"{type(exc).__name__}: {exc}",
                )
                self.dead_letters.append(
                    DeadLetter(envelope=envelope, error=f"{type(exc).__name__}: {exc}")
                )
                return

            delay = self._retry_base_delay * (2 ** (envelope.attempts - 1))
            log.warning(
                "bus.redeliver",
                topic=envelope.topic,
                attempt=envelope.attempts,
                max_attempts=self._max_attempts,
                delay=delay,
                error=f"{type(exc).__name__}: {exc}",
            )
            if delay > 0:
                await asyncio.sleep(delay)
            self._queue.put_nowait(envelope)

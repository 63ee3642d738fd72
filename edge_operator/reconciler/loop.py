"""
Controller Loop: drives the Reconcile Engine from change events.

Work-queue semantics:
  - keys are "namespace/name"; duplicate enqueues collapse
  - a key is never reconciled twice at the same time; an event arriving
    while it runs marks it dirty and it runs once more afterwards
  - up to `workers` distinct keys reconcile concurrently
  - after each reconcile the key is scheduled again after the returned delay;
    a newer event or schedule replaces the pending timer
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set

from edge_operator.models.reconciler import ReconcileResult, ReconcilerConfig
from edge_operator.reconciler.engine import ReconcileEngine

logger = logging.getLogger(__name__)


class ControllerLoop:
    """Per-key serialized work queue with delayed requeue."""

    def __init__(
        self,
        engine: ReconcileEngine,
        config: Optional[ReconcilerConfig] = None,
    ):
        self.engine = engine
        self.config = config or engine.config

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._pending: List[str] = []
        self._queued: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._dirty: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._running = False
        self.last_results: Dict[str, ReconcileResult] = {}

    @property
    def status(self) -> str:
        """Current loop status."""
        return "running" if self._running else "stopped"

    @property
    def scheduled_keys(self) -> List[str]:
        """Keys with a pending requeue timer."""
        return sorted(self._timers)

    def enqueue(self, key: str) -> None:
        """Request a reconcile for `key`. Safe to call from any thread."""
        if self._loop is None:
            self._pending.append(key)
            return
        self._loop.call_soon_threadsafe(self._add, key)

    def on_event(self, event_type: str, key: str) -> None:
        """Watcher callback."""
        logger.debug("Event %s for %s", event_type, key)
        self.enqueue(key)

    def _add(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        if key in self._in_flight:
            self._dirty.add(key)
            return
        if key in self._queued:
            return
        self._queued.add(key)
        self._queue.put_nowait(key)

    def _schedule(self, key: str, delay: float) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._timers[key] = self._loop.call_later(delay, self._fire, key)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        self._add(key)

    def _forget(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self.last_results.pop(key, None)

    async def _worker(self) -> None:
        while True:
            key = await self._queue.get()
            self._queued.discard(key)
            self._in_flight.add(key)
            try:
                try:
                    result = await self._loop.run_in_executor(
                        None, self.engine.reconcile_key, key
                    )
                except Exception:
                    # Reading the intent failed; retry like a failed apply
                    logger.exception("Reconcile of %s raised", key)
                    self._in_flight.discard(key)
                    self._schedule(key, self.config.retry_interval_seconds)
                else:
                    self._in_flight.discard(key)
                    if result is None:
                        self._forget(key)
                    else:
                        self.last_results[key] = result
                        delay = result.requeue.requeue_after_seconds
                        if delay is not None:
                            self._schedule(key, delay)

                if key in self._dirty:
                    self._dirty.discard(key)
                    self._add(key)
            finally:
                self._in_flight.discard(key)
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued and in-flight key has been reconciled."""
        await self._queue.join()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run workers until `stop_event` is set or `stop()` is called."""
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._stop_event = stop_event or asyncio.Event()

        pending, self._pending = self._pending, []
        for key in pending:
            self._add(key)

        workers = [
            asyncio.create_task(self._worker()) for _ in range(self.config.workers)
        ]
        self._running = True
        logger.info("Controller loop started with %d workers", len(workers))
        try:
            await self._stop_event.wait()
        finally:
            self._running = False
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            logger.info("Controller loop stopped")

    def stop(self) -> None:
        """Ask a running loop to stop. Safe to call from any thread."""
        if self._loop is not None and self._stop_event is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)

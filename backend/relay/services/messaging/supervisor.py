# backend/relay/services/messaging/supervisor.py
"""
Watcher Supervisor: owns the single change-feed subscription shared by all
SSE connections.

    N SSE clients -> 1 hub -> 1 watcher subscription -> 1 LISTEN connection

The subscription starts when the first stream opens and, with idle shutdown
enabled, stops when the last one closes. A failed subscription is retried
with exponential backoff; after too many consecutive failures every open
connection is closed so clients reconnect instead of silently missing
messages.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
import functools
import logging
import random
from typing import Optional

from relay.core.exceptions import StoreUnavailableException, WatcherException

from .hub import BroadcastHub
from .registry import ConnectionRegistry
from .watcher import ChangeWatcher

logger = logging.getLogger(__name__)


def compute_backoff(failures: int, initial: float, maximum: float) -> float:
    """Exponential delay for the given consecutive failure count (>= 1)."""
    return min(maximum, initial * (2 ** max(0, failures - 1)))


class WatcherSupervisor:
    def __init__(
        self,
        watcher: ChangeWatcher,
        hub: BroadcastHub,
        registry: ConnectionRegistry,
        *,
        ready_timeout: float = 5.0,
        backoff_initial: float = 0.5,
        backoff_max: float = 30.0,
        max_retries: int = 5,
        idle_shutdown: bool = True,
        stop_timeout: float = 5.0,
    ) -> None:
        self._watcher = watcher
        self._hub = hub
        self._registry = registry
        self._ready_timeout = ready_timeout
        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._max_retries = max_retries
        self._idle_shutdown = idle_shutdown
        self._stop_timeout = stop_timeout

        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task[None]] = None
        self._retired: Optional[asyncio.Task[None]] = None
        self._ready = asyncio.Event()
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    async def ensure_running(self) -> None:
        """
        Start the shared subscription if needed and wait until it is live.

        Raises:
            StoreUnavailableException: If the feed is not live within the ready timeout
        """
        async with self._lock:
            if not self.is_running:
                if self._retired is not None:
                    # Let the previous subscription finish closing its feed first
                    await asyncio.wait({self._retired}, timeout=self._stop_timeout)
                    self._retired = None
                self._ready = asyncio.Event()
                self._failures = 0
                self._task = asyncio.create_task(self._run(self._ready), name="relay-change-watcher")
                self._task.add_done_callback(self._log_task_exit)
                logger.info("[WATCHER] Shared subscription starting")
            ready = self._ready

        try:
            await asyncio.wait_for(ready.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("[WATCHER] Change feed not ready within %.1fs", self._ready_timeout)
            self.release()
            raise StoreUnavailableException(
                "Change feed is not available", details={"channel": self._watcher.channel}
            ) from exc

    def release(self) -> None:
        """Stop the subscription if idle shutdown is on and no connection remains."""
        if not self._idle_shutdown or len(self._registry) > 0 or self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            self._retired = task
            logger.info("[WATCHER] No open streams, stopping shared subscription")

    def release_later(self) -> None:
        """
        Release after the ready timeout unless a stream registers first.

        Covers a stream request whose response body never starts, which
        would otherwise leave the subscription running with no consumers.
        """
        asyncio.get_running_loop().call_later(self._ready_timeout, self.release)

    async def stop(self) -> None:
        """Cancel the subscription and wait (bounded) for its feed to close."""
        tasks = {t for t in (self._task, self._retired) if t is not None and not t.done()}
        self._task = None
        self._retired = None
        for task in tasks:
            task.cancel()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._stop_timeout)
            if pending:
                logger.warning("[WATCHER] Subscription did not stop within %.1fs", self._stop_timeout)

    async def _run(self, ready: asyncio.Event) -> None:
        while True:
            try:
                on_ready = functools.partial(self._on_subscribed, ready)
                async with aclosing(self._watcher.subscribe(on_ready=on_ready)) as events:
                    async for event in events:
                        self._hub.dispatch(event)
            except WatcherException as exc:
                # Streams opened during backoff must wait for the next subscription
                ready.clear()
                self._failures += 1
                delay = compute_backoff(self._failures, self._backoff_initial, self._backoff_max)
                delay += random.uniform(0, delay * 0.1)
                logger.warning(
                    f"[WATCHER] Subscription failed ({exc.message}), retrying in {delay:.2f}s",
                    extra={"failures": self._failures},
                )
                if self._failures >= self._max_retries:
                    closed = self._hub.close_all(reason="change feed unavailable")
                    logger.error(
                        "[WATCHER] Change feed still failing after %d attempts, closed %d streams",
                        self._failures,
                        closed,
                    )
                await asyncio.sleep(delay)

    def _on_subscribed(self, ready: asyncio.Event) -> None:
        if self._failures:
            logger.info(f"[WATCHER] Resubscribed after {self._failures} failed attempts")
        self._failures = 0
        ready.set()

    def _log_task_exit(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            logger.info("[WATCHER] Shared subscription stopped")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[WATCHER] Subscription task crashed: {exc}", exc_info=exc)

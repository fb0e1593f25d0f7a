from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional

from driftgate.core.models import MIN_POLL_INTERVAL_MS, SchemaArtifact
from driftgate.runtime.contracts import (
    PollerEvent,
    PollerState,
    TickOutcome,
    TickResult,
    transition_poller_state,
)

logger = logging.getLogger(__name__)

FetchCallable = Callable[[], Awaitable[SchemaArtifact]]
DriftCallback = Callable[[], Any]


class DriftPoller:
    """Interval poller that reports the first textual change of a remote artifact, then disarms.

    One asyncio task runs ticks back to back, and ticks from ``poll_once()`` queue
    behind the same lock, so a tick never overlaps the next one. ``stop()``
    wakes a sleeping loop but never cancels a fetch already in flight; that
    fetch's result is discarded.
    """

    def __init__(
        self,
        fetch: FetchCallable,
        interval_ms: int,
        on_drift: DriftCallback,
        source: str = "<remote>",
        min_interval_ms: int = MIN_POLL_INTERVAL_MS,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval_ms}ms.")
        if interval_ms < min_interval_ms:
            raise ValueError(f"Poll interval {interval_ms}ms is below the {min_interval_ms}ms minimum.")

        self.fetch = fetch
        self.interval_ms = interval_ms
        self.on_drift = on_drift
        self.source = source

        self.state: PollerState = PollerState.STOPPED
        self.last_seen: Optional[SchemaArtifact] = None
        self.drift_fired = False

        self._started = False
        self._cycle = 0
        self._wake: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self._tick_lock = asyncio.Lock()

    @property
    def active(self) -> bool:
        return self.state == PollerState.POLLING

    def start(self) -> None:
        """Start the poll loop on the running event loop."""
        if self.state == PollerState.POLLING:
            return
        if self.drift_fired:
            raise RuntimeError("DriftPoller already reported drift. Create a new poller instead of restarting it.")

        self.state = transition_poller_state(self.state, PollerEvent.START)
        self._started = True
        self._cycle += 1
        self._wake = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._poll_loop(self._cycle, self._wake),
            name=f"drift-poller:{self.source}",
        )
        logger.debug("Polling %s every %sms.", self.source, self.interval_ms)

    def stop(self) -> None:
        """Stop polling; idempotent and safe to call from inside ``on_drift``."""
        if self.state == PollerState.STOPPED:
            return

        self.state = transition_poller_state(self.state, PollerEvent.STOP)
        self._cycle += 1
        if self._wake is not None:
            self._wake.set()
        logger.debug("Stopped polling %s.", self.source)

    async def wait_stopped(self) -> None:
        """Wait for the poll loop to finish; returns at once when called from the loop itself."""
        task = self._task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.wait({task})

    async def poll_once(self) -> TickResult:
        """Execute one tick immediately and return what it observed."""
        if not self._started:
            raise RuntimeError("DriftPoller is not started. Call start() before poll_once().")
        return await self._tick(self._cycle)

    async def _tick(self, cycle: int) -> TickResult:
        async with self._tick_lock:
            return await self._run_tick(cycle)

    async def _run_tick(self, cycle: int) -> TickResult:
        if not self._is_current(cycle):
            return TickResult(outcome=TickOutcome.INACTIVE)

        try:
            artifact = await self.fetch()
        except Exception as exc:
            logger.error("Schema fetch from %s failed: %s", self.source, exc)
            return TickResult(outcome=TickOutcome.FETCH_FAILED, error=str(exc))

        if not self._is_current(cycle):
            logger.debug("Discarding schema fetched from %s; poller is %s.", self.source, self.state.value)
            return TickResult(outcome=TickOutcome.DISCARDED, artifact=artifact)

        if self.last_seen is None:
            self.last_seen = artifact
            logger.info("Schema is fresh. Baseline established from %s.", self.source)
            return TickResult(outcome=TickOutcome.BASELINE, artifact=artifact)

        if artifact.matches(self.last_seen):
            logger.info("Schema is fresh.")
            return TickResult(outcome=TickOutcome.FRESH, artifact=artifact)

        logger.info("Schema is stale, reloading. Drift detected at %s.", self.source)
        self.state = transition_poller_state(self.state, PollerEvent.DRIFT_DETECTED)
        self.drift_fired = True
        if self._wake is not None:
            self._wake.set()

        result = self.on_drift()
        if inspect.isawaitable(result):
            await result

        return TickResult(outcome=TickOutcome.DRIFT, artifact=artifact)

    async def _poll_loop(self, cycle: int, wake: asyncio.Event) -> None:
        interval_seconds = self.interval_ms / 1000.0
        while self._is_current(cycle):
            try:
                await asyncio.wait_for(wake.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                break

            try:
                await self._tick(cycle)
            except Exception:
                logger.exception("Drift callback for %s raised.", self.source)

    def _is_current(self, cycle: int) -> bool:
        return self.state == PollerState.POLLING and cycle == self._cycle


def start_polling(
    fetch: FetchCallable,
    interval_ms: int,
    on_drift: DriftCallback,
    source: str = "<remote>",
    min_interval_ms: int = MIN_POLL_INTERVAL_MS,
) -> DriftPoller:
    """Create and start a poller; the returned poller is the handle passed to ``stop``."""
    poller = DriftPoller(
        fetch=fetch,
        interval_ms=interval_ms,
        on_drift=on_drift,
        source=source,
        min_interval_ms=min_interval_ms,
    )
    poller.start()
    return poller

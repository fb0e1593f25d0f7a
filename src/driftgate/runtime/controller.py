from __future__ import annotations

import asyncio
import logging
import signal
from typing import Callable, List, Optional, Set

from driftgate.core.context import DriftgateContext
from driftgate.core.models import MIN_POLL_INTERVAL_MS
from driftgate.runtime.contracts import (
    ArtifactFetcher,
    ConnectionFactory,
    GenerationLifecycleEvent,
    GenerationState,
    RestartMode,
    SchemaBuilder,
    ServingInstance,
)
from driftgate.runtime.drift_poller import DriftPoller
from driftgate.runtime.generation import ServingGeneration
from driftgate.utils.diagnostics import (
    LifecycleDiagnostic,
    SchemaBuildError,
    diagnostic_from_exception,
)

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)

LifecycleCallback = Callable[[GenerationLifecycleEvent], None]


class DriftgateRuntimeController:
    """Owns the serving generations and sequences boot, drift-triggered restart and shutdown.

    Only this controller mutates generation state. At most one generation is
    live at any instant: a successor becomes live and its predecessor starts
    draining in the same synchronous step.
    """

    def __init__(
        self,
        context: DriftgateContext,
        fetcher: Optional[ArtifactFetcher] = None,
        schema_builder: Optional[SchemaBuilder] = None,
        serving: Optional[ServingInstance] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        on_generation_live: Optional[LifecycleCallback] = None,
        on_restart_failure: Optional[LifecycleCallback] = None,
        min_poll_interval_ms: int = MIN_POLL_INTERVAL_MS,
        diagnostic_limit: int = 200,
        generation_history_limit: int = 20,
    ) -> None:
        self.context = context
        self.fetcher = fetcher
        self.schema_builder = schema_builder
        self.serving = serving
        self.connection_factory = connection_factory
        self._install_default_collaborators()

        self.on_generation_live = on_generation_live
        self.on_restart_failure = on_restart_failure
        self.min_poll_interval_ms = min_poll_interval_ms
        self.diagnostic_limit = diagnostic_limit
        self.generation_history_limit = generation_history_limit

        self.generations: List[ServingGeneration] = []
        self.live_generation: Optional[ServingGeneration] = None
        self.poller: Optional[DriftPoller] = None
        self.diagnostics: List[LifecycleDiagnostic] = []

        self._generation_sequence = 0
        self._start_lock = asyncio.Lock()
        self._restart_task: Optional[asyncio.Task] = None
        self._drain_tasks: Set[asyncio.Task] = set()
        self._stop_task: Optional[asyncio.Task] = None
        self._stopping = False
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._installed_signals: List[signal.Signals] = []

    @property
    def restart_in_progress(self) -> bool:
        return self._restart_task is not None and not self._restart_task.done()

    @property
    def source(self) -> str:
        return self.fetcher.descriptor

    def live_generations(self) -> List[ServingGeneration]:
        return [generation for generation in self.generations if generation.is_live]

    async def start(self) -> ServingGeneration:
        """Boot the first generation and start its poller; returns the live generation."""
        async with self._start_lock:
            if self.live_generation is not None:
                return self.live_generation
            if self._stopping:
                raise RuntimeError("Controller is stopped. Create a new controller to serve again.")

            logger.info("Starting server.")
            generation = await self._boot_generation()
            self._promote(generation, previous=None, mode=None)
            return generation

    def request_restart(self, mode: RestartMode = RestartMode.SOFT) -> bool:
        """Schedule a restart; returns False when the request was coalesced or refused."""
        if mode == RestartMode.HARD:
            if not self._running:
                logger.warning("Ignoring hard restart request; the controller is not running.")
                return False
            self.request_shutdown()
            return True

        if self._stopping:
            logger.info("Ignoring restart request; shutdown in progress.")
            return False

        if self.restart_in_progress:
            logger.info("Restart already in progress; request coalesced.")
            return False

        if self.live_generation is None:
            logger.warning("Ignoring restart request; no live generation.")
            return False

        self._restart_task = asyncio.get_running_loop().create_task(
            self._soft_restart(),
            name="driftgate-restart",
        )
        return True

    async def restart(self, mode: RestartMode = RestartMode.SOFT) -> Optional[ServingGeneration]:
        """Request a restart and wait for the in-flight one to finish; returns the live generation."""
        if mode == RestartMode.HARD:
            await self.stop()
            return None

        self.request_restart(mode)
        task = self._restart_task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self.live_generation

    def request_shutdown(self) -> None:
        """Ask ``run()`` to drain and exit; safe to call from a signal handler."""
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()
        if not self._shutdown_event.is_set():
            logger.info("Shutting down server.")
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Drain everything to closed without exiting the process. Idempotent."""
        if self._stop_task is None:
            self._stop_task = asyncio.get_running_loop().create_task(self._stop(), name="driftgate-stop")
        await asyncio.shield(self._stop_task)

    async def run(self, install_signal_handlers: bool = True) -> int:
        """Serve until interrupt or terminate arrives, then drain fully. Returns the exit code."""
        if self._shutdown_event is None:
            self._shutdown_event = asyncio.Event()

        if install_signal_handlers:
            self.install_signal_handlers()

        self._running = True
        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            self._running = False
            await self.stop()
            self.remove_signal_handlers()

        return 0

    def install_signal_handlers(self) -> None:
        """Subscribe to interrupt and terminate once; both map to the shutdown path."""
        if self._installed_signals:
            return

        loop = asyncio.get_running_loop()
        for sig in TERMINATION_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(self.request_shutdown))
            self._installed_signals.append(sig)

    def remove_signal_handlers(self) -> None:
        if not self._installed_signals:
            return

        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)
        self._installed_signals = []

    async def _boot_generation(self) -> ServingGeneration:
        self._generation_sequence += 1
        generation = ServingGeneration(self._generation_sequence, source=self.source)
        self.generations.append(generation)
        logger.info("Booting generation %s from %s.", generation.generation_id, self.source)

        step = "fetch"
        try:
            generation.artifact = await self.fetcher.fetch()
            generation.record("fetched")

            step = "build_schema"
            generation.schema = self.schema_builder.build(generation.artifact)
            generation.record("schema_built")

            step = "open_connection"
            generation.connection = await self.connection_factory.open(self.context.database)
            generation.record("connection_opened")

            step = "bind_listener"
            generation.listener = await self.serving.start(
                generation.schema,
                generation.connection,
                self.context.server.port,
                generation_id=generation.generation_id,
            )
            generation.record("listener_bound")
        except BaseException as exc:
            if isinstance(exc, SchemaBuildError) and exc.artifact is None:
                exc.artifact = generation.artifact
            if isinstance(exc, Exception):
                self._record(diagnostic_from_exception(
                    exc,
                    step=step,
                    source=self.source,
                    generation_id=generation.generation_id,
                ))
                logger.error("Generation %s failed to boot at '%s': %s", generation.generation_id, step, exc)
            else:
                logger.info("Boot of generation %s interrupted at '%s'.", generation.generation_id, step)
            await generation.abort_boot(self.serving, self.connection_factory)
            self._collect(generation)
            raise

        return generation

    def _promote(
        self,
        generation: ServingGeneration,
        previous: Optional[ServingGeneration],
        mode: Optional[RestartMode],
    ) -> None:
        # Single synchronous step: no await between the two transitions.
        generation.mark_live()
        if previous is not None and previous.is_live:
            previous.mark_draining()
        self.live_generation = generation

        server = self.context.server
        logger.info(
            "Server ready at http://%s:%s%s (generation %s).",
            server.host,
            server.port,
            server.graphql_path,
            generation.generation_id,
        )

        self._start_poller()

        if previous is not None:
            self._schedule_drain(previous)

        if self.on_generation_live is not None:
            self.on_generation_live(
                GenerationLifecycleEvent(
                    generation_id=generation.generation_id,
                    state=generation.state,
                    mode=mode,
                )
            )

    async def _soft_restart(self) -> Optional[ServingGeneration]:
        previous = self.live_generation
        if previous is None:
            return None

        logger.info("Restarting server; generation %s keeps serving while its successor boots.", previous.generation_id)
        try:
            generation = await self._boot_generation()
        except Exception as exc:
            self._handle_restart_failure(previous, exc)
            return None

        self._promote(generation, previous=previous, mode=RestartMode.SOFT)
        return generation

    def _handle_restart_failure(self, previous: ServingGeneration, exc: Exception) -> None:
        logger.error(
            "Restart failed; generation %s keeps serving. Cause: %s",
            previous.generation_id,
            exc,
        )

        if self.on_restart_failure is not None:
            self.on_restart_failure(
                GenerationLifecycleEvent(
                    generation_id=self._generation_sequence,
                    state=GenerationState.CLOSED,
                    mode=RestartMode.SOFT,
                    error=exc,
                )
            )

        if self._stopping or not previous.is_live:
            return

        self._start_poller()

    def _start_poller(self) -> None:
        if self.poller is not None:
            self.poller.stop()
            self.poller = None

        if self._stopping or not self.context.poller.enabled:
            return

        self.poller = DriftPoller(
            fetch=self.fetcher.fetch,
            interval_ms=self.context.poller.interval_ms,
            on_drift=self._handle_drift,
            source=self.source,
            min_interval_ms=self.min_poll_interval_ms,
        )
        self.poller.start()

    def _handle_drift(self) -> None:
        if self.poller is not None:
            self.poller.stop()
        self.request_restart(RestartMode.SOFT)

    def _schedule_drain(self, generation: ServingGeneration) -> None:
        task = asyncio.get_running_loop().create_task(
            self._drain(generation),
            name=f"driftgate-drain-{generation.generation_id}",
        )
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)

    async def _drain(self, generation: ServingGeneration) -> None:
        await generation.drain(self.serving, self.connection_factory)
        self._collect(generation)
        self._prune_generations()

    async def _stop(self) -> None:
        self._stopping = True
        await self._stop_poller()

        # A boot already running under start() completes first and is drained below.
        async with self._start_lock:
            if self.restart_in_progress:
                self._restart_task.cancel()
                await asyncio.wait({self._restart_task})

            # A restart may have been promoted while the old poller finished its tick.
            await self._stop_poller()

            generation = self.live_generation
            self.live_generation = None
            if generation is not None:
                await self._drain(generation)

            if self._drain_tasks:
                await asyncio.wait(set(self._drain_tasks))

        logger.info("Server stopped.")

    async def _stop_poller(self) -> None:
        poller = self.poller
        if poller is None:
            return
        poller.stop()
        await poller.wait_stopped()

    def _record(self, diagnostic: LifecycleDiagnostic) -> None:
        self.diagnostics.append(diagnostic)
        if len(self.diagnostics) > self.diagnostic_limit:
            self.diagnostics = self.diagnostics[-self.diagnostic_limit :]

    def _collect(self, generation: ServingGeneration) -> None:
        for diagnostic in generation.diagnostics:
            self._record(diagnostic)
        generation.diagnostics = []

    def _prune_generations(self) -> None:
        closed = [g for g in self.generations if g.state == GenerationState.CLOSED]
        overflow = len(closed) - self.generation_history_limit
        if overflow <= 0:
            return
        dropped = {id(g) for g in closed[:overflow]}
        self.generations = [g for g in self.generations if id(g) not in dropped]

    def _install_default_collaborators(self) -> None:
        if self.fetcher is None:
            from driftgate.infrastructure.github import GitHubSchemaFetcher

            self.fetcher = GitHubSchemaFetcher(self.context.source)
        if self.schema_builder is None:
            from driftgate.schema.builder import GraphQLSchemaBuilder

            self.schema_builder = GraphQLSchemaBuilder()
        if self.serving is None:
            from driftgate.serving.server import UvicornServingInstance

            self.serving = UvicornServingInstance(
                self.context.server,
                production=self.context.settings.production,
                log_level=self.context.settings.log_level,
            )
        if self.connection_factory is None:
            from driftgate.infrastructure.database import SqlAlchemyConnectionFactory

            self.connection_factory = SqlAlchemyConnectionFactory()

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional

from driftgate.core.models import SchemaArtifact
from driftgate.runtime.contracts import (
    ConnectionFactory,
    GenerationEvent,
    GenerationState,
    ServingInstance,
    transition_generation_state,
)
from driftgate.utils.diagnostics import LifecycleDiagnostic, diagnostic_from_exception

logger = logging.getLogger(__name__)


class ServingGeneration:
    """One serving stack (schema, connection, listener) from boot to close.

    The generation exclusively owns its connection. ``events`` journals each
    acquisition and release in the order it happened.
    """

    def __init__(self, generation_id: int, source: str = "<remote>") -> None:
        self.generation_id = generation_id
        self.source = source
        self.state: GenerationState = GenerationState.BOOTING

        self.artifact: Optional[SchemaArtifact] = None
        self.schema: Any = None
        self.connection: Any = None
        self.listener: Any = None

        self.events: List[str] = []
        self.diagnostics: List[LifecycleDiagnostic] = []
        self._drain_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"ServingGeneration(id={self.generation_id}, state={self.state.value})"

    @property
    def is_live(self) -> bool:
        return self.state == GenerationState.LIVE

    def record(self, event: str) -> None:
        self.events.append(event)

    def mark_live(self) -> None:
        self.state = transition_generation_state(self.state, GenerationEvent.BOOT_SUCCEEDED)
        self.record("live")

    def mark_draining(self) -> None:
        self.state = transition_generation_state(self.state, GenerationEvent.DRAIN_REQUESTED)
        self.record("draining")

    async def abort_boot(self, serving: ServingInstance, connection_factory: ConnectionFactory) -> None:
        """Release whatever a failed boot acquired, in reverse order, and close the generation."""
        await self._release(serving, connection_factory)
        self.state = transition_generation_state(self.state, GenerationEvent.BOOT_FAILED)
        self.record("closed")

    async def drain(self, serving: ServingInstance, connection_factory: ConnectionFactory) -> None:
        """Stop the listener, then close the connection, then mark the generation closed.

        Release failures are logged and recorded; they never keep the
        generation from reaching closed. Draining twice is a no-op.
        """
        async with self._drain_lock:
            if self.state == GenerationState.CLOSED:
                return
            if self.state == GenerationState.LIVE:
                self.mark_draining()

            logger.info("Draining generation %s.", self.generation_id)
            await self._release(serving, connection_factory)
            self.state = transition_generation_state(self.state, GenerationEvent.DRAIN_COMPLETED)
            self.record("closed")
            logger.info("Generation %s closed.", self.generation_id)

    async def _release(self, serving: ServingInstance, connection_factory: ConnectionFactory) -> None:
        if self.listener is not None:
            listener, self.listener = self.listener, None
            try:
                await serving.stop(listener)
            except Exception as exc:
                self._record_failure(exc, "stop_listener")
            self.record("listener_stopped")

        if self.connection is not None:
            connection, self.connection = self.connection, None
            try:
                await connection_factory.close(connection)
            except Exception as exc:
                self._record_failure(exc, "close_connection")
            self.record("connection_closed")

    def _record_failure(self, exc: Exception, step: str) -> None:
        diagnostic = diagnostic_from_exception(
            exc,
            step=step,
            source=self.source,
            generation_id=self.generation_id,
            severity="warning",
        )
        self.diagnostics.append(diagnostic)
        logger.error("Generation %s failed to %s: %s", self.generation_id, step.replace("_", " "), exc)

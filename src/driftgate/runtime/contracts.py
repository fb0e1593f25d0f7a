from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Protocol, runtime_checkable

from driftgate.core.models import SchemaArtifact


class GenerationState(str, Enum):
    """Lifecycle states of one serving generation."""

    BOOTING = "booting"
    LIVE = "live"
    DRAINING = "draining"
    CLOSED = "closed"


class GenerationEvent(str, Enum):
    """Events that drive generation state transitions."""

    BOOT_SUCCEEDED = "boot_succeeded"
    BOOT_FAILED = "boot_failed"
    DRAIN_REQUESTED = "drain_requested"
    DRAIN_COMPLETED = "drain_completed"


BOOT_STEP_ORDER: List[str] = ["fetch", "build_schema", "open_connection", "bind_listener"]
DRAIN_STEP_ORDER: List[str] = ["stop_listener", "close_connection"]


class PollerState(str, Enum):
    """States of a drift poller instance."""

    STOPPED = "stopped"
    POLLING = "polling"
    DISARMED = "disarmed"


class PollerEvent(str, Enum):
    """Events that drive poller state transitions."""

    START = "start"
    DRIFT_DETECTED = "drift_detected"
    STOP = "stop"


class TickOutcome(str, Enum):
    """What one poller tick observed."""

    BASELINE = "baseline"
    FRESH = "fresh"
    DRIFT = "drift"
    FETCH_FAILED = "fetch_failed"
    DISCARDED = "discarded"
    INACTIVE = "inactive"


class RestartMode(str, Enum):
    """Restart discipline requested from the orchestrator."""

    SOFT = "soft"
    HARD = "hard"


@dataclass(frozen=True)
class TickResult:
    """Result from one poller tick."""

    outcome: TickOutcome
    artifact: Optional[SchemaArtifact] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class GenerationLifecycleEvent:
    """Host-facing generation lifecycle event payload."""

    generation_id: int
    state: GenerationState
    mode: Optional[RestartMode] = None
    error: Optional[Exception] = None


@runtime_checkable
class ArtifactFetcher(Protocol):
    """Retrieves the remote schema artifact; raises FetchError on failure."""

    @property
    def descriptor(self) -> str: ...

    async def fetch(self) -> SchemaArtifact: ...


@runtime_checkable
class SchemaBuilder(Protocol):
    """Builds an executable schema; raises SchemaBuildError on malformed input."""

    def build(self, artifact: SchemaArtifact) -> Any: ...


@runtime_checkable
class ServingInstance(Protocol):
    """Binds and unbinds the serving listener for one generation."""

    async def start(self, schema: Any, connection: Any, port: int, generation_id: int = 0) -> Any: ...

    async def stop(self, handle: Any) -> None: ...


@runtime_checkable
class ConnectionFactory(Protocol):
    """Opens and closes backing store connections; close must be idempotent."""

    async def open(self, credentials: Any) -> Any: ...

    async def close(self, connection: Any) -> None: ...


def transition_generation_state(current: GenerationState, event: GenerationEvent) -> GenerationState:
    """Compute the next generation state for a given event.

    Transitions:
    - booting -> live on boot success, booting -> closed on boot failure
    - live -> draining on drain request
    - draining -> closed on drain completion

    Invalid transitions raise ValueError.
    """

    if current == GenerationState.BOOTING:
        if event == GenerationEvent.BOOT_SUCCEEDED:
            return GenerationState.LIVE
        if event == GenerationEvent.BOOT_FAILED:
            return GenerationState.CLOSED
        raise ValueError(f"Invalid generation transition: {current} -> {event}")

    if current == GenerationState.LIVE:
        if event == GenerationEvent.DRAIN_REQUESTED:
            return GenerationState.DRAINING
        raise ValueError(f"Invalid generation transition: {current} -> {event}")

    if current == GenerationState.DRAINING:
        if event == GenerationEvent.DRAIN_COMPLETED:
            return GenerationState.CLOSED
        raise ValueError(f"Invalid generation transition: {current} -> {event}")

    if current == GenerationState.CLOSED:
        raise ValueError(f"Invalid generation transition: {current} -> {event}")

    raise ValueError(f"Unknown generation state: {current}")


def transition_poller_state(current: PollerState, event: PollerEvent) -> PollerState:
    """Compute the next poller state for a given event.

    Stop is accepted from every state. A disarmed poller never polls again.
    """

    if event == PollerEvent.STOP:
        return PollerState.STOPPED

    if current == PollerState.STOPPED:
        if event == PollerEvent.START:
            return PollerState.POLLING
        raise ValueError(f"Invalid poller transition: {current} -> {event}")

    if current == PollerState.POLLING:
        if event == PollerEvent.DRIFT_DETECTED:
            return PollerState.DISARMED
        raise ValueError(f"Invalid poller transition: {current} -> {event}")

    if current == PollerState.DISARMED:
        raise ValueError(f"Invalid poller transition: {current} -> {event}")

    raise ValueError(f"Unknown poller state: {current}")

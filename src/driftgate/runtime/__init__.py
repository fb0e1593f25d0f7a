"""Runtime orchestration contracts and components."""

from driftgate.runtime.contracts import (
	GenerationLifecycleEvent,
	GenerationState,
	PollerState,
	RestartMode,
	TickOutcome,
	TickResult,
)
from driftgate.runtime.controller import DriftgateRuntimeController
from driftgate.runtime.drift_poller import DriftPoller, start_polling
from driftgate.runtime.generation import ServingGeneration

__all__ = [
	"DriftgateRuntimeController",
	"DriftPoller",
	"GenerationLifecycleEvent",
	"GenerationState",
	"PollerState",
	"RestartMode",
	"ServingGeneration",
	"TickOutcome",
	"TickResult",
	"start_polling",
]

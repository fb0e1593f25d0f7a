from __future__ import annotations

from driftgate.core.context import DriftgateContext
from driftgate.core.models import SchemaArtifact
from driftgate.runtime import DriftgateRuntimeController, DriftPoller, RestartMode, start_polling
from driftgate.utils.diagnostics import (
	BackendConnectionError,
	ConfigurationError,
	DriftgateError,
	FetchError,
	ListenerError,
	SchemaBuildError,
)

__version__ = "0.1.0"

__all__ = [
	"BackendConnectionError",
	"ConfigurationError",
	"DriftgateContext",
	"DriftgateError",
	"DriftgateRuntimeController",
	"DriftPoller",
	"FetchError",
	"ListenerError",
	"RestartMode",
	"SchemaArtifact",
	"SchemaBuildError",
	"start_polling",
]

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from driftgate.core.models import SchemaArtifact


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleDiagnostic(BaseModel):
    """
    Standardized failure record for fetch, boot, drain and restart issues.
    """
    step: str
    error_code: str
    message: str
    severity: str = "error"  # 'error', 'warning', 'critical'
    source: Optional[str] = None
    generation_id: Optional[int] = None
    recorded_at: datetime = Field(default_factory=_utcnow)

    def __str__(self) -> str:
        loc = self.step
        if self.generation_id is not None:
            loc += f" (generation {self.generation_id})"
        if self.source:
            loc += f" from {self.source}"
        return f"[{self.error_code}] {self.message} (at {loc})"


class DriftgateError(Exception):
    """
    Base error carrying the failing lifecycle step and the remote source descriptor.
    """
    error_code = "ERR_DRIFTGATE"

    def __init__(self, message: str, step: Optional[str] = None, source: Optional[str] = None):
        self.message = message
        self.step = step
        self.source = source
        ctx = f" during '{step}'" if step else ""
        super().__init__(f"{type(self).__name__}{ctx}: {message}")

    def to_diagnostic(self, generation_id: Optional[int] = None, severity: str = "error") -> LifecycleDiagnostic:
        return LifecycleDiagnostic(
            step=self.step or "unknown",
            error_code=self.error_code,
            message=self.message,
            severity=severity,
            source=self.source,
            generation_id=generation_id,
        )


class FetchError(DriftgateError):
    """Remote artifact could not be retrieved (network, auth, not found)."""
    error_code = "ERR_FETCH"


class SchemaBuildError(DriftgateError):
    """Remote artifact is not a buildable schema."""
    error_code = "ERR_SCHEMA_BUILD"

    def __init__(
        self,
        message: str,
        step: Optional[str] = "build_schema",
        source: Optional[str] = None,
        artifact: Optional["SchemaArtifact"] = None,
    ):
        self.artifact = artifact
        super().__init__(message, step=step, source=source)


class BackendConnectionError(DriftgateError):
    """Backing store connection could not be opened or closed."""
    error_code = "ERR_CONNECTION"


class ListenerError(DriftgateError):
    """Serving listener could not be bound or stopped."""
    error_code = "ERR_LISTENER"


class ConfigurationError(DriftgateError):
    """Process configuration is missing or invalid."""
    error_code = "ERR_CONFIG"

    def __init__(self, message: str, step: Optional[str] = "configuration", source: Optional[str] = None):
        super().__init__(message, step=step, source=source)


def diagnostic_from_exception(
    exc: BaseException,
    step: str,
    source: Optional[str] = None,
    generation_id: Optional[int] = None,
    severity: str = "error",
) -> LifecycleDiagnostic:
    """Build a diagnostic for any exception, preferring the context a DriftgateError carries."""
    if isinstance(exc, DriftgateError):
        diagnostic = exc.to_diagnostic(generation_id=generation_id, severity=severity)
        if diagnostic.source is None and source is not None:
            diagnostic = diagnostic.model_copy(update={"source": source})
        return diagnostic

    return LifecycleDiagnostic(
        step=step,
        error_code="ERR_UNEXPECTED",
        message=f"{type(exc).__name__}: {exc}",
        severity=severity,
        source=source,
        generation_id=generation_id,
    )

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from driftgate.config.loader import load_config
from driftgate.core.models import (
    DatabaseSettings,
    FrameworkSettings,
    PollerSettings,
    ServerSettings,
    SourceSettings,
)
from driftgate.utils.diagnostics import ConfigurationError


class DriftgateContext(BaseModel):
    """
    Validated process configuration shared by the orchestrator and its collaborators.
    """
    model_config = ConfigDict(extra="forbid")

    # Framework Settings (Maps to 'driftgate' section)
    settings: FrameworkSettings = Field(default_factory=FrameworkSettings)

    # Remote schema location (Maps to 'source' section)
    source: SourceSettings

    # Drift poller (Maps to 'poller' section)
    poller: PollerSettings = Field(default_factory=PollerSettings)

    # Listener (Maps to 'server' section)
    server: ServerSettings = Field(default_factory=ServerSettings)

    # Backing store (Maps to 'database' section)
    database: DatabaseSettings

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None, **data: Any):
        """
        Initialize the context, optionally seeding sections from a configuration dictionary.
        """
        if config_dict:
            if 'settings' not in data:
                data['settings'] = FrameworkSettings(**config_dict.get('driftgate', {}))
            for section in ('source', 'poller', 'server', 'database'):
                if section not in data and section in config_dict:
                    data[section] = config_dict[section]

        super().__init__(**data)

    @classmethod
    def from_config_dict(cls, config_dict: Dict[str, Any], origin: Optional[str] = None) -> "DriftgateContext":
        """Validate a config mapping; any missing or invalid entry raises ConfigurationError."""
        try:
            return cls(config_dict=config_dict)
        except ValidationError as exc:
            raise ConfigurationError(describe_validation_error(exc), source=origin) from exc

    @classmethod
    def load(cls, path: Path, environ: Optional[Mapping[str, str]] = None) -> "DriftgateContext":
        """Read, overlay and validate configuration in one step."""
        return cls.from_config_dict(load_config(path, environ), origin=str(path))

    def masked_dump(self) -> Dict[str, Any]:
        """JSON-ready view of the effective configuration with secrets masked."""
        return self.model_dump(mode="json")


def describe_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        problems.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "Invalid configuration: " + "; ".join(problems)

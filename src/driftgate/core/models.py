from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_POLL_INTERVAL_MS = 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FrameworkSettings(BaseSettings):
    """
    Framework-level settings (the 'driftgate' section in driftgate.yaml).
    """
    model_config = SettingsConfigDict(env_prefix='DRIFTGATE_', extra='ignore')

    env: str = "development"
    app_name: str = "Driftgate"
    log_level: str = "INFO"
    production: bool = False

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level '{value}'.")
        return normalized


class SourceSettings(BaseModel):
    """
    Remote schema location (the 'source' section in driftgate.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    path: str = Field(min_length=1)
    ref: Optional[str] = None
    access_token: Optional[SecretStr] = None
    api_url: str = "https://api.github.com"
    timeout_s: float = Field(default=10.0, gt=0)

    @property
    def descriptor(self) -> str:
        """Human readable source descriptor used in logs and errors."""
        suffix = f"@{self.ref}" if self.ref else ""
        return f"{self.owner}/{self.repo}:{self.path}{suffix}"


class PollerSettings(BaseModel):
    """
    Drift polling settings (the 'poller' section in driftgate.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    enabled: bool = True
    interval_ms: int = Field(default=300000, ge=MIN_POLL_INTERVAL_MS)


class ServerSettings(BaseModel):
    """
    Listener settings (the 'server' section in driftgate.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    host: str = "0.0.0.0"
    port: int = Field(default=4000, ge=1, le=65535)
    graphql_path: str = "/graphql"
    drain_timeout_s: float = Field(default=10.0, ge=0)

    @field_validator("graphql_path")
    @classmethod
    def _leading_slash(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("graphql_path must start with '/'.")
        return value


class DatabaseSettings(BaseModel):
    """
    Backing store settings (the 'database' section in driftgate.yaml).
    """
    model_config = ConfigDict(extra='ignore')

    url: str = Field(min_length=1)
    username: Optional[str] = None
    password: Optional[SecretStr] = None
    connect_args: Dict[str, Any] = Field(default_factory=dict)


class SchemaArtifact(BaseModel):
    """
    Remote schema definition text at a point in time.

    Only ``content`` takes part in drift detection.
    """
    model_config = ConfigDict(frozen=True)

    content: str
    retrieved_at: datetime = Field(default_factory=utcnow)
    source: str = "<unknown>"

    def matches(self, other: "SchemaArtifact") -> bool:
        return self.content == other.content

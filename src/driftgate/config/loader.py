import os
import re
import yaml
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from driftgate.utils.diagnostics import ConfigurationError

ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]+))?\}")

ALLOWED_SECTIONS = {"driftgate", "source", "poller", "server", "database"}

# Flat process settings mapped onto config sections.
ENV_KEY_MAP: Dict[str, Tuple[str, str]] = {
    "GITHUB_REPO_OWNER": ("source", "owner"),
    "GITHUB_REPO_NAME": ("source", "repo"),
    "GITHUB_TARGET_FILE_PATH": ("source", "path"),
    "GITHUB_ACCESS_TOKEN": ("source", "access_token"),
    "GITHUB_REF": ("source", "ref"),
    "DATABASE_URL": ("database", "url"),
    "DATABASE_USER": ("database", "username"),
    "DATABASE_PASSWORD": ("database", "password"),
    "HOST": ("server", "host"),
    "PORT": ("server", "port"),
    "PRODUCTION": ("driftgate", "production"),
    "POLL_INTERVAL_MS": ("poller", "interval_ms"),
}


def interpolate_env_vars(content: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Replace ${VAR} or ${VAR:default} with environment variables."""
    env = os.environ if environ is None else environ

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2) if match.group(2) is not None else ""
        return env.get(var_name, default_value)

    return ENV_VAR_PATTERN.sub(replace_match, content)


def read_config_file(path: Path, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Load driftgate.yaml with environment variable interpolation.

    A missing file is an empty config; an unreadable or malformed one is fatal.
    Unknown top-level sections are dropped.
    """
    if not path.exists():
        return {}

    try:
        content = path.read_text()
        interpolated_content = interpolate_env_vars(content, environ)
        full_config = yaml.safe_load(interpolated_content) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to read config file: {exc}", source=str(path)) from exc

    if not isinstance(full_config, dict):
        raise ConfigurationError("Config file must contain a mapping at the top level.", source=str(path))

    filtered_config = {k: v for k, v in full_config.items() if k in ALLOWED_SECTIONS}

    for section, value in filtered_config.items():
        if value is None:
            filtered_config[section] = {}
        elif not isinstance(value, dict):
            raise ConfigurationError(f"Section '{section}' must be a mapping.", source=str(path))

    return filtered_config


def overlay_environment(config: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return a copy of ``config`` with non-empty flat environment settings applied on top."""
    env = os.environ if environ is None else environ
    merged: Dict[str, Any] = {section: dict(values) for section, values in config.items()}

    for env_key, (section, field_name) in ENV_KEY_MAP.items():
        value = env.get(env_key)
        if value is None or value == "":
            continue
        merged.setdefault(section, {})[field_name] = value

    return merged


def load_config(path: Path, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load the config file and apply the flat environment overlay."""
    return overlay_environment(read_config_file(path, environ), environ)

import pytest

from driftgate.config.loader import (
    interpolate_env_vars,
    load_config,
    overlay_environment,
    read_config_file,
)
from driftgate.utils.diagnostics import ConfigurationError


def test_load_config_no_file(tmp_path):
    # A missing file is an empty config
    config = load_config(tmp_path / "nonexistent.yaml", environ={})
    assert config == {}


def test_load_config_basic(tmp_path):
    config_file = tmp_path / "driftgate.yaml"
    content = """
driftgate:
  env: production
source:
  owner: acme
  repo: schemas
  path: schema.graphql
poller:
  interval_ms: 60000
server:
  port: 4100
database:
  url: "neo4j://localhost:7687"
"""
    config_file.write_text(content)

    config = load_config(config_file, environ={})
    assert config["driftgate"]["env"] == "production"
    assert config["source"]["owner"] == "acme"
    assert config["poller"]["interval_ms"] == 60000
    assert config["server"]["port"] == 4100
    assert config["database"]["url"] == "neo4j://localhost:7687"


def test_load_config_interpolation(tmp_path, monkeypatch):
    monkeypatch.setenv("SCHEMA_OWNER", "acme")
    monkeypatch.setenv("DB_URL", "postgresql://localhost/app")

    config_file = tmp_path / "driftgate.yaml"
    content = """
source:
  owner: "${SCHEMA_OWNER}"
  ref: "${SCHEMA_REF:main}"
  access_token: "${MISSING_TOKEN}"
database:
  url: "${DB_URL}"
"""
    config_file.write_text(content)

    config = load_config(config_file)
    assert config["source"]["owner"] == "acme"
    assert config["source"]["ref"] == "main"
    assert config["source"]["access_token"] == ""
    assert config["database"]["url"] == "postgresql://localhost/app"


def test_interpolation_uses_explicit_environ():
    text = "token: ${TOKEN:none} / ${OTHER}"

    assert interpolate_env_vars(text, {"TOKEN": "abc", "OTHER": "x"}) == "token: abc / x"
    assert interpolate_env_vars(text, {}) == "token: none / "


def test_load_config_filters_unknown_sections(tmp_path):
    config_file = tmp_path / "driftgate.yaml"
    content = """
source:
  owner: acme
mcp:
  embedded: true
random_section:
  foo: bar
"""
    config_file.write_text(content)

    config = load_config(config_file, environ={})
    assert "source" in config
    assert "mcp" not in config
    assert "random_section" not in config


def test_empty_section_becomes_mapping(tmp_path):
    config_file = tmp_path / "driftgate.yaml"
    config_file.write_text("poller:\nserver:\n  port: 4001\n")

    config = read_config_file(config_file, environ={})
    assert config == {"poller": {}, "server": {"port": 4001}}


def test_empty_file_is_empty_config(tmp_path):
    config_file = tmp_path / "driftgate.yaml"
    config_file.write_text("")

    assert load_config(config_file, environ={}) == {}


@pytest.mark.parametrize(
    "content,message",
    [
        ("source: [unterminated", "Unable to read config file"),
        ("- just\n- a list\n", "mapping at the top level"),
        ("source: acme\n", "Section 'source' must be a mapping"),
    ],
)
def test_malformed_config_raises_configuration_error(tmp_path, content, message):
    config_file = tmp_path / "driftgate.yaml"
    config_file.write_text(content)

    with pytest.raises(ConfigurationError, match=message) as exc_info:
        load_config(config_file, environ={})

    assert exc_info.value.source == str(config_file)
    assert exc_info.value.error_code == "ERR_CONFIG"


def test_flat_environment_overrides_file(tmp_path):
    config_file = tmp_path / "driftgate.yaml"
    config_file.write_text("source:\n  owner: from-file\n  repo: schemas\nserver:\n  port: 4000\n")

    environ = {
        "GITHUB_REPO_OWNER": "from-env",
        "GITHUB_TARGET_FILE_PATH": "graphql/schema.graphql",
        "GITHUB_ACCESS_TOKEN": "ghp_token",
        "PORT": "4321",
        "PRODUCTION": "true",
        "POLL_INTERVAL_MS": "120000",
        "DATABASE_URL": "neo4j://graph:7687",
        "DATABASE_USER": "neo4j",
        "DATABASE_PASSWORD": "pw",
    }

    config = load_config(config_file, environ=environ)
    assert config["source"] == {
        "owner": "from-env",
        "repo": "schemas",
        "path": "graphql/schema.graphql",
        "access_token": "ghp_token",
    }
    assert config["server"]["port"] == "4321"
    assert config["driftgate"]["production"] == "true"
    assert config["poller"]["interval_ms"] == "120000"
    assert config["database"] == {"url": "neo4j://graph:7687", "username": "neo4j", "password": "pw"}


def test_empty_environment_values_do_not_override():
    config = overlay_environment({"server": {"host": "127.0.0.1"}}, environ={"HOST": "", "GITHUB_REF": ""})

    assert config == {"server": {"host": "127.0.0.1"}}


def test_overlay_does_not_mutate_input():
    original = {"server": {"port": 4000}}

    overlay_environment(original, environ={"PORT": "5000"})

    assert original == {"server": {"port": 4000}}

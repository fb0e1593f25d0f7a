import asyncio
import sys
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Ensure src/ is in the python path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from driftgate.config.loader import ENV_KEY_MAP  # noqa: E402
from driftgate.core.context import DriftgateContext  # noqa: E402
from driftgate.core.models import SchemaArtifact  # noqa: E402
from driftgate.runtime.controller import DriftgateRuntimeController  # noqa: E402
from driftgate.utils.diagnostics import (  # noqa: E402
    BackendConnectionError,
    FetchError,
    ListenerError,
    SchemaBuildError,
)

SCHEMA_A = "type Query { hello: String }"
SCHEMA_B = "type Query { hello: String\n  world: String }"
SCHEMA_C = "type Query { hello: String\n  world: String\n  again: Int }"


@pytest.fixture(autouse=True)
def _isolate_flat_env(monkeypatch):
    """Keep host environment variables from leaking into config overlays."""
    for key in ENV_KEY_MAP:
        monkeypatch.delenv(key, raising=False)
    for key in ("DRIFTGATE_ENV", "DRIFTGATE_LOG_LEVEL", "DRIFTGATE_PRODUCTION", "DRIFTGATE_APP_NAME"):
        monkeypatch.delenv(key, raising=False)


class Journal:
    """Ordered record of collaborator side effects with an optional hook run after each entry."""

    def __init__(self) -> None:
        self.entries: List[str] = []
        self.on_entry: Optional[Callable[[], None]] = None

    def add(self, entry: str) -> None:
        self.entries.append(entry)
        if self.on_entry is not None:
            self.on_entry()


class ScriptedFetcher:
    """Returns scripted schema contents; the last item repeats. Exceptions in the script are raised."""

    descriptor = "acme/schemas:schema.graphql"

    def __init__(self, *items) -> None:
        self.items = list(items) or [SCHEMA_A]
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None

    def script(self, *items) -> None:
        self.items = list(items)

    async def fetch(self) -> SchemaArtifact:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return SchemaArtifact(content=item, source=self.descriptor)


class FakeSchemaBuilder:
    def build(self, artifact: SchemaArtifact):
        if "invalid" in artifact.content:
            raise SchemaBuildError("Syntax Error: unexpected token", source=artifact.source, artifact=artifact)
        return ("schema", artifact.content)


class FakeConnection:
    def __init__(self, number: int) -> None:
        self.number = number
        self.name = f"conn-{number}"


class FakeConnectionFactory:
    def __init__(self, journal: Journal) -> None:
        self.journal = journal
        self.opened: List[FakeConnection] = []
        self.closed: List[FakeConnection] = []
        self.fail_open = False
        self.fail_close = False

    async def open(self, credentials) -> FakeConnection:
        await asyncio.sleep(0)
        if self.fail_open:
            raise BackendConnectionError("Database is unreachable", step="open_connection")
        connection = FakeConnection(len(self.opened) + 1)
        self.opened.append(connection)
        self.journal.add(f"open:{connection.name}")
        return connection

    async def close(self, connection: FakeConnection) -> None:
        if connection in self.closed:
            return
        self.closed.append(connection)
        await asyncio.sleep(0)
        self.journal.add(f"close:{connection.name}")
        if self.fail_close:
            raise BackendConnectionError("close failed", step="close_connection")


class FakeListener:
    def __init__(self, generation_id: int, connection: FakeConnection) -> None:
        self.generation_id = generation_id
        self.connection = connection
        self.stopped = False


class FakeServing:
    def __init__(self, journal: Journal) -> None:
        self.journal = journal
        self.gate: Optional[asyncio.Event] = None
        self.fail_start = False
        self.fail_stop = False
        self.stop_calls = 0

    async def start(self, schema, connection, port, generation_id=0) -> FakeListener:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_start:
            raise ListenerError(f"Unable to bind 0.0.0.0:{port}", step="bind_listener")
        self.journal.add(f"listen:gen-{generation_id}:{connection.name}")
        return FakeListener(generation_id, connection)

    async def stop(self, handle: FakeListener) -> None:
        self.stop_calls += 1
        if handle.stopped:
            return
        handle.stopped = True
        await asyncio.sleep(0)
        self.journal.add(f"unlisten:gen-{handle.generation_id}")
        if self.fail_stop:
            raise ListenerError("listener refused to stop", step="stop_listener")


def make_context(**poller) -> DriftgateContext:
    return DriftgateContext.from_config_dict(
        {
            "source": {"owner": "acme", "repo": "schemas", "path": "schema.graphql"},
            "database": {"url": "sqlite://"},
            "poller": {"interval_ms": 60000, **poller},
            "server": {"port": 4100},
        }
    )


class Harness:
    def __init__(self) -> None:
        self.journal = Journal()
        self.fetcher = ScriptedFetcher(SCHEMA_A)
        self.builder = FakeSchemaBuilder()
        self.connections = FakeConnectionFactory(self.journal)
        self.serving = FakeServing(self.journal)
        self.live_events = []
        self.failure_events = []

    def controller(self, **poller) -> DriftgateRuntimeController:
        return DriftgateRuntimeController(
            make_context(**poller),
            fetcher=self.fetcher,
            schema_builder=self.builder,
            serving=self.serving,
            connection_factory=self.connections,
            on_generation_live=self.live_events.append,
            on_restart_failure=self.failure_events.append,
        )

    def fast_controller(self, interval_ms: int = 10) -> DriftgateRuntimeController:
        controller = self.controller()
        controller.context.poller.interval_ms = interval_ms
        controller.min_poll_interval_ms = 0
        return controller


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def context() -> DriftgateContext:
    return make_context()


@pytest.fixture
def fetch_error() -> FetchError:
    return FetchError("GitHub responded with HTTP 502", step="fetch", source=ScriptedFetcher.descriptor)

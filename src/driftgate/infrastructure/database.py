import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from driftgate.core.models import DatabaseSettings
from driftgate.utils.diagnostics import BackendConnectionError

logger = logging.getLogger(__name__)


def _resolve_database_url(settings: DatabaseSettings, base_dir: Optional[Path]) -> str:
    """Apply credentials and resolve relative SQLite database URLs against a base directory."""
    try:
        parsed = make_url(settings.url)
    except ArgumentError as exc:
        raise BackendConnectionError(f"Invalid database URL: {exc}", step="open_connection") from exc

    if settings.username is not None:
        parsed = parsed.set(username=settings.username)
    if settings.password is not None:
        parsed = parsed.set(password=settings.password.get_secret_value())

    if base_dir is not None and parsed.drivername.startswith("sqlite"):
        database = parsed.database
        if database and database != ":memory:" and not database.startswith("file:"):
            db_path = Path(database)
            if not db_path.is_absolute():
                parsed = parsed.set(database=str((base_dir / db_path).resolve()))

    return parsed.render_as_string(hide_password=False)


class SqlAlchemyConnectionFactory:
    """
    Opens one SQLAlchemy engine per serving generation.

    Engines are created and verified in a worker thread. ``close`` disposes an
    engine once; closing it again is a no-op.
    """

    def __init__(self, base_dir: Optional[Path] = None, verify_query: str = "SELECT 1"):
        self.base_dir = base_dir
        self.verify_query = verify_query
        self._open: Dict[int, Engine] = {}

    async def open(self, credentials: DatabaseSettings) -> Engine:
        engine = await asyncio.to_thread(self._open_sync, credentials)
        self._open[id(engine)] = engine
        return engine

    async def close(self, connection: Engine) -> None:
        if self._open.pop(id(connection), None) is None:
            return
        try:
            await asyncio.to_thread(connection.dispose)
        except SQLAlchemyError as exc:
            raise BackendConnectionError(f"Failed to dispose engine: {exc}", step="close_connection") from exc

    def _open_sync(self, settings: DatabaseSettings) -> Engine:
        url = _resolve_database_url(settings, self.base_dir)
        try:
            engine = create_engine(url, **settings.connect_args)
        except (ArgumentError, TypeError, ImportError) as exc:
            raise BackendConnectionError(f"Unable to create engine: {exc}", step="open_connection") from exc

        try:
            with engine.connect() as connection:
                connection.execute(text(self.verify_query))
        except SQLAlchemyError as exc:
            engine.dispose()
            raise BackendConnectionError(f"Database is unreachable: {exc}", step="open_connection") from exc

        logger.debug("Opened database engine %s.", engine.url.render_as_string(hide_password=True))
        return engine

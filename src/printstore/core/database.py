"""
printstore/core/database.py

Supplies SQLAlchemy engines from global configuration.

A ``Database`` is the connection provider handed to the storage layer: it
knows a URL and builds one engine lazily. ``DatabaseConfiguration`` holds the
process-wide ``Database`` the default storage facade connects through.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url

from printstore.core.settings import PrintstoreSettings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ignores ON DELETE CASCADE unless enforcement is switched on per connection.
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


class Database:
    """
    Lazily-built SQLAlchemy engine for one database URL.

    Parameters
    ----------
    url : str
        SQLAlchemy database URL, e.g. ``sqlite:///fingerprints.db`` or
        ``postgresql+psycopg2://user@host/db``.
    echo : bool
        Log every statement through SQLAlchemy's logger.
    pool_pre_ping : bool
        Test pooled connections before handing them out.
    connect_timeout : Optional[int]
        Seconds the driver waits when connecting, passed to drivers that
        support it.
    """

    def __init__(
        self,
        url: str,
        *,
        echo: bool = False,
        pool_pre_ping: bool = True,
        connect_timeout: Optional[int] = None,
    ):
        self.url = url
        self.echo = echo
        self.pool_pre_ping = pool_pre_ping
        self.connect_timeout = connect_timeout
        self._engine: Optional[Engine] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: PrintstoreSettings) -> "Database":
        return cls(
            settings.db_url,
            echo=settings.db_echo,
            pool_pre_ping=settings.db_pool_pre_ping,
            connect_timeout=settings.db_connect_timeout,
        )

    @property
    def backend_name(self) -> str:
        return make_url(self.url).get_backend_name()

    def _connect_args(self) -> Dict[str, Any]:
        backend = self.backend_name
        args: Dict[str, Any] = {}
        if backend == "sqlite":
            # The cached connection is used from whichever thread holds the storage lock.
            args["check_same_thread"] = False
            if self.connect_timeout is not None:
                args["timeout"] = self.connect_timeout
        elif backend == "postgresql" and self.connect_timeout is not None:
            args["connect_timeout"] = self.connect_timeout
        return args

    def get_data_source(self) -> Engine:
        """Return the engine for this database, creating it on first use."""
        with self._lock:
            if self._engine is None:
                engine = create_engine(
                    self.url,
                    echo=self.echo,
                    pool_pre_ping=self.pool_pre_ping,
                    connect_args=self._connect_args(),
                )
                if engine.dialect.name == "sqlite":
                    event.listen(engine, "connect", _enable_sqlite_foreign_keys)
                logger.debug("[db] created engine for %s", engine.url)
                self._engine = engine
            return self._engine

    def dispose(self) -> None:
        with self._lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    def __repr__(self) -> str:
        safe_url = make_url(self.url).render_as_string(hide_password=True)
        return f"<Database url='{safe_url}'>"


class DatabaseConfiguration:
    """Process-wide holder of the ``Database`` used by default."""

    _instance: Optional["DatabaseConfiguration"] = None
    _lock = threading.Lock()

    def __init__(self, database: Database):
        self._database = database

    @classmethod
    def get(cls) -> "DatabaseConfiguration":
        with cls._lock:
            if cls._instance is None:
                settings = PrintstoreSettings.from_env()
                cls._instance = cls(Database.from_settings(settings))
            return cls._instance

    @classmethod
    def configure(cls, database: Database) -> "DatabaseConfiguration":
        """Replace the global database, disposing of the previous engine."""
        with cls._lock:
            previous = cls._instance
            cls._instance = cls(database)
        if previous is not None and previous._database is not database:
            previous._database.dispose()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            previous = cls._instance
            cls._instance = None
        if previous is not None:
            previous._database.dispose()

    def get_database(self) -> Database:
        return self._database

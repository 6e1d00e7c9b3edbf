"""
printstore/core/connection.py

Owns the single cached database connection of a storage facade.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from printstore.core.database import DatabaseConfiguration
from printstore.core.schema import DatabaseSchemaLoader
from printstore.errors import SchemaMigrationError, StorageUnavailable
from printstore.protocols import DatabaseLike

logger = logging.getLogger(__name__)


class ConnectionSupplier(ABC):
    """
    Lazily opens, initializes and caches one connection.

    ``connection()`` and ``close()`` are serialized by ``lock``, which is
    re-entrant so callers can hold it across a whole operation and keep the
    cached connection to themselves.
    """

    def __init__(self) -> None:
        self._connection: Optional[Connection] = None
        self._lock = threading.RLock()

    @abstractmethod
    def database(self) -> DatabaseLike:
        """Return the provider the connection is opened from."""

    def initialize(self, connection: Connection) -> None:
        """Prepare a freshly opened connection before it is cached."""

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def _is_usable(self) -> bool:
        conn = self._connection
        return conn is not None and not conn.closed and not conn.invalidated

    def connection(self) -> Connection:
        """
        Return the cached connection, opening a new one if needed.

        Raises
        ------
        StorageUnavailable
            If the database cannot be reached.
        SchemaMigrationError
            If schema initialization fails on the new connection.
        """
        with self._lock:
            if self._is_usable():
                return self._connection

            if self._connection is not None:
                self._release()

            try:
                conn = self.database().get_data_source().connect()
            except (SQLAlchemyError, ImportError) as e:
                raise StorageUnavailable("Could not connect to the database", e) from e

            try:
                self.initialize(conn)
            except SQLAlchemyError as e:
                self._close_quietly(conn)
                raise SchemaMigrationError(
                    "Could not initialize the fingerprint schema", e
                ) from e
            except BaseException:
                self._close_quietly(conn)
                raise

            logger.debug("[db] opened connection to %s", conn.engine.url)
            self._connection = conn
            return conn

    @staticmethod
    def _close_quietly(conn: Connection) -> None:
        try:
            conn.close()
        except Exception as e:
            logger.warning(f"Failed to close database connection: {e}")

    def _release(self) -> None:
        conn, self._connection = self._connection, None
        if conn is not None:
            self._close_quietly(conn)

    def close(self) -> None:
        """Release the cached connection; failures are logged, never raised."""
        with self._lock:
            self._release()

    def __enter__(self) -> "ConnectionSupplier":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class LocalConnectionSupplier(ConnectionSupplier):
    """
    Connects through an explicit database or the global configuration, and
    makes sure the fingerprint tables exist before the first use.
    """

    def __init__(self, database: Optional[DatabaseLike] = None) -> None:
        super().__init__()
        self._database = database

    def database(self) -> DatabaseLike:
        if self._database is not None:
            return self._database
        return DatabaseConfiguration.get().get_database()

    def initialize(self, connection: Connection) -> None:
        if not DatabaseSchemaLoader.MIGRATED:
            DatabaseSchemaLoader.migrate_schema(connection.engine)

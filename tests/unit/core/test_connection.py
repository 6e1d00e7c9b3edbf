from __future__ import annotations

import logging
import threading
from unittest.mock import MagicMock

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from printstore.core.connection import ConnectionSupplier, LocalConnectionSupplier
from printstore.core.database import Database, DatabaseConfiguration
from printstore.core.schema import DatabaseSchemaLoader
from printstore.errors import SchemaMigrationError, StorageUnavailable


class _StaticSupplier(ConnectionSupplier):
    def __init__(self, database):
        super().__init__()
        self._db = database
        self.initialized = 0

    def database(self):
        return self._db

    def initialize(self, connection) -> None:
        self.initialized += 1


def test_connection_is_cached_until_closed(database: Database) -> None:
    supplier = _StaticSupplier(database)

    first = supplier.connection()
    assert supplier.connection() is first
    assert supplier.initialized == 1

    supplier.close()
    assert first.closed

    second = supplier.connection()
    assert second is not first
    assert supplier.initialized == 2
    supplier.close()


def test_closed_connection_is_replaced(database: Database) -> None:
    supplier = _StaticSupplier(database)
    first = supplier.connection()
    first.close()

    assert supplier.connection() is not first
    supplier.close()


def test_concurrent_callers_share_one_connection(database: Database) -> None:
    supplier = _StaticSupplier(database)
    seen = []
    barrier = threading.Barrier(8)

    def worker() -> None:
        barrier.wait()
        seen.append(supplier.connection())

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len({id(c) for c in seen}) == 1
    assert supplier.initialized == 1
    supplier.close()


def test_unreachable_database_raises_storage_unavailable() -> None:
    db = MagicMock()
    db.get_data_source.return_value.connect.side_effect = OperationalError(
        "connect", {}, Exception("connection refused")
    )
    supplier = _StaticSupplier(db)

    with pytest.raises(StorageUnavailable) as excinfo:
        supplier.connection()
    assert isinstance(excinfo.value.cause, OperationalError)


def test_failed_initialization_closes_connection_and_raises(database: Database) -> None:
    opened = []

    class _FailingSupplier(_StaticSupplier):
        def initialize(self, connection) -> None:
            opened.append(connection)
            raise OperationalError("CREATE TABLE", {}, Exception("read-only database"))

    supplier = _FailingSupplier(database)
    with pytest.raises(SchemaMigrationError):
        supplier.connection()

    assert opened[0].closed
    assert supplier._connection is None


def test_close_logs_release_failures_instead_of_raising(caplog) -> None:
    conn = MagicMock()
    conn.closed = False
    conn.invalidated = False
    conn.close.side_effect = RuntimeError("socket already gone")
    db = MagicMock()
    db.get_data_source.return_value.connect.return_value = conn
    supplier = _StaticSupplier(db)
    supplier.connection()

    with caplog.at_level(logging.WARNING, logger="printstore.core.connection"):
        supplier.close()

    assert "socket already gone" in caplog.text
    assert supplier._connection is None


def test_close_without_connection_is_noop() -> None:
    supplier = _StaticSupplier(MagicMock())
    supplier.close()
    with supplier:
        pass


def test_local_supplier_migrates_schema_on_first_connection(database: Database) -> None:
    with LocalConnectionSupplier(database) as supplier:
        supplier.connection()
        assert DatabaseSchemaLoader.MIGRATED is True
        assert "fingerprint" in inspect(database.get_data_source()).get_table_names()


def test_local_supplier_falls_back_to_global_configuration(database: Database) -> None:
    DatabaseConfiguration.configure(database)
    supplier = LocalConnectionSupplier()

    assert supplier.database() is database
    conn = supplier.connection()
    assert conn.execute(text("SELECT 1")).scalar() == 1
    conn.rollback()
    supplier.close()

"""
printstore/core/storage.py

Relational fingerprint storage.

``FingerprintStorage`` is the contract the rest of the tracking subsystem
uses: ``save``, ``load``, ``delete`` and ``is_ready``. Every call round-trips
through SQL; nothing is cached in memory besides the connection.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

from printstore.core import conversion
from printstore.core.codec import JsonFingerprintCodec
from printstore.core.connection import ConnectionSupplier, LocalConnectionSupplier
from printstore.core.identity import get_instance_identity
from printstore.core.queries import ColumnName, Queries
from printstore.errors import (
    CodecError,
    ConnectionFailure,
    FingerprintIOError,
    QueryFailure,
    TransactionFailure,
)
from printstore.models.fingerprint import Fingerprint
from printstore.protocols import (
    CleanupStrategy,
    DatabaseLike,
    InstanceIdentityLike,
    PayloadCodec,
    ProgressListener,
)

logger = logging.getLogger(__name__)

_DEFAULT: Optional["FingerprintStorage"] = None
_DEFAULT_LOCK = threading.Lock()


def _statement_failure(message: str, e: SQLAlchemyError) -> FingerprintIOError:
    if isinstance(e, DBAPIError) and e.connection_invalidated:
        return ConnectionFailure(message, e)
    return QueryFailure(message, e)


class FingerprintStorage:
    """
    Stores fingerprints in a relational database, scoped to one instance.

    Parameters
    ----------
    database : Optional[DatabaseLike]
        Connection provider. Defaults to the globally configured database.
    identity : Optional[InstanceIdentityLike]
        Identity of this reporting instance. Defaults to the identity built
        from ``PRINTSTORE_IDENTITY_KEY``.
    codec : Optional[PayloadCodec]
        Codec for facet payloads and reassembled fingerprint documents.
    connection_supplier : Optional[ConnectionSupplier]
        Overrides how the connection is obtained; mostly for tests.
    cleanup_strategy : Optional[CleanupStrategy]
        Garbage-collection policy run by ``iterate_and_cleanup_fingerprints``.
    """

    def __init__(
        self,
        database: Optional[DatabaseLike] = None,
        identity: Optional[InstanceIdentityLike] = None,
        codec: Optional[PayloadCodec] = None,
        connection_supplier: Optional[ConnectionSupplier] = None,
        cleanup_strategy: Optional[CleanupStrategy] = None,
    ):
        if identity is None:
            identity = get_instance_identity()
        self._instance_id = identity.instance_id
        self.codec = codec if codec is not None else JsonFingerprintCodec()
        self.cleanup_strategy = cleanup_strategy
        self._database = database
        self._connection_supplier = connection_supplier
        self._supplier_lock = threading.Lock()
        self._save_lock = threading.Lock()

    @property
    def instance_id(self) -> str:
        return self._instance_id

    def get_connection_supplier(self) -> ConnectionSupplier:
        with self._supplier_lock:
            if self._connection_supplier is None:
                self._connection_supplier = LocalConnectionSupplier(self._database)
            return self._connection_supplier

    def _params(self, fingerprint_id: str) -> Dict[str, Any]:
        return {
            ColumnName.FINGERPRINT_ID: fingerprint_id,
            ColumnName.INSTANCE_ID: self._instance_id,
        }

    @staticmethod
    def _query(connection: Connection, name: str):
        try:
            return Queries.get_query(name, connection.dialect.name)
        except KeyError as e:
            raise QueryFailure(f"No {name} statement for this database", e) from e

    # --- Write Operations ---

    def save(self, fingerprint: Fingerprint) -> None:
        """
        Replace the stored row set of ``fingerprint`` in one transaction.

        Raises
        ------
        FingerprintIOError
            If any step fails; the transaction is rolled back first.
        """
        fingerprint_id = fingerprint.hash_string
        try:
            rows = conversion.decompose(fingerprint, self._instance_id, self.codec)
        except (CodecError, ValueError) as e:
            logger.warning(f"Failed to encode fingerprint {fingerprint_id}: {e}")
            raise FingerprintIOError(
                f"Could not encode fingerprint {fingerprint_id}", e
            ) from e

        supplier = self.get_connection_supplier()
        with self._save_lock, supplier.lock:
            try:
                connection = supplier.connection()
                self._write_rows(connection, fingerprint_id, rows)
            except FingerprintIOError as e:
                logger.warning(f"Failed to save fingerprint {fingerprint_id}: {e}")
                raise

    def _write_rows(
        self,
        connection: Connection,
        fingerprint_id: str,
        rows: conversion.FingerprintRows,
    ) -> None:
        with self._transaction(connection, f"write fingerprint {fingerprint_id}"):
            self._delete(connection, fingerprint_id)
            connection.execute(
                self._query(connection, Queries.INSERT_FINGERPRINT), rows.fingerprint
            )
            if rows.usages:
                connection.execute(
                    self._query(connection, Queries.INSERT_FINGERPRINT_JOB_BUILD_RELATION),
                    rows.usages,
                )
            if rows.facets:
                connection.execute(
                    self._query(connection, Queries.INSERT_FINGERPRINT_FACET_RELATION),
                    rows.facets,
                )

    def delete(self, fingerprint_id: str) -> None:
        """
        Delete a fingerprint and, through cascading keys, its usage and facet rows.

        Deleting an unknown id is not an error.
        """
        supplier = self.get_connection_supplier()
        with supplier.lock:
            try:
                connection = supplier.connection()
                with self._transaction(connection, f"delete fingerprint {fingerprint_id}"):
                    self._delete(connection, fingerprint_id)
            except FingerprintIOError as e:
                logger.warning(f"Failed to delete fingerprint {fingerprint_id}: {e}")
                raise

    def _delete(self, connection: Connection, fingerprint_id: str) -> None:
        connection.execute(
            self._query(connection, Queries.DELETE_FINGERPRINT),
            self._params(fingerprint_id),
        )

    @contextmanager
    def _transaction(self, connection: Connection, action: str) -> Iterator[None]:
        """
        Run the block in one transaction, committing only if it completes.

        Statement errors roll back and surface as ``QueryFailure`` (or
        ``ConnectionFailure`` when the connection dropped); commit errors as
        ``TransactionFailure``.
        """
        try:
            transaction = connection.begin()
        except SQLAlchemyError as e:
            raise _statement_failure(f"Could not {action}", e) from e

        try:
            yield
        except SQLAlchemyError as e:
            self._rollback(transaction)
            raise _statement_failure(f"Could not {action}", e) from e
        except BaseException:
            self._rollback(transaction)
            raise

        try:
            transaction.commit()
        except SQLAlchemyError as e:
            self._rollback(transaction)
            raise TransactionFailure(f"Could not commit: {action}", e) from e

    @staticmethod
    def _rollback(transaction) -> None:
        try:
            if transaction.is_active:
                transaction.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"Rollback failed: {e}")

    # --- Read Operations ---

    def load(self, fingerprint_id: str) -> Optional[Fingerprint]:
        """
        Return the fingerprint stored under ``fingerprint_id`` for this
        instance, or None if there is none.
        """
        supplier = self.get_connection_supplier()
        with supplier.lock:
            try:
                connection = supplier.connection()
                try:
                    with connection.begin():
                        row = (
                            connection.execute(
                                self._query(connection, Queries.SELECT_FINGERPRINT),
                                self._params(fingerprint_id),
                            )
                            .mappings()
                            .first()
                        )
                except SQLAlchemyError as e:
                    raise _statement_failure(
                        f"Could not load fingerprint {fingerprint_id}", e
                    ) from e
            except FingerprintIOError as e:
                logger.warning(f"Failed to load fingerprint {fingerprint_id}: {e}")
                raise

        if row is None:
            return None

        try:
            document = conversion.recompose(fingerprint_id, row)
            fingerprint = self.codec.decode(document)
        except (CodecError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to decode fingerprint {fingerprint_id}: {e}")
            raise FingerprintIOError(
                f"Could not decode fingerprint {fingerprint_id}", e
            ) from e
        if not isinstance(fingerprint, Fingerprint):
            raise FingerprintIOError(
                f"Stored record {fingerprint_id} did not decode to a fingerprint"
            )
        return fingerprint

    def _scalar(self, name: str) -> Any:
        supplier = self.get_connection_supplier()
        with supplier.lock:
            connection = supplier.connection()
            try:
                with connection.begin():
                    return connection.execute(
                        self._query(connection, name),
                        {ColumnName.INSTANCE_ID: self._instance_id},
                    ).scalar()
            except SQLAlchemyError as e:
                raise _statement_failure(f"Query {name} failed", e) from e

    def is_ready(self) -> bool:
        """
        True if at least one fingerprint is stored for this instance.

        Never raises: storage failures are logged and reported as not ready.
        """
        try:
            return bool(self._scalar(Queries.SELECT_FINGERPRINT_EXISTS_FOR_INSTANCE))
        except Exception as e:
            logger.warning(f"Fingerprint storage is not reachable: {e}")
            return False

    def count(self) -> int:
        """Number of fingerprints stored for this instance."""
        try:
            return int(self._scalar(Queries.SELECT_FINGERPRINT_COUNT_FOR_INSTANCE) or 0)
        except FingerprintIOError as e:
            logger.warning(f"Failed to count fingerprints: {e}")
            raise

    # --- Maintenance ---

    def iterate_and_cleanup_fingerprints(
        self, listener: Optional[ProgressListener] = None
    ) -> int:
        """
        Run the configured cleanup strategy and return how many fingerprints
        it removed. Without a strategy nothing is removed.
        """
        if self.cleanup_strategy is None:
            logger.debug("[cleanup] no cleanup strategy configured; nothing removed")
            return 0
        return self.cleanup_strategy.cleanup(self, self._instance_id, listener)

    def close(self) -> None:
        with self._supplier_lock:
            supplier = self._connection_supplier
        if supplier is not None:
            supplier.close()

    def __enter__(self) -> "FingerprintStorage":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<FingerprintStorage instance='{self._instance_id}'>"


def get() -> FingerprintStorage:
    """Return the process-wide storage built from global configuration."""
    global _DEFAULT
    with _DEFAULT_LOCK:
        if _DEFAULT is None:
            _DEFAULT = FingerprintStorage()
        return _DEFAULT


def reset_default() -> None:
    global _DEFAULT
    with _DEFAULT_LOCK:
        storage, _DEFAULT = _DEFAULT, None
    if storage is not None:
        storage.close()


__all__: List[str] = ["FingerprintStorage", "get", "reset_default"]

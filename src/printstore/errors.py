"""
printstore/errors.py

Error taxonomy for the fingerprint store.

Every failure of ``save``/``load``/``delete`` reaches the caller as a
``FingerprintIOError`` (or one of its subclasses) with the original driver or
SQLAlchemy exception chained as ``__cause__`` and exposed as ``cause``.
Callers receiving one must assume the operation had no effect.
"""

from __future__ import annotations

from typing import Optional


class FingerprintStoreError(Exception):
    """Base class for all printstore errors."""


class FingerprintIOError(FingerprintStoreError, OSError):
    """A storage operation failed; nothing was written or returned."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause

    def __str__(self) -> str:
        message = self.args[0] if self.args else ""
        if self.cause is not None:
            return f"{message}: {self.cause}"
        return message


class ConnectionFailure(FingerprintIOError):
    """The database could not be reached or the connection broke mid-operation."""


class StorageUnavailable(ConnectionFailure):
    """No connection could be opened to the configured database."""


class SchemaMigrationError(ConnectionFailure):
    """The schema could not be created or upgraded while opening a connection."""


class QueryFailure(FingerprintIOError):
    """A statement failed during execution (syntax, constraint, type mismatch)."""


class TransactionFailure(FingerprintIOError):
    """Commit failed after every statement of the transaction succeeded."""


class CodecError(FingerprintStoreError, ValueError):
    """A payload could not be encoded to, or decoded from, its JSON form."""

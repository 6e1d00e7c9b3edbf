"""
printstore/core/schema.py

Creates the fingerprint tables once per process.
"""

from __future__ import annotations

import logging
import threading

from sqlalchemy.engine import Engine
from sqlalchemy.exc import DatabaseError
from sqlmodel import SQLModel

from printstore.models.tables import FINGERPRINT_TABLES

logger = logging.getLogger(__name__)

_ALREADY_EXISTS_MARKERS = (
    "already exists",
    "duplicate key value violates unique constraint \"pg_type_typname_nsp_index\"",
)


def _is_already_exists_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _ALREADY_EXISTS_MARKERS)


class DatabaseSchemaLoader:
    """
    Idempotent schema creation guarded by a process-wide flag.

    ``MIGRATED`` only saves redundant work inside one process. Safety across
    processes comes from ``CREATE TABLE`` statements that skip existing
    tables and from tolerating "already exists" errors when two processes
    race past each other's existence checks.
    """

    MIGRATED = False
    _lock = threading.Lock()

    @classmethod
    def migrate_schema(cls, engine: Engine, force: bool = False) -> None:
        """
        Create any missing fingerprint tables on ``engine``.

        Skips the database round trip once a migration has succeeded in this
        process, unless ``force`` is set.
        """
        with cls._lock:
            if cls.MIGRATED and not force:
                logger.debug("[schema] already migrated in this process; skipping")
                return
            try:
                with engine.begin() as conn:
                    SQLModel.metadata.create_all(
                        conn, tables=FINGERPRINT_TABLES, checkfirst=True
                    )
            except DatabaseError as e:
                if not _is_already_exists_error(str(e)):
                    raise
                logger.debug(
                    "[schema] concurrent migration detected, tables already exist: %s",
                    e,
                )
            cls.MIGRATED = True
            logger.debug("[schema] fingerprint tables ready on %s", engine.url)

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls.MIGRATED = False

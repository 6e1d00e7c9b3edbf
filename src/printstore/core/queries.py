"""
printstore/core/queries.py

Fixed catalog of the statements the fingerprint store runs.

Statements are looked up by name and every variable value is a bound
parameter; nothing here accepts SQL fragments from callers. Only
``SELECT_FINGERPRINT`` differs between dialects, because it aggregates the
usage and facet rows into JSON arrays with dialect-specific functions.
"""

from __future__ import annotations

from typing import Dict

from sqlalchemy import Boolean, DateTime, Integer, bindparam, text
from sqlalchemy.sql.elements import TextClause


class ColumnName:
    FINGERPRINT_ID = "fingerprint_id"
    INSTANCE_ID = "instance_id"
    TIMESTAMP = "timestamp"
    FILENAME = "filename"
    ORIGINAL_JOB_NAME = "original_job_name"
    ORIGINAL_JOB_BUILD_NUMBER = "original_job_build_number"
    JOB = "job"
    BUILD_NUMBER = "build_number"
    FACET_NAME = "facet_name"
    FACET_ENTRY = "facet_entry"
    IS_DELETION_BLOCKED = "is_deletion_blocked"
    USAGES = "usages"
    FACETS = "facets"
    EXISTS = "fingerprint_exists"
    TOTAL = "total"


_INSERT_FINGERPRINT = """
INSERT INTO fingerprint
    (fingerprint_id, instance_id, timestamp, filename,
     original_job_name, original_job_build_number)
VALUES
    (:fingerprint_id, :instance_id, :timestamp, :filename,
     :original_job_name, :original_job_build_number)
"""

_INSERT_FINGERPRINT_JOB_BUILD_RELATION = """
INSERT INTO fingerprint_job_build_relation
    (fingerprint_id, instance_id, job, build_number)
VALUES
    (:fingerprint_id, :instance_id, :job, :build_number)
"""

_INSERT_FINGERPRINT_FACET_RELATION = """
INSERT INTO fingerprint_facet_relation
    (fingerprint_id, instance_id, facet_name, facet_entry, is_deletion_blocked)
VALUES
    (:fingerprint_id, :instance_id, :facet_name, :facet_entry, :is_deletion_blocked)
"""

_SELECT_FINGERPRINT_SQLITE = """
SELECT f.timestamp, f.filename, f.original_job_name, f.original_job_build_number,
    (SELECT json_group_array(json_object('job', u.job, 'build_number', u.build_number))
       FROM fingerprint_job_build_relation u
      WHERE u.fingerprint_id = f.fingerprint_id AND u.instance_id = f.instance_id
    ) AS usages,
    (SELECT json_group_array(json_object(
                'facet_name', c.facet_name,
                'facet_entry', json(c.facet_entry),
                'is_deletion_blocked', c.is_deletion_blocked))
       FROM fingerprint_facet_relation c
      WHERE c.fingerprint_id = f.fingerprint_id AND c.instance_id = f.instance_id
    ) AS facets
FROM fingerprint f
WHERE f.fingerprint_id = :fingerprint_id AND f.instance_id = :instance_id
"""

_SELECT_FINGERPRINT_POSTGRESQL = """
SELECT f.timestamp, f.filename, f.original_job_name, f.original_job_build_number,
    (SELECT json_agg(json_build_object('job', u.job, 'build_number', u.build_number))
       FROM fingerprint_job_build_relation u
      WHERE u.fingerprint_id = f.fingerprint_id AND u.instance_id = f.instance_id
    ) AS usages,
    (SELECT json_agg(json_build_object(
                'facet_name', c.facet_name,
                'facet_entry', c.facet_entry::json,
                'is_deletion_blocked', c.is_deletion_blocked))
       FROM fingerprint_facet_relation c
      WHERE c.fingerprint_id = f.fingerprint_id AND c.instance_id = f.instance_id
    ) AS facets
FROM fingerprint f
WHERE f.fingerprint_id = :fingerprint_id AND f.instance_id = :instance_id
"""

_DELETE_FINGERPRINT = """
DELETE FROM fingerprint
WHERE fingerprint_id = :fingerprint_id AND instance_id = :instance_id
"""

_SELECT_FINGERPRINT_EXISTS_FOR_INSTANCE = """
SELECT EXISTS (
    SELECT 1 FROM fingerprint WHERE instance_id = :instance_id
) AS fingerprint_exists
"""

_SELECT_FINGERPRINT_COUNT_FOR_INSTANCE = """
SELECT COUNT(*) AS total FROM fingerprint WHERE instance_id = :instance_id
"""


def _typed_timestamp(sql: str) -> TextClause:
    return text(sql).bindparams(bindparam("timestamp", type_=DateTime(timezone=True)))


def _typed_facet_insert(sql: str) -> TextClause:
    return text(sql).bindparams(bindparam("is_deletion_blocked", type_=Boolean()))


def _typed_select(sql: str):
    # Typed result columns let SQLite hand back datetimes instead of text.
    return text(sql).columns(
        timestamp=DateTime(timezone=True),
        original_job_build_number=Integer(),
    )


class Queries:
    INSERT_FINGERPRINT = "insert_fingerprint"
    INSERT_FINGERPRINT_JOB_BUILD_RELATION = "insert_fingerprint_job_build_relation"
    INSERT_FINGERPRINT_FACET_RELATION = "insert_fingerprint_facet_relation"
    SELECT_FINGERPRINT = "select_fingerprint"
    DELETE_FINGERPRINT = "delete_fingerprint"
    SELECT_FINGERPRINT_EXISTS_FOR_INSTANCE = "select_fingerprint_exists_for_instance"
    SELECT_FINGERPRINT_COUNT_FOR_INSTANCE = "select_fingerprint_count_for_instance"

    DEFAULT_DIALECT = "sqlite"

    _COMMON: Dict[str, object] = {
        INSERT_FINGERPRINT: _typed_timestamp(_INSERT_FINGERPRINT),
        INSERT_FINGERPRINT_JOB_BUILD_RELATION: text(
            _INSERT_FINGERPRINT_JOB_BUILD_RELATION
        ),
        INSERT_FINGERPRINT_FACET_RELATION: _typed_facet_insert(
            _INSERT_FINGERPRINT_FACET_RELATION
        ),
        DELETE_FINGERPRINT: text(_DELETE_FINGERPRINT),
        SELECT_FINGERPRINT_EXISTS_FOR_INSTANCE: text(
            _SELECT_FINGERPRINT_EXISTS_FOR_INSTANCE
        ),
        SELECT_FINGERPRINT_COUNT_FOR_INSTANCE: text(
            _SELECT_FINGERPRINT_COUNT_FOR_INSTANCE
        ),
    }

    _BY_DIALECT: Dict[str, Dict[str, object]] = {
        "sqlite": {SELECT_FINGERPRINT: _typed_select(_SELECT_FINGERPRINT_SQLITE)},
        "postgresql": {
            SELECT_FINGERPRINT: _typed_select(_SELECT_FINGERPRINT_POSTGRESQL)
        },
    }

    @classmethod
    def names(cls) -> list[str]:
        return sorted(set(cls._COMMON) | set(cls._BY_DIALECT[cls.DEFAULT_DIALECT]))

    @classmethod
    def dialects(cls) -> list[str]:
        return sorted(cls._BY_DIALECT)

    @classmethod
    def get_query(cls, name: str, dialect: str = DEFAULT_DIALECT):
        """
        Return the statement registered under ``name`` for ``dialect``.

        Raises
        ------
        KeyError
            If the dialect is unsupported or no statement has that name.
        """
        if dialect not in cls._BY_DIALECT:
            raise KeyError(f"Unsupported database dialect: {dialect}")
        specific = cls._BY_DIALECT[dialect]
        if name in specific:
            return specific[name]
        if name in cls._COMMON:
            return cls._COMMON[name]
        raise KeyError(f"Unknown query: {name}")

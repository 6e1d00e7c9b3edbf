from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError, ProgrammingError

from printstore.core.schema import DatabaseSchemaLoader, _is_already_exists_error


def _tables(engine) -> set[str]:
    return set(inspect(engine).get_table_names())


def test_migrate_schema_creates_fingerprint_tables(engine) -> None:
    DatabaseSchemaLoader.migrate_schema(engine)

    assert _tables(engine) >= {
        "fingerprint",
        "fingerprint_job_build_relation",
        "fingerprint_facet_relation",
    }
    assert DatabaseSchemaLoader.MIGRATED is True


def test_migrate_schema_primary_and_foreign_keys(engine) -> None:
    DatabaseSchemaLoader.migrate_schema(engine)
    inspector = inspect(engine)

    assert inspector.get_pk_constraint("fingerprint")["constrained_columns"] == [
        "fingerprint_id",
        "instance_id",
    ]
    assert set(
        inspector.get_pk_constraint("fingerprint_job_build_relation")["constrained_columns"]
    ) == {"fingerprint_id", "instance_id", "job", "build_number"}
    assert set(
        inspector.get_pk_constraint("fingerprint_facet_relation")["constrained_columns"]
    ) == {"fingerprint_id", "instance_id", "facet_name"}

    for table in ("fingerprint_job_build_relation", "fingerprint_facet_relation"):
        (fk,) = inspector.get_foreign_keys(table)
        assert fk["referred_table"] == "fingerprint"
        assert fk["options"].get("ondelete") == "CASCADE"


def test_migrate_schema_is_idempotent(engine) -> None:
    DatabaseSchemaLoader.migrate_schema(engine)
    with engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO fingerprint (fingerprint_id, instance_id, timestamp, filename) "
                "VALUES ('h', 'i', '2025-01-01 00:00:00.000000', 'f')"
            )
        )

    DatabaseSchemaLoader.migrate_schema(engine, force=True)

    with engine.connect() as conn:
        assert conn.execute(text("SELECT COUNT(*) FROM fingerprint")).scalar() == 1


def test_migrate_schema_skips_work_once_flag_is_set() -> None:
    engine = MagicMock()
    DatabaseSchemaLoader.MIGRATED = True

    DatabaseSchemaLoader.migrate_schema(engine)

    engine.begin.assert_not_called()


def test_migrate_schema_tolerates_concurrent_creation(engine) -> None:
    error = ProgrammingError(
        "CREATE TABLE fingerprint", {}, Exception('relation "fingerprint" already exists')
    )
    with patch("printstore.core.schema.SQLModel.metadata.create_all", side_effect=error):
        DatabaseSchemaLoader.migrate_schema(engine)

    assert DatabaseSchemaLoader.MIGRATED is True


def test_migrate_schema_propagates_other_errors(engine) -> None:
    error = OperationalError("CREATE TABLE fingerprint", {}, Exception("disk I/O error"))
    with patch("printstore.core.schema.SQLModel.metadata.create_all", side_effect=error):
        with pytest.raises(OperationalError):
            DatabaseSchemaLoader.migrate_schema(engine)

    assert DatabaseSchemaLoader.MIGRATED is False


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ('relation "fingerprint" already exists', True),
        ("table fingerprint Already Exists", True),
        ("disk I/O error", False),
        ("permission denied for schema public", False),
    ],
)
def test_is_already_exists_error(message: str, expected: bool) -> None:
    assert _is_already_exists_error(message) is expected

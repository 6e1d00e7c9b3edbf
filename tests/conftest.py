from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

import pytest
from typer.testing import CliRunner

from printstore.core import identity as identity_module
from printstore.core import storage as storage_module
from printstore.core.codec import JsonFingerprintCodec
from printstore.core.database import Database, DatabaseConfiguration
from printstore.core.identity import InstanceIdentity
from printstore.core.schema import DatabaseSchemaLoader
from printstore.core.storage import FingerprintStorage
from printstore.models.fingerprint import BuildPtr, Fingerprint

from tests.helpers.facets import BuildResultFacet, KeepForeverFacet, make_registry


# --- Global Test Configuration ---


@pytest.fixture(autouse=True)
def reset_globals():
    """
    Resets process-wide state (migration flag, default database, default
    identity and storage) before and after each test so tests never share a
    database through globals.
    """
    DatabaseSchemaLoader.reset()
    DatabaseConfiguration.reset()
    identity_module.reset_instance_identity()
    storage_module.reset_default()
    yield
    storage_module.reset_default()
    identity_module.reset_instance_identity()
    DatabaseConfiguration.reset()
    DatabaseSchemaLoader.reset()


# --- Identity ---


@pytest.fixture(scope="session")
def identity() -> InstanceIdentity:
    return InstanceIdentity.generate()


@pytest.fixture(scope="session")
def other_identity() -> InstanceIdentity:
    return InstanceIdentity.generate()


# --- Database ---


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'fingerprints.db'}"


@pytest.fixture
def database(db_url: str) -> Database:
    """A file-backed SQLite database, disposed after the test."""
    db = Database(db_url)
    yield db
    db.dispose()


@pytest.fixture
def engine(database: Database):
    return database.get_data_source()


@pytest.fixture
def codec() -> JsonFingerprintCodec:
    return JsonFingerprintCodec(make_registry())


@pytest.fixture
def storage(database: Database, identity: InstanceIdentity, codec) -> FingerprintStorage:
    """A storage facade bound to a fresh database and a test identity."""
    store = FingerprintStorage(database=database, identity=identity, codec=codec)
    yield store
    store.close()


@pytest.fixture
def make_fingerprint() -> Callable[..., Fingerprint]:
    """
    Factory for fingerprints with usages, an original build and two facets.
    Keyword arguments override fields.
    """

    def _make(hash_string: str = "abc123", **overrides) -> Fingerprint:
        fields = dict(
            hash_string=hash_string,
            file_name="build.log",
            timestamp=datetime(2025, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc),
            original=BuildPtr(name="job-a", number=1),
            facets=[
                BuildResultFacet(timestamp=1700000000000, passed=42),
                KeepForeverFacet(timestamp=1700000000001, reason="release"),
            ],
        )
        fields.update(overrides)
        fingerprint = Fingerprint(**fields)
        if "usages" not in overrides:
            fingerprint.add_usages("job-a", [1, 2, 5])
            fingerprint.add_usages("folder/job-b", [7])
        return fingerprint

    return _make


@pytest.fixture
def cli_runner() -> CliRunner:
    return CliRunner()

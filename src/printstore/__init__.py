"""
printstore: relational storage for build-artifact fingerprints.

This package provides the public API for storing fingerprints (content-addressed
records of which builds produced and used a file) in a SQL database, scoped to
one reporting instance so several instances can share the same tables.
"""

# Models
from printstore.models.fingerprint import (
    BuildPtr,
    Fingerprint,
    FingerprintFacet,
    OpaqueFacet,
)
from printstore.models.range_set import RangeSet

# Core
from printstore.core.codec import (
    FacetRegistry,
    JsonFingerprintCodec,
    default_registry,
    register_facet,
)
from printstore.core.connection import ConnectionSupplier, LocalConnectionSupplier
from printstore.core.database import Database, DatabaseConfiguration
from printstore.core.identity import InstanceIdentity, get_instance_identity
from printstore.core.schema import DatabaseSchemaLoader
from printstore.core.settings import PrintstoreSettings
from printstore.core.storage import FingerprintStorage, get as get_storage

# Errors
from printstore.errors import (
    CodecError,
    ConnectionFailure,
    FingerprintIOError,
    FingerprintStoreError,
    QueryFailure,
    SchemaMigrationError,
    StorageUnavailable,
    TransactionFailure,
)

__all__ = [
    # Models
    "BuildPtr",
    "Fingerprint",
    "FingerprintFacet",
    "OpaqueFacet",
    "RangeSet",
    # Storage
    "FingerprintStorage",
    "get_storage",
    "ConnectionSupplier",
    "LocalConnectionSupplier",
    "Database",
    "DatabaseConfiguration",
    "DatabaseSchemaLoader",
    "InstanceIdentity",
    "get_instance_identity",
    "PrintstoreSettings",
    # Codec
    "FacetRegistry",
    "JsonFingerprintCodec",
    "default_registry",
    "register_facet",
    # Errors
    "CodecError",
    "ConnectionFailure",
    "FingerprintIOError",
    "FingerprintStoreError",
    "QueryFailure",
    "SchemaMigrationError",
    "StorageUnavailable",
    "TransactionFailure",
]

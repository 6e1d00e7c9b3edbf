"""
The `models` module defines the fingerprint aggregate and the database
tables it is stored in.
"""

from __future__ import annotations

from printstore.models.fingerprint import (
    BuildPtr,
    Fingerprint,
    FingerprintFacet,
    OpaqueFacet,
)
from printstore.models.range_set import RangeSet
from printstore.models.tables import (
    FINGERPRINT_TABLES,
    FingerprintFacetRelation,
    FingerprintJobBuildRelation,
    FingerprintRecord,
)

__all__ = [
    "BuildPtr",
    "Fingerprint",
    "FingerprintFacet",
    "OpaqueFacet",
    "RangeSet",
    "FINGERPRINT_TABLES",
    "FingerprintFacetRelation",
    "FingerprintJobBuildRelation",
    "FingerprintRecord",
]

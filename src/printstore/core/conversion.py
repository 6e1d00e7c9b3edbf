"""
printstore/core/conversion.py

Two-way mapping between a ``Fingerprint`` and its relational rows.

Writing decomposes one fingerprint into a fingerprint row, one usage row per
(job, build number) and one facet row per persisted facet. Reading takes the
fingerprint row together with its usage and facet rows (aggregated into JSON
arrays by ``SELECT_FINGERPRINT``) and reassembles the JSON document the codec
decodes into a full ``Fingerprint``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from printstore.core.codec import (
    FINGERPRINT_ROOT,
    KEY_DELETION_BLOCKED,
    KEY_FACETS,
    KEY_FILE_NAME,
    KEY_HASH,
    KEY_ORIGINAL,
    KEY_TIMESTAMP,
    KEY_USAGES,
)
from printstore.core.queries import ColumnName
from printstore.models.fingerprint import Fingerprint
from printstore.models.range_set import RangeSet

UTC = timezone.utc

JsonRows = Union[str, bytes, List[Any], None]


class PayloadEncoder(Protocol):
    def encode(self, obj: Any) -> str: ...


@dataclass
class FingerprintRows:
    """All rows one fingerprint decomposes into."""

    fingerprint: Dict[str, Any]
    usages: List[Dict[str, Any]] = field(default_factory=list)
    facets: List[Dict[str, Any]] = field(default_factory=list)


def _to_utc(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        # Naive values come back from backends that store wall-clock UTC.
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# --- Decompose (write direction) ---


def fingerprint_row(fingerprint: Fingerprint, instance_id: str) -> Dict[str, Any]:
    original = fingerprint.original
    return {
        ColumnName.FINGERPRINT_ID: fingerprint.hash_string,
        ColumnName.INSTANCE_ID: instance_id,
        ColumnName.TIMESTAMP: _to_utc(fingerprint.timestamp),
        ColumnName.FILENAME: fingerprint.file_name,
        ColumnName.ORIGINAL_JOB_NAME: original.name if original else None,
        ColumnName.ORIGINAL_JOB_BUILD_NUMBER: original.number if original else None,
    }


def usage_rows(fingerprint: Fingerprint, instance_id: str) -> List[Dict[str, Any]]:
    """Expand each job's range set into one row per build number."""
    rows: List[Dict[str, Any]] = []
    for job, range_set in fingerprint.usages.items():
        for build_number in range_set.list_numbers():
            rows.append(
                {
                    ColumnName.FINGERPRINT_ID: fingerprint.hash_string,
                    ColumnName.INSTANCE_ID: instance_id,
                    ColumnName.JOB: job,
                    ColumnName.BUILD_NUMBER: build_number,
                }
            )
    return rows


def facet_rows(
    fingerprint: Fingerprint, instance_id: str, codec: PayloadEncoder
) -> List[Dict[str, Any]]:
    """
    Encode each persisted facet and split it into type name and payload.

    Raises
    ------
    ValueError
        If an encoded facet does not have exactly one top-level key, or two
        facets share a type name.
    """
    rows: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for facet in fingerprint.facets:
        document = json.loads(codec.encode(facet))
        if not isinstance(document, dict) or len(document) != 1:
            raise ValueError(
                f"Encoded facet {type(facet).__name__} must have exactly one top-level key"
            )
        facet_name, facet_entry = next(iter(document.items()))
        if facet_name in seen:
            raise ValueError(
                f"Fingerprint {fingerprint.hash_string} has more than one '{facet_name}' facet"
            )
        seen.add(facet_name)
        rows.append(
            {
                ColumnName.FINGERPRINT_ID: fingerprint.hash_string,
                ColumnName.INSTANCE_ID: instance_id,
                ColumnName.FACET_NAME: facet_name,
                ColumnName.FACET_ENTRY: json.dumps(facet_entry),
                ColumnName.IS_DELETION_BLOCKED: facet.is_fingerprint_deletion_blocked(),
            }
        )
    return rows


def decompose(
    fingerprint: Fingerprint, instance_id: str, codec: PayloadEncoder
) -> FingerprintRows:
    return FingerprintRows(
        fingerprint=fingerprint_row(fingerprint, instance_id),
        usages=usage_rows(fingerprint, instance_id),
        facets=facet_rows(fingerprint, instance_id, codec),
    )


# --- Recompose (read direction) ---


def _json_rows(value: JsonRows) -> List[Any]:
    # SQLite returns aggregated arrays as text; psycopg parses json columns itself.
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        value = json.loads(value)
    if not isinstance(value, list):
        raise ValueError(f"Expected a JSON array, got {type(value).__name__}")
    return value


def extract_fingerprint_metadata(
    fingerprint_id: str,
    timestamp: Union[datetime, str],
    filename: str,
    original_job_name: Optional[str],
    original_job_build_number: Optional[Union[int, str]],
) -> Dict[str, Any]:
    metadata: Dict[str, Any] = {
        KEY_HASH: fingerprint_id,
        KEY_TIMESTAMP: _to_utc(timestamp).isoformat(),
        KEY_FILE_NAME: filename,
    }
    if original_job_name is not None and original_job_build_number is not None:
        metadata[KEY_ORIGINAL] = {
            "name": original_job_name,
            "number": int(original_job_build_number),
        }
    return metadata


def extract_usage_metadata(usages: JsonRows) -> Dict[str, RangeSet]:
    """Group usage rows by job and coalesce their build numbers."""
    usage_metadata: Dict[str, RangeSet] = {}
    for row in _json_rows(usages):
        job = row[ColumnName.JOB]
        usage_metadata.setdefault(job, RangeSet()).add(int(row[ColumnName.BUILD_NUMBER]))
    return usage_metadata


def extract_facets(facets: JsonRows) -> List[Dict[str, Any]]:
    """Re-wrap each facet row as ``{facet_name: payload}``, ordered by name."""
    wrapped: List[Dict[str, Any]] = []
    rows = sorted(_json_rows(facets), key=lambda r: r[ColumnName.FACET_NAME])
    for row in rows:
        entry = row[ColumnName.FACET_ENTRY]
        if isinstance(entry, str):
            entry = json.loads(entry)
        wrapped.append({row[ColumnName.FACET_NAME]: entry})
    return wrapped


def extract_deletion_blocked(facets: JsonRows) -> List[str]:
    """Names of the facet rows whose deletion-blocked flag is set."""
    return sorted(
        row[ColumnName.FACET_NAME]
        for row in _json_rows(facets)
        if row.get(ColumnName.IS_DELETION_BLOCKED)
    )


def construct_fingerprint_json(
    fingerprint_metadata: Dict[str, Any],
    usage_metadata: Dict[str, RangeSet],
    facets: List[Dict[str, Any]],
    deletion_blocked: Iterable[str] = (),
) -> str:
    body = dict(fingerprint_metadata)
    body[KEY_USAGES] = {
        job: str(usage_metadata[job])
        for job in sorted(usage_metadata)
        if not usage_metadata[job].is_empty()
    }
    body[KEY_FACETS] = facets
    blocked = sorted(deletion_blocked)
    if blocked:
        body[KEY_DELETION_BLOCKED] = blocked
    return json.dumps({FINGERPRINT_ROOT: body})


def recompose(fingerprint_id: str, row: Mapping[str, Any]) -> str:
    """Build the codec document for one ``SELECT_FINGERPRINT`` result row."""
    metadata = extract_fingerprint_metadata(
        fingerprint_id,
        row[ColumnName.TIMESTAMP],
        row[ColumnName.FILENAME],
        row[ColumnName.ORIGINAL_JOB_NAME],
        row[ColumnName.ORIGINAL_JOB_BUILD_NUMBER],
    )
    usage_metadata = extract_usage_metadata(row[ColumnName.USAGES])
    facets = extract_facets(row[ColumnName.FACETS])
    blocked = extract_deletion_blocked(row[ColumnName.FACETS])
    return construct_fingerprint_json(metadata, usage_metadata, facets, blocked)

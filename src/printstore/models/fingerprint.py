from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_validator

from printstore.models.range_set import RangeSet

UTC = timezone.utc


def _now_millis() -> int:
    return int(time.time() * 1000)


class BuildPtr(BaseModel):
    """
    Points at one build of one job.

    Attributes:
        name (str): Full name of the job.
        number (int): Build number within that job.
    """

    name: str
    number: int

    def __str__(self) -> str:
        return f"{self.name} #{self.number}"


class FingerprintFacet(BaseModel):
    """
    Extensible metadata attached to a fingerprint by other subsystems.

    Subclasses set ``facet_type`` to the name the payload is stored under and
    override ``is_fingerprint_deletion_blocked`` when their presence must keep
    the fingerprint from being garbage collected.

    Attributes:
        timestamp (int): Creation time of the facet in epoch milliseconds.
    """

    facet_type: ClassVar[str] = "fingerprintFacet"

    timestamp: int = Field(default_factory=_now_millis)

    def is_fingerprint_deletion_blocked(self) -> bool:
        return False

    def facet_name(self) -> str:
        """Name the facet is stored under."""
        return self.facet_type


class OpaqueFacet(FingerprintFacet):
    """
    A stored facet whose type has no registered model in this process.

    The payload is kept verbatim so saving the fingerprint again writes the
    facet back unchanged.

    Attributes:
        type_name (str): Facet type the payload was stored under.
        payload (Any): The decoded JSON payload.
        deletion_blocked (bool): Stored deletion-blocked flag of the facet.
    """

    type_name: str
    payload: Any = None
    deletion_blocked: bool = False

    def facet_name(self) -> str:
        return self.type_name

    def is_fingerprint_deletion_blocked(self) -> bool:
        return self.deletion_blocked


class Fingerprint(BaseModel):
    """
    Content-addressed record of where a file was produced and used.

    Attributes:
        hash_string (str): Hex digest of the tracked file; the record identity.
        file_name (str): Name of the file when it was first recorded.
        timestamp (datetime): When the fingerprint was first recorded.
        original (Optional[BuildPtr]): The build that produced the file, if known.
        usages (Dict[str, RangeSet]): Build numbers, per job, that used the file.
        facets (List[FingerprintFacet]): Persisted facets attached to the record.
    """

    hash_string: str
    file_name: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    original: Optional[BuildPtr] = None
    usages: Dict[str, RangeSet] = Field(default_factory=dict)
    facets: List[FingerprintFacet] = Field(default_factory=list)

    class Config:
        arbitrary_types_allowed = True

    @field_validator("timestamp")
    @classmethod
    def _timestamp_as_utc(cls, value: datetime) -> datetime:
        # Naive timestamps are taken to be UTC, the zone they are stored in.
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    # --- Usage helpers ---

    def add_usage(self, job: str, number: int) -> None:
        self.usages.setdefault(job, RangeSet()).add(number)

    def add_usages(self, job: str, numbers: Iterable[int]) -> None:
        self.usages.setdefault(job, RangeSet()).add_all(numbers)

    def get_range_set(self, job: str) -> RangeSet:
        return self.usages.get(job, RangeSet())

    @property
    def jobs(self) -> List[str]:
        return sorted(job for job, rs in self.usages.items() if not rs.is_empty())

    # --- Facet helpers ---

    def get_facet(self, facet_type: str) -> Optional[FingerprintFacet]:
        for facet in self.facets:
            if facet.facet_name() == facet_type:
                return facet
        return None

    def is_deletion_blocked(self) -> bool:
        return any(f.is_fingerprint_deletion_blocked() for f in self.facets)

    def _comparable(self) -> tuple:
        usages = {job: rs for job, rs in self.usages.items() if not rs.is_empty()}
        facets = sorted(self.facets, key=lambda f: f.facet_name())
        return (
            self.hash_string,
            self.file_name,
            self.timestamp,
            self.original,
            usages,
            facets,
        )

    def __eq__(self, other: object) -> bool:
        # Facet order and empty range sets are not persisted.
        if not isinstance(other, Fingerprint):
            return NotImplemented
        return self._comparable() == other._comparable()

    def __repr__(self) -> str:
        return (
            f"<Fingerprint hash='{self.hash_string}' file='{self.file_name}' "
            f"jobs={len(self.jobs)} facets={len(self.facets)}>"
        )

from __future__ import annotations

from typing import ClassVar, Dict

from printstore.core.codec import FacetRegistry
from printstore.models.fingerprint import FingerprintFacet


class BuildResultFacet(FingerprintFacet):
    """Test outcome counts attached by a test-reporting plugin."""

    facet_type: ClassVar[str] = "testResult"

    passed: int = 0
    failed: int = 0


class KeepForeverFacet(FingerprintFacet):
    facet_type: ClassVar[str] = "keepForever"

    reason: str

    def is_fingerprint_deletion_blocked(self) -> bool:
        return True


class DeploymentFacet(FingerprintFacet):
    facet_type: ClassVar[str] = "deployment"

    environment: str
    labels: Dict[str, str] = {}


def make_registry() -> FacetRegistry:
    return FacetRegistry([BuildResultFacet, KeepForeverFacet, DeploymentFacet])

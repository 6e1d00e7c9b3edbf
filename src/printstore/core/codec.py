"""
printstore/core/codec.py

JSON codec for fingerprints and their facets.

Every encoded document has exactly one top-level key naming what it holds:
``{"fingerprint": {...}}`` for a whole fingerprint, or ``{"<facet_type>":
{...}}`` for a single facet. The storage layer relies on that shape to split
a facet into its type name and payload, and to hand a reassembled fingerprint
document back for decoding in one pass.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Type, Union

from pydantic import ValidationError

from printstore.errors import CodecError
from printstore.models.fingerprint import (
    BuildPtr,
    Fingerprint,
    FingerprintFacet,
    OpaqueFacet,
)
from printstore.models.range_set import RangeSet

logger = logging.getLogger(__name__)

FINGERPRINT_ROOT = "fingerprint"
KEY_HASH = "hash"
KEY_TIMESTAMP = "timestamp"
KEY_FILE_NAME = "fileName"
KEY_ORIGINAL = "original"
KEY_USAGES = "usages"
KEY_FACETS = "facets"
KEY_DELETION_BLOCKED = "deletionBlockedFacets"


class FacetRegistry:
    """Maps facet type names to the pydantic models that decode them."""

    def __init__(self, facet_classes: Iterable[Type[FingerprintFacet]] = ()):
        self._classes: Dict[str, Type[FingerprintFacet]] = {}
        for cls in facet_classes:
            self.register(cls)

    def register(self, cls: Type[FingerprintFacet]) -> Type[FingerprintFacet]:
        """
        Register a facet class under its ``facet_type``.

        Returns the class so this can be used as a decorator.
        """
        if not (isinstance(cls, type) and issubclass(cls, FingerprintFacet)):
            raise TypeError(f"{cls!r} is not a FingerprintFacet subclass")
        name = cls.facet_type
        existing = self._classes.get(name)
        if existing is not None and existing is not cls:
            raise ValueError(
                f"Facet type '{name}' already registered to {existing.__name__}"
            )
        self._classes[name] = cls
        return cls

    def get(self, facet_type: str) -> Optional[Type[FingerprintFacet]]:
        return self._classes.get(facet_type)

    def __contains__(self, facet_type: object) -> bool:
        return facet_type in self._classes

    @property
    def facet_types(self) -> List[str]:
        return sorted(self._classes)


default_registry = FacetRegistry()


def register_facet(cls: Type[FingerprintFacet]) -> Type[FingerprintFacet]:
    """Register ``cls`` with the default registry."""
    return default_registry.register(cls)


class JsonFingerprintCodec:
    """
    Encodes fingerprints and facets to JSON text and decodes them back.

    Facets of types missing from the registry decode to ``OpaqueFacet`` when
    they sit inside a fingerprint, and encode back to the same payload, so a
    record written by an instance with more facet plugins survives being
    loaded and saved elsewhere.
    """

    def __init__(self, registry: Optional[FacetRegistry] = None):
        self.registry = registry if registry is not None else default_registry

    # --- Encoding ---

    def encode(self, obj: Union[Fingerprint, FingerprintFacet]) -> str:
        if isinstance(obj, FingerprintFacet):
            return json.dumps(self._facet_to_dict(obj))
        if isinstance(obj, Fingerprint):
            return json.dumps(self._fingerprint_to_dict(obj))
        raise CodecError(f"Cannot encode object of type {type(obj).__name__}")

    def _facet_to_dict(self, facet: FingerprintFacet) -> Dict[str, Any]:
        if isinstance(facet, OpaqueFacet):
            return {facet.type_name: facet.payload}
        return {facet.facet_type: facet.model_dump(mode="json")}

    def _fingerprint_to_dict(self, fingerprint: Fingerprint) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            KEY_HASH: fingerprint.hash_string,
            KEY_TIMESTAMP: fingerprint.timestamp.isoformat(),
            KEY_FILE_NAME: fingerprint.file_name,
        }
        if fingerprint.original is not None:
            body[KEY_ORIGINAL] = fingerprint.original.model_dump()
        body[KEY_USAGES] = {
            job: str(rs) for job, rs in fingerprint.usages.items() if not rs.is_empty()
        }
        body[KEY_FACETS] = [self._facet_to_dict(f) for f in fingerprint.facets]
        blocked = sorted(
            f.facet_name() for f in fingerprint.facets if f.is_fingerprint_deletion_blocked()
        )
        if blocked:
            body[KEY_DELETION_BLOCKED] = blocked
        return {FINGERPRINT_ROOT: body}

    # --- Decoding ---

    def decode(self, text: str) -> Union[Fingerprint, FingerprintFacet]:
        try:
            document = json.loads(text)
        except (TypeError, ValueError) as e:
            raise CodecError(f"Invalid JSON document: {e}") from e

        name, body = _single_entry(document)
        if name == FINGERPRINT_ROOT:
            return self._fingerprint_from_dict(body)

        cls = self.registry.get(name)
        if cls is None:
            raise CodecError(f"Unknown facet type '{name}'")
        return self._facet_from_dict(cls, body)

    def _facet_from_dict(
        self, cls: Type[FingerprintFacet], body: Any
    ) -> FingerprintFacet:
        try:
            return cls.model_validate(body)
        except ValidationError as e:
            raise CodecError(f"Invalid '{cls.facet_type}' facet payload: {e}") from e

    def _fingerprint_from_dict(self, body: Any) -> Fingerprint:
        if not isinstance(body, dict):
            raise CodecError("Fingerprint document body must be an object")

        try:
            usages = {
                job: RangeSet.from_string(ranges)
                for job, ranges in (body.get(KEY_USAGES) or {}).items()
            }
        except (AttributeError, ValueError) as e:
            raise CodecError(f"Invalid usages in fingerprint document: {e}") from e

        blocked = set(body.get(KEY_DELETION_BLOCKED) or ())
        facets: List[FingerprintFacet] = []
        for entry in body.get(KEY_FACETS) or []:
            name, payload = _single_entry(entry)
            cls = self.registry.get(name)
            if cls is None:
                logger.debug(
                    "Keeping facet of unregistered type '%s' on fingerprint %s as is",
                    name,
                    body.get(KEY_HASH),
                )
                facets.append(_opaque_facet(name, payload, name in blocked))
                continue
            facets.append(self._facet_from_dict(cls, payload))

        original = body.get(KEY_ORIGINAL)
        try:
            return Fingerprint(
                hash_string=body.get(KEY_HASH),
                file_name=body.get(KEY_FILE_NAME),
                timestamp=body.get(KEY_TIMESTAMP),
                original=BuildPtr.model_validate(original) if original else None,
                usages=usages,
                facets=facets,
            )
        except ValidationError as e:
            raise CodecError(f"Invalid fingerprint document: {e}") from e


def _opaque_facet(name: str, payload: Any, deletion_blocked: bool) -> OpaqueFacet:
    fields: Dict[str, Any] = {
        "type_name": name,
        "payload": payload,
        "deletion_blocked": deletion_blocked,
    }
    stamp = payload.get("timestamp") if isinstance(payload, dict) else None
    # 0 when the payload carries no integer timestamp.
    fields["timestamp"] = stamp if isinstance(stamp, int) and not isinstance(stamp, bool) else 0
    return OpaqueFacet(**fields)


def _single_entry(document: Any) -> tuple[str, Any]:
    if not isinstance(document, dict) or len(document) != 1:
        raise CodecError("Expected an object with exactly one top-level key")
    return next(iter(document.items()))

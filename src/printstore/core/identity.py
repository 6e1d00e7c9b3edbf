"""
printstore/core/identity.py

Stable identity of the reporting instance that owns stored fingerprints.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes

from printstore.core.settings import PrintstoreSettings

logger = logging.getLogger(__name__)

_DEFAULT: Optional["InstanceIdentity"] = None
_DEFAULT_LOCK = threading.Lock()


class InstanceIdentity:
    """
    Identity derived from the public half of an instance key.

    The instance id is the MD5 hex digest of the DER-encoded
    ``SubjectPublicKeyInfo``, so it is stable for as long as the key file is
    kept and differs between deployments that own different keys.
    """

    def __init__(self, public_key: PublicKeyTypes):
        self._public_key = public_key
        encoded = public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        self._instance_id = hashlib.md5(encoded).hexdigest()

    @property
    def public_key(self) -> PublicKeyTypes:
        return self._public_key

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @classmethod
    def from_pem(cls, data: bytes) -> "InstanceIdentity":
        """Build an identity from a PEM private or public key."""
        try:
            private_key = serialization.load_pem_private_key(data, password=None)
        except ValueError:
            return cls(serialization.load_pem_public_key(data))
        return cls(private_key.public_key())

    @classmethod
    def from_key_file(cls, path: Union[str, Path]) -> "InstanceIdentity":
        """
        Load the identity key at ``path``, creating it when it does not exist.

        A created key is an unencrypted 2048-bit RSA private key in PKCS8 PEM,
        written with owner-only permissions. The file only appears once fully
        written; when another process creates it first, that key is used.
        """
        key_path = Path(path)
        if not key_path.exists():
            logger.warning(
                "Instance identity key %s not found; generating a new one.", key_path
            )
            key_path.parent.mkdir(parents=True, exist_ok=True)
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
            pem = private_key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            # mkstemp creates the file with owner-only permissions.
            fd, tmp_name = tempfile.mkstemp(
                dir=str(key_path.parent), prefix=f".{key_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(pem)
                os.link(tmp_name, str(key_path))
            except FileExistsError:
                logger.info(
                    "Instance identity key %s was created concurrently; using it.",
                    key_path,
                )
                return cls.from_pem(key_path.read_bytes())
            finally:
                os.unlink(tmp_name)
            return cls(private_key.public_key())
        return cls.from_pem(key_path.read_bytes())

    @classmethod
    def generate(cls) -> "InstanceIdentity":
        """Identity backed by a fresh in-memory key; not stable across processes."""
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        return cls(private_key.public_key())

    def __repr__(self) -> str:
        return f"<InstanceIdentity id='{self._instance_id}'>"


def get_instance_identity() -> InstanceIdentity:
    """Return the process-wide identity configured by ``PRINTSTORE_IDENTITY_KEY``."""
    global _DEFAULT
    with _DEFAULT_LOCK:
        if _DEFAULT is None:
            settings = PrintstoreSettings.from_env()
            _DEFAULT = InstanceIdentity.from_key_file(settings.identity_key_path)
        return _DEFAULT


def reset_instance_identity() -> None:
    global _DEFAULT
    with _DEFAULT_LOCK:
        _DEFAULT = None

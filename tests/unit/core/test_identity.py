from __future__ import annotations

import hashlib
import os
import stat
import sys

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from printstore.core.identity import InstanceIdentity, get_instance_identity


def _private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def test_instance_id_is_md5_of_der_public_key() -> None:
    key = _private_key()
    der = key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    identity = InstanceIdentity(key.public_key())

    assert identity.instance_id == hashlib.md5(der).hexdigest()
    assert len(identity.instance_id) == 32


def test_private_and_public_pem_give_same_identity() -> None:
    key = _private_key()
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    assert (
        InstanceIdentity.from_pem(private_pem).instance_id
        == InstanceIdentity.from_pem(public_pem).instance_id
    )


def test_from_key_file_creates_and_then_reuses_key(tmp_path) -> None:
    key_path = tmp_path / "keys" / "identity.pem"

    created = InstanceIdentity.from_key_file(key_path)
    reloaded = InstanceIdentity.from_key_file(key_path)

    assert key_path.exists()
    assert created.instance_id == reloaded.instance_id
    if sys.platform != "win32":
        assert stat.S_IMODE(os.stat(key_path).st_mode) == 0o600


def test_generated_identities_differ() -> None:
    assert InstanceIdentity.generate().instance_id != InstanceIdentity.generate().instance_id


def test_default_identity_reads_env_and_is_cached(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("PRINTSTORE_IDENTITY_KEY", str(tmp_path / "id.pem"))

    first = get_instance_identity()

    assert get_instance_identity() is first
    assert (tmp_path / "id.pem").exists()


def test_from_pem_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        InstanceIdentity.from_pem(b"not a key")


def test_from_key_file_uses_key_created_concurrently(tmp_path, monkeypatch) -> None:
    key_path = tmp_path / "identity.pem"
    winner = InstanceIdentity.from_key_file(tmp_path / "winner.pem")

    def link_after_other_process(src, dst):
        key_path.write_bytes((tmp_path / "winner.pem").read_bytes())
        raise FileExistsError(dst)

    monkeypatch.setattr(os, "link", link_after_other_process)

    identity = InstanceIdentity.from_key_file(key_path)

    assert identity.instance_id == winner.instance_id
    assert sorted(p.name for p in tmp_path.iterdir()) == ["identity.pem", "winner.pem"]

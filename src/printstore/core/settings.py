from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_DB_URL = "sqlite:///fingerprints.db"
DEFAULT_IDENTITY_KEY = os.path.join(".printstore", "identity.pem")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    lowered = raw.strip().lower()
    if lowered in {"none", "null", "nil"}:
        return None
    try:
        return int(lowered)
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name, "")
    if raw.strip() == "":
        return default
    return raw.strip()


@dataclass(frozen=True)
class PrintstoreSettings:
    db_url: str = DEFAULT_DB_URL
    db_echo: bool = False
    db_pool_pre_ping: bool = True
    db_connect_timeout: Optional[int] = None
    identity_key_path: str = DEFAULT_IDENTITY_KEY

    @classmethod
    def from_env(cls) -> "PrintstoreSettings":
        return cls(
            db_url=_env_str("PRINTSTORE_DB_URL", DEFAULT_DB_URL),
            db_echo=_env_bool("PRINTSTORE_DB_ECHO", False),
            db_pool_pre_ping=_env_bool("PRINTSTORE_DB_POOL_PRE_PING", True),
            db_connect_timeout=_env_int("PRINTSTORE_DB_CONNECT_TIMEOUT", None),
            identity_key_path=_env_str("PRINTSTORE_IDENTITY_KEY", DEFAULT_IDENTITY_KEY),
        )

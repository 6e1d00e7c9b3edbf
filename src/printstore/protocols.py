from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from sqlalchemy.engine import Engine

if TYPE_CHECKING:
    from printstore.core.storage import FingerprintStorage

ProgressListener = Callable[[str], None]


@runtime_checkable
class DatabaseLike(Protocol):
    def get_data_source(self) -> Engine: ...


@runtime_checkable
class InstanceIdentityLike(Protocol):
    @property
    def instance_id(self) -> str: ...


@runtime_checkable
class PayloadCodec(Protocol):
    def encode(self, obj: Any) -> str: ...

    def decode(self, text: str) -> Any: ...


@runtime_checkable
class CleanupStrategy(Protocol):
    def cleanup(
        self,
        storage: "FingerprintStorage",
        instance_id: str,
        listener: Optional[ProgressListener] = None,
    ) -> int: ...

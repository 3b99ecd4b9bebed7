"""Path-addressed document store interface.

Paths alternate collection and document segments, e.g.
``users/{uid}/dailyActivities/{dateKey}_{activityId}``.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any


class _ServerTimestamp:
    """Sentinel replaced by the store's clock at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Increment:
    """Sentinel that adds ``amount`` to the stored numeric value."""

    amount: int | float = 1


@dataclass
class DocumentSnapshot:
    path: str
    data: dict[str, Any] | None = field(default=None)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def exists(self) -> bool:
        return self.data is not None

    def to_dict(self) -> dict[str, Any]:
        return dict(self.data or {})


SnapshotCallback = Callable[[list[DocumentSnapshot]], None]
Unsubscribe = Callable[[], None]


def split_path(path: str) -> tuple[str, str]:
    """Split a document path into (collection path, document id)."""
    parts = [p for p in path.split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


class DocumentStore(ABC):
    """Async CRUD + live subscription over a hosted document hierarchy."""

    @abstractmethod
    async def get(self, path: str) -> DocumentSnapshot:
        """Read one document; a missing document yields ``exists == False``."""

    @abstractmethod
    async def set(self, path: str, fields: dict[str, Any], merge: bool = False) -> None:
        """Create or overwrite a document; ``merge`` keeps unspecified fields."""

    @abstractmethod
    async def update(self, path: str, fields: dict[str, Any]) -> None:
        """Change fields of an existing document (DocumentNotFoundError otherwise)."""

    @abstractmethod
    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Delete one document. Sub-collections are left in place."""

    @abstractmethod
    async def list_collection(self, collection_path: str) -> list[DocumentSnapshot]:
        """Return every document directly under a collection."""

    @abstractmethod
    async def query(
        self, collection_path: str, filters: dict[str, Any]
    ) -> list[DocumentSnapshot]:
        """Return documents whose fields equal every value in ``filters``."""

    @abstractmethod
    def subscribe(self, collection_path: str, callback: SnapshotCallback) -> Unsubscribe:
        """Deliver the collection contents now and after every change."""

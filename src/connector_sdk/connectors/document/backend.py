"""
Storage seam of the document connector.

:class:`DocumentConnector` owns sampling, caching, subscriptions and result
normalisation; everything that talks to an actual store goes through a
:class:`DocumentBackend`. Backends translate their driver exceptions into the
connector error taxonomy before they leave the backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Protocol, Sequence, Tuple, TypeVar, runtime_checkable

from ...core.schema import CollectionIndex
from ..base import utcnow

T = TypeVar("T")

ChangeType = Literal["added", "modified", "removed"]


@dataclass(slots=True)
class DocumentQuery:
    """Structured find request: filter document, projection, sort keys and window."""

    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[List[str]] = None
    sort: List[Tuple[str, int]] = field(default_factory=list)
    skip: Optional[int] = None
    limit: Optional[int] = None


@dataclass(slots=True)
class WriteOutcome:
    matched: int = 0
    modified: int = 0
    upserted_id: Any = None


@dataclass(slots=True)
class DocumentChange:
    type: ChangeType
    document_id: str
    path: str
    document: Optional[Dict[str, Any]] = None
    old_document: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)


class WatchHandle(Protocol):
    def close(self) -> None: ...


@runtime_checkable
class DocumentBackend(Protocol):
    """Operations a document store must provide to back a :class:`DocumentConnector`."""

    name: str

    def open(self, config: Any, credentials: Mapping[str, Any]) -> None: ...

    def close(self) -> None: ...

    def server_info(self) -> Dict[str, Any]: ...

    def list_collections(self) -> List[str]: ...

    def sample(self, collection: str, size: int) -> List[Dict[str, Any]]: ...

    def find(self, collection: str, query: DocumentQuery) -> List[Dict[str, Any]]: ...

    def count(self, collection: str, filter: Mapping[str, Any]) -> int: ...

    def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]: ...

    def explain(self, collection: str, query: DocumentQuery) -> Dict[str, Any]: ...

    def insert(self, collection: str, documents: Sequence[Mapping[str, Any]], *, session: Any = None) -> List[Any]: ...

    def update(
        self,
        collection: str,
        filter: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteOutcome: ...

    def delete(self, collection: str, filter: Mapping[str, Any], *, multi: bool = False, session: Any = None) -> int: ...

    def indexes(self, collection: str) -> List[CollectionIndex]: ...

    def transaction(self, work: Callable[[Any], T]) -> T: ...

    def watch(
        self,
        collection: str,
        on_change: Callable[[DocumentChange], None],
        *,
        filter: Optional[Mapping[str, Any]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> WatchHandle: ...

    def coerce_id(self, value: Any) -> Any: ...


__all__ = ["ChangeType", "DocumentBackend", "DocumentChange", "DocumentQuery", "WatchHandle", "WriteOutcome"]

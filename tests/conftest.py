from __future__ import annotations

import copy
import itertools
from typing import Any, Callable, Dict, List, Mapping, Optional

import pytest
from typer.testing import CliRunner

from connector_sdk.bootstrap import initialize_connectors
from connector_sdk.cli.main import app
from connector_sdk.config import StaticCredentialsProvider
from connector_sdk.connectors.document.backend import DocumentChange, DocumentQuery, WriteOutcome
from connector_sdk.core.errors import ConnectorConnectionError, DuplicateKeyError
from connector_sdk.core.registry import RegistryConfig
from connector_sdk.core.schema import CollectionIndex


@pytest.fixture()
def cli_runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def cli_app():
    return app


@pytest.fixture()
def sqlite_config(tmp_path) -> Dict[str, Any]:
    return {"type": "sqlite", "name": "local", "database": str(tmp_path / "app.db")}


@pytest.fixture()
def credentials_provider() -> StaticCredentialsProvider:
    return StaticCredentialsProvider()


@pytest.fixture()
def registry(credentials_provider):
    registry = initialize_connectors(credentials_provider, RegistryConfig(enable_logging=False))
    yield registry
    registry.shutdown()


def _matches(document: Mapping[str, Any], filter: Mapping[str, Any]) -> bool:
    for key, expected in filter.items():
        value = document.get(key)
        if isinstance(expected, Mapping) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


class _Handle:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeDocumentBackend:
    """In-memory document store honouring the backend contract used by the document connector."""

    name = "memory"

    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None, *, fail_open: bool = False) -> None:
        self.collections: Dict[str, List[Dict[str, Any]]] = {name: [dict(doc) for doc in docs] for name, docs in (collections or {}).items()}
        self.fail_open = fail_open
        self.opened = False
        self.sample_calls = 0
        self.handles: List[_Handle] = []
        self.listeners: Dict[str, List[Callable[[DocumentChange], None]]] = {}
        self._ids = itertools.count(1)

    def open(self, config: Any, credentials: Mapping[str, Any]) -> None:
        if self.fail_open:
            raise ConnectorConnectionError("server selection timed out")
        self.opened = True

    def close(self) -> None:
        self.opened = False

    def server_info(self) -> Dict[str, Any]:
        return {"version": "7.0.0"}

    def list_collections(self) -> List[str]:
        return sorted(self.collections)

    def sample(self, collection: str, size: int) -> List[Dict[str, Any]]:
        self.sample_calls += 1
        return [dict(doc) for doc in self.collections.get(collection, [])[:size]]

    def find(self, collection: str, query: DocumentQuery) -> List[Dict[str, Any]]:
        rows = [dict(doc) for doc in self.collections.get(collection, []) if _matches(doc, query.filter)]
        for key, direction in reversed(query.sort):
            rows.sort(key=lambda row: row.get(key), reverse=direction < 0)
        if query.skip:
            rows = rows[query.skip :]
        if query.limit is not None:
            rows = rows[: query.limit]
        if query.projection:
            rows = [{key: row[key] for key in query.projection if key in row} for row in rows]
        return rows

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        return sum(1 for doc in self.collections.get(collection, []) if _matches(doc, filter))

    def aggregate(self, collection: str, pipeline):
        return [{"_id": None, "count": self.count(collection, {})}]

    def explain(self, collection: str, query: DocumentQuery) -> Dict[str, Any]:
        return {"collection": collection, "filter": dict(query.filter), "stage": "COLLSCAN"}

    def insert(self, collection: str, documents, *, session: Any = None) -> List[Any]:
        store = self.collections.setdefault(collection, [])
        ids = []
        for document in documents:
            document = dict(document)
            if "_id" in document and any(existing.get("_id") == document["_id"] for existing in store):
                raise DuplicateKeyError(f"E11000 duplicate key error collection: {collection}")
            document.setdefault("_id", f"id{next(self._ids)}")
            store.append(document)
            ids.append(document["_id"])
        return ids

    def update(self, collection: str, filter, changes, *, multi: bool = False, upsert: bool = False, session: Any = None) -> WriteOutcome:
        store = self.collections.setdefault(collection, [])
        matched = [doc for doc in store if _matches(doc, filter)]
        if not multi:
            matched = matched[:1]
        for document in matched:
            document.update(changes.get("$set", {}))
        if not matched and upsert:
            created = {**dict(filter), **changes.get("$set", {})}
            created.setdefault("_id", f"id{next(self._ids)}")
            store.append(created)
            return WriteOutcome(upserted_id=created["_id"])
        return WriteOutcome(matched=len(matched), modified=len(matched))

    def delete(self, collection: str, filter, *, multi: bool = False, session: Any = None) -> int:
        store = self.collections.get(collection, [])
        doomed = [doc for doc in store if _matches(doc, filter)]
        if not multi:
            doomed = doomed[:1]
        self.collections[collection] = [doc for doc in store if not any(doc is item for item in doomed)]
        return len(doomed)

    def indexes(self, collection: str) -> List[CollectionIndex]:
        return [CollectionIndex(name="_id_", fields=["_id"], unique=True)]

    def transaction(self, work):
        snapshot = copy.deepcopy(self.collections)
        try:
            return work(object())
        except Exception:
            self.collections = snapshot
            raise

    def watch(self, collection: str, on_change, *, filter=None, on_error=None) -> _Handle:
        handle = _Handle()
        self.handles.append(handle)
        self.listeners.setdefault(collection, []).append(on_change)
        return handle

    def coerce_id(self, value: Any) -> Any:
        return value


@pytest.fixture()
def document_backend() -> FakeDocumentBackend:
    return FakeDocumentBackend(
        {
            "users": [
                {"_id": "u1", "name": "Ada", "age": 36, "active": True},
                {"_id": "u2", "name": "Grace", "age": 45, "active": False},
                {"_id": "u3", "name": "Linus", "age": 28, "active": True},
            ],
            "events": [{"_id": "e1", "kind": "login", "at": "2024-05-01T10:00:00Z"}],
        }
    )


@pytest.fixture()
def make_document_backend() -> Callable[..., FakeDocumentBackend]:
    return FakeDocumentBackend

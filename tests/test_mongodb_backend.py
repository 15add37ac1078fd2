from __future__ import annotations

import threading
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from bson import DBRef, Decimal128, ObjectId
from pymongo.errors import AutoReconnect, DuplicateKeyError as MongoDuplicateKeyError, OperationFailure

from connector_sdk.connectors.document.mongodb import MongoBackend, mongo_type_hook
from connector_sdk.core.errors import ConnectorConnectionError, DuplicateKeyError, RefusedConnectionError
from connector_sdk.core.schema import DatabaseType


class FakeStream:
    def __init__(self, changes: List[Dict[str, Any]], failure: Exception | None = None) -> None:
        self._changes = list(changes)
        self._failure = failure
        self.alive = True
        self.closed = False

    def try_next(self):
        if self._changes:
            return self._changes.pop(0)
        if self._failure is not None:
            raise self._failure
        return None

    def close(self) -> None:
        self.closed = True
        self.alive = False


class StubCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.pipelines: List[List[Dict[str, Any]]] = []
        self.documents: List[Dict[str, Any]] = []
        self.failure: Exception | None = None
        self.stream: FakeStream | None = None
        self.watched: List[Dict[str, Any]] | None = None

    def _check(self) -> None:
        if self.failure is not None:
            raise self.failure

    def aggregate(self, pipeline):
        self._check()
        self.pipelines.append(pipeline)
        return iter(self.documents)

    def insert_many(self, documents, session=None):
        self._check()
        return SimpleNamespace(inserted_ids=[document.get("_id") for document in documents])

    def watch(self, pipeline, full_document=None):
        self.watched = pipeline
        return self.stream


class StubDatabase:
    def __init__(self) -> None:
        self.collections: Dict[str, StubCollection] = {}

    def __getitem__(self, name: str) -> StubCollection:
        return self.collections.setdefault(name, StubCollection(name))


class StubClient:
    def __init__(self) -> None:
        self.database = StubDatabase()
        self.target: str | None = None
        self.options: Dict[str, Any] = {}
        self.closed = False

    def __call__(self, target: str, **options: Any) -> "StubClient":
        self.target = target
        self.options = options
        return self

    def __getitem__(self, name: str) -> StubDatabase:
        return self.database

    def close(self) -> None:
        self.closed = True


@pytest.fixture()
def client() -> StubClient:
    return StubClient()


@pytest.fixture()
def backend(client):
    backend = MongoBackend(client_factory=client)
    backend.open(SimpleNamespace(host="db", port=27017, database="shop", replica_set="rs0"), {"username": "app", "password": "pw"})
    yield backend
    backend.close()


def test_open_builds_client_options(backend, client):
    assert client.target == "mongodb://db:27017"
    assert client.options["username"] == "app"
    assert client.options["replicaSet"] == "rs0"
    assert client.options["serverSelectionTimeoutMS"] == 5000

    backend.close()

    assert client.closed
    with pytest.raises(ConnectorConnectionError):
        backend.sample("users", 1)


def test_sample_uses_sample_stage(backend, client):
    users = client.database["users"]
    users.documents = [{"_id": 1, "name": "Ada"}]

    assert backend.sample("users", 25) == [{"_id": 1, "name": "Ada"}]
    assert users.pipelines == [[{"$sample": {"size": 25}}]]


def test_driver_errors_are_classified(backend, client):
    users = client.database["users"]
    users.failure = MongoDuplicateKeyError("E11000 duplicate key error collection: shop.users index: email_1 dup key")

    with pytest.raises(DuplicateKeyError) as duplicate:
        backend.insert("users", [{"_id": 1, "email": "ada@example.com"}])

    users.failure = AutoReconnect("db:27017: [Errno 111] Connection refused")
    with pytest.raises(RefusedConnectionError) as refused:
        backend.sample("users", 5)

    assert duplicate.value.metadata == {"table": "users", "operation": "insert"}
    assert not duplicate.value.retryable
    assert refused.value.retryable
    assert refused.value.metadata["operation"] == "sample"


def test_mongo_type_hook():
    assert mongo_type_hook(ObjectId()) is DatabaseType.TEXT
    assert mongo_type_hook(DBRef("users", ObjectId())) is DatabaseType.REFERENCE
    assert mongo_type_hook(Decimal128("12.50")) is DatabaseType.DECIMAL
    assert mongo_type_hook("plain") is None


def test_watch_survives_listener_errors(backend, client):
    users = client.database["users"]
    users.stream = FakeStream(
        [
            {"operationType": "insert", "documentKey": {"_id": 1}, "fullDocument": {"_id": 1}},
            {"operationType": "drop"},
            {"operationType": "update", "documentKey": {"_id": 2}, "fullDocument": {"_id": 2, "name": "Ada"}},
        ]
    )
    delivered = []
    done = threading.Event()

    def on_change(change):
        if change.document_id == "1":
            raise RuntimeError("listener bug")
        delivered.append(change)
        done.set()

    handle = backend.watch("users", on_change, filter={"status": "active"})

    assert done.wait(2)
    handle.close(timeout=2)

    assert users.watched == [{"$match": {"fullDocument.status": "active"}}]
    assert users.stream.closed
    assert not handle._thread.is_alive()
    assert [(change.type, change.path) for change in delivered] == [("modified", "users/2")]
    assert delivered[0].document == {"_id": 2, "name": "Ada"}


def test_watch_reports_stream_failures(backend, client):
    users = client.database["users"]
    users.stream = FakeStream([], failure=OperationFailure("cursor killed"))
    errors = []
    failed = threading.Event()

    def on_error(exc):
        errors.append(exc)
        failed.set()

    handle = backend.watch("users", lambda change: None, on_error=on_error)

    assert failed.wait(2)
    handle.close(timeout=2)
    assert isinstance(errors[0], OperationFailure)

"""
MongoDB backend built on pymongo.

Sampling uses the ``$sample`` aggregation stage, real-time listeners run a
change stream on a daemon thread, and transactions use a client session with
``with_transaction`` (replica set or sharded cluster required).
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, TypeVar

from bson import DBRef, Decimal128, ObjectId
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from ...core.errors import ConnectorConnectionError, ConnectorError, wrap_database_error
from ...core.logging import get_logger
from ...core.schema import CollectionIndex, DatabaseType
from .backend import DocumentChange, DocumentQuery, WriteOutcome

T = TypeVar("T")

_CHANGE_TYPES = {"insert": "added", "update": "modified", "replace": "modified", "delete": "removed"}


def mongo_type_hook(value: Any) -> Optional[DatabaseType]:
    """Recognise BSON-specific values during schema sampling."""

    if isinstance(value, ObjectId):
        return DatabaseType.TEXT
    if isinstance(value, DBRef):
        return DatabaseType.REFERENCE
    if isinstance(value, Decimal128):
        return DatabaseType.DECIMAL
    return None


def _plain(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``document`` with object ids rendered as strings."""

    result: Dict[str, Any] = {}
    for key, value in document.items():
        if isinstance(value, ObjectId):
            result[key] = str(value)
        elif isinstance(value, Decimal128):
            result[key] = value.to_decimal()
        elif isinstance(value, Mapping):
            result[key] = _plain(value)
        elif isinstance(value, list):
            result[key] = [_plain(item) if isinstance(item, Mapping) else str(item) if isinstance(item, ObjectId) else item for item in value]
        else:
            result[key] = value
    return result


class _ChangeStreamWatcher:
    """Drives one change stream on a daemon thread until :meth:`close`."""

    def __init__(
        self,
        collection: Any,
        pipeline: List[Dict[str, Any]],
        on_change: Callable[[DocumentChange], None],
        on_error: Optional[Callable[[Exception], None]],
        logger: Any,
    ) -> None:
        self._collection = collection
        self._pipeline = pipeline
        self._on_change = on_change
        self._on_error = on_error
        self._logger = logger
        self._stopped = threading.Event()
        self._stream: Any = None
        self._thread = threading.Thread(target=self._run, name=f"change-stream-{collection.name}", daemon=True)

    def start(self) -> "_ChangeStreamWatcher":
        self._stream = self._collection.watch(self._pipeline, full_document="updateLookup")
        self._thread.start()
        return self

    def _run(self) -> None:
        try:
            while not self._stopped.is_set() and self._stream.alive:
                change = self._stream.try_next()
                if change is None:
                    self._stopped.wait(0.1)
                    continue
                self._deliver(change)
        except PyMongoError as exc:
            if self._stopped.is_set():
                return
            self._logger.warning("Change stream failed", extra={"collection": self._collection.name, "error": str(exc)})
            if self._on_error is not None:
                self._on_error(exc)

    def _deliver(self, change: Mapping[str, Any]) -> None:
        kind = _CHANGE_TYPES.get(change.get("operationType"))
        if kind is None:
            return
        document_id = str(change.get("documentKey", {}).get("_id"))
        full = change.get("fullDocument")
        event = DocumentChange(
            type=kind,  # type: ignore[arg-type]
            document_id=document_id,
            path=f"{self._collection.name}/{document_id}",
            document=_plain(full) if full else None,
        )
        try:
            self._on_change(event)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "Change listener failed",
                extra={"collection": self._collection.name, "document_id": document_id, "error": str(exc)},
            )

    def close(self, timeout: float = 5.0) -> None:
        self._stopped.set()
        if self._stream is not None:
            self._stream.close()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)


class MongoBackend:
    """
    :class:`~connector_sdk.connectors.document.backend.DocumentBackend` for MongoDB.

    Parameters
    ----------
    client_factory:
        Callable building the ``MongoClient``; defaults to :class:`pymongo.MongoClient`.
        Tests pass a stub client.
    """

    name = "mongodb"

    def __init__(self, *, client_factory: Callable[..., Any] = MongoClient) -> None:
        self._client_factory = client_factory
        self._client: Any = None
        self._database: Any = None
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def _wrap(self, exc: PyMongoError, operation: str, collection: Optional[str] = None) -> ConnectorError:
        return wrap_database_error(exc, operation=operation, table=collection)

    def _client_options(self, config: Any, credentials: Mapping[str, Any]) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "serverSelectionTimeoutMS": getattr(config, "server_selection_timeout_ms", 5000),
            "appname": "connector-sdk",
        }
        pool = getattr(config, "pool_config", None)
        if pool is not None:
            options["minPoolSize"] = pool.min
            options["maxPoolSize"] = pool.max
            options["maxIdleTimeMS"] = pool.idle_timeout_ms
            options["connectTimeoutMS"] = pool.connection_timeout_ms
            options["waitQueueTimeoutMS"] = pool.acquire_timeout_ms
        ssl = getattr(config, "ssl_config", None)
        if ssl is not None and ssl.enabled:
            options["tls"] = True
            options["tlsAllowInvalidCertificates"] = not ssl.reject_unauthorized
            if ssl.ca:
                options["tlsCAFile"] = ssl.ca
            if ssl.cert:
                options["tlsCertificateKeyFile"] = ssl.cert
        if credentials.get("username"):
            options["username"] = credentials["username"]
            options["password"] = credentials.get("password")
        auth_source = credentials.get("authSource") or credentials.get("auth_source") or getattr(config, "auth_source", None)
        if auth_source:
            options["authSource"] = auth_source
        if getattr(config, "replica_set", None):
            options["replicaSet"] = config.replica_set
        if getattr(config, "read_preference", None):
            options["readPreference"] = config.read_preference
        return options

    def open(self, config: Any, credentials: Mapping[str, Any]) -> None:
        target = (
            credentials.get("connectionString")
            or credentials.get("connection_string")
            or getattr(config, "connection_string", None)
            or f"mongodb://{config.host}:{config.port}"
        )
        try:
            self._client = self._client_factory(target, **self._client_options(config, credentials))
            self._database = self._client[config.database]
        except PyMongoError as exc:
            raise self._wrap(exc, "connect") from exc

    def close(self) -> None:
        client, self._client, self._database = self._client, None, None
        if client is not None:
            client.close()

    def _db(self) -> Any:
        if self._database is None:
            raise ConnectorConnectionError("MongoDB client is not open", metadata={"connectorType": self.name})
        return self._database

    def server_info(self) -> Dict[str, Any]:
        try:
            self._db().command("ping")
            info = self._client.server_info()
        except PyMongoError as exc:
            raise self._wrap(exc, "connect") from exc
        return {"version": info.get("version"), "gitVersion": info.get("gitVersion")}

    def list_collections(self) -> List[str]:
        try:
            return sorted(name for name in self._db().list_collection_names() if not name.startswith("system."))
        except PyMongoError as exc:
            raise self._wrap(exc, "listCollections") from exc

    def sample(self, collection: str, size: int) -> List[Dict[str, Any]]:
        try:
            return list(self._db()[collection].aggregate([{"$sample": {"size": size}}]))
        except PyMongoError as exc:
            raise self._wrap(exc, "sample", collection) from exc

    def find(self, collection: str, query: DocumentQuery) -> List[Dict[str, Any]]:
        projection = {name: 1 for name in query.projection} if query.projection else None
        try:
            cursor = self._db()[collection].find(query.filter, projection)
            if query.sort:
                cursor = cursor.sort(list(query.sort))
            if query.skip:
                cursor = cursor.skip(query.skip)
            if query.limit:
                cursor = cursor.limit(query.limit)
            return [_plain(document) for document in cursor]
        except PyMongoError as exc:
            raise self._wrap(exc, "find", collection) from exc

    def count(self, collection: str, filter: Mapping[str, Any]) -> int:
        try:
            target = self._db()[collection]
            if not filter:
                return int(target.estimated_document_count())
            return int(target.count_documents(dict(filter)))
        except PyMongoError as exc:
            raise self._wrap(exc, "count", collection) from exc

    def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        try:
            return [_plain(document) for document in self._db()[collection].aggregate([dict(stage) for stage in pipeline])]
        except PyMongoError as exc:
            raise self._wrap(exc, "aggregate", collection) from exc

    def explain(self, collection: str, query: DocumentQuery) -> Dict[str, Any]:
        try:
            return dict(self._db().command("explain", {"find": collection, "filter": query.filter}, verbosity="queryPlanner"))
        except PyMongoError as exc:
            raise self._wrap(exc, "explain", collection) from exc

    def insert(self, collection: str, documents: Sequence[Mapping[str, Any]], *, session: Any = None) -> List[Any]:
        try:
            result = self._db()[collection].insert_many([dict(item) for item in documents], session=session)
        except PyMongoError as exc:
            raise self._wrap(exc, "insert", collection) from exc
        return [str(item) if isinstance(item, ObjectId) else item for item in result.inserted_ids]

    def update(
        self,
        collection: str,
        filter: Mapping[str, Any],
        changes: Mapping[str, Any],
        *,
        multi: bool = False,
        upsert: bool = False,
        session: Any = None,
    ) -> WriteOutcome:
        target = self._db()[collection]
        try:
            if multi:
                result = target.update_many(dict(filter), dict(changes), upsert=upsert, session=session)
            else:
                result = target.update_one(dict(filter), dict(changes), upsert=upsert, session=session)
        except PyMongoError as exc:
            raise self._wrap(exc, "update", collection) from exc
        upserted = result.upserted_id
        return WriteOutcome(
            matched=result.matched_count,
            modified=result.modified_count,
            upserted_id=str(upserted) if isinstance(upserted, ObjectId) else upserted,
        )

    def delete(self, collection: str, filter: Mapping[str, Any], *, multi: bool = False, session: Any = None) -> int:
        target = self._db()[collection]
        try:
            result = target.delete_many(dict(filter), session=session) if multi else target.delete_one(dict(filter), session=session)
        except PyMongoError as exc:
            raise self._wrap(exc, "delete", collection) from exc
        return result.deleted_count

    def indexes(self, collection: str) -> List[CollectionIndex]:
        try:
            described = self._db()[collection].index_information()
        except PyMongoError as exc:
            raise self._wrap(exc, "indexes", collection) from exc
        indexes = []
        for name, spec in described.items():
            keys = spec.get("key", [])
            fields = [key for key, _ in keys]
            kinds = {direction for _, direction in keys}
            if "text" in kinds:
                kind = "text"
            elif "2dsphere" in kinds or "2d" in kinds:
                kind = "geo"
            elif len(fields) > 1:
                kind = "compound"
            else:
                kind = "single"
            indexes.append(
                CollectionIndex(
                    name=name,
                    fields=fields,
                    type=kind,
                    unique=bool(spec.get("unique")) or name == "_id_",
                    sparse=bool(spec.get("sparse")),
                    metadata={"ascending": all(direction == ASCENDING for _, direction in keys)},
                )
            )
        return indexes

    def transaction(self, work: Callable[[Any], T]) -> T:
        self._db()
        try:
            with self._client.start_session() as session:
                return session.with_transaction(work)
        except PyMongoError as exc:
            raise self._wrap(exc, "transaction") from exc

    def watch(
        self,
        collection: str,
        on_change: Callable[[DocumentChange], None],
        *,
        filter: Optional[Mapping[str, Any]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> _ChangeStreamWatcher:
        pipeline: List[Dict[str, Any]] = []
        if filter:
            pipeline.append({"$match": {f"fullDocument.{key}": value for key, value in filter.items()}})
        try:
            return _ChangeStreamWatcher(self._db()[collection], pipeline, on_change, on_error, self.logger).start()
        except PyMongoError as exc:
            raise self._wrap(exc, "watch", collection) from exc

    def coerce_id(self, value: Any) -> Any:
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        return value


__all__ = ["MongoBackend", "mongo_type_hook"]

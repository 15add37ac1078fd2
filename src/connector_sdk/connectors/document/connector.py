"""
Document (schema-less) connector.

Collections play the part of tables. Their schema is inferred by sampling
documents through :class:`SchemaSampler`; the sampled result is cached per
collection and refreshed once older than ``refresh_interval_ms``. Storage
access is delegated to a :class:`DocumentBackend` (``MongoBackend`` by
default for :class:`MongoConnector`).
"""

from __future__ import annotations

import json
import re
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ...conversion import DataValidationResult, TypeConversionConfig, TypeConverter, deserialize_value, serialize_value
from ...core.errors import (
    ConfigurationError,
    ConnectorConnectionError,
    ConnectorError,
    FeatureNotSupportedError,
    SchemaError,
    TableNotFoundError,
    ValidationError,
)
from ...core.logging import get_logger
from ...core.schema import (
    CollectionDefinition,
    ColumnDefinition,
    DatabaseType,
    DocumentFieldDefinition,
    DocumentSchema,
    ForeignKeyDefinition,
    IndexDefinition,
    schema_version,
)
from ...introspection import DocumentSchemaComparison, compare_document_schemas, describe_field_changes
from ..base import (
    BuiltQuery,
    BulkOperationOptions,
    ConfigValidationResult,
    ConnectionEvents,
    ConnectionMetrics,
    ConnectionState,
    ConnectionValidationResult,
    DataOperationOptions,
    FilterOptions,
    HealthCheckItem,
    HealthCheckResult,
    IntrospectionOptions,
    QueryContext,
    QueryResult,
    QueryStats,
    Stopwatch,
    batched,
    collect_config_errors,
    not_connected,
    parse_config,
    resolve_credentials,
    utcnow,
)
from .backend import DocumentBackend, DocumentChange, DocumentQuery, WatchHandle
from .config import DocumentConnectorConfig, MongoConnectorConfig, document_config_rules, mongo_config_rules
from .sampler import SamplingResult, SchemaSampler, TypeHook

DOCUMENT_CAPABILITIES = [
    "read",
    "write",
    "real_time",
    "schema_sampling",
    "nested_queries",
    "aggregation",
    "transactions",
]

_VERBS = ("find", "aggregate", "count", "insert", "update", "delete")

_TYPE_MAPPING = {
    "string": DatabaseType.TEXT.value,
    "int": DatabaseType.INTEGER.value,
    "long": DatabaseType.BIGINT.value,
    "double": DatabaseType.FLOAT.value,
    "decimal": DatabaseType.DECIMAL.value,
    "bool": DatabaseType.BOOLEAN.value,
    "date": DatabaseType.TIMESTAMP.value,
    "objectId": DatabaseType.TEXT.value,
    "object": DatabaseType.NESTED_OBJECT.value,
    "array": DatabaseType.ARRAY.value,
    "binData": DatabaseType.BLOB.value,
    "dbPointer": DatabaseType.REFERENCE.value,
}

ChangeCallback = Callable[[DocumentChange], None]


@dataclass(slots=True)
class RealTimeSubscription:
    id: str
    collection: str
    callback: ChangeCallback
    filter: Optional[Dict[str, Any]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    handle: Optional[WatchHandle] = None


@dataclass(slots=True)
class _CacheEntry:
    result: SamplingResult
    stored_at: float


def _as_column(item: DocumentFieldDefinition, id_field: str) -> ColumnDefinition:
    return ColumnDefinition(
        name=item.name,
        type=item.type,
        nullable=item.nullable or item.is_optional,
        enum_values=item.enum_values,
        array_element_type=item.array_element_type,
        is_primary_key=item.name == id_field,
        is_unique=item.name == id_field,
        original_type=item.original_type or item.type.value,
        metadata={"prevalence": item.prevalence, "fieldPath": item.field_path},
    )


class DocumentConnector:
    """
    Connector over a document store.

    Parameters
    ----------
    config:
        Optional configuration validated up front.
    backend:
        Storage implementation; required unless a subclass provides one.
    credentials_provider:
        Collaborator resolving ``credentials_secret_id``.
    type_hook:
        Backend-specific type recogniser handed to the sampler.
    clock:
        Monotonic seconds used to age cached schemas.
    """

    type = "document"
    version = "1.0.0"
    config_model = DocumentConnectorConfig

    def __init__(
        self,
        config: Any = None,
        *,
        backend: Optional[DocumentBackend] = None,
        credentials_provider: Any = None,
        conversion_config: Optional[TypeConversionConfig] = None,
        type_hook: Optional[TypeHook] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config: Optional[DocumentConnectorConfig] = parse_config(self.config_model, config) if config is not None else None
        self.backend = backend if backend is not None else self._default_backend()
        self.credentials_provider = credentials_provider
        self.capabilities = list(DOCUMENT_CAPABILITIES)
        self.state = ConnectionState.DISCONNECTED
        self.events = ConnectionEvents()
        self.stats = QueryStats()
        self.converter = TypeConverter(conversion_config)
        self.server_version: Optional[str] = None
        self._type_hook = type_hook
        self._clock = clock
        self._lock = threading.RLock()
        self._subscriptions: Dict[str, RealTimeSubscription] = {}
        self._schema_cache: Dict[str, _CacheEntry] = {}
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}", extra={"connector": self.type})

    def _default_backend(self) -> DocumentBackend:
        raise ConfigurationError("A document backend is required", field="backend")

    # Lifecycle --------------------------------------------------------------

    def _coerce_config(self, config: Any) -> DocumentConnectorConfig:
        if config is None:
            if self.config is None:
                raise ConfigurationError("No configuration provided")
            return self.config
        return parse_config(self.config_model, config)

    def _config_rules(self, payload: Mapping[str, Any]) -> List[str]:
        return document_config_rules(payload)

    def connect(self, config: Any = None, events: Optional[ConnectionEvents] = None) -> None:
        """Resolve credentials, open the backend and verify it with a ping."""

        with self._lock:
            config = self._coerce_config(config)
            reconnecting = self.is_connected()
            if reconnecting:
                self._teardown()
            self.config = config
            if events is not None:
                self.events = events
            self.state = ConnectionState.CONNECTING
            self.logger.info("Connecting", extra={"type": self.type, "database": config.database, "status": "connecting"})
            try:
                credentials = resolve_credentials(self.credentials_provider, config.credentials_secret_id, connector_type=self.type)
                self.backend.open(config, credentials)
                info = self.backend.server_info()
            except ConnectorError as exc:
                self.backend.close()
                self.state = ConnectionState.DISCONNECTED
                error = exc
                if not isinstance(exc, ConnectorConnectionError) and exc.code != "AUTHENTICATION_ERROR":
                    error = ConnectorConnectionError(
                        f"Failed to connect to document database: {exc.message}", cause=exc, metadata={"connectorType": self.type}
                    )
                self.logger.error("Connection failed", extra={"type": self.type, "error": exc.message})
                self.events.emit("on_error", error)
                if error is exc:
                    raise
                raise error from exc
            self.server_version = info.get("version")
            self.state = ConnectionState.CONNECTED
            self.stats.touch()
            self.logger.info("Connected", extra={"type": self.type, "server_version": self.server_version, "status": "connected"})
            self.events.emit("on_reconnect" if reconnecting else "on_connect")

    def _teardown(self) -> None:
        for subscription_id in list(self._subscriptions):
            self.unsubscribe_from_changes(subscription_id)
        self._schema_cache.clear()
        self.backend.close()

    def disconnect(self) -> None:
        """Cancel every subscription, drop cached schemas and close the backend."""

        with self._lock:
            was_connected = self.state is ConnectionState.CONNECTED
            self._teardown()
            self.state = ConnectionState.DISCONNECTED
            if was_connected:
                self.logger.info("Disconnected", extra={"type": self.type, "status": "disconnected"})
                self.events.emit("on_disconnect")

    def cleanup(self) -> None:
        self.disconnect()
        self.converter.clear_cache()

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def _ensure_connected(self) -> DocumentBackend:
        if not self.is_connected():
            raise not_connected(self.type)
        return self.backend

    def get_connection_status(self) -> ConnectionValidationResult:
        return ConnectionValidationResult(
            is_valid=self.is_connected(),
            server_version=self.server_version,
            capabilities=list(self.capabilities),
            metadata={"state": self.state.value, "subscriptions": len(self._subscriptions), "cachedSchemas": len(self._schema_cache)},
        )

    def validate_connection(self, config: Any) -> ConnectionValidationResult:
        """Probe ``config`` through the backend; never raises."""

        watch = Stopwatch()
        if self.is_connected():
            try:
                info = self.backend.server_info()
            except ConnectorError as exc:
                return ConnectionValidationResult(is_valid=False, latency_ms=watch.elapsed_ms, error=exc)
            return ConnectionValidationResult(
                is_valid=True, latency_ms=watch.elapsed_ms, server_version=info.get("version"), capabilities=list(self.capabilities)
            )
        try:
            parsed = self._coerce_config(config)
            credentials = resolve_credentials(self.credentials_provider, parsed.credentials_secret_id, connector_type=self.type)
            self.backend.open(parsed, credentials)
            info = self.backend.server_info()
        except ConnectorError as exc:
            return ConnectionValidationResult(is_valid=False, latency_ms=watch.elapsed_ms, error=exc)
        finally:
            if not self.is_connected():
                self.backend.close()
        return ConnectionValidationResult(
            is_valid=True, latency_ms=watch.elapsed_ms, server_version=info.get("version"), capabilities=list(self.capabilities)
        )

    def validate_configuration(self, config: Any) -> ConfigValidationResult:
        payload = config.model_dump() if hasattr(config, "model_dump") else dict(config or {})
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(self._config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def test_query(self, query: Optional[str] = None, context: Optional[QueryContext] = None) -> QueryResult:
        """Read one document from ``query`` (a collection name), or list collections."""

        backend = self._ensure_connected()
        watch = Stopwatch()
        try:
            if query:
                documents = backend.sample(query, 1)
            else:
                documents = [{"collection": name} for name in backend.list_collections()]
        except ConnectorError as exc:
            return self._failure(exc, watch)
        return QueryResult(success=True, data=documents, total_count=len(documents), execution_time_ms=watch.elapsed_ms)

    # Sampling ---------------------------------------------------------------

    def _sampler(self) -> SchemaSampler:
        sampling = self._coerce_config(None).schema_sampling
        return SchemaSampler(max_depth=sampling.max_depth, min_field_prevalence=sampling.min_field_prevalence, type_hook=self._type_hook)

    def sample_collection_schema(self, collection: str, *, refresh: bool = False) -> SamplingResult:
        """
        Infer the schema of ``collection`` from up to ``sample_size`` documents.

        With ``cache_schema`` enabled a result younger than
        ``refresh_interval_ms`` is returned as is unless ``refresh`` is set.
        """

        backend = self._ensure_connected()
        sampling = self._coerce_config(None).schema_sampling
        if sampling.cache_schema and not refresh:
            cached = self._schema_cache.get(collection)
            if cached is not None and (self._clock() - cached.stored_at) * 1000.0 < sampling.refresh_interval_ms:
                return cached.result
        watch = Stopwatch()
        try:
            documents = backend.sample(collection, sampling.sample_size)
        except ConnectorError as exc:
            if isinstance(exc, (ConnectorConnectionError, TableNotFoundError)):
                raise
            raise SchemaError(f"Schema sampling failed: {exc.message}", cause=exc, metadata={"collection": collection}) from exc
        result = self._sampler().sample(collection, documents, sampling.sample_size)
        self.stats.record(watch.elapsed_ms)
        self.logger.debug(
            "Collection sampled",
            extra={"collection": collection, "documents": result.sampled_documents, "fields": len(result.fields), "duration": round(watch.elapsed_ms, 2)},
        )
        if sampling.cache_schema:
            self._schema_cache[collection] = _CacheEntry(result, self._clock())
        return result

    def invalidate_schema_cache(self, collection: Optional[str] = None) -> None:
        if collection is None:
            self._schema_cache.clear()
        else:
            self._schema_cache.pop(collection, None)
        self.converter.clear_cache()

    # Discovery --------------------------------------------------------------

    def list_schemas(self) -> List[str]:
        self._ensure_connected()
        config = self._coerce_config(None)
        return [config.database or config.name]

    def list_tables(self, schema_name: Optional[str] = None) -> List[str]:
        return self._ensure_connected().list_collections()

    list_collections = list_tables

    def _collection(self, name: str) -> CollectionDefinition:
        backend = self._ensure_connected()
        config = self._coerce_config(None)
        if name not in backend.list_collections():
            raise TableNotFoundError(name, metadata={"connectorType": self.type})
        definition = CollectionDefinition(name=name, database=config.database or config.name)
        definition.indexes = backend.indexes(name)
        definition.document_count = backend.count(name, {})
        if config.schema_sampling.enabled:
            sampled = self.sample_collection_schema(name)
            definition.fields = sampled.fields
            definition.sample_size = sampled.sampled_documents
            definition.sampling_date = sampled.sampling_date
            definition.metadata = {
                "confidence": sampled.confidence,
                "inconsistencies": [item.to_dict() for item in sampled.inconsistencies],
                "nestedCollections": list(sampled.nested_collections),
            }
        return definition

    def get_collection_definition(self, collection: str) -> CollectionDefinition:
        return self._collection(collection)

    def introspect_schema(self, options: Optional[IntrospectionOptions] = None) -> DocumentSchema:
        """Sample every accepted collection into a :class:`DocumentSchema`."""

        backend = self._ensure_connected()
        options = options or IntrospectionOptions()
        config = self._coerce_config(None)
        watch = Stopwatch()
        names = [name for name in backend.list_collections() if options.accepts(name)]
        if options.max_tables is not None and len(names) > options.max_tables:
            self.logger.warning("Collection limit reached during introspection", extra={"type": self.type, "limit": options.max_tables})
            names = names[: options.max_tables]
        try:
            if options.concurrency > 1 and len(names) > 1:
                with ThreadPoolExecutor(max_workers=options.concurrency) as executor:
                    collections = list(executor.map(self._collection, names))
            else:
                collections = [self._collection(name) for name in names]
        except ConnectorError as exc:
            if isinstance(exc, (ConnectorConnectionError, SchemaError)):
                raise
            raise SchemaError(f"Schema introspection failed: {exc.message}", cause=exc) from exc
        query = config.query_config
        schema = DocumentSchema(
            name=config.database or config.name,
            collections=collections,
            materialization_strategy="sample" if config.schema_sampling.enabled else "manual",
            last_materialized=utcnow(),
            sample_document_count=sum(item.sample_size or 0 for item in collections),
            capabilities=list(self.capabilities),
            features={
                "realTime": config.real_time.enabled,
                "aggregation": query.enable_aggregation,
                "transactions": query.enable_transactions,
            },
        )
        schema.version = schema_version(schema)
        schema.metadata = {
            "connectorType": self.type,
            "serverVersion": self.server_version,
            "introspectedAt": utcnow().isoformat(),
            "durationMs": round(watch.elapsed_ms, 2),
        }
        self.converter.clear_cache()
        self.logger.info("Schema introspected", extra={"type": self.type, "collections": len(collections), "duration": round(watch.elapsed_ms, 2)})
        return schema

    def get_table_definition(self, table_name: str, schema_name: Optional[str] = None) -> CollectionDefinition:
        return self._collection(table_name)

    def get_table_columns(self, table_name: str, schema_name: Optional[str] = None) -> List[ColumnDefinition]:
        id_field = self._coerce_config(None).id_field
        return [_as_column(item, id_field) for item in self._collection(table_name).fields]

    def get_table_primary_key(self, table_name: str, schema_name: Optional[str] = None) -> List[str]:
        self._ensure_connected()
        return [self._coerce_config(None).id_field]

    def get_table_foreign_keys(self, table_name: str, schema_name: Optional[str] = None) -> List[ForeignKeyDefinition]:
        """Reference-typed fields whose samples name their target collection (``$ref``)."""

        keys = []
        for item in self._collection(table_name).fields:
            if item.type is not DatabaseType.REFERENCE:
                continue
            targets = [sample.get("$ref") for sample in item.sample_values if isinstance(sample, Mapping) and sample.get("$ref")]
            if not targets:
                continue
            keys.append(
                ForeignKeyDefinition(
                    column_name=item.name,
                    referenced_table=str(targets[0]),
                    referenced_column="_id",
                    constraint_name=f"{table_name}_{item.name}_ref",
                )
            )
        return keys

    def get_table_indexes(self, table_name: str, schema_name: Optional[str] = None) -> List[IndexDefinition]:
        backend = self._ensure_connected()
        id_field = self._coerce_config(None).id_field
        return [
            IndexDefinition(
                name=index.name,
                table_name=table_name,
                columns=list(index.fields),
                is_unique=index.unique,
                is_primary_key=index.fields == [id_field],
                metadata={"type": index.type, "sparse": index.sparse},
            )
            for index in backend.indexes(table_name)
        ]

    def compare_schemas(self, source: DocumentSchema, target: DocumentSchema) -> DocumentSchemaComparison:
        return compare_document_schemas(source, target)

    def generate_schema_diff(self, comparison: DocumentSchemaComparison) -> List[str]:
        return describe_field_changes(comparison, container="COLLECTION")

    # Builders ---------------------------------------------------------------

    @staticmethod
    def _filter_document(filters: Optional[FilterOptions]) -> Dict[str, Any]:
        if filters is None:
            return {}
        document: Dict[str, Any] = {}
        for key, value in filters.where.items():
            document[key] = {"$in": list(value)} if isinstance(value, (list, tuple, set)) else value
        if filters.where_raw:
            try:
                raw = json.loads(filters.where_raw)
            except ValueError as exc:
                raise ValidationError(f"Raw filter must be a JSON object: {exc}", field="where_raw") from exc
            if not isinstance(raw, dict):
                raise ValidationError("Raw filter must be a JSON object", field="where_raw")
            document.update(raw)
        if filters.search is not None and filters.search.term:
            pattern = re.escape(filters.search.term)
            document["$or"] = [{column: {"$regex": pattern, "$options": "i"}} for column in filters.search.columns]
        return document

    def _find_query(self, options: Optional[DataOperationOptions]) -> DocumentQuery:
        query_config = self._coerce_config(None).query_config
        query = DocumentQuery(filter=self._filter_document(options.filters if options else None), limit=query_config.default_limit)
        pagination = options.pagination if options else None
        if pagination is not None:
            if pagination.limit is not None:
                query.limit = min(pagination.limit, query_config.max_limit)
            query.skip = pagination.offset
            query.sort = [(order.column, -1 if order.direction.upper() == "DESC" else 1) for order in pagination.order_by]
        if options is not None and options.returning:
            query.projection = list(options.returning)
        return query

    def build_select_query(self, table_name: str, options: Optional[DataOperationOptions] = None, **_: Any) -> BuiltQuery:
        self._ensure_connected()
        query = self._find_query(options)
        parameters: Dict[str, Any] = {"filter": query.filter, "sort": query.sort, "skip": query.skip, "limit": query.limit}
        if query.projection:
            parameters["projection"] = query.projection
        return BuiltQuery(f"find {table_name}", parameters)

    def build_insert_query(self, table_name: str, data: Mapping[str, Any] | Sequence[Mapping[str, Any]], **_: Any) -> BuiltQuery:
        self._ensure_connected()
        documents = [dict(data)] if isinstance(data, Mapping) else [dict(item) for item in data]
        return BuiltQuery(f"insert {table_name}", {"documents": documents})

    def build_update_query(self, table_name: str, data: Mapping[str, Any], criteria: Mapping[str, Any], **options: Any) -> BuiltQuery:
        self._ensure_connected()
        if not criteria:
            raise ValidationError("Update criteria are required")
        changes = dict(data) if any(key.startswith("$") for key in data) else {"$set": dict(data)}
        return BuiltQuery(f"update {table_name}", {"filter": dict(criteria), "update": changes, "multi": bool(options.get("multi", True))})

    def build_delete_query(self, table_name: str, criteria: Mapping[str, Any], **options: Any) -> BuiltQuery:
        self._ensure_connected()
        if not criteria:
            raise ValidationError("Delete criteria are required")
        return BuiltQuery(f"delete {table_name}", {"filter": dict(criteria), "multi": bool(options.get("multi", True))})

    # Execution --------------------------------------------------------------

    @staticmethod
    def _split(statement: str) -> Tuple[str, str]:
        verb, _, collection = statement.strip().partition(" ")
        if not collection:
            return "find", verb
        verb = verb.lower()
        if verb not in _VERBS:
            raise ValidationError(f"Unsupported document operation '{verb}'. Expected one of {', '.join(_VERBS)}.")
        return verb, collection.strip()

    def _failure(self, exc: ConnectorError, watch: Stopwatch, **metadata: Any) -> QueryResult:
        self.logger.warning("Operation failed", extra={"type": self.type, "code": exc.code, "duration": round(watch.elapsed_ms, 2)})
        self.events.emit("on_error", exc)
        return QueryResult.failure(exc, execution_time_ms=watch.elapsed_ms, **metadata)

    def _apply(self, verb: str, collection: str, parameters: Mapping[str, Any], session: Any = None) -> QueryResult:
        """Run one structured operation against the backend; raises on failure."""

        backend = self.backend
        config = self._coerce_config(None)
        if verb == "find":
            query = DocumentQuery(
                filter=dict(parameters.get("filter") or {}),
                projection=parameters.get("projection"),
                sort=[tuple(item) for item in parameters.get("sort") or []],  # type: ignore[misc]
                skip=parameters.get("skip"),
                limit=parameters.get("limit"),
            )
            rows = backend.find(collection, query)
            return QueryResult(success=True, data=rows, total_count=len(rows))
        if verb == "aggregate":
            if not config.query_config.enable_aggregation:
                raise FeatureNotSupportedError("aggregation", self.type)
            rows = backend.aggregate(collection, parameters.get("pipeline") or [])
            return QueryResult(success=True, data=rows, total_count=len(rows))
        if verb == "count":
            total = backend.count(collection, dict(parameters.get("filter") or {}))
            return QueryResult(success=True, data=[{"count": total}], total_count=total)
        if verb == "insert":
            documents = [dict(item) for item in parameters.get("documents") or []]
            ids = backend.insert(collection, documents, session=session)
            rows = [{**document, config.id_field: inserted} for document, inserted in zip(documents, ids)]
            return QueryResult(success=True, data=rows, affected_rows=len(ids), insert_id=ids[0] if len(ids) == 1 else ids)
        if verb == "update":
            outcome = backend.update(
                collection,
                dict(parameters.get("filter") or {}),
                dict(parameters.get("update") or {}),
                multi=bool(parameters.get("multi", True)),
                upsert=bool(parameters.get("upsert", False)),
                session=session,
            )
            affected = outcome.matched or (1 if outcome.upserted_id is not None else 0)
            return QueryResult(
                success=True,
                affected_rows=affected,
                insert_id=outcome.upserted_id,
                metadata={"matched": outcome.matched, "modified": outcome.modified},
            )
        deleted = backend.delete(collection, dict(parameters.get("filter") or {}), multi=bool(parameters.get("multi", True)), session=session)
        return QueryResult(success=True, affected_rows=deleted)

    def _run(self, built: BuiltQuery, context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        watch = Stopwatch()
        try:
            verb, collection = self._split(built.text)
            if context is not None and context.read_only and verb in ("insert", "update", "delete"):
                raise ValidationError(f"Cannot {verb} documents in a read-only context")
            result = self._apply(verb, collection, built.parameters)
        except ConnectorError as exc:
            return self._failure(exc, watch)
        elapsed = watch.elapsed_ms
        result.execution_time_ms = elapsed
        self.stats.record(elapsed)
        self.events.emit("on_query", built.text, elapsed)
        self.logger.debug("Operation executed", extra={"type": self.type, "operation": built.text, "duration": round(elapsed, 2)})
        return result

    def _run_built(self, build: Callable[[], BuiltQuery], context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        try:
            built = build()
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self._run(built, context)

    def _id_filter(self, record_id: Any) -> Dict[str, Any]:
        return {self._coerce_config(None).id_field: self.backend.coerce_id(record_id)}

    # Data -------------------------------------------------------------------

    def execute_query(self, query: str, parameters: Any = None, context: Optional[QueryContext] = None) -> QueryResult:
        """
        Run ``"<verb> <collection>"``; a bare collection name means ``find``.

        ``parameters`` is the operation mapping (``filter``, ``sort``,
        ``limit``, ``documents``, ``update``...); a list is taken as an
        aggregation pipeline.
        """

        if isinstance(parameters, (list, tuple)):
            parameters = {"pipeline": list(parameters)}
        return self._run(BuiltQuery(query, dict(parameters or {})), context)

    @staticmethod
    def _normalise_operation(operation: Any) -> BuiltQuery:
        if isinstance(operation, BuiltQuery):
            return operation
        if isinstance(operation, Mapping):
            query = operation.get("query")
            if not query:
                raise ValidationError("Transaction operation is missing its query")
            return BuiltQuery(query, dict(operation.get("parameters") or {}))
        if isinstance(operation, (tuple, list)) and operation:
            return BuiltQuery(operation[0], dict(operation[1] if len(operation) > 1 and operation[1] else {}))
        raise ValidationError(f"Unsupported transaction operation: {operation!r}")

    def execute_transaction(self, operations: Sequence[Any], context: Optional[QueryContext] = None) -> QueryResult:
        """
        Apply write operations atomically inside a backend session.

        Requires ``query_config.enable_transactions``; the backend aborts the
        session when any operation fails and nothing is applied.
        """

        backend = self._ensure_connected()
        watch = Stopwatch()
        config = self._coerce_config(None)
        if not config.query_config.enable_transactions:
            return self._failure(FeatureNotSupportedError("transactions", self.type), watch)
        progress = {"index": -1}
        try:
            statements = [self._normalise_operation(operation) for operation in operations]
            parsed = [(self._split(item.text), item.parameters) for item in statements]

            def _work(session: Any) -> List[Dict[str, Any]]:
                results = []
                for index, ((verb, collection), parameters) in enumerate(parsed):
                    progress["index"] = index
                    outcome = self._apply(verb, collection, parameters, session=session)
                    results.append({"index": index, "rows": outcome.data, "affectedRows": outcome.affected_rows})
                return results

            results = backend.transaction(_work)
        except ConnectorError as exc:
            self.logger.warning("Transaction aborted", extra={"type": self.type, "step": progress["index"]})
            return self._failure(exc, watch, failedOperation=progress["index"])
        self.stats.record(watch.elapsed_ms)
        return QueryResult(
            success=True,
            data=results,
            affected_rows=sum(item["affectedRows"] or 0 for item in results),
            execution_time_ms=watch.elapsed_ms,
            metadata={"operations": len(results)},
        )

    def get_query_execution_plan(self, query: str, parameters: Any = None) -> QueryResult:
        backend = self._ensure_connected()
        watch = Stopwatch()
        try:
            _, collection = self._split(query)
            filter_document = dict((parameters or {}).get("filter") or {}) if isinstance(parameters, Mapping) else {}
            plan = backend.explain(collection, DocumentQuery(filter=filter_document))
        except ConnectorError as exc:
            return self._failure(exc, watch)
        return QueryResult(success=True, data=[plan], execution_time_ms=watch.elapsed_ms)

    def get_table_data(self, table_name: str, options: Optional[DataOperationOptions] = None) -> QueryResult:
        result = self._run_built(lambda: self.build_select_query(table_name, options), options.context if options else None)
        if result.success and options is not None and options.pagination is not None and options.pagination.limit is not None:
            counted = self.count_records(table_name, options.filters.where if options.filters else None)
            if counted.success:
                result.total_count = counted.total_count
        return result

    def count_records(self, table_name: str, criteria: Optional[Mapping[str, Any]] = None, **options: Any) -> QueryResult:
        def _build() -> BuiltQuery:
            return BuiltQuery(f"count {table_name}", {"filter": self._filter_document(FilterOptions(where=dict(criteria or {})))})

        return self._run_built(_build, options.get("context"))

    def insert_record(self, table_name: str, data: Mapping[str, Any], **options: Any) -> QueryResult:
        return self._run_built(lambda: self.build_insert_query(table_name, data), options.get("context"))

    def insert_records(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Optional[BulkOperationOptions] = None) -> QueryResult:
        """Insert in batches of ``batch_size``; a failed batch stops the run unless ``continue_on_error``."""

        self._ensure_connected()
        options = options or BulkOperationOptions()
        watch = Stopwatch()
        rows: List[Dict[str, Any]] = []
        warnings: List[str] = []
        inserted = 0
        for number, batch in enumerate(batched(list(data), options.batch_size), start=1):
            outcome = self._run(self.build_insert_query(table_name, batch), options.context)
            if outcome.success:
                rows.extend(outcome.data)
                inserted += outcome.affected_rows or 0
                continue
            message = outcome.error.message if outcome.error else "unknown error"
            if not options.continue_on_error:
                result = QueryResult.failure(outcome.error or ConnectorConnectionError(message), execution_time_ms=watch.elapsed_ms)
                result.affected_rows = inserted
                return result
            warnings.append(f"Batch {number} failed: {message}")
        return QueryResult(
            success=not data or inserted > 0,
            data=rows,
            affected_rows=inserted,
            execution_time_ms=watch.elapsed_ms,
            warnings=warnings,
            metadata={"failedBatches": len(warnings)},
        )

    def update_record(self, table_name: str, record_id: Any, data: Mapping[str, Any], **options: Any) -> QueryResult:
        return self._run_built(
            lambda: self.build_update_query(table_name, data, self._id_filter(record_id), multi=False), options.get("context")
        )

    def update_records(self, table_name: str, criteria: Mapping[str, Any], data: Mapping[str, Any], **options: Any) -> QueryResult:
        return self._run_built(
            lambda: self.build_update_query(table_name, data, self._filter_document(FilterOptions(where=dict(criteria)))),
            options.get("context"),
        )

    def delete_record(self, table_name: str, record_id: Any, **options: Any) -> QueryResult:
        return self._run_built(lambda: self.build_delete_query(table_name, self._id_filter(record_id), multi=False), options.get("context"))

    def delete_records(self, table_name: str, criteria: Mapping[str, Any], **options: Any) -> QueryResult:
        return self._run_built(
            lambda: self.build_delete_query(table_name, self._filter_document(FilterOptions(where=dict(criteria)))),
            options.get("context"),
        )

    def upsert_record(self, table_name: str, data: Mapping[str, Any], conflict_columns: Sequence[str], **options: Any) -> QueryResult:
        """Update the document matching ``conflict_columns`` (default: the id field) or insert it."""

        def _build() -> BuiltQuery:
            columns = list(conflict_columns) or [self._coerce_config(None).id_field]
            missing = [column for column in columns if column not in data]
            if missing:
                raise ValidationError(f"Upsert data is missing conflict columns: {', '.join(missing)}")
            criteria = {column: data[column] for column in columns}
            built = self.build_update_query(table_name, data, criteria, multi=False)
            built.parameters["upsert"] = True
            return built

        return self._run_built(_build, options.get("context"))

    def bulk_upsert(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        options: Optional[BulkOperationOptions] = None,
    ) -> QueryResult:
        self._ensure_connected()
        options = options or BulkOperationOptions()
        watch = Stopwatch()
        warnings: List[str] = []
        affected = 0
        for position, record in enumerate(data, start=1):
            outcome = self.upsert_record(table_name, record, conflict_columns, context=options.context)
            if outcome.success:
                affected += outcome.affected_rows or 0
                continue
            message = outcome.error.message if outcome.error else "unknown error"
            if not options.continue_on_error:
                result = QueryResult.failure(outcome.error or ConnectorConnectionError(message), execution_time_ms=watch.elapsed_ms)
                result.affected_rows = affected
                return result
            warnings.append(f"Record {position} failed: {message}")
        return QueryResult(success=True, affected_rows=affected, execution_time_ms=watch.elapsed_ms, warnings=warnings)

    def validate_data(self, table_name: str, data: Mapping[str, Any], mode: str = "full") -> DataValidationResult:
        """Validate ``data`` against the sampled definition of ``table_name``."""

        try:
            collection = self._collection(table_name)
        except ConnectorError as exc:
            return DataValidationResult(valid=False, errors=[f"Validation failed: {exc.message}"])
        return self.converter.validate(collection, data, mode)

    # Real-time --------------------------------------------------------------

    def subscribe_to_changes(
        self,
        collection: str,
        callback: ChangeCallback,
        filter: Optional[Mapping[str, Any]] = None,
        *,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> str:
        """Register a change listener on ``collection`` and return its subscription id."""

        backend = self._ensure_connected()
        realtime = self._coerce_config(None).real_time
        if not realtime.enabled:
            raise ValidationError("Real-time updates are not enabled")
        with self._lock:
            if len(self._subscriptions) >= realtime.max_listeners:
                raise ValidationError(f"Maximum number of real-time listeners reached ({realtime.max_listeners})")
            subscription = RealTimeSubscription(
                id=f"{collection}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
                collection=collection,
                callback=callback,
                filter=dict(filter) if filter else None,
                on_error=on_error,
            )
            self._subscriptions[subscription.id] = subscription
        try:
            subscription.handle = backend.watch(collection, callback, filter=subscription.filter, on_error=on_error)
        except ConnectorError as exc:
            self._subscriptions.pop(subscription.id, None)
            raise ValidationError(f"Failed to setup real-time subscription: {exc.message}", cause=exc) from exc
        self.logger.info("Subscribed to changes", extra={"collection": collection, "subscription": subscription.id})
        return subscription.id

    def unsubscribe_from_changes(self, subscription_id: str) -> None:
        """Cancel a subscription; unknown or already cancelled ids are ignored."""

        with self._lock:
            subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        subscription.active = False
        if subscription.handle is not None:
            subscription.handle.close()
        self.logger.info("Unsubscribed from changes", extra={"collection": subscription.collection, "subscription": subscription_id})

    def get_subscriptions(self) -> List[RealTimeSubscription]:
        return list(self._subscriptions.values())

    # Misc -------------------------------------------------------------------

    def get_connection_metrics(self) -> ConnectionMetrics:
        return self.stats.metrics(active=1 if self.is_connected() else 0)

    @staticmethod
    def _column(column_type: Any) -> ColumnDefinition:
        if isinstance(column_type, ColumnDefinition):
            return column_type
        return ColumnDefinition(name="value", type=DatabaseType(column_type))

    def serialize_value(self, value: Any, column_type: Any) -> Any:
        return serialize_value(value, self._column(column_type), self.converter.config)

    def deserialize_value(self, value: Any, column_type: Any) -> Any:
        return deserialize_value(value, self._column(column_type), self.converter.config)

    def get_type_mapping(self) -> Dict[str, str]:
        return dict(_TYPE_MAPPING)

    def escape_identifier(self, identifier: str) -> str:
        """Field names are used verbatim; operator prefixes and NUL bytes are rejected."""

        if not identifier or identifier.startswith("$") or "\x00" in identifier:
            raise ValidationError(f"Invalid field name: {identifier!r}", field="identifier")
        return identifier

    def escape_literal(self, literal: Any) -> str:
        return json.dumps(literal, default=str)

    def get_parameter_placeholder(self, index: int) -> str:
        return f"$p{index}"

    def health_check(self) -> HealthCheckResult:
        if not self.is_connected():
            return HealthCheckResult.from_checks([HealthCheckItem("connection", "fail", "Not connected")])
        checks: List[HealthCheckItem] = []
        watch = Stopwatch()
        try:
            self.backend.server_info()
            checks.append(HealthCheckItem("connection", "pass", "Database reachable", watch.elapsed_ms))
        except ConnectorError as exc:
            checks.append(HealthCheckItem("connection", "fail", exc.message, watch.elapsed_ms))
        limit = self._coerce_config(None).real_time.max_listeners
        active = len(self._subscriptions)
        status = "warn" if active >= limit else "pass"
        checks.append(HealthCheckItem("subscriptions", status, f"{active}/{limit} real-time listeners"))
        checks.append(HealthCheckItem("schema_cache", "pass", f"{len(self._schema_cache)} cached collection schemas"))
        return HealthCheckResult.from_checks(checks)


class MongoConnector(DocumentConnector):
    """MongoDB connector (pymongo driver)."""

    type = "mongodb"
    config_model = MongoConnectorConfig

    def __init__(self, config: Any = None, **kwargs: Any) -> None:
        if "type_hook" not in kwargs:
            from .mongodb import mongo_type_hook

            kwargs["type_hook"] = mongo_type_hook
        super().__init__(config, **kwargs)

    def _default_backend(self) -> DocumentBackend:
        from .mongodb import MongoBackend

        return MongoBackend()

    def _config_rules(self, payload: Mapping[str, Any]) -> List[str]:
        return mongo_config_rules(payload)


__all__ = ["DOCUMENT_CAPABILITIES", "DocumentConnector", "MongoConnector", "RealTimeSubscription"]

"""
REST API connector.

Resources play the part of tables: they are declared in configuration and can
be supplemented from an OpenAPI document. CRUD maps onto HTTP verbs
(``GET`` collection, ``POST`` collection, ``PATCH``/``PUT`` item,
``DELETE`` item) and every request goes through :class:`RESTClient`.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

import httpx

from ...conversion import DataValidationResult, TypeConversionConfig, TypeConverter, deserialize_value, serialize_value
from ...core.errors import (
    ConfigurationError,
    ConnectorConnectionError,
    ConnectorError,
    OperationNotSupportedError,
    TableNotFoundError,
    ValidationError,
)
from ...core.logging import get_logger
from ...core.schema import (
    ColumnDefinition,
    DatabaseType,
    ForeignKeyDefinition,
    IndexDefinition,
    RESTFieldDefinition,
    RESTPagination,
    RESTResourceDefinition,
    RESTSchema,
    schema_version,
)
from ...introspection import DocumentSchemaComparison, compare_rest_schemas, describe_field_changes
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
from .client import CustomAuth, RESTClient, RESTResponse
from .config import RESTConnectorConfig, RESTResourceConfig, rest_config_rules
from .openapi import resources_from_openapi

REST_CAPABILITIES = [
    "read",
    "write",
    "pagination",
    "filtering",
    "sorting",
    "rate_limiting",
    "authentication",
    "schema_introspection",
]

_TYPE_MAPPING = {
    "string": DatabaseType.TEXT.value,
    "integer": DatabaseType.INTEGER.value,
    "number": DatabaseType.DECIMAL.value,
    "boolean": DatabaseType.BOOLEAN.value,
    "array": DatabaseType.ARRAY.value,
    "object": DatabaseType.JSON.value,
}


def _resource_from_config(resource: RESTResourceConfig) -> RESTResourceDefinition:
    return RESTResourceDefinition(
        name=resource.name,
        endpoint=resource.endpoint,
        fields=[
            RESTFieldDefinition(
                name=item.name,
                type=item.type,
                nullable=item.nullable,
                required=item.required,
                read_only=item.read_only,
                write_only=item.write_only,
                enum_values=item.enum_values,
                max_length=item.max_length,
                format=item.format,
                description=item.description,
                api_field_name=item.name,
            )
            for item in resource.fields
        ],
        supported_methods=list(resource.methods),
        primary_key=resource.primary_key,
        comment=resource.description,
        metadata={"source": "config"},
    )


def _as_column(item: RESTFieldDefinition, primary_key: Optional[str]) -> ColumnDefinition:
    return ColumnDefinition(
        name=item.name,
        type=item.type,
        nullable=item.nullable,
        default_value=item.default_value,
        max_length=item.max_length,
        enum_values=item.enum_values,
        comment=item.description,
        is_primary_key=item.name == primary_key,
        original_type=item.original_type or item.type.value,
    )


class RESTConnector:
    """
    Connector over a JSON REST API.

    Parameters
    ----------
    config:
        Optional configuration validated up front.
    credentials_provider:
        Collaborator resolving ``credentials_secret_id``.
    transport:
        HTTPX transport handed to :class:`RESTClient`; tests pass
        :class:`httpx.MockTransport`.
    custom_auth:
        Header callback for ``authentication.type == "custom"``.
    clock, sleep:
        Time source and sleeper for rate limiting and retries.
    """

    type = "rest"
    version = "1.0.0"
    config_model = RESTConnectorConfig

    def __init__(
        self,
        config: Any = None,
        *,
        credentials_provider: Any = None,
        transport: Optional[httpx.BaseTransport] = None,
        custom_auth: Optional[CustomAuth] = None,
        conversion_config: Optional[TypeConversionConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config: Optional[RESTConnectorConfig] = parse_config(self.config_model, config) if config is not None else None
        self.credentials_provider = credentials_provider
        self.capabilities = list(REST_CAPABILITIES)
        self.state = ConnectionState.DISCONNECTED
        self.events = ConnectionEvents()
        self.stats = QueryStats()
        self.converter = TypeConverter(conversion_config)
        self.client: Optional[RESTClient] = None
        self._transport = transport
        self._custom_auth = custom_auth
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.RLock()
        self._resources: Dict[str, RESTResourceDefinition] = {}
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}", extra={"connector": self.type})

    # Lifecycle --------------------------------------------------------------

    def _coerce_config(self, config: Any) -> RESTConnectorConfig:
        if config is None:
            if self.config is None:
                raise ConfigurationError("No configuration provided")
            return self.config
        return parse_config(self.config_model, config)

    def _make_client(self, config: RESTConnectorConfig, credentials: Mapping[str, Any]) -> RESTClient:
        return RESTClient(
            config,
            credentials,
            transport=self._transport,
            custom_auth=self._custom_auth,
            clock=self._clock,
            sleep=self._sleep,
        )

    def connect(self, config: Any = None, events: Optional[ConnectionEvents] = None) -> None:
        """Resolve credentials, build the HTTP client and probe ``health_endpoint`` when configured."""

        with self._lock:
            config = self._coerce_config(config)
            reconnecting = self.is_connected()
            self.config = config
            if events is not None:
                self.events = events
            self.state = ConnectionState.CONNECTING
            self.logger.info("Connecting", extra={"type": self.type, "url": config.base_url, "status": "connecting"})
            try:
                credentials = resolve_credentials(self.credentials_provider, config.credentials_secret_id, connector_type=self.type)
                client = self._make_client(config, credentials)
                if config.health_endpoint:
                    client.request("GET", config.health_endpoint)
            except ConnectorError as exc:
                self.client = None
                self.state = ConnectionState.DISCONNECTED
                self.logger.error("Connection failed", extra={"type": self.type, "error": exc.message})
                self.events.emit("on_error", exc)
                raise
            self.client = client
            self._resources = {resource.name: _resource_from_config(resource) for resource in config.resources}
            self.state = ConnectionState.CONNECTED
            self.stats.touch()
            self.logger.info("Connected", extra={"type": self.type, "resources": len(self._resources), "status": "connected"})
            self.events.emit("on_reconnect" if reconnecting else "on_connect")

    def disconnect(self) -> None:
        with self._lock:
            was_connected = self.client is not None
            if self.client is not None:
                self.client.rate_limiter.reset()
            self.client = None
            self.state = ConnectionState.DISCONNECTED
            if was_connected:
                self.logger.info("Disconnected", extra={"type": self.type, "status": "disconnected"})
                self.events.emit("on_disconnect")

    def cleanup(self) -> None:
        self.disconnect()
        self._resources.clear()
        self.converter.clear_cache()

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.client is not None

    def _ensure_connected(self) -> RESTClient:
        client = self.client
        if not self.is_connected() or client is None:
            raise not_connected(self.type)
        return client

    def get_connection_status(self) -> ConnectionValidationResult:
        metadata: Dict[str, Any] = {"state": self.state.value}
        if self.client is not None:
            metadata["rateLimits"] = self.client.rate_limiter.snapshot()
        return ConnectionValidationResult(is_valid=self.is_connected(), capabilities=list(self.capabilities), metadata=metadata)

    def validate_connection(self, config: Any) -> ConnectionValidationResult:
        watch = Stopwatch()
        try:
            parsed = self._coerce_config(config)
            credentials = resolve_credentials(self.credentials_provider, parsed.credentials_secret_id, connector_type=self.type)
            client = self._make_client(parsed, credentials)
            if parsed.health_endpoint:
                client.request("GET", parsed.health_endpoint)
        except ConnectorError as exc:
            return ConnectionValidationResult(is_valid=False, latency_ms=watch.elapsed_ms, error=exc)
        return ConnectionValidationResult(is_valid=True, latency_ms=watch.elapsed_ms, capabilities=list(self.capabilities))

    def validate_configuration(self, config: Any) -> ConfigValidationResult:
        payload = config.model_dump() if hasattr(config, "model_dump") else dict(config or {})
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(rest_config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def test_query(self, query: Optional[str] = None, context: Optional[QueryContext] = None) -> QueryResult:
        config = self._coerce_config(None)
        return self.execute_query(query or config.health_endpoint or "/", context=context)

    # HTTP -------------------------------------------------------------------

    def _call(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        context: Optional[QueryContext] = None,
    ) -> RESTResponse:
        client = self._ensure_connected()
        response = client.request(method, endpoint, params=params, json_body=body, timeout_ms=context.timeout_ms if context else None)
        self.stats.record(response.elapsed_ms)
        self.events.emit("on_query", f"{method.upper()} {endpoint}", response.elapsed_ms)
        return response

    def _failure(self, exc: ConnectorError, watch: Stopwatch) -> QueryResult:
        self.events.emit("on_error", exc)
        return QueryResult.failure(exc, execution_time_ms=watch.elapsed_ms)

    @staticmethod
    def _rows(payload: Any) -> List[Dict[str, Any]]:
        if payload is None:
            return []
        if isinstance(payload, list):
            return [item if isinstance(item, dict) else {"value": item} for item in payload]
        if isinstance(payload, dict):
            return [payload]
        return [{"value": payload}]

    def _result(self, response: RESTResponse, watch: Stopwatch, **extra: Any) -> QueryResult:
        rows = self._rows(response.data)
        affected = extra.pop("affected", None)
        metadata: Dict[str, Any] = {"status": response.status_code, "pagination": response.pagination.to_dict()}
        if response.meta is not None:
            metadata["meta"] = response.meta
        metadata.update(extra)
        warnings = [response.error] if response.error else []
        return QueryResult(
            success=True,
            data=rows,
            total_count=response.total_count if response.total_count is not None else None,
            affected_rows=affected,
            execution_time_ms=watch.elapsed_ms,
            warnings=warnings,
            metadata=metadata,
        )

    # Resources --------------------------------------------------------------

    def _resource(self, name: str) -> RESTResourceDefinition:
        self._ensure_connected()
        resource = self._resources.get(name)
        if resource is None:
            raise TableNotFoundError(name, metadata={"connectorType": self.type})
        return resource

    def _item_endpoint(self, resource: RESTResourceDefinition, record_id: Any) -> str:
        return f"{resource.endpoint.rstrip('/')}/{quote(str(record_id), safe='')}"

    def list_schemas(self) -> List[str]:
        config = self._coerce_config(None)
        self._ensure_connected()
        return [config.name]

    def list_tables(self, schema_name: Optional[str] = None) -> List[str]:
        self._ensure_connected()
        return sorted(self._resources)

    def discover_resources(self) -> List[RESTResourceDefinition]:
        """Fetch ``openapi_url`` and merge discovered resources under the configured ones."""

        client = self._ensure_connected()
        config = self._coerce_config(None)
        if not config.openapi_url:
            return []
        document = client.get_json(config.openapi_url)
        if not isinstance(document, Mapping):
            raise ValidationError("OpenAPI document must be a JSON object", field="openapi_url")
        discovered = resources_from_openapi(document)
        for resource in discovered:
            self._resources.setdefault(resource.name, resource)
        self.logger.info("Resources discovered", extra={"type": self.type, "resources": len(discovered)})
        return discovered

    def introspect_schema(self, options: Optional[IntrospectionOptions] = None) -> RESTSchema:
        self._ensure_connected()
        options = options or IntrospectionOptions()
        config = self._coerce_config(None)
        watch = Stopwatch()
        discovered = self.discover_resources() if config.openapi_url else []
        resources = [self._resources[name] for name in sorted(self._resources) if options.accepts(name)]
        limit = options.max_tables
        if limit is not None and len(resources) > limit:
            self.logger.warning("Resource limit reached during introspection", extra={"type": self.type, "limit": limit})
            resources = resources[:limit]
        schema = RESTSchema(
            name=config.name,
            base_url=config.base_url,
            resources=resources,
            title=config.metadata.get("title"),
            description=config.metadata.get("description"),
            authentication={"type": config.authentication.type, "location": config.authentication.location},
            capabilities=list(self.capabilities),
        )
        schema.version = schema_version(schema)
        schema.metadata = {
            "connectorType": self.type,
            "introspectedAt": utcnow().isoformat(),
            "discoveredResources": len(discovered),
            "durationMs": round(watch.elapsed_ms, 2),
        }
        self.converter.clear_cache()
        return schema

    def get_table_definition(self, table_name: str, schema_name: Optional[str] = None) -> RESTResourceDefinition:
        return self._resource(table_name)

    def get_table_columns(self, table_name: str, schema_name: Optional[str] = None) -> List[ColumnDefinition]:
        resource = self._resource(table_name)
        return [_as_column(item, resource.primary_key) for item in resource.fields]

    def get_table_primary_key(self, table_name: str, schema_name: Optional[str] = None) -> List[str]:
        resource = self._resource(table_name)
        return [resource.primary_key] if resource.primary_key else []

    def get_table_foreign_keys(self, table_name: str, schema_name: Optional[str] = None) -> List[ForeignKeyDefinition]:
        resource = self._resource(table_name)
        return [
            ForeignKeyDefinition(
                column_name=item.name,
                referenced_table=item.reference_to,
                referenced_column="id",
                constraint_name=f"{resource.name}_{item.name}_ref",
            )
            for item in resource.fields
            if item.reference_to
        ]

    def get_table_indexes(self, table_name: str, schema_name: Optional[str] = None) -> List[IndexDefinition]:
        self._resource(table_name)
        return []

    def compare_schemas(self, source: RESTSchema, target: RESTSchema) -> DocumentSchemaComparison:
        return compare_rest_schemas(source, target)

    def generate_schema_diff(self, comparison: DocumentSchemaComparison) -> List[str]:
        return describe_field_changes(comparison, container="RESOURCE")

    # Builders ---------------------------------------------------------------

    def _query_params(self, resource: RESTResourceDefinition, options: Optional[DataOperationOptions]) -> Dict[str, Any]:
        config = self._coerce_config(None)
        pagination_config = config.pagination
        params: Dict[str, Any] = {}
        pagination = options.pagination if options else None
        filters = options.filters if options else None
        if filters is not None:
            params.update(self._filter_params(filters))
        if pagination is not None:
            names = dict(pagination_config.param_names)
            if resource.pagination is not None:
                names = {**resource.pagination.param_names, **names}
            if pagination.limit is not None:
                params[names.get("limit", "limit")] = min(pagination.limit, pagination_config.max_limit)
            if pagination.offset is not None:
                params[names.get("offset", "offset")] = pagination.offset
            if pagination.cursor:
                params[names.get("cursor", "cursor")] = pagination.cursor
            if pagination.order_by:
                params[names.get("sort", "sort")] = ",".join(
                    f"-{order.column}" if order.direction.upper() == "DESC" else order.column for order in pagination.order_by
                )
        return params

    @staticmethod
    def _filter_params(filters: FilterOptions) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        for key, value in filters.where.items():
            if isinstance(value, (list, tuple, set)):
                params[key] = ",".join(str(item) for item in value)
            elif isinstance(value, Mapping):
                raise ValidationError(f"Operator filters are not supported for REST resources: {key}", field=key)
            else:
                params[key] = value
        if filters.search is not None and filters.search.term:
            params["q"] = filters.search.term
        return params

    def build_select_query(self, table_name: str, options: Optional[DataOperationOptions] = None, **_: Any) -> BuiltQuery:
        resource = self._resource(table_name)
        return BuiltQuery(f"GET {resource.endpoint}", self._query_params(resource, options))

    def build_insert_query(self, table_name: str, data: Mapping[str, Any] | Sequence[Mapping[str, Any]], **_: Any) -> BuiltQuery:
        resource = self._resource(table_name)
        payload: Any = dict(data) if isinstance(data, Mapping) else [dict(item) for item in data]
        return BuiltQuery(f"POST {resource.endpoint}", {"body": payload})

    def build_update_query(self, table_name: str, data: Mapping[str, Any], criteria: Mapping[str, Any], **_: Any) -> BuiltQuery:
        resource = self._resource(table_name)
        key = resource.primary_key or "id"
        if key not in criteria:
            raise ValidationError(f"Update criteria must include the primary key '{key}'", field=key)
        method = "PATCH" if "PATCH" in resource.supported_methods or "PUT" not in resource.supported_methods else "PUT"
        return BuiltQuery(f"{method} {self._item_endpoint(resource, criteria[key])}", {"body": dict(data)})

    def build_delete_query(self, table_name: str, criteria: Mapping[str, Any], **_: Any) -> BuiltQuery:
        resource = self._resource(table_name)
        key = resource.primary_key or "id"
        if key not in criteria:
            raise ValidationError(f"Delete criteria must include the primary key '{key}'", field=key)
        return BuiltQuery(f"DELETE {self._item_endpoint(resource, criteria[key])}")

    @staticmethod
    def _split(statement: str) -> Tuple[str, str]:
        method, _, endpoint = statement.strip().partition(" ")
        if not endpoint:
            return "GET", method
        return method.upper(), endpoint.strip()

    def _run(self, built: BuiltQuery, context: Optional[QueryContext] = None, **extra: Any) -> QueryResult:
        method, endpoint = self._split(built.text)
        parameters = dict(built.parameters)
        body = parameters.pop("body", None)
        watch = Stopwatch()
        try:
            response = self._call(method, endpoint, params=parameters, body=body, context=context)
        except ConnectorError as exc:
            return self._failure(exc, watch)
        return self._result(response, watch, **extra)

    def _run_built(self, build: Callable[[], BuiltQuery], context: Optional[QueryContext] = None, **extra: Any) -> QueryResult:
        self._ensure_connected()
        try:
            built = build()
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self._run(built, context, **extra)

    # Data -------------------------------------------------------------------

    def execute_query(self, query: str, parameters: Any = None, context: Optional[QueryContext] = None) -> QueryResult:
        """
        Issue ``"METHOD /path"`` (or just ``"/path"`` for ``GET``).

        Mapping parameters become query parameters for ``GET``/``DELETE`` and
        the JSON body otherwise.
        """

        self._ensure_connected()
        method, _ = self._split(query)
        params = dict(parameters or {}) if isinstance(parameters, Mapping) else {}
        if method in ("POST", "PUT", "PATCH"):
            params = {"body": parameters}
        return self._run(BuiltQuery(query, params), context)

    def execute_transaction(self, operations: Sequence[Any], context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        return QueryResult.failure(OperationNotSupportedError("transactions", self.type))

    def get_query_execution_plan(self, query: str, parameters: Any = None) -> QueryResult:
        self._ensure_connected()
        return QueryResult.failure(OperationNotSupportedError("execution plans", self.type))

    def get_table_data(self, table_name: str, options: Optional[DataOperationOptions] = None) -> QueryResult:
        return self._run_built(lambda: self.build_select_query(table_name, options), options.context if options else None)

    def count_records(self, table_name: str, criteria: Optional[Mapping[str, Any]] = None, **options: Any) -> QueryResult:
        """Use the upstream total count when the envelope exposes one, else count the returned rows."""

        filters = FilterOptions(where=dict(criteria or {}))
        result = self.get_table_data(table_name, DataOperationOptions(filters=filters))
        if result.success:
            total = result.total_count if result.total_count is not None else len(result.data)
            result.total_count = total
            result.data = [{"count": total}]
        return result

    def insert_record(self, table_name: str, data: Mapping[str, Any], **options: Any) -> QueryResult:
        return self._run_built(lambda: self.build_insert_query(table_name, data), options.get("context"), affected=1)

    def insert_records(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Optional[BulkOperationOptions] = None) -> QueryResult:
        return self._each(table_name, data, options, lambda record: self.insert_record(table_name, record))

    def update_record(self, table_name: str, record_id: Any, data: Mapping[str, Any], **options: Any) -> QueryResult:
        def _build() -> BuiltQuery:
            resource = self._resource(table_name)
            return self.build_update_query(table_name, data, {resource.primary_key or "id": record_id})

        return self._run_built(_build, options.get("context"), affected=1)

    def _matching_ids(self, table_name: str, criteria: Mapping[str, Any]) -> Tuple[List[Any], Optional[QueryResult]]:
        resource = self._resource(table_name)
        key = resource.primary_key or "id"
        if key in criteria and len(criteria) == 1:
            return [criteria[key]], None
        found = self.get_table_data(table_name, DataOperationOptions(filters=FilterOptions(where=dict(criteria))))
        if not found.success:
            return [], found
        return [row[key] for row in found.data if key in row], None

    def update_records(self, table_name: str, criteria: Mapping[str, Any], data: Mapping[str, Any], **options: Any) -> QueryResult:
        if not criteria:
            return QueryResult.failure(ValidationError("Update criteria are required"))
        ids, failed = self._matching_ids(table_name, criteria)
        if failed is not None:
            return failed
        return self._each(table_name, ids, None, lambda record_id: self.update_record(table_name, record_id, data, **options))

    def delete_record(self, table_name: str, record_id: Any, **options: Any) -> QueryResult:
        def _build() -> BuiltQuery:
            resource = self._resource(table_name)
            return self.build_delete_query(table_name, {resource.primary_key or "id": record_id})

        return self._run_built(_build, options.get("context"), affected=1)

    def delete_records(self, table_name: str, criteria: Mapping[str, Any], **options: Any) -> QueryResult:
        if not criteria:
            return QueryResult.failure(ValidationError("Delete criteria are required"))
        ids, failed = self._matching_ids(table_name, criteria)
        if failed is not None:
            return failed
        return self._each(table_name, ids, None, lambda record_id: self.delete_record(table_name, record_id, **options))

    def upsert_record(self, table_name: str, data: Mapping[str, Any], conflict_columns: Sequence[str], **options: Any) -> QueryResult:
        """``PUT`` to the item URL when the record carries its key, otherwise ``POST``."""

        try:
            resource = self._resource(table_name)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        key = resource.primary_key or "id"
        if data.get(key) is None:
            return self.insert_record(table_name, data, **options)
        built = BuiltQuery(f"PUT {self._item_endpoint(resource, data[key])}", {"body": dict(data)})
        return self._run(built, options.get("context"), affected=1)

    def bulk_upsert(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        options: Optional[BulkOperationOptions] = None,
    ) -> QueryResult:
        return self._each(table_name, data, options, lambda record: self.upsert_record(table_name, record, conflict_columns))

    def _each(
        self,
        table_name: str,
        items: Sequence[Any],
        options: Optional[BulkOperationOptions],
        call: Callable[[Any], QueryResult],
    ) -> QueryResult:
        """
        Apply ``call`` to every item, batch by batch.

        HTTP has no transactions: without ``continue_on_error`` the loop stops
        at the first failure and reports the items already applied.
        """

        self._ensure_connected()
        options = options or BulkOperationOptions()
        watch = Stopwatch()
        rows: List[Dict[str, Any]] = []
        warnings: List[str] = []
        applied = 0
        for batch in batched(list(items), options.batch_size):
            for item in batch:
                outcome = call(item)
                if outcome.success:
                    rows.extend(outcome.data)
                    applied += 1
                    continue
                message = outcome.error.message if outcome.error else "unknown error"
                if not options.continue_on_error:
                    result = QueryResult.failure(outcome.error or ConnectorConnectionError(message), execution_time_ms=watch.elapsed_ms)
                    result.affected_rows = applied
                    result.metadata["applied"] = applied
                    return result
                warnings.append(f"Item {applied + len(warnings) + 1} failed: {message}")
        return QueryResult(
            success=not items or applied > 0,
            data=rows,
            affected_rows=applied,
            execution_time_ms=watch.elapsed_ms,
            warnings=warnings,
            metadata={"failed": len(warnings)},
        )

    def validate_data(self, table_name: str, data: Mapping[str, Any], mode: str = "full") -> DataValidationResult:
        return self.converter.validate(self._resource(table_name), data, mode)

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
        return quote(identifier, safe="")

    def escape_literal(self, literal: Any) -> str:
        return json.dumps(literal, default=str)

    def get_parameter_placeholder(self, index: int) -> str:
        return f"{{p{index}}}"

    def health_check(self) -> HealthCheckResult:
        checks: List[HealthCheckItem] = []
        client = self.client
        if not self.is_connected() or client is None:
            return HealthCheckResult.from_checks([HealthCheckItem("connection", "fail", "Not connected")])
        config = self._coerce_config(None)
        watch = Stopwatch()
        if config.health_endpoint:
            try:
                client.request("GET", config.health_endpoint)
                checks.append(HealthCheckItem("connection", "pass", "API reachable", watch.elapsed_ms))
            except ConnectorError as exc:
                checks.append(HealthCheckItem("connection", "fail", exc.message, watch.elapsed_ms))
        else:
            checks.append(HealthCheckItem("connection", "pass", "Client ready"))
        saturated = [name for name, usage in client.rate_limiter.snapshot().items() if usage["used"] >= usage["limit"]]
        if saturated:
            checks.append(HealthCheckItem("rate_limit", "warn", f"Rate limit windows full: {', '.join(saturated)}"))
        else:
            checks.append(HealthCheckItem("rate_limit", "pass", "Rate limit capacity available"))
        return HealthCheckResult.from_checks(checks)


__all__ = ["REST_CAPABILITIES", "RESTConnector"]

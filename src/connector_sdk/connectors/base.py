"""
Capability contract shared by every connector.

The :class:`Connector` protocol is structural: SQL, Supabase, document and REST
connectors are independent classes that compose pools, dialects, samplers
and HTTP clients rather than inheriting from a common base. This module also
holds the value objects passed across the contract (results, options, events)
and the pydantic configuration models that backend configs extend.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    List,
    Literal,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
    runtime_checkable,
)

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..conversion.validators import format_pydantic_errors
from ..core.errors import AuthenticationError, ConnectorConnectionError, ConnectorError, ValidationError
from ..core.logging import get_logger
from ..core.schema import ForeignKeyDefinition, IndexDefinition

LOGGER = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


# Configuration --------------------------------------------------------------


class ConfigModel(BaseModel):
    """Base for connector configuration models: frozen, strict keys, camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
        protected_namespaces=(),
    )

    def to_mapping(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class PoolConfig(ConfigModel):
    min: int = 1
    max: int = 10
    idle_timeout_ms: int = Field(30000, validation_alias=AliasChoices("idle_timeout_ms", "idleTimeoutMs", "idleTimeoutMillis"))
    connection_timeout_ms: int = Field(
        5000, validation_alias=AliasChoices("connection_timeout_ms", "connectionTimeoutMs", "connectionTimeoutMillis")
    )
    acquire_timeout_ms: int = Field(
        60000, validation_alias=AliasChoices("acquire_timeout_ms", "acquireTimeoutMs", "acquireTimeoutMillis")
    )


class SSLConfig(ConfigModel):
    enabled: bool = False
    mode: Optional[str] = None
    reject_unauthorized: bool = True
    ca: Optional[str] = None
    cert: Optional[str] = None
    key: Optional[str] = None


class ConnectorConfig(ConfigModel):
    """
    Common connection configuration.

    ``credentials_secret_id`` is an opaque reference resolved through a
    :class:`~connector_sdk.config.CredentialsProvider`; credentials themselves
    never live in configuration objects.
    """

    type: str
    name: str
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None
    credentials_secret_id: Optional[str] = None
    pool_config: Optional[PoolConfig] = None
    ssl_config: Optional[SSLConfig] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


ConfigT = TypeVar("ConfigT", bound=BaseModel)


def collect_config_errors(model: Type[ConfigT], payload: Union[Mapping[str, Any], BaseModel]) -> Tuple[Optional[ConfigT], List[str]]:
    """Parse ``payload`` into ``model`` returning every field error instead of the first."""

    if isinstance(payload, model):
        return payload, []
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model.model_validate(dict(payload)), []
    except PydanticValidationError as exc:
        return None, format_pydantic_errors(exc)


def parse_config(model: Type[ConfigT], payload: Union[Mapping[str, Any], BaseModel], prefix: str = "Invalid configuration") -> ConfigT:
    instance, errors = collect_config_errors(model, payload)
    if instance is None:
        raise ValidationError.from_errors(prefix, errors)
    return instance


# Value objects --------------------------------------------------------------


@dataclass(slots=True)
class QueryContext:
    timeout_ms: Optional[int] = None
    read_only: bool = False
    transaction: bool = False
    cursor: bool = False
    batch_size: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class QueryResult:
    """
    Normalised outcome of a data operation.

    Data operations never raise for backend failures; they return
    ``success=False`` with a taxonomy ``error`` instead.
    """

    success: bool
    data: List[Dict[str, Any]] = field(default_factory=list)
    total_count: Optional[int] = None
    affected_rows: Optional[int] = None
    insert_id: Any = None
    execution_time_ms: Optional[float] = None
    warnings: List[str] = field(default_factory=list)
    error: Optional[ConnectorError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, error: ConnectorError, *, execution_time_ms: Optional[float] = None, **metadata: Any) -> "QueryResult":
        return cls(success=False, error=error, execution_time_ms=execution_time_ms, metadata=dict(metadata))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": self.success,
            "data": self.data,
            "totalCount": self.total_count,
            "affectedRows": self.affected_rows,
            "insertId": self.insert_id,
            "executionTimeMs": self.execution_time_ms,
            "warnings": list(self.warnings),
            "metadata": dict(self.metadata),
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        return payload


@dataclass(slots=True)
class BuiltQuery:
    """Query text with named bind parameters (``:p0``, ``:p1``...)."""

    text: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class OrderBy:
    column: str
    direction: Literal["ASC", "DESC"] = "ASC"


@dataclass(slots=True)
class PaginationOptions:
    limit: Optional[int] = None
    offset: Optional[int] = None
    cursor: Optional[str] = None
    order_by: List[OrderBy] = field(default_factory=list)


@dataclass(slots=True)
class SearchFilter:
    columns: List[str]
    term: str


@dataclass(slots=True)
class FilterOptions:
    where: Dict[str, Any] = field(default_factory=dict)
    where_raw: Optional[str] = None
    search: Optional[SearchFilter] = None


@dataclass(slots=True)
class DataOperationOptions:
    pagination: Optional[PaginationOptions] = None
    filters: Optional[FilterOptions] = None
    context: Optional[QueryContext] = None
    returning: Optional[List[str]] = None


@dataclass(slots=True)
class BulkOperationOptions:
    batch_size: int = 1000
    continue_on_error: bool = False
    context: Optional[QueryContext] = None
    returning: Optional[List[str]] = None


@dataclass(slots=True)
class IntrospectionOptions:
    include_tables: Optional[List[str]] = None
    exclude_tables: Optional[List[str]] = None
    include_views: bool = True
    include_functions: bool = False
    include_procedures: bool = False
    include_triggers: bool = False
    include_sequences: bool = False
    include_indexes: bool = True
    include_constraints: bool = True
    schema_filter: Optional[List[str]] = None
    max_tables: Optional[int] = None
    concurrency: int = 1

    def accepts(self, table_name: str) -> bool:
        if self.include_tables and table_name not in self.include_tables:
            return False
        if self.exclude_tables and table_name in self.exclude_tables:
            return False
        return True


@dataclass(slots=True)
class ConnectionValidationResult:
    is_valid: bool
    latency_ms: Optional[float] = None
    server_version: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[ConnectorError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ConfigValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ConfigTestResult:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    latency_ms: Optional[float] = None


@dataclass(slots=True)
class HealthCheckItem:
    name: str
    status: Literal["pass", "fail", "warn"]
    message: Optional[str] = None
    duration_ms: Optional[float] = None


@dataclass(slots=True)
class HealthCheckResult:
    healthy: bool
    status: str
    checks: List[HealthCheckItem] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def from_checks(cls, checks: Sequence[HealthCheckItem]) -> "HealthCheckResult":
        healthy = all(item.status != "fail" for item in checks)
        degraded = any(item.status == "warn" for item in checks)
        status = "unhealthy" if not healthy else ("degraded" if degraded else "healthy")
        return cls(healthy=healthy, status=status, checks=list(checks))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "status": self.status,
            "checks": [
                {"name": item.name, "status": item.status, "message": item.message, "duration": item.duration_ms}
                for item in self.checks
            ],
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(slots=True)
class ConnectionMetrics:
    active_connections: int = 0
    idle_connections: int = 0
    total_connections: int = 0
    queries_executed: int = 0
    average_query_time_ms: float = 0.0
    last_activity: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeConnections": self.active_connections,
            "idleConnections": self.idle_connections,
            "totalConnections": self.total_connections,
            "queriesExecuted": self.queries_executed,
            "averageQueryTime": self.average_query_time_ms,
            "lastActivity": self.last_activity.isoformat(),
        }


class QueryStats:
    """Thread-safe counters behind :meth:`Connector.get_connection_metrics`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.queries_executed = 0
        self.total_time_ms = 0.0
        self.last_activity = utcnow()

    def record(self, elapsed_ms: float) -> None:
        with self._lock:
            self.queries_executed += 1
            self.total_time_ms += elapsed_ms
            self.last_activity = utcnow()

    def touch(self) -> None:
        with self._lock:
            self.last_activity = utcnow()

    @property
    def average_ms(self) -> float:
        with self._lock:
            return self.total_time_ms / self.queries_executed if self.queries_executed else 0.0

    def metrics(self, *, active: int = 0, idle: int = 0) -> ConnectionMetrics:
        return ConnectionMetrics(
            active_connections=active,
            idle_connections=idle,
            total_connections=active + idle,
            queries_executed=self.queries_executed,
            average_query_time_ms=self.average_ms,
            last_activity=self.last_activity,
        )


class Stopwatch:
    def __init__(self) -> None:
        self._started = time.perf_counter()

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000.0


# Events ---------------------------------------------------------------------


@dataclass(slots=True)
class ConnectionEvents:
    """Optional lifecycle callbacks; a failing callback is logged and never propagates."""

    on_connect: Optional[Callable[[], None]] = None
    on_disconnect: Optional[Callable[[], None]] = None
    on_error: Optional[Callable[[ConnectorError], None]] = None
    on_query: Optional[Callable[[str, float], None]] = None
    on_reconnect: Optional[Callable[[], None]] = None

    def emit(self, event: str, *args: Any) -> None:
        callback = getattr(self, event, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Connection event listener failed", extra={"operation": event, "error": str(exc)})


def not_connected(connector_type: str) -> ConnectorConnectionError:
    return ConnectorConnectionError(
        f"{connector_type} connector is not connected",
        metadata={"connectorType": connector_type},
    )


def resolve_credentials(provider: Any, secret_id: Optional[str], *, connector_type: str) -> Dict[str, Any]:
    """
    Resolve ``secret_id`` through the credentials collaborator.

    Returns an empty mapping when no secret is configured; raises
    :class:`AuthenticationError` when the lookup fails.
    """

    if not secret_id:
        return {}
    if provider is None:
        raise AuthenticationError(
            "No credentials provider configured", metadata={"credentialsSecretId": secret_id, "connectorType": connector_type}
        )
    result = provider.get_credentials(secret_id, accessed_by=f"connector:{connector_type}")
    if not result.success or not result.credentials:
        raise AuthenticationError(
            "Failed to retrieve database credentials",
            metadata={"credentialsSecretId": secret_id, "reason": result.error},
        )
    return dict(result.credentials)


# Contracts ------------------------------------------------------------------


@runtime_checkable
class Connector(Protocol):
    """Uniform capability contract implemented by every connector."""

    type: str
    version: str
    capabilities: List[str]

    def connect(self, config: Any, events: Optional[ConnectionEvents] = None) -> None: ...

    def disconnect(self) -> None: ...

    def is_connected(self) -> bool: ...

    def get_connection_status(self) -> ConnectionValidationResult: ...

    def validate_connection(self, config: Any) -> ConnectionValidationResult: ...

    def validate_configuration(self, config: Any) -> ConfigValidationResult: ...

    def test_query(self, query: Optional[str] = None, context: Optional[QueryContext] = None) -> QueryResult: ...

    def introspect_schema(self, options: Optional[IntrospectionOptions] = None) -> Any: ...

    def list_schemas(self) -> List[str]: ...

    def list_tables(self, schema_name: Optional[str] = None) -> List[str]: ...

    def get_table_definition(self, table_name: str, schema_name: Optional[str] = None) -> Any: ...

    def get_table_columns(self, table_name: str, schema_name: Optional[str] = None) -> List[Any]: ...

    def get_table_primary_key(self, table_name: str, schema_name: Optional[str] = None) -> List[str]: ...

    def get_table_foreign_keys(self, table_name: str, schema_name: Optional[str] = None) -> List[ForeignKeyDefinition]: ...

    def get_table_indexes(self, table_name: str, schema_name: Optional[str] = None) -> List[IndexDefinition]: ...

    def compare_schemas(self, source: Any, target: Any) -> Any: ...

    def generate_schema_diff(self, comparison: Any) -> List[str]: ...

    def get_table_data(self, table_name: str, options: Optional[DataOperationOptions] = None) -> QueryResult: ...

    def insert_record(self, table_name: str, data: Mapping[str, Any], **options: Any) -> QueryResult: ...

    def insert_records(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Optional[BulkOperationOptions] = None) -> QueryResult: ...

    def update_record(self, table_name: str, record_id: Any, data: Mapping[str, Any], **options: Any) -> QueryResult: ...

    def update_records(self, table_name: str, criteria: Mapping[str, Any], data: Mapping[str, Any], **options: Any) -> QueryResult: ...

    def delete_record(self, table_name: str, record_id: Any, **options: Any) -> QueryResult: ...

    def delete_records(self, table_name: str, criteria: Mapping[str, Any], **options: Any) -> QueryResult: ...

    def upsert_record(self, table_name: str, data: Mapping[str, Any], conflict_columns: Sequence[str], **options: Any) -> QueryResult: ...

    def bulk_upsert(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        options: Optional[BulkOperationOptions] = None,
    ) -> QueryResult: ...

    def count_records(self, table_name: str, criteria: Optional[Mapping[str, Any]] = None, **options: Any) -> QueryResult: ...

    def execute_query(self, query: str, parameters: Any = None, context: Optional[QueryContext] = None) -> QueryResult: ...

    def execute_transaction(self, operations: Sequence[Any], context: Optional[QueryContext] = None) -> QueryResult: ...

    def get_query_execution_plan(self, query: str, parameters: Any = None) -> Any: ...

    def get_connection_metrics(self) -> ConnectionMetrics: ...

    def serialize_value(self, value: Any, column_type: Any) -> Any: ...

    def deserialize_value(self, value: Any, column_type: Any) -> Any: ...

    def get_type_mapping(self) -> Dict[str, str]: ...

    def escape_identifier(self, identifier: str) -> str: ...

    def escape_literal(self, literal: Any) -> str: ...

    def get_parameter_placeholder(self, index: int) -> str: ...

    def health_check(self) -> HealthCheckResult: ...

    def cleanup(self) -> None: ...


@runtime_checkable
class ConnectorFactory(Protocol):
    """Creates and validates connectors of one ``type``."""

    type: str
    name: str
    description: str
    version: str
    supported_versions: List[str]
    config_model: Type[BaseModel]

    def validate_config(self, config: Any) -> ConfigValidationResult: ...

    def validate_credentials(self, credentials: Mapping[str, Any]) -> ConfigValidationResult: ...

    def create_default_config(self) -> Dict[str, Any]: ...

    def create(self, config: Any) -> Connector: ...

    def test_config(self, config: Any) -> ConfigTestResult: ...

    def get_supported_features(self) -> Dict[str, bool]: ...

    def get_example_configs(self) -> Dict[str, Dict[str, Any]]: ...


@runtime_checkable
class ConnectorPlugin(Protocol):
    """Packaged connector distributed outside the SDK."""

    name: str
    type: str
    version: str
    description: str
    author: str
    dependencies: List[str]
    capabilities: List[str]

    def get_factory(self) -> ConnectorFactory: ...

    def initialize(self) -> None: ...

    def dispose(self) -> None: ...


def is_connector_factory(candidate: Any) -> bool:
    return (
        candidate is not None
        and isinstance(getattr(candidate, "type", None), str)
        and callable(getattr(candidate, "create", None))
        and callable(getattr(candidate, "validate_config", None))
    )


def is_connector_plugin(candidate: Any) -> bool:
    return (
        candidate is not None
        and isinstance(getattr(candidate, "name", None), str)
        and callable(getattr(candidate, "get_factory", None))
        and callable(getattr(candidate, "initialize", None))
        and callable(getattr(candidate, "dispose", None))
    )


def batched(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    size = max(int(size), 1)
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = [
    "BuiltQuery",
    "BulkOperationOptions",
    "ConfigModel",
    "ConfigTestResult",
    "ConfigValidationResult",
    "ConnectionEvents",
    "ConnectionMetrics",
    "ConnectionState",
    "ConnectionValidationResult",
    "Connector",
    "ConnectorConfig",
    "ConnectorFactory",
    "ConnectorPlugin",
    "DataOperationOptions",
    "FilterOptions",
    "HealthCheckItem",
    "HealthCheckResult",
    "IntrospectionOptions",
    "OrderBy",
    "PaginationOptions",
    "PoolConfig",
    "QueryContext",
    "QueryResult",
    "QueryStats",
    "SSLConfig",
    "SearchFilter",
    "Stopwatch",
    "batched",
    "collect_config_errors",
    "format_pydantic_errors",
    "is_connector_factory",
    "is_connector_plugin",
    "not_connected",
    "parse_config",
    "resolve_credentials",
    "utcnow",
]

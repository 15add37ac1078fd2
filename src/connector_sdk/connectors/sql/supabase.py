"""
Supabase connector.

Supabase is Postgres behind PostgREST. When the resolved credentials carry
``host``/``user``/``password`` the connector composes a
:class:`~connector_sdk.connectors.sql.connector.PostgresConnector` for direct
SQL; otherwise it runs in API-only mode through :class:`PostgrestClient`.
Both paths produce the same canonical schema objects and ``QueryResult``
shapes.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ...config import StaticCredentialsProvider
from ...conversion import DataValidationResult, TypeConversionConfig, TypeConverter, deserialize_value, escape_literal, serialize_value
from ...core.errors import (
    AuthenticationError,
    ConfigurationError,
    ConnectorConnectionError,
    ConnectorError,
    FeatureNotSupportedError,
    OperationNotSupportedError,
    SchemaError,
    TableNotFoundError,
    ValidationError,
)
from ...core.logging import get_logger
from ...core.schema import (
    ColumnDefinition,
    DatabaseSchema,
    DatabaseType,
    ForeignKeyDefinition,
    IndexDefinition,
    SchemaComparison,
    TableDefinition,
    schema_version,
)
from ...introspection import compare_schemas, generate_schema_diff
from ..base import (
    BuiltQuery,
    BulkOperationOptions,
    ConfigModel,
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
from ..rest.openapi import json_schema_type
from .config import SCHEMA_NAME_PATTERN, PostgresConnectorConfig, _pick, _section, config_payload, postgres_config_rules
from .connector import SQL_CAPABILITIES, PostgresConnector, SQLTransaction, _annotate_columns, _key_constraints
from .dialects import PostgresDialect, map_native_type
from .postgrest import PostgrestClient, PostgrestQuery, PostgrestResult

DEFAULT_SUPABASE_URL = "https://exampleproject1234567890.supabase.co"
SUPABASE_URL_PATTERN = re.compile(r"^https://[a-zA-Z0-9-]+\.supabase\.(co|io)$")
PROJECT_REF_PATTERN = re.compile(r"https://([a-zA-Z0-9-]+)\.supabase\.(co|io)")
MIN_PROJECT_REF_LENGTH = 20

SUPABASE_CAPABILITIES = SQL_CAPABILITIES + ["realtime", "row_level_security", "rest_api"]

_PK_MARKER = re.compile(r"<pk\s*/>")
_FK_MARKER = re.compile(r"<fk\s+table='([^']+)'\s+column='([^']+)'\s*/>")


# Configuration --------------------------------------------------------------


class SupabaseAuthConfig(ConfigModel):
    auto_refresh_token: bool = False
    persist_session: bool = False
    detect_session_in_url: bool = False
    flow_type: Literal["implicit", "pkce"] = "implicit"


class SupabaseRealtimeConfig(ConfigModel):
    enabled: bool = False
    channels: List[str] = Field(default_factory=list, max_length=50)
    heartbeat_interval_ms: int = Field(30000, ge=1000, le=60000)
    reconnect_delay: int = Field(5000, ge=1000, le=30000)
    max_reconnect_attempts: int = Field(5, ge=1, le=20)
    enable_presence: bool = False
    enable_broadcast: bool = False


class SupabaseRLSConfig(ConfigModel):
    enforce_rls: bool = Field(True, alias="enforceRLS")
    bypass_rls_for_service: bool = Field(False, alias="bypassRLSForService")
    default_policies: List[str] = Field(default_factory=list, max_length=20)


class SupabaseFeatures(ConfigModel):
    enable_edge_functions: bool = False
    enable_storage: bool = False
    enable_auth: bool = False
    enable_realtime: bool = False


class SupabaseAPIConfig(ConfigModel):
    db_schema: str = Field("public", alias="schema", max_length=63)
    headers: Dict[str, str] = Field(default_factory=dict)


class SupabaseConnectorConfig(PostgresConnectorConfig):
    type: str = "supabase"
    name: str = "supabase"
    supabase_url: str = DEFAULT_SUPABASE_URL
    supabase_key: Optional[str] = Field(None, min_length=1, max_length=1000)
    auth_config: SupabaseAuthConfig = Field(default_factory=SupabaseAuthConfig)
    realtime_config: SupabaseRealtimeConfig = Field(default_factory=SupabaseRealtimeConfig)
    rls_config: SupabaseRLSConfig = Field(default_factory=SupabaseRLSConfig)
    features: SupabaseFeatures = Field(default_factory=SupabaseFeatures)
    api_config: SupabaseAPIConfig = Field(default_factory=SupabaseAPIConfig)

    @field_validator("supabase_url")
    @classmethod
    def _supabase_host(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("Invalid Supabase URL")
        if "supabase.co" not in value and "supabase.io" not in value:
            raise ValueError("Must be a valid Supabase URL")
        return value


class SupabaseCredentials(BaseModel):
    """Shape of the secret resolved for a Supabase project."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = Field(None, min_length=1, max_length=1000)
    api_key: Optional[str] = Field(None, min_length=1, max_length=1000)
    service_role_key: Optional[str] = Field(None, min_length=1, max_length=1000)
    user: Optional[str] = Field(None, max_length=63)
    password: Optional[str] = Field(None, max_length=1000)
    host: Optional[str] = Field(None, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    database: Optional[str] = Field(None, max_length=63)
    jwt_secret: Optional[str] = Field(None, max_length=1000)
    project_ref: Optional[str] = Field(None, max_length=100)


def project_ref(url: str) -> Optional[str]:
    match = PROJECT_REF_PATTERN.match(url or "")
    return match.group(1) if match else None


def supabase_config_rules(payload: Mapping[str, Any]) -> List[str]:
    """Cross-field rules for Supabase configurations, followed by the Postgres ones."""

    errors: List[str] = []
    url = _pick(payload, "supabase_url", "supabaseUrl") or DEFAULT_SUPABASE_URL
    if not isinstance(url, str) or not SUPABASE_URL_PATTERN.match(url):
        errors.append("Invalid Supabase URL format")
    ref = project_ref(url) if isinstance(url, str) else None
    if ref is None or len(ref) < MIN_PROJECT_REF_LENGTH:
        errors.append("Invalid Supabase project reference in URL")

    realtime = _section(payload, "realtime_config", "realtimeConfig")
    features = _section(payload, "features")
    realtime_enabled = bool(_pick(realtime, "enabled"))
    realtime_feature = bool(_pick(features, "enable_realtime", "enableRealtime"))
    if realtime_enabled and not realtime_feature:
        errors.append("Real-time config enabled but feature flag is disabled")

    rls = _section(payload, "rls_config", "rlsConfig")
    enforce = _pick(rls, "enforce_rls", "enforceRLS")
    if enforce is False and _pick(rls, "bypass_rls_for_service", "bypassRLSForService"):
        errors.append("Cannot bypass RLS when RLS is not enforced")

    api = _section(payload, "api_config", "apiConfig")
    schema = _pick(api, "db_schema", "schema")
    if schema and (not isinstance(schema, str) or not SCHEMA_NAME_PATTERN.match(schema)):
        errors.append(f"Invalid schema name: {schema}")

    if realtime_feature and not realtime_enabled:
        errors.append("Real-time feature enabled but real-time config is disabled")

    errors.extend(postgres_config_rules(payload))
    return errors


def _jwt_claims(token: str) -> Optional[Dict[str, Any]]:
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return None
    return claims if isinstance(claims, dict) else None


def supabase_credentials_rules(credentials: Mapping[str, Any]) -> List[str]:
    errors: List[str] = []
    key = _pick(credentials, "supabase_key", "supabaseKey") or _pick(credentials, "api_key", "apiKey")
    if not key:
        errors.append("Either supabaseKey or apiKey must be provided")
    elif isinstance(key, str) and key.startswith("eyJ"):
        claims = _jwt_claims(key)
        if claims is None or not claims.get("role") or not claims.get("iss"):
            errors.append("Invalid Supabase JWT key format")

    service_key = _pick(credentials, "service_role_key", "serviceRoleKey")
    if service_key:
        claims = _jwt_claims(str(service_key))
        if claims is None:
            errors.append("Invalid service role key format")
        elif claims.get("role") != "service_role":
            errors.append("Service role key does not have service_role claim")

    ref = _pick(credentials, "project_ref", "projectRef")
    url = _pick(credentials, "supabase_url", "supabaseUrl")
    if ref and url and project_ref(str(url)) not in (None, ref):
        errors.append("Project reference does not match Supabase URL")

    user = credentials.get("user")
    password = credentials.get("password")
    host = credentials.get("host")
    if user or password or host:
        if not user or not password:
            errors.append("Both user and password required for Postgres connection")
    return errors


# Realtime -------------------------------------------------------------------


@dataclass(slots=True)
class RealtimeChannel:
    """A ``postgres_changes`` listener registered with :meth:`SupabaseConnector.subscribe_to_table`."""

    name: str
    table: str
    event: str
    schema: str
    callback: Callable[[Dict[str, Any]], None]
    filter: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    delivered: int = 0

    def matches(self, table: str, event: str, schema: str) -> bool:
        return self.table == table and self.schema == schema and self.event in ("*", event.upper())


# Connector ------------------------------------------------------------------


class SupabaseConnector:
    """
    Connector for Supabase projects.

    Parameters
    ----------
    config:
        Optional :class:`SupabaseConnectorConfig` (or mapping).
    credentials_provider:
        Resolves ``credentials_secret_id``; the secret holds ``supabaseKey``
        (or ``apiKey``) and optionally Postgres ``host``/``user``/``password``.
    transport:
        HTTPX transport for the PostgREST client.
    sql_options:
        Forwarded to the composed :class:`PostgresConnector`
        (``engine_factory``, ``dialect``...).
    """

    type = "supabase"
    version = "1.0.0"
    config_model = SupabaseConnectorConfig

    def __init__(
        self,
        config: Any = None,
        *,
        credentials_provider: Any = None,
        transport: Optional[httpx.BaseTransport] = None,
        conversion_config: Optional[TypeConversionConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        **sql_options: Any,
    ) -> None:
        self.config: Optional[SupabaseConnectorConfig] = parse_config(self.config_model, config) if config is not None else None
        self.credentials_provider = credentials_provider
        self.capabilities = list(SUPABASE_CAPABILITIES)
        self.state = ConnectionState.DISCONNECTED
        self.events = ConnectionEvents()
        self.stats = QueryStats()
        self.converter = TypeConverter(conversion_config)
        self.dialect = PostgresDialect()
        self.api: Optional[PostgrestClient] = None
        self.sql: Optional[PostgresConnector] = None
        self.channels: Dict[str, RealtimeChannel] = {}
        self._conversion_config = conversion_config
        self._transport = transport
        self._sleep = sleep
        self._sql_options = sql_options
        self._lock = threading.RLock()
        self._definitions: Optional[Dict[str, TableDefinition]] = None
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}", extra={"connector": self.type})

    # Lifecycle --------------------------------------------------------------

    def _coerce_config(self, config: Any) -> SupabaseConnectorConfig:
        if config is None:
            if self.config is None:
                raise ConfigurationError("No configuration provided")
            return self.config
        return parse_config(self.config_model, config)

    @staticmethod
    def _api_key(config: SupabaseConnectorConfig, credentials: Mapping[str, Any]) -> Optional[str]:
        return config.supabase_key or _pick(credentials, "supabase_key", "supabaseKey") or _pick(credentials, "api_key", "apiKey")

    def _make_api(self, config: SupabaseConnectorConfig, credentials: Mapping[str, Any]) -> PostgrestClient:
        url = config.supabase_url or _pick(credentials, "supabase_url", "supabaseUrl")
        key = self._api_key(config, credentials)
        if not url or not key:
            raise AuthenticationError("Supabase URL and API key are required", metadata={"connectorType": self.type})
        policy = config.retry_policy
        return PostgrestClient(
            url,
            key,
            schema=config.api_config.db_schema,
            headers=config.api_config.headers,
            timeout_ms=config.query_timeout,
            max_attempts=policy.max_attempts,
            base_delay_ms=policy.base_delay,
            max_delay_ms=policy.max_delay,
            transport=self._transport,
            sleep=self._sleep,
        )

    @staticmethod
    def _has_sql_credentials(credentials: Mapping[str, Any]) -> bool:
        return bool(credentials.get("host") and credentials.get("user") and credentials.get("password"))

    def _make_sql(self, config: SupabaseConnectorConfig, credentials: Mapping[str, Any]) -> PostgresConnector:
        secret_id = config.credentials_secret_id or "supabase"
        provider = StaticCredentialsProvider({secret_id: credentials})
        sql_config = config.model_copy(update={"credentials_secret_id": secret_id})
        return PostgresConnector(
            sql_config,
            credentials_provider=provider,
            conversion_config=self._conversion_config,
            sleep=self._sleep,
            **self._sql_options,
        )

    def connect(self, config: Any = None, events: Optional[ConnectionEvents] = None) -> None:
        """Build the PostgREST client and, when credentials allow, the direct Postgres connection."""

        with self._lock:
            config = self._coerce_config(config)
            reconnecting = self.is_connected()
            if reconnecting:
                self._teardown()
            self.config = config
            if events is not None:
                self.events = events
            self.state = ConnectionState.CONNECTING
            self.logger.info("Connecting", extra={"type": self.type, "url": config.supabase_url, "status": "connecting"})
            sql: Optional[PostgresConnector] = None
            try:
                credentials = resolve_credentials(self.credentials_provider, config.credentials_secret_id, connector_type=self.type)
                api = self._make_api(config, credentials)
                if self._has_sql_credentials(credentials):
                    sql = self._make_sql(config, credentials)
                    sql.connect()
            except ConnectorError as exc:
                self.state = ConnectionState.DISCONNECTED
                error = exc
                if not isinstance(exc, AuthenticationError):
                    error = ConnectorConnectionError(f"Failed to connect to Supabase: {exc.message}", cause=exc, metadata={"connectorType": self.type})
                self.logger.error("Connection failed", extra={"type": self.type, "error": exc.message})
                self.events.emit("on_error", error)
                if error is exc:
                    raise
                raise error from exc
            self.api = api
            self.sql = sql
            self.state = ConnectionState.CONNECTED
            self.stats.touch()
            self.logger.info(
                "Connected",
                extra={"type": self.type, "mode": "sql" if sql is not None else "api", "status": "connected"},
            )
            self.events.emit("on_reconnect" if reconnecting else "on_connect")

    def _teardown(self) -> None:
        for name in list(self.channels):
            self.unsubscribe_from_table(name)
        sql, self.sql = self.sql, None
        if sql is not None:
            sql.disconnect()
        self.api = None
        self._definitions = None

    def disconnect(self) -> None:
        with self._lock:
            was_connected = self.is_connected()
            self._teardown()
            self.state = ConnectionState.DISCONNECTED
            if was_connected:
                self.logger.info("Disconnected", extra={"type": self.type, "status": "disconnected"})
                self.events.emit("on_disconnect")

    def cleanup(self) -> None:
        self.disconnect()
        self.converter.clear_cache()

    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self.api is not None

    def _ensure_connected(self) -> PostgrestClient:
        api = self.api
        if not self.is_connected() or api is None:
            raise not_connected(self.type)
        return api

    @property
    def api_only(self) -> bool:
        return self.sql is None

    def get_connection_status(self) -> ConnectionValidationResult:
        return ConnectionValidationResult(
            is_valid=self.is_connected(),
            capabilities=list(self.capabilities),
            metadata={"state": self.state.value, "mode": "api" if self.api_only else "sql", "channels": len(self.channels)},
        )

    def validate_connection(self, config: Any) -> ConnectionValidationResult:
        watch = Stopwatch()
        try:
            parsed = self._coerce_config(config)
            credentials = resolve_credentials(self.credentials_provider, parsed.credentials_secret_id, connector_type=self.type)
            self._make_api(parsed, credentials).openapi()
            postgres = "Limited (API only)"
            if self._has_sql_credentials(credentials):
                result = self._make_sql(parsed, credentials).validate_connection(parsed)
                postgres = "OK" if result.is_valid else "Limited (API only)"
        except ConnectorError as exc:
            return ConnectionValidationResult(is_valid=False, latency_ms=watch.elapsed_ms, error=exc)
        return ConnectionValidationResult(
            is_valid=True,
            latency_ms=watch.elapsed_ms,
            capabilities=list(self.capabilities),
            metadata={"supabaseConnection": "OK", "postgresConnection": postgres, "features": self.get_supabase_features(parsed)},
        )

    def validate_configuration(self, config: Any) -> ConfigValidationResult:
        payload = config_payload(config)
        _, errors = collect_config_errors(self.config_model, payload)
        errors.extend(supabase_config_rules(payload))
        return ConfigValidationResult(valid=not errors, errors=errors)

    def test_query(self, query: Optional[str] = None, context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.test_query(query, context)
        watch = Stopwatch()
        try:
            tables = self.list_tables()
        except ConnectorError as exc:
            return QueryResult.failure(exc, execution_time_ms=watch.elapsed_ms)
        return QueryResult(success=True, data=[{"tables": len(tables)}], execution_time_ms=watch.elapsed_ms)

    def get_supabase_features(self, config: Optional[SupabaseConnectorConfig] = None) -> Dict[str, bool]:
        config = config or self._coerce_config(None)
        return {
            "restApi": True,
            "directSql": self.sql is not None,
            "realtimeSubscriptions": config.realtime_config.enabled,
            "rowLevelSecurity": config.rls_config.enforce_rls,
            "auth": config.features.enable_auth,
            "storage": config.features.enable_storage,
            "edgeFunctions": config.features.enable_edge_functions,
        }

    # Realtime ---------------------------------------------------------------

    def subscribe_to_table(
        self,
        table_name: str,
        event: str,
        callback: Callable[[Dict[str, Any]], None],
        *,
        filter: Optional[str] = None,
        schema: Optional[str] = None,
    ) -> str:
        """
        Register a ``postgres_changes`` listener and return its channel name.

        Payloads reach the callback through :meth:`dispatch`, which the
        realtime transport calls for every change it receives.
        """

        self._ensure_connected()
        event = event.upper()
        if event not in ("INSERT", "UPDATE", "DELETE", "*"):
            raise ValidationError(f"Unsupported realtime event: {event}", field="event")
        config = self._coerce_config(None)
        if not config.realtime_config.enabled:
            self.logger.warning("Realtime config is disabled; subscription only receives dispatched payloads", extra={"table": table_name})
        with self._lock:
            base = f"{table_name}_{event}_{int(time.time() * 1000)}"
            name, suffix = base, 1
            while name in self.channels:
                name = f"{base}_{suffix}"
                suffix += 1
            self.channels[name] = RealtimeChannel(
                name=name,
                table=table_name,
                event=event,
                schema=schema or config.api_config.db_schema,
                callback=callback,
                filter=filter,
            )
        self.logger.info("Realtime channel subscribed", extra={"channel": name, "table": table_name, "event": event})
        return name

    def unsubscribe_from_table(self, channel_name: str) -> None:
        with self._lock:
            channel = self.channels.pop(channel_name, None)
        if channel is not None:
            self.logger.info("Realtime channel removed", extra={"channel": channel_name, "delivered": channel.delivered})

    def dispatch(self, table_name: str, event: str, payload: Mapping[str, Any], *, schema: Optional[str] = None) -> int:
        """Deliver a change payload to every matching channel; returns the number of callbacks invoked."""

        config = self._coerce_config(None)
        schema = schema or config.api_config.db_schema
        with self._lock:
            targets = [channel for channel in self.channels.values() if channel.matches(table_name, event, schema)]
        message = {"table": table_name, "schema": schema, "eventType": event.upper(), **dict(payload)}
        for channel in targets:
            try:
                channel.callback(message)
                channel.delivered += 1
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Realtime callback failed", extra={"channel": channel.name, "error": str(exc)})
        return len(targets)

    # Discovery --------------------------------------------------------------

    def _openapi_tables(self, options: IntrospectionOptions) -> List[TableDefinition]:
        api = self._ensure_connected()
        document = api.openapi()
        definitions = document.get("definitions") or (document.get("components") or {}).get("schemas") or {}
        schema_name = api.schema
        tables = []
        for name in sorted(definitions):
            if not options.accepts(name):
                continue
            tables.append(_table_from_definition(name, schema_name, definitions[name]))
        return tables

    def _api_definitions(self) -> Dict[str, TableDefinition]:
        if self._definitions is None:
            self._definitions = {table.name: table for table in self._openapi_tables(IntrospectionOptions())}
        return self._definitions

    def _introspect_via_api(self, options: IntrospectionOptions) -> DatabaseSchema:
        config = self._coerce_config(None)
        watch = Stopwatch()
        tables = self._openapi_tables(options)
        limit = options.max_tables or config.introspection.max_tables
        if len(tables) > limit:
            self.logger.warning("Table limit reached during introspection", extra={"type": self.type, "limit": limit})
            tables = tables[:limit]
        self._definitions = {table.name: table for table in tables}
        schema = DatabaseSchema(name=config.database or "supabase", tables=tables)
        schema.version = schema_version(schema)
        schema.metadata = {
            "connectorType": self.type,
            "introspectedAt": utcnow().isoformat(),
            "introspectionMethod": "supabase-api",
            "source": "supabase",
            "durationMs": round(watch.elapsed_ms, 2),
        }
        return schema

    def introspect_schema(self, options: Optional[IntrospectionOptions] = None) -> DatabaseSchema:
        """Introspect through Postgres when available, falling back to the PostgREST OpenAPI document."""

        self._ensure_connected()
        options = options or IntrospectionOptions()
        if self.sql is not None:
            try:
                schema = self.sql.introspect_schema(options)
                schema.metadata.update(connectorType=self.type, introspectionMethod="postgres")
                return schema
            except ConnectorError as exc:
                self.logger.warning("Postgres introspection failed, falling back to Supabase API", extra={"error": exc.message})
        try:
            schema = self._introspect_via_api(options)
        except ConnectorError as exc:
            raise SchemaError(f"Schema introspection failed: {exc.message}", cause=exc) from exc
        self.converter.clear_cache()
        self.logger.info("Schema introspected", extra={"type": self.type, "tables": len(schema.tables), "method": "supabase-api"})
        return schema

    def list_schemas(self) -> List[str]:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.list_schemas()
        return [self._coerce_config(None).api_config.db_schema]

    def list_tables(self, schema_name: Optional[str] = None) -> List[str]:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.list_tables(schema_name)
        return sorted(self._api_definitions())

    def get_table_definition(self, table_name: str, schema_name: Optional[str] = None) -> TableDefinition:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.get_table_definition(table_name, schema_name)
        table = self._api_definitions().get(table_name)
        if table is None:
            raise TableNotFoundError(table_name, schema_name)
        return table

    def get_table_columns(self, table_name: str, schema_name: Optional[str] = None) -> List[ColumnDefinition]:
        if self.sql is not None:
            return self.sql.get_table_columns(table_name, schema_name)
        return self.get_table_definition(table_name, schema_name).columns

    def get_table_primary_key(self, table_name: str, schema_name: Optional[str] = None) -> List[str]:
        if self.sql is not None:
            return self.sql.get_table_primary_key(table_name, schema_name)
        return self.get_table_definition(table_name, schema_name).primary_key

    def get_table_foreign_keys(self, table_name: str, schema_name: Optional[str] = None) -> List[ForeignKeyDefinition]:
        if self.sql is not None:
            return self.sql.get_table_foreign_keys(table_name, schema_name)
        return self.get_table_definition(table_name, schema_name).foreign_keys

    def get_table_indexes(self, table_name: str, schema_name: Optional[str] = None) -> List[IndexDefinition]:
        if self.sql is not None:
            return self.sql.get_table_indexes(table_name, schema_name)
        return self.get_table_definition(table_name, schema_name).indexes

    def compare_schemas(self, source: DatabaseSchema, target: DatabaseSchema) -> SchemaComparison:
        return compare_schemas(source, target)

    def generate_schema_diff(self, comparison: SchemaComparison) -> List[str]:
        return generate_schema_diff(comparison, escape=self.dialect.escape_identifier)

    # Builders ---------------------------------------------------------------

    def _query_for(self, table_name: str, options: Optional[DataOperationOptions]) -> PostgrestQuery:
        query = PostgrestQuery(table_name)
        options = options or DataOperationOptions()
        filters = options.filters
        if filters is not None:
            if filters.where_raw:
                raise ValidationError("Raw WHERE clauses require a direct SQL connection", field="where_raw")
            query.match(filters.where)
            if filters.search is not None and filters.search.term:
                term = filters.search.term.replace("*", "")
                query.or_(*(f"{column}.ilike.*{term}*" for column in filters.search.columns))
        pagination = options.pagination
        if pagination is not None:
            for order in pagination.order_by:
                query.order(order.column, descending=order.direction.upper() == "DESC")
            if pagination.limit is not None:
                query.limit(pagination.limit)
            if pagination.offset is not None:
                query.offset(pagination.offset)
        return query

    def build_select_query(self, table_name: str, options: Optional[DataOperationOptions] = None, **kwargs: Any) -> BuiltQuery:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.build_select_query(table_name, options, **kwargs)
        return BuiltQuery(f"GET /rest/v1/{table_name}", dict(self._query_for(table_name, options).to_params()))

    def build_insert_query(self, table_name: str, data: Any, **kwargs: Any) -> BuiltQuery:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.build_insert_query(table_name, data, **kwargs)
        body = dict(data) if isinstance(data, Mapping) else [dict(item) for item in data]
        return BuiltQuery(f"POST /rest/v1/{table_name}", {"body": body})

    def build_update_query(self, table_name: str, data: Mapping[str, Any], criteria: Mapping[str, Any], **kwargs: Any) -> BuiltQuery:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.build_update_query(table_name, data, criteria, **kwargs)
        if not criteria:
            raise ValidationError("Update criteria are required")
        params: Dict[str, Any] = dict(PostgrestQuery(table_name).match(criteria).filter_params())
        params["body"] = dict(data)
        return BuiltQuery(f"PATCH /rest/v1/{table_name}", params)

    def build_delete_query(self, table_name: str, criteria: Mapping[str, Any], **kwargs: Any) -> BuiltQuery:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.build_delete_query(table_name, criteria, **kwargs)
        if not criteria:
            raise ValidationError("Delete criteria are required")
        return BuiltQuery(f"DELETE /rest/v1/{table_name}", dict(PostgrestQuery(table_name).match(criteria).filter_params()))

    # Data -------------------------------------------------------------------

    def _api_call(self, operation: str, call: Callable[[PostgrestClient], PostgrestResult]) -> QueryResult:
        api = self._ensure_connected()
        watch = Stopwatch()
        try:
            outcome = call(api)
        except ConnectorError as exc:
            self.events.emit("on_error", exc)
            return QueryResult.failure(exc, execution_time_ms=watch.elapsed_ms)
        elapsed = watch.elapsed_ms
        self.stats.record(elapsed)
        self.events.emit("on_query", operation, elapsed)
        affected = None if operation.startswith("select") else len(outcome.data)
        return QueryResult(
            success=True,
            data=outcome.data,
            total_count=outcome.count,
            affected_rows=affected,
            execution_time_ms=elapsed,
            metadata={"mode": "api", "status": outcome.status_code},
        )

    def _primary_key_of(self, table_name: str) -> str:
        columns = self.get_table_primary_key(table_name)
        return columns[0] if columns else "id"

    def execute_query(self, query: str, parameters: Any = None, context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.execute_query(query, parameters, context)
        return QueryResult.failure(OperationNotSupportedError("direct SQL without Postgres credentials", self.type))

    def execute_transaction(self, operations: Sequence[Any], context: Optional[QueryContext] = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.execute_transaction(operations, context)
        return QueryResult.failure(OperationNotSupportedError("transactions without Postgres credentials", self.type))

    def begin_transaction(self, context: Optional[QueryContext] = None) -> SQLTransaction:
        self._ensure_connected()
        if self.sql is None:
            raise FeatureNotSupportedError("transactions without Postgres credentials", self.type)
        return self.sql.begin_transaction(context)

    def get_query_execution_plan(self, query: str, parameters: Any = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.get_query_execution_plan(query, parameters)
        return QueryResult.failure(OperationNotSupportedError("execution plans without Postgres credentials", self.type))

    def get_table_data(self, table_name: str, options: Optional[DataOperationOptions] = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.get_table_data(table_name, options)
        try:
            query = self._query_for(table_name, options)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        counted = options is not None and options.pagination is not None
        return self._api_call("select", lambda api: api.select(query, count=counted))

    def count_records(self, table_name: str, criteria: Optional[Mapping[str, Any]] = None, **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.count_records(table_name, criteria, **options)
        query = PostgrestQuery(table_name).match(criteria or {}).limit(1)
        result = self._api_call("select count", lambda api: api.select(query, count=True))
        if result.success:
            total = result.total_count if result.total_count is not None else len(result.data)
            result.total_count = total
            result.data = [{"count": total}]
        return result

    def insert_record(self, table_name: str, data: Mapping[str, Any], **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.insert_record(table_name, data, **options)
        return self._api_call("insert", lambda api: api.insert(table_name, data))

    def _api_batches(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        options: Optional[BulkOperationOptions],
        *,
        conflict_columns: Optional[Sequence[str]] = None,
    ) -> QueryResult:
        options = options or BulkOperationOptions()
        watch = Stopwatch()
        rows: List[Dict[str, Any]] = []
        warnings: List[str] = []
        batches = list(batched(list(data), options.batch_size))
        for index, batch in enumerate(batches):
            outcome = self._api_call(
                "upsert" if conflict_columns is not None else "insert",
                lambda api, batch=batch: api.insert(table_name, batch, upsert=conflict_columns is not None, on_conflict=conflict_columns),
            )
            if outcome.success:
                rows.extend(outcome.data)
                continue
            if not options.continue_on_error:
                outcome.metadata["appliedBatches"] = index
                return outcome
            warnings.append(f"Batch {index + 1} failed: {outcome.error.message if outcome.error else 'unknown error'}")
        return QueryResult(
            success=not batches or len(warnings) < len(batches),
            data=rows,
            affected_rows=len(rows),
            execution_time_ms=watch.elapsed_ms,
            warnings=warnings,
            metadata={"mode": "api", "batches": len(batches), "failedBatches": len(warnings)},
        )

    def insert_records(self, table_name: str, data: Sequence[Mapping[str, Any]], options: Optional[BulkOperationOptions] = None) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.insert_records(table_name, data, options)
        return self._api_batches(table_name, data, options)

    def update_record(self, table_name: str, record_id: Any, data: Mapping[str, Any], **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.update_record(table_name, record_id, data, **options)
        try:
            column = options.get("id_column") or self._primary_key_of(table_name)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self.update_records(table_name, {column: record_id}, data)

    def update_records(self, table_name: str, criteria: Mapping[str, Any], data: Mapping[str, Any], **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.update_records(table_name, criteria, data, **options)
        if not criteria:
            return QueryResult.failure(ValidationError("Update criteria are required"))
        query = PostgrestQuery(table_name).match(criteria)
        return self._api_call("update", lambda api: api.update(query, data))

    def delete_record(self, table_name: str, record_id: Any, **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.delete_record(table_name, record_id, **options)
        try:
            column = options.get("id_column") or self._primary_key_of(table_name)
        except ConnectorError as exc:
            return QueryResult.failure(exc)
        return self.delete_records(table_name, {column: record_id})

    def delete_records(self, table_name: str, criteria: Mapping[str, Any], **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.delete_records(table_name, criteria, **options)
        if not criteria:
            return QueryResult.failure(ValidationError("Delete criteria are required"))
        query = PostgrestQuery(table_name).match(criteria)
        return self._api_call("delete", lambda api: api.delete(query))

    def upsert_record(self, table_name: str, data: Mapping[str, Any], conflict_columns: Sequence[str], **options: Any) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.upsert_record(table_name, data, conflict_columns, **options)
        return self._api_call("upsert", lambda api: api.insert(table_name, data, upsert=True, on_conflict=conflict_columns))

    def bulk_upsert(
        self,
        table_name: str,
        data: Sequence[Mapping[str, Any]],
        conflict_columns: Sequence[str],
        options: Optional[BulkOperationOptions] = None,
    ) -> QueryResult:
        self._ensure_connected()
        if self.sql is not None:
            return self.sql.bulk_upsert(table_name, data, conflict_columns, options)
        return self._api_batches(table_name, data, options, conflict_columns=list(conflict_columns))

    def validate_data(self, table_name: str, data: Mapping[str, Any], mode: str = "full") -> DataValidationResult:
        return self.converter.validate(self.get_table_definition(table_name), data, mode)

    # Misc -------------------------------------------------------------------

    def get_connection_metrics(self) -> ConnectionMetrics:
        if self.sql is not None:
            return self.sql.get_connection_metrics()
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
        mapping = self.dialect.type_mapping()
        mapping.update(uuid="uuid", timestamptz="timestamp with time zone", jsonb="jsonb")
        return mapping

    def escape_identifier(self, identifier: str) -> str:
        return self.dialect.escape_identifier(identifier)

    def escape_literal(self, literal: Any) -> str:
        return escape_literal(literal)

    def get_parameter_placeholder(self, index: int) -> str:
        return self.dialect.placeholder(index)

    def health_check(self) -> HealthCheckResult:
        api = self.api
        if not self.is_connected() or api is None:
            return HealthCheckResult.from_checks([HealthCheckItem("connection", "fail", "Not connected")])
        checks: List[HealthCheckItem] = []
        watch = Stopwatch()
        try:
            api.openapi()
            checks.append(HealthCheckItem("rest_api", "pass", "Supabase API reachable", watch.elapsed_ms))
        except ConnectorError as exc:
            checks.append(HealthCheckItem("rest_api", "fail", exc.message, watch.elapsed_ms))
        if self.sql is not None:
            for item in self.sql.health_check().checks:
                checks.append(HealthCheckItem(f"postgres_{item.name}", item.status, item.message, item.duration_ms))
        else:
            checks.append(HealthCheckItem("postgres", "warn", "Direct SQL connection not available, using REST API only"))
        checks.append(HealthCheckItem("realtime", "pass", f"{len(self.channels)} channel(s) subscribed"))
        return HealthCheckResult.from_checks(checks)


def _table_from_definition(name: str, schema_name: str, definition: Mapping[str, Any]) -> TableDefinition:
    """Normalise one PostgREST OpenAPI definition into a :class:`TableDefinition`."""

    required = set(definition.get("required") or [])
    columns: List[ColumnDefinition] = []
    primary_key: List[str] = []
    foreign_keys: List[ForeignKeyDefinition] = []
    for column_name, prop in (definition.get("properties") or {}).items():
        native = prop.get("format") or prop.get("type") or ""
        kind = map_native_type(native)
        if kind is DatabaseType.UNKNOWN:
            kind = json_schema_type(prop)
        description = prop.get("description") or ""
        if _PK_MARKER.search(description):
            primary_key.append(column_name)
        reference = _FK_MARKER.search(description)
        if reference is not None:
            foreign_keys.append(
                ForeignKeyDefinition(
                    column_name=column_name,
                    referenced_table=reference.group(1),
                    referenced_column=reference.group(2),
                    constraint_name=f"{name}_{column_name}_fkey",
                )
            )
        comment = _FK_MARKER.sub("", _PK_MARKER.sub("", description)).strip() or None
        default = prop.get("default")
        columns.append(
            ColumnDefinition(
                name=column_name,
                type=kind,
                nullable=column_name not in required,
                default_value=default,
                max_length=prop.get("maxLength"),
                enum_values=[str(item) for item in prop["enum"]] if prop.get("enum") else None,
                comment=comment,
                is_auto_increment=isinstance(default, str) and "nextval" in default,
                original_type=native,
                metadata={"supabaseType": native},
            )
        )
    _annotate_columns(columns, primary_key, foreign_keys, [], [])
    return TableDefinition(
        name=name,
        schema=schema_name,
        columns=columns,
        constraints=_key_constraints(name, primary_key, foreign_keys),
        primary_key=primary_key,
        foreign_keys=foreign_keys,
        comment=definition.get("description"),
        metadata={"supabaseTable": True},
    )


__all__ = [
    "DEFAULT_SUPABASE_URL",
    "RealtimeChannel",
    "SUPABASE_CAPABILITIES",
    "SupabaseAPIConfig",
    "SupabaseAuthConfig",
    "SupabaseConnector",
    "SupabaseConnectorConfig",
    "SupabaseCredentials",
    "SupabaseFeatures",
    "SupabaseRLSConfig",
    "SupabaseRealtimeConfig",
    "project_ref",
    "supabase_config_rules",
    "supabase_credentials_rules",
]

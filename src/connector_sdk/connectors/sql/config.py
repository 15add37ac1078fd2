"""
Configuration models for the SQL connectors.

Field ranges are declared on the pydantic models; rules spanning several fields
live in :func:`postgres_config_rules` and run against the raw mapping so that
they are reported together with field errors rather than after them.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..base import ConfigModel, ConnectorConfig, PoolConfig, SSLConfig

SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
SCHEMA_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
MAX_QUERY_TIMEOUT_MS = 300000


class RetryPolicy(ConfigModel):
    max_attempts: int = Field(3, ge=1, le=10)
    base_delay: int = Field(1000, ge=100, le=10000)
    max_delay: int = Field(10000, ge=1000, le=60000)
    jitter: bool = True


class HealthCheckConfig(ConfigModel):
    enabled: bool = True
    interval: int = Field(30000, ge=5000, le=300000)
    timeout: int = Field(5000, ge=1000, le=60000)
    retry_count: int = Field(3, ge=1, le=5)


class IntrospectionConfig(ConfigModel):
    enabled: bool = True
    excluded_schemas: List[str] = Field(default_factory=lambda: ["information_schema", "pg_catalog", "pg_toast"])
    included_tables: Optional[List[str]] = None
    excluded_tables: List[str] = Field(default_factory=list)
    max_tables: int = Field(500, ge=1, le=1000)
    max_columns: int = Field(2000, ge=1, le=5000)


class SQLConnectorConfig(ConnectorConfig):
    """Options shared by every SQL dialect."""

    type: str = "sql"
    name: str = "sql"
    url: Optional[str] = None
    default_schema: Optional[str] = Field(None, validation_alias=AliasChoices("default_schema", "defaultSchema", "schema"))
    search_path: Optional[List[str]] = None
    timezone: Optional[str] = None
    application_name: Optional[str] = None
    query_timeout: int = Field(30000, ge=1000, le=3600000)
    statement_timeout: int = Field(30000, ge=1000, le=3600000)
    read_only: bool = False
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    introspection: IntrospectionConfig = Field(default_factory=IntrospectionConfig)


class PostgresPoolConfig(PoolConfig):
    min: int = Field(1, ge=1, le=50)
    max: int = Field(10, ge=1, le=200)
    idle_timeout_ms: int = Field(
        30000, ge=1000, le=300000, validation_alias=AliasChoices("idle_timeout_ms", "idleTimeoutMs", "idleTimeoutMillis")
    )
    connection_timeout_ms: int = Field(
        5000,
        ge=1000,
        le=60000,
        validation_alias=AliasChoices("connection_timeout_ms", "connectionTimeoutMs", "connectionTimeoutMillis"),
    )
    acquire_timeout_ms: int = Field(
        60000,
        ge=1000,
        le=300000,
        validation_alias=AliasChoices("acquire_timeout_ms", "acquireTimeoutMs", "acquireTimeoutMillis"),
    )


class PostgresSSLConfig(SSLConfig):
    mode: Literal["disable", "allow", "prefer", "require", "verify-ca", "verify-full"] = "prefer"


class PostgresConnectorConfig(SQLConnectorConfig):
    type: str = "postgres"
    name: str = "postgres"
    host: str = Field("localhost", min_length=1, max_length=255)
    port: int = Field(5432, ge=1, le=65535)
    database: str = Field("postgres", min_length=1, max_length=63)
    application_name: str = Field("connector-sdk", max_length=64)
    pool_config: PostgresPoolConfig = Field(default_factory=PostgresPoolConfig)
    ssl_config: PostgresSSLConfig = Field(default_factory=PostgresSSLConfig)
    search_path: List[str] = Field(default_factory=lambda: ["public"], max_length=20)
    default_schema: str = Field(
        "public", min_length=1, max_length=63, validation_alias=AliasChoices("default_schema", "defaultSchema", "schema")
    )


class SQLiteConnectorConfig(SQLConnectorConfig):
    type: str = "sqlite"
    name: str = "sqlite"
    database: str = Field(":memory:", min_length=1)
    default_schema: str = Field("main", validation_alias=AliasChoices("default_schema", "defaultSchema", "schema"))


class PostgresCredentials(BaseModel):
    """Shape of the secret resolved for a Postgres connection."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    user: Optional[str] = Field(None, min_length=1, max_length=63)
    password: Optional[str] = Field(None, min_length=1, max_length=1000)
    host: Optional[str] = Field(None, min_length=1, max_length=255)
    port: Optional[int] = Field(None, ge=1, le=65535)
    database: Optional[str] = Field(None, min_length=1, max_length=63)
    connection_string: Optional[str] = None
    application_name: Optional[str] = Field(None, max_length=64)
    connect_timeout: Optional[int] = Field(None, ge=0, le=300)


def _pick(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return None


def _section(payload: Mapping[str, Any], *keys: str) -> Mapping[str, Any]:
    value = _pick(payload, *keys)
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value if isinstance(value, Mapping) else {}


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    return default


def postgres_config_rules(payload: Mapping[str, Any]) -> List[str]:
    """Cross-field rules for Postgres configurations; every violation is returned."""

    errors: List[str] = []
    pool = _section(payload, "pool_config", "poolConfig")
    pool_min = _as_int(_pick(pool, "min"), 1)
    pool_max = _as_int(_pick(pool, "max"), 10)
    if pool_min > pool_max:
        errors.append("Pool min size cannot be greater than max size")

    query_timeout = _as_int(_pick(payload, "query_timeout", "queryTimeout"), 30000)
    if query_timeout > MAX_QUERY_TIMEOUT_MS:
        errors.append("Query timeout too high (max 5 minutes)")

    connection_timeout = _as_int(_pick(pool, "connection_timeout_ms", "connectionTimeoutMs", "connectionTimeoutMillis"), 5000)
    acquire_timeout = _as_int(_pick(pool, "acquire_timeout_ms", "acquireTimeoutMs", "acquireTimeoutMillis"), 60000)
    if connection_timeout > acquire_timeout:
        errors.append("Connection timeout should not exceed acquire timeout")

    search_path = _pick(payload, "search_path", "searchPath")
    if isinstance(search_path, (list, tuple)):
        for schema in search_path:
            if not isinstance(schema, str) or not SCHEMA_NAME_PATTERN.match(schema):
                errors.append(f"Invalid schema name in search path: {schema}")

    ssl = _section(payload, "ssl_config", "sslConfig")
    mode = _pick(ssl, "mode") or "prefer"
    if _pick(ssl, "enabled") and mode == "disable":
        errors.append("Cannot enable SSL with disable mode")
    if mode == "verify-full" and not _pick(ssl, "ca"):
        errors.append("CA certificate required for verify-full SSL mode")
    return errors


def config_payload(config: Any) -> Dict[str, Any]:
    if isinstance(config, BaseModel):
        return config.model_dump()
    return dict(config or {})
